#!/usr/bin/env python3

# Helpers for turning user input into a ScanRequest, plus local interface
# and privilege detection.

import ctypes
import ipaddress
import logging
import os
import socket

from scan_models import (
    DEFAULT_CONCURRENCY,
    DEFAULT_END_HOST,
    DEFAULT_PORTS,
    DEFAULT_START_HOST,
    InvalidSubnetError,
    ScanRequest,
)

logger = logging.getLogger(__name__)

FALLBACK_PREFIX = "192.168.1"


def get_default_interface_ip():
    """
    Returns the address of the interface holding the default route.
    Connecting a UDP socket sends nothing; it only makes the OS pick a source address.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError as e:
        logger.warning("Error getting default IP: %s", e)
        return None


def get_subnet_prefix(ip_address):
    """First three octets of an IPv4 address, e.g. '192.168.1' for '192.168.1.37'."""
    try:
        ip_obj = ipaddress.IPv4Address(ip_address)
    except ValueError:
        return None
    return ".".join(str(ip_obj).split(".")[:3])


def get_default_subnet_prefix():
    """Autodetects the /24 prefix of the default interface, falling back to 192.168.1."""
    default_ip = get_default_interface_ip()
    prefix = get_subnet_prefix(default_ip) if default_ip else None
    if not prefix:
        logger.warning("Could not determine subnet, defaulting to %s", FALLBACK_PREFIX)
        return FALLBACK_PREFIX
    return prefix


def normalize_subnet(text):
    """
    Accepts '192.168.1', '192.168.1.' or a CIDR such as '192.168.1.0/24'
    and returns the three-octet prefix.
    """
    text = (text or "").strip()
    if not text:
        raise InvalidSubnetError("Invalid subnet.")

    if "/" in text:
        try:
            network = ipaddress.IPv4Network(text, strict=False)
        except ValueError:
            raise InvalidSubnetError(f"Invalid subnet '{text}'.")
        return get_subnet_prefix(network.network_address)

    prefix = text.rstrip(".")
    try:
        ipaddress.IPv4Address(f"{prefix}.1")
    except ValueError:
        raise InvalidSubnetError(f"Invalid subnet '{text}'. Example: 192.168.1")
    return prefix


def parse_int(text, default):
    try:
        return int(str(text).strip())
    except (TypeError, ValueError):
        return default


def parse_ports(text):
    """Parses '22,80,443'. Non-numeric or out-of-range entries are skipped; if none remain the default ports apply."""
    if text is None:
        return DEFAULT_PORTS
    if isinstance(text, (list, tuple)):
        text = ",".join(str(p) for p in text)
    ports = []
    for part in str(text).split(","):
        port = parse_int(part, None)
        if port is not None and 0 < port < 65536:
            ports.append(port)
    return tuple(ports) if ports else DEFAULT_PORTS


def build_scan_request(subnet, start=None, end=None, ports=None, threads=None, hide_closed=False):
    """Builds a ScanRequest from raw user input, substituting defaults for malformed numbers."""
    concurrency = parse_int(threads, DEFAULT_CONCURRENCY)
    if concurrency < 1:
        concurrency = DEFAULT_CONCURRENCY
    return ScanRequest(
        subnet=normalize_subnet(subnet),
        start_host=parse_int(start, DEFAULT_START_HOST),
        end_host=parse_int(end, DEFAULT_END_HOST),
        ports=parse_ports(ports),
        concurrency=concurrency,
        hide_closed=hide_closed,
    )


def is_privileged():
    """True when running as root, or as Administrator on Windows."""
    if os.name == "nt":
        try:
            return ctypes.windll.shell32.IsUserAnAdmin() != 0
        except (AttributeError, OSError):
            return False
    geteuid = getattr(os, "geteuid", None)
    return geteuid is not None and geteuid() == 0

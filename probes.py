#!/usr/bin/env python3
"""
Single-shot network probes used for each scanned host.

Every probe is bounded by its own timeout and never raises: failures are
returned as False or as a FAILED Outcome.
"""

import logging
import socket

import dns.exception
import dns.resolver
import dns.reversename
from scapy.all import ICMP, IP, sr1

from scan_models import Outcome

logger = logging.getLogger(__name__)

PING_TIMEOUT = 0.3
CONNECT_TIMEOUT = 0.3
DNS_TIMEOUT = 1.0
SSDP_TIMEOUT = 1.0
SSDP_PORT = 1900

ICMP_ECHO_REPLY = 0

SSDP_REQUEST = (
    "M-SEARCH * HTTP/1.1\r\n"
    "HOST: {ip}:1900\r\n"
    'MAN: "ssdp:discover"\r\n'
    "MX: 1\r\n"
    "ST: ssdp:all\r\n"
    "\r\n"
)
SSDP_HEADERS = ("SERVER:", "LOCATION:")


def is_host_reachable(ip, timeout=PING_TIMEOUT):
    """
    Sends one ICMP echo request and waits for the reply.
    Raw ICMP needs root/Administrator; without it every host looks down.
    """
    try:
        reply = sr1(IP(dst=ip) / ICMP(), timeout=timeout, verbose=False)
    except Exception as e:  # scapy raises PermissionError, OSError and its own errors
        logger.debug("Ping to %s failed: %s", ip, e)
        return False
    if reply is None or not reply.haslayer(ICMP):
        return False
    return reply[ICMP].type == ICMP_ECHO_REPLY


def is_port_open(ip, port, timeout=CONNECT_TIMEOUT):
    """Attempts a TCP connection. Refused, filtered and unreachable all count as closed."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            return sock.connect_ex((ip, port)) == 0
    except (OSError, OverflowError) as e:
        logger.debug("Connect to %s:%s failed: %s", ip, port, e)
        return False


def reverse_lookup(ip, timeout=DNS_TIMEOUT):
    """
    PTR lookup for an address.

    Returns RESOLVED with the name, NOT_FOUND when the lookup answered but
    carried no usable name, or FAILED when the lookup itself failed
    (NXDOMAIN, timeout, no nameservers, ...).
    """
    try:
        resolver = dns.resolver.Resolver()
        resolver.timeout = timeout
        resolver.lifetime = timeout
        answer = resolver.resolve(dns.reversename.from_address(ip), "PTR")
    except dns.resolver.NoAnswer:
        return Outcome.not_found()
    except (dns.exception.DNSException, ValueError, OSError) as e:
        logger.debug("Reverse lookup for %s failed: %s", ip, e)
        return Outcome.failed()

    for record in answer:
        name = record.to_text().rstrip(".")
        if name.strip():
            return Outcome.resolved(name)
    return Outcome.not_found()


def build_ssdp_request(ip):
    return SSDP_REQUEST.format(ip=ip).encode("ascii")


def parse_ssdp_response(data):
    """Picks the first SERVER: or LOCATION: line out of an SSDP reply."""
    # undecodable bytes are replaced, not fatal
    text = data.decode("ascii", errors="replace")
    for line in text.split("\r\n"):
        if line and line.upper().startswith(SSDP_HEADERS):
            return Outcome.resolved(line)
    return Outcome.not_found()


def query_ssdp(ip, timeout=SSDP_TIMEOUT, port=SSDP_PORT):
    """
    Sends a unicast M-SEARCH and reads a single reply.

    Only the first datagram is consulted, even though a multicast-style search
    could draw answers from several services on the same device.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.settimeout(timeout)
            sock.sendto(build_ssdp_request(ip), (ip, port))
            data, _ = sock.recvfrom(4096)
    except OSError as e:
        logger.debug("SSDP query to %s failed: %s", ip, e)
        return Outcome.failed()
    return parse_ssdp_response(data)

#!/usr/bin/env python3
"""
MAC address resolution for hosts on the local broadcast domain.

How a MAC is found depends on the platform and on privileges, so callers
get a resolver chosen once at startup via select_link_layer_resolver().
"""

import logging
import platform
from typing import Optional, Protocol

from mac_vendor_lookup import MacLookup
from scapy.all import ARP, Ether, srp

from scan_models import Outcome
from utils import is_privileged

logger = logging.getLogger(__name__)

ARP_TIMEOUT = 1.0
ARP_CACHE_PATH = "/proc/net/arp"
INCOMPLETE_MAC = "00:00:00:00:00:00"


class LinkLayerResolver(Protocol):
    def resolve(self, ip: str) -> Outcome:
        ...


class ScapyArpResolver:
    """Sends a broadcast ARP who-has for the address. Needs raw socket privileges."""

    def __init__(self, timeout: float = ARP_TIMEOUT):
        self.timeout = timeout

    def resolve(self, ip: str) -> Outcome:
        try:
            answered, _ = srp(
                Ether(dst="ff:ff:ff:ff:ff:ff") / ARP(pdst=ip),
                timeout=self.timeout,
                verbose=False,
            )
        except Exception as e:  # PermissionError without root, OSError for missing interfaces
            logger.debug("ARP request for %s failed: %s", ip, e)
            return Outcome.failed()
        for _, received in answered:
            return Outcome.resolved(received.hwsrc)
        return Outcome.not_found()


class ArpCacheResolver:
    """
    Looks the address up in the kernel's neighbour table.

    Works unprivileged on Linux. The ICMP probe that precedes it normally
    leaves an entry behind for hosts on the same link.
    """

    def __init__(self, path: str = ARP_CACHE_PATH):
        self.path = path

    def resolve(self, ip: str) -> Outcome:
        try:
            with open(self.path, "r") as f:
                lines = f.readlines()[1:]  # Skip header
        except OSError as e:
            logger.debug("Could not read ARP cache %s: %s", self.path, e)
            return Outcome.failed()

        for line in lines:
            parts = line.split()
            if len(parts) >= 4 and parts[0] == ip:
                mac = parts[3].lower()
                if mac != INCOMPLETE_MAC and ":" in mac:
                    return Outcome.resolved(mac)
        return Outcome.not_found()


class UnsupportedLinkLayer:
    """Used where no MAC resolution method exists; nothing is ever resolved."""

    def resolve(self, ip: str) -> Outcome:
        return Outcome.not_found()


def select_link_layer_resolver(system: Optional[str] = None) -> LinkLayerResolver:
    system = system or platform.system()
    if system == "Linux":
        if is_privileged():
            return ScapyArpResolver()
        return ArpCacheResolver()
    if system in ("Windows", "Darwin"):
        return ScapyArpResolver()
    logger.info("MAC resolution is not supported on %s", system)
    return UnsupportedLinkLayer()


class VendorLookup:
    """Maps a MAC address to its vendor name using the IEEE OUI list."""

    def __init__(self, enabled: bool = True):
        self.mac_lookup = None
        if not enabled:
            return
        try:
            self.mac_lookup = MacLookup()
        except Exception as e:
            logger.warning("Could not initialize MAC vendor lookup: %s. Vendor info will be skipped.", e)

    def lookup(self, mac: Outcome) -> str:
        if self.mac_lookup is None or not mac.ok:
            return "N/A"
        try:
            return self.mac_lookup.lookup(mac.value)
        except Exception:  # MacLookup raises KeyError, InvalidMacError, and I/O errors on first load
            return "Error"

#!/usr/bin/env python3
"""
Hop-by-hop route tracing with ICMP echo requests of increasing TTL.
"""

import ipaddress
import logging
import socket
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, List, Optional

from scapy.all import ICMP, IP, Raw, sr1

import probes
from scan_models import Outcome, TraceHop

logger = logging.getLogger(__name__)

MAX_HOPS = 30
HOP_TIMEOUT = 3.0
PAYLOAD = b"Tracing route..."

ICMP_ECHO_REPLY = 0
ICMP_TIME_EXCEEDED = 11


class HopStatus(Enum):
    ECHO_REPLY = auto()
    TTL_EXCEEDED = auto()
    UNREACHABLE = auto()
    TIMEOUT = auto()


@dataclass(frozen=True)
class HopReply:
    status: HopStatus
    address: Optional[str] = None


class TraceState(Enum):
    IDLE = auto()
    RESOLVING = auto()
    PROBING = auto()
    SUCCEEDED = auto()
    TIMED_OUT_AT_MAX_TTL = auto()
    RESOLUTION_FAILED = auto()
    FAILED = auto()


class ScapyHopProber:
    """Sends one TTL-limited ICMP echo and classifies whatever comes back."""

    def __call__(self, dest: str, ttl: int, timeout: float) -> HopReply:
        reply = sr1(IP(dst=dest, ttl=ttl) / ICMP() / Raw(load=PAYLOAD), timeout=timeout, verbose=False)
        if reply is None or not reply.haslayer(ICMP):
            return HopReply(HopStatus.TIMEOUT)
        address = reply[IP].src if reply.haslayer(IP) else None
        icmp_type = reply[ICMP].type
        if icmp_type == ICMP_TIME_EXCEEDED:
            return HopReply(HopStatus.TTL_EXCEEDED, address)
        if icmp_type == ICMP_ECHO_REPLY:
            return HopReply(HopStatus.ECHO_REPLY, address)
        return HopReply(HopStatus.UNREACHABLE, address)


def resolve_ipv4(target: str) -> List[str]:
    """IPv4 addresses for a literal or a hostname, in resolver order."""
    try:
        return [str(ipaddress.IPv4Address(target))]
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(target, None, socket.AF_INET)
    except socket.gaierror as e:
        logger.debug("Could not resolve %s: %s", target, e)
        return []
    addresses = []
    for _family, _type, _proto, _canonname, sockaddr in infos:
        if sockaddr[0] not in addresses:
            addresses.append(sockaddr[0])
    return addresses


class RouteTracer:
    """
    Walks TTL 1..max_hops toward a target.

    Each TTL produces exactly one TraceHop. The walk ends at the first echo
    reply (marked reached), after max_hops, or on an error, which is recorded
    as a single diagnostic entry.
    """

    def __init__(
        self,
        hop_prober: Optional[Callable[[str, int, float], HopReply]] = None,
        resolve: Callable[[str], List[str]] = resolve_ipv4,
        reverse: Callable[[str], Outcome] = probes.reverse_lookup,
        max_hops: int = MAX_HOPS,
        timeout: float = HOP_TIMEOUT,
    ):
        self.hop_prober = hop_prober or ScapyHopProber()
        self.resolve = resolve
        self.reverse = reverse
        self.max_hops = max_hops
        self.timeout = timeout
        self.state = TraceState.IDLE

    def trace(self, target: str, on_progress: Optional[Callable[[int, int], None]] = None) -> List[TraceHop]:
        hops: List[TraceHop] = []
        ttl = 0
        try:
            self.state = TraceState.RESOLVING
            addresses = self.resolve(target)
            if not addresses:
                self.state = TraceState.RESOLUTION_FAILED
                hops.append(TraceHop(ttl=0, error=f"Could not resolve '{target}'."))
                return hops
            dest = addresses[0]
            logger.info("Tracing route to %s (%s), %d hops max", target, dest, self.max_hops)

            self.state = TraceState.PROBING
            for ttl in range(1, self.max_hops + 1):
                if on_progress:
                    on_progress(ttl, self.max_hops)

                reply = self.hop_prober(dest, ttl, self.timeout)
                if reply.status in (HopStatus.TTL_EXCEEDED, HopStatus.ECHO_REPLY):
                    reached = reply.status is HopStatus.ECHO_REPLY
                    name = self._name_for(reply.address)
                    hops.append(TraceHop(ttl, reply.address, name, reached, responded=True))
                    if reached:
                        self.state = TraceState.SUCCEEDED
                        return hops
                else:
                    hops.append(TraceHop(ttl))

            self.state = TraceState.TIMED_OUT_AT_MAX_TTL
        except Exception as e:
            logger.debug("Trace to %s aborted", target, exc_info=True)
            self.state = TraceState.FAILED
            hops.append(TraceHop(ttl=ttl, error=f"TraceRoute error: {e}"))
        return hops

    def _name_for(self, address: Optional[str]) -> Outcome:
        if address is None:
            return Outcome.not_found()
        name = self.reverse(address)
        if name.ok:
            return name
        return Outcome.failed()

#!/usr/bin/env python3
"""
Data types shared by the scanner, the probes and the route tracer.

Probe outcomes are kept as tagged values (resolved / not found / failed) and
only turned into the familiar placeholder strings ("Unknown MAC", "-", ...)
when a result is displayed or exported.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Iterator, List, Optional, Tuple

DEFAULT_PORTS: Tuple[int, ...] = (22, 80, 443)
DEFAULT_START_HOST = 1
DEFAULT_END_HOST = 254
DEFAULT_CONCURRENCY = 16

UNKNOWN_HOST = "Unknown Host"
NO_DNS_NAME = "No Dns Name"
UNKNOWN_MAC = "Unknown MAC"
NO_SSDP = "-"
HOP_UNKNOWN = "(unknown)"
HOP_NO_DNS = "(no DNS)"

CSV_HEADER = ("IP", "FQDN", "MAC", "OpenPorts", "SSDP", "MDNS", "SNMP")


class ScanConfigError(ValueError):
    """Raised when scan parameters cannot be turned into a ScanRequest."""


class InvalidSubnetError(ScanConfigError):
    """Raised for an empty or malformed subnet prefix."""


class OutcomeKind(Enum):
    RESOLVED = auto()
    NOT_FOUND = auto()
    FAILED = auto()


@dataclass(frozen=True)
class Outcome:
    """Result of a single lookup-style probe."""
    kind: OutcomeKind
    value: Optional[str] = None

    @classmethod
    def resolved(cls, value: str) -> "Outcome":
        return cls(OutcomeKind.RESOLVED, value)

    @classmethod
    def not_found(cls) -> "Outcome":
        return cls(OutcomeKind.NOT_FOUND)

    @classmethod
    def failed(cls) -> "Outcome":
        return cls(OutcomeKind.FAILED)

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.RESOLVED

    def render(self, not_found: str, failed: Optional[str] = None) -> str:
        """Returns the resolved value or the placeholder for this outcome kind."""
        if self.kind is OutcomeKind.RESOLVED:
            return self.value or ""
        if self.kind is OutcomeKind.FAILED and failed is not None:
            return failed
        return not_found


@dataclass(frozen=True)
class ScanRequest:
    """Parameters of one scan; built once and never modified."""
    subnet: str
    start_host: int = DEFAULT_START_HOST
    end_host: int = DEFAULT_END_HOST
    ports: Tuple[int, ...] = DEFAULT_PORTS
    concurrency: int = DEFAULT_CONCURRENCY
    hide_closed: bool = False

    def __post_init__(self):
        if not self.subnet or not self.subnet.strip():
            raise InvalidSubnetError("Invalid subnet.")
        if self.concurrency < 1:
            raise ScanConfigError(f"Concurrency must be positive, got {self.concurrency}.")
        if not self.ports:
            raise ScanConfigError("At least one port is required.")
        # Accept any iterable of ports but store a tuple.
        object.__setattr__(self, "ports", tuple(self.ports))

    @property
    def total(self) -> int:
        return max(0, self.end_host - self.start_host + 1)

    def addresses(self) -> Iterator[str]:
        for host in range(self.start_host, self.end_host + 1):
            yield f"{self.subnet}.{host}"


@dataclass(frozen=True)
class HostResult:
    """Everything learned about one reachable host."""
    ip: str
    fqdn: Outcome
    mac: Outcome
    open_ports: Tuple[int, ...] = ()
    ssdp: Outcome = field(default_factory=Outcome.not_found)
    # Reserved for mDNS and SNMP discovery; never filled in yet.
    mdns: str = ""
    snmp: str = ""

    @property
    def has_open_ports(self) -> bool:
        return bool(self.open_ports)

    @property
    def fqdn_text(self) -> str:
        return self.fqdn.render(UNKNOWN_HOST, NO_DNS_NAME)

    @property
    def mac_text(self) -> str:
        return self.mac.render(UNKNOWN_MAC)

    @property
    def ssdp_text(self) -> str:
        return self.ssdp.render(NO_SSDP)

    @property
    def open_ports_text(self) -> str:
        return ";".join(str(port) for port in self.open_ports)

    def as_row(self) -> List[str]:
        """Column values in CSV_HEADER order."""
        return [
            self.ip,
            self.fqdn_text,
            self.mac_text,
            self.open_ports_text,
            self.ssdp_text,
            self.mdns,
            self.snmp,
        ]


@dataclass(frozen=True)
class ProgressEvent:
    completed: int
    total: int
    fraction: float


@dataclass(frozen=True)
class HostEvent:
    result: HostResult
    display: bool = True


@dataclass(frozen=True)
class ScanFinished:
    results: Tuple[HostResult, ...] = ()


@dataclass(frozen=True)
class TraceHop:
    """One line of a route trace."""
    ttl: int
    address: Optional[str] = None
    name: Outcome = field(default_factory=Outcome.not_found)
    reached: bool = False
    error: Optional[str] = None
    # a router or the target answered, even if its address is unknown
    responded: bool = False

    def __post_init__(self):
        if self.address is not None or self.reached:
            object.__setattr__(self, "responded", True)

    @property
    def timed_out(self) -> bool:
        return not self.responded and self.error is None

    @property
    def name_text(self) -> str:
        return self.name.render(HOP_UNKNOWN, HOP_NO_DNS)

    def __str__(self) -> str:
        if self.error is not None:
            return self.error
        if not self.responded:
            return f"Hop {self.ttl}: Request timed out."
        if self.address is None:
            return f"Hop {self.ttl}: No IP [{self.name_text}]"
        return f"Hop {self.ttl}: {self.address} [{self.name_text}]"

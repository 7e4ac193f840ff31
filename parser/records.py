"""
records.py

Normalized data structures shared by the scanner, the aggregator,
the report emitter and the inventory parser.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# Probe outcomes
STATUS_SUCCESS = "success"
STATUS_REFUSED = "refused"
STATUS_TIMEOUT = "timeout"

# Protocol labels
PROTO_TCP = "TCP"
PROTO_UDP = "UDP"
PROTO_HTTP = "HTTP"
PROTO_HTTPS = "HTTPS"

UNKNOWN_SERVICE = "Unknown"


@dataclass(frozen=True)
class Candidate:
    """
    A claim from one source that something is listening. Not verified.
    """
    service_name: str
    protocol: str
    port: int
    source: str
    image: Optional[str] = None


@dataclass(frozen=True)
class ConnectResult:
    """Outcome of a single TCP connect attempt."""
    status: str
    latency_ms: int


@dataclass(frozen=True)
class SniffResult:
    """Outcome of application-layer detection on an open port."""
    protocol: Optional[str] = None
    note: str = ""


@dataclass(frozen=True)
class ProbeResult:
    """
    Combined connect and sniff outcome for one (host, port).

    UDP ports are never probed: status and latency stay empty.
    """
    status: str
    latency_ms: Optional[int]
    detected_protocol: str
    note: str = ""

    @classmethod
    def abandoned(cls, latency_ms: int) -> "ProbeResult":
        """Result for a probe cut off by the scan deadline."""
        return cls(status=STATUS_TIMEOUT, latency_ms=latency_ms, detected_protocol=PROTO_TCP)

    @classmethod
    def unprobed(cls, protocol: str) -> "ProbeResult":
        return cls(status="", latency_ms=None, detected_protocol=protocol)


@dataclass
class ServiceRecord:
    """
    The deduplicated, user-visible unit of output.
    """
    hostname: str
    service_name: str
    protocol: str
    port: int
    status: str
    latency_ms: Optional[int]
    source: str
    note: str = ""

    FIELDS = ("hostname", "service_name", "protocol", "port", "status", "latency_ms", "source", "note")


@dataclass
class HostInfo:
    """Identity of the scanned machine, written as the log metadata line."""
    hostname: str
    os: str
    ipv4s: List[str] = field(default_factory=list)
    ipv6s: List[str] = field(default_factory=list)
    macs: List[str] = field(default_factory=list)


@dataclass
class InventoryService:
    """One entry of a protocol bucket in the device inventory."""
    port: int
    name: str
    description: Optional[str] = None
    image: Optional[str] = None
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"port": self.port, "name": self.name}
        if self.description:
            entry["Description"] = self.description
        if self.image:
            entry["Image"] = self.image
        if self.notes:
            entry["notes"] = list(self.notes)
        return entry


INVENTORY_BUCKETS = ("http", "https", "ssh", "sftp", "ftp", "vnc", "rdp", "tcp", "udp")


@dataclass
class DeviceInventory:
    """
    Per-device JSON document derived from a discovery log.
    """
    name: str
    os: str
    ipv4: List[str] = field(default_factory=list)
    ipv6: List[str] = field(default_factory=list)
    macs: List[str] = field(default_factory=list)
    buckets: Dict[str, List[InventoryService]] = field(
        default_factory=lambda: {bucket: [] for bucket in INVENTORY_BUCKETS}
    )
    last_updated: str = ""

    def to_dict(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "name": self.name,
            "os": self.os,
            "ipv4": list(self.ipv4),
            "ipv6": list(self.ipv6),
            "macs": list(self.macs),
        }
        for bucket in INVENTORY_BUCKETS:
            document[bucket] = [svc.to_dict() for svc in self.buckets.get(bucket, [])]
        document["lastupdated"] = self.last_updated
        return document

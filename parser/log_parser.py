"""
log_parser.py

Parses the discovery log written by output.emitter and converts the
first device it describes into a DeviceInventory.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from analyzer.inventory import InventoryBuilder
from output.emitter import TITLE_LINE
from parser.records import (
    DeviceInventory,
    HostInfo,
    ServiceRecord,
    PROTO_UDP,
    STATUS_SUCCESS,
)
from utils import app_logger


METADATA_FIELDS = ("hostname", "os", "ipv4s", "ipv6s", "macs")
GENERATED_PREFIX = "Generated at "


class ParseError(Exception):
    """Raised when the discovery log is unusable."""
    pass


@dataclass
class _ScanRun:
    """One appended scan block of the log."""
    host: Optional[HostInfo] = None
    generated_at: Optional[str] = None
    records: List[ServiceRecord] = field(default_factory=list)


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_metadata(line: str) -> Optional[HostInfo]:
    """
    Parse a '# host;os;ipv4s;ipv6s;macs' metadata comment.

    Returns None for any other comment line, including the column
    description line itself.
    """
    body = line.lstrip("#").strip()
    fields = body.split(";")
    if len(fields) != len(METADATA_FIELDS):
        return None
    if tuple(f.strip().lower() for f in fields) == METADATA_FIELDS:
        return None
    hostname = fields[0].strip()
    if not hostname:
        return None
    return HostInfo(
        hostname=hostname,
        os=fields[1].strip(),
        ipv4s=_split_list(fields[2]),
        ipv6s=_split_list(fields[3]),
        macs=_split_list(fields[4]),
    )


def parse_record(line: str) -> ServiceRecord:
    """
    Parse one 'hostname;service;protocol;port;status;latency;source;note' line.

    Raises:
        ValueError: If the line is not a service record
    """
    fields = line.split(";", len(ServiceRecord.FIELDS) - 1)
    if len(fields) < len(ServiceRecord.FIELDS) - 1:
        raise ValueError(f"expected {len(ServiceRecord.FIELDS)} fields, got {len(fields)}")
    fields += [""] * (len(ServiceRecord.FIELDS) - len(fields))

    hostname, service_name, protocol, port, status, latency, source, note = (f.strip() for f in fields)
    return ServiceRecord(
        hostname=hostname,
        service_name=service_name,
        protocol=protocol.upper(),
        port=int(port),
        status=status.lower(),
        latency_ms=int(float(latency)) if latency else None,
        source=source,
        note=note,
    )


def is_inventory_record(record: ServiceRecord) -> bool:
    """Reachable services, plus UDP listeners which are never probed."""
    if record.status == STATUS_SUCCESS:
        return True
    return record.protocol == PROTO_UDP and not record.status


class DiscoveryLogParser:
    """
    Reads a discovery log and builds the inventory of its first device.
    """

    def __init__(self) -> None:
        self.logger = app_logger
        self.builder = InventoryBuilder()

    def parse(self, log_path: str) -> DeviceInventory:
        """
        Parse a discovery log file.

        Args:
            log_path: Path to the semicolon-delimited discovery log

        Returns:
            DeviceInventory for the first device in the log

        Raises:
            FileNotFoundError: If the log doesn't exist
            ParseError: If no device metadata line is present
        """
        path = Path(log_path)
        if not path.exists():
            error_msg = f"Discovery log not found: {log_path}"
            self.logger.error(error_msg)
            raise FileNotFoundError(error_msg)

        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise ParseError(f"Cannot read {log_path}: {e}")

        self.logger.info(f"Parsing discovery log: {path.name}")
        return self.parse_text(text)

    def parse_text(self, text: str) -> DeviceInventory:
        """
        Build the inventory from discovery log text.

        Every scan appends its own block starting with the title line. The
        device is the one named by the first metadata line; its services
        come from the most recent block describing that device only.
        """
        runs = self._split_runs(text)
        described = [run for run in runs if run.host is not None]
        if not described:
            raise ParseError("No device metadata line found in discovery log")

        hostname = described[0].host.hostname
        latest = [run for run in described if run.host.hostname == hostname][-1]
        if len(runs) > 1:
            self.logger.debug(f"{len(runs)} scan run(s) in log, using the latest for {hostname}")

        records = [
            record for record in latest.records
            if record.hostname == hostname and is_inventory_record(record)
        ]
        self.logger.info(f"Device {hostname}: {len(records)} service(s)")
        return self.builder.build(latest.host, records, last_updated=latest.generated_at)

    def _split_runs(self, text: str) -> List[_ScanRun]:
        runs: List[_ScanRun] = [_ScanRun()]

        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line:
                continue
            run = runs[-1]

            if line.startswith("#"):
                body = line.lstrip("#").strip()
                if line == TITLE_LINE:
                    if run.host is not None or run.records:
                        runs.append(_ScanRun())
                elif body.startswith(GENERATED_PREFIX):
                    run.generated_at = body[len(GENERATED_PREFIX):].strip()
                elif run.host is None:
                    run.host = parse_metadata(line)
                continue

            if run.host is None:
                continue

            try:
                run.records.append(parse_record(line))
            except ValueError as e:
                self.logger.debug(f"Line {lineno} skipped: {e}")

        return runs

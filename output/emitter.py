"""
emitter.py

Writes the discovery log: a '#'-prefixed header block followed by one
semicolon-delimited line per service record. The log is appended to,
never rewritten, and every line is echoed to stdout.

Line format (stable, consumed by parser.log_parser):
    hostname;serviceName;protocol;port;status;latencyMs;source;note
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Iterable, Optional

from parser.records import HostInfo, ServiceRecord
from utils import app_logger, config


COMMENT = "#"
DELIMITER = ";"
TITLE_LINE = "# Service Discovery Results"
METADATA_HEADER = "# hostname;os;ipv4s;ipv6s;macs"
RECORD_HEADER = "# hostname;service name;protocol;port;status;latency ms;source;note"


class ReportWriteError(Exception):
    """Raised when the discovery log cannot be opened or written."""
    pass


def sanitize_field(value: object) -> str:
    """Render one field; delimiters and line breaks cannot leak into it."""
    if value is None:
        return ""
    text = str(value)
    for char in ("\r", "\n"):
        text = text.replace(char, " ")
    return text.replace(DELIMITER, ",").strip()


def format_record(record: ServiceRecord) -> str:
    return DELIMITER.join(
        sanitize_field(getattr(record, name)) for name in ServiceRecord.FIELDS
    )


def format_metadata(host: HostInfo) -> str:
    fields = [
        host.hostname,
        host.os,
        ",".join(host.ipv4s),
        ",".join(host.ipv6s),
        ",".join(host.macs),
    ]
    return f"{COMMENT} " + DELIMITER.join(sanitize_field(f) for f in fields)


class ReportEmitter:
    """
    Append-only writer for the discovery log.

    Use as a context manager; failing to open the log is fatal.
    """

    def __init__(
        self,
        log_path: Optional[str] = None,
        echo: bool = True,
        stream: Optional[IO[str]] = None,
    ) -> None:
        self.log_path = Path(log_path) if log_path else config.discovery_log_path()
        self.echo = echo
        self.stream = stream
        self.logger = app_logger
        self.lines_written = 0
        self._handle: Optional[IO[str]] = None

    def __enter__(self) -> "ReportEmitter":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.log_path, "a", encoding="utf-8")
        except OSError as e:
            self.logger.error(f"Cannot open discovery log {self.log_path}: {e}")
            raise ReportWriteError(f"Cannot open discovery log {self.log_path}: {e}")
        self.logger.debug(f"Writing discovery log: {self.log_path}")

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def write_line(self, line: str) -> None:
        if self._handle is None:
            raise ReportWriteError("Discovery log is not open")
        try:
            self._handle.write(line + "\n")
            self._handle.flush()
        except OSError as e:
            self.logger.error(f"Failed writing discovery log {self.log_path}: {e}")
            raise ReportWriteError(f"Failed writing discovery log {self.log_path}: {e}")
        self.lines_written += 1
        if self.echo:
            print(line, file=self.stream or sys.stdout)

    def write_header(self, host: HostInfo, generated_at: Optional[datetime] = None) -> None:
        generated_at = generated_at or datetime.now(timezone.utc)
        self.write_line(TITLE_LINE)
        self.write_line(f"{COMMENT} Generated at {generated_at.isoformat()}")
        self.write_line(METADATA_HEADER)
        self.write_line(format_metadata(host))
        self.write_line(RECORD_HEADER)

    def write_records(self, records: Iterable[ServiceRecord]) -> int:
        count = 0
        for record in records:
            self.write_line(format_record(record))
            count += 1
        return count

    def write_footer(self, summary: Iterable[str]) -> None:
        """Trailing comment lines (verbose runs only)."""
        for line in summary:
            self.write_line(f"{COMMENT} {line}")

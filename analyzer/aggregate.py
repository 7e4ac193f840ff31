"""
aggregate.py

Merges probed candidates from all sources into one ordered,
deduplicated list of service records.
"""

from typing import Dict, List, Sequence, Tuple

from parser.records import Candidate, ProbeResult, ServiceRecord, UNKNOWN_SERVICE
from utils import app_logger


RecordKey = Tuple[str, str, int]


def record_key(record: ServiceRecord) -> RecordKey:
    """(service name, detected protocol, port); names compare case-insensitively."""
    return (record.service_name.lower(), record.protocol, record.port)


class Aggregator:
    """
    Batch merge of (candidate, probe result) pairs.

    Pairs must arrive in fixed source order. The first record for a key
    wins; later ones are dropped and counted. A record named "Unknown"
    is a placeholder: it never coexists with a named record for the same
    protocol and port, and when it came first it takes the later name
    while keeping its own source.
    """

    def __init__(self, hostname: str) -> None:
        self.hostname = hostname
        self.logger = app_logger
        self.duplicates = 0

    def to_record(self, candidate: Candidate, result: ProbeResult) -> ServiceRecord:
        note = result.note
        if candidate.image:
            note = f"image={candidate.image}" + (f" {note}" if note else "")
        return ServiceRecord(
            hostname=self.hostname,
            service_name=candidate.service_name,
            protocol=result.detected_protocol,
            port=candidate.port,
            status=result.status,
            latency_ms=result.latency_ms,
            source=candidate.source,
            note=note,
        )

    def _drop(self, record: ServiceRecord, kept: ServiceRecord) -> None:
        self.duplicates += 1
        self.logger.debug(
            f"Duplicate dropped: {record.service_name}/{record.protocol}/{record.port} "
            f"from {record.source} (kept {kept.service_name} from {kept.source})"
        )

    def merge(self, pairs: Sequence[Tuple[Candidate, ProbeResult]]) -> List[ServiceRecord]:
        """
        Build the final record list.

        Output is ordered by the position of the first candidate that
        reported each port, ties broken by port number.
        """
        records: List[ServiceRecord] = []
        by_key: Dict[RecordKey, ServiceRecord] = {}
        by_slot: Dict[Tuple[str, int], List[ServiceRecord]] = {}
        first_seen: Dict[int, int] = {}

        for position, (candidate, result) in enumerate(pairs):
            first_seen.setdefault(candidate.port, position)
            record = self.to_record(candidate, result)
            key = record_key(record)
            slot = (record.protocol, record.port)
            in_slot = by_slot.setdefault(slot, [])

            if key in by_key:
                self._drop(record, by_key[key])
                continue

            if record.service_name == UNKNOWN_SERVICE and in_slot:
                self._drop(record, in_slot[0])
                continue

            placeholder = next((r for r in in_slot if r.service_name == UNKNOWN_SERVICE), None)
            if placeholder is not None:
                del by_key[record_key(placeholder)]
                placeholder.service_name = record.service_name
                if not placeholder.note:
                    placeholder.note = record.note
                by_key[record_key(placeholder)] = placeholder
                self._drop(record, placeholder)
                continue

            by_key[key] = record
            in_slot.append(record)
            records.append(record)

        records.sort(key=lambda r: (first_seen[r.port], r.port))

        if self.duplicates:
            self.logger.debug(f"{self.duplicates} duplicate record(s) dropped")
        self.logger.info(f"Aggregated {len(records)} unique service record(s)")
        return records

"""
runner.py

Scan orchestration: enumerate candidates from every source, probe each
unique TCP port once on a bounded pool, merge, and write the discovery log.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import IO, List, Optional, Sequence, Tuple

from analyzer.aggregate import Aggregator
from output.emitter import ReportEmitter, ReportWriteError
from parser.records import Candidate, HostInfo, ProbeResult, ServiceRecord, PROTO_TCP
from scanner.probe import Connector, ProbeEngine
from scanner.scheduler import ProbeScheduler
from scanner.sources import Source, build_sources
from utils import app_logger, config
from utils.host import collect_host_info


@dataclass
class ScanResult:
    """Structured scan result with all relevant information."""
    hostname: str
    log_file: str
    timestamp: str
    success: bool
    duration: float
    sources: List[str] = field(default_factory=list)
    candidates: List[Candidate] = field(default_factory=list)
    records: List[ServiceRecord] = field(default_factory=list)
    duplicates: int = 0
    abandoned: int = 0
    error_message: Optional[str] = None
    dry_run: bool = False


class ScanRunner:
    """
    Runs one service discovery scan of the local machine.
    """

    def __init__(
        self,
        sources: Optional[Sequence[Source]] = None,
        host: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        scan_timeout: Optional[float] = None,
        workers: Optional[int] = None,
        log_file: Optional[str] = None,
        host_info: Optional[HostInfo] = None,
        connector: Optional[Connector] = None,
        show_progress: bool = True,
        echo: bool = True,
        stream: Optional[IO[str]] = None,
    ) -> None:
        self.sources = list(sources) if sources is not None else build_sources()
        self.host = host or config.get("scan.host", "127.0.0.1")
        self.timeout_ms = int(timeout_ms or config.get("scan.probe_timeout_ms", 500))
        self.scan_timeout = float(scan_timeout or config.get("scan.scan_timeout_s", 120))
        self.workers = int(workers or config.get("scan.workers", 10))
        self.log_file = log_file
        self.host_info = host_info
        self.connector = connector
        self.show_progress = show_progress
        self.echo = echo
        self.stream = stream
        self.logger = app_logger

    def enumerate(self, deadline: Optional[float] = None) -> List[Candidate]:
        """Collect candidates from every source in fixed order, within the scan deadline."""
        candidates: List[Candidate] = []
        for source in self.sources:
            timeout = source.command_timeout
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.logger.warning(f"Scan deadline reached, source {source.name} skipped")
                    continue
                source.command_timeout = min(timeout, remaining)
            try:
                found = source.collect()
            finally:
                source.command_timeout = timeout
            self.logger.info(f"Source {source.name}: {len(found)} candidate(s)")
            candidates.extend(found)
        return candidates

    def _probe(
        self, candidates: Sequence[Candidate], deadline: float
    ) -> Tuple[List[Tuple[Candidate, ProbeResult]], int]:
        engine = ProbeEngine(
            host=self.host,
            timeout_ms=self.timeout_ms,
            deadline=deadline,
            connector=self.connector,
        )
        scheduler = ProbeScheduler(
            workers=self.workers,
            deadline=deadline,
            show_progress=self.show_progress,
        )

        ports = list(dict.fromkeys(c.port for c in candidates if c.protocol == PROTO_TCP))
        started = time.monotonic()

        def abandoned(port: int) -> ProbeResult:
            return ProbeResult.abandoned(int((time.monotonic() - started) * 1000))

        results = scheduler.run(ports, engine.probe_port, on_abandon=abandoned)

        pairs = [
            (c, results[c.port] if c.protocol == PROTO_TCP else ProbeResult.unprobed(c.protocol))
            for c in candidates
        ]
        return pairs, scheduler.abandoned

    def _footer(self, result: ScanResult) -> List[str]:
        return [
            f"Scan completed at {datetime.now(timezone.utc).isoformat()}",
            f"Sources: {', '.join(result.sources) or 'none'}",
            f"Candidates: {len(result.candidates)}, records: {len(result.records)}, "
            f"duplicates dropped: {result.duplicates}, probes abandoned: {result.abandoned}",
            f"Workers: {self.workers}, probe timeout: {self.timeout_ms} ms, "
            f"scan timeout: {self.scan_timeout:g} s",
        ]

    def run_scan(self, dry_run: bool = False, verbose: bool = False) -> ScanResult:
        """
        Execute a scan.

        Args:
            dry_run: Only enumerate candidates; no probing, no log written
            verbose: Append a summary footer to the discovery log

        Returns:
            ScanResult with records and statistics
        """
        start_time = time.time()
        deadline = time.monotonic() + self.scan_timeout
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        host_info = self.host_info or collect_host_info()

        emitter = ReportEmitter(self.log_file, echo=self.echo, stream=self.stream)
        result = ScanResult(
            hostname=host_info.hostname,
            log_file=str(emitter.log_path),
            timestamp=timestamp,
            success=True,
            duration=0.0,
            sources=[s.name for s in self.sources],
            dry_run=dry_run,
        )

        if not self.sources:
            self.logger.warning("No sources enabled, nothing to scan")
            return result

        self.logger.info(f"Starting discovery on {host_info.hostname} with sources: {', '.join(result.sources)}")

        if not dry_run:
            try:
                emitter.open()
            except ReportWriteError as e:
                result.success = False
                result.error_message = str(e)
                result.duration = time.time() - start_time
                return result

        try:
            result.candidates = self.enumerate(deadline)

            if dry_run:
                self.logger.info(f"Dry run - {len(result.candidates)} candidate(s), nothing probed")
                result.duration = time.time() - start_time
                return result

            pairs, result.abandoned = self._probe(result.candidates, deadline)

            aggregator = Aggregator(host_info.hostname)
            result.records = aggregator.merge(pairs)
            result.duplicates = aggregator.duplicates

            emitter.write_header(host_info)
            emitter.write_records(result.records)
            if verbose:
                emitter.write_footer(self._footer(result))

        except ReportWriteError as e:
            result.success = False
            result.error_message = str(e)
        finally:
            emitter.close()

        result.duration = time.time() - start_time
        if result.success:
            self.logger.info(
                f"Scan completed in {result.duration:.2f}s: {len(result.records)} record(s) -> {result.log_file}"
            )
        return result

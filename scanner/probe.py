"""
probe.py

Active verification of candidate ports: TCP connect with latency,
HTTP/HTTPS detection and banner capture. Results are memoized per
(host, port) for the lifetime of one engine, i.e. one scan.
"""

from __future__ import annotations

import re
import socket
import time
from typing import Callable, Optional

import httpx

from parser.records import (
    Candidate,
    ConnectResult,
    ProbeResult,
    SniffResult,
    PROTO_HTTP,
    PROTO_HTTPS,
    PROTO_TCP,
    PROTO_UDP,
    STATUS_REFUSED,
    STATUS_SUCCESS,
    STATUS_TIMEOUT,
)
from scanner.cache import ProbeCache
from utils import app_logger, config


BANNER_BYTES = 1024

_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]+")
_SPACE_RE = re.compile(r"\s+")

Connector = Callable[..., socket.socket]


def clean_banner(data: bytes) -> str:
    """Make raw banner bytes printable: no control chars, single spaces."""
    text = data.decode("utf-8", errors="replace")
    text = _CONTROL_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", text).strip()


class ProbeEngine:
    """
    Probes ports on a single host.

    The connector is injectable (defaults to socket.create_connection) so
    tests can count or fake network connects.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        deadline: Optional[float] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.host = host or config.get("scan.host", "127.0.0.1")
        self.timeout = (timeout_ms or config.get("scan.probe_timeout_ms", 500)) / 1000.0
        self.deadline = deadline
        self.logger = app_logger
        self._connector = connector or socket.create_connection
        self._connect_cache = ProbeCache()
        self._sniff_cache = ProbeCache()

    def _budget(self) -> float:
        """Seconds allowed for the next network operation."""
        if self.deadline is None:
            return self.timeout
        return min(self.timeout, self.deadline - time.monotonic())

    def _url(self, scheme: str, port: int) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{scheme}://{host}:{port}/"

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #

    def connect(self, port: int) -> ConnectResult:
        """Cached TCP connect probe."""
        return self._connect_cache.get_or_compute(
            (self.host, port), lambda: self._tcp_connect(port)
        )

    def sniff(self, port: int) -> SniffResult:
        """Cached application-layer detection; only meaningful on open ports."""
        return self._sniff_cache.get_or_compute(
            (self.host, port), lambda: self._sniff(port)
        )

    def probe_port(self, port: int, declared_protocol: str = PROTO_TCP) -> ProbeResult:
        """Connect, and sniff the protocol when the port is open generic TCP."""
        connected = self.connect(port)
        detected = declared_protocol
        note = ""

        if connected.status == STATUS_SUCCESS and declared_protocol == PROTO_TCP:
            sniffed = self.sniff(port)
            detected = sniffed.protocol or PROTO_TCP
            note = sniffed.note

        return ProbeResult(
            status=connected.status,
            latency_ms=connected.latency_ms,
            detected_protocol=detected,
            note=note,
        )

    def probe(self, candidate: Candidate) -> ProbeResult:
        """Probe a candidate. UDP has no portable liveness check and is not probed."""
        if candidate.protocol == PROTO_UDP:
            return ProbeResult.unprobed(PROTO_UDP)
        return self.probe_port(candidate.port, candidate.protocol)

    @property
    def connect_cache(self) -> ProbeCache:
        return self._connect_cache

    @property
    def sniff_cache(self) -> ProbeCache:
        return self._sniff_cache

    # ------------------------------------------------------------------ #
    # Network operations                                                 #
    # ------------------------------------------------------------------ #

    def _tcp_connect(self, port: int) -> ConnectResult:
        budget = self._budget()
        if budget <= 0:
            self.logger.debug(f"Deadline passed, not probing {self.host}:{port}")
            return ConnectResult(status=STATUS_TIMEOUT, latency_ms=0)

        start = time.monotonic()
        try:
            sock = self._connector((self.host, port), timeout=budget)
        except (socket.timeout, TimeoutError):
            status = STATUS_TIMEOUT
        except ConnectionRefusedError:
            status = STATUS_REFUSED
        except OSError as e:
            self.logger.debug(f"Connect to {self.host}:{port} failed: {e}")
            status = STATUS_REFUSED
        else:
            sock.close()
            status = STATUS_SUCCESS

        latency_ms = max(0, int(round((time.monotonic() - start) * 1000)))
        self.logger.debug(f"TCP {self.host}:{port} -> {status} ({latency_ms} ms)")
        return ConnectResult(status=status, latency_ms=latency_ms)

    def _http_status(self, url: str) -> Optional[int]:
        """Status code of a GET on *url*, None without a valid HTTP response."""
        budget = self._budget()
        if budget <= 0:
            return None
        try:
            # local services often use self-signed certificates; proxies never apply
            with httpx.Client(verify=False, timeout=budget, follow_redirects=False, trust_env=False) as client:
                response = client.get(url)
        except httpx.HTTPError as e:
            self.logger.debug(f"No HTTP answer from {url}: {e.__class__.__name__}")
            return None

        if 100 <= response.status_code <= 599:
            return response.status_code
        return None

    def _grab_banner(self, port: int) -> str:
        budget = self._budget()
        if budget <= 0:
            return ""
        try:
            with self._connector((self.host, port), timeout=budget) as sock:
                sock.settimeout(budget)
                data = sock.recv(BANNER_BYTES)
        except OSError:
            return ""
        return clean_banner(data)

    def _sniff(self, port: int) -> SniffResult:
        for scheme, label in (("http", PROTO_HTTP), ("https", PROTO_HTTPS)):
            status = self._http_status(self._url(scheme, port))
            if status is not None:
                self.logger.debug(f"{self.host}:{port} answers {label} {status}")
                return SniffResult(protocol=label)

        note = self._grab_banner(port)
        if note:
            self.logger.debug(f"Banner on {self.host}:{port}: {note}")
        return SniffResult(protocol=None, note=note)

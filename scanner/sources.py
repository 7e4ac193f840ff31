"""
sources.py

Pluggable backends that list candidate listening services without
testing reachability. Every backend is failure-tolerant: a missing
command or a permission problem yields zero candidates, never an abort.

Command output parsing lives in the module-level parse_* functions so
that backend-specific text formats stay isolated from probing.
"""

from __future__ import annotations

import re
import shutil
import socket
import subprocess
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import psutil

from parser.records import Candidate, PROTO_TCP, PROTO_UDP
from scanner.services import resolve_service_name
from utils import app_logger, config


class BackendUnavailableError(Exception):
    """Raised when a backend command or API is not present on this system."""
    pass


class BackendCommandError(Exception):
    """Raised when a backend command fails or times out."""
    pass


# (process name or None, protocol, port)
Listener = Tuple[Optional[str], str, int]

_PORT_RE = re.compile(r":(\d+)$")
_SS_PROCESS_RE = re.compile(r'users:\(\("([^"]+)",pid=(\d+)')
_DOCKER_PORT_RE = re.compile(
    r"(?:\d{1,3}(?:\.\d{1,3}){3}|\[[0-9a-fA-F:]*\]|::)"
    r":(?P<start>\d+)(?:-(?P<end>\d+))?->\d+(?:-\d+)?/(?P<proto>tcp|udp)"
)
_K8S_PORT_RE = re.compile(r"(\d+):(\d+)/([A-Za-z]+)")
_SYSTEMD_UNIT_RE = re.compile(r"(\S+)\.service\b")


def run_command(
    args: Sequence[str],
    timeout: float,
    ok_codes: Iterable[int] = (0,),
) -> str:
    """
    Run a backend command and return its stdout.

    Raises:
        BackendUnavailableError: If the executable is not in PATH
        BackendCommandError: On timeout or an unexpected exit code
    """
    if shutil.which(args[0]) is None:
        raise BackendUnavailableError(f"{args[0]} not found in PATH")

    try:
        result = subprocess.run(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout,
            check=False,
            text=True,
        )
    except subprocess.TimeoutExpired:
        raise BackendCommandError(f"{' '.join(args)} timed out after {timeout}s")
    except OSError as e:
        raise BackendCommandError(f"{' '.join(args)} could not be started: {e}")

    if result.returncode not in tuple(ok_codes):
        stderr = (result.stderr or "").strip() or f"exit code {result.returncode}"
        raise BackendCommandError(f"{' '.join(args)} failed: {stderr}")

    return result.stdout


def port_from_address(address: str) -> Optional[int]:
    """Extract the port from '*:22', '[::]:80', '127.0.0.53%lo:53' and similar."""
    match = _PORT_RE.search(address.strip())
    if not match:
        return None
    port = int(match.group(1))
    return port if 0 < port < 65536 else None


# ---------------------------------------------------------------------- #
# Command output parsers                                                  #
# ---------------------------------------------------------------------- #

def parse_lsof(text: str) -> List[Listener]:
    """
    Parse `lsof -i<PROTO> -n -P` output.

    Example row:
        sshd  812 root 3u IPv4 2189 0t0 TCP *:22 (LISTEN)
    """
    listeners: List[Listener] = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 9 or parts[0] == "COMMAND":
            continue
        for i, token in enumerate(parts[:-1]):
            if token in (PROTO_TCP, PROTO_UDP):
                address = parts[i + 1]
                # Connected sockets are clients, not servers
                if "->" in address:
                    break
                port = port_from_address(address)
                if port is not None:
                    listeners.append((parts[0], token, port))
                break
    return listeners


def parse_ss(text: str, protocol: str) -> List[Listener]:
    """
    Parse `ss -tlnp` / `ss -ulnp` output.

    Example row:
        LISTEN 0 4096 127.0.0.53%lo:53 0.0.0.0:* users:(("systemd-resolve",pid=688,fd=14))
    """
    listeners: List[Listener] = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 5 or parts[0] in ("State", "Netid"):
            continue
        port = port_from_address(parts[3])
        if port is None:
            continue
        process = None
        match = _SS_PROCESS_RE.search(line)
        if match:
            process = match.group(1)
        listeners.append((process, protocol, port))
    return listeners


def parse_netstat(text: str) -> List[Listener]:
    """
    Parse `netstat -tulnp` output.

    Example rows:
        tcp   0 0 0.0.0.0:22   0.0.0.0:* LISTEN 812/sshd
        udp6  0 0 :::5353      :::*             733/avahi-daemon
    """
    listeners: List[Listener] = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 6:
            continue
        proto = parts[0].lower()
        if proto.startswith("tcp"):
            if "LISTEN" not in parts:
                continue
            protocol = PROTO_TCP
        elif proto.startswith("udp"):
            protocol = PROTO_UDP
        else:
            continue
        port = port_from_address(parts[3])
        if port is None:
            continue
        process = None
        pid_program = parts[-1]
        if "/" in pid_program:
            process = pid_program.split("/", 1)[1] or None
        listeners.append((process, protocol, port))
    return listeners


def parse_docker_ps(text: str) -> List[Tuple[str, str, str, int]]:
    """
    Parse `docker ps --format '{{.Names}}\\t{{.Image}}\\t{{.Ports}}'` output.

    Only host-published ports count; bare exposed ports ('80/tcp') are
    internal to the container and skipped.

    Returns:
        List of (container name, image, protocol, host port)
    """
    published: List[Tuple[str, str, str, int]] = []
    for line in text.splitlines():
        fields = line.split("\t")
        if len(fields) < 3 or not fields[0].strip():
            continue
        name, image, ports = fields[0].strip(), fields[1].strip(), fields[2]
        for match in _DOCKER_PORT_RE.finditer(ports):
            start = int(match.group("start"))
            end = int(match.group("end") or start)
            for host_port in range(start, end + 1):
                published.append((name, image, match.group("proto").upper(), host_port))
    return published


def parse_kubectl_services(text: str) -> List[Tuple[str, str, str, int]]:
    """
    Parse `kubectl get services --all-namespaces --no-headers` output.

    Only NodePort and LoadBalancer services are reachable from outside
    the cluster; ClusterIP services are skipped.

    Returns:
        List of (namespace, service, protocol, node port)
    """
    services: List[Tuple[str, str, str, int]] = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 6:
            continue
        namespace, name, service_type, ports = parts[0], parts[1], parts[2], parts[5]
        if service_type not in ("NodePort", "LoadBalancer"):
            continue
        for match in _K8S_PORT_RE.finditer(ports):
            services.append((namespace, name, match.group(3).upper(), int(match.group(2))))
    return services


def parse_systemctl_units(text: str) -> List[str]:
    """Unit names (without '.service') from `systemctl list-units` output."""
    units: List[str] = []
    for line in text.splitlines():
        match = _SYSTEMD_UNIT_RE.search(line)
        if match and match.group(1) not in units:
            units.append(match.group(1))
    return units


# ---------------------------------------------------------------------- #
# Native socket table                                                     #
# ---------------------------------------------------------------------- #

def process_name(pid: Optional[int]) -> Optional[str]:
    """Name of the process owning *pid*, None if it cannot be determined."""
    if not pid:
        return None
    try:
        return psutil.Process(pid).name()
    except psutil.Error:
        return None


def native_listeners() -> List[Tuple[Optional[int], str, int]]:
    """
    Listening sockets from the OS socket table.

    TCP sockets in LISTEN state and unconnected UDP sockets.

    Returns:
        List of (pid, protocol, port)
    """
    listeners: List[Tuple[Optional[int], str, int]] = []
    for conn in psutil.net_connections(kind="inet"):
        if not conn.laddr:
            continue
        if conn.type == socket.SOCK_STREAM and conn.status == psutil.CONN_LISTEN:
            listeners.append((conn.pid, PROTO_TCP, conn.laddr.port))
        elif conn.type == socket.SOCK_DGRAM and not conn.raddr:
            listeners.append((conn.pid, PROTO_UDP, conn.laddr.port))
    return listeners


def _unique(candidates: Iterable[Candidate]) -> List[Candidate]:
    return list(dict.fromkeys(candidates))


# ---------------------------------------------------------------------- #
# Sources                                                                 #
# ---------------------------------------------------------------------- #

class Source:
    """
    Base class for candidate sources.

    Subclasses implement enumerate(); callers use collect(), which never raises.
    """

    name = "base"
    description = ""

    def __init__(self, command_timeout: Optional[float] = None) -> None:
        self.command_timeout = command_timeout or config.get("sources.command_timeout_s", 10)
        self.logger = app_logger

    def enumerate(self) -> List[Candidate]:
        raise NotImplementedError

    def collect(self) -> List[Candidate]:
        """Run the backend, logging failures and returning what was found."""
        try:
            candidates = _unique(self.enumerate())
        except BackendUnavailableError as e:
            self.logger.info(f"[{self.name}] skipped: {e}")
            return []
        except psutil.AccessDenied as e:
            self.logger.warning(f"[{self.name}] permission denied: {e}")
            return []
        except Exception as e:
            self.logger.warning(f"[{self.name}] enumeration failed: {e}", exc_info=True)
            return []

        self.logger.debug(f"[{self.name}] {len(candidates)} candidate(s)")
        return candidates

    def _run(self, *args: str, ok_codes: Iterable[int] = (0,)) -> str:
        return run_command(args, self.command_timeout, ok_codes=ok_codes)

    def _candidate(self, process: Optional[str], protocol: str, port: int) -> Candidate:
        return Candidate(
            service_name=resolve_service_name(process, port, protocol),
            protocol=protocol,
            port=port,
            source=self.name,
        )


class NativeSocketSource(Source):
    name = "native"
    description = "OS socket table via psutil (listening TCP, unconnected UDP)"

    def enumerate(self) -> List[Candidate]:
        return [
            self._candidate(process_name(pid), protocol, port)
            for pid, protocol, port in native_listeners()
        ]


class LsofSource(Source):
    name = "lsof"
    description = "lsof listening TCP sockets and UDP sockets"

    def enumerate(self) -> List[Candidate]:
        # lsof exits 1 when nothing matches
        output = self._run("lsof", "-iTCP", "-sTCP:LISTEN", "-n", "-P", ok_codes=(0, 1))
        output += "\n" + self._run("lsof", "-iUDP", "-n", "-P", ok_codes=(0, 1))
        return [self._candidate(*listener) for listener in parse_lsof(output)]


class SsSource(Source):
    name = "ss"
    description = "ss -tlnp / -ulnp socket statistics"

    def enumerate(self) -> List[Candidate]:
        listeners = parse_ss(self._run("ss", "-tlnp"), PROTO_TCP)
        listeners += parse_ss(self._run("ss", "-ulnp"), PROTO_UDP)
        return [self._candidate(*listener) for listener in listeners]


class NetstatSource(Source):
    name = "netstat"
    description = "netstat -tulnp (legacy fallback)"

    def enumerate(self) -> List[Candidate]:
        return [self._candidate(*listener) for listener in parse_netstat(self._run("netstat", "-tulnp"))]


class DockerSource(Source):
    name = "docker"
    description = "Docker containers, host-published ports only"

    def enumerate(self) -> List[Candidate]:
        output = self._run("docker", "ps", "--format", "{{.Names}}\t{{.Image}}\t{{.Ports}}")
        return [
            Candidate(
                service_name=f"Docker-{container}",
                protocol=protocol,
                port=port,
                source=self.name,
                image=image or None,
            )
            for container, image, protocol, port in parse_docker_ps(output)
        ]


class SystemdSource(Source):
    name = "systemd"
    description = "Running systemd services and their listening sockets"

    def _main_pid(self, unit: str) -> Optional[int]:
        raw = self._run("systemctl", "show", "-p", "MainPID", "--value", f"{unit}.service").strip()
        try:
            pid = int(raw)
        except ValueError:
            return None
        return pid or None

    def enumerate(self) -> List[Candidate]:
        units = parse_systemctl_units(self._run(
            "systemctl", "list-units", "--type=service", "--state=running",
            "--no-pager", "--no-legend", "--plain",
        ))
        if not units:
            return []

        by_pid: Dict[int, List[Tuple[str, int]]] = {}
        for pid, protocol, port in native_listeners():
            if pid:
                by_pid.setdefault(pid, []).append((protocol, port))

        candidates: List[Candidate] = []
        for unit in units:
            try:
                pid = self._main_pid(unit)
            except BackendCommandError as e:
                self.logger.debug(f"[{self.name}] {unit}: {e}")
                continue
            if not pid:
                continue
            for protocol, port in by_pid.get(pid, []):
                if protocol == PROTO_TCP:
                    candidates.append(Candidate(unit, protocol, port, self.name))
        return candidates


class KubernetesSource(Source):
    name = "kubernetes"
    description = "Kubernetes NodePort/LoadBalancer services"

    def enumerate(self) -> List[Candidate]:
        output = self._run("kubectl", "get", "services", "--all-namespaces", "--no-headers")
        return [
            Candidate(f"K8s-{namespace}-{service}", protocol, port, self.name)
            for namespace, service, protocol, port in parse_kubectl_services(output)
        ]


# Fixed iteration order; earlier sources win on duplicate records.
SOURCE_CLASSES = (
    NativeSocketSource,
    LsofSource,
    SsSource,
    NetstatSource,
    DockerSource,
    SystemdSource,
    KubernetesSource,
)


def list_sources() -> Dict[str, str]:
    """Return available sources with descriptions."""
    return {cls.name: cls.description for cls in SOURCE_CLASSES}


def build_sources(
    disabled: Iterable[str] = (),
    command_timeout: Optional[float] = None,
) -> List[Source]:
    """Instantiate the sources enabled in config and not explicitly disabled."""
    disabled = set(disabled)
    return [
        cls(command_timeout=command_timeout)
        for cls in SOURCE_CLASSES
        if cls.name not in disabled and config.get(f"sources.{cls.name}", True)
    ]

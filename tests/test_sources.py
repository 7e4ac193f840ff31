"""Tests for candidate sources and service-name resolution."""

import socket
import subprocess
from types import SimpleNamespace

import psutil
import pytest

import scanner.services as services
import scanner.sources as sources
from parser.records import Candidate
from scanner.services import resolve_service_name
from scanner.sources import (
    DockerSource,
    KubernetesSource,
    LsofSource,
    NativeSocketSource,
    NetstatSource,
    SsSource,
    SystemdSource,
    BackendCommandError,
    build_sources,
    parse_docker_ps,
    parse_kubectl_services,
    parse_lsof,
    parse_netstat,
    parse_ss,
    parse_systemctl_units,
    port_from_address,
)


LSOF_TCP = """\
COMMAND    PID USER   FD   TYPE DEVICE SIZE/OFF NODE NAME
sshd       812 root    3u  IPv4  21895      0t0  TCP *:22 (LISTEN)
sshd       812 root    4u  IPv6  21897      0t0  TCP *:22 (LISTEN)
nginx     1040 root    6u  IPv4  24410      0t0  TCP 127.0.0.1:8080 (LISTEN)
"""

LSOF_UDP = """\
COMMAND    PID   USER   FD   TYPE DEVICE SIZE/OFF NODE NAME
avahi-dae  733  avahi   12u  IPv4  19881      0t0  UDP *:5353
chrome    2210   user   45u  IPv4  88120      0t0  UDP 10.0.0.5:51000->142.250.1.1:443
"""

SS_TCP = """\
State  Recv-Q Send-Q Local Address:Port  Peer Address:Port Process
LISTEN 0      4096   127.0.0.53%lo:53    0.0.0.0:*         users:(("systemd-resolve",pid=688,fd=14))
LISTEN 0      128    0.0.0.0:22          0.0.0.0:*         users:(("sshd",pid=812,fd=3))
LISTEN 0      511    [::]:80             [::]:*
"""

NETSTAT = """\
Active Internet connections (only servers)
Proto Recv-Q Send-Q Local Address           Foreign Address         State       PID/Program name
tcp        0      0 0.0.0.0:22              0.0.0.0:*               LISTEN      812/sshd
tcp6       0      0 :::3306                 :::*                    LISTEN      950/mysqld
tcp        0      0 10.0.0.5:40022          10.0.0.9:443            ESTABLISHED 2210/chrome
udp        0      0 0.0.0.0:68              0.0.0.0:*                           -
"""

DOCKER_PS = (
    "web\tnginx:1.27\t0.0.0.0:8080->80/tcp, [::]:8080->80/tcp, 443/tcp\n"
    "dns\tpihole/pihole\t0.0.0.0:53->53/udp, 0.0.0.0:5300-5301->5300-5301/tcp\n"
    "worker\tpython:3.12\t\n"
)

KUBECTL = """\
default      kubernetes   ClusterIP      10.96.0.1      <none>        443/TCP                      30d
web          frontend     NodePort       10.96.12.7     <none>        80:30080/TCP,443:30443/TCP   2d
monitoring   grafana      LoadBalancer   10.96.40.2     192.0.2.10    3000:31300/TCP               5d
"""

SYSTEMCTL = """\
cron.service     loaded active running Regular background program processing daemon
ssh.service      loaded active running OpenBSD Secure Shell server
"""


@pytest.fixture
def no_services_db(monkeypatch):
    monkeypatch.setattr(services, "lookup_services_db", lambda port, protocol="tcp": None)


def fake_run(outputs):
    """Source._run replacement keyed by the first two command words."""
    def run(self, *args, ok_codes=(0,)):
        key = " ".join(args[:2])
        if key not in outputs:
            raise BackendCommandError(f"unexpected command {args}")
        return outputs[key]
    return run


class TestParsers:
    @pytest.mark.parametrize(
        "address, port",
        [("*:22", 22), ("[::]:80", 80), ("127.0.0.53%lo:53", 53), ("0.0.0.0:*", None), (":::3306", 3306)],
    )
    def test_port_from_address(self, address, port):
        assert port_from_address(address) == port

    def test_lsof(self):
        assert parse_lsof(LSOF_TCP) == [("sshd", "TCP", 22), ("sshd", "TCP", 22), ("nginx", "TCP", 8080)]
        assert parse_lsof(LSOF_UDP) == [("avahi-dae", "UDP", 5353)]

    def test_ss(self):
        assert parse_ss(SS_TCP, "TCP") == [
            ("systemd-resolve", "TCP", 53),
            ("sshd", "TCP", 22),
            (None, "TCP", 80),
        ]

    def test_netstat(self):
        assert parse_netstat(NETSTAT) == [
            ("sshd", "TCP", 22),
            ("mysqld", "TCP", 3306),
            (None, "UDP", 68),
        ]

    def test_docker_published_ports_only(self):
        assert parse_docker_ps(DOCKER_PS) == [
            ("web", "nginx:1.27", "TCP", 8080),
            ("web", "nginx:1.27", "TCP", 8080),
            ("dns", "pihole/pihole", "UDP", 53),
            ("dns", "pihole/pihole", "TCP", 5300),
            ("dns", "pihole/pihole", "TCP", 5301),
        ]

    def test_kubectl_external_services_only(self):
        assert parse_kubectl_services(KUBECTL) == [
            ("web", "frontend", "TCP", 30080),
            ("web", "frontend", "TCP", 30443),
            ("monitoring", "grafana", "TCP", 31300),
        ]

    def test_systemctl_units(self):
        assert parse_systemctl_units(SYSTEMCTL) == ["cron", "ssh"]


class TestNameResolution:
    def test_process_name_wins(self):
        assert resolve_service_name("nginx", 80) == "nginx"

    def test_services_db_before_static_table(self, monkeypatch):
        monkeypatch.setattr(services, "lookup_services_db", lambda port, protocol="tcp": "http")
        assert resolve_service_name(None, 80) == "http"

    def test_static_table_fallback(self, no_services_db):
        assert resolve_service_name("Unknown", 6379) == "Redis"
        assert resolve_service_name("", 22) == "SSH"

    def test_unknown_as_last_resort(self, no_services_db):
        assert resolve_service_name(None, 48123) == "Unknown"


class TestSources:
    def test_lsof_source(self, monkeypatch):
        monkeypatch.setattr(LsofSource, "_run", fake_run({"lsof -iTCP": LSOF_TCP, "lsof -iUDP": LSOF_UDP}))
        candidates = LsofSource().collect()
        assert candidates == [
            Candidate("sshd", "TCP", 22, "lsof"),
            Candidate("nginx", "TCP", 8080, "lsof"),
            Candidate("avahi-dae", "UDP", 5353, "lsof"),
        ]

    def test_ss_source_resolves_missing_process(self, monkeypatch, no_services_db):
        monkeypatch.setattr(SsSource, "_run", fake_run({"ss -tlnp": SS_TCP, "ss -ulnp": ""}))
        names = [(c.service_name, c.port) for c in SsSource().collect()]
        assert names == [("systemd-resolve", 53), ("sshd", 22), ("HTTP", 80)]

    def test_netstat_source(self, monkeypatch, no_services_db):
        monkeypatch.setattr(NetstatSource, "_run", fake_run({"netstat -tulnp": NETSTAT}))
        candidates = NetstatSource().collect()
        assert [(c.service_name, c.protocol, c.port) for c in candidates] == [
            ("sshd", "TCP", 22),
            ("mysqld", "TCP", 3306),
            ("Unknown", "UDP", 68),
        ]

    def test_docker_source(self, monkeypatch):
        monkeypatch.setattr(DockerSource, "_run", fake_run({"docker ps": DOCKER_PS}))
        candidates = DockerSource().collect()
        assert candidates[0] == Candidate("Docker-web", "TCP", 8080, "docker", image="nginx:1.27")
        assert len(candidates) == 4

    def test_kubernetes_source(self, monkeypatch):
        monkeypatch.setattr(KubernetesSource, "_run", fake_run({"kubectl get": KUBECTL}))
        assert [(c.service_name, c.port) for c in KubernetesSource().collect()] == [
            ("K8s-web-frontend", 30080),
            ("K8s-web-frontend", 30443),
            ("K8s-monitoring-grafana", 31300),
        ]

    def test_systemd_source_maps_main_pid_to_sockets(self, monkeypatch):
        def run(self, *args, ok_codes=(0,)):
            if args[1] == "list-units":
                return SYSTEMCTL
            return "812\n" if args[-1] == "ssh.service" else "0\n"

        monkeypatch.setattr(SystemdSource, "_run", run)
        monkeypatch.setattr(sources, "native_listeners", lambda: [(812, "TCP", 22), (812, "UDP", 9), (950, "TCP", 3306)])
        assert SystemdSource().collect() == [Candidate("ssh", "TCP", 22, "systemd")]

    def test_native_source(self, monkeypatch, no_services_db):
        conns = [
            SimpleNamespace(laddr=SimpleNamespace(port=22), raddr=(), type=socket.SOCK_STREAM,
                            status=psutil.CONN_LISTEN, pid=None),
            SimpleNamespace(laddr=SimpleNamespace(port=44000), raddr=SimpleNamespace(port=443),
                            type=socket.SOCK_STREAM, status=psutil.CONN_ESTABLISHED, pid=None),
            SimpleNamespace(laddr=SimpleNamespace(port=5353), raddr=(), type=socket.SOCK_DGRAM,
                            status=psutil.CONN_NONE, pid=None),
        ]
        monkeypatch.setattr(psutil, "net_connections", lambda kind="inet": conns)
        assert NativeSocketSource().collect() == [
            Candidate("SSH", "TCP", 22, "native"),
            Candidate("Unknown", "UDP", 5353, "native"),
        ]


class TestFailureTolerance:
    def test_missing_command_yields_nothing(self, monkeypatch):
        monkeypatch.setattr(sources.shutil, "which", lambda name: None)
        assert DockerSource().collect() == []
        assert KubernetesSource().collect() == []

    def test_failing_command_yields_nothing(self, monkeypatch):
        monkeypatch.setattr(sources.shutil, "which", lambda name: f"/usr/bin/{name}")
        monkeypatch.setattr(
            sources.subprocess, "run",
            lambda *a, **kw: subprocess.CompletedProcess(a[0], 2, stdout="", stderr="permission denied"),
        )
        assert SsSource().collect() == []

    def test_command_timeout_yields_nothing(self, monkeypatch):
        def timeout(*a, **kw):
            raise subprocess.TimeoutExpired(cmd=a[0], timeout=1)

        monkeypatch.setattr(sources.shutil, "which", lambda name: f"/usr/bin/{name}")
        monkeypatch.setattr(sources.subprocess, "run", timeout)
        assert NetstatSource().collect() == []

    def test_access_denied_yields_nothing(self, monkeypatch):
        def denied(kind="inet"):
            raise psutil.AccessDenied()

        monkeypatch.setattr(psutil, "net_connections", denied)
        assert NativeSocketSource().collect() == []


def test_build_sources_order_and_disable(config_env):
    config_env(INCLUDE_KUBERNETES="false")
    names = [s.name for s in build_sources(disabled=["lsof"])]
    assert names == ["native", "ss", "netstat", "docker", "systemd"]

"""pytest configuration and shared fixtures for ServiceDiscovery tests."""

import os
import socket
import ssl
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from parser.records import Candidate, HostInfo
from scanner.sources import Source
from utils import config


DATA_DIR = Path(__file__).parent / "data"


class _OkHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        body = b"ok"
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


class StaticSource(Source):
    """Source returning a fixed candidate list."""

    def __init__(self, name, candidates):
        super().__init__(command_timeout=1)
        self.name = name
        self._candidates = list(candidates)

    def enumerate(self):
        return list(self._candidates)


@pytest.fixture
def http_server():
    """Stub HTTP server answering 200 OK; yields its port."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), _OkHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[1]
    server.shutdown()
    server.server_close()


@pytest.fixture
def https_server():
    """Stub HTTPS server with a self-signed certificate; yields its port."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(DATA_DIR / "localhost.crt", DATA_DIR / "localhost.key")
    server = ThreadingHTTPServer(("127.0.0.1", 0), _OkHandler)
    server.socket = context.wrap_socket(server.socket, server_side=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server.server_address[1]
    server.shutdown()
    server.server_close()


@pytest.fixture
def refused_port():
    """A bound but non-listening port: connects are refused."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def banner_server():
    """TCP server that greets every connection with an SSH-style banner."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    listener.bind(("127.0.0.1", 0))
    listener.listen(8)
    listener.settimeout(0.1)
    stop = threading.Event()

    def serve():
        while not stop.is_set():
            try:
                conn, _ = listener.accept()
            except OSError:
                continue
            with conn:
                try:
                    conn.sendall(b"SSH-2.0-OpenSSH_9.6\r\n")
                    conn.settimeout(0.2)
                    conn.recv(1024)
                except OSError:
                    pass

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield listener.getsockname()[1]
    stop.set()
    thread.join(timeout=1)
    listener.close()


@pytest.fixture
def static_source():
    """Factory for sources with a fixed candidate list."""
    return StaticSource


@pytest.fixture
def candidate():
    def make(name, protocol, port, source="native", image=None):
        return Candidate(service_name=name, protocol=protocol, port=port, source=source, image=image)
    return make


@pytest.fixture
def host_info():
    return HostInfo(
        hostname="testhost",
        os="Linux 6.8.0",
        ipv4s=["192.168.1.20"],
        ipv6s=["2001:db8::20"],
        macs=["aa:bb:cc:dd:ee:ff"],
    )


@pytest.fixture
def config_env():
    """Apply environment overrides to the shared config; restored afterwards."""
    saved = dict(os.environ)

    def apply(**values):
        os.environ.update(values)
        config.reload()
        return config

    yield apply
    os.environ.clear()
    os.environ.update(saved)
    config.reload()

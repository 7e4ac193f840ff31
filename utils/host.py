"""
host.py

Local host identity used for the discovery log header:
hostname, operating system, addresses and MACs.
"""

import platform
import socket
from typing import List

import psutil

from parser.records import HostInfo
from utils.logger import app_logger


_ZERO_MAC = "00:00:00:00:00:00"


def _is_reportable_ipv4(addr: str) -> bool:
    return not (addr.startswith("127.") or addr.startswith("169.254."))


def _is_reportable_ipv6(addr: str) -> bool:
    addr = addr.split("%", 1)[0].lower()
    return addr != "::1" and not addr.startswith("fe80:")


def describe_os() -> str:
    """Short OS description, e.g. 'Linux 6.8.0'."""
    system = platform.system() or "Unknown"
    release = platform.release()
    return f"{system} {release}".strip()


def collect_host_info() -> HostInfo:
    """
    Gather hostname, OS and interface addresses of the local machine.

    Loopback and link-local addresses are skipped. If no IPv4 address
    is found the hostname itself is reported as the only IPv4 entry.
    """
    hostname = socket.gethostname()
    ipv4s: List[str] = []
    ipv6s: List[str] = []
    macs: List[str] = []

    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, psutil.Error) as e:
        app_logger.warning(f"Could not enumerate network interfaces: {e}")
        interfaces = {}

    for name, addrs in interfaces.items():
        for addr in addrs:
            if addr.family == socket.AF_INET and _is_reportable_ipv4(addr.address):
                if addr.address not in ipv4s:
                    ipv4s.append(addr.address)
            elif addr.family == socket.AF_INET6 and _is_reportable_ipv6(addr.address):
                value = addr.address.split("%", 1)[0]
                if value not in ipv6s:
                    ipv6s.append(value)
            elif addr.family == psutil.AF_LINK:
                mac = addr.address.replace("-", ":").lower()
                if mac and mac != _ZERO_MAC and mac not in macs:
                    macs.append(mac)

    if not ipv4s:
        ipv4s = [hostname]

    return HostInfo(
        hostname=hostname,
        os=describe_os(),
        ipv4s=ipv4s,
        ipv6s=ipv6s,
        macs=macs,
    )

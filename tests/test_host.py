"""Tests for local host identity collection."""

import socket
from types import SimpleNamespace

import psutil

from utils import host


def addr(family, address):
    return SimpleNamespace(family=family, address=address)


def test_collects_reportable_addresses(monkeypatch):
    monkeypatch.setattr(host.socket, "gethostname", lambda: "nas01")
    monkeypatch.setattr(psutil, "net_if_addrs", lambda: {
        "lo": [addr(socket.AF_INET, "127.0.0.1"), addr(socket.AF_INET6, "::1"),
               addr(psutil.AF_LINK, "00:00:00:00:00:00")],
        "eth0": [addr(socket.AF_INET, "192.168.1.10"), addr(socket.AF_INET6, "fe80::1%eth0"),
                 addr(socket.AF_INET6, "fd00::10"), addr(psutil.AF_LINK, "AA-BB-CC-DD-EE-01")],
        "eth1": [addr(socket.AF_INET, "169.254.3.4")],
    })

    info = host.collect_host_info()

    assert info.hostname == "nas01"
    assert info.ipv4s == ["192.168.1.10"]
    assert info.ipv6s == ["fd00::10"]
    assert info.macs == ["aa:bb:cc:dd:ee:01"]
    assert info.os


def test_hostname_used_when_no_ipv4(monkeypatch):
    monkeypatch.setattr(host.socket, "gethostname", lambda: "lonely")
    monkeypatch.setattr(psutil, "net_if_addrs", lambda: {})
    assert host.collect_host_info().ipv4s == ["lonely"]

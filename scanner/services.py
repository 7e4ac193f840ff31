"""
services.py

Service-name resolution for discovered ports.
Fallback order: process name, OS services database, well-known table, "Unknown".
"""

import socket
from typing import Dict, Optional

from parser.records import UNKNOWN_SERVICE


WELL_KNOWN_PORTS: Dict[int, str] = {
    21: "FTP",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    110: "POP3",
    143: "IMAP",
    443: "HTTPS",
    993: "IMAPS",
    995: "POP3S",
    1433: "MSSQL",
    1521: "Oracle",
    3306: "MySQL",
    3389: "RDP",
    5432: "PostgreSQL",
    5900: "VNC",
    6379: "Redis",
    8080: "HTTP-Alt",
    8443: "HTTPS-Alt",
    9000: "Jenkins",
    27017: "MongoDB",
}


def lookup_services_db(port: int, protocol: str = "tcp") -> Optional[str]:
    """Look the port up in the OS services database (/etc/services)."""
    try:
        return socket.getservbyport(port, protocol.lower())
    except (OSError, OverflowError, TypeError):
        return None


def well_known_name(port: int) -> Optional[str]:
    return WELL_KNOWN_PORTS.get(port)


def resolve_service_name(
    process_name: Optional[str],
    port: int,
    protocol: str = "tcp",
) -> str:
    """
    Pick the best available name for a listening port.

    Args:
        process_name: Name of the owning process, if known
        port: Listening port
        protocol: "tcp" or "udp", used for the services database lookup

    Returns:
        A non-empty service name, "Unknown" as last resort
    """
    if process_name and process_name.strip() and process_name != UNKNOWN_SERVICE:
        return process_name.strip()

    return (
        lookup_services_db(port, protocol)
        or well_known_name(port)
        or UNKNOWN_SERVICE
    )

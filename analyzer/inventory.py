"""
inventory.py

Buckets service records into the per-device inventory document
using protocol and well-known-port heuristics.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional, Tuple

from parser.records import (
    DeviceInventory,
    HostInfo,
    InventoryService,
    ServiceRecord,
    PROTO_HTTP,
    PROTO_HTTPS,
    PROTO_UDP,
)
from scanner.services import well_known_name


IMAGE_PREFIX = "image="

FTP_PORTS = {20, 21, 990}
VNC_PORTS = range(5900, 6000)
RDP_PORTS = {3389}
SSH_PORTS = {22}
HTTPS_PORTS = {443, 8443}
HTTP_PORTS = {80, 8080}


def classify(record: ServiceRecord) -> str:
    """Name of the inventory bucket for a record; 'tcp' when nothing matches."""
    name = record.service_name.lower()
    port = record.port

    if record.protocol == PROTO_UDP:
        return "udp"
    if record.protocol == PROTO_HTTPS:
        return "https"
    if record.protocol == PROTO_HTTP:
        return "http"
    if "sftp" in name:
        return "sftp"
    if port in SSH_PORTS or "ssh" in name:
        return "ssh"
    if port in FTP_PORTS or "ftp" in name:
        return "ftp"
    if port in VNC_PORTS or "vnc" in name:
        return "vnc"
    if port in RDP_PORTS or "rdp" in name:
        return "rdp"
    if port in HTTPS_PORTS:
        return "https"
    if port in HTTP_PORTS:
        return "http"
    return "tcp"


def split_note(note: str) -> Tuple[Optional[str], str]:
    """Separate a leading 'image=<name>' tag from the free-text note."""
    note = note.strip()
    if not note.startswith(IMAGE_PREFIX):
        return None, note
    tag, _, rest = note.partition(" ")
    return tag[len(IMAGE_PREFIX):] or None, rest.strip()


def to_inventory_service(record: ServiceRecord) -> InventoryService:
    image, note = split_note(record.note)
    description = well_known_name(record.port)
    if description and description.lower() == record.service_name.lower():
        description = None
    return InventoryService(
        port=record.port,
        name=record.service_name,
        description=description,
        image=image,
        notes=[note] if note else [],
    )


class InventoryBuilder:
    """
    Builds a DeviceInventory from one device's metadata and records.
    """

    def build(
        self,
        host: HostInfo,
        records: Iterable[ServiceRecord],
        last_updated: Optional[str] = None,
    ) -> DeviceInventory:
        inventory = DeviceInventory(
            name=host.hostname,
            os=host.os,
            ipv4=list(host.ipv4s),
            ipv6=list(host.ipv6s),
            macs=list(host.macs),
            last_updated=last_updated or datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )

        for record in records:
            inventory.buckets[classify(record)].append(to_inventory_service(record))

        for services in inventory.buckets.values():
            services.sort(key=lambda svc: svc.port)

        return inventory

"""
json_generator.py

Writes per-device inventory JSON documents.
"""

import json
import re
from pathlib import Path
from typing import Optional

from parser.records import DeviceInventory
from utils import app_logger, config


_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


class InventoryJSONGenerator:
    """
    Serializes a DeviceInventory with a stable key order.
    """

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir or config.get("paths.inventory_dir", "inventory"))
        self.logger = app_logger

    def default_path(self, inventory: DeviceInventory) -> Path:
        stem = _UNSAFE_FILENAME.sub("_", inventory.name).strip("_") or "device"
        return self.output_dir / f"{stem}.json"

    def generate(self, inventory: DeviceInventory, output_path: Optional[str] = None) -> Path:
        """
        Write the inventory JSON.

        Args:
            inventory: Device inventory to serialize
            output_path: Explicit file path; defaults to <inventory_dir>/<name>.json

        Returns:
            Path of the written file
        """
        path = Path(output_path) if output_path else self.default_path(inventory)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            json.dump(inventory.to_dict(), f, indent=4)
            f.write("\n")

        self.logger.info(f"Inventory saved: {path}")
        return path

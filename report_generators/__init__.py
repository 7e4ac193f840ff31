"""
report_generators package

Report generation utilities (inventory JSON)
"""

from report_generators.json_generator import InventoryJSONGenerator

__all__ = ["InventoryJSONGenerator"]

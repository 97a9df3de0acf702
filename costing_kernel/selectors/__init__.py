"""Selectors for the costing kernel (read side)."""

from costing_kernel.selectors.cogs_selector import CogsSelector
from costing_kernel.selectors.inventory_selector import InventorySelector

__all__ = [
    "CogsSelector",
    "InventorySelector",
]

"""
Pure domain layer.

Value helpers, DTOs and the clock abstraction, with NO dependencies on
the ORM or the database.  All DTOs are immutable.
"""

from costing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from costing_kernel.domain.dtos import (
    AllocationRecord,
    BundleComponentSpec,
    CogsRunItemRecord,
    CogsRunSummary,
    CostingMethod,
    CostingResult,
    CostingStatus,
    DailyCogs,
    ItemRecord,
    LayerRecord,
    LayerSourceType,
    OrderMargin,
    ReturnLine,
    RunItemStatus,
    ShipmentLine,
    SnapshotRecord,
    StockInLine,
    StockInResult,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "AllocationRecord",
    "BundleComponentSpec",
    "CogsRunItemRecord",
    "CogsRunSummary",
    "CostingMethod",
    "CostingResult",
    "CostingStatus",
    "DailyCogs",
    "ItemRecord",
    "LayerRecord",
    "LayerSourceType",
    "OrderMargin",
    "ReturnLine",
    "RunItemStatus",
    "ShipmentLine",
    "SnapshotRecord",
    "StockInLine",
    "StockInResult",
]

"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the costing system's
    boundaries: collaborator inputs (ShipmentLine, ReturnLine, StockInLine,
    BundleComponentSpec), engine results (CostingResult, AllocationRecord)
    and read-side records (ItemRecord, LayerRecord, SnapshotRecord,
    CogsRunSummary, DailyCogs, OrderMargin).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Services and selectors return DTOs, never ORM entities.
    - CostingMethod is an explicit enum; no dispatch on strings or types.

Data flow:
    ShipmentLine -> CogsAllocationEngine -> CogsAllocation rows -> CostingResult
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from costing_kernel.exceptions import InvalidCostingMethodError

if TYPE_CHECKING:
    from costing_kernel.models.cogs import CogsAllocationModel
    from costing_kernel.models.cogs_run import CogsRunItemModel, CogsRunModel
    from costing_kernel.models.inventory import CostSnapshotModel, ReceiptLayerModel
    from costing_kernel.models.item import ItemModel


class CostingMethod(str, Enum):
    """Costing methods selectable per call."""

    FIFO = "FIFO"  # First-in, first-out over receipt layers
    AVG = "AVG"    # Weighted moving average over the cost snapshot

    @classmethod
    def parse(cls, value: CostingMethod | str) -> CostingMethod:
        """Resolve a method from its enum member or its name."""
        if isinstance(value, CostingMethod):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidCostingMethodError(value) from None


class CostingStatus(str, Enum):
    """Outcome of a costing or reversal call that did not raise."""

    COSTED = "COSTED"
    ALREADY_COSTED = "ALREADY_COSTED"
    REVERSED = "REVERSED"
    ALREADY_REVERSED = "ALREADY_REVERSED"


class LayerSourceType(str, Enum):
    """Where a receipt layer came from."""

    OPENING_BALANCE = "OPENING_BALANCE"
    STOCK_IN = "STOCK_IN"


class RunItemStatus(str, Enum):
    """Per-line outcome inside a COGS batch run."""

    SUCCESSFUL = "successful"
    SKIPPED = "skipped"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Collaborator inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ShipmentLine:
    """An order line that transitioned to shipped."""

    order_id: str
    sku: str
    qty: Decimal
    shipped_at: datetime


@dataclass(frozen=True, slots=True)
class ReturnLine:
    """An order line that came back."""

    order_id: str
    sku: str
    return_qty: Decimal
    return_date: datetime | date


@dataclass(frozen=True, slots=True)
class StockInLine:
    """One line of a stock-in document."""

    sku: str
    qty: Decimal
    unit_cost: Decimal


@dataclass(frozen=True, slots=True)
class BundleComponentSpec:
    """One row of a bundle recipe, as supplied by an administrator."""

    component_sku: str
    quantity_per_bundle: Decimal


# ---------------------------------------------------------------------------
# Engine results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AllocationRecord:
    """Frozen snapshot of one CogsAllocation row."""

    id: UUID
    order_id: str
    sku: str
    shipped_at: datetime
    method: CostingMethod
    qty: Decimal
    unit_cost_used: Decimal
    amount: Decimal
    is_reversal: bool
    source_layer_id: UUID | None

    @classmethod
    def from_model(cls, model: CogsAllocationModel) -> AllocationRecord:
        return cls(
            id=model.id,
            order_id=model.order_id,
            sku=model.sku,
            shipped_at=model.shipped_at,
            method=CostingMethod(model.method),
            qty=model.qty,
            unit_cost_used=model.unit_cost_used,
            amount=model.amount,
            is_reversal=model.is_reversal,
            source_layer_id=model.source_layer_id,
        )


@dataclass(frozen=True, slots=True)
class CostingResult:
    """
    Outcome of apply_cogs_for_order_shipped / apply_return_reversal.

    For ALREADY_COSTED and ALREADY_REVERSED the allocations are the rows
    written by the first successful call; nothing new was written.
    """

    order_id: str
    sku: str
    method: CostingMethod
    status: CostingStatus
    allocations: tuple[AllocationRecord, ...]
    total_amount: Decimal

    @property
    def is_new(self) -> bool:
        return self.status in (CostingStatus.COSTED, CostingStatus.REVERSED)


# ---------------------------------------------------------------------------
# Read-side records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ItemRecord:
    sku: str
    display_name: str
    is_bundle: bool
    default_unit_cost: Decimal

    @classmethod
    def from_model(cls, model: ItemModel) -> ItemRecord:
        return cls(
            sku=model.sku,
            display_name=model.display_name,
            is_bundle=model.is_bundle,
            default_unit_cost=model.default_unit_cost,
        )


@dataclass(frozen=True, slots=True)
class LayerRecord:
    id: UUID
    sku: str
    received_at: datetime
    sequence: int
    qty_received: Decimal
    qty_remaining: Decimal
    unit_cost: Decimal
    source_type: LayerSourceType
    source_ref: str | None
    voided: bool

    @classmethod
    def from_model(cls, model: ReceiptLayerModel) -> LayerRecord:
        return cls(
            id=model.id,
            sku=model.sku,
            received_at=model.received_at,
            sequence=model.sequence,
            qty_received=model.qty_received,
            qty_remaining=model.qty_remaining,
            unit_cost=model.unit_cost,
            source_type=LayerSourceType(model.source_type),
            source_ref=model.source_ref,
            voided=model.voided,
        )


@dataclass(frozen=True, slots=True)
class SnapshotRecord:
    sku: str
    on_hand_qty: Decimal
    on_hand_value: Decimal
    avg_unit_cost: Decimal

    @classmethod
    def from_model(cls, model: CostSnapshotModel) -> SnapshotRecord:
        return cls(
            sku=model.sku,
            on_hand_qty=model.on_hand_qty,
            on_hand_value=model.on_hand_value,
            avg_unit_cost=model.avg_unit_cost,
        )


@dataclass(frozen=True, slots=True)
class DailyCogs:
    """Net COGS recognized on one calendar day of the reporting timezone."""

    day: date
    amount: Decimal
    allocation_count: int


@dataclass(frozen=True, slots=True)
class OrderMargin:
    order_id: str
    revenue: Decimal
    cogs: Decimal

    @property
    def margin(self) -> Decimal:
        return self.revenue - self.cogs


@dataclass(frozen=True, slots=True)
class CogsRunItemRecord:
    order_id: str
    sku: str
    qty: Decimal
    status: RunItemStatus
    reason: str | None

    @classmethod
    def from_model(cls, model: CogsRunItemModel) -> CogsRunItemRecord:
        return cls(
            order_id=model.order_id,
            sku=model.sku,
            qty=model.qty,
            status=RunItemStatus(model.status),
            reason=model.reason,
        )


@dataclass(frozen=True, slots=True)
class CogsRunSummary:
    run_id: UUID
    method: CostingMethod
    start_date: date | None
    end_date: date | None
    started_at: datetime
    finished_at: datetime | None
    total: int
    successful: int
    skipped: int
    failed: int
    items: tuple[CogsRunItemRecord, ...]

    @classmethod
    def from_model(
        cls,
        model: CogsRunModel,
        items: list[CogsRunItemModel],
    ) -> CogsRunSummary:
        return cls(
            run_id=model.id,
            method=CostingMethod(model.method),
            start_date=model.start_date,
            end_date=model.end_date,
            started_at=model.started_at,
            finished_at=model.finished_at,
            total=model.total,
            successful=model.successful,
            skipped=model.skipped,
            failed=model.failed,
            items=tuple(CogsRunItemRecord.from_model(i) for i in items),
        )


@dataclass(frozen=True, slots=True)
class StockInResult:
    """A recorded stock-in document and the layers it created."""

    document_id: UUID
    reference: str
    received_at: datetime
    layers: tuple[LayerRecord, ...]

"""
costing_engines.types -- Value objects exchanged with the pure engines.

Responsibility:
    Define the immutable inputs (stock positions, layer and snapshot state,
    prior allocations) and outputs (allocation drafts and explicit mutations)
    of every costing engine.  Engines never see ORM rows: the service loads
    the SKU's current rows, converts them to these states, calls the engine
    and applies the returned mutations.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - All value objects are frozen dataclasses.
    - Decimal-only arithmetic; no floats.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from costing_kernel.domain.dtos import CostingMethod
from costing_kernel.domain.values import ZERO, round_money


@dataclass(frozen=True, slots=True)
class LayerState:
    """Current state of one non-voided receipt layer."""

    layer_id: UUID
    sku: str
    received_at: datetime
    sequence: int
    qty_received: Decimal
    qty_remaining: Decimal
    unit_cost: Decimal

    @property
    def fifo_key(self) -> tuple[datetime, int]:
        return (self.received_at, self.sequence)


@dataclass(frozen=True, slots=True)
class SnapshotState:
    """Current moving-average position of one SKU."""

    sku: str
    on_hand_qty: Decimal
    on_hand_value: Decimal
    avg_unit_cost: Decimal

    @classmethod
    def empty(cls, sku: str) -> SnapshotState:
        return cls(sku=sku, on_hand_qty=ZERO, on_hand_value=ZERO, avg_unit_cost=ZERO)


@dataclass(frozen=True, slots=True)
class StockPosition:
    """
    Everything an allocator may read for one SKU.

    FIFO allocators read `layers`; AVG allocators read `snapshot`.  The
    service only loads (and locks) what the selected method needs.
    """

    sku: str
    layers: tuple[LayerState, ...] = ()
    snapshot: SnapshotState | None = None


@dataclass(frozen=True, slots=True)
class ComponentRequirement:
    """One (component SKU, required quantity) pair produced by bundle explosion."""

    component_sku: str
    required_qty: Decimal


@dataclass(frozen=True, slots=True)
class PriorAllocation:
    """One sale allocation row being reversed."""

    source_layer_id: UUID | None
    qty: Decimal
    unit_cost: Decimal


@dataclass(frozen=True, slots=True)
class AllocationDraft:
    """
    One allocation row to be written.

    qty is always positive here; the service negates it for reversal rows.
    """

    sku: str
    qty: Decimal
    unit_cost: Decimal
    source_layer_id: UUID | None = None

    def posted_amount(self, decimal_places: int, is_reversal: bool = False) -> Decimal:
        """qty * unit_cost rounded to the currency minor unit, signed for reversals."""
        product = self.qty * self.unit_cost
        return round_money(-product if is_reversal else product, decimal_places)


@dataclass(frozen=True, slots=True)
class LayerMutation:
    """Change to one layer's qty_remaining (negative consumes, positive credits)."""

    layer_id: UUID
    qty_delta: Decimal
    qty_remaining_after: Decimal


@dataclass(frozen=True, slots=True)
class SnapshotMutation:
    """Change to one SKU's snapshot, with the resulting values."""

    sku: str
    qty_delta: Decimal
    value_delta: Decimal
    on_hand_qty: Decimal
    on_hand_value: Decimal
    avg_unit_cost: Decimal


@dataclass(frozen=True, slots=True)
class AllocationPlan:
    """Output of an allocator or reversal planner for one component SKU."""

    sku: str
    method: CostingMethod
    drafts: tuple[AllocationDraft, ...]
    layer_mutations: tuple[LayerMutation, ...] = ()
    snapshot_mutation: SnapshotMutation | None = None

    @property
    def qty(self) -> Decimal:
        return sum((d.qty for d in self.drafts), ZERO)

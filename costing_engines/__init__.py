"""
Module: costing_engines
Responsibility:
    Package entrypoint that re-exports the pure costing engines: bundle
    explosion, FIFO and moving-average allocation, reversal planning and
    the method strategy tables.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import costing_kernel.domain and costing_kernel.exceptions.
    MUST NOT import costing_services or any ORM model.

Invariants enforced:
    - Purity: engines never read the clock or the database.  Every call
      takes the SKU's current state as explicit input and returns explicit
      mutations for the caller to apply.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Every engine invocation is traced via ``@traced_engine``, emitting a
    COSTING_ENGINE_TRACE log record.
"""

from costing_engines.bundle import resolve_bundle
from costing_engines.fifo import allocate_fifo
from costing_engines.moving_average import (
    allocate_avg,
    apply_stock_in,
    average_cost,
    remove_stock,
)
from costing_engines.reversal import plan_avg_reversal, plan_fifo_reversal
from costing_engines.strategies import (
    ALLOCATORS,
    REVERSAL_PLANNERS,
    allocator_for,
    reversal_planner_for,
)
from costing_engines.tracer import compute_input_fingerprint, traced_engine
from costing_engines.types import (
    AllocationDraft,
    AllocationPlan,
    ComponentRequirement,
    LayerMutation,
    LayerState,
    PriorAllocation,
    SnapshotMutation,
    SnapshotState,
    StockPosition,
)

__all__ = [
    "ALLOCATORS",
    "REVERSAL_PLANNERS",
    "AllocationDraft",
    "AllocationPlan",
    "ComponentRequirement",
    "LayerMutation",
    "LayerState",
    "PriorAllocation",
    "SnapshotMutation",
    "SnapshotState",
    "StockPosition",
    "allocate_avg",
    "allocate_fifo",
    "allocator_for",
    "apply_stock_in",
    "average_cost",
    "compute_input_fingerprint",
    "plan_avg_reversal",
    "plan_fifo_reversal",
    "remove_stock",
    "resolve_bundle",
    "reversal_planner_for",
    "traced_engine",
]

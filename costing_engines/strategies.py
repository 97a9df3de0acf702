"""
costing_engines.strategies -- Costing-method strategy tables.

Responsibility:
    Map each CostingMethod to its allocator and its reversal planner.  The
    COGS engine selects behavior by looking the enum up here, never by
    inheritance or runtime type inspection.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every CostingMethod member has exactly one allocator and one reversal
      planner; all share the AllocationPlan output type.
    - The tables are read-only (MappingProxyType).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from types import MappingProxyType

from costing_engines.fifo import allocate_fifo
from costing_engines.moving_average import allocate_avg
from costing_engines.reversal import plan_avg_reversal, plan_fifo_reversal
from costing_engines.types import AllocationPlan
from costing_kernel.domain.dtos import CostingMethod

# allocator(*, sku, qty, position) -> AllocationPlan
Allocator = Callable[..., AllocationPlan]

# planner(*, sku, return_qty, prior, position) -> AllocationPlan
ReversalPlanner = Callable[..., AllocationPlan]

ALLOCATORS: Mapping[CostingMethod, Allocator] = MappingProxyType({
    CostingMethod.FIFO: allocate_fifo,
    CostingMethod.AVG: allocate_avg,
})

REVERSAL_PLANNERS: Mapping[CostingMethod, ReversalPlanner] = MappingProxyType({
    CostingMethod.FIFO: plan_fifo_reversal,
    CostingMethod.AVG: plan_avg_reversal,
})


def allocator_for(method: CostingMethod | str) -> Allocator:
    """Allocator for a method (InvalidCostingMethodError if unknown)."""
    return ALLOCATORS[CostingMethod.parse(method)]


def reversal_planner_for(method: CostingMethod | str) -> ReversalPlanner:
    """Reversal planner for a method (InvalidCostingMethodError if unknown)."""
    return REVERSAL_PLANNERS[CostingMethod.parse(method)]

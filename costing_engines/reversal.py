"""
costing_engines.reversal -- Return reversal planners.

Responsibility:
    Plan the credit of a returned quantity back to where the original sale
    took it from: the same FIFO layers, or the moving-average snapshot at
    the original unit cost.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Invoked through REVERSAL_PLANNERS in costing_engines.strategies.

Invariants enforced:
    - FIFO credits go to the layers the sale consumed, apportioned in the
      sale's proportions.  Every layer but the last gets
      return_qty * layer_share quantized; the last layer absorbs the
      remainder, so the credits sum to return_qty exactly.
    - A layer is never credited above qty_received.
    - Drafts carry the original unit cost, so a full return produces
      amounts that are the exact negation of the sale's amounts.
    - AVG credits on_hand_qty += return_qty and
      on_hand_value += return_qty * original unit cost.

Failure modes:
    - ValueError if return_qty exceeds the quantity in `prior` (the service
      checks this first and raises AlreadyReversedError).
    - LayerNotFoundError if a consumed layer is missing from the position.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from costing_engines.moving_average import average_cost
from costing_engines.tracer import traced_engine
from costing_engines.types import (
    AllocationDraft,
    AllocationPlan,
    LayerMutation,
    PriorAllocation,
    SnapshotMutation,
    SnapshotState,
    StockPosition,
)
from costing_kernel.domain.dtos import CostingMethod
from costing_kernel.domain.values import ZERO, quantize_cost, quantize_qty
from costing_kernel.exceptions import LayerNotFoundError


def _check_reversible(return_qty: Decimal, prior: Sequence[PriorAllocation]) -> Decimal:
    sold = sum((p.qty for p in prior), ZERO)
    if return_qty > sold:
        raise ValueError(f"return qty {return_qty} exceeds sold qty {sold}")
    return sold


@traced_engine("fifo_reversal", "1.0", fingerprint_fields=("sku", "return_qty"))
def plan_fifo_reversal(
    *,
    sku: str,
    return_qty: Decimal,
    prior: Sequence[PriorAllocation],
    position: StockPosition,
) -> AllocationPlan:
    """
    Apportion `return_qty` over the layers the original sale consumed.

    Args:
        sku: Component SKU being returned.
        return_qty: Quantity to credit (already validated > 0).
        prior: The sale's allocation rows for this SKU.
        position: Current state of (at least) every layer named in `prior`.
    """
    sold = _check_reversible(return_qty, prior)
    layers = {layer.layer_id: layer for layer in position.layers}

    consumed: dict[UUID, Decimal] = {}
    unit_costs: dict[UUID, Decimal] = {}
    for row in prior:
        if row.source_layer_id is None:
            continue
        if row.source_layer_id not in layers:
            raise LayerNotFoundError(str(row.source_layer_id))
        consumed[row.source_layer_id] = consumed.get(row.source_layer_id, ZERO) + row.qty
        unit_costs[row.source_layer_id] = row.unit_cost

    ordered = sorted(consumed, key=lambda layer_id: layers[layer_id].fifo_key)

    drafts: list[AllocationDraft] = []
    mutations: list[LayerMutation] = []
    credited_so_far = ZERO

    for i, layer_id in enumerate(ordered):
        if i == len(ordered) - 1:
            # Rounding target gets remainder
            credit = return_qty - credited_so_far
        else:
            credit = min(
                quantize_qty(return_qty * consumed[layer_id] / sold),
                return_qty - credited_so_far,
            )
        credited_so_far += credit
        if credit <= ZERO:
            continue

        layer = layers[layer_id]
        applied = min(credit, layer.qty_received - layer.qty_remaining)

        drafts.append(
            AllocationDraft(
                sku=sku,
                qty=credit,
                unit_cost=unit_costs[layer_id],
                source_layer_id=layer_id,
            )
        )
        if applied > ZERO:
            mutations.append(
                LayerMutation(
                    layer_id=layer_id,
                    qty_delta=applied,
                    qty_remaining_after=layer.qty_remaining + applied,
                )
            )

    return AllocationPlan(
        sku=sku,
        method=CostingMethod.FIFO,
        drafts=tuple(drafts),
        layer_mutations=tuple(mutations),
    )


@traced_engine("avg_reversal", "1.0", fingerprint_fields=("sku", "return_qty"))
def plan_avg_reversal(
    *,
    sku: str,
    return_qty: Decimal,
    prior: Sequence[PriorAllocation],
    position: StockPosition,
) -> AllocationPlan:
    """
    Credit `return_qty` back to the snapshot at the original unit cost.

    The average is recomputed from the new ratio, as for any inbound stock.
    """
    sold = _check_reversible(return_qty, prior)

    costs = {row.unit_cost for row in prior}
    if len(costs) == 1:
        unit_cost = costs.pop()
    else:
        unit_cost = quantize_cost(sum((p.qty * p.unit_cost for p in prior), ZERO) / sold)

    snapshot = position.snapshot or SnapshotState.empty(sku)
    qty_after = snapshot.on_hand_qty + return_qty
    value_after = snapshot.on_hand_value + quantize_cost(return_qty * unit_cost)

    return AllocationPlan(
        sku=sku,
        method=CostingMethod.AVG,
        drafts=(AllocationDraft(sku=sku, qty=return_qty, unit_cost=unit_cost),),
        snapshot_mutation=SnapshotMutation(
            sku=sku,
            qty_delta=return_qty,
            value_delta=value_after - snapshot.on_hand_value,
            on_hand_qty=qty_after,
            on_hand_value=value_after,
            avg_unit_cost=average_cost(value_after, qty_after),
        ),
    )

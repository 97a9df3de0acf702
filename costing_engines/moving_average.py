"""
costing_engines.moving_average -- Weighted moving-average costing.

Responsibility:
    Plan sales against a SKU's cost snapshot and compute the snapshot blend
    for inbound stock.  Returns explicit SnapshotMutations; never writes.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    allocate_avg is invoked through the strategy table in
    costing_engines.strategies; apply_stock_in and remove_stock are called
    by the receiving service.

Invariants enforced:
    - A sale is costed at the snapshot's current avg_unit_cost and leaves
      that average unchanged.
    - A sale reduces on_hand_value by qty * avg_unit_cost (quantized to
      storage precision), so a return at the same cost restores it exactly.
    - avg_unit_cost = on_hand_value / on_hand_qty quantized to 9 places,
      and 0 when on_hand_qty == 0.
    - on_hand_qty >= 0 and on_hand_value >= 0.  A value that would go
      negative is clamped at zero.  A positive residual left by selling out
      is kept, so a return restores the snapshot exactly, and written off by
      the next stock-in, which starts the average at the received cost.

Failure modes:
    - InsufficientStockError when on_hand_qty < requested qty.
"""

from __future__ import annotations

from decimal import Decimal

from costing_engines.tracer import traced_engine
from costing_engines.types import (
    AllocationDraft,
    AllocationPlan,
    SnapshotMutation,
    SnapshotState,
    StockPosition,
)
from costing_kernel.domain.dtos import CostingMethod
from costing_kernel.domain.values import ZERO, quantize_cost
from costing_kernel.exceptions import InsufficientStockError
from costing_kernel.logging_config import get_logger

_logger = get_logger("engines.moving_average")


def average_cost(on_hand_value: Decimal, on_hand_qty: Decimal) -> Decimal:
    """on_hand_value / on_hand_qty at storage precision; 0 for an empty position."""
    if on_hand_qty <= ZERO:
        return ZERO
    return quantize_cost(on_hand_value / on_hand_qty)


def _mutation(
    snapshot: SnapshotState,
    qty_after: Decimal,
    value_after: Decimal,
    avg_after: Decimal,
) -> SnapshotMutation:
    return SnapshotMutation(
        sku=snapshot.sku,
        qty_delta=qty_after - snapshot.on_hand_qty,
        value_delta=value_after - snapshot.on_hand_value,
        on_hand_qty=qty_after,
        on_hand_value=value_after,
        avg_unit_cost=avg_after,
    )


@traced_engine("moving_average", "1.0", fingerprint_fields=("sku", "qty"))
def allocate_avg(*, sku: str, qty: Decimal, position: StockPosition) -> AllocationPlan:
    """
    Plan an AVG sale of `qty` units of `sku`.

    Raises:
        InsufficientStockError: Snapshot holds less than `qty`.
    """
    snapshot = position.snapshot or SnapshotState.empty(sku)

    if snapshot.on_hand_qty < qty:
        raise InsufficientStockError(
            sku=sku,
            requested=qty,
            available=snapshot.on_hand_qty,
            method=CostingMethod.AVG.value,
        )

    avg = snapshot.avg_unit_cost
    qty_after = snapshot.on_hand_qty - qty
    value_after = max(snapshot.on_hand_value - quantize_cost(qty * avg), ZERO)
    avg_after = avg if qty_after > ZERO else ZERO

    return AllocationPlan(
        sku=sku,
        method=CostingMethod.AVG,
        drafts=(AllocationDraft(sku=sku, qty=qty, unit_cost=avg),),
        snapshot_mutation=_mutation(snapshot, qty_after, value_after, avg_after),
    )


@traced_engine("moving_average_stock_in", "1.0", fingerprint_fields=("qty", "unit_cost"))
def apply_stock_in(
    *,
    snapshot: SnapshotState,
    qty: Decimal,
    unit_cost: Decimal,
) -> SnapshotMutation:
    """
    Blend received stock into the snapshot.

    new_qty = old_qty + qty; new_value = old_value + qty * unit_cost;
    the average is recomputed from the new ratio.  Receiving into an empty
    snapshot sets the average to exactly `unit_cost` and the value to
    qty * unit_cost; any residual value left by earlier sales is dropped.
    """
    qty_after = snapshot.on_hand_qty + qty
    received_value = quantize_cost(qty * unit_cost)

    if snapshot.on_hand_qty == ZERO:
        if snapshot.on_hand_value != ZERO:
            _logger.info(
                "avg_residual_written_off",
                extra={"sku": snapshot.sku, "residual": str(snapshot.on_hand_value)},
            )
        return _mutation(snapshot, qty_after, received_value, unit_cost)

    value_after = snapshot.on_hand_value + received_value
    avg_after = average_cost(value_after, qty_after)

    return _mutation(snapshot, qty_after, value_after, avg_after)


@traced_engine("moving_average_remove", "1.0", fingerprint_fields=("qty", "unit_cost"))
def remove_stock(
    *,
    snapshot: SnapshotState,
    qty: Decimal,
    unit_cost: Decimal,
) -> SnapshotMutation:
    """
    Take a previously received (qty, unit_cost) back out of the snapshot.

    Used when an untouched opening-balance layer is voided or edited.  The
    value removed uses the same formula as apply_stock_in, so receiving and
    then removing the same layer restores the snapshot exactly.

    Raises:
        InsufficientStockError: AVG sales have already drawn the snapshot
            below `qty`.
    """
    if snapshot.on_hand_qty < qty:
        raise InsufficientStockError(
            sku=snapshot.sku,
            requested=qty,
            available=snapshot.on_hand_qty,
            method=CostingMethod.AVG.value,
        )

    qty_after = snapshot.on_hand_qty - qty
    value_after = max(snapshot.on_hand_value - quantize_cost(qty * unit_cost), ZERO)
    return _mutation(snapshot, qty_after, value_after, average_cost(value_after, qty_after))

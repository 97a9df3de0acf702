"""
costing_engines.fifo -- FIFO allocation over receipt layers.

Responsibility:
    Draw a quantity from a SKU's receipt layers oldest-first and return the
    allocation drafts plus the qty_remaining mutations, without touching
    any storage.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Invoked through the strategy table in costing_engines.strategies.

Invariants enforced:
    - Layers are consumed in (received_at, sequence) order.
    - All-or-nothing: when the layers cannot cover the request, nothing is
      planned and InsufficientStockError reports both quantities.
    - One draft per layer touched, at that layer's unit cost.

Failure modes:
    - InsufficientStockError when total qty_remaining < requested qty.
"""

from __future__ import annotations

from decimal import Decimal

from costing_engines.tracer import traced_engine
from costing_engines.types import (
    AllocationDraft,
    AllocationPlan,
    LayerMutation,
    StockPosition,
)
from costing_kernel.domain.dtos import CostingMethod
from costing_kernel.domain.values import ZERO
from costing_kernel.exceptions import InsufficientStockError
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.fifo")


@traced_engine("fifo", "1.0", fingerprint_fields=("sku", "qty"))
def allocate_fifo(*, sku: str, qty: Decimal, position: StockPosition) -> AllocationPlan:
    """
    Plan a FIFO draw of `qty` units of `sku`.

    Args:
        sku: Component SKU being costed.
        qty: Quantity to draw (already validated > 0).
        position: The SKU's non-voided layers (any order).

    Returns:
        AllocationPlan with one draft and one negative LayerMutation per
        layer touched.

    Raises:
        InsufficientStockError: Layers hold less than `qty`.
    """
    layers = sorted(
        (layer for layer in position.layers if layer.qty_remaining > ZERO),
        key=lambda layer: layer.fifo_key,
    )

    available = sum((layer.qty_remaining for layer in layers), ZERO)
    if available < qty:
        raise InsufficientStockError(
            sku=sku,
            requested=qty,
            available=available,
            method=CostingMethod.FIFO.value,
        )

    drafts: list[AllocationDraft] = []
    mutations: list[LayerMutation] = []
    remaining = qty

    for layer in layers:
        if remaining <= ZERO:
            break

        take = min(layer.qty_remaining, remaining)
        remaining -= take

        drafts.append(
            AllocationDraft(
                sku=sku,
                qty=take,
                unit_cost=layer.unit_cost,
                source_layer_id=layer.layer_id,
            )
        )
        mutations.append(
            LayerMutation(
                layer_id=layer.layer_id,
                qty_delta=-take,
                qty_remaining_after=layer.qty_remaining - take,
            )
        )

        logger.debug(
            "fifo_layer_consumed",
            extra={
                "sku": sku,
                "layer_id": str(layer.layer_id),
                "qty_taken": str(take),
                "unit_cost": str(layer.unit_cost),
                "qty_remaining_after": str(layer.qty_remaining - take),
            },
        )

    return AllocationPlan(
        sku=sku,
        method=CostingMethod.FIFO,
        drafts=tuple(drafts),
        layer_mutations=tuple(mutations),
    )

"""
Property-based tests for the pure costing engines.

Properties checked:
- FIFO draws exactly the requested quantity, oldest layers first, and only
  the last touched layer can be left partly consumed
- FIFO and AVG refuse draws above on-hand stock
- AVG sales leave qty and value consistent with the snapshot
- A full return restores the position the sale started from, and the
  reversal amounts negate the sale amounts
- A partial FIFO return credits exactly the returned quantity
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import assume, given, settings
from hypothesis import strategies as st

from costing_engines.fifo import allocate_fifo
from costing_engines.moving_average import allocate_avg, apply_stock_in
from costing_engines.reversal import plan_avg_reversal, plan_fifo_reversal
from costing_engines.types import (
    AllocationPlan,
    LayerState,
    PriorAllocation,
    SnapshotMutation,
    SnapshotState,
    StockPosition,
)
from costing_kernel.domain.values import ZERO, quantize_cost
from costing_kernel.exceptions import InsufficientStockError

BASE = datetime(2024, 1, 1, tzinfo=UTC)

quantities = st.decimals(
    min_value=Decimal("0.0001"),
    max_value=Decimal("1000"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)
unit_costs = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("10000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)
receipts = st.lists(st.tuples(quantities, unit_costs), min_size=1, max_size=8)
fractions = st.integers(min_value=1, max_value=100)


def _layers(rows: list[tuple[Decimal, Decimal]], sku: str = "W") -> tuple[LayerState, ...]:
    # Same-day receipts for every other row exercise the sequence tie-break
    return tuple(
        LayerState(
            layer_id=uuid4(),
            sku=sku,
            received_at=BASE + timedelta(days=i // 2),
            sequence=i + 1,
            qty_received=qty,
            qty_remaining=qty,
            unit_cost=cost,
        )
        for i, (qty, cost) in enumerate(rows)
    )


def _apply_layers(layers: tuple[LayerState, ...], plan: AllocationPlan) -> tuple[LayerState, ...]:
    after = {m.layer_id: m.qty_remaining_after for m in plan.layer_mutations}
    return tuple(
        replace(layer, qty_remaining=after.get(layer.layer_id, layer.qty_remaining))
        for layer in layers
    )


def _apply_snapshot(mutation: SnapshotMutation) -> SnapshotState:
    return SnapshotState(
        sku=mutation.sku,
        on_hand_qty=mutation.on_hand_qty,
        on_hand_value=mutation.on_hand_value,
        avg_unit_cost=mutation.avg_unit_cost,
    )


def _snapshot(rows: list[tuple[Decimal, Decimal]], sku: str = "W") -> SnapshotState:
    snapshot = SnapshotState.empty(sku)
    for qty, cost in rows:
        snapshot = _apply_snapshot(apply_stock_in(snapshot=snapshot, qty=qty, unit_cost=cost))
    return snapshot


def _portion(total: Decimal, percent: int) -> Decimal:
    """percent% of total at quantity precision, never zero."""
    return max((total * percent / 100).quantize(Decimal("0.0001")), Decimal("0.0001"))


def _prior(plan: AllocationPlan) -> tuple[PriorAllocation, ...]:
    return tuple(
        PriorAllocation(source_layer_id=d.source_layer_id, qty=d.qty, unit_cost=d.unit_cost)
        for d in plan.drafts
    )


class TestFifoProperties:

    @given(rows=receipts, percent=fractions)
    @settings(max_examples=200, deadline=None)
    def test_draws_exact_quantity_oldest_first(self, rows, percent):
        layers = _layers(rows)
        on_hand = sum((layer.qty_remaining for layer in layers), ZERO)
        qty = _portion(on_hand, percent)

        plan = allocate_fifo(sku="W", qty=qty, position=StockPosition(sku="W", layers=layers))

        assert plan.qty == qty
        assert sum((m.qty_delta for m in plan.layer_mutations), ZERO) == -qty

        by_id = {layer.layer_id: layer for layer in layers}
        touched = [by_id[d.source_layer_id] for d in plan.drafts]
        assert [layer.fifo_key for layer in touched] == sorted(layer.fifo_key for layer in touched)
        # Every touched layer but the last is drained
        for mutation in plan.layer_mutations[:-1]:
            assert mutation.qty_remaining_after == ZERO
        assert all(m.qty_remaining_after >= ZERO for m in plan.layer_mutations)
        # Untouched layers are all newer than the last touched one
        untouched = [layer for layer in layers if layer not in touched]
        assert all(layer.fifo_key > touched[-1].fifo_key for layer in untouched)

    @given(rows=receipts, extra=quantities)
    @settings(max_examples=100, deadline=None)
    def test_refuses_more_than_on_hand(self, rows, extra):
        layers = _layers(rows)
        on_hand = sum((layer.qty_remaining for layer in layers), ZERO)

        with pytest.raises(InsufficientStockError):
            allocate_fifo(
                sku="W", qty=on_hand + extra, position=StockPosition(sku="W", layers=layers)
            )

    @given(rows=receipts, percent=fractions)
    @settings(max_examples=200, deadline=None)
    def test_full_return_restores_layers(self, rows, percent):
        layers = _layers(rows)
        on_hand = sum((layer.qty_remaining for layer in layers), ZERO)
        qty = _portion(on_hand, percent)

        sale = allocate_fifo(sku="W", qty=qty, position=StockPosition(sku="W", layers=layers))
        after_sale = _apply_layers(layers, sale)
        reversal = plan_fifo_reversal(
            sku="W",
            return_qty=qty,
            prior=_prior(sale),
            position=StockPosition(sku="W", layers=after_sale),
        )

        assert _apply_layers(after_sale, reversal) == layers
        sale_amounts = sorted(d.posted_amount(2) for d in sale.drafts)
        reversal_amounts = sorted(-d.posted_amount(2, is_reversal=True) for d in reversal.drafts)
        assert reversal_amounts == sale_amounts

    @given(rows=receipts, sale_percent=fractions, return_percent=fractions)
    @settings(max_examples=200, deadline=None)
    def test_partial_return_credits_exact_quantity(self, rows, sale_percent, return_percent):
        layers = _layers(rows)
        on_hand = sum((layer.qty_remaining for layer in layers), ZERO)
        qty = _portion(on_hand, sale_percent)
        return_qty = min(_portion(qty, return_percent), qty)

        sale = allocate_fifo(sku="W", qty=qty, position=StockPosition(sku="W", layers=layers))
        after_sale = _apply_layers(layers, sale)
        reversal = plan_fifo_reversal(
            sku="W",
            return_qty=return_qty,
            prior=_prior(sale),
            position=StockPosition(sku="W", layers=after_sale),
        )

        assert reversal.qty == return_qty
        assert sum((m.qty_delta for m in reversal.layer_mutations), ZERO) <= return_qty
        restored = _apply_layers(after_sale, reversal)
        for before, after in zip(layers, restored):
            assert after.qty_remaining <= before.qty_received


class TestAvgProperties:

    @given(rows=receipts, percent=fractions)
    @settings(max_examples=200, deadline=None)
    def test_sale_consistent_with_snapshot(self, rows, percent):
        snapshot = _snapshot(rows)
        qty = _portion(snapshot.on_hand_qty, percent)

        plan = allocate_avg(sku="W", qty=qty, position=StockPosition(sku="W", snapshot=snapshot))

        mutation = plan.snapshot_mutation
        assert plan.drafts[0].unit_cost == snapshot.avg_unit_cost
        assert mutation.on_hand_qty == snapshot.on_hand_qty - qty
        assert mutation.on_hand_value >= ZERO
        if mutation.on_hand_qty == ZERO:
            assert mutation.avg_unit_cost == ZERO

    @given(rows=receipts, extra=quantities)
    @settings(max_examples=100, deadline=None)
    def test_refuses_more_than_on_hand(self, rows, extra):
        snapshot = _snapshot(rows)

        with pytest.raises(InsufficientStockError):
            allocate_avg(
                sku="W",
                qty=snapshot.on_hand_qty + extra,
                position=StockPosition(sku="W", snapshot=snapshot),
            )

    @given(rows=receipts, percent=fractions)
    @settings(max_examples=200, deadline=None)
    def test_full_return_restores_snapshot(self, rows, percent):
        snapshot = _snapshot(rows)
        qty = _portion(snapshot.on_hand_qty, percent)
        # Selling everything can round the removed value above what is on hand
        assume(snapshot.on_hand_value >= quantize_cost(qty * snapshot.avg_unit_cost))

        sale = allocate_avg(sku="W", qty=qty, position=StockPosition(sku="W", snapshot=snapshot))
        after_sale = _apply_snapshot(sale.snapshot_mutation)
        reversal = plan_avg_reversal(
            sku="W",
            return_qty=qty,
            prior=_prior(sale),
            position=StockPosition(sku="W", snapshot=after_sale),
        )

        restored = reversal.snapshot_mutation
        assert restored.on_hand_qty == snapshot.on_hand_qty
        assert restored.on_hand_value == snapshot.on_hand_value
        assert reversal.drafts[0].posted_amount(2, is_reversal=True) == -sale.drafts[0].posted_amount(2)

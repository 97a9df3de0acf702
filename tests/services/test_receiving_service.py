"""
Tests for ReceivingService - opening balances, stock-in and layer edits.

Tests cover:
- Opening balance layers at the configured local opening time
- Stock-in documents creating one layer per line
- Snapshot blending on every receipt
- Editing and voiding untouched opening balance layers
- Rejection of bundle SKUs, bad quantities and naive timestamps
"""

from datetime import UTC, date, datetime, time
from decimal import Decimal
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from costing_kernel.domain.dtos import LayerSourceType, StockInLine
from costing_kernel.exceptions import (
    InvalidQuantityError,
    LayerNotEditableError,
    LayerNotFoundError,
    NotStockableError,
    UnknownSkuError,
    ValidationError,
)


def _at(day: int, hour: int = 9) -> datetime:
    return datetime(2024, 1, day, hour, tzinfo=UTC)


class TestOpeningBalance:

    def test_date_maps_to_local_opening_time(self, receiving, register_items, config):
        register_items("W")

        layer = receiving.record_opening_balance("W", Decimal("100"), Decimal("20"), date(2024, 1, 1))

        assert layer.source_type == LayerSourceType.OPENING_BALANCE
        assert layer.source_ref is None
        assert layer.qty_remaining == Decimal("100")
        expected = datetime.combine(
            date(2024, 1, 1), config.opening_balance_time, tzinfo=ZoneInfo("Asia/Bangkok")
        )
        assert layer.received_at == expected
        # Midnight in Bangkok is 17:00 UTC the day before
        assert layer.received_at.astimezone(UTC) == datetime(2023, 12, 31, 17, tzinfo=UTC)

    def test_feeds_snapshot(self, receiving, register_items, inventory_selector):
        register_items("W")

        receiving.record_opening_balance("W", "100", "20", date(2024, 1, 1))

        snapshot = inventory_selector.get_snapshot("W")
        assert snapshot.on_hand_qty == Decimal("100")
        assert snapshot.on_hand_value == Decimal("2000")
        assert snapshot.avg_unit_cost == Decimal("20")

    def test_aware_datetime_used_as_given(self, receiving, register_items):
        register_items("W")

        layer = receiving.record_opening_balance("W", "1", "1", _at(3, 8))

        assert layer.received_at == _at(3, 8)

    def test_naive_datetime_rejected(self, receiving, register_items):
        register_items("W")

        with pytest.raises(ValidationError):
            receiving.record_opening_balance("W", "1", "1", datetime(2024, 1, 1))

    @pytest.mark.parametrize("qty", ["0", "-5", "0.00001"])
    def test_non_positive_qty_rejected(self, receiving, register_items, qty):
        register_items("W")

        with pytest.raises(InvalidQuantityError):
            receiving.record_opening_balance("W", qty, "1", date(2024, 1, 1))

    def test_float_qty_rejected(self, receiving, register_items):
        register_items("W")

        with pytest.raises(InvalidQuantityError):
            receiving.record_opening_balance("W", 1.5, "1", date(2024, 1, 1))

    def test_unknown_sku(self, receiving):
        with pytest.raises(UnknownSkuError):
            receiving.record_opening_balance("NOPE", "1", "1", date(2024, 1, 1))

    def test_bundle_not_stockable(self, receiving, catalog):
        catalog.register_item("B", "Bundle", is_bundle=True)

        with pytest.raises(NotStockableError):
            receiving.record_opening_balance("B", "1", "1", date(2024, 1, 1))


class TestReceiveStock:

    def test_one_layer_per_line(self, receiving, register_items, inventory_selector):
        register_items("C1", "C2")

        result = receiving.receive_stock(
            received_at=_at(2),
            lines=[
                StockInLine(sku="C1", qty=Decimal("10"), unit_cost=Decimal("4")),
                StockInLine(sku="C2", qty=Decimal("5"), unit_cost=Decimal("3")),
            ],
            reference="GRN-001",
            supplier="ACME",
        )

        assert result.reference == "GRN-001"
        assert len(result.layers) == 2
        assert {layer.source_ref for layer in result.layers} == {str(result.document_id)}
        assert all(layer.source_type == LayerSourceType.STOCK_IN for layer in result.layers)
        assert inventory_selector.fifo_on_hand("C1") == Decimal("10")
        assert inventory_selector.fifo_on_hand("C2") == Decimal("5")

    def test_sequences_increase_in_insertion_order(self, receiving, register_items):
        register_items("W")

        first = receiving.receive_stock(
            _at(2), [StockInLine(sku="W", qty=Decimal("1"), unit_cost=Decimal("1"))], "A"
        )
        second = receiving.receive_stock(
            _at(2), [StockInLine(sku="W", qty=Decimal("1"), unit_cost=Decimal("2"))], "B"
        )

        assert second.layers[0].sequence > first.layers[0].sequence

    def test_stock_in_blends_average(self, receiving, register_items, inventory_selector):
        """Opening 100 @ 20 + stock-in 100 @ 30 -> avg 25."""
        register_items("W")
        receiving.record_opening_balance("W", "100", "20", date(2024, 1, 1))

        receiving.receive_stock(
            _at(2), [StockInLine(sku="W", qty=Decimal("100"), unit_cost=Decimal("30"))], "GRN"
        )

        snapshot = inventory_selector.get_snapshot("W")
        assert snapshot.on_hand_qty == Decimal("200")
        assert snapshot.on_hand_value == Decimal("5000")
        assert snapshot.avg_unit_cost == Decimal("25")

    def test_bad_line_writes_nothing(self, receiving, register_items, inventory_selector):
        register_items("C1")
        lines = [
            StockInLine(sku="C1", qty=Decimal("10"), unit_cost=Decimal("4")),
            StockInLine(sku="GHOST", qty=Decimal("1"), unit_cost=Decimal("1")),
        ]

        with pytest.raises(UnknownSkuError):
            receiving.receive_stock(_at(2), lines, "GRN")

        assert inventory_selector.get_layers("C1") == []
        assert inventory_selector.get_snapshot("C1").on_hand_qty == Decimal("0")

    def test_empty_document_rejected(self, receiving):
        with pytest.raises(ValidationError):
            receiving.receive_stock(_at(2), [], "GRN")

    def test_negative_cost_rejected(self, receiving, register_items):
        register_items("W")

        with pytest.raises(InvalidQuantityError):
            receiving.receive_stock(
                _at(2), [StockInLine(sku="W", qty=Decimal("1"), unit_cost=Decimal("-1"))], "GRN"
            )


class TestEditOpeningBalance:

    @pytest.fixture
    def opening(self, receiving, register_items):
        register_items("W")
        return receiving.record_opening_balance("W", "100", "20", date(2024, 1, 1))

    def test_update_adjusts_snapshot(self, receiving, opening, inventory_selector):
        updated = receiving.update_opening_balance_layer(
            opening.id, qty_received=Decimal("80"), unit_cost=Decimal("25")
        )

        assert updated.qty_received == Decimal("80")
        assert updated.qty_remaining == Decimal("80")
        assert updated.unit_cost == Decimal("25")
        snapshot = inventory_selector.get_snapshot("W")
        assert snapshot.on_hand_qty == Decimal("80")
        assert snapshot.on_hand_value == Decimal("2000")
        assert snapshot.avg_unit_cost == Decimal("25")

    def test_update_received_at(self, receiving, opening):
        updated = receiving.update_opening_balance_layer(opening.id, received_at=_at(5, 0))

        assert updated.received_at == _at(5, 0)
        assert updated.qty_received == Decimal("100")

    def test_void_removes_from_on_hand(self, receiving, opening, inventory_selector):
        voided = receiving.void_opening_balance_layer(opening.id)

        assert voided.voided is True
        assert inventory_selector.get_layers("W") == []
        assert len(inventory_selector.get_layers("W", include_voided=True)) == 1
        snapshot = inventory_selector.get_snapshot("W")
        assert snapshot.on_hand_qty == Decimal("0")
        assert snapshot.on_hand_value == Decimal("0")

    def test_void_twice_rejected(self, receiving, opening):
        receiving.void_opening_balance_layer(opening.id)

        with pytest.raises(LayerNotEditableError):
            receiving.void_opening_balance_layer(opening.id)

    def test_consumed_layer_not_editable(self, receiving, opening, cogs_engine):
        cogs_engine.apply_cogs_for_order_shipped("O-1", "W", Decimal("1"), _at(10), "FIFO")

        with pytest.raises(LayerNotEditableError) as exc_info:
            receiving.update_opening_balance_layer(opening.id, unit_cost=Decimal("1"))

        assert exc_info.value.layer_id == str(opening.id)

    def test_layer_restored_by_return_still_not_editable(self, receiving, opening, cogs_engine):
        cogs_engine.apply_cogs_for_order_shipped("O-1", "W", Decimal("5"), _at(10), "FIFO")
        cogs_engine.apply_return_reversal("O-1", "W", Decimal("5"), _at(11))

        with pytest.raises(LayerNotEditableError):
            receiving.void_opening_balance_layer(opening.id)

    def test_avg_sales_block_void(self, receiving, opening, cogs_engine):
        cogs_engine.apply_cogs_for_order_shipped("O-1", "W", Decimal("1"), _at(10), "AVG")

        with pytest.raises(LayerNotEditableError):
            receiving.void_opening_balance_layer(opening.id)

    def test_stock_in_layer_not_editable(self, receiving, opening):
        stock_in = receiving.receive_stock(
            _at(2), [StockInLine(sku="W", qty=Decimal("1"), unit_cost=Decimal("1"))], "GRN"
        )

        with pytest.raises(LayerNotEditableError):
            receiving.void_opening_balance_layer(stock_in.layers[0].id)

    def test_unknown_layer(self, receiving):
        with pytest.raises(LayerNotFoundError):
            receiving.void_opening_balance_layer(uuid4())

    def test_voided_at_uses_clock(self, receiving, opening, session, deterministic_clock):
        from costing_kernel.models.inventory import ReceiptLayerModel

        receiving.void_opening_balance_layer(opening.id)

        model = session.get(ReceiptLayerModel, opening.id)
        assert model.voided_at == deterministic_clock.now_utc()
        assert model.voided_at.time() == time(12, 0)

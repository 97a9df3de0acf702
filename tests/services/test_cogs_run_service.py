"""
Tests for CogsRunService - batch runs with a durable run log.

Tests cover:
- Counts and per-line outcomes (successful / skipped / failed)
- Failure isolation between lines
- Date-range filtering in the reporting timezone
- Reading a run back
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from costing_kernel.domain.dtos import CostingMethod, RunItemStatus, ShipmentLine
from costing_kernel.exceptions import CogsRunNotFoundError, ValidationError


def _at(day: int, hour: int = 9) -> datetime:
    return datetime(2024, 1, day, hour, tzinfo=UTC)


def _line(order_id: str, sku: str = "W", qty: str = "10", shipped_at: datetime | None = None):
    return ShipmentLine(
        order_id=order_id,
        sku=sku,
        qty=Decimal(qty),
        shipped_at=shipped_at or _at(10),
    )


class TestRun:

    def test_counts_and_outcomes(self, run_service, fifo_two_layers, cogs_engine):
        cogs_engine.apply_cogs_for_order_shipped("O-0", "W", Decimal("1"), _at(9), "FIFO")

        summary = run_service.run(
            [
                _line("O-1"),
                _line("O-0", qty="1"),
                _line("O-2", qty="1000"),
                _line("O-3", sku="GHOST"),
            ],
            method="FIFO",
        )

        assert summary.total == 4
        assert summary.successful == 1
        assert summary.skipped == 1
        assert summary.failed == 2
        assert summary.total == summary.successful + summary.skipped + summary.failed
        assert [(i.order_id, i.status, i.reason) for i in summary.items] == [
            ("O-1", RunItemStatus.SUCCESSFUL, None),
            ("O-0", RunItemStatus.SKIPPED, "ALREADY_COSTED"),
            ("O-2", RunItemStatus.FAILED, "INSUFFICIENT_STOCK"),
            ("O-3", RunItemStatus.FAILED, "UNKNOWN_SKU"),
        ]

    def test_failed_line_does_not_undo_others(
        self, run_service, fifo_two_layers, cogs_selector, inventory_selector
    ):
        run_service.run([_line("O-1"), _line("O-2", qty="1000"), _line("O-3")], method="FIFO")

        assert cogs_selector.net_cogs_for_order("O-1") == Decimal("100")
        assert cogs_selector.net_cogs_for_order("O-2") == Decimal("0")
        assert cogs_selector.net_cogs_for_order("O-3") == Decimal("100")
        assert inventory_selector.fifo_on_hand("W") == Decimal("130")

    def test_run_is_idempotent_per_line(self, run_service, fifo_two_layers):
        lines = [_line("O-1"), _line("O-2")]
        run_service.run(lines, method="FIFO")

        second = run_service.run(lines, method="FIFO")

        assert second.successful == 0
        assert second.skipped == 2

    def test_default_method_and_clock(self, run_service, fifo_two_layers, deterministic_clock):
        summary = run_service.run([_line("O-1")])

        assert summary.method == CostingMethod.FIFO
        assert summary.started_at == deterministic_clock.now_utc()
        assert summary.finished_at == deterministic_clock.now_utc()

    def test_invalid_quantity_recorded_as_failure(self, run_service, fifo_two_layers):
        summary = run_service.run([_line("O-1", qty="0")], method="FIFO")

        assert summary.failed == 1
        assert summary.items[0].reason == "INVALID_QUANTITY"

    def test_empty_batch(self, run_service):
        summary = run_service.run([], method="AVG")

        assert summary.total == 0
        assert summary.items == ()
        assert summary.method == CostingMethod.AVG


class TestRunDateRange:

    def test_lines_outside_range_skipped(self, run_service, fifo_two_layers):
        summary = run_service.run(
            [_line("O-1", shipped_at=_at(9)), _line("O-2", shipped_at=_at(10))],
            method="FIFO",
            start_date=date(2024, 1, 10),
            end_date=date(2024, 1, 10),
        )

        assert [(i.status, i.reason) for i in summary.items] == [
            (RunItemStatus.SKIPPED, "OUT_OF_RANGE"),
            (RunItemStatus.SUCCESSFUL, None),
        ]
        assert summary.start_date == date(2024, 1, 10)

    def test_range_uses_reporting_timezone(self, run_service, fifo_two_layers):
        # 20:00 UTC on the 10th is already the 11th in Bangkok
        summary = run_service.run(
            [_line("O-1", shipped_at=_at(10, hour=20))],
            method="FIFO",
            start_date=date(2024, 1, 11),
        )

        assert summary.successful == 1

    def test_end_before_start_rejected(self, run_service):
        with pytest.raises(ValidationError):
            run_service.run([], start_date=date(2024, 1, 10), end_date=date(2024, 1, 9))


class TestGetRun:

    def test_read_back(self, run_service, fifo_two_layers):
        summary = run_service.run([_line("O-1"), _line("O-2", qty="1000")], method="FIFO")

        loaded = run_service.get_run(summary.run_id)

        assert loaded.run_id == summary.run_id
        assert loaded.total == 2
        assert [i.order_id for i in loaded.items] == ["O-1", "O-2"]
        assert loaded.items[1].qty == Decimal("1000")

    def test_unknown_run(self, run_service):
        run_id = uuid4()

        with pytest.raises(CogsRunNotFoundError) as exc_info:
            run_service.get_run(run_id)

        assert exc_info.value.run_id == str(run_id)

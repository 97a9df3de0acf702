"""
COGS query selector -- the read-only feed for P&L reporting.

Key design decisions:
- Returns DTOs (AllocationRecord, DailyCogs, OrderMargin), not ORM models
- Net COGS for an order is SUM(amount) over its sale and reversal rows
- Daily buckets use calendar days of the reporting timezone, not UTC
- Amount sums are computed in Python over Decimal values, so results are
  exact on every backend

Invariants:
- Read-only; the allocation ledger is append-only and never edited here
"""

from collections.abc import Mapping
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_kernel.domain.dtos import AllocationRecord, DailyCogs, OrderMargin
from costing_kernel.domain.values import ZERO
from costing_kernel.models.cogs import CogsAllocationModel
from costing_kernel.selectors.base import BaseSelector


class CogsSelector(BaseSelector[CogsAllocationModel]):
    """
    Selector for the allocation ledger.

    Args:
        session: Caller-owned session.
        reporting_timezone: IANA zone used to bucket rows by day.
    """

    def __init__(self, session: Session, reporting_timezone: str = "Asia/Bangkok"):
        super().__init__(session)
        self._tz = ZoneInfo(reporting_timezone)

    def allocations_for_order(
        self,
        order_id: str,
        sku: str | None = None,
        is_reversal: bool | None = None,
    ) -> list[AllocationRecord]:
        """Allocation rows of one order in write order."""
        stmt = select(CogsAllocationModel).where(
            CogsAllocationModel.order_id == order_id
        )
        if sku is not None:
            stmt = stmt.where(CogsAllocationModel.sku == sku)
        if is_reversal is not None:
            stmt = stmt.where(CogsAllocationModel.is_reversal.is_(is_reversal))
        stmt = stmt.order_by(CogsAllocationModel.created_at, CogsAllocationModel.line_no)
        return [AllocationRecord.from_model(m) for m in self.session.scalars(stmt)]

    def net_cogs_for_order(self, order_id: str) -> Decimal:
        return sum(
            (a.amount for a in self.allocations_for_order(order_id)), ZERO
        )

    def allocations_between(self, start: datetime, end: datetime) -> list[AllocationRecord]:
        """Rows with start <= shipped_at < end."""
        stmt = (
            select(CogsAllocationModel)
            .where(CogsAllocationModel.shipped_at >= start)
            .where(CogsAllocationModel.shipped_at < end)
            .order_by(
                CogsAllocationModel.shipped_at,
                CogsAllocationModel.order_id,
                CogsAllocationModel.created_at,
                CogsAllocationModel.line_no,
            )
        )
        return [AllocationRecord.from_model(m) for m in self.session.scalars(stmt)]

    def daily_cogs(self, start_date: date, end_date: date) -> list[DailyCogs]:
        """
        Net COGS per reporting-timezone day, start_date..end_date inclusive.

        Days without allocation rows are reported with a zero amount.
        """
        if end_date < start_date:
            return []

        start = datetime.combine(start_date, time.min, tzinfo=self._tz)
        end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=self._tz)

        amounts: dict[date, Decimal] = {}
        counts: dict[date, int] = {}
        for row in self.allocations_between(start, end):
            day = row.shipped_at.astimezone(self._tz).date()
            amounts[day] = amounts.get(day, ZERO) + row.amount
            counts[day] = counts.get(day, 0) + 1

        result: list[DailyCogs] = []
        day = start_date
        while day <= end_date:
            result.append(
                DailyCogs(
                    day=day,
                    amount=amounts.get(day, ZERO),
                    allocation_count=counts.get(day, 0),
                )
            )
            day += timedelta(days=1)
        return result

    def order_margins(self, revenue_by_order: Mapping[str, Decimal]) -> list[OrderMargin]:
        """Join caller-supplied order revenue to net COGS, ordered by order_id."""
        return [
            OrderMargin(
                order_id=order_id,
                revenue=revenue_by_order[order_id],
                cogs=self.net_cogs_for_order(order_id),
            )
            for order_id in sorted(revenue_by_order)
        ]

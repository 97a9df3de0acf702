"""
Module: costing_kernel.models.cogs_run
Responsibility: ORM persistence for COGS batch run headers and their
    per-line outcomes.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - total == successful + skipped + failed once a run is finished.
    - status is one of successful | skipped | failed; there is no partial
      status because each line is all-or-nothing.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Date, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase, UUIDString
from costing_kernel.db.types import ExactNumeric, UTCDateTime


class CogsRunModel(TrackedBase):
    """Header of one batch COGS run."""

    __tablename__ = "inventory_cogs_apply_runs"

    method: Mapped[str] = mapped_column(String(10), nullable=False)

    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    total: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    successful: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    skipped: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    failed: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class CogsRunItemModel(TrackedBase):
    """Outcome of one shipment line inside a run."""

    __tablename__ = "inventory_cogs_apply_run_items"

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_cogs_apply_runs.id"),
        nullable=False,
        index=True,
    )

    line_no: Mapped[int] = mapped_column(BigInteger, nullable=False)

    order_id: Mapped[str] = mapped_column(String(100), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    qty: Mapped[Decimal] = mapped_column(ExactNumeric(24, 4), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Exception code for failed lines, result status for skipped lines
    reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

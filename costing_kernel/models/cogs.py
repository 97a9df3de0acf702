"""
Module: costing_kernel.models.cogs
Responsibility: ORM persistence for the allocation ledger and the
    idempotency claims that guard it.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Append-only.  Allocation rows are never updated or deleted; a return
      writes new rows with is_reversal=True and negative qty.
    - sku is always the component actually costed, never a bundle SKU.
    - source_layer_id is set for FIFO rows and null for AVG rows.  It is a
      plain reference (no ON DELETE CASCADE); layers are never deleted.
    - Claim idempotency_key is UNIQUE: at most one committed sale and one
      committed reversal per (order_id, component sku).

Failure modes:
    - IntegrityError on a duplicate claim key, raised to the second of two
      concurrent writers for the same order line.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase, UUIDString
from costing_kernel.db.types import ExactNumeric, UTCDateTime


class CogsAllocationModel(TrackedBase):
    """
    One COGS charge (sale) or credit (reversal).

    Contract:
        amount = qty * unit_cost_used, rounded to the currency minor unit.
        SUM(amount) over all rows of an order is the net COGS recognized
        for that order.
    """

    __tablename__ = "inventory_cogs_allocations"

    __table_args__ = (
        Index("idx_cogs_alloc_order_sku", "order_id", "sku", "is_reversal"),
        Index("idx_cogs_alloc_shipped_at", "shipped_at"),
        Index("idx_cogs_alloc_layer", "source_layer_id"),
    )

    order_id: Mapped[str] = mapped_column(String(100), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    # Shipment time for sales, return time for reversals
    shipped_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    method: Mapped[str] = mapped_column(String(10), nullable=False)

    qty: Mapped[Decimal] = mapped_column(ExactNumeric(24, 4), nullable=False)

    unit_cost_used: Mapped[Decimal] = mapped_column(ExactNumeric(38, 9), nullable=False)

    amount: Mapped[Decimal] = mapped_column(ExactNumeric(38, 9), nullable=False)

    is_reversal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    source_layer_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_receipt_layers.id"),
        nullable=True,
    )

    # Order-line SKU as shipped (the bundle SKU when a bundle was exploded)
    parent_sku: Mapped[str] = mapped_column(String(100), nullable=False)

    # Order-line quantity of that posting; a return scales components by return_qty / parent_qty
    parent_qty: Mapped[Decimal] = mapped_column(ExactNumeric(24, 4), nullable=False)

    # Position of the row within the posting that wrote it
    line_no: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        kind = "reversal" if self.is_reversal else "sale"
        return (
            f"<CogsAllocationModel {kind} {self.order_id}/{self.sku} "
            f"{self.qty} @ {self.unit_cost_used} = {self.amount}>"
        )


class CogsPostingClaimModel(TrackedBase):
    """
    Single-writer guard for one (order_id, sku, sale|reversal) posting.

    Inserted in the same transaction as the allocation rows it guards, so
    a committed claim always has its allocations committed alongside it.
    """

    __tablename__ = "inventory_cogs_claims"

    idempotency_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    order_id: Mapped[str] = mapped_column(String(100), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    is_reversal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @staticmethod
    def make_key(order_id: str, sku: str, is_reversal: bool) -> str:
        kind = "REVERSAL" if is_reversal else "SALE"
        return f"{order_id}:{sku}:{kind}"

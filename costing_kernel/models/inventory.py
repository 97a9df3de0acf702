"""
Module: costing_kernel.models.inventory
Responsibility: ORM persistence for receipt layers (FIFO), cost snapshots
    (moving average) and the stock-in documents that create layers.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - qty_received and unit_cost are immutable once a layer has been
      consumed.  Only untouched opening-balance layers may be edited.
    - 0 <= qty_remaining <= qty_received is maintained by the services;
      numeric CHECK constraints are not portable across the ExactNumeric
      storage forms, so they are not declared here.
    - (sku, received_at, sequence) index supports FIFO ordering; sequence
      is the insertion-order tie-breaker.
    - One snapshot row per SKU (unique sku).
    - Layers are never physically deleted; voiding sets voided=True.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase
from costing_kernel.db.types import ExactNumeric, UTCDateTime


class StockInDocumentModel(TrackedBase):
    """Header of one stock-in (goods received) document."""

    __tablename__ = "inventory_stock_in_documents"

    received_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    reference: Mapped[str] = mapped_column(String(255), nullable=False)

    supplier: Mapped[str | None] = mapped_column(String(255), nullable=True)

    note: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    line_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class ReceiptLayerModel(TrackedBase):
    """
    One batch of received stock with its own unit cost.

    Contract:
        Created by opening-balance seeding or a stock-in.  qty_remaining is
        decremented by FIFO allocation and incremented by reversals (capped
        at qty_received).
    """

    __tablename__ = "inventory_receipt_layers"

    __table_args__ = (
        Index("idx_receipt_layer_fifo", "sku", "received_at", "sequence"),
        Index("idx_receipt_layer_source", "source_type", "source_ref"),
    )

    sku: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("inventory_items.sku"),
        nullable=False,
    )

    received_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    qty_received: Mapped[Decimal] = mapped_column(ExactNumeric(24, 4), nullable=False)

    qty_remaining: Mapped[Decimal] = mapped_column(ExactNumeric(24, 4), nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(ExactNumeric(38, 9), nullable=False)

    source_type: Mapped[str] = mapped_column(String(20), nullable=False)

    # StockInDocumentModel.id for STOCK_IN; null for opening balances
    source_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    voided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ReceiptLayerModel {self.sku} #{self.sequence} "
            f"{self.qty_remaining}/{self.qty_received} @ {self.unit_cost}>"
        )


class CostSnapshotModel(TrackedBase):
    """
    Running moving-average position for one SKU.

    avg_unit_cost is stored rather than derived on read: a sale leaves it
    unchanged, while on_hand_value / on_hand_qty may drift from it in the
    ninth decimal place after a rounded sale.
    """

    __tablename__ = "inventory_cost_snapshots"

    sku: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("inventory_items.sku"),
        nullable=False,
        unique=True,
    )

    on_hand_qty: Mapped[Decimal] = mapped_column(
        ExactNumeric(24, 4), nullable=False, default=Decimal("0")
    )

    on_hand_value: Mapped[Decimal] = mapped_column(
        ExactNumeric(38, 9), nullable=False, default=Decimal("0")
    )

    avg_unit_cost: Mapped[Decimal] = mapped_column(
        ExactNumeric(38, 9), nullable=False, default=Decimal("0")
    )

    def __repr__(self) -> str:
        return (
            f"<CostSnapshotModel {self.sku} qty={self.on_hand_qty} "
            f"value={self.on_hand_value} avg={self.avg_unit_cost}>"
        )

"""
Module: costing_kernel.models.item
Responsibility: ORM persistence for the item catalog and bundle recipes.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - sku is unique; is_bundle is fixed at creation.
    - quantity_per_bundle > 0 (CHECK constraint).
    - A bundle never lists itself as a component (CHECK constraint).
    - (bundle_sku, component_sku) is unique.
    - Recipe rows reference items by SKU without cascade, so editing a
      recipe never touches historical allocations.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from costing_kernel.db.base import TrackedBase
from costing_kernel.db.types import ExactNumeric


class ItemModel(TrackedBase):
    """
    One sellable or stockable SKU.

    Guarantees:
        - default_unit_cost is only an estimate for reporting; it is never
          used to cost a sale.
    """

    __tablename__ = "inventory_items"

    sku: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    display_name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_bundle: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    default_unit_cost: Mapped[Decimal] = mapped_column(
        ExactNumeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    def __repr__(self) -> str:
        return f"<ItemModel {self.sku} bundle={self.is_bundle}>"


class BundleComponentModel(TrackedBase):
    """One (bundle, component, quantity) recipe row."""

    __tablename__ = "inventory_bundle_components"

    __table_args__ = (
        UniqueConstraint(
            "bundle_sku", "component_sku", name="uq_bundle_component"
        ),
        CheckConstraint(
            "bundle_sku <> component_sku", name="ck_bundle_not_self"
        ),
    )

    bundle_sku: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("inventory_items.sku"),
        nullable=False,
        index=True,
    )

    component_sku: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("inventory_items.sku"),
        nullable=False,
    )

    quantity_per_bundle: Mapped[Decimal] = mapped_column(
        ExactNumeric(24, 4),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<BundleComponentModel {self.bundle_sku} -> "
            f"{self.quantity_per_bundle} x {self.component_sku}>"
        )

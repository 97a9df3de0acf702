"""
Inventory query selector.

Read-only access to receipt layers, cost snapshots and unit-cost estimates.

Key design decisions:
- Returns DTOs (LayerRecord, SnapshotRecord), not ORM models
- Uses the caller's Session, never creates its own
- Quantity sums are computed in Python over Decimal values, so results are
  exact on every backend

Invariants:
- Voided layers are excluded from on-hand totals unless explicitly requested
- FIFO order is (received_at, sequence)
"""

from decimal import Decimal

from sqlalchemy import select

from costing_kernel.domain.dtos import CostingMethod, LayerRecord, SnapshotRecord
from costing_kernel.domain.values import ZERO
from costing_kernel.exceptions import UnknownSkuError
from costing_kernel.models.inventory import CostSnapshotModel, ReceiptLayerModel
from costing_kernel.models.item import ItemModel
from costing_kernel.selectors.base import BaseSelector


class InventorySelector(BaseSelector[ReceiptLayerModel]):
    """Selector for stock positions of non-bundle SKUs."""

    def get_layers(self, sku: str, include_voided: bool = False) -> list[LayerRecord]:
        """All layers for a SKU in FIFO order."""
        stmt = (
            select(ReceiptLayerModel)
            .where(ReceiptLayerModel.sku == sku)
            .order_by(ReceiptLayerModel.received_at, ReceiptLayerModel.sequence)
        )
        if not include_voided:
            stmt = stmt.where(ReceiptLayerModel.voided.is_(False))
        return [LayerRecord.from_model(m) for m in self.session.scalars(stmt)]

    def fifo_on_hand(self, sku: str) -> Decimal:
        """Sum of qty_remaining over non-voided layers."""
        return sum((layer.qty_remaining for layer in self.get_layers(sku)), ZERO)

    def fifo_on_hand_value(self, sku: str) -> Decimal:
        """Sum of qty_remaining * unit_cost over non-voided layers."""
        return sum(
            (layer.qty_remaining * layer.unit_cost for layer in self.get_layers(sku)),
            ZERO,
        )

    def get_snapshot(self, sku: str) -> SnapshotRecord | None:
        model = self.session.execute(
            select(CostSnapshotModel).where(CostSnapshotModel.sku == sku)
        ).scalar_one_or_none()
        return SnapshotRecord.from_model(model) if model is not None else None

    def unit_cost_estimate(
        self,
        sku: str,
        method: CostingMethod | str = CostingMethod.FIFO,
    ) -> Decimal:
        """
        Best estimate of the next unit cost for a SKU.

        FIFO: cost of the oldest layer that still has stock.
        AVG: the snapshot's average cost.
        Falls back to the item's default_unit_cost when there is no stock.

        Raises:
            UnknownSkuError: SKU is not in the catalog.
        """
        method = CostingMethod.parse(method)
        item = self.session.execute(
            select(ItemModel).where(ItemModel.sku == sku)
        ).scalar_one_or_none()
        if item is None:
            raise UnknownSkuError(sku)

        if method == CostingMethod.FIFO:
            for layer in self.get_layers(sku):
                if layer.qty_remaining > ZERO:
                    return layer.unit_cost
        else:
            snapshot = self.get_snapshot(sku)
            if snapshot is not None and snapshot.on_hand_qty > ZERO:
                return snapshot.avg_unit_cost

        return item.default_unit_cost

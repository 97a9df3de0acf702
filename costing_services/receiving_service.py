"""
ReceivingService -- inbound stock: opening balances, stock-in, layer edits.

Responsibility:
    Create receipt layers for opening balances and stock-in documents and
    blend every inbound quantity into the SKU's moving-average snapshot, so
    both costing methods see the same stock.  Also corrects or voids opening
    balance layers that nothing has drawn from yet.

Architecture position:
    Services -- stateful orchestration over costing_kernel models, composing
    the pure moving-average engine (apply_stock_in, remove_stock).

Invariants enforced:
    - Bundle SKUs never receive layers.
    - Every layer gets a sequence number from SequenceService, which breaks
      received_at ties in insertion order.
    - Layer creation and its snapshot blend commit together or not at all.
    - Only untouched OPENING_BALANCE layers (not voided, qty_remaining ==
      qty_received, no allocation rows referencing them) can be edited or
      voided.  The snapshot is adjusted by removing the old (qty, cost) and
      receiving the new one.

Failure modes:
    - UnknownSkuError, NotStockableError.
    - InvalidQuantityError for qty <= 0 or a negative unit cost.
    - ValidationError for naive timestamps or an empty document.
    - LayerNotFoundError, LayerNotEditableError.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_config.schema import CostingConfig
from costing_engines.moving_average import apply_stock_in, remove_stock
from costing_engines.types import SnapshotMutation, SnapshotState
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import (
    LayerRecord,
    LayerSourceType,
    StockInLine,
    StockInResult,
)
from costing_kernel.domain.values import require_non_negative_cost, require_positive_qty
from costing_kernel.exceptions import (
    InsufficientStockError,
    LayerNotEditableError,
    NotStockableError,
    UnknownSkuError,
    ValidationError,
)
from costing_kernel.logging_config import LogContext, get_logger
from costing_kernel.models.cogs import CogsAllocationModel
from costing_kernel.models.inventory import ReceiptLayerModel, StockInDocumentModel
from costing_kernel.models.item import ItemModel
from costing_kernel.services.sequence_service import SequenceService
from costing_services.stock_positions import (
    apply_snapshot_mutation,
    lock_layer,
    lock_snapshot,
    to_snapshot_state,
)

logger = get_logger("services.receiving")


def _require_aware(value: datetime, field: str) -> datetime:
    if not isinstance(value, datetime):
        raise ValidationError(f"{field} must be a datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        raise ValidationError(f"{field} must be timezone-aware: {value.isoformat()}")
    return value


def _snapshot_after(state: SnapshotState, mutation: SnapshotMutation) -> SnapshotState:
    return SnapshotState(
        sku=state.sku,
        on_hand_qty=mutation.on_hand_qty,
        on_hand_value=mutation.on_hand_value,
        avg_unit_cost=mutation.avg_unit_cost,
    )


class ReceivingService:
    """
    Inbound stock for non-bundle SKUs.

    Contract:
        Each public method is one transaction.  With auto_commit=True (the
        default) it commits on success and rolls back on failure; with
        auto_commit=False it only flushes and the caller owns the boundary.

    Guarantees:
        - A layer and its snapshot blend are written together.
        - Layers are never deleted; voiding sets voided=True.

    Non-goals:
        - Does NOT cost sales; see CogsAllocationEngine.
        - Does NOT edit STOCK_IN layers.  A wrong stock-in is corrected by a
          new document.
    """

    def __init__(
        self,
        session: Session,
        config: CostingConfig,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._sequences = SequenceService(session)

    def _finish(self) -> None:
        if self._auto_commit:
            self._session.commit()
        else:
            self._session.flush()

    def _qty(self, value, field: str = "qty") -> Decimal:
        return require_positive_qty(value, field, self._config.quantity_decimal_places)

    def opening_balance_time(self, as_of: date | datetime) -> datetime:
        """
        Receipt timestamp of an opening balance.

        A date means the configured opening time on that day in the
        reporting timezone; an aware datetime is used as given.
        """
        if isinstance(as_of, datetime):
            return _require_aware(as_of, "as_of")
        if isinstance(as_of, date):
            return datetime.combine(
                as_of,
                self._config.opening_balance_time,
                tzinfo=self._config.tzinfo,
            )
        raise ValidationError(f"as_of must be a date or datetime, got {as_of!r}")

    # ------------------------------------------------------------------
    # Layer creation
    # ------------------------------------------------------------------

    def record_opening_balance(
        self,
        sku: str,
        qty: Decimal | int | str,
        unit_cost: Decimal | int | str,
        as_of: date | datetime,
    ) -> LayerRecord:
        """
        Seed a SKU with an OPENING_BALANCE layer.

        Args:
            sku: Non-bundle SKU.
            qty: Quantity on hand (> 0).
            unit_cost: Cost per unit (>= 0).
            as_of: Opening date, or an aware timestamp.

        Returns:
            The created layer.
        """
        qty = self._qty(qty)
        cost = require_non_negative_cost(unit_cost)
        received_at = self.opening_balance_time(as_of)

        with LogContext.bind(sku=sku):
            try:
                layer = self._create_layer(
                    sku=sku,
                    qty=qty,
                    unit_cost=cost,
                    received_at=received_at,
                    source_type=LayerSourceType.OPENING_BALANCE,
                    source_ref=None,
                )
                record = LayerRecord.from_model(layer)
                self._finish()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "opening_balance_recorded",
                extra={
                    "layer_id": str(record.id),
                    "qty": str(qty),
                    "unit_cost": str(cost),
                    "received_at": received_at.isoformat(),
                },
            )
        return record

    def receive_stock(
        self,
        received_at: datetime,
        lines: Sequence[StockInLine],
        reference: str,
        supplier: str | None = None,
        note: str | None = None,
    ) -> StockInResult:
        """
        Record a stock-in document: one STOCK_IN layer per line.

        All lines are validated before anything is written, and the whole
        document commits as one transaction.

        Raises:
            ValidationError: No lines, or a naive received_at.
            InvalidQuantityError: A line with qty <= 0 or negative cost.
            UnknownSkuError / NotStockableError: A line's SKU.
        """
        received_at = _require_aware(received_at, "received_at")
        if not lines:
            raise ValidationError("Stock-in document has no lines")

        validated = [
            (line.sku, self._qty(line.qty), require_non_negative_cost(line.unit_cost))
            for line in lines
        ]

        try:
            document = StockInDocumentModel(
                received_at=received_at,
                reference=reference,
                supplier=supplier,
                note=note,
                line_count=len(validated),
            )
            self._session.add(document)
            self._session.flush()

            layers = [
                self._create_layer(
                    sku=sku,
                    qty=qty,
                    unit_cost=cost,
                    received_at=received_at,
                    source_type=LayerSourceType.STOCK_IN,
                    source_ref=str(document.id),
                )
                for sku, qty, cost in validated
            ]
            result = StockInResult(
                document_id=document.id,
                reference=reference,
                received_at=received_at,
                layers=tuple(LayerRecord.from_model(layer) for layer in layers),
            )
            self._finish()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "stock_received",
            extra={
                "document_id": str(result.document_id),
                "reference": reference,
                "line_count": len(validated),
            },
        )
        return result

    def _create_layer(
        self,
        *,
        sku: str,
        qty: Decimal,
        unit_cost: Decimal,
        received_at: datetime,
        source_type: LayerSourceType,
        source_ref: str | None,
    ) -> ReceiptLayerModel:
        item = self._session.execute(
            select(ItemModel).where(ItemModel.sku == sku)
        ).scalar_one_or_none()
        if item is None:
            raise UnknownSkuError(sku)
        if item.is_bundle:
            raise NotStockableError(sku)

        layer = ReceiptLayerModel(
            sku=sku,
            received_at=received_at,
            sequence=self._sequences.next_value(SequenceService.RECEIPT_LAYER),
            qty_received=qty,
            qty_remaining=qty,
            unit_cost=unit_cost,
            source_type=source_type.value,
            source_ref=source_ref,
            voided=False,
        )
        self._session.add(layer)

        snapshot = lock_snapshot(self._session, sku)
        mutation = apply_stock_in(
            snapshot=to_snapshot_state(snapshot),
            qty=qty,
            unit_cost=unit_cost,
        )
        apply_snapshot_mutation(snapshot, mutation)
        self._session.flush()

        logger.debug(
            "receipt_layer_created",
            extra={
                "sku": sku,
                "layer_id": str(layer.id),
                "sequence": layer.sequence,
                "source_type": source_type.value,
                "avg_unit_cost": str(mutation.avg_unit_cost),
            },
        )
        return layer

    # ------------------------------------------------------------------
    # Opening balance corrections
    # ------------------------------------------------------------------

    def update_opening_balance_layer(
        self,
        layer_id: UUID,
        received_at: date | datetime | None = None,
        qty_received: Decimal | int | str | None = None,
        unit_cost: Decimal | int | str | None = None,
    ) -> LayerRecord:
        """
        Correct an untouched opening balance layer.

        Arguments left as None keep their current value.  The snapshot
        loses the old (qty, cost) and receives the new one.

        Raises:
            LayerNotFoundError, LayerNotEditableError.
        """
        new_qty = self._qty(qty_received, "qty_received") if qty_received is not None else None
        new_cost = require_non_negative_cost(unit_cost) if unit_cost is not None else None
        new_received_at = (
            self.opening_balance_time(received_at) if received_at is not None else None
        )

        try:
            layer = self._lock_editable_layer(layer_id)
            qty = new_qty if new_qty is not None else layer.qty_received
            cost = new_cost if new_cost is not None else layer.unit_cost

            snapshot = lock_snapshot(self._session, layer.sku)
            removed = self._remove_from_snapshot(layer, to_snapshot_state(snapshot))
            mutation = apply_stock_in(
                snapshot=_snapshot_after(to_snapshot_state(snapshot), removed),
                qty=qty,
                unit_cost=cost,
            )
            apply_snapshot_mutation(snapshot, mutation)

            layer.qty_received = qty
            layer.qty_remaining = qty
            layer.unit_cost = cost
            if new_received_at is not None:
                layer.received_at = new_received_at
            self._session.flush()
            record = LayerRecord.from_model(layer)
            self._finish()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "opening_balance_updated",
            extra={
                "sku": record.sku,
                "layer_id": str(record.id),
                "qty": str(record.qty_received),
                "unit_cost": str(record.unit_cost),
            },
        )
        return record

    def void_opening_balance_layer(self, layer_id: UUID) -> LayerRecord:
        """
        Void an untouched opening balance layer and take it out of the snapshot.

        Raises:
            LayerNotFoundError, LayerNotEditableError.
        """
        try:
            layer = self._lock_editable_layer(layer_id)
            snapshot = lock_snapshot(self._session, layer.sku)
            apply_snapshot_mutation(
                snapshot,
                self._remove_from_snapshot(layer, to_snapshot_state(snapshot)),
            )

            layer.voided = True
            layer.voided_at = self._clock.now_utc()
            self._session.flush()
            record = LayerRecord.from_model(layer)
            self._finish()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "opening_balance_voided",
            extra={"sku": record.sku, "layer_id": str(record.id)},
        )
        return record

    def _lock_editable_layer(self, layer_id: UUID) -> ReceiptLayerModel:
        layer = lock_layer(self._session, layer_id)

        reason = None
        if layer.source_type != LayerSourceType.OPENING_BALANCE.value:
            reason = "only opening balance layers can be changed"
        elif layer.voided:
            reason = "layer is voided"
        elif layer.qty_remaining != layer.qty_received:
            reason = "layer has been partly consumed"
        elif self._session.execute(
            select(CogsAllocationModel.id)
            .where(CogsAllocationModel.source_layer_id == layer.id)
            .limit(1)
        ).first() is not None:
            reason = "layer is referenced by COGS allocations"

        if reason is not None:
            raise LayerNotEditableError(str(layer_id), reason)
        return layer

    def _remove_from_snapshot(
        self,
        layer: ReceiptLayerModel,
        state: SnapshotState,
    ) -> SnapshotMutation:
        try:
            return remove_stock(
                snapshot=state,
                qty=layer.qty_received,
                unit_cost=layer.unit_cost,
            )
        except InsufficientStockError:
            raise LayerNotEditableError(
                str(layer.id),
                "moving-average stock has already been sold",
            ) from None

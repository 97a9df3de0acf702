"""
Stock position loading and mutation application.

Responsibility:
    The seam between ORM rows and the pure engines.  Loads a SKU's receipt
    layers or cost snapshot under row locks, converts them to engine state
    (LayerState, SnapshotState), and writes engine mutations back onto the
    locked rows.

Architecture position:
    Services -- shared by ReceivingService and CogsAllocationEngine.

Invariants enforced:
    - Every read that precedes a write uses SELECT ... FOR UPDATE with
      populate_existing, so a row is never updated from a stale identity-map
      copy.
    - Mutations are applied by assigning the engine's computed result values,
      never by re-deriving them here.
    - A layer's qty_remaining never leaves [0, qty_received].
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from costing_engines.types import (
    LayerMutation,
    LayerState,
    SnapshotMutation,
    SnapshotState,
)
from costing_kernel.domain.values import ZERO
from costing_kernel.exceptions import LayerNotFoundError
from costing_kernel.models.inventory import CostSnapshotModel, ReceiptLayerModel


def to_layer_state(model: ReceiptLayerModel) -> LayerState:
    return LayerState(
        layer_id=model.id,
        sku=model.sku,
        received_at=model.received_at,
        sequence=model.sequence,
        qty_received=model.qty_received,
        qty_remaining=model.qty_remaining,
        unit_cost=model.unit_cost,
    )


def to_snapshot_state(model: CostSnapshotModel) -> SnapshotState:
    return SnapshotState(
        sku=model.sku,
        on_hand_qty=model.on_hand_qty,
        on_hand_value=model.on_hand_value,
        avg_unit_cost=model.avg_unit_cost,
    )


def lock_open_layers(session: Session, sku: str) -> list[ReceiptLayerModel]:
    """Non-voided layers of `sku` in FIFO order, locked for update."""
    return list(
        session.scalars(
            select(ReceiptLayerModel)
            .where(ReceiptLayerModel.sku == sku)
            .where(ReceiptLayerModel.voided.is_(False))
            .order_by(ReceiptLayerModel.received_at, ReceiptLayerModel.sequence)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    )


def lock_layers_by_id(session: Session, layer_ids: Iterable[UUID]) -> list[ReceiptLayerModel]:
    """
    Specific layers, locked for update in id order.

    Voided layers are included: a reversal credits the layers the sale
    consumed, whatever has happened to them since.
    """
    ids = sorted(set(layer_ids), key=str)
    if not ids:
        return []
    models = list(
        session.scalars(
            select(ReceiptLayerModel)
            .where(ReceiptLayerModel.id.in_(ids))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    )
    found = {m.id for m in models}
    for layer_id in ids:
        if layer_id not in found:
            raise LayerNotFoundError(str(layer_id))
    return models


def lock_layer(session: Session, layer_id: UUID) -> ReceiptLayerModel:
    """One layer, locked for update."""
    return lock_layers_by_id(session, [layer_id])[0]


def lock_snapshot(session: Session, sku: str) -> CostSnapshotModel:
    """
    The cost snapshot of `sku`, locked for update.

    Snapshots are created when the SKU is registered; a missing row (a SKU
    loaded by other means) is created empty.
    """
    model = session.execute(
        select(CostSnapshotModel)
        .where(CostSnapshotModel.sku == sku)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if model is None:
        model = CostSnapshotModel(
            sku=sku,
            on_hand_qty=ZERO,
            on_hand_value=ZERO,
            avg_unit_cost=ZERO,
        )
        session.add(model)
        session.flush()
    return model


def apply_layer_mutations(
    layers: Sequence[ReceiptLayerModel],
    mutations: Iterable[LayerMutation],
) -> None:
    by_id = {layer.id: layer for layer in layers}
    for mutation in mutations:
        layer = by_id.get(mutation.layer_id)
        if layer is None:
            raise LayerNotFoundError(str(mutation.layer_id))
        if not ZERO <= mutation.qty_remaining_after <= layer.qty_received:
            raise ValueError(
                f"qty_remaining {mutation.qty_remaining_after} out of range "
                f"for layer {layer.id} (qty_received {layer.qty_received})"
            )
        layer.qty_remaining = mutation.qty_remaining_after


def apply_snapshot_mutation(model: CostSnapshotModel, mutation: SnapshotMutation) -> None:
    model.on_hand_qty = mutation.on_hand_qty
    model.on_hand_value = mutation.on_hand_value
    model.avg_unit_cost = mutation.avg_unit_cost

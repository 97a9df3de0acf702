"""
CogsAllocationEngine -- records COGS for shipped order lines and reverses it on return.

Responsibility:
    The two entry points the order feed calls: apply_cogs_for_order_shipped
    when an order line ships and apply_return_reversal when it comes back.
    Explodes bundles, selects the allocator or reversal planner for the
    costing method from the strategy table, applies the planned mutations to
    the locked layer / snapshot rows and appends the allocation rows.

Architecture position:
    Services -- stateful orchestration.  Composes the pure engines in
    costing_engines with the kernel models; owns the transaction boundary.

Invariants enforced:
    - Idempotent: a second call for an order line that already has sale
      (or reversal) rows for its component SKUs writes nothing and returns
      the existing rows.
    - Single writer per (order_id, component sku, sale|reversal): a
      posting claim with a UNIQUE key is inserted with the rows, so a
      concurrent second writer fails on commit and reports the winner's
      rows as already costed.
    - All-or-nothing across every component of one order line.  Engines
      raise before anything is applied; any exception rolls back.
    - Allocation rows are append-only and never reference a bundle SKU.
    - Rows lock in component_sku order, so concurrent bundle sales sharing
      components do not deadlock.

Failure modes:
    - InvalidQuantityError / ValidationError on bad input.
    - UnknownSkuError, NoComponentsDefinedError during bundle explosion.
    - InsufficientStockError naming the short component.
    - AllocationNotFoundError, AlreadyReversedError on returns.
    - InvalidCostingMethodError when a return names a different method than
      the sale was costed with.
    - CostingConflictError when a concurrent writer holds the claim but its
      rows are not yet visible.
    - Any IntegrityError other than a posting-claim collision propagates.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from costing_config.schema import CostingConfig
from costing_engines.bundle import resolve_bundle
from costing_engines.strategies import allocator_for, reversal_planner_for
from costing_engines.types import (
    AllocationPlan,
    ComponentRequirement,
    PriorAllocation,
    StockPosition,
)
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import (
    AllocationRecord,
    CostingMethod,
    CostingResult,
    CostingStatus,
    ReturnLine,
    ShipmentLine,
)
from costing_kernel.domain.values import ZERO, quantize_qty, require_positive_qty
from costing_kernel.exceptions import (
    AllocationNotFoundError,
    AlreadyReversedError,
    CostingConflictError,
    InsufficientStockError,
    InvalidCostingMethodError,
    InvalidQuantityError,
    UnknownSkuError,
    ValidationError,
)
from costing_kernel.logging_config import LogContext, get_logger
from costing_kernel.models.cogs import CogsAllocationModel, CogsPostingClaimModel
from costing_kernel.models.inventory import CostSnapshotModel, ReceiptLayerModel
from costing_services.catalog_service import CatalogService
from costing_services.stock_positions import (
    apply_layer_mutations,
    apply_snapshot_mutation,
    lock_layers_by_id,
    lock_open_layers,
    lock_snapshot,
    to_layer_state,
    to_snapshot_state,
)

logger = get_logger("services.cogs_engine")


@dataclass
class _LockedPlan:
    """An engine plan together with the locked rows it mutates."""

    plan: AllocationPlan
    layers: list[ReceiptLayerModel]
    snapshot: CostSnapshotModel | None


def _require_aware(value: datetime, field: str) -> datetime:
    if not isinstance(value, datetime):
        raise ValidationError(f"{field} must be a datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        raise ValidationError(f"{field} must be timezone-aware: {value.isoformat()}")
    return value


def _require_order_id(order_id: str) -> str:
    if not isinstance(order_id, str) or not order_id.strip():
        raise ValidationError(f"order_id must be a non-empty string, got {order_id!r}")
    return order_id


class CogsAllocationEngine:
    """
    COGS recognition for shipped and returned order lines.

    Contract:
        Every call either commits all of its rows and mutations and returns
        a CostingResult, or raises a typed error having written nothing.
        With auto_commit=False the engine flushes instead of committing and
        the caller owns the transaction (a rollback still happens on error).

    Guarantees:
        - COSTED / REVERSED results carry exactly the rows written by the call.
        - ALREADY_COSTED / ALREADY_REVERSED results carry the rows written by
          the first successful call, in the same order.
        - method=None means the configured default for sales, and the method
          recorded on the sale for returns.

    Non-goals:
        - Does NOT retry.  The caller decides whether to retry after an
          InsufficientStockError; idempotency makes that safe.
        - Does NOT batch.  See CogsRunService.
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
        self._catalog = CatalogService(session, clock=self._clock, auto_commit=False)

    def _finish(self) -> None:
        if self._auto_commit:
            self._session.commit()
        else:
            self._session.flush()

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    def apply_shipment(
        self,
        line: ShipmentLine,
        method: CostingMethod | str | None = None,
    ) -> CostingResult:
        """apply_cogs_for_order_shipped for a ShipmentLine."""
        return self.apply_cogs_for_order_shipped(
            order_id=line.order_id,
            sku=line.sku,
            qty=line.qty,
            shipped_at=line.shipped_at,
            method=method,
        )

    def apply_cogs_for_order_shipped(
        self,
        order_id: str,
        sku: str,
        qty: Decimal | int | str,
        shipped_at: datetime,
        method: CostingMethod | str | None = None,
    ) -> CostingResult:
        """
        Recognize COGS for one shipped order line.

        Args:
            order_id: Order identifier from the order feed.
            sku: Order-line SKU (simple or bundle).
            qty: Shipped quantity (> 0).
            shipped_at: Aware shipment timestamp.
            method: FIFO or AVG; None uses the configured default.

        Returns:
            CostingResult with status COSTED, or ALREADY_COSTED when the
            order line already has sale rows.

        Raises:
            InsufficientStockError: Some component is short.  Nothing is
                written for any component.
        """
        order_id = _require_order_id(order_id)
        method = self._resolve_method(method)
        qty = require_positive_qty(qty, "qty", self._config.quantity_decimal_places)
        shipped_at = _require_aware(shipped_at, "shipped_at")

        with LogContext.bind(order_id=order_id, sku=sku):
            logger.info(
                "cogs_allocation_started",
                extra={"method": method.value, "qty": str(qty)},
            )
            requirements: tuple[ComponentRequirement, ...] = ()
            try:
                requirements = self._explode(sku, qty)
                component_skus = [r.component_sku for r in requirements]

                existing = self._posted_rows(order_id, component_skus, is_reversal=False)
                if existing:
                    self._finish()
                    return self._already(
                        order_id, sku, existing, CostingStatus.ALREADY_COSTED
                    )

                locked = [
                    self._plan_sale(method, requirement) for requirement in requirements
                ]
                rows = self._write(
                    order_id, sku, qty, shipped_at, locked, is_reversal=False
                )
                result = self._result(order_id, sku, method, CostingStatus.COSTED, rows)
                self._finish()
            except IntegrityError as exc:
                self._session.rollback()
                return self._after_conflict(
                    order_id, sku, requirements, CostingStatus.ALREADY_COSTED, exc
                )
            except InsufficientStockError as exc:
                self._session.rollback()
                logger.warning(
                    "cogs_insufficient_stock",
                    extra={
                        "component_sku": exc.sku,
                        "requested": exc.requested,
                        "available": exc.available,
                        "method": method.value,
                    },
                )
                raise
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "cogs_allocation_completed",
                extra={
                    "method": method.value,
                    "allocation_count": len(result.allocations),
                    "total_amount": str(result.total_amount),
                },
            )
            return result

    def _plan_sale(
        self,
        method: CostingMethod,
        requirement: ComponentRequirement,
    ) -> _LockedPlan:
        sku = requirement.component_sku
        if requirement.required_qty <= ZERO:
            raise InvalidQuantityError("required_qty", requirement.required_qty)

        layers: list[ReceiptLayerModel] = []
        snapshot: CostSnapshotModel | None = None
        if method == CostingMethod.FIFO:
            layers = lock_open_layers(self._session, sku)
            position = StockPosition(
                sku=sku, layers=tuple(to_layer_state(m) for m in layers)
            )
        else:
            snapshot = lock_snapshot(self._session, sku)
            position = StockPosition(sku=sku, snapshot=to_snapshot_state(snapshot))

        plan = allocator_for(method)(sku=sku, qty=requirement.required_qty, position=position)
        return _LockedPlan(plan=plan, layers=layers, snapshot=snapshot)

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------

    def apply_return(
        self,
        line: ReturnLine,
        method: CostingMethod | str | None = None,
    ) -> CostingResult:
        """apply_return_reversal for a ReturnLine."""
        return self.apply_return_reversal(
            order_id=line.order_id,
            sku=line.sku,
            return_qty=line.return_qty,
            return_date=line.return_date,
            method=method,
        )

    def apply_return_reversal(
        self,
        order_id: str,
        sku: str,
        return_qty: Decimal | int | str,
        return_date: date | datetime,
        method: CostingMethod | str | None = None,
    ) -> CostingResult:
        """
        Reverse the COGS of a returned order line.

        Each component is credited back where its sale took it from: the
        same FIFO layers in the sale's proportions, or the AVG snapshot at
        the sale's unit cost.  A bundle return credits every component the sale
        shipped, scaled by return_qty over the sold quantity, whatever the
        recipe says now.

        Args:
            order_id: Order of the original sale.
            sku: Order-line SKU as shipped.
            return_qty: Returned order-line quantity (> 0).
            return_date: Aware timestamp, or a date (midnight in the
                reporting timezone).
            method: None follows the method recorded on the sale; an
                explicit method must match it.

        Returns:
            CostingResult with status REVERSED, or ALREADY_REVERSED when a
            reversal for the order line was already recorded.

        Raises:
            AllocationNotFoundError: The order line was never costed.
            AlreadyReversedError: return quantity exceeds the sold quantity.
        """
        order_id = _require_order_id(order_id)
        explicit = CostingMethod.parse(method) if method is not None else None
        return_qty = require_positive_qty(
            return_qty, "return_qty", self._config.quantity_decimal_places
        )
        returned_at = self._return_time(return_date)

        with LogContext.bind(order_id=order_id, sku=sku):
            logger.info("cogs_reversal_started", extra={"return_qty": str(return_qty)})
            requirements: tuple[ComponentRequirement, ...] = ()
            try:
                requirements = self._sold_requirements(order_id, sku, return_qty)
                component_skus = [r.component_sku for r in requirements]

                existing = self._posted_rows(order_id, component_skus, is_reversal=True)
                if existing:
                    self._finish()
                    return self._already(
                        order_id, sku, existing, CostingStatus.ALREADY_REVERSED
                    )

                locked = [
                    self._plan_reversal(order_id, explicit, requirement)
                    for requirement in requirements
                ]
                rows = self._write(
                    order_id, sku, return_qty, returned_at, locked, is_reversal=True
                )
                result = self._result(
                    order_id,
                    sku,
                    locked[0].plan.method,
                    CostingStatus.REVERSED,
                    rows,
                )
                self._finish()
            except IntegrityError as exc:
                self._session.rollback()
                return self._after_conflict(
                    order_id, sku, requirements, CostingStatus.ALREADY_REVERSED, exc
                )
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "cogs_reversal_completed",
                extra={
                    "method": result.method.value,
                    "allocation_count": len(result.allocations),
                    "total_amount": str(result.total_amount),
                },
            )
            return result

    def _sold_requirements(
        self,
        order_id: str,
        sku: str,
        return_qty: Decimal,
    ) -> tuple[ComponentRequirement, ...]:
        """
        Components of the sold order line, scaled to the returned quantity.

        Built from the sale rows rather than the current recipe, so a bundle
        edited after the sale still returns every component it shipped with.
        """
        sales = list(
            self._session.scalars(
                select(CogsAllocationModel)
                .where(CogsAllocationModel.order_id == order_id)
                .where(CogsAllocationModel.parent_sku == sku)
                .where(CogsAllocationModel.is_reversal.is_(False))
            )
        )
        if not sales:
            raise AllocationNotFoundError(order_id, sku)

        line_qty = sales[0].parent_qty
        if return_qty > line_qty:
            raise AlreadyReversedError(order_id, sku, return_qty, line_qty)

        sold: dict[str, Decimal] = {}
        for row in sales:
            sold[row.sku] = sold.get(row.sku, ZERO) + row.qty

        places = self._config.quantity_decimal_places
        return tuple(
            ComponentRequirement(
                component_sku=component,
                required_qty=quantize_qty(sold[component] * return_qty / line_qty, places),
            )
            for component in sorted(sold)
        )

    def _plan_reversal(
        self,
        order_id: str,
        explicit: CostingMethod | None,
        requirement: ComponentRequirement,
    ) -> _LockedPlan:
        sku = requirement.component_sku
        if requirement.required_qty <= ZERO:
            raise InvalidQuantityError("return_qty", requirement.required_qty)
        sales = self._posted_rows(order_id, [sku], is_reversal=False)
        if not sales:
            raise AllocationNotFoundError(order_id, sku)

        recorded = CostingMethod(sales[0].method)
        if explicit is not None and explicit != recorded:
            raise InvalidCostingMethodError(
                explicit.value,
                f"order {order_id} SKU {sku} was costed with {recorded.value}",
            )

        sold = sum((row.qty for row in sales), ZERO)
        if requirement.required_qty > sold:
            raise AlreadyReversedError(order_id, sku, requirement.required_qty, sold)

        prior = tuple(
            PriorAllocation(
                source_layer_id=row.source_layer_id,
                qty=row.qty,
                unit_cost=row.unit_cost_used,
            )
            for row in sales
        )

        layers: list[ReceiptLayerModel] = []
        snapshot: CostSnapshotModel | None = None
        if recorded == CostingMethod.FIFO:
            layers = lock_layers_by_id(
                self._session,
                (p.source_layer_id for p in prior if p.source_layer_id is not None),
            )
            position = StockPosition(
                sku=sku, layers=tuple(to_layer_state(m) for m in layers)
            )
        else:
            snapshot = lock_snapshot(self._session, sku)
            position = StockPosition(sku=sku, snapshot=to_snapshot_state(snapshot))

        plan = reversal_planner_for(recorded)(
            sku=sku,
            return_qty=requirement.required_qty,
            prior=prior,
            position=position,
        )
        return _LockedPlan(plan=plan, layers=layers, snapshot=snapshot)

    def _return_time(self, return_date: date | datetime) -> datetime:
        if isinstance(return_date, datetime):
            return _require_aware(return_date, "return_date")
        if isinstance(return_date, date):
            return datetime.combine(return_date, time.min, tzinfo=self._config.tzinfo)
        raise ValidationError(f"return_date must be a date or datetime, got {return_date!r}")

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _resolve_method(self, method: CostingMethod | str | None) -> CostingMethod:
        if method is None:
            return self._config.default_method
        return CostingMethod.parse(method)

    def _explode(self, sku: str, qty: Decimal) -> tuple[ComponentRequirement, ...]:
        item = self._catalog.get_item(sku)
        if item is None:
            raise UnknownSkuError(sku)
        components = self._catalog.get_bundle_components(sku) if item.is_bundle else ()
        return resolve_bundle(
            sku=sku,
            qty=qty,
            is_bundle=item.is_bundle,
            components=components,
        )

    def _posted_rows(
        self,
        order_id: str,
        skus: Sequence[str],
        is_reversal: bool,
    ) -> list[CogsAllocationModel]:
        if not skus:
            return []
        return list(
            self._session.scalars(
                select(CogsAllocationModel)
                .where(CogsAllocationModel.order_id == order_id)
                .where(CogsAllocationModel.sku.in_(list(skus)))
                .where(CogsAllocationModel.is_reversal.is_(is_reversal))
                .order_by(CogsAllocationModel.created_at, CogsAllocationModel.line_no)
            )
        )

    def _write(
        self,
        order_id: str,
        parent_sku: str,
        parent_qty: Decimal,
        posted_at: datetime,
        locked: Sequence[_LockedPlan],
        is_reversal: bool,
    ) -> list[CogsAllocationModel]:
        """Apply every plan's mutations, then append its rows and claims."""
        places = self._config.amount_decimal_places
        rows: list[CogsAllocationModel] = []

        for item in locked:
            apply_layer_mutations(item.layers, item.plan.layer_mutations)
            if item.plan.snapshot_mutation is not None:
                if item.snapshot is None:
                    raise ValueError(f"plan for {item.plan.sku} mutates an unlocked snapshot")
                apply_snapshot_mutation(item.snapshot, item.plan.snapshot_mutation)

            self._session.add(
                CogsPostingClaimModel(
                    idempotency_key=CogsPostingClaimModel.make_key(
                        order_id, item.plan.sku, is_reversal
                    ),
                    order_id=order_id,
                    sku=item.plan.sku,
                    is_reversal=is_reversal,
                )
            )

            for draft in item.plan.drafts:
                row = CogsAllocationModel(
                    id=uuid4(),
                    order_id=order_id,
                    sku=draft.sku,
                    shipped_at=posted_at,
                    method=item.plan.method.value,
                    qty=-draft.qty if is_reversal else draft.qty,
                    unit_cost_used=draft.unit_cost,
                    amount=draft.posted_amount(places, is_reversal=is_reversal),
                    is_reversal=is_reversal,
                    source_layer_id=draft.source_layer_id,
                    parent_sku=parent_sku,
                    parent_qty=parent_qty,
                    line_no=len(rows),
                )
                self._session.add(row)
                rows.append(row)

        self._session.flush()
        return rows

    def _result(
        self,
        order_id: str,
        sku: str,
        method: CostingMethod,
        status: CostingStatus,
        rows: Sequence[CogsAllocationModel],
    ) -> CostingResult:
        allocations = tuple(AllocationRecord.from_model(row) for row in rows)
        return CostingResult(
            order_id=order_id,
            sku=sku,
            method=method,
            status=status,
            allocations=allocations,
            total_amount=sum((a.amount for a in allocations), ZERO),
        )

    def _already(
        self,
        order_id: str,
        sku: str,
        rows: Sequence[CogsAllocationModel],
        status: CostingStatus,
    ) -> CostingResult:
        result = self._result(order_id, sku, CostingMethod(rows[0].method), status, rows)
        event = (
            "cogs_already_costed"
            if status == CostingStatus.ALREADY_COSTED
            else "cogs_already_reversed"
        )
        logger.info(
            event,
            extra={
                "allocation_count": len(result.allocations),
                "total_amount": str(result.total_amount),
            },
        )
        return result

    def _after_conflict(
        self,
        order_id: str,
        sku: str,
        requirements: Sequence[ComponentRequirement],
        status: CostingStatus,
        error: IntegrityError,
    ) -> CostingResult:
        """
        Resolve an IntegrityError raised while writing an order line.

        Only a collision on a posting claim means another writer won; any
        other constraint failure is re-raised unchanged.
        """
        is_reversal = status == CostingStatus.ALREADY_REVERSED
        component_skus = [r.component_sku for r in requirements]
        keys = [
            CogsPostingClaimModel.make_key(order_id, component, is_reversal)
            for component in component_skus
        ]
        claimed = self._session.scalars(
            select(CogsPostingClaimModel.idempotency_key).where(
                CogsPostingClaimModel.idempotency_key.in_(keys)
            )
        ).all()
        existing = (
            self._posted_rows(order_id, component_skus, is_reversal=is_reversal)
            if claimed
            else []
        )
        if self._auto_commit:
            self._session.commit()

        if not claimed:
            raise error
        logger.warning(
            "cogs_claim_conflict",
            extra={"is_reversal": is_reversal, "claimed": len(claimed)},
        )
        if not existing:
            raise CostingConflictError(order_id, sku)
        return self._already(order_id, sku, existing, status)

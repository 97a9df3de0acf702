"""
CatalogService -- item catalog and bundle recipe maintenance.

Responsibility:
    Register SKUs, look them up, and define the component recipe of bundle
    SKUs.  Registering a non-bundle SKU also creates its (empty) cost
    snapshot, so every stockable SKU has exactly one snapshot row before any
    stock movement touches it.

Architecture position:
    Services -- stateful orchestration over costing_kernel models.
    Also composed (read-only) by CogsAllocationEngine for bundle explosion.

Invariants enforced:
    - sku is unique and is_bundle never changes after registration.
    - Recipes are one level deep: a component is never itself a bundle.
    - No self reference, no duplicate component, quantity_per_bundle > 0.
    - define_bundle replaces the whole recipe in one transaction and never
      touches allocation rows.

Failure modes:
    - ValidationError for an empty SKU.
    - InvalidQuantityError for a negative default cost or a non-positive
      quantity_per_bundle.
    - ItemAlreadyExistsError, UnknownSkuError, BundleDefinitionError.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.dtos import BundleComponentSpec, ItemRecord
from costing_kernel.domain.values import (
    ZERO,
    require_non_negative_cost,
    require_positive_qty,
)
from costing_kernel.exceptions import (
    BundleDefinitionError,
    ItemAlreadyExistsError,
    UnknownSkuError,
    ValidationError,
)
from costing_kernel.logging_config import get_logger
from costing_kernel.models.inventory import CostSnapshotModel
from costing_kernel.models.item import BundleComponentModel, ItemModel

logger = get_logger("services.catalog")


def _normalize_sku(sku: str) -> str:
    if not isinstance(sku, str) or not sku.strip():
        raise ValidationError(f"SKU must be a non-empty string, got {sku!r}")
    return sku.strip()


class CatalogService:
    """
    Item catalog and bundle recipes.

    Contract:
        Write methods commit on success and roll back on failure when
        auto_commit is True; with auto_commit=False they only flush and the
        caller owns the transaction.

    Non-goals:
        - Does NOT hold inventory; see ReceivingService.
        - Does NOT support converting a SKU between simple and bundle.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit

    def _finish(self) -> None:
        if self._auto_commit:
            self._session.commit()
        else:
            self._session.flush()

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def register_item(
        self,
        sku: str,
        display_name: str,
        is_bundle: bool = False,
        default_unit_cost: Decimal | int | str = ZERO,
    ) -> ItemRecord:
        """
        Register a new SKU.

        Raises:
            ValidationError: Empty SKU.
            InvalidQuantityError: Negative default_unit_cost.
            ItemAlreadyExistsError: SKU already registered.
        """
        sku = _normalize_sku(sku)
        cost = require_non_negative_cost(default_unit_cost, "default_unit_cost")

        try:
            if self._find_item(sku) is not None:
                raise ItemAlreadyExistsError(sku)

            item = ItemModel(
                sku=sku,
                display_name=display_name or sku,
                is_bundle=is_bundle,
                default_unit_cost=cost,
            )
            self._session.add(item)
            # The snapshot references inventory_items.sku; no relationship orders the inserts
            self._session.flush()
            if not is_bundle:
                self._session.add(CostSnapshotModel(sku=sku))
                self._session.flush()
            record = ItemRecord.from_model(item)
            self._finish()
        except IntegrityError:
            self._session.rollback()
            if self._find_item(sku) is None:
                raise
            logger.warning("concurrent_item_insert_conflict", extra={"sku": sku})
            raise ItemAlreadyExistsError(sku) from None
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "item_registered",
            extra={"sku": sku, "is_bundle": is_bundle},
        )
        return record

    def get_item(self, sku: str) -> ItemRecord | None:
        item = self._find_item(sku)
        return ItemRecord.from_model(item) if item is not None else None

    def require_item(self, sku: str) -> ItemRecord:
        """Like get_item, but raises UnknownSkuError when the SKU is missing."""
        item = self._find_item(sku)
        if item is None:
            raise UnknownSkuError(sku)
        return ItemRecord.from_model(item)

    def _find_item(self, sku: str) -> ItemModel | None:
        return self._session.execute(
            select(ItemModel).where(ItemModel.sku == sku)
        ).scalar_one_or_none()

    # ------------------------------------------------------------------
    # Bundle recipes
    # ------------------------------------------------------------------

    def define_bundle(
        self,
        bundle_sku: str,
        components: Sequence[BundleComponentSpec],
    ) -> tuple[BundleComponentSpec, ...]:
        """
        Replace the recipe of `bundle_sku` with `components`.

        An empty list is accepted; selling the bundle then fails with
        NoComponentsDefinedError until a recipe is defined again.

        Raises:
            UnknownSkuError: Bundle or a component is not registered.
            BundleDefinitionError: Not a bundle, self reference, duplicate
                component, or a component that is itself a bundle.
            InvalidQuantityError: quantity_per_bundle <= 0.
        """
        try:
            bundle = self._find_item(bundle_sku)
            if bundle is None:
                raise UnknownSkuError(bundle_sku)
            if not bundle.is_bundle:
                raise BundleDefinitionError(bundle_sku, "SKU is not registered as a bundle")

            rows: list[BundleComponentSpec] = []
            seen: set[str] = set()
            for spec in components:
                component_sku = _normalize_sku(spec.component_sku)
                if component_sku == bundle_sku:
                    raise BundleDefinitionError(bundle_sku, "bundle cannot contain itself")
                if component_sku in seen:
                    raise BundleDefinitionError(
                        bundle_sku, f"duplicate component {component_sku}"
                    )
                component = self._find_item(component_sku)
                if component is None:
                    raise UnknownSkuError(component_sku)
                if component.is_bundle:
                    raise BundleDefinitionError(
                        bundle_sku, f"component {component_sku} is itself a bundle"
                    )
                seen.add(component_sku)
                rows.append(
                    BundleComponentSpec(
                        component_sku=component_sku,
                        quantity_per_bundle=require_positive_qty(
                            spec.quantity_per_bundle, "quantity_per_bundle"
                        ),
                    )
                )

            self._session.execute(
                delete(BundleComponentModel).where(
                    BundleComponentModel.bundle_sku == bundle_sku
                )
            )
            for row in rows:
                self._session.add(
                    BundleComponentModel(
                        bundle_sku=bundle_sku,
                        component_sku=row.component_sku,
                        quantity_per_bundle=row.quantity_per_bundle,
                    )
                )
            self._session.flush()
            self._finish()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "bundle_defined",
            extra={"bundle_sku": bundle_sku, "component_count": len(rows)},
        )
        return tuple(sorted(rows, key=lambda r: r.component_sku))

    def get_bundle_components(self, bundle_sku: str) -> tuple[BundleComponentSpec, ...]:
        """Recipe rows of a bundle, ordered by component_sku."""
        models = self._session.scalars(
            select(BundleComponentModel)
            .where(BundleComponentModel.bundle_sku == bundle_sku)
            .order_by(BundleComponentModel.component_sku)
        )
        return tuple(
            BundleComponentSpec(
                component_sku=m.component_sku,
                quantity_per_bundle=m.quantity_per_bundle,
            )
            for m in models
        )

"""
Tests for CatalogService - item registration and bundle recipes.

Tests cover:
- Registration, lookup and duplicate rejection
- Snapshot rows created for stockable SKUs
- Bundle recipe validation and replacement
"""

from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from costing_kernel.domain.dtos import BundleComponentSpec
from costing_kernel.exceptions import (
    BundleDefinitionError,
    InvalidQuantityError,
    ItemAlreadyExistsError,
    UnknownSkuError,
    ValidationError,
)
from costing_kernel.models.inventory import CostSnapshotModel
from costing_services import catalog_service as catalog_module
from costing_services.catalog_service import CatalogService


def _stale_once(find):
    calls = {"n": 0}

    def _find(self, sku):
        calls["n"] += 1
        return None if calls["n"] == 1 else find(self, sku)

    return _find


def _spec(sku: str, qpb: str = "1") -> BundleComponentSpec:
    return BundleComponentSpec(component_sku=sku, quantity_per_bundle=Decimal(qpb))


class TestRegisterItem:

    def test_register_and_get(self, catalog):
        record = catalog.register_item("W", "Widget", default_unit_cost=Decimal("2.5"))

        assert record.sku == "W"
        assert record.is_bundle is False
        assert catalog.get_item("W") == record
        assert catalog.get_item("W").default_unit_cost == Decimal("2.5")

    def test_stockable_item_gets_empty_snapshot(self, catalog, inventory_selector):
        catalog.register_item("W", "Widget")

        snapshot = inventory_selector.get_snapshot("W")
        assert snapshot is not None
        assert snapshot.on_hand_qty == Decimal("0")
        assert snapshot.avg_unit_cost == Decimal("0")

    def test_bundle_has_no_snapshot(self, catalog, inventory_selector):
        catalog.register_item("B", "Bundle", is_bundle=True)

        assert inventory_selector.get_snapshot("B") is None

    def test_duplicate_rejected(self, catalog):
        catalog.register_item("W", "Widget")

        with pytest.raises(ItemAlreadyExistsError) as exc_info:
            catalog.register_item("W", "Widget again")

        assert exc_info.value.sku == "W"

    def test_snapshot_committed_with_item(self, catalog, session_factory):
        catalog.register_item("X", "X-ray")
        catalog.register_item("Y", "Yoke")

        fresh = session_factory()
        skus = fresh.scalars(select(CostSnapshotModel.sku).order_by(CostSnapshotModel.sku)).all()
        assert skus == ["X", "Y"]

    def test_concurrent_duplicate_reported_as_existing(self, catalog, monkeypatch):
        catalog.register_item("W", "Widget")
        # The second caller checked before the first committed
        monkeypatch.setattr(
            CatalogService, "_find_item", _stale_once(CatalogService._find_item)
        )

        with pytest.raises(ItemAlreadyExistsError):
            catalog.register_item("W", "Widget again")

    def test_other_integrity_errors_propagate(self, catalog, monkeypatch):
        monkeypatch.setattr(
            catalog_module, "CostSnapshotModel", lambda sku: CostSnapshotModel(sku="GHOST")
        )

        with pytest.raises(IntegrityError):
            catalog.register_item("W", "Widget")

        assert catalog.get_item("W") is None

    def test_empty_sku_rejected(self, catalog):
        with pytest.raises(ValidationError):
            catalog.register_item("  ", "Blank")

    def test_negative_default_cost_rejected(self, catalog):
        with pytest.raises(InvalidQuantityError):
            catalog.register_item("W", "Widget", default_unit_cost=Decimal("-1"))

    def test_require_item_unknown(self, catalog):
        assert catalog.get_item("NOPE") is None
        with pytest.raises(UnknownSkuError):
            catalog.require_item("NOPE")


class TestDefineBundle:

    @pytest.fixture
    def items(self, catalog):
        catalog.register_item("C1", "Component 1")
        catalog.register_item("C2", "Component 2")
        catalog.register_item("B", "Bundle", is_bundle=True)

    def test_define_and_read_back_sorted(self, catalog, items):
        catalog.define_bundle("B", [_spec("C2", "2"), _spec("C1", "1")])

        components = catalog.get_bundle_components("B")
        assert [(c.component_sku, c.quantity_per_bundle) for c in components] == [
            ("C1", Decimal("1")),
            ("C2", Decimal("2")),
        ]

    def test_redefine_replaces_recipe(self, catalog, items):
        catalog.define_bundle("B", [_spec("C1"), _spec("C2")])
        catalog.define_bundle("B", [_spec("C2", "3")])

        components = catalog.get_bundle_components("B")
        assert [(c.component_sku, c.quantity_per_bundle) for c in components] == [
            ("C2", Decimal("3")),
        ]

    def test_empty_recipe_allowed(self, catalog, items):
        catalog.define_bundle("B", [_spec("C1")])
        catalog.define_bundle("B", [])

        assert catalog.get_bundle_components("B") == ()

    def test_target_must_be_bundle(self, catalog, items):
        with pytest.raises(BundleDefinitionError):
            catalog.define_bundle("C1", [_spec("C2")])

    def test_unknown_bundle(self, catalog):
        with pytest.raises(UnknownSkuError):
            catalog.define_bundle("NOPE", [])

    def test_unknown_component(self, catalog, items):
        with pytest.raises(UnknownSkuError) as exc_info:
            catalog.define_bundle("B", [_spec("GHOST")])

        assert exc_info.value.sku == "GHOST"

    def test_self_reference_rejected(self, catalog, items):
        with pytest.raises(BundleDefinitionError):
            catalog.define_bundle("B", [_spec("B")])

    def test_nested_bundle_rejected(self, catalog, items):
        catalog.register_item("B2", "Other bundle", is_bundle=True)

        with pytest.raises(BundleDefinitionError) as exc_info:
            catalog.define_bundle("B", [_spec("B2")])

        assert "B2" in exc_info.value.reason

    def test_duplicate_component_rejected(self, catalog, items):
        with pytest.raises(BundleDefinitionError):
            catalog.define_bundle("B", [_spec("C1"), _spec("C1", "2")])

    @pytest.mark.parametrize("qpb", ["0", "-1"])
    def test_non_positive_quantity_rejected(self, catalog, items, qpb):
        with pytest.raises(InvalidQuantityError):
            catalog.define_bundle("B", [_spec("C1", qpb)])

    def test_failed_definition_keeps_previous_recipe(self, catalog, items):
        catalog.define_bundle("B", [_spec("C1")])

        with pytest.raises(UnknownSkuError):
            catalog.define_bundle("B", [_spec("C2"), _spec("GHOST")])

        assert [c.component_sku for c in catalog.get_bundle_components("B")] == ["C1"]

"""
Tests for resolve_bundle - bundle explosion.

Tests cover:
- Simple SKUs pass through unchanged
- Component quantities scale by quantity_per_bundle
- Deterministic ordering by component_sku
- Bundles without components are an error
"""

from decimal import Decimal

import pytest

from costing_engines.bundle import resolve_bundle
from costing_engines.types import ComponentRequirement
from costing_kernel.domain.dtos import BundleComponentSpec
from costing_kernel.exceptions import NoComponentsDefinedError


def _spec(sku: str, qpb: str) -> BundleComponentSpec:
    return BundleComponentSpec(component_sku=sku, quantity_per_bundle=Decimal(qpb))


class TestSimpleSku:

    def test_simple_sku_resolves_to_itself(self):
        result = resolve_bundle(sku="W", qty=Decimal("7"), is_bundle=False)

        assert result == (ComponentRequirement(component_sku="W", required_qty=Decimal("7")),)

    def test_components_ignored_for_simple_sku(self):
        result = resolve_bundle(
            sku="W",
            qty=Decimal("1"),
            is_bundle=False,
            components=[_spec("X", "3")],
        )

        assert [r.component_sku for r in result] == ["W"]


class TestBundleExplosion:

    def test_quantities_scale_by_recipe(self):
        """B = 1 x C1 + 2 x C2; 10 x B needs 10 x C1 and 20 x C2."""
        result = resolve_bundle(
            sku="B",
            qty=Decimal("10"),
            is_bundle=True,
            components=[_spec("C1", "1"), _spec("C2", "2")],
        )

        assert result == (
            ComponentRequirement(component_sku="C1", required_qty=Decimal("10")),
            ComponentRequirement(component_sku="C2", required_qty=Decimal("20")),
        )

    def test_bundle_sku_never_in_output(self):
        result = resolve_bundle(
            sku="B",
            qty=Decimal("1"),
            is_bundle=True,
            components=[_spec("C1", "1")],
        )

        assert "B" not in {r.component_sku for r in result}

    def test_output_sorted_by_component_sku(self):
        components = [_spec("Z", "1"), _spec("A", "1"), _spec("M", "1")]

        first = resolve_bundle(sku="B", qty=Decimal("1"), is_bundle=True, components=components)
        second = resolve_bundle(
            sku="B",
            qty=Decimal("1"),
            is_bundle=True,
            components=list(reversed(components)),
        )

        assert [r.component_sku for r in first] == ["A", "M", "Z"]
        assert first == second

    def test_fractional_quantity_per_bundle_is_quantized(self):
        result = resolve_bundle(
            sku="B",
            qty=Decimal("3"),
            is_bundle=True,
            components=[_spec("C1", "0.3333")],
        )

        assert result[0].required_qty == Decimal("0.9999")


class TestEmptyBundle:

    def test_bundle_without_components_raises(self):
        with pytest.raises(NoComponentsDefinedError) as exc_info:
            resolve_bundle(sku="B", qty=Decimal("1"), is_bundle=True, components=[])

        assert exc_info.value.bundle_sku == "B"
        assert exc_info.value.code == "NO_COMPONENTS_DEFINED"

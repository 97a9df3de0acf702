"""
costing_engines.bundle -- Bundle explosion.

Responsibility:
    Expand an order-line SKU into the component SKUs that are actually
    costed.  A simple SKU expands to itself; a bundle expands to one
    (component, qty * quantity_per_bundle) pair per recipe row.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - One level of explosion.  Recipes never contain bundles (rejected when
      the recipe is defined), so no recursion or cycle detection is needed.
    - Output is sorted by component_sku, so repeated calls enumerate
      components in the same order.
    - A bundle with no recipe rows is an error, never an empty result.

Failure modes:
    - NoComponentsDefinedError when a bundle has zero recipe rows.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from costing_engines.tracer import traced_engine
from costing_engines.types import ComponentRequirement
from costing_kernel.domain.dtos import BundleComponentSpec
from costing_kernel.domain.values import quantize_qty
from costing_kernel.exceptions import NoComponentsDefinedError


@traced_engine("bundle_resolver", "1.0", fingerprint_fields=("sku", "qty", "is_bundle"))
def resolve_bundle(
    *,
    sku: str,
    qty: Decimal,
    is_bundle: bool,
    components: Sequence[BundleComponentSpec] = (),
) -> tuple[ComponentRequirement, ...]:
    """
    Resolve an order-line SKU to the component quantities to cost.

    Args:
        sku: Order-line SKU.
        qty: Order-line quantity (already validated > 0).
        is_bundle: Catalog flag of `sku`.
        components: Recipe rows of `sku` (ignored for simple SKUs).

    Raises:
        NoComponentsDefinedError: `sku` is a bundle with no recipe rows.
    """
    if not is_bundle:
        return (ComponentRequirement(component_sku=sku, required_qty=qty),)

    if not components:
        raise NoComponentsDefinedError(sku)

    return tuple(
        ComponentRequirement(
            component_sku=row.component_sku,
            required_qty=quantize_qty(qty * row.quantity_per_bundle),
        )
        for row in sorted(components, key=lambda r: r.component_sku)
    )

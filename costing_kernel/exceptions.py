"""
Typed Exception Hierarchy for the Costing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

COGS postings either commit completely or not at all.  When they do not,
the caller (order feed, batch run, operator screen) has to decide what to
do next: restock and retry, fix a bundle recipe, or give up.  That decision
must be made on the exception TYPE and its structured attributes, never on
the wording of its message.

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.apply_cogs_for_order_shipped(line, CostingMethod.FIFO)
    except InsufficientStockError as e:
        notify(f"{e.sku}: need {e.requested}, have {e.available}")
    except NoComponentsDefinedError as e:
        open_bundle_editor(e.bundle_sku)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CostingKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- InvalidCostingMethodError
    |
    +-- CatalogError
    |   +-- UnknownSkuError
    |   +-- ItemAlreadyExistsError
    |   +-- NoComponentsDefinedError
    |   +-- BundleDefinitionError
    |   +-- NotStockableError
    |
    +-- InventoryError
    |   +-- InsufficientStockError
    |   +-- LayerNotFoundError
    |   +-- LayerNotEditableError
    |
    +-- ReversalError
    |   +-- AllocationNotFoundError
    |   +-- AlreadyReversedError
    |
    +-- ConcurrencyError
    |   +-- CostingConflictError
    |
    +-- RunError
        +-- CogsRunNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_QUANTITY            | qty <= 0, negative cost, bad number
                | INVALID_COSTING_METHOD      | method is not FIFO or AVG
----------------|-----------------------------|-----------------------------------------
Catalog         | UNKNOWN_SKU                 | SKU not in the item catalog
                | ITEM_ALREADY_EXISTS         | Registering a SKU twice
                | NO_COMPONENTS_DEFINED       | Selling a bundle with an empty recipe
                | INVALID_BUNDLE_DEFINITION   | Nested bundle, self reference, ...
                | NOT_STOCKABLE               | Receiving stock for a bundle SKU
----------------|-----------------------------|-----------------------------------------
Inventory       | INSUFFICIENT_STOCK          | requested > available (retryable)
                | LAYER_NOT_FOUND             | Receipt layer id doesn't exist
                | LAYER_NOT_EDITABLE          | Layer consumed, voided or not opening
----------------|-----------------------------|-----------------------------------------
Reversal        | ALLOCATION_NOT_FOUND        | Return for an order that was never costed
                | ALREADY_REVERSED            | Return qty > reversible qty
----------------|-----------------------------|-----------------------------------------
Concurrency     | COSTING_CONFLICT            | Concurrent writer won, rows not visible
----------------|-----------------------------|-----------------------------------------
Run             | COGS_RUN_NOT_FOUND          | Run id doesn't exist

===============================================================================
"""

from decimal import Decimal


def _fmt(value: Decimal | int | str) -> str:
    """Render a quantity as fixed-point text (no scientific notation)."""
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value)


class CostingKernelError(Exception):
    """
    Base exception for all costing kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COSTING_KERNEL_ERROR"


# Validation exceptions


class ValidationError(CostingKernelError):
    """Base exception for invalid input."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """A quantity or cost argument is outside its allowed range."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: object, reason: str = "must be greater than zero"):
        self.field = field
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid {field} {value!s}: {reason}")


class InvalidCostingMethodError(ValidationError):
    """Costing method is not one of the supported methods."""

    code: str = "INVALID_COSTING_METHOD"

    def __init__(self, method: object, reason: str = "unsupported"):
        self.method = str(method)
        self.reason = reason
        super().__init__(f"Invalid costing method {method!s}: {reason}")


# Catalog exceptions


class CatalogError(CostingKernelError):
    """Base exception for item catalog and bundle recipe errors."""

    code: str = "CATALOG_ERROR"


class UnknownSkuError(CatalogError):
    """SKU is not registered in the item catalog."""

    code: str = "UNKNOWN_SKU"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"SKU not found in item catalog: {sku}")


class ItemAlreadyExistsError(CatalogError):
    """SKU is already registered."""

    code: str = "ITEM_ALREADY_EXISTS"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"SKU already registered: {sku}")


class NoComponentsDefinedError(CatalogError):
    """
    Bundle has no component rows.

    A data-setup error: not retryable until an administrator defines the
    bundle recipe.
    """

    code: str = "NO_COMPONENTS_DEFINED"

    def __init__(self, bundle_sku: str):
        self.bundle_sku = bundle_sku
        super().__init__(f"Bundle {bundle_sku} has no components defined")


class BundleDefinitionError(CatalogError):
    """Bundle recipe is invalid."""

    code: str = "INVALID_BUNDLE_DEFINITION"

    def __init__(self, bundle_sku: str, reason: str):
        self.bundle_sku = bundle_sku
        self.reason = reason
        super().__init__(f"Invalid bundle definition for {bundle_sku}: {reason}")


class NotStockableError(CatalogError):
    """Bundle SKUs never hold inventory of their own."""

    code: str = "NOT_STOCKABLE"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"SKU {sku} is a bundle and cannot hold inventory layers")


# Inventory exceptions


class InventoryError(CostingKernelError):
    """Base exception for receipt layer and snapshot errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientStockError(InventoryError):
    """
    Requested quantity exceeds the available quantity for a SKU.

    The dominant real-world failure.  Retryable once stock is received.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        sku: str,
        requested: Decimal,
        available: Decimal,
        method: str | None = None,
    ):
        self.sku = sku
        self.requested = _fmt(requested)
        self.available = _fmt(available)
        self.method = method
        super().__init__(
            f"Insufficient stock for SKU {sku}: "
            f"requested {self.requested}, available {self.available}"
        )


class LayerNotFoundError(InventoryError):
    """Receipt layer with given ID was not found."""

    code: str = "LAYER_NOT_FOUND"

    def __init__(self, layer_id: str):
        self.layer_id = layer_id
        super().__init__(f"Receipt layer not found: {layer_id}")


class LayerNotEditableError(InventoryError):
    """Receipt layer cannot be edited or voided in its current state."""

    code: str = "LAYER_NOT_EDITABLE"

    def __init__(self, layer_id: str, reason: str):
        self.layer_id = layer_id
        self.reason = reason
        super().__init__(f"Receipt layer {layer_id} cannot be changed: {reason}")


# Reversal exceptions


class ReversalError(CostingKernelError):
    """Base exception for return reversal errors."""

    code: str = "REVERSAL_ERROR"


class AllocationNotFoundError(ReversalError):
    """No sale allocation exists to reverse."""

    code: str = "ALLOCATION_NOT_FOUND"

    def __init__(self, order_id: str, sku: str):
        self.order_id = order_id
        self.sku = sku
        super().__init__(
            f"No COGS allocation found to reverse for order {order_id} SKU {sku}"
        )


class AlreadyReversedError(ReversalError):
    """Return quantity exceeds what remains reversible for the order line."""

    code: str = "ALREADY_REVERSED"

    def __init__(
        self,
        order_id: str,
        sku: str,
        requested: Decimal,
        reversible: Decimal,
    ):
        self.order_id = order_id
        self.sku = sku
        self.requested = _fmt(requested)
        self.reversible = _fmt(reversible)
        super().__init__(
            f"Cannot reverse {self.requested} of SKU {sku} for order {order_id}: "
            f"only {self.reversible} reversible"
        )


# Concurrency exceptions


class ConcurrencyError(CostingKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class CostingConflictError(ConcurrencyError):
    """
    A concurrent writer claimed the order line but its rows are not visible.

    Safe to retry: the idempotency check will return the winner's rows once
    its transaction commits.
    """

    code: str = "COSTING_CONFLICT"

    def __init__(self, order_id: str, sku: str):
        self.order_id = order_id
        self.sku = sku
        super().__init__(
            f"Concurrent costing conflict for order {order_id} SKU {sku}"
        )


# Run exceptions


class RunError(CostingKernelError):
    """Base exception for COGS batch run errors."""

    code: str = "RUN_ERROR"


class CogsRunNotFoundError(RunError):
    """COGS run with given ID was not found."""

    code: str = "COGS_RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"COGS run not found: {run_id}")

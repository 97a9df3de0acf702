"""ORM models for the costing kernel."""

from costing_kernel.models.cogs import CogsAllocationModel, CogsPostingClaimModel
from costing_kernel.models.cogs_run import CogsRunItemModel, CogsRunModel
from costing_kernel.models.inventory import (
    CostSnapshotModel,
    ReceiptLayerModel,
    StockInDocumentModel,
)
from costing_kernel.models.item import BundleComponentModel, ItemModel

__all__ = [
    "ItemModel",
    "BundleComponentModel",
    "StockInDocumentModel",
    "ReceiptLayerModel",
    "CostSnapshotModel",
    "CogsAllocationModel",
    "CogsPostingClaimModel",
    "CogsRunModel",
    "CogsRunItemModel",
    "import_all_models",
]


def import_all_models() -> None:
    """Make sure every table, including sequence_counters, is on Base.metadata."""
    import costing_kernel.services.sequence_service  # noqa: F401

"""
Module: costing_services
Responsibility:
    Stateful services that own transaction boundaries: the item catalog,
    receiving, the COGS allocation engine and batch COGS runs.

Architecture position:
    Services -- imperative shell.  May import costing_kernel, costing_engines
    and costing_config.  Engines stay pure; every read-modify-write of a
    layer or snapshot happens here, under a row lock.
"""

from costing_services.catalog_service import CatalogService
from costing_services.cogs_engine import CogsAllocationEngine
from costing_services.cogs_run_service import CogsRunService
from costing_services.receiving_service import ReceivingService

__all__ = [
    "CatalogService",
    "CogsAllocationEngine",
    "CogsRunService",
    "ReceivingService",
]

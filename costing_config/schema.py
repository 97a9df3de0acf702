"""
Configuration Schema (``costing_config.schema``).

Responsibility
--------------
Frozen dataclass describing the runtime settings of the costing system.
Parsed from YAML by ``costing_config.loader``; never constructed from
environment variables or ad-hoc dicts at runtime.

Invariants enforced
-------------------
* Frozen: a CostingConfig cannot change after it has been handed to a
  service.
* Every field is typed; ``default_method`` is a CostingMethod member,
  ``opening_balance_time`` a ``datetime.time``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from zoneinfo import ZoneInfo

from costing_kernel.domain.dtos import CostingMethod


@dataclass(frozen=True, slots=True)
class CostingConfig:
    """
    Runtime settings for costing services.

    Attributes:
        config_id: Identifier of the configuration document.
        version: Version of the configuration document.
        default_method: Method used when a caller passes ``method=None``.
        currency: ISO 4217 code of posted amounts.
        amount_decimal_places: Minor-unit places of posted amounts.
        quantity_decimal_places: Places to which input quantities are
            quantized.
        reporting_timezone: IANA zone for opening balances and daily buckets.
        opening_balance_time: Local time of day at which opening balances
            are received.
        checksum: SHA-256 of the source document (set by the loader).
    """

    config_id: str
    version: int
    default_method: CostingMethod
    currency: str
    amount_decimal_places: int
    quantity_decimal_places: int
    reporting_timezone: str
    opening_balance_time: time
    checksum: str = ""

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.reporting_timezone)

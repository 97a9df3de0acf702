"""
Configuration Loader (``costing_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the typed ``costing_config.schema``
dataclass.  The single public entry point for runtime config is
``costing_config.get_active_config()``.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for present-but-invalid fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Unknown costing method, timezone or bad time  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from datetime import time
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from costing_config.schema import CostingConfig
from costing_kernel.domain.dtos import CostingMethod
from costing_kernel.exceptions import InvalidCostingMethodError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_time(value: Any) -> time:
    """Parse an ``HH:MM`` or ``HH:MM:SS`` time of day."""
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        return time.fromisoformat(value)
    # YAML 1.1 reads unquoted 00:00 as a sexagesimal integer (minutes)
    if isinstance(value, int) and 0 <= value < 24 * 60:
        return time(value // 60, value % 60)
    raise ValueError(f"Cannot parse time from {value!r}")


def parse_method(value: Any) -> CostingMethod:
    try:
        return CostingMethod.parse(value)
    except InvalidCostingMethodError as exc:
        raise ValueError(str(exc)) from None


def parse_timezone(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid reporting timezone {value!r}")
    try:
        ZoneInfo(value)
    except ZoneInfoNotFoundError:
        raise ValueError(f"Unknown reporting timezone {value!r}") from None
    return value


def parse_places(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 9:
        raise ValueError(f"{field} must be an integer between 0 and 9, got {value!r}")
    return value


def parse_costing_config(data: dict[str, Any]) -> CostingConfig:
    """
    Parse a ``CostingConfig`` from a dict.

    Preconditions:
        - ``data`` contains a ``costing`` mapping with at least ``method``
          and ``currency``.
    Postconditions:
        - Returns a fully populated frozen ``CostingConfig`` carrying the
          checksum of ``data``.
    Raises:
        KeyError: if required keys are missing.
        ValueError: if a present field is invalid.
    """
    section = data["costing"]
    currency = section["currency"]
    if not isinstance(currency, str) or len(currency.strip()) != 3:
        raise ValueError(f"currency must be a 3-letter ISO 4217 code, got {currency!r}")

    return CostingConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        default_method=parse_method(section["method"]),
        currency=currency.strip().upper(),
        amount_decimal_places=parse_places(
            section.get("amount_decimal_places", 2), "amount_decimal_places"
        ),
        quantity_decimal_places=parse_places(
            section.get("quantity_decimal_places", 4), "quantity_decimal_places"
        ),
        reporting_timezone=parse_timezone(section.get("reporting_timezone", "UTC")),
        opening_balance_time=parse_time(section.get("opening_balance_time", "00:00")),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

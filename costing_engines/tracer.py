"""
costing_engines.tracer -- COSTING_ENGINE_TRACE records for engine calls.

Responsibility:
    ``@traced_engine`` wraps a pure engine and logs one COSTING_ENGINE_TRACE
    record per call: engine name and version, a fingerprint of the selected
    keyword inputs, the duration, and the outcome (``ok`` or the error
    code of the exception the engine raised).

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    only; never touches the database.

Invariants enforced:
    - Fingerprints are deterministic: Decimals are normalized (10 and
      10.0000 hash alike), mapping keys are sorted, sequences keep their
      order; the hash is SHA-256 truncated to 16 hex chars.
    - Exceptions from the engine propagate unchanged; the trace is still
      written.

Usage:
    @traced_engine("fifo", "1.0", fingerprint_fields=("sku", "qty"))
    def allocate_fifo(*, sku, qty, position):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from costing_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_EVENT = "COSTING_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (bool, int, str, UUID)):
        return str(value)
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return repr(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: Mapping[str, Any],
) -> str:
    """16-char SHA-256 prefix over ``field=value`` pairs; missing fields hash as null."""
    canonical = "|".join(
        f"{field}={_canonicalize(kwargs.get(field))}" for field in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator emitting COSTING_ENGINE_TRACE around a pure engine."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields
                else ""
            )
            outcome = "ok"
            started = time.monotonic()
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                outcome = getattr(exc, "code", type(exc).__name__)
                raise
            finally:
                _logger.info(
                    TRACE_EVENT,
                    extra={
                        "trace_type": TRACE_EVENT,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": fingerprint,
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                        "outcome": outcome,
                    },
                )

        return wrapper

    return decorator

"""
Pytest fixtures for the costing test suite.

Provides:
- A file-backed SQLite database per test (tables and sequence counters
  created fresh, engine disposed at teardown)
- Services wired with a DeterministicClock and the packaged configuration
- Catalog and stock helpers for common setups
- A captured_logs fixture that parses the JSON log stream

Environment Variables:
- COSTING_TEST_DATABASE_URL: run against another database (e.g.
  PostgreSQL).  Tables are dropped and recreated for every test.
"""

import json
import logging
import os
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from costing_config import get_active_config
from costing_config.schema import CostingConfig
from costing_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from costing_kernel.domain.clock import DeterministicClock
from costing_kernel.domain.dtos import BundleComponentSpec, StockInLine
from costing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from costing_kernel.selectors import CogsSelector, InventorySelector
from costing_services import (
    CatalogService,
    CogsAllocationEngine,
    CogsRunService,
    ReceivingService,
)

FIXED_NOW = datetime(2024, 1, 31, 12, 0, 0, tzinfo=UTC)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture costing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, cogs_engine):
            cogs_engine.apply_cogs_for_order_shipped(...)
            logs = captured_logs()
            assert any(r["message"] == "cogs_allocation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("costing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return os.environ.get(
        "COSTING_TEST_DATABASE_URL",
        f"sqlite:///{tmp_path / 'costing.db'}",
    )


@pytest.fixture
def db_engine(database_url):
    """Fresh engine and schema for one test."""
    eng = init_engine_from_url(database_url, echo=False)
    drop_tables()
    create_tables()
    yield eng
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def session_factory(db_engine):
    """Open independent sessions (one per simulated caller)."""
    opened: list[Session] = []

    def _open() -> Session:
        sess = get_session()
        opened.append(sess)
        return sess

    yield _open

    for sess in opened:
        sess.rollback()
        sess.close()


# =============================================================================
# Clock and configuration
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def config() -> CostingConfig:
    return get_active_config()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def catalog(session, deterministic_clock) -> CatalogService:
    return CatalogService(session, clock=deterministic_clock)


@pytest.fixture
def receiving(session, config, deterministic_clock) -> ReceivingService:
    return ReceivingService(session, config, clock=deterministic_clock)


@pytest.fixture
def cogs_engine(session, config, deterministic_clock) -> CogsAllocationEngine:
    return CogsAllocationEngine(session, config, clock=deterministic_clock)


@pytest.fixture
def run_service(session, config, deterministic_clock) -> CogsRunService:
    return CogsRunService(session, config, clock=deterministic_clock)


@pytest.fixture
def inventory_selector(session) -> InventorySelector:
    return InventorySelector(session)


@pytest.fixture
def cogs_selector(session, config) -> CogsSelector:
    return CogsSelector(session, reporting_timezone=config.reporting_timezone)


# =============================================================================
# Data helpers
# =============================================================================


def at(day: int, hour: int = 9, month: int = 1, year: int = 2024) -> datetime:
    """Aware UTC timestamp in January 2024 unless told otherwise."""
    return datetime(year, month, day, hour, 0, 0, tzinfo=UTC)


@pytest.fixture
def register_items(catalog):
    """Register simple SKUs: register_items("C1", "C2")."""

    def _register(*skus: str, default_unit_cost: Decimal = Decimal("0")):
        return [
            catalog.register_item(sku, f"Item {sku}", default_unit_cost=default_unit_cost)
            for sku in skus
        ]

    return _register


@pytest.fixture
def stock_in(receiving):
    """Receive one line: stock_in("C1", "100", "10", at(1))."""

    def _stock_in(sku: str, qty, unit_cost, received_at: datetime, reference: str = "GRN"):
        result = receiving.receive_stock(
            received_at=received_at,
            lines=[StockInLine(sku=sku, qty=Decimal(str(qty)), unit_cost=Decimal(str(unit_cost)))],
            reference=reference,
        )
        return result.layers[0]

    return _stock_in


@pytest.fixture
def fifo_two_layers(register_items, stock_in):
    """SKU W with L1 (day 1, 100 @ 10) and L2 (day 5, 50 @ 15)."""
    register_items("W")
    l1 = stock_in("W", "100", "10", at(1))
    l2 = stock_in("W", "50", "15", at(5))
    return l1, l2


@pytest.fixture
def bundle_b(catalog, register_items, stock_in):
    """Bundle B = 1 x C1 + 2 x C2, both components stocked."""

    def _build(c1_qty="100", c2_qty="100"):
        register_items("C1", "C2")
        catalog.register_item("B", "Bundle B", is_bundle=True)
        catalog.define_bundle(
            "B",
            [
                BundleComponentSpec(component_sku="C1", quantity_per_bundle=Decimal("1")),
                BundleComponentSpec(component_sku="C2", quantity_per_bundle=Decimal("2")),
            ],
        )
        stock_in("C1", c1_qty, "4", at(1))
        stock_in("C2", c2_qty, "3", at(1))

    return _build


@pytest.fixture
def opening_date() -> date:
    return date(2024, 1, 1)

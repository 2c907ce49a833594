"""
Pytest fixtures for the inventory test suite.

Provides:
- A fresh in-memory SQLite database and session per test
- A deterministic clock and the builtin configuration
- Warehouse / material factories and document helpers
- Structured log capture

Environment Variables:
- INVENTORY_TEST_DB_URL: run against another database (e.g. PostgreSQL).
  Tests marked ``postgres`` are skipped unless it points at PostgreSQL.
"""

import json
import logging
import os
from collections.abc import Callable, Generator
from datetime import UTC, date, datetime
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from inventory_config import default_config
from inventory_config.schema import InventoryConfig
from inventory_kernel.db.engine import create_engine_for_url, create_tables, drop_tables
from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.values import DocumentType
from inventory_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from inventory_kernel.models.catalog import Material, Warehouse
from inventory_services.facade import InventoryFacade
from inventory_services.workflow_service import (
    AdjustmentLineInput,
    IssueLineInput,
    ReceiptLineInput,
)

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# Friday; all ledger rows written by default land on this day
TEST_NOW = datetime(2024, 3, 15, 9, 0, 0, tzinfo=UTC)


def get_database_url() -> str:
    return os.environ.get("INVENTORY_TEST_DB_URL", "sqlite://")


def pytest_collection_modifyitems(config, items):
    if get_database_url().startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="needs INVENTORY_TEST_DB_URL=postgresql://...")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


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
    Capture inventory logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, facade):
            facade.post(...)
            logs = captured_logs()
            assert any(r["message"] == "document_posted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("inventory_kernel")
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
def db_engine() -> Generator[Engine, None, None]:
    """One database per test; in-memory SQLite unless overridden."""
    eng = create_engine_for_url(get_database_url())
    drop_tables(eng)
    create_tables(eng)
    yield eng
    drop_tables(eng)
    eng.dispose()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    sess = Session(bind=db_engine, expire_on_commit=False)
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Clock, config, facade
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def config() -> InventoryConfig:
    return default_config()


@pytest.fixture
def actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def facade(session, config, clock) -> InventoryFacade:
    return InventoryFacade(session, config=config, clock=clock)


# =============================================================================
# Catalog factories
# =============================================================================


@pytest.fixture
def make_warehouse(session) -> Callable[..., Warehouse]:
    counter = {"n": 0}

    def _make(code: str | None = None, name: str | None = None, is_active: bool = True) -> Warehouse:
        counter["n"] += 1
        wh = Warehouse(
            code=code or f"WH{counter['n']:02d}",
            name=name or f"Warehouse {counter['n']}",
            is_active=is_active,
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(wh)
        session.flush()
        return wh

    return _make


@pytest.fixture
def make_material(session) -> Callable[..., Material]:
    counter = {"n": 0}

    def _make(
        code: str | None = None,
        costing_method: str | None = None,
        purchase_price: Decimal | None = None,
        selling_price: Decimal | None = Decimal("200"),
        unit: str = "EA",
        is_active: bool = True,
    ) -> Material:
        counter["n"] += 1
        mat = Material(
            code=code or f"MAT{counter['n']:03d}",
            name=f"Material {counter['n']}",
            unit=unit,
            costing_method=costing_method,
            purchase_price=purchase_price,
            selling_price=selling_price,
            is_active=is_active,
            created_by_id=TEST_ACTOR_ID,
        )
        session.add(mat)
        session.flush()
        return mat

    return _make


@pytest.fixture
def warehouse(make_warehouse) -> Warehouse:
    return make_warehouse("MAIN", "Main Warehouse")


@pytest.fixture
def material(make_material) -> Material:
    return make_material("PARACETAMOL")


# =============================================================================
# Document helpers
# =============================================================================


@pytest.fixture
def receive(facade, actor_id) -> Callable:
    """
    Create, confirm and post a one-line receipt; return the receipt.

    Usage::

        receipt = receive(warehouse, material, "10", "100", expiry=date(2024, 6, 1))
    """

    def _receive(
        wh: Warehouse,
        mat: Material,
        quantity: str,
        unit_cost: str | None,
        expiry: date | None = None,
        manufactured: date | None = None,
        lot_number: str | None = None,
    ):
        receipt = facade.create_receipt(
            wh.id,
            [ReceiptLineInput(
                material_id=mat.id,
                quantity=Decimal(quantity),
                unit_cost=Decimal(unit_cost) if unit_cost is not None else None,
                lot_number=lot_number,
                manufacture_date=manufactured,
                expiry_date=expiry,
            )],
            actor_id,
        )
        facade.confirm(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)
        facade.post(DocumentType.STOCK_RECEIPT, receipt.id, actor_id)
        return receipt

    return _receive


@pytest.fixture
def issue(facade, actor_id) -> Callable:
    """Create and confirm (not post) a one-line issue; return the issue."""

    def _issue(wh: Warehouse, mat: Material, quantity: str, lots=(), unit_price: str | None = None):
        doc = facade.create_issue(
            wh.id,
            [IssueLineInput(
                material_id=mat.id,
                quantity=Decimal(quantity),
                unit_price=Decimal(unit_price) if unit_price is not None else None,
                lots=tuple(lots),
            )],
            actor_id,
        )
        facade.confirm(DocumentType.STOCK_ISSUE, doc.id, actor_id)
        return doc

    return _issue


@pytest.fixture
def adjust(facade, actor_id) -> Callable:
    """Create, confirm and post an adjustment of the given (material, diff) lines."""

    def _adjust(wh: Warehouse, *lines: tuple[Material, str, str | None]):
        doc = facade.create_adjustment(
            wh.id,
            [
                AdjustmentLineInput(
                    material_id=mat.id,
                    quantity_diff=Decimal(diff),
                    unit_cost=Decimal(cost) if cost is not None else None,
                )
                for mat, diff, cost in lines
            ],
            actor_id,
            reason="stock count",
        )
        facade.confirm(DocumentType.STOCK_ADJUSTMENT, doc.id, actor_id)
        facade.post(DocumentType.STOCK_ADJUSTMENT, doc.id, actor_id)
        return doc

    return _adjust

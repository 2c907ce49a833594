"""
Tests for the module-level engine lifecycle and session_scope().
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from inventory_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from inventory_kernel.models.catalog import Material


@pytest.fixture
def module_engine():
    engine = init_engine_from_url("sqlite://")
    create_tables()
    yield engine
    reset_engine()


def _material(code: str, actor_id) -> Material:
    return Material(
        code=code, name=code, unit="EA", is_active=True,
        purchase_price=Decimal("1"), created_by_id=actor_id,
    )


def _codes() -> list[str]:
    with get_session() as session:
        return list(session.execute(select(Material.code).order_by(Material.code)).scalars())


class TestEngineLifecycle:

    def test_init_sets_module_engine(self, module_engine):
        assert get_engine() is module_engine
        assert module_engine.dialect.name == "sqlite"

    def test_reset_clears_module_engine(self, module_engine):
        reset_engine()

        with pytest.raises(RuntimeError, match="init_engine_from_url"):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()


class TestSessionScope:

    def test_commits_on_success(self, module_engine, actor_id):
        with session_scope() as session:
            session.add(_material("A-1", actor_id))

        assert _codes() == ["A-1"]

    def test_rolls_back_and_reraises(self, module_engine, actor_id, captured_logs):
        with pytest.raises(ValueError):
            with session_scope() as session:
                session.add(_material("B-1", actor_id))
                session.flush()
                raise ValueError("boom")

        assert _codes() == []
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())

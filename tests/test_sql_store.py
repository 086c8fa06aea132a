"""Tests for SqlLedgerStore behaviors not covered by the shared store tests.

Focused on transaction scoping and timezone handling against SQLite.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine, inspect, select

from core.storage.sql.config import SqlConfig
from core.storage.sql.stores import SqlLedgerStore, _as_utc
from db.init_db import init_schema
from db.models.ledger import WalletRow


def test_init_schema_creates_ledger_tables(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'schema.db'}")
    init_schema(engine)

    tables = set(inspect(engine).get_table_names())
    assert {"wallets", "trades", "wallet_addresses", "user_roles", "admin_codes"} <= tables


def test_as_utc_normalizes_naive_datetime():
    """SQLite returns naive datetimes; the store must hand back UTC-aware values."""
    naive_dt = datetime(2024, 12, 25, 12, 30, 45)

    result = _as_utc(naive_dt)

    assert result.tzinfo is timezone.utc
    assert result.replace(tzinfo=None) == naive_dt
    assert _as_utc(None) is None


def test_wallet_timestamps_are_utc_aware(sql_store):
    now = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)

    wallet = sql_store.insert_wallet_if_absent(user_id="alice", balance_usd=Decimal("100"), now=now)

    assert wallet.updated_at == now
    assert wallet.updated_at.tzinfo is not None


def test_insert_wallet_if_absent_keeps_existing_row(sql_store):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    sql_store.insert_wallet_if_absent(user_id="alice", balance_usd=Decimal("100"), now=now)

    again = sql_store.insert_wallet_if_absent(user_id="alice", balance_usd=Decimal("999"), now=now)

    assert again.balance_usd == Decimal("100")


def test_apply_delta_guard_in_single_update(sql_store):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    sql_store.insert_wallet_if_absent(user_id="alice", balance_usd=Decimal("500"), now=now)

    assert sql_store.apply_delta(user_id="alice", delta=Decimal("-500.01"), now=now) is None
    assert sql_store.apply_delta(user_id="alice", delta=Decimal("-500"), now=now).balance_usd == Decimal("0")
    assert sql_store.apply_delta(user_id="ghost", delta=Decimal("1"), now=now) is None


def test_amounts_are_stored_as_integer_units(sql_store):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    sql_store.insert_wallet_if_absent(user_id="alice", balance_usd=Decimal("0.3"), now=now)

    wallet = sql_store.apply_delta(user_id="alice", delta=Decimal("-0.1"), now=now)

    assert wallet.balance_usd == Decimal("0.2")
    with sql_store._get_engine().connect() as conn:
        stored = conn.execute(select(WalletRow.balance_units).where(WalletRow.user_id == "alice")).scalar_one()
    assert stored == 20_000_000


def test_amount_beyond_precision_is_refused(sql_store):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    sql_store.insert_wallet_if_absent(user_id="alice", balance_usd=Decimal("1"), now=now)

    with pytest.raises(ValueError):
        sql_store.apply_delta(user_id="alice", delta=Decimal("-0.000000001"), now=now)

    assert sql_store.get_wallet(user_id="alice").balance_usd == Decimal("1")


def test_atomic_scope_rolls_back_on_error(sql_store):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    sql_store.insert_wallet_if_absent(user_id="alice", balance_usd=Decimal("500"), now=now)

    with pytest.raises(RuntimeError):
        with sql_store.atomic(user_id="alice"):
            sql_store.apply_delta(user_id="alice", delta=Decimal("-200"), now=now)
            raise RuntimeError("boom")

    assert sql_store.get_wallet(user_id="alice").balance_usd == Decimal("500")


def test_atomic_scope_commits_together(sql_store):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    sql_store.insert_wallet_if_absent(user_id="alice", balance_usd=Decimal("500"), now=now)

    with sql_store.atomic(user_id="alice"):
        sql_store.apply_delta(user_id="alice", delta=Decimal("-200"), now=now)
        sql_store.apply_delta(user_id="alice", delta=Decimal("-100"), now=now)
        # Nested scopes join the outer transaction.
        with sql_store.atomic(user_id="alice"):
            sql_store.apply_delta(user_id="alice", delta=Decimal("50"), now=now)

    assert sql_store.get_wallet(user_id="alice").balance_usd == Decimal("250")


def test_unsupported_dialect_is_rejected():
    store = SqlLedgerStore(config=SqlConfig(database_url="mysql://fake"))
    conn = Mock()
    conn.dialect.name = "mysql"

    with pytest.raises(RuntimeError, match="Unsupported SQL dialect"):
        store._insert(conn, object())


def test_sql_config_from_env(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert SqlConfig.from_env() is None

    monkeypatch.setenv("DATABASE_URL", "sqlite:///ledger.db")
    assert SqlConfig.from_env() == SqlConfig(database_url="sqlite:///ledger.db")

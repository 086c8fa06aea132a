"""Shared test fixtures for pytest.

Provides a controllable clock, both ledger store implementations and the
ledger components wired around them.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import create_engine

from core.errors import StalePriceData
from core.ledger import AddressProvisioner, AdminCodes, LedgerConfig, TradeSettlement, WalletLedger
from core.storage import InMemoryLedgerStore, SqlConfig, SqlLedgerStore
from core.types import PriceQuote
from db.init_db import init_schema


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class StaticPriceOracle:
    """Price oracle stub returning fixed quotes."""

    def __init__(self, prices: dict[str, Decimal], *, stale: bool = False) -> None:
        self.prices = dict(prices)
        self.stale = stale
        self.calls: list[str] = []

    def price(self, asset_id: str) -> PriceQuote:
        self.calls.append(asset_id)
        if asset_id not in self.prices:
            raise StalePriceData(asset_id, "no quote")
        return PriceQuote(
            asset_id=asset_id,
            usd=self.prices[asset_id],
            change_pct_24h=Decimal("1.5"),
            as_of=datetime(2024, 1, 1, tzinfo=timezone.utc),
            stale=self.stale,
        )


def make_sql_store(tmp_path: Path) -> SqlLedgerStore:
    database_url = f"sqlite:///{tmp_path / 'ledger.db'}"
    init_schema(create_engine(database_url))
    return SqlLedgerStore(config=SqlConfig(database_url=database_url))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def memory_store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def sql_store(tmp_path: Path) -> SqlLedgerStore:
    return make_sql_store(tmp_path)


@pytest.fixture(params=["memory", "sql"])
def store(request: Any, tmp_path: Path) -> Any:
    """Every ledger store implementation."""
    if request.param == "memory":
        return InMemoryLedgerStore()
    return make_sql_store(tmp_path)


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig()


@pytest.fixture
def ledger(store: Any, clock: FakeClock, config: LedgerConfig) -> WalletLedger:
    return WalletLedger(store=store, roles=store, config=config, clock=clock)


@pytest.fixture
def oracle() -> StaticPriceOracle:
    return StaticPriceOracle({"bitcoin": Decimal("50000"), "ethereum": Decimal("3000")})


@pytest.fixture
def settlement(store: Any, ledger: WalletLedger, clock: FakeClock, oracle: StaticPriceOracle) -> TradeSettlement:
    return TradeSettlement(store=store, ledger=ledger, roles=store, price_oracle=oracle, clock=clock)


@pytest.fixture
def addresses(store: Any, clock: FakeClock) -> AddressProvisioner:
    return AddressProvisioner(store=store, clock=clock)


@pytest.fixture
def admin_codes(store: Any, clock: FakeClock) -> AdminCodes:
    return AdminCodes(store=store, clock=clock)

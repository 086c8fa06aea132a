from __future__ import annotations

import contextvars
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator, Mapping, Optional, Sequence

from sqlalchemy import create_engine, event, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection, Engine, make_url

from core.persistence.interfaces import LedgerStore
from core.storage.sql.config import SqlConfig
from core.types import AMOUNT_PLACES, AdminCode, DepositAddress, Trade, Wallet, is_valid_amount
from db.models.ledger import AdminCodeRow, TradeRow, UserRoleRow, WalletAddressRow, WalletRow


def _as_utc(dt: datetime | None) -> datetime | None:
    """TIMESTAMP columns may come back naive (SQLite always does)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _to_units(value: Decimal) -> int:
    """Decimal amount -> integer count of 1e-8 units, as stored in AMOUNT columns."""
    if not is_valid_amount(value):
        raise ValueError(f"Amount {value} does not fit {AMOUNT_PLACES} decimal places")
    return int(value.scaleb(AMOUNT_PLACES))


def _from_units(units: Any) -> Decimal:
    return Decimal(int(units)).scaleb(-AMOUNT_PLACES)


def _begin_immediate_on_sqlite(engine: Engine) -> None:
    """Take the SQLite write lock at BEGIN.

    pysqlite otherwise defers BEGIN until the first write, so a read inside
    `atomic()` (the holdings check) would not be serialized with other writers.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class SqlLedgerStore(LedgerStore):
    """SQLAlchemy-backed ledger store (PostgreSQL in production, SQLite locally).

    Balance guards live in the WHERE clause of a single UPDATE, so correctness
    holds across processes without application-level locks.
    """

    transactional = True

    def __init__(self, *, config: SqlConfig) -> None:
        self._config = config
        self._engine: Engine | None = None
        self._engine_lock = threading.Lock()
        self._current_conn: contextvars.ContextVar[Connection | None] = contextvars.ContextVar(
            f"ledger_conn_{id(self)}", default=None
        )

    def _get_engine(self) -> Engine:
        with self._engine_lock:
            if self._engine is None:
                # Do not log the URL (it may contain secrets).
                url = make_url(self._config.database_url)
                if url.get_backend_name() == "sqlite":
                    engine = create_engine(
                        url, echo=False, connect_args={"timeout": 30, "check_same_thread": False}
                    )
                    _begin_immediate_on_sqlite(engine)
                else:
                    engine = create_engine(url, echo=False, pool_pre_ping=True)
                self._engine = engine
            return self._engine

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        conn = self._current_conn.get()
        if conn is not None:
            yield conn
            return
        with self._get_engine().begin() as conn:
            yield conn

    def _insert(self, conn: Connection, table: Any) -> Any:
        if conn.dialect.name == "postgresql":
            return postgresql.insert(table)
        if conn.dialect.name == "sqlite":
            return sqlite.insert(table)
        raise RuntimeError(f"Unsupported SQL dialect for ledger store: {conn.dialect.name}")

    @contextmanager
    def atomic(self, *, user_id: str) -> Iterator[None]:
        if self._current_conn.get() is not None:
            yield
            return

        with self._get_engine().begin() as conn:
            token = self._current_conn.set(conn)
            try:
                # Row lock serializes settlements per user (SQLite already holds the write lock).
                conn.execute(select(WalletRow.user_id).where(WalletRow.user_id == user_id).with_for_update())
                yield
            finally:
                self._current_conn.reset(token)

    # ---- WalletStore

    @staticmethod
    def _to_wallet(row: Any) -> Wallet:
        return Wallet(
            user_id=row.user_id,
            balance_usd=_from_units(row.balance_units),
            updated_at=_as_utc(row.updated_at),
            last_bonus_claim_at=_as_utc(row.last_bonus_claim_at),
        )

    def _fetch_wallet(self, conn: Connection, user_id: str) -> Optional[Wallet]:
        stmt = select(
            WalletRow.user_id,
            WalletRow.balance_units,
            WalletRow.updated_at,
            WalletRow.last_bonus_claim_at,
        ).where(WalletRow.user_id == user_id)
        row = conn.execute(stmt).fetchone()
        return None if row is None else self._to_wallet(row)

    def insert_wallet_if_absent(self, *, user_id: str, balance_usd: Decimal, now: datetime) -> Wallet:
        with self._connect() as conn:
            stmt = (
                self._insert(conn, WalletRow)
                .values(user_id=user_id, balance_units=_to_units(balance_usd), updated_at=now, created_at=now)
                .on_conflict_do_nothing(index_elements=["user_id"])
            )
            conn.execute(stmt)
            wallet = self._fetch_wallet(conn, user_id)

        if wallet is None:
            raise RuntimeError(f"Failed to create wallet for user {user_id}")
        return wallet

    def get_wallet(self, *, user_id: str) -> Optional[Wallet]:
        with self._connect() as conn:
            return self._fetch_wallet(conn, user_id)

    def apply_delta(self, *, user_id: str, delta: Decimal, now: datetime) -> Optional[Wallet]:
        delta_units = _to_units(delta)
        stmt = (
            update(WalletRow)
            .where(WalletRow.user_id == user_id)
            .where(WalletRow.balance_units + delta_units >= 0)
            .values(balance_units=WalletRow.balance_units + delta_units, updated_at=now)
        )

        with self._connect() as conn:
            result = conn.execute(stmt)
            if result.rowcount != 1:
                return None
            return self._fetch_wallet(conn, user_id)

    def set_balance(self, *, user_id: str, balance_usd: Decimal, now: datetime) -> Optional[Wallet]:
        stmt = (
            update(WalletRow)
            .where(WalletRow.user_id == user_id)
            .values(balance_units=_to_units(balance_usd), updated_at=now)
        )

        with self._connect() as conn:
            result = conn.execute(stmt)
            if result.rowcount != 1:
                return None
            return self._fetch_wallet(conn, user_id)

    def claim_bonus(
        self,
        *,
        user_id: str,
        amount: Decimal,
        now: datetime,
        claimed_before: datetime,
    ) -> Optional[Wallet]:
        stmt = (
            update(WalletRow)
            .where(WalletRow.user_id == user_id)
            .where(
                (WalletRow.last_bonus_claim_at.is_(None)) | (WalletRow.last_bonus_claim_at <= claimed_before)
            )
            .values(
                balance_units=WalletRow.balance_units + _to_units(amount),
                last_bonus_claim_at=now,
                updated_at=now,
            )
        )

        with self._connect() as conn:
            result = conn.execute(stmt)
            if result.rowcount != 1:
                return None
            return self._fetch_wallet(conn, user_id)

    def list_wallets(self) -> Sequence[Wallet]:
        stmt = select(
            WalletRow.user_id,
            WalletRow.balance_units,
            WalletRow.updated_at,
            WalletRow.last_bonus_claim_at,
        ).order_by(WalletRow.balance_units.desc())

        with self._connect() as conn:
            rows = conn.execute(stmt).fetchall()

        return [self._to_wallet(row) for row in rows]

    # ---- TradeStore

    def append_trade(self, *, trade: Trade) -> Trade:
        stmt = self._insert_trade_stmt(trade)
        with self._connect() as conn:
            conn.execute(stmt)
        return trade

    @staticmethod
    def _insert_trade_stmt(trade: Trade) -> Any:
        return insert(TradeRow).values(
            id=trade.id,
            user_id=trade.user_id,
            coin_id=trade.asset_id,
            coin_symbol=trade.asset_symbol,
            coin_name=trade.asset_name,
            trade_type=trade.trade_type,
            quantity_units=_to_units(trade.quantity),
            price_units=_to_units(trade.price_usd),
            total_units=_to_units(trade.total_usd),
            created_at=trade.created_at,
        )

    def get_trades(self, *, user_id: str | None = None, limit: int = 50) -> Sequence[Trade]:
        stmt = select(TradeRow.__table__).order_by(TradeRow.created_at.desc(), TradeRow.id.desc()).limit(limit)
        if user_id is not None:
            stmt = stmt.where(TradeRow.user_id == user_id)

        with self._connect() as conn:
            rows = conn.execute(stmt).fetchall()

        return [
            Trade(
                id=row.id,
                user_id=row.user_id,
                asset_id=row.coin_id,
                trade_type=row.trade_type,
                quantity=_from_units(row.quantity_units),
                price_usd=_from_units(row.price_units),
                total_usd=_from_units(row.total_units),
                created_at=_as_utc(row.created_at),
                asset_symbol=row.coin_symbol,
                asset_name=row.coin_name,
            )
            for row in rows
        ]

    def sum_quantities(self, *, user_id: str, asset_id: str | None = None) -> Mapping[tuple[str, str], Decimal]:
        stmt = (
            select(TradeRow.coin_id, TradeRow.trade_type, func.sum(TradeRow.quantity_units))
            .where(TradeRow.user_id == user_id)
            .group_by(TradeRow.coin_id, TradeRow.trade_type)
        )
        if asset_id is not None:
            stmt = stmt.where(TradeRow.coin_id == asset_id)

        with self._connect() as conn:
            rows = conn.execute(stmt).fetchall()

        return {(row[0], row[1]): _from_units(row[2] or 0) for row in rows}

    # ---- AddressStore

    def _fetch_address(self, conn: Connection, user_id: str, asset_id: str) -> Optional[DepositAddress]:
        stmt = select(WalletAddressRow.__table__).where(
            WalletAddressRow.user_id == user_id,
            WalletAddressRow.currency == asset_id,
        )
        row = conn.execute(stmt).fetchone()
        if row is None:
            return None
        return DepositAddress(
            user_id=row.user_id,
            asset_id=row.currency,
            address=row.address,
            created_at=_as_utc(row.created_at),
        )

    def insert_address_if_absent(self, *, address: DepositAddress) -> DepositAddress:
        with self._connect() as conn:
            stmt = (
                self._insert(conn, WalletAddressRow)
                .values(
                    user_id=address.user_id,
                    currency=address.asset_id,
                    address=address.address,
                    created_at=address.created_at,
                )
                .on_conflict_do_nothing(index_elements=["user_id", "currency"])
            )
            conn.execute(stmt)
            stored = self._fetch_address(conn, address.user_id, address.asset_id)

        if stored is None:
            raise RuntimeError(f"Failed to store {address.asset_id} address for user {address.user_id}")
        return stored

    def get_address(self, *, user_id: str, asset_id: str) -> Optional[DepositAddress]:
        with self._connect() as conn:
            return self._fetch_address(conn, user_id, asset_id)

    def get_addresses(self, *, user_id: str) -> Sequence[DepositAddress]:
        stmt = select(WalletAddressRow.__table__).where(WalletAddressRow.user_id == user_id).order_by(WalletAddressRow.currency)

        with self._connect() as conn:
            rows = conn.execute(stmt).fetchall()

        return [
            DepositAddress(
                user_id=row.user_id,
                asset_id=row.currency,
                address=row.address,
                created_at=_as_utc(row.created_at),
            )
            for row in rows
        ]

    # ---- RoleStore

    def has_role(self, user_id: str, role: str) -> bool:
        stmt = select(UserRoleRow.user_id).where(UserRoleRow.user_id == user_id, UserRoleRow.role == role)
        with self._connect() as conn:
            return conn.execute(stmt).fetchone() is not None

    def grant_role(self, *, user_id: str, role: str) -> bool:
        with self._connect() as conn:
            stmt = (
                self._insert(conn, UserRoleRow)
                .values(user_id=user_id, role=role)
                .on_conflict_do_nothing(index_elements=["user_id", "role"])
            )
            return conn.execute(stmt).rowcount == 1

    # ---- AdminCodeStore

    def insert_admin_code(self, *, code: str, now: datetime) -> AdminCode:
        with self._connect() as conn:
            stmt = (
                self._insert(conn, AdminCodeRow)
                .values(code=code, is_active=True, created_at=now)
                .on_conflict_do_nothing(index_elements=["code"])
            )
            conn.execute(stmt)
            row = conn.execute(select(AdminCodeRow.__table__).where(AdminCodeRow.code == code)).fetchone()

        return AdminCode(
            code=row.code,
            is_active=bool(row.is_active),
            created_at=_as_utc(row.created_at),
            used_by=row.used_by,
            used_at=_as_utc(row.used_at),
        )

    def consume_admin_code(self, *, code: str, user_id: str, now: datetime) -> bool:
        stmt = (
            update(AdminCodeRow)
            .where(AdminCodeRow.code == code, AdminCodeRow.is_active.is_(True))
            .values(is_active=False, used_by=user_id, used_at=now)
        )
        with self._connect() as conn:
            return conn.execute(stmt).rowcount == 1

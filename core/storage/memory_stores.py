"""In-process ledger store.

Every operation runs under one re-entrant lock, so the conditional updates
behave like single statements against a database. `atomic()` holds the same
lock for a whole settlement but cannot roll back, hence `transactional = False`.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Iterator, Mapping, Optional, Sequence

from core.persistence.interfaces import LedgerStore
from core.types import AdminCode, DepositAddress, Trade, Wallet


class InMemoryLedgerStore(LedgerStore):
    transactional = False

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._wallets: dict[str, Wallet] = {}
        self._trades: list[Trade] = []
        self._addresses: dict[tuple[str, str], DepositAddress] = {}
        self._roles: set[tuple[str, str]] = set()
        self._admin_codes: dict[str, AdminCode] = {}

    @contextmanager
    def atomic(self, *, user_id: str) -> Iterator[None]:
        with self._lock:
            yield

    # ---- WalletStore

    def insert_wallet_if_absent(self, *, user_id: str, balance_usd: Decimal, now: datetime) -> Wallet:
        with self._lock:
            wallet = self._wallets.get(user_id)
            if wallet is None:
                wallet = Wallet(user_id=user_id, balance_usd=balance_usd, updated_at=now)
                self._wallets[user_id] = wallet
            return wallet

    def get_wallet(self, *, user_id: str) -> Optional[Wallet]:
        with self._lock:
            return self._wallets.get(user_id)

    def apply_delta(self, *, user_id: str, delta: Decimal, now: datetime) -> Optional[Wallet]:
        with self._lock:
            wallet = self._wallets.get(user_id)
            if wallet is None or wallet.balance_usd + delta < 0:
                return None
            wallet = replace(wallet, balance_usd=wallet.balance_usd + delta, updated_at=now)
            self._wallets[user_id] = wallet
            return wallet

    def set_balance(self, *, user_id: str, balance_usd: Decimal, now: datetime) -> Optional[Wallet]:
        with self._lock:
            wallet = self._wallets.get(user_id)
            if wallet is None:
                return None
            wallet = replace(wallet, balance_usd=balance_usd, updated_at=now)
            self._wallets[user_id] = wallet
            return wallet

    def claim_bonus(
        self,
        *,
        user_id: str,
        amount: Decimal,
        now: datetime,
        claimed_before: datetime,
    ) -> Optional[Wallet]:
        with self._lock:
            wallet = self._wallets.get(user_id)
            if wallet is None:
                return None
            last = wallet.last_bonus_claim_at
            if last is not None and last > claimed_before:
                return None
            wallet = replace(
                wallet,
                balance_usd=wallet.balance_usd + amount,
                updated_at=now,
                last_bonus_claim_at=now,
            )
            self._wallets[user_id] = wallet
            return wallet

    def list_wallets(self) -> Sequence[Wallet]:
        with self._lock:
            return sorted(self._wallets.values(), key=lambda w: w.balance_usd, reverse=True)

    # ---- TradeStore

    def append_trade(self, *, trade: Trade) -> Trade:
        with self._lock:
            self._trades.append(trade)
            return trade

    def get_trades(self, *, user_id: str | None = None, limit: int = 50) -> Sequence[Trade]:
        with self._lock:
            trades = [t for t in self._trades if user_id is None or t.user_id == user_id]
        # Insertion order is arrival order; created_at may tie.
        return list(reversed(trades))[:limit]

    def sum_quantities(self, *, user_id: str, asset_id: str | None = None) -> Mapping[tuple[str, str], Decimal]:
        totals: dict[tuple[str, str], Decimal] = {}
        with self._lock:
            for trade in self._trades:
                if trade.user_id != user_id:
                    continue
                if asset_id is not None and trade.asset_id != asset_id:
                    continue
                key = (trade.asset_id, trade.trade_type)
                totals[key] = totals.get(key, Decimal("0")) + trade.quantity
        return totals

    # ---- AddressStore

    def insert_address_if_absent(self, *, address: DepositAddress) -> DepositAddress:
        key = (address.user_id, address.asset_id)
        with self._lock:
            return self._addresses.setdefault(key, address)

    def get_address(self, *, user_id: str, asset_id: str) -> Optional[DepositAddress]:
        with self._lock:
            return self._addresses.get((user_id, asset_id))

    def get_addresses(self, *, user_id: str) -> Sequence[DepositAddress]:
        with self._lock:
            return [a for (uid, _), a in self._addresses.items() if uid == user_id]

    # ---- RoleStore

    def has_role(self, user_id: str, role: str) -> bool:
        with self._lock:
            return (user_id, role) in self._roles

    def grant_role(self, *, user_id: str, role: str) -> bool:
        with self._lock:
            if (user_id, role) in self._roles:
                return False
            self._roles.add((user_id, role))
            return True

    # ---- AdminCodeStore

    def insert_admin_code(self, *, code: str, now: datetime) -> AdminCode:
        with self._lock:
            admin_code = self._admin_codes.get(code)
            if admin_code is None:
                admin_code = AdminCode(code=code, is_active=True, created_at=now)
                self._admin_codes[code] = admin_code
            return admin_code

    def consume_admin_code(self, *, code: str, user_id: str, now: datetime) -> bool:
        with self._lock:
            admin_code = self._admin_codes.get(code)
            if admin_code is None or not admin_code.is_active:
                return False
            self._admin_codes[code] = replace(admin_code, is_active=False, used_by=user_id, used_at=now)
            return True

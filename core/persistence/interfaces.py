from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import ContextManager, Mapping, Optional, Protocol, Sequence

from core.types import AdminCode, DepositAddress, Trade, Wallet


class WalletStore(Protocol):
    def insert_wallet_if_absent(self, *, user_id: str, balance_usd: Decimal, now: datetime) -> Wallet:
        """Create the wallet unless one exists; return the stored row either way."""

    def get_wallet(self, *, user_id: str) -> Optional[Wallet]:
        """Fetch a single wallet by owner."""

    def apply_delta(self, *, user_id: str, delta: Decimal, now: datetime) -> Optional[Wallet]:
        """Atomically add `delta` if the result stays >= 0.

        Returns the updated wallet, or None when the guard rejected the update
        (or the wallet does not exist). The check and the write are a single
        store operation.
        """

    def set_balance(self, *, user_id: str, balance_usd: Decimal, now: datetime) -> Optional[Wallet]:
        """Unconditional overwrite (administrative correction)."""

    def claim_bonus(
        self,
        *,
        user_id: str,
        amount: Decimal,
        now: datetime,
        claimed_before: datetime,
    ) -> Optional[Wallet]:
        """Credit `amount` and stamp the claim time in one conditional update.

        Succeeds only when the last claim is absent or <= `claimed_before`.
        """

    def list_wallets(self) -> Sequence[Wallet]:
        """All wallets, highest balance first."""


class TradeStore(Protocol):
    def append_trade(self, *, trade: Trade) -> Trade:
        """Insert an immutable trade row."""

    def get_trades(self, *, user_id: str | None = None, limit: int = 50) -> Sequence[Trade]:
        """Newest first, optionally filtered by user."""

    def sum_quantities(self, *, user_id: str, asset_id: str | None = None) -> Mapping[tuple[str, str], Decimal]:
        """Total quantity per (asset_id, trade_type) for a user."""


class AddressStore(Protocol):
    def insert_address_if_absent(self, *, address: DepositAddress) -> DepositAddress:
        """Create unless (user_id, asset_id) exists; return the stored row."""

    def get_address(self, *, user_id: str, asset_id: str) -> Optional[DepositAddress]:
        """Fetch a single deposit address."""

    def get_addresses(self, *, user_id: str) -> Sequence[DepositAddress]:
        """All deposit addresses for a user."""


class RoleStore(Protocol):
    def has_role(self, user_id: str, role: str) -> bool:
        """Capability check consumed by admin-only operations."""

    def grant_role(self, *, user_id: str, role: str) -> bool:
        """Create-if-absent. Returns True when the role was newly granted."""


class AdminCodeStore(Protocol):
    def insert_admin_code(self, *, code: str, now: datetime) -> AdminCode:
        """Seed a single-use code."""

    def consume_admin_code(self, *, code: str, user_id: str, now: datetime) -> bool:
        """Mark an active code used. Returns False if unknown or already used."""


class LedgerStore(WalletStore, TradeStore, AddressStore, RoleStore, AdminCodeStore, Protocol):
    """Everything the ledger core needs from durable storage."""

    transactional: bool

    def atomic(self, *, user_id: str) -> ContextManager[None]:
        """Scope in which every call commits together, serialized per user.

        Transactional stores roll back on exception. Non-transactional stores
        only serialize, so earlier writes in the scope survive a later failure.
        """

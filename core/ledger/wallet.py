"""Wallet ledger.

Maintains one non-negative USD balance per user. Every mutation is a delta
handed to the store as a single conditional update; the ledger never reads a
balance, computes a new value and writes it back.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence

from core.errors import BonusNotAvailable, InsufficientFunds, InvalidInput, Unauthorized
from core.ledger.authz import RoleChecker
from core.ledger.config import LedgerConfig
from core.persistence.interfaces import WalletStore
from core.types import ADMIN_ROLE, AMOUNT_PLACES, BonusGrant, Wallet, is_valid_amount

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WalletLedger:
    """Owns balance invariants for all users.

    Thread-safety: safe to share; atomicity is delegated to the store.
    """

    def __init__(
        self,
        *,
        store: WalletStore,
        roles: RoleChecker,
        config: Optional[LedgerConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._roles = roles
        self._config = config or LedgerConfig()
        self._clock = clock

    @property
    def config(self) -> LedgerConfig:
        return self._config

    def get_or_create(self, user_id: str) -> Wallet:
        """Return the user's wallet, creating it with the starting balance if absent.

        Creation is create-if-absent at the store, so concurrent first access
        yields exactly one wallet.
        """
        if not user_id:
            raise InvalidInput("user_id is required")

        wallet = self._store.get_wallet(user_id=user_id)
        if wallet is not None:
            return wallet

        wallet = self._store.insert_wallet_if_absent(
            user_id=user_id,
            balance_usd=self._config.starting_balance,
            now=self._clock(),
        )
        logger.info("Wallet ready for user %s with balance %s", user_id, wallet.balance_usd)
        return wallet

    def get_balance(self, user_id: str) -> Decimal:
        return self.get_or_create(user_id).balance_usd

    def apply_delta(self, user_id: str, delta: Decimal) -> Wallet:
        """Atomically add a signed `delta`, refusing any result below zero.

        Raises:
            InvalidInput: `delta` is not a finite amount with at most AMOUNT_PLACES decimals
            InsufficientFunds: the guard rejected the update; balance unchanged
        """
        _require_amount(delta, "Balance change")
        self.get_or_create(user_id)

        wallet = self._store.apply_delta(user_id=user_id, delta=delta, now=self._clock())
        if wallet is None:
            current = self._store.get_wallet(user_id=user_id)
            available = current.balance_usd if current is not None else Decimal("0")
            raise InsufficientFunds(user_id=user_id, required=-delta, available=available)
        return wallet

    def set_balance(self, actor_id: str, user_id: str, new_balance: Decimal) -> Wallet:
        """Administrative overwrite of a user's balance.

        Raises:
            Unauthorized: `actor_id` lacks the admin role
            InvalidInput: `new_balance` is negative
        """
        self._require_admin(actor_id, "set wallet balance")
        if not new_balance.is_finite() or new_balance < 0:
            raise InvalidInput("Please enter a valid positive number")
        _require_amount(new_balance, "Balance")

        self.get_or_create(user_id)
        wallet = self._store.set_balance(user_id=user_id, balance_usd=new_balance, now=self._clock())
        if wallet is None:
            raise RuntimeError(f"Wallet for user {user_id} disappeared during balance update")

        logger.info("Admin %s set balance of user %s to %s", actor_id, user_id, new_balance)
        return wallet

    def credit(self, actor_id: str, user_id: str, amount: Decimal) -> Wallet:
        """Administrative top-up: add `amount` to a wallet (the admin's own included).

        Raises:
            Unauthorized: `actor_id` lacks the admin role
            InvalidInput: `amount` is not positive
        """
        self._require_admin(actor_id, "add funds")
        if not amount.is_finite() or amount <= 0:
            raise InvalidInput("Please enter a valid positive amount")
        _require_amount(amount, "Amount")

        wallet = self.apply_delta(user_id, amount)
        logger.info(
            "Admin %s added %s to wallet of user %s. New balance: %s",
            actor_id,
            amount,
            user_id,
            wallet.balance_usd,
        )
        return wallet

    def grant_daily_bonus(self, user_id: str, now: Optional[datetime] = None) -> BonusGrant:
        """Credit the daily bonus if the last claim is absent or old enough.

        The eligibility check, balance credit and claim timestamp are one store
        operation, so two simultaneous claims cannot both succeed.

        Raises:
            BonusNotAvailable: claimed less than `bonus_interval` ago
        """
        now = now or self._clock()
        interval = self._config.bonus_interval
        amount = self._config.daily_bonus_amount

        self.get_or_create(user_id)
        wallet = self._store.claim_bonus(
            user_id=user_id,
            amount=amount,
            now=now,
            claimed_before=now - interval,
        )

        if wallet is None:
            current = self._store.get_wallet(user_id=user_id)
            last_claim = current.last_bonus_claim_at if current is not None else None
            next_eligible_at = (last_claim or now) + interval
            hours_remaining = (next_eligible_at - now).total_seconds() / 3600
            hours_until_next = max(1, math.ceil(hours_remaining))
            logger.info("User %s already claimed bonus. Hours until next: %d", user_id, hours_until_next)
            raise BonusNotAvailable(hours_until_next=hours_until_next, next_eligible_at=next_eligible_at)

        logger.info("Daily bonus claimed by user %s: %s. New balance: %s", user_id, amount, wallet.balance_usd)
        return BonusGrant(amount=amount, new_balance=wallet.balance_usd, next_eligible_at=now + interval)

    def list_wallets(self, actor_id: str) -> Sequence[Wallet]:
        self._require_admin(actor_id, "list wallets")
        return self._store.list_wallets()

    def _require_admin(self, actor_id: str, action: str) -> None:
        if not self._roles.has_role(actor_id, ADMIN_ROLE):
            logger.warning("User %s attempted to %s without admin role", actor_id, action)
            raise Unauthorized(f"Admin role required to {action}")


def _require_amount(value: Decimal, label: str) -> None:
    if not is_valid_amount(value):
        raise InvalidInput(f"{label} must be a finite amount with at most {AMOUNT_PLACES} decimal places")

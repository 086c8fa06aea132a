"""Trade settlement.

Per order: Requested -> Validated -> Settled, or Requested -> Rejected.
Rejections raise before any store mutation. The wallet delta and the trade
append share one store scope; if the append fails the caller gets a
`ConsistencyError` and operators get a CRITICAL log with the replay payload.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Sequence

from core.errors import ConsistencyError, InsufficientFunds, InsufficientHoldings, InvalidInput, Unauthorized
from core.ledger.authz import RoleChecker
from core.ledger.wallet import WalletLedger, utc_now
from core.market_data.interfaces import PriceOracle
from core.persistence.interfaces import LedgerStore
from core.types import ADMIN_ROLE, AMOUNT_PLACES, TRADE_TYPES, Trade, is_valid_amount, round_amount

logger = logging.getLogger(__name__)


class TradeSettlement:
    """Validates and executes paper buy/sell orders against the wallet ledger."""

    def __init__(
        self,
        *,
        store: LedgerStore,
        ledger: WalletLedger,
        roles: RoleChecker,
        price_oracle: Optional[PriceOracle] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._roles = roles
        self._price_oracle = price_oracle
        self._clock = clock
        self._id_factory = id_factory

    def execute(
        self,
        user_id: str,
        asset_id: str,
        trade_type: str,
        quantity: Decimal,
        reference_price: Decimal,
        *,
        asset_symbol: Optional[str] = None,
        asset_name: Optional[str] = None,
    ) -> Trade:
        """Settle an order at the caller-supplied reference price.

        Args:
            user_id: Trading user
            asset_id: Asset identifier (e.g. 'bitcoin')
            trade_type: 'buy' or 'sell'
            quantity: Units of the asset (must be > 0)
            reference_price: USD price per unit at execution (must be > 0)

        Quantity and price carry at most AMOUNT_PLACES decimals; the total is
        rounded half-up to AMOUNT_PLACES.

        Returns:
            The recorded Trade

        Raises:
            InvalidInput: malformed order
            InsufficientFunds: buy exceeds balance
            InsufficientHoldings: sell exceeds derived holding
            ConsistencyError: balance changed but the trade could not be recorded
        """
        self._validate(user_id, asset_id, trade_type, quantity, reference_price)

        total_usd = round_amount(quantity * reference_price)
        if total_usd == 0:
            raise InvalidInput("Trade value is below the smallest USD amount")
        delta = -total_usd if trade_type == "buy" else total_usd

        # Wallet must exist before the scope locks its row.
        self._ledger.get_or_create(user_id)

        with self._store.atomic(user_id=user_id):
            if trade_type == "sell":
                available = self.holding(user_id, asset_id)
                if quantity > available:
                    logger.warning(
                        "Rejected sell for user %s: %s %s requested, %s held",
                        user_id,
                        quantity,
                        asset_id,
                        available,
                    )
                    raise InsufficientHoldings(
                        user_id=user_id,
                        asset_id=asset_id,
                        requested=quantity,
                        available=available,
                    )

            try:
                wallet = self._ledger.apply_delta(user_id, delta)
            except InsufficientFunds as exc:
                logger.warning("Rejected buy for user %s: need %s, have %s", user_id, exc.required, exc.available)
                raise

            trade = Trade(
                id=self._id_factory(),
                user_id=user_id,
                asset_id=asset_id,
                trade_type=trade_type,  # type: ignore[arg-type]
                quantity=quantity,
                price_usd=reference_price,
                total_usd=total_usd,
                created_at=self._clock(),
                asset_symbol=asset_symbol,
                asset_name=asset_name,
            )

            try:
                self._store.append_trade(trade=trade)
            except Exception as exc:
                replay = {
                    "trade_id": trade.id,
                    "user_id": user_id,
                    "asset_id": asset_id,
                    "trade_type": trade_type,
                    "quantity": str(quantity),
                    "price_usd": str(reference_price),
                    "total_usd": str(total_usd),
                    "balance_delta": str(delta),
                    "balance_after": str(wallet.balance_usd),
                    "created_at": trade.created_at.isoformat(),
                }
                committed = not self._store.transactional
                logger.critical(
                    "Trade record append failed after wallet mutation (balance_committed=%s): %s",
                    committed,
                    replay,
                    exc_info=True,
                )
                raise ConsistencyError(
                    "Failed to execute trade. Please try again.",
                    replay=replay,
                    balance_committed=committed,
                ) from exc

        logger.info(
            "Settled %s %s %s @ %s for user %s (total %s, balance %s)",
            trade_type,
            quantity,
            asset_id,
            reference_price,
            user_id,
            total_usd,
            wallet.balance_usd,
        )
        return trade

    def execute_at_market(
        self,
        user_id: str,
        asset_id: str,
        trade_type: str,
        quantity: Decimal,
        **kwargs: Optional[str],
    ) -> Trade:
        """Fetch the current reference price from the oracle, then execute.

        A stale quote is still the last known reference price and is accepted.

        Raises:
            StalePriceData: the oracle has never produced a price for the asset
        """
        if self._price_oracle is None:
            raise InvalidInput("reference_price is required (no price oracle configured)")

        quote = self._price_oracle.price(asset_id)
        if quote.stale:
            logger.warning("Executing %s on %s with stale price from %s", trade_type, asset_id, quote.as_of.isoformat())
        # Oracle prices may carry more decimals than the ledger stores.
        return self.execute(user_id, asset_id, trade_type, quantity, round_amount(quote.usd), **kwargs)

    def holding(self, user_id: str, asset_id: str) -> Decimal:
        """Derived holding: sum of buys minus sum of sells for the asset."""
        totals = self._store.sum_quantities(user_id=user_id, asset_id=asset_id)
        bought = totals.get((asset_id, "buy"), Decimal("0"))
        sold = totals.get((asset_id, "sell"), Decimal("0"))
        return bought - sold

    def holdings(self, user_id: str) -> dict[str, Decimal]:
        """All non-zero holdings for a user, recomputed from trade history."""
        totals = self._store.sum_quantities(user_id=user_id)
        result: dict[str, Decimal] = {}
        for (asset_id, trade_type), qty in totals.items():
            signed = qty if trade_type == "buy" else -qty
            result[asset_id] = result.get(asset_id, Decimal("0")) + signed
        return {asset_id: qty for asset_id, qty in sorted(result.items()) if qty != 0}

    def list_trades(self, user_id: str, limit: int = 50) -> Sequence[Trade]:
        return self._store.get_trades(user_id=user_id, limit=limit)

    def recent_trades(self, actor_id: str, limit: int = 50) -> Sequence[Trade]:
        """Latest trades across all users (admin only)."""
        if not self._roles.has_role(actor_id, ADMIN_ROLE):
            logger.warning("User %s attempted to list all trades without admin role", actor_id)
            raise Unauthorized("Admin role required to list all trades")
        return self._store.get_trades(limit=limit)

    @staticmethod
    def _validate(
        user_id: str,
        asset_id: str,
        trade_type: str,
        quantity: Decimal,
        reference_price: Decimal,
    ) -> None:
        if not user_id:
            raise InvalidInput("user_id is required")
        if not asset_id:
            raise InvalidInput("asset_id is required")
        if trade_type not in TRADE_TYPES:
            raise InvalidInput(f"trade_type must be one of {', '.join(TRADE_TYPES)}")
        if not quantity.is_finite() or quantity <= 0:
            raise InvalidInput("Quantity must be positive")
        if not reference_price.is_finite() or reference_price <= 0:
            raise InvalidInput("Reference price must be positive")
        if not is_valid_amount(quantity):
            raise InvalidInput(f"Quantity supports at most {AMOUNT_PLACES} decimal places")
        if not is_valid_amount(reference_price):
            raise InvalidInput(f"Reference price supports at most {AMOUNT_PLACES} decimal places")

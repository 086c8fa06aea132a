from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal, Optional

TradeType = Literal["buy", "sell"]
Role = Literal["admin", "user"]

TRADE_TYPES: tuple[str, ...] = ("buy", "sell")
ADMIN_ROLE: Role = "admin"

# USD amounts, quantities and prices are fixed-point with this many decimal places.
AMOUNT_PLACES = 8
AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_PLACES)


def is_valid_amount(value: Decimal) -> bool:
    """True for finite values with no more than AMOUNT_PLACES decimal places."""
    return value.is_finite() and value.normalize().as_tuple().exponent >= -AMOUNT_PLACES


def round_amount(value: Decimal) -> Decimal:
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Wallet:
    user_id: str
    balance_usd: Decimal
    updated_at: datetime
    last_bonus_claim_at: Optional[datetime] = None


@dataclass(frozen=True)
class Trade:
    """Append-only ledger entry. `total_usd` is quantity * price_usd rounded to AMOUNT_PLACES."""

    id: str
    user_id: str
    asset_id: str
    trade_type: TradeType
    quantity: Decimal
    price_usd: Decimal
    total_usd: Decimal
    created_at: datetime
    asset_symbol: Optional[str] = None
    asset_name: Optional[str] = None


@dataclass(frozen=True)
class DepositAddress:
    user_id: str
    asset_id: str
    address: str
    created_at: datetime


@dataclass(frozen=True)
class AdminCode:
    code: str
    is_active: bool
    created_at: datetime
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None


@dataclass(frozen=True)
class PriceQuote:
    asset_id: str
    usd: Decimal
    change_pct_24h: Optional[Decimal]
    as_of: datetime
    stale: bool = False


@dataclass(frozen=True)
class BonusGrant:
    amount: Decimal
    new_balance: Decimal
    next_eligible_at: datetime

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal

from core.types import AMOUNT_PLACES, is_valid_amount

DEFAULT_SUPPORTED_ASSETS: tuple[str, ...] = ("bitcoin", "ethereum", "solana", "tether")


@dataclass(frozen=True)
class LedgerConfig:
    """Wallet ledger configuration."""

    quote_currency: str = "USD"
    starting_balance: Decimal = Decimal("10000")
    daily_bonus_amount: Decimal = Decimal("1000")
    bonus_interval: timedelta = timedelta(hours=24)
    supported_assets: tuple[str, ...] = field(default=DEFAULT_SUPPORTED_ASSETS)

    def __post_init__(self) -> None:
        for name in ("starting_balance", "daily_bonus_amount"):
            value = getattr(self, name)
            if not is_valid_amount(value) or value < 0:
                raise ValueError(f"{name} must be a non-negative amount with at most {AMOUNT_PLACES} decimal places")

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        """Build config from LEDGER_* environment variables, falling back to defaults."""
        defaults = cls()

        assets_raw = os.environ.get("LEDGER_SUPPORTED_ASSETS")
        assets = (
            tuple(a.strip().lower() for a in assets_raw.split(",") if a.strip())
            if assets_raw
            else defaults.supported_assets
        )

        interval_raw = os.environ.get("LEDGER_BONUS_INTERVAL_HOURS")
        interval = timedelta(hours=float(interval_raw)) if interval_raw else defaults.bonus_interval

        return cls(
            starting_balance=Decimal(os.environ.get("LEDGER_STARTING_BALANCE", str(defaults.starting_balance))),
            daily_bonus_amount=Decimal(os.environ.get("LEDGER_DAILY_BONUS", str(defaults.daily_bonus_amount))),
            bonus_interval=interval,
            supported_assets=assets,
        )

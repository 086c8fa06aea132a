"""Ledger error taxonomy.

Every rejection carries a stable machine `code` and a `details()` mapping with
the numbers a caller needs to explain it (required vs available amounts, time
until the next bonus). `ConsistencyError` is the only fatal member: it means a
balance mutation may exist without a matching trade record.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping


class LedgerError(Exception):
    """Base class for ledger and settlement failures."""

    code = "ledger_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> Mapping[str, Any]:
        return {}


class InvalidInput(LedgerError):
    code = "invalid_input"


class InsufficientFunds(LedgerError):
    code = "insufficient_funds"

    def __init__(self, *, user_id: str, required: Decimal, available: Decimal) -> None:
        super().__init__(f"Insufficient funds: need ${required:.2f} but only have ${available:.2f}")
        self.user_id = user_id
        self.required = required
        self.available = available

    def details(self) -> Mapping[str, Any]:
        return {"required": str(self.required), "available": str(self.available)}


class InsufficientHoldings(LedgerError):
    code = "insufficient_holdings"

    def __init__(self, *, user_id: str, asset_id: str, requested: Decimal, available: Decimal) -> None:
        super().__init__(f"Insufficient holdings: you only have {available} {asset_id} but trying to sell {requested}")
        self.user_id = user_id
        self.asset_id = asset_id
        self.requested = requested
        self.available = available

    def details(self) -> Mapping[str, Any]:
        return {"asset_id": self.asset_id, "requested": str(self.requested), "available": str(self.available)}


class Unauthorized(LedgerError):
    code = "unauthorized"


class StalePriceData(LedgerError):
    code = "stale_price_data"

    def __init__(self, asset_id: str, reason: str) -> None:
        super().__init__(f"No price available for {asset_id}: {reason}")
        self.asset_id = asset_id


class BonusNotAvailable(LedgerError):
    code = "bonus_not_available"

    def __init__(self, *, hours_until_next: int, next_eligible_at: datetime) -> None:
        super().__init__("Already claimed today")
        self.hours_until_next = hours_until_next
        self.next_eligible_at = next_eligible_at

    def details(self) -> Mapping[str, Any]:
        return {
            "hours_until_next": self.hours_until_next,
            "next_eligible_at": self.next_eligible_at.isoformat(),
        }


class InvalidAdminCode(LedgerError):
    code = "invalid_admin_code"


class ConsistencyError(LedgerError):
    """A trade record could not be written after the wallet was mutated."""

    code = "consistency_error"

    def __init__(self, message: str, *, replay: Mapping[str, Any], balance_committed: bool) -> None:
        super().__init__(message)
        self.replay = dict(replay)
        self.balance_committed = balance_committed

    def details(self) -> Mapping[str, Any]:
        # Replay payload is for operators only.
        return {}

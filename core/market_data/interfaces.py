from __future__ import annotations

from typing import Protocol

from core.types import PriceQuote


class PriceOracle(Protocol):
    """Current USD reference price per asset."""

    def price(self, asset_id: str) -> PriceQuote:
        """Return the latest quote, marked `stale` if it could not be refreshed.

        Raises StalePriceData only when no quote has ever been obtained.
        """
        raise NotImplementedError

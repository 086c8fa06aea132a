"""CoinGecko reference price oracle.

Uses the free tier API (no API key required).
Rate limit: 10-30 calls/minute on free tier, so quotes are cached for
`cache_ttl_seconds` and the last successful value is served (marked stale)
whenever a refresh fails.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Sequence

import requests

from core.errors import StalePriceData
from core.types import PriceQuote

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CoinGeckoPriceOracle:
    """Price oracle backed by CoinGecko `/simple/price`."""

    BASE_URL = "https://api.coingecko.com/api/v3"
    DEFAULT_TIMEOUT = 10  # seconds
    DEFAULT_CACHE_TTL = 30  # seconds

    def __init__(
        self,
        *,
        timeout: int = DEFAULT_TIMEOUT,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.timeout = timeout
        self._cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self._clock = clock
        self._session = requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "User-Agent": "papertrade-ledger/1.0",
        })
        self._last_quotes: dict[str, PriceQuote] = {}
        self._fetched_at: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def price(self, asset_id: str) -> PriceQuote:
        """Latest quote for one asset.

        Raises:
            StalePriceData: CoinGecko is unreachable and nothing is cached
        """
        with self._lock:
            fetched_at = self._fetched_at.get(asset_id)
            cached = self._last_quotes.get(asset_id)
        if cached is not None and fetched_at is not None and self._clock() - fetched_at < self._cache_ttl:
            return cached

        return self.prices([asset_id])[asset_id]

    def prices(self, asset_ids: Sequence[str]) -> dict[str, PriceQuote]:
        """Refresh quotes for several assets in one request.

        Assets that could not be refreshed fall back to their last known quote
        with `stale=True`.

        Raises:
            StalePriceData: an asset could not be refreshed and has no cached quote
        """
        fresh: dict[str, PriceQuote] = {}
        error: str | None = None
        try:
            fresh = self._fetch(asset_ids)
        except RuntimeError as exc:
            error = str(exc)

        now = self._clock()
        result: dict[str, PriceQuote] = {}
        with self._lock:
            for asset_id in asset_ids:
                quote = fresh.get(asset_id)
                if quote is not None:
                    self._last_quotes[asset_id] = quote
                    self._fetched_at[asset_id] = now
                    result[asset_id] = quote
                    continue

                reason = error or "asset missing from CoinGecko response"
                cached = self._last_quotes.get(asset_id)
                if cached is None:
                    raise StalePriceData(asset_id, reason)

                logger.warning("Serving stale %s price from %s: %s", asset_id, cached.as_of.isoformat(), reason)
                result[asset_id] = replace(cached, stale=True)

        return result

    def _fetch(self, asset_ids: Sequence[str]) -> dict[str, PriceQuote]:
        url = f"{self.BASE_URL}/simple/price"
        params = {
            "ids": ",".join(asset_ids),
            "vs_currencies": "usd",
            "include_24hr_change": "true",
            "include_last_updated_at": "true",
        }

        try:
            response = self._session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise RuntimeError(f"CoinGecko API request failed: {exc}") from exc

        if not isinstance(data, dict):
            raise RuntimeError(f"Unexpected response format: {type(data)}")

        quotes: dict[str, PriceQuote] = {}
        for asset_id in asset_ids:
            entry = data.get(asset_id)
            if not isinstance(entry, dict):
                continue
            quote = self._parse_entry(asset_id, entry)
            if quote is not None:
                quotes[asset_id] = quote
        return quotes

    def _parse_entry(self, asset_id: str, entry: dict[str, Any]) -> PriceQuote | None:
        try:
            usd = Decimal(str(entry["usd"]))
        except (KeyError, InvalidOperation):
            logger.debug("CoinGecko entry for %s has no usable price: %s", asset_id, entry)
            return None
        if not usd.is_finite() or usd <= 0:
            return None

        change = entry.get("usd_24h_change")
        try:
            change_pct = Decimal(str(change)) if change is not None else None
        except InvalidOperation:
            change_pct = None

        updated = entry.get("last_updated_at")
        as_of = (
            datetime.fromtimestamp(int(updated), tz=timezone.utc)
            if isinstance(updated, (int, float))
            else self._clock()
        )
        return PriceQuote(asset_id=asset_id, usd=usd, change_pct_24h=change_pct, as_of=as_of)

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()

"""Market data (reference prices).

Prices are polled from CoinGecko; the ledger only consumes `PriceOracle`.
"""

from core.market_data.coingecko_client import CoinGeckoPriceOracle
from core.market_data.interfaces import PriceOracle

__all__ = [
    "CoinGeckoPriceOracle",
    "PriceOracle",
]

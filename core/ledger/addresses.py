"""Deposit address provisioning.

One address per (user, currency), generated on first request and immutable
afterwards. Concurrent first requests race on the store's uniqueness
constraint; the losing caller gets the winner's address back.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional, Protocol, Sequence

from core.errors import InvalidInput
from core.ledger.config import DEFAULT_SUPPORTED_ASSETS
from core.ledger.wallet import utc_now
from core.persistence.interfaces import AddressStore
from core.types import DepositAddress

logger = logging.getLogger(__name__)

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BASE58_CHARSET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

# Assets whose deposit addresses use the EVM format.
_EVM_ASSETS = frozenset({"ethereum", "tether", "usd-coin", "chainlink"})


class AddressGenerator(Protocol):
    def generate(self, asset_id: str) -> str:
        """Return a fresh deposit address for the asset."""


class RandomAddressGenerator:
    """Simulated address generator.

    Produces addresses shaped like the real network format. They are not
    derived from any key and cannot receive funds.
    """

    def generate(self, asset_id: str) -> str:
        if asset_id == "bitcoin":
            return "bc1q" + "".join(secrets.choice(_BECH32_CHARSET) for _ in range(38))
        if asset_id == "solana":
            return "".join(secrets.choice(_BASE58_CHARSET) for _ in range(44))
        if asset_id in _EVM_ASSETS:
            return "0x" + secrets.token_hex(20)
        return secrets.token_hex(16)


class AddressProvisioner:
    def __init__(
        self,
        *,
        store: AddressStore,
        generator: Optional[AddressGenerator] = None,
        supported_assets: Sequence[str] = DEFAULT_SUPPORTED_ASSETS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._generator = generator or RandomAddressGenerator()
        self._supported_assets = tuple(supported_assets)
        self._clock = clock

    @property
    def supported_assets(self) -> tuple[str, ...]:
        return self._supported_assets

    def get_or_create_address(self, user_id: str, asset_id: str) -> str:
        if not user_id:
            raise InvalidInput("user_id is required")
        if asset_id not in self._supported_assets:
            raise InvalidInput(f"Unsupported currency: {asset_id}. Supported: {', '.join(self._supported_assets)}")

        existing = self._store.get_address(user_id=user_id, asset_id=asset_id)
        if existing is not None:
            return existing.address

        candidate = DepositAddress(
            user_id=user_id,
            asset_id=asset_id,
            address=self._generator.generate(asset_id),
            created_at=self._clock(),
        )
        stored = self._store.insert_address_if_absent(address=candidate)
        if stored.address == candidate.address:
            logger.info("Provisioned %s deposit address for user %s", asset_id, user_id)
        return stored.address

    def ensure_all(self, user_id: str) -> dict[str, str]:
        """Addresses for every supported currency, creating missing ones."""
        return {asset_id: self.get_or_create_address(user_id, asset_id) for asset_id in self._supported_assets}

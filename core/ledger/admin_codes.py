from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from core.errors import InvalidAdminCode, InvalidInput
from core.ledger.wallet import utc_now
from core.persistence.interfaces import LedgerStore
from core.types import ADMIN_ROLE, AdminCode

logger = logging.getLogger(__name__)


class AdminCodes:
    """Single-use codes that grant the admin role."""

    def __init__(self, *, store: LedgerStore, clock: Callable[[], datetime] = utc_now) -> None:
        self._store = store
        self._clock = clock

    def create(self, code: str) -> AdminCode:
        normalized = code.strip().upper()
        if not normalized:
            raise InvalidInput("Please enter a code")
        return self._store.insert_admin_code(code=normalized, now=self._clock())

    def redeem(self, user_id: str, code: str) -> None:
        """Consume `code` and grant admin to `user_id`.

        Raises:
            InvalidInput: empty code
            InvalidAdminCode: unknown/used code, or the user is already an admin
        """
        normalized = code.strip().upper()
        if not normalized:
            raise InvalidInput("Please enter a code")

        if self._store.has_role(user_id, ADMIN_ROLE):
            raise InvalidAdminCode("You are already an administrator")

        with self._store.atomic(user_id=user_id):
            if not self._store.consume_admin_code(code=normalized, user_id=user_id, now=self._clock()):
                logger.warning("User %s tried an invalid or used admin code", user_id)
                raise InvalidAdminCode("This code is not valid or has already been used")

            self._store.grant_role(user_id=user_id, role=ADMIN_ROLE)
        logger.info("User %s redeemed an admin code and is now an administrator", user_id)

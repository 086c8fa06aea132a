from __future__ import annotations

from typing import Protocol


class RoleChecker(Protocol):
    """Capability check injected into admin-only ledger operations.

    Any `RoleStore` satisfies it; tests can pass a lambda-backed stub.
    """

    def has_role(self, user_id: str, role: str) -> bool:
        """Return True if `user_id` holds `role`."""

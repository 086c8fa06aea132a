"""Persistence interfaces.

These protocols define the persistence boundary of the ledger. Implementations
live in `core.storage` (in-memory and SQLAlchemy-backed).
"""

from .interfaces import (
    AddressStore,
    AdminCodeStore,
    LedgerStore,
    RoleStore,
    TradeStore,
    WalletStore,
)

"""Storage implementations of the ledger persistence interfaces.

- memory_stores: single-process store for tests and local development
- sql: SQLAlchemy store (PostgreSQL, SQLite)
"""

from .memory_stores import InMemoryLedgerStore
from .sql import SqlConfig, SqlLedgerStore

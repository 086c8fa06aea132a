"""SQL storage for the ledger.

Notes
- We avoid logging connection URLs to prevent accidental secret leakage.
- Guards (non-negative balance, single bonus claim, single-use codes) are
  expressed in UPDATE ... WHERE clauses, never as read-then-write.
"""

from .config import SqlConfig
from .stores import SqlLedgerStore

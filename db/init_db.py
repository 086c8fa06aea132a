#!/usr/bin/env python3
"""Initialize the ledger database schema.

Creates the tables declared in db/models/ledger.py against the database
pointed to by DATABASE_URL, and optionally seeds admin codes.

Usage:
  python -m db.init_db [--admin-code CODE ...]

Requirements:
  - DATABASE_URL must be set
"""

from __future__ import annotations

import argparse
import logging
import os
from typing import Sequence

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from db.models.ledger import Base

logger = logging.getLogger(__name__)


def init_schema(engine: Engine) -> None:
    """Create all ledger tables that do not exist yet."""
    Base.metadata.create_all(engine)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create ledger tables and seed admin codes.")
    parser.add_argument(
        "--admin-code",
        action="append",
        default=[],
        help="Seed a single-use admin code (repeatable)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise SystemExit("DATABASE_URL is not set")

    # Do not log the URL (it may contain secrets).
    engine = create_engine(database_url, echo=False)
    init_schema(engine)
    logger.info("Database schema applied")

    if args.admin_code:
        from core.ledger.admin_codes import AdminCodes
        from core.storage.sql import SqlConfig, SqlLedgerStore

        codes = AdminCodes(store=SqlLedgerStore(config=SqlConfig(database_url=database_url)))
        for code in args.admin_code:
            seeded = codes.create(code)
            logger.info("Admin code %s ready (active=%s)", seeded.code, seeded.is_active)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())

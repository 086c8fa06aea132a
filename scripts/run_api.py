#!/usr/bin/env python3
"""Run the FastAPI ledger API server.

Usage:
    python scripts/run_api.py [--host HOST] [--port PORT] [--init-db]

Environment:
    DATABASE_URL - Optional. SQL connection string; without it the in-memory store is used.
    LEDGER_STARTING_BALANCE, LEDGER_DAILY_BONUS, LEDGER_BONUS_INTERVAL_HOURS,
    LEDGER_SUPPORTED_ASSETS - Optional ledger settings.

Examples:
    python scripts/run_api.py
    DATABASE_URL=sqlite:///ledger.db python scripts/run_api.py --init-db
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

# Ensure imports work when invoked as a script
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

logger = logging.getLogger("run_api")


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the paper-trading wallet ledger over HTTP.")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create missing ledger tables in DATABASE_URL before serving",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level for the ledger and uvicorn (default: info)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        if args.init_db:
            logger.error("--init-db needs DATABASE_URL")
            return 1
        logger.warning("DATABASE_URL is not set; balances and trades will be kept in memory only")
    elif args.init_db:
        from sqlalchemy import create_engine

        from db.init_db import init_schema

        init_schema(create_engine(database_url))
        logger.info("Ledger schema ready")

    logger.info("Starting ledger API on %s:%s", args.host, args.port)

    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload, log_level=args.log_level)
    return 0


if __name__ == "__main__":
    sys.exit(main())

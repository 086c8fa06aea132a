from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SqlConfig:
    """Connection configuration.

    `database_url` should come from environment (e.g. DATABASE_URL).
    Do not log it.
    """

    database_url: str

    @classmethod
    def from_env(cls) -> Optional["SqlConfig"]:
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            return None
        return cls(database_url=database_url)

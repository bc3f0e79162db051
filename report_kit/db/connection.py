"""
SQLite connection management.

Every connection handed out here has foreign keys on, a busy timeout, WAL
journaling for file databases, and ``sqlite3.Row`` rows.  The context
manager commits on clean exit and rolls back when the body raises.

    with get_connection(config.database.db_path) as conn:
        ProviderKeyRepository(conn).get_encrypted_keys("user-1")
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


def _pragmas(wal_mode: bool, busy_timeout_ms: int, in_memory: bool) -> list[str]:
    statements = [
        "PRAGMA foreign_keys = ON;",
        f"PRAGMA busy_timeout = {int(busy_timeout_ms)};",
    ]
    if wal_mode and not in_memory:
        statements.append("PRAGMA journal_mode = WAL;")
    return statements


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Yield a configured connection to ``db_path``.

    Parent directories of a file database are created on first use.
    """
    in_memory = db_path == MEMORY_DB
    if not in_memory:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row
    try:
        for statement in _pragmas(wal_mode, busy_timeout_ms, in_memory):
            conn.execute(statement)
        yield conn
        conn.commit()
    except Exception:
        logger.debug("Rolling back transaction on %s", db_path)
        conn.rollback()
        raise
    finally:
        conn.close()

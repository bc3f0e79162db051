"""
SQLite schema DDL.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent.

Tables:
  1. user_plans     (one row per user; absent user = free)
  2. provider_keys  (encrypted BYOK keys, unique per user and provider)
  3. usage_events   (one row per completed report run)
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_USER_PLANS = """
CREATE TABLE IF NOT EXISTS user_plans (
    user_id     TEXT    NOT NULL PRIMARY KEY,
    tier        TEXT    NOT NULL DEFAULT 'free'
                        CHECK (tier IN ('free', 'pro', 'premium')),
    updated_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_PROVIDER_KEYS = """
CREATE TABLE IF NOT EXISTS provider_keys (
    key_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT    NOT NULL,
    provider    TEXT    NOT NULL,
    ciphertext  TEXT    NOT NULL,
    key_type    TEXT    NOT NULL DEFAULT 'demo'
                        CHECK (key_type IN ('demo', 'pro')),
    key_hint    TEXT    NOT NULL DEFAULT '',
    is_valid    INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (user_id, provider)
);
"""

_DDL_USAGE_EVENTS = """
CREATE TABLE IF NOT EXISTS usage_events (
    event_id    INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT    NOT NULL,
    event_type  TEXT    NOT NULL,
    recipe_id   TEXT,
    metadata    TEXT    NOT NULL DEFAULT '{}',
    created_at  TEXT    NOT NULL
);
"""

_DDL_USAGE_EVENTS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_usage_events_user
    ON usage_events (user_id, created_at);
"""

_ALL_DDL: list[str] = [
    _DDL_USER_PLANS,
    _DDL_PROVIDER_KEYS,
    _DDL_USAGE_EVENTS,
    _DDL_USAGE_EVENTS_INDEXES,
]

ALL_TABLE_NAMES = [
    "user_plans",
    "provider_keys",
    "usage_events",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.  Idempotent."""
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database, sorted."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]

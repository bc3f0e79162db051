"""
Repository for usage events (``UsageRecorder`` implementation).
"""

from __future__ import annotations

import json
import logging
import sqlite3

from report_kit.db.repositories.base import BaseRepository, from_db_timestamp, to_db_timestamp
from report_kit.models.usage import UsageEvent
from report_kit.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class UsageEventRepository(BaseRepository):
    """Append-only access to the ``usage_events`` table."""

    def record_usage_event(self, event: UsageEvent) -> None:
        self.insert(event)

    def insert(self, event: UsageEvent) -> int:
        """Insert ``event`` and return its ``event_id``."""
        created_at = event.created_at or utcnow()
        self.execute(
            """
            INSERT INTO usage_events (user_id, event_type, recipe_id, metadata, created_at)
            VALUES (?, ?, ?, ?, ?);
            """,
            (
                event.user_id,
                event.event_type,
                event.recipe_id,
                json.dumps(event.metadata, sort_keys=True, default=str),
                to_db_timestamp(created_at),
            ),
        )
        return self.last_insert_rowid()

    def list_for_user(self, user_id: str, limit: int = 50) -> list[UsageEvent]:
        """Most recent events for ``user_id``, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM usage_events
             WHERE user_id = ?
             ORDER BY created_at DESC, event_id DESC
             LIMIT ?;
            """,
            (user_id, limit),
        )
        return [_row_to_event(r) for r in rows]


def _row_to_event(row: sqlite3.Row) -> UsageEvent:
    return UsageEvent(
        event_id=row["event_id"],
        user_id=row["user_id"],
        event_type=row["event_type"],
        recipe_id=row["recipe_id"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=from_db_timestamp(row["created_at"]),
    )

"""
Repository for encrypted provider keys (``CredentialStore`` implementation).

Only ciphertext and a four-character hint are stored; plaintext never
reaches this module.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from report_kit.db.repositories.base import BaseRepository, from_db_timestamp
from report_kit.models.credentials import ProviderKeyRecord

logger = logging.getLogger(__name__)


class ProviderKeyRepository(BaseRepository):
    """Read/write access to the ``provider_keys`` table."""

    def get_encrypted_keys(self, user_id: str) -> list[ProviderKeyRecord]:
        """All stored keys for ``user_id``, valid or not, ordered by provider."""
        rows = self.fetchall(
            "SELECT * FROM provider_keys WHERE user_id = ? ORDER BY provider;",
            (user_id,),
        )
        return [_row_to_record(r) for r in rows]

    def get_key(self, user_id: str, provider: str) -> Optional[ProviderKeyRecord]:
        row = self.fetchone(
            "SELECT * FROM provider_keys WHERE user_id = ? AND provider = ?;",
            (user_id, provider.strip().lower()),
        )
        return _row_to_record(row) if row else None

    def save_key(self, record: ProviderKeyRecord) -> ProviderKeyRecord:
        """Insert or replace the key for ``(record.user_id, record.provider)``.

        Saving a key always marks it valid again.

        Returns:
            The stored record with ``key_id`` and timestamps populated.
        """
        self.execute(
            """
            INSERT INTO provider_keys (user_id, provider, ciphertext, key_type, key_hint, is_valid)
            VALUES (?, ?, ?, ?, ?, 1)
            ON CONFLICT (user_id, provider) DO UPDATE SET
                ciphertext = excluded.ciphertext,
                key_type   = excluded.key_type,
                key_hint   = excluded.key_hint,
                is_valid   = 1,
                updated_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now');
            """,
            (record.user_id, record.provider, record.ciphertext, record.key_type, record.key_hint),
        )
        logger.info(
            "Stored %s key for user %s / %s (hint %s).",
            record.key_type, record.user_id, record.provider, record.key_hint,
        )
        stored = self.get_key(record.user_id, record.provider)
        assert stored is not None
        return stored

    def invalidate_key(self, user_id: str, provider: str) -> None:
        """Mark the key invalid; a no-op if none is stored."""
        cursor = self.execute(
            """
            UPDATE provider_keys
               SET is_valid = 0,
                   updated_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now')
             WHERE user_id = ? AND provider = ?;
            """,
            (user_id, provider.strip().lower()),
        )
        self.conn.commit()
        if cursor.rowcount:
            logger.info("Invalidated %s key for user %s.", provider, user_id)

    def delete_key(self, user_id: str, provider: str) -> bool:
        cursor = self.execute(
            "DELETE FROM provider_keys WHERE user_id = ? AND provider = ?;",
            (user_id, provider.strip().lower()),
        )
        return cursor.rowcount > 0


def _row_to_record(row: sqlite3.Row) -> ProviderKeyRecord:
    return ProviderKeyRecord(
        key_id=row["key_id"],
        user_id=row["user_id"],
        provider=row["provider"],
        ciphertext=row["ciphertext"],
        key_type=row["key_type"],
        key_hint=row["key_hint"],
        is_valid=bool(row["is_valid"]),
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )

"""
Local Key-Value Storage Service.

Read/write access to the ``local_storage`` key-value table in the local
SQLite database.  Backs the persistent profile cache and the mirrored
logout-guard flag.

Storage failures are logged and reported through return values; they
never propagate, so a broken local store degrades to "nothing cached"
rather than breaking sign-in.

The ``local_storage`` table is created by :mod:`authsync.schema`::

    CREATE TABLE IF NOT EXISTS local_storage (
        key   TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from authsync.database import DatabaseManager
from authsync.logger import StructuredLogger
from authsync.services.base_service import BaseService


class LocalStorageService(BaseService):
    """String key-value store over local SQLite.

    Parameters
    ----------
    db:
        Initialised ``DatabaseManager`` with active SQLite connection.
    logger:
        Structured logger instance.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._db = db

    def get_item(self, key: str) -> Optional[str]:
        """Read a value by key.  Returns ``None`` if not found."""
        try:
            row = self._db.sqlite.execute(
                "SELECT value FROM local_storage WHERE key = ?",
                (key,),
            ).fetchone()
            return row["value"] if row is not None else None
        except sqlite3.Error as exc:
            self._logger.warning("Failed to read local_storage[%s]: %s", key, exc)
            return None

    def set_item(self, key: str, value: str) -> bool:
        """Upsert a value.  Returns ``True`` on success."""
        try:
            self._db.sqlite.execute(
                """
                INSERT INTO local_storage (key, value)
                VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value      = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
            self._db.sqlite.commit()
            self._logger.debug("local_storage[%s] updated.", key)
            return True
        except sqlite3.Error as exc:
            self._logger.error("Failed to write local_storage[%s]: %s", key, exc)
            return False

    def remove_item(self, key: str) -> bool:
        """Delete a value.  Removing an absent key succeeds."""
        try:
            self._db.sqlite.execute(
                "DELETE FROM local_storage WHERE key = ?",
                (key,),
            )
            self._db.sqlite.commit()
            return True
        except sqlite3.Error as exc:
            self._logger.error("Failed to remove local_storage[%s]: %s", key, exc)
            return False

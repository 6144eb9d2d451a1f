"""
Database Abstraction Layer.

Owns the two backing connections used by the session core:

- **Supabase (cloud)**: the identity provider (``client.auth``) and the
  profile tables.  Optional: when credentials are not configured the
  client is not created and every access raises ``SupabaseUnavailableError``,
  which the service layer classifies as a network error.

- **SQLite (local)**: the key-value store backing the persistent profile
  cache and the logout-guard flag.  Always available.

Data access is performed through repositories and services.  This module
only manages the raw *connections*; it contains no query logic.

Usage (dependency injection at app startup)::

    from authsync.database import DatabaseManager
    from authsync.logger import StructuredLogger

    db = await DatabaseManager.connect(
        supabase_url=settings.SUPABASE_URL,
        supabase_key=settings.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path("authsync_local.db"),
        logger=StructuredLogger(name="database"),
    )
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional, Union

from supabase import AsyncClient, acreate_client

from authsync.logger import StructuredLogger


class SupabaseUnavailableError(RuntimeError):
    """The Supabase client was not initialised (offline mode)."""


class DatabaseManager:
    """Manages the async Supabase client and the local SQLite connection.

    Parameters
    ----------
    sqlite_path:
        Filesystem path for the local SQLite database file, or
        ``":memory:"`` for a throwaway store.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    supabase:
        An already-created async Supabase client, or ``None`` to run
        offline.  Use :meth:`connect` to build one from credentials.
    """

    def __init__(
        self,
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
        supabase: Optional[AsyncClient] = None,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._supabase: Optional[AsyncClient] = supabase
        self._closed: bool = False
        self._sqlite_conn: sqlite3.Connection = self._connect_sqlite(sqlite_path)

    @classmethod
    async def connect(
        cls,
        supabase_url: str,
        supabase_key: str,
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
    ) -> "DatabaseManager":
        """Create the async Supabase client (when configured) and open SQLite."""
        client: Optional[AsyncClient] = None
        if supabase_url and supabase_key:
            try:
                client = await acreate_client(supabase_url, supabase_key)
                logger.info("Supabase client initialized.")
            except (ValueError, TypeError) as exc:
                logger.warning(
                    "Supabase credential format error: %s. Running in offline mode.",
                    exc,
                )
            except Exception as exc:
                logger.error(
                    "Unexpected Supabase initialization failure: %s. "
                    "Running in offline mode.",
                    exc,
                    exc_info=True,
                )
        else:
            logger.warning(
                "Supabase credentials not configured — running in offline mode."
            )
        return cls(sqlite_path=sqlite_path, logger=logger, supabase=client)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def supabase(self) -> AsyncClient:
        """Return the initialised async Supabase client.

        Raises
        ------
        SupabaseUnavailableError
            If the Supabase client was not initialised (offline mode).
        """
        if self._supabase is None:
            raise SupabaseUnavailableError(
                "Supabase client is not initialised. "
                "The application is running in offline mode."
            )
        return self._supabase

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Return the initialised SQLite connection."""
        return self._sqlite_conn

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the local SQLite connection.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        if self._closed:
            return
        try:
            self._sqlite_conn.close()
            self._logger.info("SQLite connection closed.")
        except sqlite3.ProgrammingError:
            pass
        self._closed = True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect_sqlite(self, path: Union[Path, str]) -> sqlite3.Connection:
        """Open (or create) the local SQLite database.

        Raises
        ------
        PermissionError
            If the OS denies access to the database file or its directory.
        """
        try:
            conn = sqlite3.connect(str(path))
            conn.row_factory = sqlite3.Row
            if str(path) != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL;")
            self._logger.info("SQLite database opened at %s", path)
            return conn
        except PermissionError as exc:
            msg = (
                f"Cannot open the local database at '{path}'. "
                "The file or its directory may be read-only or locked by "
                "another process.  Please check file permissions and try again."
            )
            self._logger.error(msg)
            raise PermissionError(msg) from exc

"""
Base Repository.

Provides shared infrastructure for all repositories:
- DatabaseManager reference (Supabase + SQLite)
- Logger reference
- Convenience property for the async Supabase client
- Translation of PostgREST, transport and offline failures into store
  exceptions
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from postgrest.exceptions import APIError
from supabase import AsyncClient

from authsync.database import DatabaseManager, SupabaseUnavailableError
from authsync.logger import StructuredLogger

T = TypeVar("T")

# PostgREST code for "JSON object requested, multiple (or no) rows returned".
ROW_NOT_FOUND_CODE: str = "PGRST116"


class ProfileStoreError(Exception):
    """A profile store read or write failed.

    Attributes
    ----------
    code:
        The PostgREST error code when one was reported.
    """

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class ProfileNotFoundError(ProfileStoreError):
    """The requested row does not exist (yet)."""


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def supabase(self) -> AsyncClient:
        """Returns the async Supabase client for cloud operations."""
        return self._db.supabase

    async def _execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
    ) -> T:
        """Run *operation* and translate store failures.

        Parameters
        ----------
        operation:
            Zero-argument coroutine function performing the query.
        operation_name:
            Human-readable label for log messages, e.g.
            ``"fetch_joined (profiles)"``.

        Raises
        ------
        ProfileNotFoundError
            PostgREST reported ``PGRST116`` (no row).
        ProfileStoreError
            Any other PostgREST error, a transport failure (connection
            refused, read timeout), or the client is offline.
        """
        try:
            return await operation()
        except APIError as exc:
            if exc.code == ROW_NOT_FOUND_CODE:
                raise ProfileNotFoundError(
                    f"{operation_name}: no row found", code=exc.code
                ) from exc
            self._logger.warning(
                "Profile store error for %s: %s", operation_name, exc.message,
                extra={"error_code": exc.code},
            )
            raise ProfileStoreError(
                exc.message or str(exc), code=exc.code
            ) from exc
        except httpx.HTTPError as exc:
            self._logger.warning(
                "Profile store unreachable for %s: %s", operation_name, exc,
                extra={"error_type": type(exc).__name__},
            )
            raise ProfileStoreError(str(exc) or type(exc).__name__) from exc
        except SupabaseUnavailableError as exc:
            self._logger.warning("Supabase unavailable for %s: %s", operation_name, exc)
            raise ProfileStoreError(str(exc)) from exc

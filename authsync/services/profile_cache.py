"""
Persistent Profile Cache.

Mirrors the last resolved profile into local storage as plain JSON under
a single fixed key, so a restarted application can render the profile
optimistically while the provider session is still being resolved.

The cache is single-profile: writing a profile replaces whatever was
cached before, and writing ``None`` clears it.
"""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError

from authsync.logger import StructuredLogger
from authsync.models.profile import Profile
from authsync.services.base_service import BaseService
from authsync.services.local_storage import LocalStorageService


class ProfileCache(BaseService):
    """Write-through mirror of the current profile.

    Parameters
    ----------
    storage:
        Key-value store the entry lives in.
    key:
        Storage key of the cache entry (``PROFILE_CACHE_KEY``).
    logger:
        Structured logger instance.
    """

    def __init__(
        self,
        storage: LocalStorageService,
        key: str,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._storage = storage
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def write(self, profile: Optional[Profile]) -> None:
        """Store *profile*; ``None`` removes the entry."""
        if profile is None:
            self.clear()
            return
        self._storage.set_item(self._key, profile.model_dump_json(by_alias=True))

    def read(self) -> Optional[Profile]:
        """Return the cached profile, or ``None`` when absent or unreadable."""
        raw = self._storage.get_item(self._key)
        if raw is None:
            return None
        try:
            return Profile.model_validate_json(raw)
        except ValidationError as exc:
            self._logger.warning(
                "Discarding unreadable cached profile (%d validation errors).",
                exc.error_count(),
            )
            return None

    def clear(self) -> None:
        self._storage.remove_item(self._key)

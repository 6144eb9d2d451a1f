"""
Logout Coordinator.

Owns the cross-cutting ``LOGGING_OUT`` mode that makes sign-out dominate
every concurrent operation.  While the mode is active, provider events
and profile fetch results are discarded instead of applied.

A monotonically increasing *logout epoch* is bumped on every sign-out.
A fetch records the epoch when it starts; if the epoch has moved by the
time the fetch resolves, a sign-out happened in between and the result
is stale even when a fresh sign-in has already ended the mode.

The mode is mirrored to local storage under ``LOGOUT_FLAG_KEY`` so that
a process that dies half-way through a sign-out is detected on the next
start and its cached profile dropped.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from authsync.auth import SessionManager
from authsync.config import AppConfig
from authsync.logger import StructuredLogger
from authsync.models.enums import LogoutPhase
from authsync.services.base_service import BaseService
from authsync.services.cancellation import FetchGuard
from authsync.services.local_storage import LocalStorageService
from authsync.services.profile_cache import ProfileCache

_FLAG_VALUE: str = "true"


class LogoutCoordinator(BaseService):
    """Sequences sign-out and guards against late results.

    Parameters
    ----------
    guard:
        The session core's fetch slot; its in-flight fetch is cancelled.
    cache:
        Persistent profile cache; cleared on sign-out.
    storage:
        Key-value store mirroring the logout flag.
    state:
        Observable session state; session and profile are cleared.
    config:
        Application configuration (flag key, auto-end delay).
    logger:
        Structured logger instance.
    """

    def __init__(
        self,
        guard: FetchGuard,
        cache: ProfileCache,
        storage: LocalStorageService,
        state: SessionManager,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._guard = guard
        self._cache = cache
        self._storage = storage
        self._state = state
        self._flag_key: str = config.LOGOUT_FLAG_KEY
        self._auto_end_delay_s: float = config.LOGOUT_GUARD_DELAY_S
        self._phase: LogoutPhase = LogoutPhase.ACTIVE
        self._epoch: int = 0
        self._auto_end_handle: Optional[asyncio.TimerHandle] = None
        self.recovered_interrupted_logout: bool = self.recover_interrupted()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def phase(self) -> LogoutPhase:
        return self._phase

    @property
    def is_logging_out(self) -> bool:
        return self._phase == LogoutPhase.LOGGING_OUT

    @property
    def epoch(self) -> int:
        return self._epoch

    def should_discard(self, epoch: int) -> bool:
        """``True`` if a result begun at *epoch* must not be applied."""
        return self.is_logging_out or epoch != self._epoch

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def begin(self) -> int:
        """Enter ``LOGGING_OUT`` and tear down local state.

        Order: persist the flag, cancel the in-flight fetch, clear the
        in-memory session and profile, clear the cache.  The provider
        sign-out is issued afterwards by the caller.

        Returns the new logout epoch.
        """
        self._phase = LogoutPhase.LOGGING_OUT
        self._epoch += 1
        self._storage.set_item(self._flag_key, _FLAG_VALUE)

        if self._guard.cancel_current():
            self._logger.info("Cancelled in-flight profile fetch for sign-out.")
        self._state.clear()
        self._cache.clear()

        self._schedule_auto_end(self._epoch)
        self._logger.info(
            "Sign-out started (epoch %d).", self._epoch,
            extra={"event": "LOGOUT_BEGIN"},
        )
        return self._epoch

    def end(self, reason: str = "explicit") -> None:
        """Leave ``LOGGING_OUT``.  Safe to call in either phase."""
        self._cancel_auto_end()
        was_logging_out = self.is_logging_out
        self._phase = LogoutPhase.ACTIVE
        self._storage.remove_item(self._flag_key)
        if was_logging_out:
            self._logger.info(
                "Logout guard cleared (%s).", reason,
                extra={"event": "LOGOUT_END"},
            )

    def recover_interrupted(self) -> bool:
        """Drop the cache if a previous sign-out never completed.

        Returns ``True`` when a persisted flag was found.
        """
        if self._storage.get_item(self._flag_key) is None:
            return False
        self._logger.warning(
            "Found persisted logout flag; previous sign-out was interrupted. "
            "Clearing cached profile.",
            extra={"event": "LOGOUT_RECOVERED"},
        )
        self._cache.clear()
        self._storage.remove_item(self._flag_key)
        return True

    def close(self) -> None:
        self._cancel_auto_end()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _schedule_auto_end(self, epoch: int) -> None:
        self._cancel_auto_end()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.debug("No running event loop; logout guard needs end().")
            return
        self._auto_end_handle = loop.call_later(
            self._auto_end_delay_s, self._auto_end, epoch
        )

    def _auto_end(self, epoch: int) -> None:
        self._auto_end_handle = None
        if epoch == self._epoch and self.is_logging_out:
            self.end(reason="guard delay elapsed")

    def _cancel_auto_end(self) -> None:
        if self._auto_end_handle is not None:
            self._auto_end_handle.cancel()
            self._auto_end_handle = None

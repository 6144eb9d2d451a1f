"""
Fetch Cancellation & Mutual Exclusion.

``CancellationToken`` is a per-operation handle bound to the asyncio task
running one profile fetch.  ``FetchGuard`` owns the single fetch slot of a
``SessionStore``: at most one token is current at any time.

Cancelling is idempotent.  A token cancelled before its task is bound
cancels the task as soon as it is bound.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from pydantic import BaseModel

from authsync.logger import StructuredLogger
from authsync.services.base_service import BaseService


class CancellationToken:
    """Cancellation handle for one in-flight fetch.

    Parameters
    ----------
    subject_id:
        The subject the guarded fetch is for.
    """

    def __init__(self, subject_id: str) -> None:
        self.subject_id: str = subject_id
        self._cancelled: bool = False
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def bind(self, task: asyncio.Task) -> None:
        """Attach the task that :meth:`cancel` interrupts."""
        self._task = task
        if self._cancelled and not task.done():
            task.cancel()

    def cancel(self) -> bool:
        """Cancel the operation.  Returns ``False`` if it was already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        return True

    def __repr__(self) -> str:
        return (
            f"CancellationToken(subject_id={self.subject_id!r}, "
            f"cancelled={self._cancelled})"
        )


class FetchState(BaseModel):
    """Point-in-time view of the fetch slot."""

    in_flight: bool = False
    retry_count: int = 0
    subject_id: Optional[str] = None
    cancel_handle: Optional[CancellationToken] = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


class FetchGuard(BaseService):
    """Enforces at most one in-flight profile fetch per session core."""

    def __init__(self, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._current: Optional[CancellationToken] = None
        self._retry_count: int = 0

    @property
    def state(self) -> FetchState:
        """Snapshot of the slot, including the retry count of the current fetch."""
        if self._current is None:
            return FetchState()
        return FetchState(
            in_flight=True,
            retry_count=self._retry_count,
            subject_id=self._current.subject_id,
            cancel_handle=self._current,
        )

    @property
    def in_flight(self) -> bool:
        return self._current is not None

    def is_current(self, token: CancellationToken) -> bool:
        return self._current is token

    def try_acquire(self, subject_id: str) -> Optional[CancellationToken]:
        """Claim the fetch slot for *subject_id*.

        Returns ``None`` when a fetch for the same subject is already in
        flight.  A fetch for a different subject is cancelled and replaced.
        """
        current = self._current
        if current is not None and not current.cancelled:
            if current.subject_id == subject_id:
                self._logger.debug(
                    "Profile fetch already in flight for %s; skipping.", subject_id,
                )
                return None
            self._logger.info(
                "Cancelling profile fetch for %s in favour of %s.",
                current.subject_id,
                subject_id,
            )
            current.cancel()

        token = CancellationToken(subject_id)
        self._current = token
        self._retry_count = 0
        return token

    def record_retry(self, token: CancellationToken, retry_count: int) -> None:
        if self._current is token:
            self._retry_count = retry_count

    def release(self, token: CancellationToken) -> None:
        """Return the slot to idle if *token* still owns it."""
        if self._current is token:
            self._current = None
            self._retry_count = 0

    def cancel_current(self) -> bool:
        """Cancel and release the in-flight fetch, if any."""
        current = self._current
        if current is None:
            return False
        self._current = None
        self._retry_count = 0
        return current.cancel()

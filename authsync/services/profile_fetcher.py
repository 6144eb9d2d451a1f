"""
Profile Fetcher.

Resolves the derived ``Profile`` of one subject with a single joined
read, under four constraints:

- **Mutual exclusion** -- the ``FetchGuard`` admits one fetch at a time.
  A second request for the same subject is a no-op (``SKIPPED``); a
  request for another subject cancels the running one.
- **Provisioning lag** -- right after sign-up the base row may not exist
  yet, so "no row" is retried through the ``RetryPolicy``.
- **Bounded waiting** -- each read is bounded by a timeout; running out
  of time is a soft outcome (``TIMED_OUT``), never an error.
- **Logout dominance** -- a result that resolves after a sign-out began
  is ``DISCARDED`` and must not be applied by the caller.

``fetch`` never raises for store failures; it returns a ``FetchResult``.
It only propagates ``CancelledError`` when the *calling* task itself is
cancelled.
"""

from __future__ import annotations

import asyncio

from authsync.logger import StructuredLogger
from authsync.models.auth_models import AuthErrorCode
from authsync.models.enums import FetchOutcome
from authsync.models.profile import Profile
from authsync.models.state import FetchResult
from authsync.repositories.profile_repository import (
    ProfileNotFoundError,
    ProfileRepository,
    ProfileStoreError,
)
from authsync.services.base_service import BaseService
from authsync.services.cancellation import CancellationToken, FetchGuard
from authsync.services.logout_coordinator import LogoutCoordinator
from authsync.services.retry_policy import RetryPolicy


class ProfileFetcher(BaseService):
    """Fetches, retries, times out and cancels profile reads.

    Parameters
    ----------
    repository:
        Profile store.
    guard:
        The session core's single fetch slot.
    logout:
        Logout coordinator consulted before results are returned.
    retry_policy:
        Backoff applied to "row not found yet".
    timeout_s:
        Upper bound for one read attempt.
    logger:
        Structured logger instance.
    """

    def __init__(
        self,
        repository: ProfileRepository,
        guard: FetchGuard,
        logout: LogoutCoordinator,
        retry_policy: RetryPolicy,
        timeout_s: float,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._repository = repository
        self._guard = guard
        self._logout = logout
        self._retry = retry_policy
        self._timeout_s = timeout_s

    @property
    def guard(self) -> FetchGuard:
        return self._guard

    async def fetch(self, subject_id: str) -> FetchResult:
        """Resolve the profile of *subject_id*.

        Returns
        -------
        FetchResult
            ``RESOLVED`` with the profile, or one of the soft outcomes
            (``SKIPPED``, ``CANCELLED``, ``TIMED_OUT``, ``DISCARDED``), or
            ``FAILED`` with an error code.
        """
        if self._logout.is_logging_out:
            return FetchResult(outcome=FetchOutcome.DISCARDED, subject_id=subject_id)

        token = self._guard.try_acquire(subject_id)
        if token is None:
            return FetchResult(outcome=FetchOutcome.SKIPPED, subject_id=subject_id)

        epoch = self._logout.epoch
        task = asyncio.create_task(
            self._run(token), name=f"profile-fetch:{subject_id}"
        )
        token.bind(task)

        try:
            result = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            caller_cancelled = current is not None and current.cancelling() > 0
            self._guard.release(token)
            if token.cancelled and not caller_cancelled:
                # Cancelled before the read started.
                return FetchResult(outcome=FetchOutcome.CANCELLED, subject_id=subject_id)
            token.cancel()
            raise

        if result.outcome in (FetchOutcome.RESOLVED, FetchOutcome.FAILED) and (
            self._logout.should_discard(epoch)
        ):
            self._logger.info(
                "Discarding profile fetch for %s resolved after sign-out.",
                subject_id,
                extra={"event": "LOGOUT_RACE_DISCARD", "user_id": subject_id},
            )
            return FetchResult(
                outcome=FetchOutcome.DISCARDED,
                subject_id=subject_id,
                retries=result.retries,
            )
        return result

    async def _run(self, token: CancellationToken) -> FetchResult:
        subject_id = token.subject_id
        retries = 0

        def _on_retry(retry_number: int, delay_s: float, exc: BaseException) -> None:
            nonlocal retries
            retries = retry_number
            self._guard.record_retry(token, retry_number)
            self._logger.info(
                "Profile for %s not provisioned yet; retry %d/%d in %.1fs.",
                subject_id,
                retry_number,
                self._retry.max_retries,
                delay_s,
            )

        async def _read_once():
            async with asyncio.timeout(self._timeout_s):
                return await self._repository.fetch_joined(subject_id)

        try:
            record = await self._retry.attempt(_read_once, on_retry=_on_retry)
            profile = Profile.from_joined(record)
            self._logger.info(
                "Profile resolved for %s (role: %s).", subject_id, profile.role,
                extra={"user_id": subject_id},
            )
            return FetchResult(
                outcome=FetchOutcome.RESOLVED,
                subject_id=subject_id,
                profile=profile,
                retries=retries,
            )
        except ProfileNotFoundError:
            self._logger.warning(
                "Profile for %s still missing after %d retries.", subject_id, retries,
                extra={"event": "PROFILE_NOT_PROVISIONED", "user_id": subject_id},
            )
            return FetchResult(
                outcome=FetchOutcome.FAILED,
                subject_id=subject_id,
                error_code=AuthErrorCode.NOT_YET_PROVISIONED,
                error_message="Your profile is still being set up. Please try again.",
                retries=retries,
            )
        except TimeoutError:
            self._logger.warning(
                "Profile fetch for %s timed out after %.1fs.", subject_id, self._timeout_s,
                extra={"event": "PROFILE_FETCH_TIMEOUT", "user_id": subject_id},
            )
            return FetchResult(
                outcome=FetchOutcome.TIMED_OUT, subject_id=subject_id, retries=retries,
            )
        except asyncio.CancelledError:
            if not token.cancelled:
                raise
            self._logger.debug("Profile fetch for %s cancelled.", subject_id)
            return FetchResult(
                outcome=FetchOutcome.CANCELLED, subject_id=subject_id, retries=retries,
            )
        except ProfileStoreError as exc:
            return FetchResult(
                outcome=FetchOutcome.FAILED,
                subject_id=subject_id,
                error_code=AuthErrorCode.PROFILE_STORE_ERROR,
                error_message=str(exc),
                retries=retries,
            )
        except Exception as exc:
            self._logger.error(
                "Unexpected profile fetch failure for %s: %s", subject_id, exc,
                exc_info=True,
            )
            return FetchResult(
                outcome=FetchOutcome.FAILED,
                subject_id=subject_id,
                error_code=AuthErrorCode.PROFILE_STORE_ERROR,
                error_message="Could not load your profile. Please try again.",
                retries=retries,
            )
        finally:
            self._guard.release(token)

"""
Session Store.

Single orchestrator for the client-side session: sign-in, sign-up,
sign-out, profile updates, session refresh and profile (re)fetching.

Sits between the UI layer and the identity provider / profile store so
that views stay thin form handlers: they call the public operations,
read the observable ``SessionSnapshot`` and subscribe to changes.

All public methods return typed ``AuthResult`` models -- the UI never
inspects raw exceptions.  Soft outcomes of profile fetching (skipped,
cancelled, timed out, discarded after sign-out) never surface as errors.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Coroutine, Optional, Union

import httpx
from pydantic import ValidationError

from authsync.auth import SessionManager, StateListener
from authsync.config import AppConfig
from authsync.database import SupabaseUnavailableError
from authsync.logger import StructuredLogger
from authsync.models.auth_models import (
    AuthErrorCode,
    AuthResult,
    SignUpData,
    SUPABASE_ERROR_MAP,
    ValidationResult,
)
from authsync.models.enums import AuthEvent, FetchOutcome, SessionPhase, UserRole
from authsync.models.profile import BASE_UPDATE_FIELDS, Profile, role_fields
from authsync.models.session import Session
from authsync.models.state import AuthStateChange, FetchResult, SessionSnapshot
from authsync.repositories.profile_repository import ProfileRepository, ProfileStoreError
from authsync.services.base_service import BaseService
from authsync.services.cancellation import FetchState
from authsync.services.identity_provider import IdentityProvider, Unsubscribe
from authsync.services.logout_coordinator import LogoutCoordinator
from authsync.services.profile_cache import ProfileCache
from authsync.services.profile_fetcher import ProfileFetcher
from authsync.services.session_reducer import reduce_auth_event
from authsync.utils.audit import log_audit_event


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMAIL_RE: re.Pattern[str] = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

_NETWORK_MESSAGE: str = "Cannot reach the server. Check your internet connection."


class SessionStore(BaseService):
    """Owns the session lifecycle of one application instance.

    Parameters
    ----------
    provider:
        Identity provider (authoritative source of the session).
    repository:
        Profile store used for sign-up and profile updates.
    fetcher:
        Profile fetcher (guarded, retried, cancellable reads).
    logout:
        Logout coordinator.  Must be constructed before this store so an
        interrupted sign-out is recovered before the cache is read.
    cache:
        Persistent profile cache.
    state:
        Observable state holder shared with the UI.
    config:
        Application configuration.
    logger:
        Structured logger instance.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        repository: ProfileRepository,
        fetcher: ProfileFetcher,
        logout: LogoutCoordinator,
        cache: ProfileCache,
        state: SessionManager,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._provider = provider
        self._repository = repository
        self._fetcher = fetcher
        self._logout = logout
        self._cache = cache
        self._state = state
        self._signup_fetch_delay_s: float = config.SIGNUP_PROFILE_FETCH_DELAY_S
        self._tasks: set[asyncio.Task] = set()
        self._started: bool = False

        # The cache is read exactly once; afterwards it is a mirror only.
        cached = self._cache.read()
        if cached is not None:
            self._logger.info(
                "Restored cached profile for %s.", cached.subject_id,
                extra={"user_id": cached.subject_id},
            )
            self._state.update(profile=cached)

        # Provider events apply from construction on, before start().
        self._unsubscribe: Optional[Unsubscribe] = self._subscribe()

    # ==================================================================
    # Observable state
    # ==================================================================

    @property
    def state(self) -> SessionManager:
        return self._state

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._state.snapshot

    @property
    def session(self) -> Optional[Session]:
        return self._state.session

    @property
    def profile(self) -> Optional[Profile]:
        return self._state.profile

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def auth_loading(self) -> bool:
        return self._state.auth_loading

    @property
    def profile_loading(self) -> bool:
        return self._state.profile_loading

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    @property
    def fetch_state(self) -> FetchState:
        """In-flight status and retry count of the profile fetch slot."""
        return self._fetcher.guard.state

    def subscribe(self, listener: StateListener) -> Unsubscribe:
        """Register *listener* for every state change."""
        return self._state.subscribe(listener)

    # ==================================================================
    # Lifecycle
    # ==================================================================

    async def start(self) -> SessionSnapshot:
        """Resolve the initial session.

        When no session exists, the optimistically restored profile is
        discarded together with the cache.  Returns the resolved state.
        """
        if self._started:
            return self._state.snapshot
        self._started = True

        try:
            session = await self._provider.get_session()
        except Exception as exc:
            self._logger.warning(
                "Could not read the initial session: %s", exc,
                extra={"event": "INITIAL_SESSION_FAILED"},
            )
            session = None

        task = self._apply_change(AuthStateChange(event=AuthEvent.OTHER, session=session))
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        self._state.update(loading=False)
        return self._state.snapshot

    def _subscribe(self) -> Optional[Unsubscribe]:
        try:
            return self._provider.subscribe(self._on_auth_state_change)
        except SupabaseUnavailableError as exc:
            self._logger.warning(
                "Provider events unavailable: %s", exc,
                extra={"event": "SUBSCRIBE_FAILED"},
            )
            return None

    async def close(self) -> None:
        """Unsubscribe and cancel all pending work.  Idempotent."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._fetcher.guard.cancel_current()
        await self._cancel_background_tasks()
        self._logout.close()

    # ==================================================================
    # Validation helpers
    # ==================================================================

    @staticmethod
    def validate_email(email: str) -> ValidationResult:
        """Validate an email address against a simplified RFC 5322 regex."""
        if not email or not email.strip():
            return ValidationResult(
                is_valid=False,
                error_message="Email address is required.",
            )
        if not _EMAIL_RE.match(email.strip()):
            return ValidationResult(
                is_valid=False,
                error_message="Please enter a valid email address.",
            )
        return ValidationResult(is_valid=True)

    @staticmethod
    def normalize_email(email: str) -> str:
        """Normalise an email address: strip whitespace and lowercase."""
        return email.strip().lower()

    def _validate_credentials(self, email: str, password: str) -> Optional[AuthResult]:
        email_check = self.validate_email(email)
        if not email_check.is_valid:
            return AuthResult.failure(
                AuthErrorCode.VALIDATION_ERROR, email_check.error_message or ""
            )
        if not password:
            return AuthResult.failure(
                AuthErrorCode.VALIDATION_ERROR, "Password is required."
            )
        return None

    # ==================================================================
    # Sign-in / sign-up
    # ==================================================================

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Authenticate with email and password.

        Clears the logout guard first so the provider's ``SIGNED_IN``
        event is applied.  The event stream, not the returned session,
        drives the observable state.
        """
        self._logout.end(reason="sign-in")

        invalid = self._validate_credentials(email, password)
        if invalid is not None:
            return invalid
        email = self.normalize_email(email)

        self._state.update(auth_loading=True)
        try:
            session = await self._provider.sign_in_with_password(email, password)
        except Exception as exc:
            return self._classify_error(exc, "SIGN_IN")
        finally:
            self._state.update(auth_loading=False)

        self._logger.info(
            "User authenticated: %s", email,
            extra={"event": "SIGN_IN", "user_id": session.subject_id},
        )
        log_audit_event(
            self._logger,
            action="SIGN_IN",
            entity_type="Session",
            entity_id=session.subject_id,
            user_id=session.subject_id,
        )
        return AuthResult(success=True, session=session)

    async def sign_up(
        self,
        email: str,
        password: str,
        role_data: Union[SignUpData, dict[str, Any]],
    ) -> AuthResult:
        """Create an account plus its base and role-specific profile records.

        The two profile writes are not atomic.  A failed base write is
        reported as ``PROFILE_STORE_ERROR``; a failed role write after a
        successful base write as ``PARTIAL_WRITE_FAILURE``.  The provider
        account is never rolled back.
        """
        self._logout.end(reason="sign-up")

        invalid = self._validate_credentials(email, password)
        if invalid is not None:
            return invalid
        email = self.normalize_email(email)
        if not isinstance(role_data, SignUpData):
            try:
                role_data = SignUpData.model_validate(role_data)
            except ValidationError as exc:
                return AuthResult.failure(
                    AuthErrorCode.VALIDATION_ERROR,
                    f"Invalid sign-up data ({exc.error_count()} error(s)).",
                )
        role = role_data.user_type

        self._state.update(auth_loading=True)
        try:
            response = await self._provider.sign_up(
                email, password, role_data.provider_metadata()
            )
        except Exception as exc:
            return self._classify_error(exc, "SIGN_UP")
        finally:
            self._state.update(auth_loading=False)

        subject_id = response.subject_id
        try:
            await self._repository.insert_base(subject_id, response.email or email, role)
        except ProfileStoreError as exc:
            self._logger.error(
                "Base profile write failed for %s: %s", subject_id, exc,
                extra={"event": "SIGN_UP_PROFILE_FAILED", "user_id": subject_id},
            )
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.PROFILE_STORE_ERROR,
                error_message="Your account was created but the profile could not be saved.",
                session=response.session,
            )

        role_record: dict[str, Any] = {
            "first_name": role_data.first_name,
            "last_name": role_data.last_name,
        }
        if role == UserRole.BUSINESS:
            role_record["company_name"] = role_data.company_name
        try:
            await self._repository.insert_role_record(subject_id, role, role_record)
        except ProfileStoreError as exc:
            self._logger.error(
                "Role profile write failed for %s after base write: %s", subject_id, exc,
                extra={"event": "SIGN_UP_PARTIAL_WRITE", "user_id": subject_id},
            )
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.PARTIAL_WRITE_FAILURE,
                error_message=(
                    "Your account was created but some profile details "
                    "could not be saved. Please complete your profile."
                ),
                session=response.session,
            )

        log_audit_event(
            self._logger,
            action="SIGN_UP",
            entity_type="Profile",
            entity_id=subject_id,
            user_id=subject_id,
            details={"role": str(role)},
        )
        self._spawn(self._delayed_fetch(subject_id), name=f"signup-fetch:{subject_id}")
        return AuthResult(success=True, session=response.session)

    async def _delayed_fetch(self, subject_id: str) -> None:
        await asyncio.sleep(self._signup_fetch_delay_s)
        session = self._state.session
        if self._logout.is_logging_out or session is None:
            return
        if session.subject_id != subject_id:
            return
        await self._resolve_profile(subject_id)

    # ==================================================================
    # Sign-out
    # ==================================================================

    async def sign_out(self) -> None:
        """End the session locally.

        Local teardown happens first and unconditionally; a failing
        provider call is logged and does not restore anything.  Background
        work is cancelled without waiting for it.
        """
        session = self._state.session
        user_id = session.subject_id if session is not None else "unknown"

        self._logout.begin()
        await self._cancel_background_tasks(wait=False)

        try:
            await self._provider.sign_out(scope="local")
        except SupabaseUnavailableError:
            self._logger.debug("Offline; skipping provider sign-out for %s.", user_id)
        except Exception as exc:
            self._logger.warning("Provider sign-out failed for %s: %s", user_id, exc)

        self._logger.info(
            "User signed out: %s", user_id,
            extra={"event": "SIGN_OUT", "user_id": user_id},
        )
        log_audit_event(
            self._logger,
            action="SIGN_OUT",
            entity_type="Session",
            entity_id=user_id,
            user_id=user_id,
        )

    # ==================================================================
    # Profile update
    # ==================================================================

    async def update_profile(self, partial: dict[str, Any]) -> AuthResult:
        """Write *partial* to the profile tables and merge it locally.

        ``email`` and ``user_role`` go to the base table, every other key
        to the role-specific table.  Each successful write is merged into
        memory and the cache immediately; the first failure stops the
        update and is returned without rolling back earlier writes.
        """
        session = self._state.session
        profile = self._state.profile
        if session is None:
            return AuthResult.failure(AuthErrorCode.NO_SESSION, "No user is signed in.")
        if profile is None:
            return AuthResult.failure(
                AuthErrorCode.NOT_YET_PROVISIONED, "Your profile has not loaded yet."
            )
        if not partial:
            return AuthResult(success=True, profile=profile)

        base_part = {k: v for k, v in partial.items() if k in BASE_UPDATE_FIELDS}
        role_part = {k: v for k, v in partial.items() if k not in BASE_UPDATE_FIELDS}

        invalid = self._validate_update(profile, base_part, role_part)
        if invalid is not None:
            return invalid

        subject_id = profile.subject_id
        epoch = self._logout.epoch
        self._state.update(profile_loading=True)
        try:
            if base_part:
                try:
                    await self._repository.update_base(subject_id, base_part)
                except ProfileStoreError as exc:
                    self._logger.warning("Base profile update failed: %s", exc)
                    return AuthResult(
                        success=False,
                        error_code=AuthErrorCode.PROFILE_STORE_ERROR,
                        error_message="Your profile could not be updated.",
                        profile=self._state.profile,
                    )
                self._commit_update(subject_id, epoch, base_part)

            if role_part:
                try:
                    await self._repository.update_role_record(
                        subject_id, profile.role, role_part
                    )
                except ProfileStoreError as exc:
                    self._logger.warning("Role profile update failed: %s", exc)
                    return AuthResult(
                        success=False,
                        error_code=(
                            AuthErrorCode.PARTIAL_WRITE_FAILURE
                            if base_part
                            else AuthErrorCode.PROFILE_STORE_ERROR
                        ),
                        error_message=(
                            "Some profile changes were saved but others failed."
                            if base_part
                            else "Your profile could not be updated."
                        ),
                        profile=self._state.profile,
                    )
                self._commit_update(subject_id, epoch, role_part)
        finally:
            self._state.update(profile_loading=False)

        log_audit_event(
            self._logger,
            action="PROFILE_UPDATE",
            entity_type="Profile",
            entity_id=subject_id,
            user_id=subject_id,
            details={"fields": ",".join(sorted(partial))},
        )
        return AuthResult(success=True, profile=self._state.profile)

    def _validate_update(
        self,
        profile: Profile,
        base_part: dict[str, Any],
        role_part: dict[str, Any],
    ) -> Optional[AuthResult]:
        if "user_role" in base_part and str(base_part["user_role"]) != str(profile.role):
            return AuthResult.failure(
                AuthErrorCode.VALIDATION_ERROR, "The account role cannot be changed."
            )
        if "email" in base_part:
            email_check = self.validate_email(str(base_part["email"] or ""))
            if not email_check.is_valid:
                return AuthResult.failure(
                    AuthErrorCode.VALIDATION_ERROR, email_check.error_message or ""
                )
        unknown = sorted(set(role_part) - role_fields(profile.role))
        if unknown:
            return AuthResult.failure(
                AuthErrorCode.VALIDATION_ERROR,
                f"Unknown profile field(s) for role '{profile.role}': {', '.join(unknown)}.",
            )
        try:
            profile.merge({**base_part, **role_part})
        except ValidationError as exc:
            return AuthResult.failure(
                AuthErrorCode.VALIDATION_ERROR,
                f"Invalid profile data ({exc.error_count()} error(s)).",
            )
        return None

    def _commit_update(self, subject_id: str, epoch: int, part: dict[str, Any]) -> None:
        current = self._state.profile
        if self._logout.should_discard(epoch) or current is None:
            return
        if current.subject_id != subject_id:
            return
        merged = current.merge(part)
        self._state.update(profile=merged)
        self._cache.write(merged)

    # ==================================================================
    # Session refresh & profile retry
    # ==================================================================

    async def refresh_session(self) -> AuthResult:
        """Ask the provider for a fresh session and re-fetch the profile.

        On failure the session, profile and cache are cleared.
        """
        if self._state.session is None:
            return AuthResult.failure(AuthErrorCode.NO_SESSION, "No user is signed in.")

        try:
            session = await self._provider.refresh_session()
        except Exception as exc:
            result = self._classify_error(exc, "REFRESH")
            self._fetcher.guard.cancel_current()
            self._state.clear()
            self._cache.clear()
            self._logger.warning(
                "Session refresh failed; session cleared.",
                extra={"event": "SESSION_EXPIRED"},
            )
            return result

        if self._logout.is_logging_out:
            return AuthResult(success=True, session=session)

        profile = self._state.profile
        if profile is not None and profile.subject_id != session.subject_id:
            profile = None
        self._state.update(session=session, profile=profile)
        # Re-read under the refreshed token.
        self._fetcher.guard.cancel_current()
        self._spawn(
            self._resolve_profile(session.subject_id),
            name=f"refresh-fetch:{session.subject_id}",
        )
        self._logger.info("Session refreshed.", extra={"user_id": session.subject_id})
        return AuthResult(success=True, session=session)

    async def retry_profile_fetch(self) -> None:
        """Re-fetch the profile of the current session, if any."""
        session = self._state.session
        if session is None or self._logout.is_logging_out:
            return
        await self._resolve_profile(session.subject_id)

    # ==================================================================
    # Provider events & profile resolution
    # ==================================================================

    def _on_auth_state_change(self, change: AuthStateChange) -> None:
        self._apply_change(change)

    def _apply_change(self, change: AuthStateChange) -> Optional[asyncio.Task]:
        transition = reduce_auth_event(
            self._state.snapshot, change, self._logout.is_logging_out
        )
        if transition.discarded:
            subject = change.session.subject_id if change.session else "unknown"
            self._logger.info(
                "Ignoring %s event during sign-out.", change.event,
                extra={"event": "LOGOUT_RACE_DISCARD", "user_id": subject},
            )
            log_audit_event(
                self._logger,
                action="LOGOUT_RACE_DISCARD",
                entity_type="Session",
                entity_id=subject,
                user_id=subject,
                details={"auth_event": str(change.event)},
            )
            return None

        if transition.clear_cache:
            self._fetcher.guard.cancel_current()
            self._cache.clear()
        self._state.replace(transition.snapshot)

        if transition.fetch_subject_id is None:
            return None
        return self._spawn(
            self._resolve_profile(transition.fetch_subject_id),
            name=f"profile-resolve:{transition.fetch_subject_id}",
        )

    async def _resolve_profile(self, subject_id: str) -> FetchResult:
        self._state.update(profile_loading=True)
        result = await self._fetcher.fetch(subject_id)
        self._apply_fetch_result(result)
        return result

    def _apply_fetch_result(self, result: FetchResult) -> None:
        outcome = result.outcome

        if outcome == FetchOutcome.SKIPPED:
            return

        if outcome == FetchOutcome.DISCARDED:
            log_audit_event(
                self._logger,
                action="LOGOUT_RACE_DISCARD",
                entity_type="Profile",
                entity_id=result.subject_id,
                user_id=result.subject_id,
                details={"retries": result.retries},
            )
            return

        if outcome in (FetchOutcome.CANCELLED, FetchOutcome.TIMED_OUT):
            if not self._fetcher.guard.in_flight:
                self._state.update(profile_loading=False, loading=False)
            return

        session = self._state.session
        if session is None or session.subject_id != result.subject_id:
            self._logger.info(
                "Dropping profile fetch result for %s; session changed.",
                result.subject_id,
            )
            if not self._fetcher.guard.in_flight:
                self._state.update(profile_loading=False)
            return

        if outcome == FetchOutcome.RESOLVED and result.profile is not None:
            self._state.update(
                profile=result.profile,
                profile_error=None,
                profile_loading=False,
                loading=False,
            )
            self._cache.write(result.profile)
            return

        self._logger.warning(
            "Profile fetch failed for %s: %s", result.subject_id, result.error_code,
            extra={"event": "PROFILE_FETCH_FAILED", "user_id": result.subject_id},
        )
        self._state.update(
            profile_error=result.error_code,
            profile_loading=False,
            loading=False,
        )

    # ==================================================================
    # Background tasks
    # ==================================================================

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error(
                "Background task %s failed: %s", task.get_name(), exc,
                exc_info=exc,
            )

    async def _cancel_background_tasks(self, wait: bool = True) -> None:
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        if pending and wait:
            await asyncio.gather(*pending, return_exceptions=True)

    # ==================================================================
    # Error classification
    # ==================================================================

    def _classify_error(self, exc: Exception, action: str) -> AuthResult:
        """Map a provider or network exception to a structured ``AuthResult``."""
        if isinstance(
            exc,
            (ConnectionError, TimeoutError, httpx.TransportError, SupabaseUnavailableError),
        ):
            self._logger.warning(
                "Network error during %s: %s", action.lower(), exc,
                extra={"event": f"{action}_NETWORK_ERROR"},
            )
            return AuthResult.failure(AuthErrorCode.NETWORK_ERROR, _NETWORK_MESSAGE)

        code = getattr(exc, "code", None)
        error_str = f"{code or ''} {exc}".lower()

        for code_key, (error_code, human_message) in SUPABASE_ERROR_MAP.items():
            if code_key in error_str:
                self._logger.warning(
                    "Auth error (%s): %s", code_key, exc,
                    extra={"event": f"{action}_FAILED", "error_code": code_key},
                )
                return AuthResult.failure(error_code, human_message)

        self._logger.warning(
            "Unknown %s error: %s", action.lower(), exc,
            extra={"event": f"{action}_FAILED", "error_code": "unknown"},
        )
        return AuthResult.failure(
            AuthErrorCode.UNKNOWN_ERROR,
            "An unexpected error occurred. Please try again later.",
        )

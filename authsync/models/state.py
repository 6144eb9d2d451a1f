"""
Session State Models.

Immutable snapshots of the session core's observable state and of the
outcome of a single profile fetch.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from authsync.models.auth_models import AuthErrorCode
from authsync.models.enums import AuthEvent, FetchOutcome, SessionPhase
from authsync.models.profile import Profile
from authsync.models.session import Session


class SessionSnapshot(BaseModel):
    """What the UI collaborator observes.

    ``loading`` is true until the first session resolution completes.
    ``profile_error`` is set only after a profile fetch failed terminally
    and cleared by the next successful fetch or by sign-out.
    """

    session: Optional[Session] = None
    profile: Optional[Profile] = None
    loading: bool = True
    auth_loading: bool = True
    profile_loading: bool = False
    profile_error: Optional[AuthErrorCode] = None

    model_config = {"frozen": True}

    @property
    def phase(self) -> SessionPhase:
        if self.session is None:
            return SessionPhase.UNAUTHENTICATED
        if self.profile is None:
            return SessionPhase.AUTHENTICATED_NO_PROFILE
        return SessionPhase.AUTHENTICATED_WITH_PROFILE


class FetchResult(BaseModel):
    """Outcome of :meth:`ProfileFetcher.fetch`."""

    outcome: FetchOutcome
    subject_id: str
    profile: Optional[Profile] = None
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    retries: int = 0

    model_config = {"frozen": True}

    @property
    def is_soft(self) -> bool:
        """``True`` for outcomes that must never surface as errors."""
        return self.outcome in (
            FetchOutcome.CANCELLED,
            FetchOutcome.TIMED_OUT,
            FetchOutcome.DISCARDED,
            FetchOutcome.SKIPPED,
        )


class AuthStateChange(BaseModel):
    """One notification from the identity provider's event stream.

    A ``session`` of ``None`` means the provider holds no session.
    """

    event: AuthEvent
    session: Optional[Session] = None

    model_config = {"frozen": True}

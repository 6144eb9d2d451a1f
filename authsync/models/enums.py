"""
Shared Enumerations for the session synchronisation core.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so code like ``if role == 'business'`` continues to work.
"""

from __future__ import annotations
from enum import StrEnum


class UserRole(StrEnum):
    """Application roles stored in ``profiles.user_role``.

    ``BUSINESS`` and ``INFLUENCER`` each own exactly one role-specific
    extension table.  ``ADMIN`` has none.
    """

    BUSINESS = "business"
    INFLUENCER = "influencer"
    ADMIN = "admin"


class AuthEvent(StrEnum):
    """Session-change events emitted by the identity provider."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    OTHER = "OTHER"


class SessionPhase(StrEnum):
    """Observable authentication phase derived from session + profile."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    AUTHENTICATED_NO_PROFILE = "AUTHENTICATED_NO_PROFILE"
    AUTHENTICATED_WITH_PROFILE = "AUTHENTICATED_WITH_PROFILE"


class LogoutPhase(StrEnum):
    """States of the logout coordinator."""

    ACTIVE = "ACTIVE"
    LOGGING_OUT = "LOGGING_OUT"


class FetchOutcome(StrEnum):
    """How a single profile fetch ended.

    ``SKIPPED`` means another fetch for the same subject was already in
    flight.  ``CANCELLED`` and ``TIMED_OUT`` are soft outcomes that are
    never surfaced as errors.  ``DISCARDED`` marks a result that resolved
    after a sign-out began.
    """

    RESOLVED = "RESOLVED"
    SKIPPED = "SKIPPED"
    CANCELLED = "CANCELLED"
    TIMED_OUT = "TIMED_OUT"
    DISCARDED = "DISCARDED"
    FAILED = "FAILED"

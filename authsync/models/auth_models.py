"""
Authentication Pipeline Models.

Pydantic models and enumerations for the request/response contracts
between ``SessionStore`` and the UI layer.

Every public session operation returns a structured, inspectable
``AuthResult`` rather than raising across the public boundary.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from authsync.models.enums import UserRole
from authsync.models.profile import Profile
from authsync.models.session import Session


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of session-core error categories.

    Used by ``SessionStore`` to classify provider and store errors and by
    the UI layer to decide which feedback to display.
    """

    INVALID_CREDENTIALS = "invalid_credentials"
    USER_BANNED = "user_banned"
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    WEAK_PASSWORD = "weak_password"
    NETWORK_ERROR = "network_error"
    RATE_LIMITED = "rate_limited"
    VALIDATION_ERROR = "validation_error"
    SESSION_EXPIRED = "session_expired"
    NO_SESSION = "no_session"
    NOT_YET_PROVISIONED = "not_yet_provisioned"
    PROFILE_STORE_ERROR = "profile_store_error"
    PARTIAL_WRITE_FAILURE = "partial_write_failure"
    UNKNOWN_ERROR = "unknown_error"


# ---------------------------------------------------------------------------
# Supabase error-code mapping
# ---------------------------------------------------------------------------

SUPABASE_ERROR_MAP: dict[str, tuple[AuthErrorCode, str]] = {
    "invalid_credentials": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "invalid login credentials": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "invalid_grant": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "user_not_found": (
        AuthErrorCode.INVALID_CREDENTIALS,
        "Incorrect email or password.",
    ),
    "user_banned": (
        AuthErrorCode.USER_BANNED,
        "Your account has been suspended. Contact support.",
    ),
    "user_already_exists": (
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
        "An account with this email already exists. Try signing in.",
    ),
    "user already registered": (
        AuthErrorCode.EMAIL_ALREADY_EXISTS,
        "An account with this email already exists. Try signing in.",
    ),
    "email_not_confirmed": (
        AuthErrorCode.EMAIL_NOT_CONFIRMED,
        "Please confirm your email address before signing in.",
    ),
    "weak_password": (
        AuthErrorCode.WEAK_PASSWORD,
        "Password is too weak. Choose a longer password.",
    ),
    "over_request_rate_limit": (
        AuthErrorCode.RATE_LIMITED,
        "Too many requests. Please wait a moment and try again.",
    ),
    "refresh_token_not_found": (
        AuthErrorCode.SESSION_EXPIRED,
        "Your session has expired. Please sign in again.",
    ),
    "session_not_found": (
        AuthErrorCode.SESSION_EXPIRED,
        "Your session has expired. Please sign in again.",
    ),
}


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single client-side field validation check."""

    is_valid: bool
    error_message: Optional[str] = None


# ---------------------------------------------------------------------------
# Unified auth response
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Unified response for every public ``SessionStore`` operation.

    The UI layer inspects ``success`` to decide the happy-path vs.
    error-path rendering, and uses ``error_code`` to conditionally
    show extra controls (e.g. a "retry" affordance).

    Attributes
    ----------
    success:
        ``True`` when the operation completed without error.
    error_code:
        Structured error category (``None`` on success).
    error_message:
        Human-readable error description (``None`` on success).
    session:
        The provider session reported by the operation, if any.  The
        provider's event stream remains the authoritative source.
    profile:
        The profile after the operation, when it changed one.
    """

    success: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    session: Optional[Session] = None
    profile: Optional[Profile] = None

    @classmethod
    def failure(cls, error_code: AuthErrorCode, error_message: str) -> "AuthResult":
        return cls(success=False, error_code=error_code, error_message=error_message)


# ---------------------------------------------------------------------------
# Registration payload
# ---------------------------------------------------------------------------

class SignUpData(BaseModel):
    """Role data collected by the registration form.

    An unknown or missing ``user_type`` falls back to ``influencer``,
    matching the registration flow's default account type.
    """

    first_name: str = ""
    last_name: str = ""
    user_type: UserRole = UserRole.INFLUENCER
    company_name: str = ""

    @field_validator("first_name", "last_name", "company_name", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("user_type", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> UserRole:
        try:
            return UserRole(value)
        except ValueError:
            return UserRole.INFLUENCER

    def provider_metadata(self) -> dict[str, str]:
        """Metadata attached to the identity-provider account."""
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "user_role": str(self.user_type),
        }

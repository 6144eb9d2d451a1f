from __future__ import annotations

"""
Data Models Package.

Re-exports all Pydantic models for convenient imports:
    from authsync.models import Profile, Session, AuthResult, UserRole
"""

from authsync.models.enums import (
    AuthEvent,
    FetchOutcome,
    LogoutPhase,
    SessionPhase,
    UserRole,
)
from authsync.models.session import Session
from authsync.models.profile import (
    BASE_UPDATE_FIELDS,
    BusinessDetails,
    InfluencerDetails,
    JoinedProfileRecord,
    Profile,
    role_fields,
)
from authsync.models.auth_models import (
    AuthErrorCode,
    AuthResult,
    SignUpData,
    SUPABASE_ERROR_MAP,
    ValidationResult,
)
from authsync.models.state import AuthStateChange, FetchResult, SessionSnapshot

__all__ = [
    "AuthEvent",
    "FetchOutcome",
    "LogoutPhase",
    "SessionPhase",
    "UserRole",
    "Session",
    "BASE_UPDATE_FIELDS",
    "BusinessDetails",
    "InfluencerDetails",
    "JoinedProfileRecord",
    "Profile",
    "role_fields",
    "AuthErrorCode",
    "AuthResult",
    "SignUpData",
    "SUPABASE_ERROR_MAP",
    "ValidationResult",
    "AuthStateChange",
    "FetchResult",
    "SessionSnapshot",
]

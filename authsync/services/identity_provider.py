"""
Identity Provider Port.

``IdentityProvider`` is the narrow interface the session core needs from
an authentication backend.  ``SupabaseIdentityProvider`` implements it
over the async Supabase Auth client and converts provider records into
the core's own ``Session`` model.

Provider exceptions are passed through unchanged; ``SessionStore``
classifies them via ``SUPABASE_ERROR_MAP``.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol

from pydantic import BaseModel

from authsync.database import DatabaseManager
from authsync.logger import StructuredLogger
from authsync.models.enums import AuthEvent
from authsync.models.session import Session
from authsync.models.state import AuthStateChange
from authsync.services.base_service import BaseService

AuthListener = Callable[[AuthStateChange], None]
Unsubscribe = Callable[[], None]


class ProviderResponseError(Exception):
    """The provider answered without the record the call requires."""


class SignUpResponse(BaseModel):
    """What account creation reports back.

    ``session`` is ``None`` when the provider requires email
    confirmation before the first sign-in.
    """

    subject_id: str
    email: Optional[str] = None
    session: Optional[Session] = None


class IdentityProvider(Protocol):
    """Authentication backend used by ``SessionStore``."""

    async def get_session(self) -> Optional[Session]: ...

    async def sign_in_with_password(self, email: str, password: str) -> Session: ...

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, str]
    ) -> SignUpResponse: ...

    async def sign_out(self, scope: str = "local") -> None: ...

    async def refresh_session(self) -> Session: ...

    def subscribe(self, listener: AuthListener) -> Unsubscribe: ...


def _to_event(raw: Any) -> AuthEvent:
    try:
        return AuthEvent(str(raw))
    except ValueError:
        return AuthEvent.OTHER


def session_from_supabase(raw: Any) -> Optional[Session]:
    """Convert a Supabase Auth session object to a ``Session``."""
    if raw is None or getattr(raw, "user", None) is None:
        return None
    user = raw.user
    return Session(
        subject_id=str(user.id),
        email=getattr(user, "email", None),
        access_token=raw.access_token or "",
        refresh_token=raw.refresh_token or "",
        expires_at=getattr(raw, "expires_at", None),
        issued_metadata=dict(getattr(user, "user_metadata", None) or {}),
    )


class SupabaseIdentityProvider(BaseService):
    """``IdentityProvider`` over ``supabase.AsyncClient.auth``.

    Parameters
    ----------
    db:
        ``DatabaseManager``; the client is looked up on every call so an
        offline manager raises ``SupabaseUnavailableError`` at the call site.
    logger:
        Structured logger instance.
    """

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._db = db

    async def get_session(self) -> Optional[Session]:
        raw = await self._db.supabase.auth.get_session()
        return session_from_supabase(raw)

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        response = await self._db.supabase.auth.sign_in_with_password(
            {"email": email, "password": password}
        )
        session = session_from_supabase(response.session)
        if session is None:
            raise ProviderResponseError("Sign-in returned no session.")
        return session

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, str]
    ) -> SignUpResponse:
        response = await self._db.supabase.auth.sign_up(
            {"email": email, "password": password, "options": {"data": metadata}}
        )
        if response.user is None:
            raise ProviderResponseError("Sign-up returned no user.")
        return SignUpResponse(
            subject_id=str(response.user.id),
            email=response.user.email,
            session=session_from_supabase(response.session),
        )

    async def sign_out(self, scope: str = "local") -> None:
        await self._db.supabase.auth.sign_out({"scope": scope})

    async def refresh_session(self) -> Session:
        response = await self._db.supabase.auth.refresh_session()
        session = session_from_supabase(response.session)
        if session is None:
            raise ProviderResponseError("session_not_found: refresh returned no session.")
        return session

    def subscribe(self, listener: AuthListener) -> Unsubscribe:
        def _callback(event: Any, raw_session: Any) -> None:
            listener(
                AuthStateChange(
                    event=_to_event(event),
                    session=session_from_supabase(raw_session),
                )
            )

        subscription = self._db.supabase.auth.on_auth_state_change(_callback)

        def _unsubscribe() -> None:
            subscription.unsubscribe()

        return _unsubscribe

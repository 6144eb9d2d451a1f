"""
Session Model.

Read-only view of the identity provider's session record.  The core
never inspects or validates the tokens; they are carried opaquely so the
UI collaborator can attach them to outbound requests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, SecretStr


class Session(BaseModel):
    """An authenticated identity-provider session.

    Attributes
    ----------
    subject_id:
        The provider's user UUID (``sub`` claim).
    email:
        The subject's email address, when the provider reports one.
    access_token:
        Short-lived bearer token.  Opaque.
    refresh_token:
        Long-lived refresh token.  Opaque.
    expires_at:
        Unix timestamp (seconds) when the access token expires.
    issued_metadata:
        Provider-issued user metadata (``user_metadata``).  Opaque.
    """

    subject_id: str
    email: Optional[str] = None
    access_token: SecretStr = SecretStr("")
    refresh_token: SecretStr = SecretStr("")
    expires_at: Optional[int] = None
    issued_metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def is_expired(self) -> bool:
        """``True`` when the access token has expired or expires within 30 s."""
        if self.expires_at is None:
            return False
        expiry = datetime.fromtimestamp(self.expires_at, tz=timezone.utc)
        return datetime.now(timezone.utc) >= (expiry - timedelta(seconds=30))

"""
Structured Audit Logging Utility.

Every session state change (sign-in, sign-up, sign-out, profile update)
and every deliberately discarded late result is logged as a structured
JSON object.  Provides a Pydantic-validated model and a single function
for consistent audit trail entries.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from authsync.logger import StructuredLogger

__all__ = ["AuditEvent", "log_audit_event"]

# Scalar type permitted inside the ``details`` mapping.
DetailValue = Union[str, int, float, bool, None]


class AuditEvent(BaseModel):
    """Schema-validated representation of a single audit trail entry."""

    timestamp: str
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]] = None,
) -> AuditEvent:
    """Validate and emit a structured JSON audit event.

    Args:
        logger: The logger instance to write to.
        action: What happened (e.g. ``"SIGN_IN"``, ``"SIGN_OUT"``,
            ``"PROFILE_UPDATE"``, ``"LOGOUT_RACE_DISCARD"``).
        entity_type: Type of entity affected (``"Session"`` or
            ``"Profile"``).
        entity_id: Identifier of the affected entity.
        user_id: Subject the event concerns (``"unknown"`` when none).
        details: Optional additional context.

    Returns:
        The validated event, mainly for tests.
    """
    event = AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details or {},
    )
    logger.info(
        "AUDIT: %s",
        json.dumps(event.model_dump(), default=str),
        extra={"event": action},
    )
    return event

"""Shared utilities for the session synchronisation core.

Convenience re-exports so consumers can import directly from
``authsync.utils``.
"""

from authsync.utils.audit import AuditEvent, log_audit_event

__all__ = [
    "AuditEvent",
    "log_audit_event",
]

"""
Profile Repository.

Handles all profile data access against the Supabase profile tables:

- ``profiles`` -- the base record (one per subject).
- ``business_profiles`` / ``influencer_profiles`` -- the role-specific
  extension, at most one of which belongs to a given subject.

Reads are a single joined query; writes touch one table each and are
not atomic across tables.  Callers decide how to surface a partial
failure.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from authsync.database import DatabaseManager
from authsync.logger import StructuredLogger
from authsync.models.enums import UserRole
from authsync.models.profile import JoinedProfileRecord
from authsync.repositories.base_repository import (
    BaseRepository,
    ProfileNotFoundError,
    ProfileStoreError,
)

__all__ = ["ProfileRepository", "ProfileNotFoundError", "ProfileStoreError"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProfileRepository(BaseRepository):
    """Data access layer for profile records."""

    TABLE = "profiles"
    BUSINESS_TABLE = "business_profiles"
    INFLUENCER_TABLE = "influencer_profiles"

    JOINED_SELECT = f"*, {INFLUENCER_TABLE}(*), {BUSINESS_TABLE}(*)"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    @classmethod
    def role_table(cls, role: UserRole) -> Optional[str]:
        """Return the extension table for *role*, or ``None`` for admins."""
        if role == UserRole.BUSINESS:
            return cls.BUSINESS_TABLE
        if role == UserRole.INFLUENCER:
            return cls.INFLUENCER_TABLE
        return None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_joined(self, subject_id: str) -> JoinedProfileRecord:
        """Read the base record joined with both role tables.

        Raises
        ------
        ProfileNotFoundError
            The base row does not exist yet.
        ProfileStoreError
            Any other read failure.
        """

        async def _op() -> JoinedProfileRecord:
            response = await (
                self.supabase.table(self.TABLE)
                .select(self.JOINED_SELECT)
                .eq("id", subject_id)
                .single()
                .execute()
            )
            if not response.data:
                raise ProfileNotFoundError(
                    f"fetch_joined ({self.TABLE}): empty response"
                )
            return JoinedProfileRecord.from_row(response.data)

        return await self._execute(_op, operation_name=f"fetch_joined ({self.TABLE})")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert_base(self, subject_id: str, email: str, role: UserRole) -> None:
        """Create the ``profiles`` row for a newly registered subject."""
        now = _now_iso()
        payload: dict[str, Any] = {
            "id": subject_id,
            "user_role": str(role),
            "email": email,
            "created_at": now,
            "updated_at": now,
        }

        async def _op() -> None:
            await self.supabase.table(self.TABLE).insert(payload).execute()

        await self._execute(_op, operation_name=f"insert_base ({self.TABLE})")
        self._logger.info(
            "Inserted base profile %s (role: %s)", subject_id, role,
            extra={"user_id": subject_id},
        )

    async def insert_role_record(
        self,
        subject_id: str,
        role: UserRole,
        fields: dict[str, Any],
    ) -> None:
        """Create the role-specific row for *subject_id*.

        A no-op for admins, who have no extension table.
        """
        table = self.role_table(role)
        if table is None:
            return
        now = _now_iso()
        payload: dict[str, Any] = {
            "id": subject_id,
            **fields,
            "created_at": now,
            "updated_at": now,
        }

        async def _op() -> None:
            await self.supabase.table(table).insert(payload).execute()

        await self._execute(_op, operation_name=f"insert_role_record ({table})")
        self._logger.info(
            "Inserted %s record for %s", table, subject_id,
            extra={"user_id": subject_id},
        )

    async def update_base(self, subject_id: str, fields: dict[str, Any]) -> None:
        """Apply *fields* to the ``profiles`` row."""
        payload = {**fields, "updated_at": _now_iso()}

        async def _op() -> None:
            await (
                self.supabase.table(self.TABLE)
                .update(payload)
                .eq("id", subject_id)
                .execute()
            )

        await self._execute(_op, operation_name=f"update_base ({self.TABLE})")

    async def update_role_record(
        self,
        subject_id: str,
        role: UserRole,
        fields: dict[str, Any],
    ) -> None:
        """Apply *fields* to the role-specific row of *subject_id*.

        Raises
        ------
        ProfileStoreError
            *role* has no extension table, or the write failed.
        """
        table = self.role_table(role)
        if table is None:
            raise ProfileStoreError(f"Role '{role}' has no role-specific record.")
        payload = {**fields, "updated_at": _now_iso()}

        async def _op() -> None:
            await (
                self.supabase.table(table)
                .update(payload)
                .eq("id", subject_id)
                .execute()
            )

        await self._execute(_op, operation_name=f"update_role_record ({table})")

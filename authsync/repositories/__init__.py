"""
Repository Layer Package.

Provides data-access abstractions over the Supabase profile tables.
All profile store operations flow through repositories -- services never
access db.supabase directly.

Usage:
    from authsync.repositories.profile_repository import ProfileRepository
"""

from authsync.repositories.base_repository import (
    BaseRepository,
    ProfileNotFoundError,
    ProfileStoreError,
)
from authsync.repositories.profile_repository import ProfileRepository

__all__ = [
    "BaseRepository",
    "ProfileNotFoundError",
    "ProfileRepository",
    "ProfileStoreError",
]

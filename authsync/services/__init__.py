"""
Session Services Package.

Contains the session synchronisation services.  Services depend on the
Repository layer for profile data, on the identity provider port for
authentication, and on ``SessionManager`` for observable state.

The ``create_services()`` factory wires every repository and service
together, returning a typed dict that the application layer can consume
without knowing the internal dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from authsync.auth import SessionManager
from authsync.config import AppConfig
from authsync.database import DatabaseManager
from authsync.logger import get_logger
from authsync.repositories.profile_repository import (
    ProfileNotFoundError,
    ProfileRepository,
)
from authsync.services.cancellation import FetchGuard
from authsync.services.identity_provider import (
    IdentityProvider,
    SupabaseIdentityProvider,
)
from authsync.services.local_storage import LocalStorageService
from authsync.services.logout_coordinator import LogoutCoordinator
from authsync.services.profile_cache import ProfileCache
from authsync.services.profile_fetcher import ProfileFetcher
from authsync.services.retry_policy import RetryPolicy
from authsync.services.session_store import SessionStore


class ServiceContainer(TypedDict):
    """Typed container for all session services."""

    session_manager: SessionManager
    local_storage: LocalStorageService
    profile_cache: ProfileCache
    fetch_guard: FetchGuard
    logout_coordinator: LogoutCoordinator
    profile_repository: ProfileRepository
    profile_fetcher: ProfileFetcher
    identity_provider: IdentityProvider
    session_store: SessionStore


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    provider: Optional[IdentityProvider] = None,
    session: Optional[SessionManager] = None,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    application entry-point calls this once at startup.

    Args:
        db: Initialised DatabaseManager with SQLite ready (Supabase optional).
        config: Application configuration.
        provider: Identity provider; defaults to Supabase Auth over *db*.
        session: Observable state holder; a fresh one by default.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services")
    session = session if session is not None else SessionManager()

    # ------------------------------------------------------------------
    # 1. Repositories and ports
    # ------------------------------------------------------------------
    profile_repo = ProfileRepository(db=db, logger=logger)
    if provider is None:
        provider = SupabaseIdentityProvider(db=db, logger=logger)

    # ------------------------------------------------------------------
    # 2. Local persistence
    # ------------------------------------------------------------------
    local_storage = LocalStorageService(db=db, logger=logger)
    profile_cache = ProfileCache(
        storage=local_storage,
        key=config.PROFILE_CACHE_KEY,
        logger=logger,
    )

    # ------------------------------------------------------------------
    # 3. Fetch coordination (logout recovery runs before the cache read)
    # ------------------------------------------------------------------
    fetch_guard = FetchGuard(logger=logger)
    logout_coordinator = LogoutCoordinator(
        guard=fetch_guard,
        cache=profile_cache,
        storage=local_storage,
        state=session,
        config=config,
        logger=logger,
    )
    profile_fetcher = ProfileFetcher(
        repository=profile_repo,
        guard=fetch_guard,
        logout=logout_coordinator,
        retry_policy=RetryPolicy(
            max_retries=config.PROFILE_FETCH_MAX_RETRIES,
            base_delay_s=config.PROFILE_RETRY_BASE_DELAY_S,
            max_delay_s=config.PROFILE_RETRY_MAX_DELAY_S,
            retry_on=(ProfileNotFoundError,),
        ),
        timeout_s=config.PROFILE_FETCH_TIMEOUT_S,
        logger=logger,
    )

    # ------------------------------------------------------------------
    # 4. Orchestration
    # ------------------------------------------------------------------
    session_store = SessionStore(
        provider=provider,
        repository=profile_repo,
        fetcher=profile_fetcher,
        logout=logout_coordinator,
        cache=profile_cache,
        state=session,
        config=config,
        logger=logger,
    )

    return ServiceContainer(
        session_manager=session,
        local_storage=local_storage,
        profile_cache=profile_cache,
        fetch_guard=fetch_guard,
        logout_coordinator=logout_coordinator,
        profile_repository=profile_repo,
        profile_fetcher=profile_fetcher,
        identity_provider=provider,
        session_store=session_store,
    )

"""
Shared fixtures for the authsync test suite.

Provides an in-memory SQLite ``DatabaseManager`` (offline: no Supabase
client), a configuration with shortened delays, and in-process fakes of
the identity provider and the profile store.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any, Optional

import pytest
import pytest_asyncio

# Keep test runs from writing a rotating log file into the working tree.
os.environ.setdefault("LOG_FILE", "")

from authsync.auth import SessionManager
from authsync.config import AppConfig
from authsync.database import DatabaseManager
from authsync.logger import StructuredLogger
from authsync.models.enums import AuthEvent, UserRole
from authsync.models.profile import JoinedProfileRecord
from authsync.models.session import Session
from authsync.models.state import AuthStateChange
from authsync.repositories.profile_repository import (
    ProfileNotFoundError,
    ProfileStoreError,
)
from authsync.schema import initialize_schema
from authsync.services.cancellation import FetchGuard
from authsync.services.identity_provider import AuthListener, SignUpResponse
from authsync.services.local_storage import LocalStorageService
from authsync.services.logout_coordinator import LogoutCoordinator
from authsync.services.profile_cache import ProfileCache
from authsync.services.profile_fetcher import ProfileFetcher
from authsync.services.retry_policy import RetryPolicy
from authsync.services.session_store import SessionStore


def make_session(subject_id: str = "user-1", email: str = "ana@example.com", token: str = "t1") -> Session:
    return Session(
        subject_id=subject_id,
        email=email,
        access_token=token,
        refresh_token=f"r-{token}",
        expires_at=4_102_444_800,
    )


def influencer_row(subject_id: str = "user-1") -> dict[str, Any]:
    return {
        "id": subject_id,
        "user_role": "influencer",
        "email": "ana@example.com",
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
    }


class FakeIdentityProvider:
    """In-process identity provider that emits events like Supabase Auth."""

    def __init__(self) -> None:
        self.listeners: list[AuthListener] = []
        self.current: Optional[Session] = None
        self.subjects: dict[str, str] = {}
        self.emit_events: bool = True
        self.sign_in_error: Optional[Exception] = None
        self.sign_up_error: Optional[Exception] = None
        self.sign_out_error: Optional[Exception] = None
        self.refresh_error: Optional[Exception] = None
        self.sign_out_calls: list[str] = []
        self.sign_up_calls: list[dict[str, Any]] = []
        self._refresh_count = 0

    def emit(self, event: AuthEvent, session: Optional[Session]) -> None:
        for listener in list(self.listeners):
            listener(AuthStateChange(event=event, session=session))

    async def get_session(self) -> Optional[Session]:
        return self.current

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        await asyncio.sleep(0)
        if self.sign_in_error is not None:
            raise self.sign_in_error
        session = make_session(self.subjects.get(email, "user-1"), email)
        self.current = session
        if self.emit_events:
            self.emit(AuthEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str, metadata: dict[str, str]) -> SignUpResponse:
        await asyncio.sleep(0)
        self.sign_up_calls.append({"email": email, "metadata": metadata})
        if self.sign_up_error is not None:
            raise self.sign_up_error
        subject_id = f"new-{len(self.sign_up_calls)}"
        session = make_session(subject_id, email)
        self.current = session
        if self.emit_events:
            self.emit(AuthEvent.SIGNED_IN, session)
        return SignUpResponse(subject_id=subject_id, email=email, session=session)

    async def sign_out(self, scope: str = "local") -> None:
        self.sign_out_calls.append(scope)
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.current = None
        if self.emit_events:
            self.emit(AuthEvent.SIGNED_OUT, None)

    async def refresh_session(self) -> Session:
        await asyncio.sleep(0)
        if self.refresh_error is not None:
            raise self.refresh_error
        self._refresh_count += 1
        assert self.current is not None
        session = make_session(
            self.current.subject_id, self.current.email or "", f"t{self._refresh_count + 1}"
        )
        self.current = session
        if self.emit_events:
            self.emit(AuthEvent.TOKEN_REFRESHED, session)
        return session

    def subscribe(self, listener: AuthListener):
        self.listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self.listeners:
                self.listeners.remove(listener)

        return _unsubscribe


def _copy(row: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    return dict(row) if row is not None else None


class FakeProfileRepository:
    """Dictionary-backed stand-in for ``ProfileRepository``.

    A read returns the rows as they stood when it was issued.  With
    ``ignore_cancel`` set, a gated read keeps waiting through cancellation
    and still returns, like a request already on the wire.
    """

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.business: dict[str, dict[str, Any]] = {}
        self.influencer: dict[str, dict[str, Any]] = {}
        self.fetch_calls: int = 0
        self.missing_reads: int = 0
        self.fetch_delay_s: float = 0.0
        self.fetch_gate: Optional[asyncio.Event] = None
        self.ignore_cancel: bool = False
        self.write_gate: Optional[asyncio.Event] = None
        self.fetch_error: Optional[Exception] = None
        self.insert_base_error: Optional[Exception] = None
        self.insert_role_error: Optional[Exception] = None
        self.update_base_error: Optional[Exception] = None
        self.update_role_error: Optional[Exception] = None
        self.writes: list[tuple[str, str, dict[str, Any]]] = []

    async def _pass(self, gate: asyncio.Event) -> None:
        while not gate.is_set():
            try:
                await gate.wait()
            except asyncio.CancelledError:
                if not self.ignore_cancel:
                    raise

    async def fetch_joined(self, subject_id: str) -> JoinedProfileRecord:
        self.fetch_calls += 1
        base = _copy(self.rows.get(subject_id))
        business = _copy(self.business.get(subject_id))
        influencer = _copy(self.influencer.get(subject_id))
        if self.fetch_gate is not None:
            await self._pass(self.fetch_gate)
        if self.fetch_delay_s:
            await asyncio.sleep(self.fetch_delay_s)
        if self.fetch_error is not None:
            raise self.fetch_error
        if self.missing_reads > 0:
            self.missing_reads -= 1
            raise ProfileNotFoundError("no row yet", code="PGRST116")
        if base is None:
            raise ProfileNotFoundError("no row", code="PGRST116")
        return JoinedProfileRecord(
            base=base,
            business=business,
            influencer=influencer,
        )

    async def insert_base(self, subject_id: str, email: str, role: UserRole) -> None:
        await asyncio.sleep(0)
        if self.insert_base_error is not None:
            raise self.insert_base_error
        self.writes.append(("insert_base", subject_id, {"email": email, "user_role": str(role)}))
        self.rows[subject_id] = {"id": subject_id, "user_role": str(role), "email": email}

    async def insert_role_record(self, subject_id: str, role: UserRole, fields: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        if role == UserRole.ADMIN:
            return
        if self.insert_role_error is not None:
            raise self.insert_role_error
        self.writes.append(("insert_role_record", subject_id, dict(fields)))
        table = self.business if role == UserRole.BUSINESS else self.influencer
        table[subject_id] = {"id": subject_id, **fields}

    async def update_base(self, subject_id: str, fields: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        if self.write_gate is not None:
            await self._pass(self.write_gate)
        if self.update_base_error is not None:
            raise self.update_base_error
        self.writes.append(("update_base", subject_id, dict(fields)))
        self.rows.setdefault(subject_id, {"id": subject_id}).update(fields)

    async def update_role_record(self, subject_id: str, role: UserRole, fields: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        if self.update_role_error is not None:
            raise self.update_role_error
        self.writes.append(("update_role_record", subject_id, dict(fields)))
        table = self.business if role == UserRole.BUSINESS else self.influencer
        table.setdefault(subject_id, {"id": subject_id}).update(fields)


class RecordingSleep:
    """Awaitable sleep that records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="authsync.tests", log_file="")


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        SUPABASE_URL="",
        LOG_FILE="",
        PROFILE_FETCH_TIMEOUT_S=1.0,
        PROFILE_FETCH_MAX_RETRIES=3,
        PROFILE_RETRY_BASE_DELAY_S=0.01,
        PROFILE_RETRY_MAX_DELAY_S=0.03,
        LOGOUT_GUARD_DELAY_S=0.05,
        SIGNUP_PROFILE_FETCH_DELAY_S=0.01,
    )


@pytest.fixture
def db(logger: StructuredLogger):
    manager = DatabaseManager(sqlite_path=":memory:", logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def storage(db: DatabaseManager, logger: StructuredLogger) -> LocalStorageService:
    return LocalStorageService(db=db, logger=logger)


@pytest.fixture
def cache(storage: LocalStorageService, config: AppConfig, logger: StructuredLogger) -> ProfileCache:
    return ProfileCache(storage=storage, key=config.PROFILE_CACHE_KEY, logger=logger)


@pytest.fixture
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def repository() -> FakeProfileRepository:
    repo = FakeProfileRepository()
    repo.rows["user-1"] = influencer_row("user-1")
    repo.influencer["user-1"] = {"id": "user-1", "first_name": "Ana", "bio": "Travel"}
    return repo


class Harness:
    """A fully wired session core over the fakes."""

    def __init__(
        self,
        config: AppConfig,
        storage: LocalStorageService,
        cache: ProfileCache,
        provider: FakeIdentityProvider,
        repository: FakeProfileRepository,
        logger: StructuredLogger,
    ) -> None:
        self.config = config
        self.storage = storage
        self.cache = cache
        self.provider = provider
        self.repository = repository
        self.logger = logger
        self.build()

    def build(self) -> SessionStore:
        # Detach the store from a previous build.
        self.provider.listeners.clear()
        self.state = SessionManager()
        self.guard = FetchGuard(logger=self.logger)
        self.logout = LogoutCoordinator(
            guard=self.guard,
            cache=self.cache,
            storage=self.storage,
            state=self.state,
            config=self.config,
            logger=self.logger,
        )
        self.fetcher = ProfileFetcher(
            repository=self.repository,
            guard=self.guard,
            logout=self.logout,
            retry_policy=RetryPolicy(
                max_retries=self.config.PROFILE_FETCH_MAX_RETRIES,
                base_delay_s=self.config.PROFILE_RETRY_BASE_DELAY_S,
                max_delay_s=self.config.PROFILE_RETRY_MAX_DELAY_S,
                retry_on=(ProfileNotFoundError,),
            ),
            timeout_s=self.config.PROFILE_FETCH_TIMEOUT_S,
            logger=self.logger,
        )
        self.store = SessionStore(
            provider=self.provider,
            repository=self.repository,
            fetcher=self.fetcher,
            logout=self.logout,
            cache=self.cache,
            state=self.state,
            config=self.config,
            logger=self.logger,
        )
        return self.store


@pytest_asyncio.fixture
async def harness(config, storage, cache, provider, repository, logger):
    h = Harness(config, storage, cache, provider, repository, logger)
    yield h
    await h.store.close()


async def settle(rounds: int = 5, delay: float = 0.0) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(delay)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll *predicate* until it holds or *timeout* elapses."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


__all__ = [
    "FakeIdentityProvider",
    "FakeProfileRepository",
    "Harness",
    "ProfileStoreError",
    "RecordingSleep",
    "influencer_row",
    "make_session",
    "settle",
    "wait_until",
]

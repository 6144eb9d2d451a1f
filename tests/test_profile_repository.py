"""
Unit tests for ``ProfileRepository``.

The async Supabase client is replaced by a ``MagicMock`` whose query
chain ends in an ``AsyncMock`` ``execute``.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from postgrest.exceptions import APIError

from authsync.database import DatabaseManager
from authsync.models import UserRole
from authsync.repositories import (
    ProfileNotFoundError,
    ProfileRepository,
    ProfileStoreError,
)

from conftest import influencer_row


def _api_error(code: str, message: str = "failed") -> APIError:
    return APIError({"message": message, "code": code, "hint": None, "details": None})


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def repo(client, logger):
    db = DatabaseManager(sqlite_path=":memory:", logger=logger, supabase=client)
    yield ProfileRepository(db=db, logger=logger)
    db.close()


def _select_execute(client: MagicMock) -> AsyncMock:
    execute = AsyncMock()
    client.table.return_value.select.return_value.eq.return_value.single.return_value.execute = execute
    return execute


def _update_execute(client: MagicMock) -> AsyncMock:
    execute = AsyncMock()
    client.table.return_value.update.return_value.eq.return_value.execute = execute
    return execute


def _insert_execute(client: MagicMock) -> AsyncMock:
    execute = AsyncMock()
    client.table.return_value.insert.return_value.execute = execute
    return execute


@pytest.mark.asyncio
async def test_fetch_joined_splits_embedded_relations(repo, client):
    row = {
        **influencer_row(),
        "influencer_profiles": [{"id": "user-1", "bio": "Travel"}],
        "business_profiles": [],
    }
    _select_execute(client).return_value = SimpleNamespace(data=row)

    record = await repo.fetch_joined("user-1")

    client.table.assert_called_with("profiles")
    client.table.return_value.select.assert_called_with(ProfileRepository.JOINED_SELECT)
    assert record.base["id"] == "user-1"
    assert "influencer_profiles" not in record.base
    assert record.influencer == {"id": "user-1", "bio": "Travel"}
    assert record.business is None


@pytest.mark.asyncio
async def test_missing_row_maps_to_not_found(repo, client):
    _select_execute(client).side_effect = _api_error("PGRST116", "no rows")

    with pytest.raises(ProfileNotFoundError) as info:
        await repo.fetch_joined("user-1")

    assert info.value.code == "PGRST116"


@pytest.mark.asyncio
async def test_empty_response_maps_to_not_found(repo, client):
    _select_execute(client).return_value = SimpleNamespace(data=None)

    with pytest.raises(ProfileNotFoundError):
        await repo.fetch_joined("user-1")


@pytest.mark.asyncio
async def test_other_api_errors_map_to_store_error(repo, client):
    _select_execute(client).side_effect = _api_error("42501", "permission denied")

    with pytest.raises(ProfileStoreError) as info:
        await repo.fetch_joined("user-1")

    assert not isinstance(info.value, ProfileNotFoundError)
    assert info.value.code == "42501"


@pytest.mark.asyncio
async def test_offline_database_maps_to_store_error(logger):
    db = DatabaseManager(sqlite_path=":memory:", logger=logger)
    repo = ProfileRepository(db=db, logger=logger)

    with pytest.raises(ProfileStoreError):
        await repo.fetch_joined("user-1")
    db.close()


@pytest.mark.asyncio
async def test_insert_base_payload(repo, client):
    execute = _insert_execute(client)

    await repo.insert_base("user-1", "ana@example.com", UserRole.BUSINESS)

    payload = client.table.return_value.insert.call_args.args[0]
    assert payload["id"] == "user-1"
    assert payload["user_role"] == "business"
    assert payload["email"] == "ana@example.com"
    assert payload["created_at"] == payload["updated_at"]
    execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_insert_role_record_targets_role_table(repo, client):
    _insert_execute(client)

    await repo.insert_role_record("user-1", UserRole.INFLUENCER, {"first_name": "Ana"})

    client.table.assert_called_with("influencer_profiles")
    payload = client.table.return_value.insert.call_args.args[0]
    assert payload["first_name"] == "Ana"


@pytest.mark.asyncio
async def test_admin_has_no_role_record(repo, client):
    await repo.insert_role_record("user-1", UserRole.ADMIN, {"first_name": "Root"})

    client.table.assert_not_called()
    with pytest.raises(ProfileStoreError):
        await repo.update_role_record("user-1", UserRole.ADMIN, {"first_name": "Root"})


@pytest.mark.asyncio
async def test_update_base_stamps_updated_at(repo, client):
    _update_execute(client)

    await repo.update_base("user-1", {"email": "new@example.com"})

    payload = client.table.return_value.update.call_args.args[0]
    assert payload["email"] == "new@example.com"
    assert "updated_at" in payload
    client.table.return_value.update.return_value.eq.assert_called_with("id", "user-1")


def test_role_table_lookup():
    assert ProfileRepository.role_table(UserRole.BUSINESS) == "business_profiles"
    assert ProfileRepository.role_table(UserRole.INFLUENCER) == "influencer_profiles"
    assert ProfileRepository.role_table(UserRole.ADMIN) is None


@pytest.mark.asyncio
async def test_fetch_transport_failure_maps_to_store_error(repo, client):
    _select_execute(client).side_effect = httpx.ReadTimeout("read timed out")

    with pytest.raises(ProfileStoreError) as info:
        await repo.fetch_joined("user-1")

    assert not isinstance(info.value, ProfileNotFoundError)
    assert isinstance(info.value.__cause__, httpx.ReadTimeout)


@pytest.mark.asyncio
async def test_update_base_transport_failure_maps_to_store_error(repo, client):
    _update_execute(client).side_effect = httpx.ConnectError("connection refused")

    with pytest.raises(ProfileStoreError, match="connection refused"):
        await repo.update_base("user-1", {"email": "new@example.com"})


@pytest.mark.asyncio
async def test_insert_base_transport_failure_maps_to_store_error(repo, client):
    _insert_execute(client).side_effect = httpx.ConnectError("connection refused")

    with pytest.raises(ProfileStoreError):
        await repo.insert_base("user-1", "ana@example.com", UserRole.INFLUENCER)


@pytest.mark.asyncio
async def test_insert_role_record_transport_failure_maps_to_store_error(repo, client):
    _insert_execute(client).side_effect = httpx.RemoteProtocolError("server hung up")

    with pytest.raises(ProfileStoreError) as info:
        await repo.insert_role_record("user-1", UserRole.BUSINESS, {"company_name": "Acme"})

    assert info.value.code is None
    client.table.assert_called_with("business_profiles")

"""
Unit tests for ``LogoutCoordinator``.
"""

import asyncio

import pytest

from authsync.auth import SessionManager
from authsync.models import JoinedProfileRecord, LogoutPhase, Profile
from authsync.services.cancellation import FetchGuard
from authsync.services.logout_coordinator import LogoutCoordinator

from conftest import influencer_row, make_session


def _coordinator(config, storage, cache, logger, state=None, guard=None):
    return LogoutCoordinator(
        guard=guard or FetchGuard(logger),
        cache=cache,
        storage=storage,
        state=state or SessionManager(),
        config=config,
        logger=logger,
    )


def _profile() -> Profile:
    return Profile.from_joined(JoinedProfileRecord(base=influencer_row("user-1")))


@pytest.mark.asyncio
async def test_begin_tears_down_local_state(config, storage, cache, logger):
    state = SessionManager()
    state.update(session=make_session(), profile=_profile())
    cache.write(_profile())
    guard = FetchGuard(logger)
    token = guard.try_acquire("user-1")
    coordinator = _coordinator(config, storage, cache, logger, state=state, guard=guard)

    epoch = coordinator.begin()

    assert epoch == 1
    assert coordinator.phase == LogoutPhase.LOGGING_OUT
    assert storage.get_item(config.LOGOUT_FLAG_KEY) is not None
    assert token.cancelled
    assert state.session is None and state.profile is None
    assert cache.read() is None
    coordinator.close()


@pytest.mark.asyncio
async def test_end_clears_flag(config, storage, cache, logger):
    coordinator = _coordinator(config, storage, cache, logger)
    coordinator.begin()

    coordinator.end()

    assert coordinator.phase == LogoutPhase.ACTIVE
    assert storage.get_item(config.LOGOUT_FLAG_KEY) is None


@pytest.mark.asyncio
async def test_guard_ends_automatically(config, storage, cache, logger):
    coordinator = _coordinator(config, storage, cache, logger)
    coordinator.begin()

    await asyncio.sleep(config.LOGOUT_GUARD_DELAY_S + 0.05)

    assert not coordinator.is_logging_out
    assert storage.get_item(config.LOGOUT_FLAG_KEY) is None


@pytest.mark.asyncio
async def test_second_logout_restarts_guard_delay(storage, cache, logger, config):
    slow = config.model_copy(update={"LOGOUT_GUARD_DELAY_S": 0.2})
    coordinator = _coordinator(slow, storage, cache, logger)

    coordinator.begin()
    await asyncio.sleep(0.15)
    coordinator.begin()
    await asyncio.sleep(0.1)
    assert coordinator.is_logging_out

    await asyncio.sleep(0.2)
    assert not coordinator.is_logging_out


def test_epoch_change_marks_results_stale(config, storage, cache, logger):
    coordinator = _coordinator(config, storage, cache, logger)
    started_at = coordinator.epoch
    assert not coordinator.should_discard(started_at)

    coordinator.begin()
    coordinator.end()

    assert coordinator.should_discard(started_at)
    assert not coordinator.should_discard(coordinator.epoch)


def test_interrupted_logout_is_recovered(config, storage, cache, logger):
    storage.set_item(config.LOGOUT_FLAG_KEY, "true")
    cache.write(_profile())

    coordinator = _coordinator(config, storage, cache, logger)

    assert coordinator.recovered_interrupted_logout
    assert cache.read() is None
    assert storage.get_item(config.LOGOUT_FLAG_KEY) is None
    assert not coordinator.is_logging_out


def test_clean_start_keeps_cache(config, storage, cache, logger):
    cache.write(_profile())

    coordinator = _coordinator(config, storage, cache, logger)

    assert not coordinator.recovered_interrupted_logout
    assert cache.read() is not None

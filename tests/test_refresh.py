"""Tests for the refresh/lock coordinator."""
import asyncio
import json
import pytest
from topocache.errors import (
    LockContentionError,
    NotFoundError,
    TransientFetchError,
    UnavailableError,
)
from topocache.services.instance import new_refresh_instance
from topocache.services.refresh import RefreshCoordinator, RefreshManager
from fakes import CountingDetail, eventually


@pytest.mark.asyncio
async def test_miss_loads_and_caches(coordinator, instance, detail, store, locker):
    raw = await coordinator.get(instance, 7)

    assert json.loads(raw) == {"inst_id": 7, "version": 1}
    assert await store.get(instance.main_key_for(7)) == raw
    assert await store.exists(instance.expire_key_for(7))
    assert not locker.is_held(instance.lock_key_for(7))


@pytest.mark.asyncio
async def test_fresh_value_served_without_lock(coordinator, instance, detail, locker):
    await coordinator.get(instance, 7)
    await coordinator.get(instance, 7)
    await coordinator.get(instance, 7)

    assert detail.calls == 1
    assert locker.acquired[instance.lock_key_for(7)] == 1


@pytest.mark.asyncio
async def test_concurrent_readers_load_once(store, locker):
    detail = CountingDetail(delay=0.05)
    instance = new_refresh_instance("cc:v3:test:{inst_id}", 60.0, detail)
    coordinator = RefreshCoordinator(store, locker, retry_duration=0.01, max_attempts=50)

    results = await asyncio.gather(*[coordinator.get(instance, 7) for _ in range(10)])

    assert detail.calls == 1
    assert len(set(results)) == 1


@pytest.mark.asyncio
async def test_contention_serves_stale_value(coordinator, instance, detail, store, locker):
    await store.set(instance.main_key_for(7), "stale", 60.0)
    await locker.try_acquire(instance.lock_key_for(7), 60.0)

    assert await coordinator.get(instance, 7) == "stale"
    assert detail.calls == 0


@pytest.mark.asyncio
async def test_contention_without_cache_is_unavailable(coordinator, instance, detail, locker):
    await locker.try_acquire(instance.lock_key_for(7), 60.0)

    with pytest.raises(UnavailableError) as exc_info:
        await coordinator.get(instance, 7)

    assert isinstance(exc_info.value.__cause__, LockContentionError)
    assert detail.calls == 0


@pytest.mark.asyncio
async def test_waiting_reader_picks_up_other_refresh(coordinator, instance, detail, store, locker):
    lock_key = instance.lock_key_for(7)
    token = await locker.try_acquire(lock_key, 60.0)

    async def other_refresher():
        await asyncio.sleep(0.015)
        await store.set(instance.main_key_for(7), "fresh", 60.0)
        await store.set(instance.expire_key_for(7), "1", 60.0)
        await locker.release(lock_key, token)

    result, _ = await asyncio.gather(coordinator.get(instance, 7), other_refresher())

    assert result == "fresh"
    assert detail.calls == 0


@pytest.mark.asyncio
async def test_release_with_foreign_token_keeps_running_refresh_locked(store, locker):
    slow = new_refresh_instance("cc:v3:slow:{inst_id}", 60.0, CountingDetail(delay=0.05))
    lock_key = slow.lock_key_for(7)
    coordinator = RefreshCoordinator(store, locker, retry_duration=0.01, max_attempts=5)

    async def refreshing():
        return locker.is_held(lock_key)

    task = asyncio.create_task(coordinator.get(slow, 7))
    try:
        assert await eventually(refreshing)

        # A holder whose lock already expired releases late
        await locker.release(lock_key, "expired-holder")
        assert locker.is_held(lock_key)
    finally:
        await task

    assert not locker.is_held(lock_key)


@pytest.mark.asyncio
async def test_not_found_is_not_retried(coordinator, instance, detail, store, locker):
    detail.errors = [NotFoundError("gone")]

    with pytest.raises(NotFoundError):
        await coordinator.get(instance, 7)

    assert detail.calls == 1
    assert not locker.is_held(instance.lock_key_for(7))
    assert await store.get(instance.main_key_for(7)) is None
    assert not await store.exists(instance.expire_key_for(7))


@pytest.mark.asyncio
async def test_transient_failure_is_retried(coordinator, instance, detail):
    detail.errors = [TransientFetchError("timeout"), TransientFetchError("timeout")]

    raw = await coordinator.get(instance, 7)

    assert json.loads(raw)["version"] == 3
    assert detail.calls == 3


@pytest.mark.asyncio
async def test_transient_exhaustion_without_cache_is_unavailable(coordinator, instance, detail, store, locker):
    detail.errors = [TransientFetchError("down")] * 5

    with pytest.raises(UnavailableError) as exc_info:
        await coordinator.get(instance, 7)

    assert isinstance(exc_info.value.__cause__, TransientFetchError)
    assert detail.calls == 5
    assert locker.released[instance.lock_key_for(7)] == 5
    assert not await store.exists(instance.expire_key_for(7))


@pytest.mark.asyncio
async def test_transient_exhaustion_keeps_previous_value(coordinator, instance, detail, store):
    await store.set(instance.main_key_for(7), "previous", 60.0)
    detail.errors = [TransientFetchError("down")] * 5

    assert await coordinator.get(instance, 7) == "previous"
    assert await store.get(instance.main_key_for(7)) == "previous"
    assert not await store.exists(instance.expire_key_for(7))


@pytest.mark.asyncio
async def test_expired_entry_reloads_exactly_once(coordinator):
    detail = CountingDetail()
    instance = new_refresh_instance("cc:v3:ttl:{inst_id}", 0.5, detail)

    await coordinator.get(instance, 7)
    await asyncio.sleep(0.6)
    raw = await coordinator.get(instance, 7)
    await coordinator.get(instance, 7)

    assert detail.calls == 2
    assert json.loads(raw)["version"] == 2


@pytest.mark.asyncio
async def test_invalidate_forces_reload(coordinator, instance, detail, store):
    await coordinator.get(instance, 7)
    await coordinator.invalidate(instance, 7)

    assert await store.get(instance.main_key_for(7)) is not None
    await coordinator.get(instance, 7)
    assert detail.calls == 2


@pytest.mark.asyncio
async def test_refresh_without_wait_reports_contention(coordinator, instance, locker):
    await locker.try_acquire(instance.lock_key_for(7), 60.0)

    with pytest.raises(LockContentionError):
        await coordinator.refresh(instance, 7, wait=False)


@pytest.mark.asyncio
async def test_refresh_ignores_freshness(coordinator, instance, detail):
    await coordinator.get(instance, 7)
    raw = await coordinator.refresh(instance, 7)

    assert detail.calls == 2
    assert json.loads(raw)["version"] == 2


@pytest.mark.asyncio
async def test_stale_while_refresh_returns_stale_then_refreshes(store, locker, instance, detail):
    manager = RefreshManager()
    coordinator = RefreshCoordinator(
        store,
        locker,
        retry_duration=0.01,
        stale_while_refresh=True,
        refresh_manager=manager,
    )
    await store.set(instance.main_key_for(7), "stale", 60.0)

    assert await coordinator.get(instance, 7) == "stale"
    await manager.drain()

    assert detail.calls == 1
    assert json.loads(await coordinator.get(instance, 7))["version"] == 1
    assert not manager.pending_refreshes


@pytest.mark.asyncio
async def test_schedule_refresh_is_deduplicated(coordinator, store, locker):
    detail = CountingDetail(delay=0.02)
    instance = new_refresh_instance("cc:v3:bg:{inst_id}", 60.0, detail)
    manager = RefreshManager()

    manager.schedule_refresh(coordinator, instance, 7)
    manager.schedule_refresh(coordinator, instance, 7)
    await manager.drain()

    assert detail.calls == 1


def test_max_attempts_must_be_positive(store, locker):
    with pytest.raises(ValueError):
        RefreshCoordinator(store, locker, max_attempts=0)

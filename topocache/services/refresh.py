"""Lock-coordinated refresh of cached topology levels."""
import asyncio
import logging
from typing import Optional, Set
from topocache.cache.redis import KeyValueStore, DistributedLock
from topocache.errors import LockContentionError, TransientFetchError, UnavailableError
from topocache.services.instance import RefreshInstance
from topocache.util.timing import timer

logger = logging.getLogger(__name__)

# Value stored under an expiry key; only its presence matters.
_FRESH_MARKER = "1"


class RefreshCoordinator:
    """
    Serves cached values while keeping at most one recompute per key.

    A read first checks the expiry key. When it is gone the reader tries
    to take the key's distributed lock and reload the detail; readers that
    lose the race sleep for ``retry_duration`` and look again. After
    ``max_attempts`` rounds the last cached value is served even if stale,
    and UnavailableError is raised only when nothing was ever cached.
    """

    def __init__(
        self,
        store: KeyValueStore,
        locker: DistributedLock,
        retry_duration: float = 0.5,
        max_attempts: int = 5,
        lock_ttl: float = 10.0,
        stale_ttl_multiplier: float = 10.0,
        stale_while_refresh: bool = False,
        refresh_manager: Optional["RefreshManager"] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.locker = locker
        self.retry_duration = retry_duration
        self.max_attempts = max_attempts
        self.lock_ttl = lock_ttl
        self.stale_ttl_multiplier = stale_ttl_multiplier
        self.stale_while_refresh = stale_while_refresh
        self.refresh_manager = refresh_manager

    async def get(self, instance: RefreshInstance, inst_id: int) -> str:
        """
        Return the cached detail for inst_id, refreshing it when stale.

        Raises:
            NotFoundError: the system of record has no such entity
            UnavailableError: retries exhausted and nothing cached
        """
        main_key = instance.main_key_for(inst_id)

        if self.stale_while_refresh and self.refresh_manager is not None:
            fresh = await self._read_fresh(instance, inst_id)
            if fresh is not None:
                return fresh
            stale = await self.store.get(main_key)
            if stale is not None:
                self.refresh_manager.schedule_refresh(self, instance, inst_id)
                return stale

        last_error: Optional[Exception] = None
        for attempt in range(self.max_attempts):
            if attempt:
                await asyncio.sleep(self.retry_duration)

            fresh = await self._read_fresh(instance, inst_id)
            if fresh is not None:
                return fresh

            try:
                return await self._refresh_locked(instance, inst_id, check_fresh=True)
            except LockContentionError as err:
                last_error = err
            except TransientFetchError as err:
                logger.warning(
                    "refresh %s attempt %d failed: %s", main_key, attempt + 1, err
                )
                last_error = err

        stale = await self.store.get(main_key)
        if stale is not None:
            logger.warning(
                "serving stale %s after %d refresh attempts", main_key, self.max_attempts
            )
            return stale

        raise UnavailableError(
            f"{main_key} is temporarily unavailable, try again later"
        ) from last_error

    async def refresh(self, instance: RefreshInstance, inst_id: int, wait: bool = True) -> str:
        """
        Reload the detail now, ignoring the expiry key.

        With wait=False a held lock raises LockContentionError; otherwise
        the call falls back to a normal read, which waits for the holder.
        """
        try:
            return await self._refresh_locked(instance, inst_id, check_fresh=False)
        except LockContentionError:
            if not wait:
                raise
        return await self.get(instance, inst_id)

    async def invalidate(self, instance: RefreshInstance, inst_id: int):
        """Drop the expiry key so the next read reloads the detail."""
        await self.store.delete(instance.expire_key_for(inst_id))

    async def _read_fresh(self, instance: RefreshInstance, inst_id: int) -> Optional[str]:
        if not await self.store.exists(instance.expire_key_for(inst_id)):
            return None
        return await self.store.get(instance.main_key_for(inst_id))

    async def _refresh_locked(
        self,
        instance: RefreshInstance,
        inst_id: int,
        check_fresh: bool,
    ) -> str:
        main_key = instance.main_key_for(inst_id)
        lock_key = instance.lock_key_for(inst_id)
        token = await self.locker.try_acquire(lock_key, self.lock_ttl)
        if token is None:
            raise LockContentionError(lock_key)

        try:
            if check_fresh:
                # Another refresher may have finished between our check and the lock
                fresh = await self._read_fresh(instance, inst_id)
                if fresh is not None:
                    return fresh

            async with timer(f"load {main_key}"):
                detail = await instance.get_detail(inst_id)

            await self.store.set(
                main_key, detail, instance.expire_duration * self.stale_ttl_multiplier
            )
            await self.store.set(
                instance.expire_key_for(inst_id), _FRESH_MARKER, instance.expire_duration
            )
            logger.debug("refreshed %s", main_key)
            return detail
        finally:
            await self.locker.release(lock_key, token)


class RefreshManager:
    """Manages background refresh tasks for stale cache entries."""

    def __init__(self):
        """Initialize refresh manager."""
        self.pending_refreshes: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    def schedule_refresh(
        self,
        coordinator: RefreshCoordinator,
        instance: RefreshInstance,
        inst_id: int,
    ):
        """
        Schedule a background refresh for a stale cache entry.

        Args:
            coordinator: Coordinator that owns the lock protocol
            instance: Refresher of the stale level
            inst_id: Instance to refresh
        """
        key = instance.main_key_for(inst_id)
        # Avoid duplicate refresh tasks
        if key in self.pending_refreshes:
            return

        self.pending_refreshes.add(key)
        task = asyncio.create_task(self._do_refresh(key, coordinator, instance, inst_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self):
        """Wait for every scheduled refresh to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _do_refresh(
        self,
        key: str,
        coordinator: RefreshCoordinator,
        instance: RefreshInstance,
        inst_id: int,
    ):
        """Execute background refresh."""
        try:
            await coordinator.refresh(instance, inst_id, wait=False)
        except LockContentionError:
            # Someone else is already refreshing this key
            pass
        except Exception:
            logger.exception("Error refreshing cache key %s", key)
        finally:
            self.pending_refreshes.discard(key)

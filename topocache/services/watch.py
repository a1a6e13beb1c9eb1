"""Change watches that invalidate cached topology levels."""
import asyncio
import logging
from typing import Dict, List, Optional, Protocol, Tuple
from topocache.errors import CacheError
from topocache.models.schemas import ChangeEvent
from topocache.services.instance import Level
from topocache.services.observer import WatchObserver
from topocache.services.topology import TopologyCache

logger = logging.getLogger(__name__)

# Objects that are watched no matter what the mainline model looks like.
STANDARD_WATCHES = (Level.BUSINESS.value, Level.SET.value, Level.MODULE.value)

# How long stop_watch waits for a loop to notice its notifier before cancelling it.
STOP_GRACE_SECONDS = 1.0


class ChangeEventSource(Protocol):
    """Ordered change events of one object, addressed by cursor."""

    async def latest_cursor(self, obj_id: str) -> Optional[str]: ...

    async def events_after(
        self,
        obj_id: str,
        cursor: Optional[str],
        limit: int,
    ) -> Tuple[List[ChangeEvent], Optional[str]]: ...


class Watcher:
    """
    Runs one watch task per object and keeps the set of watches in line
    with the mainline model.

    Each task polls the change events of its object and drops the expiry
    key of every (business, level) an event touches.
    """

    def __init__(
        self,
        observer: WatchObserver,
        events: ChangeEventSource,
        topology: TopologyCache,
        poll_interval: float = 1.0,
        limit: int = 200,
    ):
        self.observer = observer
        self.events = events
        self.topology = topology
        self.poll_interval = poll_interval
        self.limit = limit
        self._tasks: Dict[str, asyncio.Task] = {}

    async def start_watch(self, obj_id: str) -> bool:
        """Start watching obj_id; False when it is already watched."""
        if self.observer.exist(obj_id):
            return False
        stop_notifier = asyncio.Event()
        self.observer.add(obj_id, stop_notifier)
        self._tasks[obj_id] = asyncio.create_task(self._watch(obj_id, stop_notifier))
        logger.info("start watching %s", obj_id)
        return True

    async def stop_watch(self, obj_id: str) -> bool:
        """Stop the watch of obj_id; False when nothing was watching it."""
        stop_notifier = self.observer.delete(obj_id)
        task = self._tasks.pop(obj_id, None)
        if stop_notifier is None:
            return False

        stop_notifier.set()
        if task is not None:
            _, pending = await asyncio.wait({task}, timeout=STOP_GRACE_SECONDS)
            if pending:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        logger.info("stop watching %s", obj_id)
        return True

    def list_watched_objects(self) -> List[str]:
        return sorted(self.observer.get_all_objects())

    async def reconcile(self) -> Tuple[List[str], List[str]]:
        """
        Watch the standard levels plus every custom level in the mainline,
        and nothing else.

        The mainline model is reloaded on every pass, so a new or removed
        custom level is picked up within one reconcile interval rather than
        after mainline_cache_ttl.

        Returns the objects started and stopped.
        """
        desired = set(STANDARD_WATCHES) | set(await self.topology.custom_objects(reload=True))
        current = set(self.observer.get_all_objects())

        started = [obj_id for obj_id in sorted(desired - current) if await self.start_watch(obj_id)]
        stopped = [obj_id for obj_id in sorted(current - desired) if await self.stop_watch(obj_id)]
        return started, stopped

    async def run_reconcile(self, interval: float, stop: asyncio.Event):
        """Reconcile every interval seconds until stop is set."""
        while not stop.is_set():
            try:
                await self.reconcile()
            except CacheError as err:
                logger.warning("reconcile watches failed: %s", err)
            except Exception:
                logger.exception("reconcile watches failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def close(self):
        """Stop every running watch."""
        for obj_id in self.observer.get_all_objects():
            await self.stop_watch(obj_id)

    async def _watch(self, obj_id: str, stop_notifier: asyncio.Event):
        cursor: Optional[str] = None
        positioned = False
        while not stop_notifier.is_set():
            more = False
            try:
                if not positioned:
                    cursor = await self.events.latest_cursor(obj_id)
                    positioned = True
                events, next_cursor = await self.events.events_after(obj_id, cursor, self.limit)
                for event in events:
                    await self._handle(event)
                cursor = next_cursor
                more = len(events) >= self.limit
            except CacheError as err:
                logger.warning("watch %s: %s", obj_id, err)
            except Exception:
                logger.exception("watch %s failed", obj_id)

            # A full page means more events are already waiting
            if more:
                continue
            try:
                await asyncio.wait_for(stop_notifier.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _handle(self, event: ChangeEvent):
        if event.biz_id is None:
            logger.warning("event %s of %s has no business id", event.cursor, event.obj_id)
            return

        if event.obj_id in STANDARD_WATCHES:
            await self.topology.invalidate(event.biz_id, Level(event.obj_id))
        else:
            await self.topology.invalidate(event.biz_id, Level.CUSTOM, event.obj_id)

        if event.obj_id == Level.BUSINESS.value and event.event_type == "delete":
            await self.topology.invalidate_business(event.biz_id)

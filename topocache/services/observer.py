"""Registry of the change watches that are currently running."""
import asyncio
import threading
from typing import Dict, List, Optional


class WatchObserver:
    """
    Maps a watched object id to the stop notifier of its watch.

    Every operation holds the lock only for the dict access.
    """

    def __init__(self):
        self._observer: Dict[str, asyncio.Event] = {}
        self._lock = threading.Lock()

    def add(self, obj_id: str, stop_notifier: asyncio.Event):
        """Register a watch; replaces any notifier already stored for obj_id."""
        with self._lock:
            self._observer[obj_id] = stop_notifier

    def exist(self, obj_id: str) -> bool:
        with self._lock:
            return obj_id in self._observer

    def delete(self, obj_id: str) -> Optional[asyncio.Event]:
        """Remove obj_id and return its notifier, or None when it was not watched."""
        with self._lock:
            return self._observer.pop(obj_id, None)

    def get_all_objects(self) -> List[str]:
        with self._lock:
            return list(self._observer)

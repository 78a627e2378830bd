"""Routes watch events to the object cache and the work queue."""
import asyncio
import copy
import logging
from enum import Enum
from typing import Dict, Iterable, NamedTuple, Optional
from redop.common.models.labels import Labels
from redop.controller.queue import WorkQueue
from redop.types.settings import Settings

logger = logging.getLogger(__name__)


class WatchEventType(str, Enum):
    ADDED = "ADDED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"


class Collection(str, Enum):
    DATABASE = "database"
    SECRET = "secret"


class WatchEvent(NamedTuple):
    type: WatchEventType
    collection: Collection
    obj: Dict


def object_key(obj: Dict) -> str:
    meta = obj["metadata"]
    return f"{meta.get('namespace') or ''}/{meta['name']}"


class ObjectCache:
    """Last observed state of every Redis object, keyed by `namespace/name`."""

    def __init__(self) -> None:
        self._objects: Dict[str, Dict] = {}

    def get(self, key: str) -> Optional[Dict]:
        """Return a private copy; callers may mutate it freely."""
        obj = self._objects.get(key)
        return copy.deepcopy(obj) if obj is not None else None

    def set(self, key: str, obj: Dict) -> None:
        self._objects[key] = copy.deepcopy(obj)

    def delete(self, key: str) -> None:
        self._objects.pop(key, None)

    def keys(self) -> Iterable[str]:
        return list(self._objects.keys())

    def __contains__(self, key: str) -> bool:
        return key in self._objects

    def __len__(self) -> int:
        return len(self._objects)


class WatchDispatcher:
    """Consumes watch events from a channel and enqueues the affected Redis keys."""

    def __init__(self, queue: WorkQueue, cache: ObjectCache, conf: Settings = None):
        self.queue = queue
        self.cache = cache
        self.conf = conf or Settings()
        self.events: asyncio.Queue = asyncio.Queue()
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def submit(self, event: WatchEvent) -> bool:
        """Hand an event to the dispatcher. Events after `stop()` are dropped."""
        if self._stopped:
            logger.debug(f"Dispatcher stopped, dropping {event.type.value} event")
            return False
        self.events.put_nowait(event)
        return True

    async def run(self) -> None:
        while True:
            event = await self.events.get()
            if event is None or self._stopped:
                return
            try:
                self.dispatch(event)
            except Exception as e:
                logger.error(f"Failed to dispatch {event.type.value} event: {e}")
                logger.exception(e)

    def dispatch(self, event: WatchEvent) -> None:
        if event.collection == Collection.DATABASE:
            key = object_key(event.obj)
            if event.type == WatchEventType.DELETED:
                self.cache.delete(key)
            else:
                self.cache.set(key, event.obj)
            self.queue.add(key)
        elif event.collection == Collection.SECRET:
            if event.type == WatchEventType.DELETED:
                return
            meta = event.obj.get("metadata", {})
            db_name = Labels.database_name_for(meta.get("labels"))
            if db_name is None:
                return
            self.queue.add(f"{meta.get('namespace') or ''}/{db_name}")

    def resync(self) -> None:
        """Enqueue every known Redis."""
        keys = self.cache.keys()
        logger.debug(f"Resyncing {len(keys)} Redis objects")
        for key in keys:
            self.queue.add(key)

    async def resync_periodically(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.conf.resync_period_seconds)
            if not self._stopped:
                self.resync()

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self.events.put_nowait(None)

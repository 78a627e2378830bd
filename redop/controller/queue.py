"""Rate-limited work queue of Redis keys.

A key (`namespace/name`) sits in the queue at most once and is handed to at
most one worker at a time. A key added while a worker holds it is marked dirty
and redelivered once the worker calls `done`.
"""
import asyncio
import time
import logging
from typing import Dict, Optional, Set
from redop.types.settings import Settings
from redop.sensors import OperatorSensor

logger = logging.getLogger(__name__)


def _split(key: str):
    namespace, _, name = key.rpartition("/")
    return name, namespace


class WorkQueue:
    """De-duplicating queue with per-key exponential backoff."""

    def __init__(self, conf: Settings = None, sensor: OperatorSensor = None):
        self.conf = conf or Settings()
        self.sensor = sensor
        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty: Set[str] = set()
        self._processing: Set[str] = set()
        self._failures: Dict[str, int] = {}
        self._queued_at: Dict[str, float] = {}
        self._delayed: Dict[str, asyncio.TimerHandle] = {}
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._dirty)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def is_processing(self, key: str) -> bool:
        return key in self._processing

    def add(self, key: str) -> None:
        """Mark `key` as needing a reconcile."""
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._put(key)

    def _put(self, key: str) -> None:
        self._queued_at[key] = time.monotonic()
        self._queue.put_nowait(key)
        if self.sensor:
            name, namespace = _split(key)
            self.sensor.on_reconcile_queued(name, namespace, len(self._dirty))

    async def get(self) -> Optional[str]:
        """Wait for the next key. Returns None once the queue is shut down."""
        key = await self._queue.get()
        if key is None or self._shutting_down:
            # Let the remaining workers see the shutdown too
            self._queue.put_nowait(None)
            return None
        self._dirty.discard(key)
        self._processing.add(key)
        queued_at = self._queued_at.pop(key, None)
        if self.sensor and queued_at is not None:
            name, namespace = _split(key)
            self.sensor.on_reconcile_dequeued(
                name, namespace, time.monotonic() - queued_at
            )
        return key

    def done(self, key: str) -> None:
        """Release `key`; redeliver it if it was added while being processed."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._put(key)

    def add_after(self, key: str, delay: float) -> None:
        """Add `key` once `delay` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        existing = self._delayed.get(key)
        if existing is not None:
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()
        self._delayed[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: str) -> None:
        self._delayed.pop(key, None)
        self.add(key)

    def add_rate_limited(self, key: str, delay: float = None) -> bool:
        """Requeue a failed key with backoff.

        Returns False, without requeueing, once the key used up `max_requeues`.
        An explicit `delay` replaces the computed backoff.
        """
        failures = self._failures.get(key, 0)
        if failures >= self.conf.max_requeues:
            return False
        self._failures[key] = failures + 1
        if delay is None:
            delay = min(
                self.conf.queue_base_delay_seconds * 2**failures,
                self.conf.queue_max_delay_seconds,
            )
        logger.debug(f"Requeueing {key} in {delay:.2f}s (attempt {failures + 1})")
        self.add_after(key, delay)
        return True

    def num_requeues(self, key: str) -> int:
        return self._failures.get(key, 0)

    def forget(self, key: str) -> None:
        """Reset the failure count of `key`."""
        self._failures.pop(key, None)

    def shutdown(self) -> None:
        """Stop accepting keys and wake up every waiting worker."""
        if self._shutting_down:
            return
        self._shutting_down = True
        for handle in self._delayed.values():
            handle.cancel()
        self._delayed.clear()
        self._queue.put_nowait(None)

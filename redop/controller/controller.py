import asyncio
import kopf
import logging
from typing import List, Optional
from redop.controller.dispatcher import WatchDispatcher, WatchEvent
from redop.controller.queue import WorkQueue
from redop.controller.reconciler import LifecycleReconciler, ReconcileResult
from redop.sensors import OperatorSensor
from redop.types.settings import Settings

logger = logging.getLogger(__name__)


class Controller:
    """Owns the work queue, the watch dispatcher and a pool of reconcile workers."""

    def __init__(
        self,
        reconciler: LifecycleReconciler,
        queue: WorkQueue,
        dispatcher: WatchDispatcher,
        conf: Settings = None,
        sensor: OperatorSensor = None,
    ):
        self.reconciler = reconciler
        self.queue = queue
        self.dispatcher = dispatcher
        self.conf = conf or Settings()
        self.sensor = sensor
        self._workers: List[asyncio.Task] = []
        self._background: List[asyncio.Task] = []

    def submit(self, event: WatchEvent) -> bool:
        return self.dispatcher.submit(event)

    async def start(self) -> None:
        self._background = [
            asyncio.create_task(self.dispatcher.run(), name="redop-dispatcher"),
            asyncio.create_task(
                self.dispatcher.resync_periodically(), name="redop-resync"
            ),
        ]
        self._workers = [
            asyncio.create_task(self.worker(i), name=f"redop-worker-{i}")
            for i in range(self.conf.workers)
        ]
        logger.info(f"Controller started with {self.conf.workers} workers")

    async def stop(self) -> None:
        """Stop taking events; workers finish the key they hold, then exit."""
        self.dispatcher.stop()
        self.queue.shutdown()
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers, self._background = [], []
        logger.info("Controller stopped")

    async def worker(self, index: int) -> None:
        while True:
            key = await self.queue.get()
            if key is None:
                logger.debug(f"Worker {index} exiting")
                return
            try:
                await self.process_next_key(key)
            finally:
                self.queue.done(key)

    async def process_next_key(self, key: str) -> Optional[ReconcileResult]:
        """Reconcile `key` once and decide whether and when it comes back."""
        namespace, _, name = key.rpartition("/")
        trigger_source = "retry" if self.queue.num_requeues(key) else "watch"
        cached = self.reconciler.cache.get(key)
        generation = cached["metadata"].get("generation") if cached else None
        sensor_state = None
        if self.sensor:
            sensor_state = self.sensor.on_reconcile_start(
                name, namespace, generation, trigger_source
            )

        result, error = None, None
        try:
            result = await self.reconciler.reconcile(key)
        except kopf.PermanentError as e:
            error = e
            logger.error(f"Giving up on {key}: {e}")
            self.queue.forget(key)
            self._dropped(name, namespace, "permanent_error")
        except kopf.TemporaryError as e:
            error = e
            logger.warning(f"Retrying {key} in {e.delay}s: {e}")
            self._requeue(key, name, namespace, e.delay)
        except Exception as e:
            error = e
            logger.error(f"Failed to reconcile {key}: {e}")
            logger.exception(e)
            self._requeue(key, name, namespace)
        else:
            # PENDING waits for a watch event, not for a retry
            self.queue.forget(key)
        finally:
            if self.sensor:
                self.sensor.on_reconcile_complete(
                    name,
                    namespace,
                    sensor_state,
                    result.value if result else "error",
                    error is None,
                    error,
                )
        return result

    def _requeue(self, key: str, name: str, namespace: str, delay: float = None) -> None:
        if not self.queue.add_rate_limited(key, delay):
            logger.error(
                f"Dropping {key} after {self.conf.max_requeues} failed attempts"
            )
            self.queue.forget(key)
            self._dropped(name, namespace, "max_requeues")

    def _dropped(self, name: str, namespace: str, reason: str) -> None:
        if self.sensor:
            self.sensor.on_reconcile_dropped(name, namespace, reason)

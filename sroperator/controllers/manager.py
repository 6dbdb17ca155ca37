"""
Controller Manager - watch -> work queue -> reconcile -> requeue.

Architecture:
- One watch loop per controller turns store events into object keys
- A per-controller work queue deduplicates keys and guarantees at most one
  in-flight reconcile per key (keys re-added while processing are dirty and
  run again once the current reconcile finishes)
- A bounded pool of workers drains each queue
- Requeue-after results arm a timer per key; a newer event supersedes it
- Raised errors requeue the key with per-key exponential backoff
"""

import asyncio
import time
from typing import Dict, List, Optional, Set, Tuple

from sroperator.core import get_controller_logger, get_logger, reconcile_context
from sroperator.core.config import OperatorSettings, get_settings
from sroperator.services.observability.prometheus import get_registry
from sroperator.services.registry_client import RegistryClientFactory
from sroperator.services.store import Manifest, ResourceStore, WatchEvent, WatchEventType
from sroperator.utils.retry import (
    RECONCILE_ERROR_BACKOFF,
    WATCH_RECONNECT_BACKOFF,
    ItemBackoff,
    calculate_delay,
)
from .common import Reconciler
from .schema_controller import SchemaReconciler
from .schemaversion_controller import SchemaVersionReconciler

logger = get_logger(__name__)

ObjectKey = Tuple[str, str]  # (namespace, name)


class WorkQueue:
    """
    Deduplicating work queue with delayed adds.

    Same contract as a controller-runtime work queue: a key is handed to at
    most one worker at a time, and re-adding a key that is being processed
    only marks it dirty.
    """

    def __init__(self, name: str):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty: Set[ObjectKey] = set()
        self._processing: Set[ObjectKey] = set()
        self._timers: Dict[ObjectKey, asyncio.TimerHandle] = {}
        self._shutdown = False

    def add(self, key: ObjectKey) -> None:
        if self._shutdown:
            return
        self._cancel_timer(key)
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.put_nowait(key)
            self._report_depth()

    def add_after(self, key: ObjectKey, delay: float) -> None:
        if self._shutdown:
            return
        if delay <= 0:
            self.add(key)
            return
        self._cancel_timer(key)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    async def get(self) -> ObjectKey:
        key = await self._queue.get()
        self._processing.add(key)
        self._dirty.discard(key)
        self._report_depth()
        return key

    def done(self, key: ObjectKey) -> None:
        self._processing.discard(key)
        if key in self._dirty:
            self._queue.put_nowait(key)
            self._report_depth()

    def shutdown(self) -> None:
        self._shutdown = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def pending_timer(self, key: ObjectKey) -> bool:
        return key in self._timers

    @property
    def idle(self) -> bool:
        return self._queue.empty() and not self._processing

    def __len__(self) -> int:
        return self._queue.qsize()

    def _fire(self, key: ObjectKey) -> None:
        self._timers.pop(key, None)
        self.add(key)

    def _cancel_timer(self, key: ObjectKey) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    def _report_depth(self) -> None:
        get_registry().set("workqueue_depth", len(self), labels={"name": self.name})


class Controller:
    """Watch loop, work queue and worker pool for one reconciler"""

    def __init__(
        self,
        reconciler: Reconciler,
        store: ResourceStore,
        namespace: str = "",
        workers: int = 1,
    ):
        self.reconciler = reconciler
        self.store = store
        self.namespace = namespace
        self.workers = max(1, workers)
        self.name = reconciler.controller_name
        self.queue = WorkQueue(self.name)
        self.backoff = ItemBackoff(RECONCILE_ERROR_BACKOFF)
        self.log = get_controller_logger(self.name)

        self._tombstones: Dict[ObjectKey, Manifest] = {}
        self._tasks: List[asyncio.Task] = []
        self._watch_connected = False

    @property
    def running(self) -> bool:
        return bool(self._tasks) and all(not t.done() for t in self._tasks)

    @property
    def watch_connected(self) -> bool:
        return self._watch_connected

    def start(self) -> None:
        self._tasks.append(asyncio.create_task(self._watch_loop(), name=f"{self.name}-watch"))
        for i in range(self.workers):
            self._tasks.append(asyncio.create_task(self._worker(), name=f"{self.name}-worker-{i}"))
        self.log.info("Controller started", workers=self.workers)

    async def stop(self) -> None:
        self.queue.shutdown()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.log.info("Controller stopped")

    def enqueue(self, namespace: str, name: str) -> None:
        self.queue.add((namespace, name))

    # ============================================
    # Watch
    # ============================================

    async def _watch_loop(self) -> None:
        attempt = 0
        while True:
            try:
                stream = self.store.watch(self.reconciler.resource, self.namespace or None)
                self._watch_connected = True
                async for event in stream:
                    attempt = 0
                    self.handle_event(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._watch_connected = False
                delay = calculate_delay(attempt, WATCH_RECONNECT_BACKOFF)
                attempt += 1
                self.log.warning(
                    "Watch stream failed, reconnecting",
                    error=str(e),
                    retry_in=round(delay, 2),
                )
                await asyncio.sleep(delay)

    def handle_event(self, event: WatchEvent) -> None:
        key = event.key
        if event.type == WatchEventType.DELETED:
            self._tombstones[key] = event.object
        else:
            self._tombstones.pop(key, None)
        self.queue.add(key)

    # ============================================
    # Workers
    # ============================================

    async def _worker(self) -> None:
        while True:
            key = await self.queue.get()
            try:
                await self._process(key)
            finally:
                self.queue.done(key)

    async def _process(self, key: ObjectKey) -> None:
        namespace, name = key
        tombstone = self._tombstones.pop(key, None)
        metrics = get_registry()
        start = time.monotonic()

        with reconcile_context(self.name, namespace, name):
            try:
                result = await self.reconciler.reconcile(namespace, name, tombstone)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if tombstone is not None:
                    self._tombstones.setdefault(key, tombstone)
                delay = self.backoff.when(key)
                self.log.error(
                    "Reconcile failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    failures=self.backoff.failures(key),
                    retry_in=round(delay, 3),
                )
                metrics.inc("controller_runtime_reconcile_errors_total", labels={"controller": self.name})
                metrics.inc("controller_runtime_reconcile_total", labels={"controller": self.name, "result": "error"})
                self.queue.add_after(key, delay)
                return
            finally:
                metrics.observe(
                    "controller_runtime_reconcile_time_seconds",
                    time.monotonic() - start,
                    labels={"controller": self.name},
                )

            self.backoff.forget(key)
            if result.requeue:
                metrics.inc("controller_runtime_reconcile_total", labels={"controller": self.name, "result": "requeue_after"})
                self.queue.add_after(key, result.requeue_after)
                self.log.debug("Reconciled", requeue_after=result.requeue_after)
            else:
                metrics.inc("controller_runtime_reconcile_total", labels={"controller": self.name, "result": "success"})
                self.log.debug("Reconciled")


class ControllerManager:
    """
    Runs the Schema and SchemaVersion controllers against one store.

    Example:
        manager = ControllerManager.build(store, settings)
        await manager.start()
        ...
        await manager.stop()
    """

    def __init__(self, store: ResourceStore, controllers: List[Controller]):
        self.store = store
        self.controllers = controllers
        self._started = False

    @classmethod
    def build(
        cls,
        store: ResourceStore,
        settings: Optional[OperatorSettings] = None,
        client_factory: Optional[RegistryClientFactory] = None,
    ) -> "ControllerManager":
        settings = settings or get_settings()
        reconcilers = [
            SchemaReconciler(store, settings, client_factory),
            SchemaVersionReconciler(store, settings, client_factory),
        ]
        controllers = [
            Controller(r, store, settings.watch_namespace, settings.max_concurrent_reconciles)
            for r in reconcilers
        ]
        return cls(store, controllers)

    @property
    def started(self) -> bool:
        return self._started and all(c.running for c in self.controllers)

    def controller(self, name: str) -> Controller:
        for c in self.controllers:
            if c.name == name:
                return c
        raise KeyError(name)

    async def start(self) -> None:
        if self._started:
            return
        for c in self.controllers:
            c.start()
        self._started = True
        logger.info("Controller manager started", controllers=[c.name for c in self.controllers])

    async def stop(self) -> None:
        if not self._started:
            return
        for c in self.controllers:
            await c.stop()
        self._started = False
        logger.info("Controller manager stopped")

    async def wait_for_idle(self, timeout: float = 5.0, settle: float = 0.05) -> bool:
        """
        Wait until every queue is drained for two consecutive checks.

        Delayed requeues (timers) are not waited for.
        """
        deadline = time.monotonic() + timeout
        quiet = 0
        while time.monotonic() < deadline:
            if all(c.queue.idle for c in self.controllers):
                quiet += 1
                if quiet >= 2:
                    return True
            else:
                quiet = 0
            await asyncio.sleep(settle)
        return False

    def status(self) -> Dict[str, Dict[str, object]]:
        return {
            c.name: {
                "running": c.running,
                "watch_connected": c.watch_connected,
                "queue_depth": len(c.queue),
                "workers": c.workers,
            }
            for c in self.controllers
        }

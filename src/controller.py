"""
Operator Controller - dispatches reconcile requests to reconciler plugins.

Watches the event bus, turns events into per-identity reconcile requests,
and runs a pool of workers that call the registered reconciler for each
request. The reconciler's ReconcileResult decides what happens next:
forget, requeue now, requeue later, or back off and retry.
"""

import asyncio
import logging
import time
from typing import List, Optional

from config import ControllerConfig
from events import EventBus, ResourceEvent
from plugins import ReconcileAction, ReconcileRequest, ReconcileResult, get_registry
from plugins.reconcilers.base import ReconcilerContext
from plugins.registry import PluginRegistry
from resources import get_controller_of
from store import ResourceStore
from workqueue import WorkQueue

logger = logging.getLogger(__name__)


class Controller:
    """
    Main controller that implements the dispatch side of the control loop.

    The work queue guarantees that a given identity is reconciled by at most
    one worker at a time. Distinct identities are reconciled concurrently, up
    to max_concurrent_reconciles.
    """

    def __init__(
        self,
        store: ResourceStore,
        event_bus: EventBus,
        registry: Optional[PluginRegistry] = None,
        config: Optional[ControllerConfig] = None,
        namespace: Optional[str] = None,
        store_timeout: Optional[float] = None,
    ):
        self.store = store
        self.event_bus = event_bus
        self.registry = registry or get_registry()
        self.config = config or ControllerConfig()
        self.namespace = namespace
        self.running = False

        self.queue = self._new_queue()
        self._ctx = ReconcilerContext(store=store, timeout=store_timeout)
        self._subscriber_id: Optional[str] = None
        self._tasks: List[asyncio.Task] = []
        self._workers: List[asyncio.Task] = []

    def _new_queue(self) -> WorkQueue:
        return WorkQueue(
            base_delay=self.config.backoff_base_delay,
            max_delay=self.config.backoff_max_delay,
            jitter_factor=self.config.backoff_jitter_factor,
        )

    async def start(self):
        """Start the event, resync and worker loops and wait for them."""
        logger.info(
            f"Starting controller for kinds: {', '.join(self.registry.list_kinds())}"
        )
        self.running = True
        # A stopped queue hands out nothing; restarts get a fresh one.
        if self.queue.shutting_down:
            self.queue = self._new_queue()

        self._subscriber_id, subscription = self.event_bus.subscribe(
            self._is_relevant
        )
        self._tasks = [
            asyncio.create_task(self._event_loop(subscription)),
            asyncio.create_task(self._resync_loop()),
        ]
        self._workers = [
            asyncio.create_task(self._worker(i))
            for i in range(self.config.max_concurrent_reconciles)
        ]

        try:
            await asyncio.gather(*self._tasks, *self._workers)
        except asyncio.CancelledError:
            logger.info("Controller tasks cancelled")

    async def stop(self):
        """
        Stop the controller.

        Workers get shutdown_grace_period seconds to finish in-flight
        reconciles before they are cancelled.
        """
        logger.info("Stopping controller")
        self.running = False
        self.queue.shutdown()

        if self._subscriber_id is not None:
            self.event_bus.unsubscribe(self._subscriber_id)
            self._subscriber_id = None

        for task in self._tasks:
            task.cancel()

        if self._workers:
            _, pending = await asyncio.wait(
                self._workers, timeout=self.config.shutdown_grace_period
            )
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(f"Cancelled {len(pending)} in-flight reconciles")

        self._tasks.clear()
        self._workers.clear()

    def _is_relevant(self, event: ResourceEvent) -> bool:
        if self.namespace and event.namespace != self.namespace:
            return False
        if self.registry.has_reconciler_for_kind(event.kind):
            return True
        return event.kind in self.registry.owned_kinds()

    def requests_for_event(self, event: ResourceEvent) -> List[ReconcileRequest]:
        """
        Map a watch event to the reconcile requests it should trigger.

        Events on a declared kind trigger that resource. Events on an owned
        kind trigger the resource's controlling owner.
        """
        if self.registry.has_reconciler_for_kind(event.kind):
            return [ReconcileRequest(event.kind, event.namespace, event.name)]

        owner = get_controller_of(event.resource_data)
        if owner is not None and self.registry.has_reconciler_for_kind(owner.kind):
            return [ReconcileRequest(owner.kind, event.namespace, owner.name)]
        return []

    async def _event_loop(self, subscription):
        async for event in subscription:
            for request in self.requests_for_event(event):
                logger.debug(
                    f"{event.event_type.value} {event.kind} "
                    f"{event.namespace}/{event.name} -> {request}"
                )
                self.queue.add(request)

    async def _resync_loop(self):
        """Periodically enqueue every declared resource."""
        while self.running:
            try:
                await self.resync()
            except Exception as e:
                logger.error(f"Error during resync: {e}", exc_info=True)
            await asyncio.sleep(self.config.resync_interval)

    async def resync(self) -> int:
        """Enqueue every declared resource of every registered kind."""
        count = 0
        for kind in self.registry.list_kinds():
            records = await self.store.list(
                kind, namespace=self.namespace, timeout=self._ctx.timeout
            )
            for record in records:
                metadata = record.get("metadata") or {}
                self.queue.add(
                    ReconcileRequest(
                        kind, metadata.get("namespace", "default"), metadata["name"]
                    )
                )
                count += 1
        logger.debug(f"Resync enqueued {count} resources")
        return count

    async def _worker(self, worker_id: int):
        while True:
            request = await self.queue.get()
            if request is None:
                return
            try:
                await self.process(request)
            finally:
                self.queue.done(request)

    async def process(self, request: ReconcileRequest) -> ReconcileResult:
        """Reconcile one request and schedule its follow-up."""
        reconciler = self.registry.get_reconciler_for_kind(request.kind)
        if reconciler is None:
            logger.warning(f"No reconciler registered for kind {request.kind}")
            self.queue.forget(request)
            return ReconcileResult.stop()

        start_time = time.monotonic()
        try:
            result = await reconciler.reconcile(request.identity, self._ctx)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error reconciling {request}: {e}", exc_info=True)
            result = ReconcileResult.fail(e)

        duration = time.monotonic() - start_time
        self._handle_result(request, result, duration)
        return result

    def _handle_result(
        self, request: ReconcileRequest, result: ReconcileResult, duration: float
    ) -> None:
        if result.action == ReconcileAction.STOP:
            self.queue.forget(request)
            logger.debug(f"Reconciled {request} in {duration:.3f}s")
        elif result.action == ReconcileAction.REQUEUE:
            self.queue.add(request)
            logger.debug(f"Requeued {request}")
        elif result.action == ReconcileAction.REQUEUE_AFTER:
            self.queue.forget(request)
            self.queue.add_after(request, result.requeue_after)
            logger.debug(f"Requeued {request} after {result.requeue_after}s")
        else:
            delay = self.queue.add_rate_limited(request)
            logger.error(
                f"Failed to reconcile {request}: {result.error} "
                f"(retry {self.queue.num_requeues(request)} in {delay:.1f}s)"
            )

    def trigger_reconciliation(self, kind: str, namespace: str, name: str) -> bool:
        """
        Manually enqueue a reconcile request.

        Returns:
            False if no reconciler handles kind.
        """
        if not self.registry.has_reconciler_for_kind(kind):
            return False
        logger.info(f"Manually triggering reconciliation for {kind} {namespace}/{name}")
        self.queue.add(ReconcileRequest(kind, namespace, name))
        return True

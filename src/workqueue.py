"""
Work Queue - per-identity queue feeding the controller's workers.

Semantics follow the Kubernetes client-go work queue:

* a key added several times before a worker picks it up is handed out once;
* a key is never handed to two workers at once - adding it while it is being
  processed marks it dirty and it is re-queued when the worker calls done();
* delayed adds keep the earliest pending deadline per key;
* rate-limited adds back off exponentially per key until forget().
"""

import asyncio
import logging
import random
from collections import deque
from typing import Deque, Dict, Hashable, Optional, Set, Tuple

logger = logging.getLogger(__name__)

# Exponent cap for the backoff calculation
MAX_BACKOFF_EXPONENT = 10


class WorkQueue:
    """Deduplicating, per-key serialized async work queue."""

    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 600.0,
        jitter_factor: float = 0.1,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_factor = jitter_factor

        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._failures: Dict[Hashable, int] = {}
        self._waiting: Dict[Hashable, Tuple[float, asyncio.TimerHandle]] = {}
        self._not_empty = asyncio.Event()
        self._shutting_down = False

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def add(self, key: Hashable) -> None:
        """Queue a key for processing."""
        if self._shutting_down or key in self._dirty:
            return

        self._dirty.add(key)
        if key in self._processing:
            return

        self._queue.append(key)
        self._not_empty.set()

    def add_after(self, key: Hashable, delay: float) -> None:
        """Queue a key once delay seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return

        loop = asyncio.get_running_loop()
        ready_at = loop.time() + delay
        pending = self._waiting.get(key)
        if pending is not None:
            if pending[0] <= ready_at:
                return
            pending[1].cancel()

        handle = loop.call_later(delay, self._fire, key)
        self._waiting[key] = (ready_at, handle)

    def _fire(self, key: Hashable) -> None:
        self._waiting.pop(key, None)
        self.add(key)

    def backoff_delay(self, key: Hashable) -> float:
        """Delay before the next retry of key, given its failure count."""
        failures = self._failures.get(key, 0)
        delay = min(
            self.base_delay * (2 ** min(failures, MAX_BACKOFF_EXPONENT)),
            self.max_delay,
        )
        return delay * (1 + (random.random() * 2 - 1) * self.jitter_factor)

    def add_rate_limited(self, key: Hashable) -> float:
        """
        Queue a key after its backoff delay and count the failure.

        Returns:
            The delay applied, in seconds.
        """
        delay = self.backoff_delay(key)
        self._failures[key] = self._failures.get(key, 0) + 1
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable) -> None:
        """Clear the failure count of key."""
        self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        """Number of rate-limited adds since the last forget()."""
        return self._failures.get(key, 0)

    async def get(self) -> Optional[Hashable]:
        """
        Wait for the next key and mark it as being processed.

        Returns:
            The key, or None once the queue is shut down.
        """
        while True:
            if self._shutting_down:
                return None
            if self._queue:
                break
            self._not_empty.clear()
            await self._not_empty.wait()

        key = self._queue.popleft()
        self._processing.add(key)
        self._dirty.discard(key)
        return key

    def done(self, key: Hashable) -> None:
        """Mark key as processed; re-queue it if it was added meanwhile."""
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._queue.append(key)
            self._not_empty.set()

    def shutdown(self) -> None:
        """Stop handing out keys and drop pending delayed adds."""
        self._shutting_down = True
        logger.debug(
            f"Work queue shutting down: {len(self._queue)} queued, "
            f"{len(self._waiting)} delayed, {len(self._processing)} in flight"
        )
        for _, handle in self._waiting.values():
            handle.cancel()
        self._waiting.clear()
        self._not_empty.set()

"""
In-process change notifier.

Fans pokes out to asyncio queues, one per subscriber. Useful for:
- Tests that assert a push poked its space
- Single-process deployments that stream pokes to connected clients

Invariants:
    - All subscriptions are lost on process exit
    - A subscriber with a full queue already has a poke pending, so further
      pokes for it are coalesced
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from typing import Optional

logger = logging.getLogger(__name__)


class Subscription:
    """Pokes for one space, as an async iterator.

    Registered on creation, so no poke sent after subscribe() returns is missed.

    Example:
        >>> async with notifier.subscribe("p1") as pokes:
        ...     async for space_id in pokes:
        ...         await pull(space_id)
    """

    def __init__(self, notifier: InMemoryNotifier, space_id: str, max_pending: int) -> None:
        self._notifier = notifier
        self.space_id = space_id
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self.closed = False

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> str:
        if self.closed:
            raise StopAsyncIteration
        return await self.queue.get()

    async def get(self, timeout: Optional[float] = None) -> str:
        """Wait for the next poke."""
        return await asyncio.wait_for(self.queue.get(), timeout)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._notifier._unsubscribe(self)

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class InMemoryNotifier:
    """ChangeNotifier backed by per-space subscriber queues.

    Attributes:
        max_pending: Queue bound per subscriber
    """

    def __init__(self, max_pending: int = 16) -> None:
        self.max_pending = max_pending
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)
        self._poke_counts: Counter[str] = Counter()

    async def notify(self, space_id: str) -> None:
        self._poke_counts[space_id] += 1
        for subscription in list(self._subscribers.get(space_id, ())):
            try:
                subscription.queue.put_nowait(space_id)
            except asyncio.QueueFull:
                logger.debug(f"[{space_id}] Subscriber queue full, poke coalesced")

    def subscribe(self, space_id: str) -> Subscription:
        subscription = Subscription(self, space_id, self.max_pending)
        self._subscribers[space_id].add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.space_id)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.space_id]

    # Testing helpers

    def poke_count(self, space_id: str) -> int:
        """Number of notify() calls for space_id so far."""
        return self._poke_counts[space_id]

    def subscriber_count(self, space_id: str) -> int:
        return len(self._subscribers.get(space_id, ()))

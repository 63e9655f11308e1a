"""
Ordered notification streams.

A NotificationStream fans each published item out to every current
subscriber. Each subscriber owns an unbounded queue, so publishing never
blocks and never drops; subscribers drain at their own pace, in publish
order.
"""

import asyncio
import logging
import uuid
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED: Any = object()


class Subscription(Generic[T]):
    """A subscriber's view of a stream."""

    def __init__(self, stream: 'NotificationStream[T]'):
        self.subscription_id = str(uuid.uuid4())
        self._stream = stream
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        """Number of items waiting to be read."""
        return self._queue.qsize()

    def _push(self, item: Any) -> None:
        if not self._closed:
            self._queue.put_nowait(item)

    def _end(self) -> None:
        if not self._closed:
            self._queue.put_nowait(_CLOSED)
            self._closed = True

    async def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Wait for the next item.

        Returns:
            The item, or None once the stream has ended

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)

        if item is _CLOSED:
            # Leave the marker in place for further readers
            self._queue.put_nowait(_CLOSED)
            return None
        return item  # type: ignore[no-any-return]

    def drain(self) -> List[T]:
        """Take every item currently queued without waiting."""
        items: List[T] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                break
            items.append(item)
        return items

    def unsubscribe(self) -> None:
        self._stream.unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


class NotificationStream(Generic[T]):
    """
    Single-producer, multi-subscriber ordered stream.

    ``publish`` is synchronous so it can be called from inside the short
    critical sections that own state transitions.
    """

    def __init__(self, name: str):
        self._name = name
        self._subscriptions: Dict[str, Subscription[T]] = {}
        self._closed = False
        self._published = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def published_count(self) -> int:
        return self._published

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self) -> Subscription[T]:
        """Create a subscription that receives every item published from now on."""
        subscription: Subscription[T] = Subscription(self)
        if self._closed:
            subscription._end()
        else:
            self._subscriptions[subscription.subscription_id] = subscription
        logger.debug(f"New subscription {subscription.subscription_id} on stream {self._name}")
        return subscription

    def unsubscribe(self, subscription: Subscription[T]) -> bool:
        removed = self._subscriptions.pop(subscription.subscription_id, None)
        if removed is None:
            return False
        removed._end()
        return True

    def publish(self, item: T) -> None:
        """Deliver ``item`` to every subscriber."""
        if self._closed:
            logger.debug(f"Dropping item published on closed stream {self._name}")
            return
        self._published += 1
        for subscription in list(self._subscriptions.values()):
            subscription._push(item)

    def close(self) -> None:
        """End the stream; subscribers finish after draining what is queued."""
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscriptions.values():
            subscription._end()
        self._subscriptions.clear()

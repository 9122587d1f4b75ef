"""Pub/sub transport abstraction.

The RPC core publishes updates through a ``Transport``: anything with
``broadcast``, ``batch_broadcast`` and ``max_batch_size``. Implementations:
- InMemoryTransport: in-process pub/sub, feeds the SSE route and tests
- PusherTransport: Pusher Channels REST API (see ``live_rpc.pusher``)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Coroutine
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 10
UPDATE_EVENT = "update"


class BroadcastItem(BaseModel):
    """One event published on one channel."""

    channel: str
    name: str = UPDATE_EVENT
    data: Any = None


@runtime_checkable
class Transport(Protocol):
    """Publishing capability required by the RPC server."""

    max_batch_size: int

    async def broadcast(self, channel: str, event: str, data: Any) -> None:
        """Publish a single event."""
        ...

    async def batch_broadcast(self, items: list[BroadcastItem]) -> None:
        """Publish several events in one call (at most ``max_batch_size``)."""
        ...


def effective_batch_size(transport: Transport) -> int:
    """Batch size advertised by a transport, falling back to the default."""
    size = getattr(transport, "max_batch_size", None)
    if not isinstance(size, int) or isinstance(size, bool) or size < 1:
        return DEFAULT_MAX_BATCH_SIZE
    return size


# Subscriber callbacks receive the event payload
SubscriberCallback = Callable[[Any], Coroutine[Any, Any, None]]


class InMemoryTransport:
    """In-process transport with channel/event subscriptions.

    Every published item is also appended to ``published`` and each batch
    call to ``batches``, which makes this transport usable as a test double.

    Thread-safe via asyncio.Lock, like the event bus it is modelled on.
    """

    def __init__(self, max_batch_size: int = DEFAULT_MAX_BATCH_SIZE) -> None:
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        self.max_batch_size = max_batch_size
        self.published: list[BroadcastItem] = []
        self.batches: list[list[BroadcastItem]] = []
        self._subscriptions: dict[tuple[str, str], list[SubscriberCallback]] = {}
        self._lock: asyncio.Lock | None = None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the lock (lazy init for event loop safety)."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def broadcast(self, channel: str, event: str, data: Any) -> None:
        item = BroadcastItem(channel=channel, name=event, data=data)
        self.published.append(item)
        logger.debug(f"Broadcast {event} on {channel}")
        await self._deliver(item)

    async def batch_broadcast(self, items: list[BroadcastItem]) -> None:
        if len(items) > self.max_batch_size:
            raise ValueError(
                f"Batch of {len(items)} exceeds max_batch_size {self.max_batch_size}"
            )
        self.batches.append(list(items))
        self.published.extend(items)
        logger.debug(f"Batch broadcast of {len(items)} item(s)")
        for item in items:
            await self._deliver(item)

    async def _deliver(self, item: BroadcastItem) -> None:
        async with self._get_lock():
            callbacks = list(self._subscriptions.get((item.channel, item.name), []))

        for callback in callbacks:
            try:
                await callback(item.data)
            except Exception:
                logger.exception(f"Error in subscriber for {item.channel}/{item.name}")

    async def subscribe(
        self, channel: str, event: str, callback: SubscriberCallback
    ) -> Callable[[], None]:
        """Subscribe to one event on one channel.

        Returns:
            Unsubscribe function
        """
        key = (channel, event)
        async with self._get_lock():
            self._subscriptions.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscriptions.get(key)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._subscriptions[key]

        return unsubscribe

    def subscriber_count(self, channel: str, event: str = UPDATE_EVENT) -> int:
        return len(self._subscriptions.get((channel, event), []))

    async def stream(self, channel: str, event: str = UPDATE_EVENT) -> AsyncIterator[Any]:
        """Yield payloads published on a channel until the consumer stops.

        Usage:
            async for payload in transport.stream(channel):
                yield f"data: {json.dumps(payload)}\\n\\n"
        """
        queue: asyncio.Queue[Any] = asyncio.Queue()

        async def on_event(payload: Any) -> None:
            await queue.put(payload)

        unsubscribe = await self.subscribe(channel, event, on_event)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    def reset(self) -> None:
        """Forget published items and subscriptions (for testing)."""
        self.published.clear()
        self.batches.clear()
        self._subscriptions = {}
        self._lock = None

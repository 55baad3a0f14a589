"""Outbound stream: a producer task writes frames, the SSE response reads them.

The producer (a chat turn or an action execution) runs as its own task and
writes ``StreamEvent``s into an ``OutboundChannel``. The transport consumes
``sse_frames`` until the channel closes. If the consumer goes away first the
producer task is cancelled, which stops the upstream completion read; the
producer's own cancellation handlers persist whatever must survive.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable

from switchyard.models.events import StreamEvent, done, error

logger = logging.getLogger(__name__)

_CLOSED = object()

# Strong references to tasks that must outlive the request that started them.
_background_tasks: set[asyncio.Task] = set()


class OutboundChannel:
    """Ordered event channel for one stream, mirrored to the replay bus."""

    def __init__(self, stream_id: str, event_bus: Any = None, maxsize: int = 0) -> None:
        self.stream_id = stream_id
        self._event_bus = event_bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: StreamEvent) -> None:
        if self._closed:
            logger.debug("Dropping %s on closed stream %s", event.type.value, self.stream_id)
            return
        event.stream_id = self.stream_id
        await self._queue.put(event)
        if self._event_bus is not None:
            await self._event_bus.emit(event)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._queue.put(_CLOSED)
            if self._event_bus is not None:
                await self._event_bus.close(self.stream_id)

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


def sse_frame(event: StreamEvent) -> dict[str, str]:
    """sse-starlette message dict; rendered as ``data: <json>`` + blank line."""
    return {"data": event.to_wire()}


async def _run_producer(channel: OutboundChannel, producer: Awaitable[None]) -> None:
    try:
        await producer
    except asyncio.CancelledError:
        logger.info("Stream %s producer cancelled", channel.stream_id)
        raise
    except Exception:
        logger.exception("Stream %s producer failed", channel.stream_id)
        await channel.send(error("Something went wrong while handling this request."))
        await channel.send(done())
    finally:
        await channel.close()


def keep_alive(task: asyncio.Task) -> asyncio.Task:
    """Hold a reference to ``task`` until it finishes, even if its caller is gone."""
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def start_producer(channel: OutboundChannel, producer: Awaitable[None]) -> asyncio.Task:
    return keep_alive(asyncio.create_task(_run_producer(channel, producer)))


async def sse_frames(
    channel: OutboundChannel, producer: Awaitable[None],
) -> AsyncIterator[dict[str, str]]:
    """Run ``producer`` as a task and yield its frames until the channel closes."""
    task = start_producer(channel, producer)
    try:
        async for event in channel.events():
            yield sse_frame(event)
    finally:
        if not task.done():
            logger.info("Client left stream %s; cancelling producer", channel.stream_id)
            task.cancel()


async def drain(channel: OutboundChannel, producer: Awaitable[None]) -> list[StreamEvent]:
    """Run ``producer`` to completion without a live consumer; return its events."""
    task = start_producer(channel, producer)
    events = [event async for event in channel.events()]
    await task
    return events

"""Event replay bus: Redis Streams copy of every frame sent on a turn or execution.

A client that lost its SSE connection can reconnect to
``/api/events/stream?stream_id=...`` and get the frames it missed, then follow
the live ones. The producer writes an end marker (an entry with an ``end``
field instead of ``data``) when it finishes, after any post-``[DONE]`` frames.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Protocol

import redis.asyncio as aioredis

from switchyard.models.events import StreamEvent

logger = logging.getLogger(__name__)

_STREAM_TTL_SECONDS = 86_400


class EventBus(Protocol):
    """Protocol for event distribution."""

    async def emit(self, event: StreamEvent) -> None: ...

    def subscribe(self, stream_id: str, last_id: str = "0") -> AsyncIterator[StreamEvent]: ...

    async def replay(self, stream_id: str, from_id: str = "0") -> tuple[list[StreamEvent], str, bool]: ...

    async def close(self, stream_id: str) -> None: ...


def _stream_key(stream_id: str) -> str:
    return f"switchyard:stream:{stream_id}"


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


def _is_end(fields: dict) -> bool:
    return bool(fields.get(b"end") or fields.get("end"))


def _event_from_fields(stream_id: str, fields: dict) -> StreamEvent | None:
    raw = fields.get(b"data") or fields.get("data")
    if not raw:
        return None
    event = StreamEvent.model_validate_json(_decode(raw))
    event.stream_id = stream_id
    return event


class RedisEventBus:
    """Event bus backed by Redis Streams (XADD/XREAD/XRANGE)."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def emit(self, event: StreamEvent) -> None:
        """Append the event to its stream. Best effort: failures are logged, not raised."""
        if not event.stream_id:
            return
        key = _stream_key(event.stream_id)
        try:
            await self._redis.xadd(key, {"data": event.model_dump_json(exclude_none=True)})
            await self._redis.expire(key, _STREAM_TTL_SECONDS)
        except Exception as e:
            logger.warning("Could not mirror %s to %s: %s", event.type.value, key, e)

    async def subscribe(
        self, stream_id: str, last_id: str = "0"
    ) -> AsyncIterator[StreamEvent]:
        """Yield events after ``last_id`` (exclusive), blocking on new entries.

        Stops at the end marker.
        """
        key = _stream_key(stream_id)
        current_id = last_id
        while True:
            entries = await self._redis.xread({key: current_id}, block=5000, count=50)
            for _stream_name, messages in entries or []:
                for msg_id, fields in messages:
                    current_id = _decode(msg_id)
                    if _is_end(fields):
                        return
                    event = _event_from_fields(stream_id, fields)
                    if event is not None:
                        yield event

    async def replay(
        self, stream_id: str, from_id: str = "0"
    ) -> tuple[list[StreamEvent], str, bool]:
        """Return events from ``from_id`` (inclusive), the last stream ID, and
        whether the end marker has been written.

        The returned ID is ``"0"`` for an empty stream, suitable for
        passing straight to ``subscribe``.
        """
        key = _stream_key(stream_id)
        entries = await self._redis.xrange(key, min=from_id)
        events = []
        last_id = "0"
        for msg_id, fields in entries:
            last_id = _decode(msg_id)
            if _is_end(fields):
                return events, last_id, True
            event = _event_from_fields(stream_id, fields)
            if event is not None:
                events.append(event)
        return events, last_id, False

    async def close(self, stream_id: str) -> None:
        """Write the end marker for a finished producer."""
        key = _stream_key(stream_id)
        try:
            await self._redis.xadd(key, {"end": "1"})
            await self._redis.expire(key, _STREAM_TTL_SECONDS)
        except Exception as e:
            logger.warning("Could not close %s: %s", key, e)

"""Tests for RedisEventBus: replay cursor, end marker, subscribe from cursor."""

from __future__ import annotations

import asyncio

import pytest

from switchyard.events.bus import RedisEventBus
from switchyard.models.events import StreamEvent, StreamEventType, done, llm_chunk, pending_action, status
from switchyard.orchestrator.stream import OutboundChannel


# ---------------------------------------------------------------------------
# Fake Redis Streams (no real Redis required)
# ---------------------------------------------------------------------------

class _FakeRedis:
    """Minimal Redis Streams fake: XADD, XRANGE, blocking XREAD, EXPIRE."""

    def __init__(self) -> None:
        self._streams: dict[str, list[tuple[str, dict[str, str]]]] = {}
        self._counter = 0
        self._waiters: dict[str, list[asyncio.Queue]] = {}
        self.ttls: dict[str, int] = {}
        self.fail_writes = False

    async def xadd(self, key: str, fields: dict[str, str]) -> str:
        if self.fail_writes:
            raise ConnectionError("redis down")
        self._counter += 1
        msg_id = f"0-{self._counter}"
        self._streams.setdefault(key, []).append((msg_id, fields))
        for q in self._waiters.get(key, []):
            q.put_nowait(True)
        return msg_id

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True

    @staticmethod
    def _seq(msg_id: str) -> int:
        return int(msg_id.split("-")[1]) if "-" in msg_id else int(msg_id)

    async def xrange(self, key: str, min: str = "-", max: str = "+") -> list[tuple[str, dict[str, str]]]:
        entries = self._streams.get(key, [])
        if min in ("0", "-"):
            return entries[:]
        return [(mid, f) for mid, f in entries if self._seq(mid) >= self._seq(min)]

    async def xread(
        self, streams: dict[str, str], block: int = 0, count: int | None = None,
    ) -> list[tuple[str, list[tuple[str, dict[str, str]]]]]:
        result = []
        for key, last_id in streams.items():
            new = [(mid, f) for mid, f in self._streams.get(key, []) if self._seq(mid) > self._seq(last_id)]
            if new:
                result.append((key, new[:count] if count else new))
        if result or block <= 0:
            return result

        key = next(iter(streams))
        q: asyncio.Queue = asyncio.Queue()
        self._waiters.setdefault(key, []).append(q)
        try:
            await asyncio.wait_for(q.get(), timeout=block / 1000)
        except asyncio.TimeoutError:
            return []
        finally:
            self._waiters[key].remove(q)
        return await self.xread(streams, block=0, count=count)


def _event(stream_id: str, event: StreamEvent) -> StreamEvent:
    event.stream_id = stream_id
    return event


@pytest.fixture
def redis() -> _FakeRedis:
    return _FakeRedis()


@pytest.fixture
def bus(redis: _FakeRedis) -> RedisEventBus:
    return RedisEventBus(redis=redis)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# emit() / replay()
# ---------------------------------------------------------------------------


class TestReplay:
    @pytest.mark.asyncio
    async def test_empty_stream(self, bus: RedisEventBus) -> None:
        events, last_id, ended = await bus.replay("s-none")
        assert events == []
        assert last_id == "0"
        assert ended is False

    @pytest.mark.asyncio
    async def test_emit_then_replay(self, bus: RedisEventBus, redis: _FakeRedis) -> None:
        await bus.emit(_event("s-1", status("Running list_repository_files...")))
        await bus.emit(_event("s-1", llm_chunk("Hello")))

        events, last_id, ended = await bus.replay("s-1")
        assert [e.type for e in events] == [StreamEventType.STATUS, StreamEventType.LLM_CHUNK]
        assert events[1].content == "Hello"
        assert events[1].stream_id == "s-1"
        assert last_id == "0-2"
        assert not ended
        assert redis.ttls["switchyard:stream:s-1"] == 86_400

    @pytest.mark.asyncio
    async def test_replay_after_end_marker(self, bus: RedisEventBus) -> None:
        await bus.emit(_event("s-1", done()))
        await bus.emit(_event("s-1", pending_action("a-1", "edit_file", {"file_path": "x"})))
        await bus.close("s-1")

        events, _, ended = await bus.replay("s-1")
        assert [e.type for e in events] == [StreamEventType.DONE, StreamEventType.PENDING_ACTION]
        assert ended

    @pytest.mark.asyncio
    async def test_event_without_stream_id_not_mirrored(self, bus: RedisEventBus, redis: _FakeRedis) -> None:
        await bus.emit(status("orphan"))
        assert redis._streams == {}

    @pytest.mark.asyncio
    async def test_emit_failure_is_swallowed(self, bus: RedisEventBus, redis: _FakeRedis) -> None:
        redis.fail_writes = True
        await bus.emit(_event("s-1", status("x")))
        await bus.close("s-1")


# ---------------------------------------------------------------------------
# subscribe() from replayed cursor
# ---------------------------------------------------------------------------


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_no_gaps_and_stops_at_end_marker(self, bus: RedisEventBus) -> None:
        await bus.emit(_event("s-1", status("1")))
        replayed, cursor, _ = await bus.replay("s-1")

        await bus.emit(_event("s-1", llm_chunk("2")))
        await bus.emit(_event("s-1", done()))
        await bus.emit(_event("s-1", pending_action("a-1", "execute_statement", {"statement": "SELECT 1"})))
        await bus.close("s-1")

        live = [event async for event in bus.subscribe("s-1", last_id=cursor)]

        assert [e.type for e in replayed + live] == [
            StreamEventType.STATUS,
            StreamEventType.LLM_CHUNK,
            StreamEventType.DONE,
            StreamEventType.PENDING_ACTION,
        ]

    @pytest.mark.asyncio
    async def test_subscriber_wakes_on_new_entries(self, bus: RedisEventBus) -> None:
        async def _produce() -> None:
            await asyncio.sleep(0.05)
            await bus.emit(_event("s-2", llm_chunk("late")))
            await bus.close("s-2")

        producer = asyncio.create_task(_produce())
        live = [event async for event in bus.subscribe("s-2")]
        await producer

        assert [e.content for e in live] == ["late"]


# ---------------------------------------------------------------------------
# OutboundChannel mirroring
# ---------------------------------------------------------------------------


class TestChannelMirroring:
    @pytest.mark.asyncio
    async def test_channel_mirrors_frames_and_closes_stream(self, bus: RedisEventBus) -> None:
        channel = OutboundChannel("s-3", event_bus=bus)
        await channel.send(status("Analyzing the pending action..."))
        await channel.send(done())
        await channel.close()

        events, _, ended = await bus.replay("s-3")
        assert [e.type for e in events] == [StreamEventType.STATUS, StreamEventType.DONE]
        assert ended

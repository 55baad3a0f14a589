"""Tests for the outbound channel and SSE frame generation."""

from __future__ import annotations

import asyncio
import json

import pytest

from switchyard.models.events import (
    StreamEventType,
    done,
    llm_chunk,
    pending_action,
    sources,
    status,
)
from switchyard.orchestrator import stream
from switchyard.orchestrator.stream import OutboundChannel, drain, keep_alive, sse_frame, sse_frames


class TestWireFormat:
    def test_done_is_bare_sentinel(self) -> None:
        assert sse_frame(done()) == {"data": "[DONE]"}

    def test_only_type_specific_keys(self) -> None:
        event = llm_chunk("Hello")
        event.stream_id = "s-1"
        assert json.loads(sse_frame(event)["data"]) == {"type": "llm_chunk", "content": "Hello"}

    def test_pending_action_frame(self) -> None:
        frame = json.loads(sse_frame(pending_action("a-1", "execute_statement", {"statement": "SELECT 1"}))["data"])
        assert frame == {
            "type": "pending_action",
            "action_id": "a-1",
            "action_type": "execute_statement",
            "payload": {"statement": "SELECT 1"},
        }

    def test_sources_frame(self) -> None:
        frame = json.loads(sse_frame(sources(["https://example.org"]))["data"])
        assert frame == {"type": "sources", "sources": ["https://example.org"]}


class TestOutboundChannel:
    @pytest.mark.asyncio
    async def test_events_in_order_then_closed(self) -> None:
        channel = OutboundChannel("s-1")
        await channel.send(status("a"))
        await channel.send(llm_chunk("b"))
        await channel.close()

        events = [e async for e in channel.events()]

        assert [e.type for e in events] == [StreamEventType.STATUS, StreamEventType.LLM_CHUNK]
        assert all(e.stream_id == "s-1" for e in events)

    @pytest.mark.asyncio
    async def test_send_after_close_dropped(self) -> None:
        channel = OutboundChannel("s-1")
        await channel.close()
        await channel.send(status("late"))
        await channel.close()

        assert channel.closed
        assert [e async for e in channel.events()] == []


class TestProducers:
    @pytest.mark.asyncio
    async def test_drain_collects_everything(self) -> None:
        channel = OutboundChannel("s-1")

        async def _produce() -> None:
            await channel.send(llm_chunk("hi"))
            await channel.send(done())

        events = await drain(channel, _produce())

        assert [e.type for e in events] == [StreamEventType.LLM_CHUNK, StreamEventType.DONE]
        assert channel.closed

    @pytest.mark.asyncio
    async def test_producer_failure_ends_with_error_then_done(self) -> None:
        channel = OutboundChannel("s-1")

        async def _produce() -> None:
            await channel.send(status("working"))
            raise RuntimeError("boom")

        frames = [frame async for frame in sse_frames(channel, _produce())]

        assert json.loads(frames[1]["data"])["type"] == "error"
        assert "boom" not in frames[1]["data"]
        assert frames[-1] == {"data": "[DONE]"}

    @pytest.mark.asyncio
    async def test_consumer_leaving_cancels_producer(self) -> None:
        channel = OutboundChannel("s-1")
        cancelled = asyncio.Event()

        async def _produce() -> None:
            await channel.send(llm_chunk("first"))
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.set()
                raise

        frames = sse_frames(channel, _produce())
        first = await frames.__anext__()
        await frames.aclose()

        assert json.loads(first["data"])["content"] == "first"
        await asyncio.wait_for(cancelled.wait(), timeout=2)

    @pytest.mark.asyncio
    async def test_kept_alive_task_held_until_done(self) -> None:
        release = asyncio.Event()
        task = keep_alive(asyncio.ensure_future(release.wait()))

        assert task in stream._background_tasks
        release.set()
        await task
        await asyncio.sleep(0)

        assert task not in stream._background_tasks

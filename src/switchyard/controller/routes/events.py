"""SSE replay endpoint for turn and execution streams."""

from __future__ import annotations

from typing import AsyncIterator

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from switchyard.orchestrator.stream import sse_frame

router = APIRouter(tags=["events"])


async def _event_generator(request: Request, stream_id: str) -> AsyncIterator[dict]:
    """Replay a stream's frames from Redis, then follow it until it ends."""
    event_bus = request.app.state.event_bus

    events, last_id, ended = await event_bus.replay(stream_id)
    for event in events:
        yield sse_frame(event)
    if ended:
        return

    # Subscribe from the last replayed ID so frames sent during replay aren't lost
    async for event in event_bus.subscribe(stream_id, last_id=last_id):
        if await request.is_disconnected():
            break
        yield sse_frame(event)


@router.get("/events/stream")
async def event_stream(stream_id: str, request: Request) -> EventSourceResponse:
    return EventSourceResponse(_event_generator(request, stream_id), sep="\n")

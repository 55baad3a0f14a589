"""Chat routes: stream a turn, read the transcript."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Header, Request
from sse_starlette.sse import EventSourceResponse

from switchyard.controller.deps import get_orchestrator, owned_project, require_actor
from switchyard.models.chat import ChatRequest
from switchyard.orchestrator.stream import sse_frames

logger = logging.getLogger(__name__)
router = APIRouter(tags=["chat"])


@router.post("/projects/{project_id}/chat")
async def post_message(
    project_id: str,
    body: ChatRequest,
    request: Request,
    x_user_id: str | None = Header(default=None),
) -> EventSourceResponse:
    """Run one turn and stream its frames; the stream ID allows replay."""
    actor_id = require_actor(x_user_id)
    orchestrator = get_orchestrator(request)
    project = await owned_project(orchestrator, actor_id, project_id)

    channel = orchestrator.open_channel()
    ctx = await orchestrator.open_context(actor_id, project, channel)
    return EventSourceResponse(
        sse_frames(channel, orchestrator.run_turn(ctx, body.message)),
        sep="\n",
        headers={"X-Stream-Id": channel.stream_id},
    )


@router.get("/projects/{project_id}/chat")
async def get_transcript(
    project_id: str,
    request: Request,
    limit: int = 50,
    x_user_id: str | None = Header(default=None),
) -> list[dict]:
    actor_id = require_actor(x_user_id)
    orchestrator = get_orchestrator(request)
    await owned_project(orchestrator, actor_id, project_id)

    turns = await orchestrator.transcript.recent(project_id, limit)
    return [
        {
            "id": turn.id,
            "role": turn.role,
            "content": turn.content,
            "action_id": turn.action_id,
            "created_at": turn.created_at.isoformat() if turn.created_at else None,
        }
        for turn in turns
    ]

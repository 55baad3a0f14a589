"""Pending action routes: list, inspect, confirm."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Header, HTTPException, Request
from sse_starlette.sse import EventSourceResponse

from switchyard.controller.deps import (
    action_to_dict,
    get_orchestrator,
    owned_project,
    require_actor,
)
from switchyard.models.chat import ExecuteActionRequest
from switchyard.orchestrator.service import ChatOrchestrator
from switchyard.orchestrator.stream import drain, sse_frames

logger = logging.getLogger(__name__)
router = APIRouter(tags=["actions"])


async def _load_owned_action(orchestrator: ChatOrchestrator, actor_id: str, action_id: str):
    action = await orchestrator.actions.get(action_id)
    if action is None:
        raise HTTPException(status_code=404, detail="Action not found")
    project = await owned_project(orchestrator, actor_id, action.project_id)
    return action, project


@router.get("/projects/{project_id}/actions")
async def list_actions(
    project_id: str,
    request: Request,
    x_user_id: str | None = Header(default=None),
) -> list[dict]:
    actor_id = require_actor(x_user_id)
    orchestrator = get_orchestrator(request)
    await owned_project(orchestrator, actor_id, project_id)
    actions = await orchestrator.actions.list_for_project(project_id)
    return [action_to_dict(a) for a in actions]


@router.get("/actions/{action_id}")
async def get_action(
    action_id: str,
    request: Request,
    x_user_id: str | None = Header(default=None),
) -> dict:
    actor_id = require_actor(x_user_id)
    action, _project = await _load_owned_action(get_orchestrator(request), actor_id, action_id)
    return action_to_dict(action)


@router.post("/actions/{action_id}/execute", response_model=None)
async def execute_action(
    action_id: str,
    request: Request,
    body: ExecuteActionRequest | None = None,
    x_user_id: str | None = Header(default=None),
) -> EventSourceResponse | dict:
    """Confirm a pending action.

    Safe to retry: only the request that wins the ``pending -> executing``
    transition runs the side effect; the others get a stale-action error.
    """
    actor_id = require_actor(x_user_id)
    orchestrator = get_orchestrator(request)
    _action, project = await _load_owned_action(orchestrator, actor_id, action_id)

    channel = orchestrator.open_channel()
    ctx = await orchestrator.open_context(actor_id, project, channel)

    if body is None or body.stream:
        return EventSourceResponse(
            sse_frames(channel, orchestrator.confirm_action(ctx, action_id)),
            sep="\n",
            headers={"X-Stream-Id": channel.stream_id},
        )

    confirmation = asyncio.ensure_future(orchestrator.confirm_action(ctx, action_id))
    await drain(channel, confirmation)
    if confirmation.exception() is not None:
        return {"success": False, "error": "Execution failed due to an internal error."}
    return confirmation.result().to_dict()

"""Request helpers shared by the API routes."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request

from switchyard.db.models import PendingAction, Project
from switchyard.orchestrator.service import ChatOrchestrator


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.orchestrator


def require_actor(x_user_id: str | None) -> str:
    """The authenticated caller, as forwarded by the platform gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


async def owned_project(orchestrator: ChatOrchestrator, actor_id: str, project_id: str) -> Project:
    project = await orchestrator.projects.get_owned(actor_id, project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def _iso(value: Any) -> str | None:
    return value.isoformat() if value else None


def action_to_dict(action: PendingAction) -> dict[str, Any]:
    return {
        "id": action.id,
        "project_id": action.project_id,
        "action_type": action.action_type,
        "payload": action.payload,
        "status": action.status,
        "result": action.result,
        "error": action.error,
        "created_at": _iso(action.created_at),
        "executed_at": _iso(action.executed_at),
    }

"""Turn graph nodes.

Each node reads the request-scoped TurnContext from
``config["configurable"]["turn"]`` and returns a partial TurnState update.
"""

from __future__ import annotations

import logging
from typing import Any

from langgraph.types import RunnableConfig

from switchyard.models.events import sources, status
from switchyard.models.tools import TOOL_SELECTION_ADAPTER
from switchyard.models.turn_state import TurnState
from switchyard.orchestrator.context import TurnContext
from switchyard.orchestrator.proposals import build_proposal
from switchyard.orchestrator.router import classify
from switchyard.orchestrator.synthesizer import (
    build_request,
    render_action_review,
    select_mode,
    synthesize,
)

logger = logging.getLogger(__name__)


def _turn(config: RunnableConfig) -> TurnContext:
    return config["configurable"]["turn"]


def _selection(state: TurnState) -> Any:
    return TOOL_SELECTION_ADAPTER.validate_python(state["selection"])


async def intake_node(state: TurnState, config: RunnableConfig) -> dict[str, Any]:
    """Load prior context, then persist the user's message."""
    ctx = _turn(config)
    prior = await ctx.transcript.recent(ctx.project_id, ctx.limits["history_turns"])
    history = [{"role": turn.role, "content": turn.content} for turn in prior]
    await ctx.transcript.append(ctx.project_id, "user", state["message"])
    return {"history": history}


async def route_node(state: TurnState, config: RunnableConfig) -> dict[str, Any]:
    ctx = _turn(config)
    selection = await classify(ctx, state["message"], state.get("history", []))
    if selection.tool == "none":
        route = "none"
    elif selection.mutating:
        route = "propose"
    else:
        route = "capability"
    return {"selection": selection.model_dump(), "route": route, "tool_name": selection.tool}


async def capability_node(state: TurnState, config: RunnableConfig) -> dict[str, Any]:
    """Run one read-class capability inline."""
    ctx = _turn(config)
    selection = _selection(state)
    await ctx.emit(status(f"Running {selection.tool}..."))

    result = await ctx.adapters.run(
        selection,
        actor_id=ctx.actor_id,
        project_id=ctx.project_id,
        chain=ctx.chain,
        limits=ctx.limits,
    )
    if result.success and selection.tool == "web_search" and result.data.get("sources"):
        await ctx.emit(sources(result.data["sources"]))
    return {"tool_result": result.to_dict()}


async def propose_node(state: TurnState, config: RunnableConfig) -> dict[str, Any]:
    """Persist a pending action for a mutating selection. Never executes it."""
    ctx = _turn(config)
    selection = _selection(state)
    await ctx.emit(status("Preparing the proposed change..."))
    proposal = await build_proposal(ctx, selection, state.get("history", []))
    return {"proposal": proposal}


async def synthesize_node(state: TurnState, config: RunnableConfig) -> dict[str, Any]:
    ctx = _turn(config)
    mode = select_mode(state)

    trailer = ""
    action_id = None
    payload: dict[str, Any] | None = None
    if mode in ("proposal", "proposal_failure"):
        payload = state["proposal"]
        if mode == "proposal":
            action_id = payload["action_id"]
            trailer = render_action_review(payload["action_type"], payload["payload"])
    elif mode in ("tool_result", "tool_failure"):
        payload = state["tool_result"]

    request = await build_request(
        ctx,
        mode,
        state["message"],
        state.get("history", []),
        tool_name=state.get("tool_name"),
        payload=payload,
    )
    text = await synthesize(ctx, request, trailer=trailer, action_id=action_id)
    return {"response_text": text, "status": "completed"}

"""Intent router: one JSON completion classifies a message into a ToolSelection.

Routing fails open. Anything the router cannot turn into a valid selection
(bad JSON, unknown tool, missing parameters, timeout, provider failure)
becomes ``NoTool`` and the turn continues as plain conversation.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from switchyard.llm.base import CompletionRequest
from switchyard.models.tools import TOOL_SELECTION_ADAPTER, NoTool, ToolSelection
from switchyard.models.turn_state import HistoryMessage
from switchyard.orchestrator.context import TurnContext

logger = logging.getLogger(__name__)

_ROUTER_HISTORY_TURNS = 6
_FENCE_RE = re.compile(r"^\s*```[\w+-]*[ \t]*\n?(.*?)\n?```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove one markdown code fence wrapping the whole text, if present."""
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _candidates(data: Any) -> list[dict[str, Any]]:
    """Flatten the shapes models return: one object, a list, or a ``tools``/``plan`` array."""
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict) and isinstance(data.get("tools"), list):
        items = data["tools"]
    elif isinstance(data, dict) and isinstance(data.get("plan"), list):
        items = data["plan"]
    else:
        items = [data]

    candidates = []
    for item in items:
        if not isinstance(item, dict):
            continue
        if item.get("parameters") is None:
            item = {**item, "parameters": {}}
        candidates.append(item)
    return candidates


def parse_selection(raw: str) -> ToolSelection:
    """Parse router output. Never raises.

    When several candidates parse, the first read-class tool wins; a mutating
    tool is chosen only when no read-class candidate is valid.
    """
    try:
        data = json.loads(strip_code_fences(raw))
    except (json.JSONDecodeError, TypeError):
        logger.info("Router output is not JSON; falling back to no tool: %.200s", raw)
        return NoTool()

    selections: list[ToolSelection] = []
    for candidate in _candidates(data):
        try:
            selections.append(TOOL_SELECTION_ADAPTER.validate_python(candidate))
        except ValidationError as e:
            logger.info("Discarding invalid router candidate %s: %s", candidate.get("tool"), e)

    if not selections:
        return NoTool()
    for selection in selections:
        if selection.tool != "none" and not selection.mutating:
            return selection
    for selection in selections:
        if selection.mutating:
            return selection
    return selections[0]


def _router_messages(message: str, history: list[HistoryMessage]) -> list[dict[str, str]]:
    recent = history[-_ROUTER_HISTORY_TURNS:]
    messages = [{"role": m["role"], "content": m["content"]} for m in recent]
    messages.append({"role": "user", "content": message})
    return messages


async def classify(ctx: TurnContext, message: str, history: list[HistoryMessage]) -> ToolSelection:
    """Classify ``message``; one audit record per call."""
    project = ctx.project
    system_prompt = ctx.composer.compose_system_prompt(
        "router",
        project_context=ctx.composer.build_project_context(
            project.name, project.description, project.repository, project.has_database,
        ),
    )
    request = CompletionRequest(
        role="router",
        system_prompt=system_prompt,
        messages=_router_messages(message, history),
        model=ctx.model_for("router"),
        max_tokens=1024,
        temperature=0.0,
        json_output=True,
    )

    timeout = ctx.limits["router_timeout"]
    raw = ""
    error: str | None = None
    try:
        result = await asyncio.wait_for(ctx.chain.complete(request), timeout=timeout)
        raw = result.text
        selection = parse_selection(raw)
    except asyncio.TimeoutError:
        error = f"Router timed out after {timeout}s"
        logger.warning("%s; continuing without a tool", error)
        selection = NoTool()
    except Exception as e:
        error = f"Router call failed: {e}"
        logger.warning("%s; continuing without a tool", error)
        selection = NoTool()

    logger.info("Routed message for project %s to %s", ctx.project_id, selection.tool)
    await ctx.audit.record(
        actor_id=ctx.actor_id,
        project_id=ctx.project_id,
        tool_name="router",
        tool_input={"message": message},
        tool_output={"selection": selection.model_dump(), "raw": raw[:2000]},
        success=error is None,
        error=error,
    )
    return selection

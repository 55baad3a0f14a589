"""Action proposal builder.

Turns a mutating selection into a persisted ``pending`` action and a
descriptor for the synthesizer. Nothing here touches the target database or
repository; execution happens only through the confirmation endpoint.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from switchyard.llm.base import CompletionRequest
from switchyard.models.actions import ActionType
from switchyard.models.tools import (
    ACTION_TYPE_FOR_TOOL,
    ProposeFileEdit,
    ProposeStatementExecution,
)
from switchyard.models.turn_state import HistoryMessage
from switchyard.orchestrator.context import TurnContext
from switchyard.orchestrator.router import strip_code_fences

logger = logging.getLogger(__name__)

_STATEMENT_HISTORY_TURNS = 4


class ProposalError(Exception):
    """The request could not be turned into an executable payload."""


def _failure(error: str) -> dict[str, Any]:
    return {"success": False, "error": error}


async def draft_statement(ctx: TurnContext, request_text: str, history: list[HistoryMessage]) -> str:
    """One-shot statement_writer completion. The result is a draft for review."""
    context_lines = [
        f"{m['role']}: {m['content'][:2000]}" for m in history[-_STATEMENT_HISTORY_TURNS:]
    ]
    prompt = f"## Request\n\n{request_text}"
    if context_lines:
        prompt = "## Recent conversation\n\n" + "\n\n".join(context_lines) + "\n\n" + prompt

    request = CompletionRequest(
        role="statement_writer",
        system_prompt=ctx.composer.compose_system_prompt("statement_writer"),
        messages=[{"role": "user", "content": prompt}],
        model=ctx.model_for("statement"),
        max_tokens=2048,
        temperature=0.0,
    )
    result = await asyncio.wait_for(
        ctx.chain.complete(request), timeout=ctx.limits["proposal_timeout"],
    )
    statement = strip_code_fences(result.text)
    if not statement:
        raise ProposalError("Could not generate a statement for this request. Try rephrasing it.")
    return statement


async def _payload_for(
    ctx: TurnContext, selection: Any, history: list[HistoryMessage],
) -> dict[str, Any]:
    params = selection.parameters
    if isinstance(selection, ProposeStatementExecution):
        statement = params.statement or await draft_statement(ctx, params.request, history)
        return {"statement": statement.strip(), "request": params.request}

    if isinstance(selection, ProposeFileEdit):
        if not params.file_path or not params.change_description.strip():
            raise ProposalError("A file edit needs both a file path and a description of the change.")
        return {"file_path": params.file_path, "change_description": params.change_description.strip()}

    raise ProposalError(f"{selection.tool} is not a proposal tool")


async def build_proposal(
    ctx: TurnContext, selection: Any, history: list[HistoryMessage],
) -> dict[str, Any]:
    """Persist a pending action for ``selection``; return its descriptor. Never raises."""
    try:
        payload = await _payload_for(ctx, selection, history)
        action_type = ActionType(ACTION_TYPE_FOR_TOOL[selection.tool])
        action = await ctx.actions.create(ctx.project_id, ctx.actor_id, action_type, payload)
        descriptor = {
            "success": True,
            "action_id": action.id,
            "action_type": action_type.value,
            "payload": payload,
            "isPendingAction": True,
        }
    except ProposalError as e:
        descriptor = _failure(str(e))
    except asyncio.TimeoutError:
        descriptor = _failure(
            f"Generating the proposal timed out after {ctx.limits['proposal_timeout']}s."
        )
    except Exception as e:
        logger.exception("Proposal generation failed for %s", selection.tool)
        descriptor = _failure(f"Could not prepare the proposed change: {e}")

    await ctx.audit.record(
        actor_id=ctx.actor_id,
        project_id=ctx.project_id,
        tool_name=selection.tool,
        tool_input=selection.parameters.model_dump(),
        tool_output=descriptor,
        success=descriptor["success"],
        error=descriptor.get("error"),
    )
    return descriptor

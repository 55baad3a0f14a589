"""Response synthesizer: streams the user-facing answer and persists it once.

Deltas are forwarded as ``llm_chunk`` frames in arrival order. The full text is
written to the transcript when the stream ends; on cancellation the partial
text is saved instead, and an upstream failure with nothing streamed saves an
error-describing turn.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any

from switchyard.llm.base import CompletionRequest
from switchyard.llm.prompt import truncate
from switchyard.models.actions import ActionType
from switchyard.models.events import error, llm_chunk
from switchyard.models.turn_state import HistoryMessage, TurnState
from switchyard.orchestrator.context import TurnContext

logger = logging.getLogger(__name__)

_DESTRUCTIVE_RE = re.compile(r"\b(delete|drop|truncate)\b", re.IGNORECASE)
_BACKTICK_RUN_RE = re.compile(r"`+")


def is_destructive(statement: str) -> bool:
    return bool(_DESTRUCTIVE_RE.search(statement))


def _fenced(text: str, lang: str = "") -> str:
    """Fence ``text`` with a backtick run longer than any it contains."""
    longest = max((len(run) for run in _BACKTICK_RUN_RE.findall(text)), default=0)
    fence = "`" * max(3, longest + 1)
    return f"{fence}{lang}\n{text.rstrip()}\n{fence}"


def render_action_review(action_type: str, payload: dict[str, Any]) -> str:
    """Deterministic review block appended after a proposal narration."""
    if action_type == ActionType.EXECUTE_STATEMENT.value:
        statement = payload.get("statement", "")
        lines = [
            "**Proposed statement** (not executed yet):",
            "",
            _fenced(statement, "sql"),
        ]
        if is_destructive(statement):
            lines += [
                "",
                "> ⚠️ **Destructive statement.** It removes data or objects and cannot be "
                "undone. Review it carefully before confirming.",
            ]
    else:
        lines = [
            "**Proposed file edit** (not applied yet):",
            "",
            _fenced(
                f"File: {payload.get('file_path', '')}\n"
                f"Change: {payload.get('change_description', '')}",
                "text",
            ),
        ]
    lines += ["", "Confirm the action to run it, or ignore it to leave everything unchanged."]
    return "\n\n---\n\n" + "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------

def select_mode(state: TurnState) -> str:
    proposal = state.get("proposal")
    if proposal is not None:
        return "proposal" if proposal.get("success") else "proposal_failure"
    tool_result = state.get("tool_result")
    if tool_result is not None:
        return "tool_result" if tool_result.get("success") else "tool_failure"
    return "conversation"


def _as_json(data: Any, max_chars: int) -> str:
    return truncate(json.dumps(data, indent=2, ensure_ascii=False, default=str), max_chars)


def framing(mode: str, tool_name: str | None, payload: dict[str, Any] | None, max_chars: int) -> str:
    """Instruction appended to the user's message for each synthesis mode."""
    payload = payload or {}
    if mode == "tool_result":
        return (
            f"## Tool output ({tool_name})\n\n{_fenced(_as_json(payload.get('data'), max_chars), 'json')}\n\n"
            "Answer the message using this data. Group, summarise and explain it "
            "rather than repeating it verbatim."
        )
    if mode == "tool_failure":
        return (
            f"## Tool failure ({tool_name})\n\n"
            f"The {tool_name} call failed: {payload.get('error') or 'unknown error'}\n\n"
            "Tell the user this integration is unavailable or not configured for the project "
            "and what they can do about it. Do not answer from memory and do not invent data."
        )
    if mode == "proposal":
        return (
            f"## Proposed change ({payload.get('action_type')})\n\n"
            f"{_fenced(_as_json(payload.get('payload'), max_chars), 'json')}\n\n"
            "This change has been saved as a pending action. It has NOT been executed. "
            "Explain briefly what it will do and that it runs only after the user confirms. "
            "The exact payload is shown to the user below your reply, so do not repeat it."
        )
    if mode == "proposal_failure":
        return (
            "## Proposal failed\n\n"
            f"The requested change could not be prepared: {payload.get('error') or 'unknown error'}\n\n"
            "Explain this to the user and suggest how to rephrase the request. "
            "Nothing was changed."
        )
    if mode == "execution_result":
        outcome = "succeeded" if payload.get("success") else "failed"
        return (
            f"## Confirmed action {outcome} ({tool_name})\n\n"
            f"{_fenced(_as_json(payload, max_chars), 'json')}\n\n"
            "Summarise the outcome for the user. If it failed, say so plainly, quote the "
            "error, and explain that a new proposal is needed to try again."
        )
    return ""


async def build_request(
    ctx: TurnContext,
    mode: str,
    message: str,
    history: list[HistoryMessage],
    *,
    tool_name: str | None = None,
    payload: dict[str, Any] | None = None,
) -> CompletionRequest:
    limits = ctx.limits
    notes = [entry.content for entry in await ctx.memory.recent(ctx.project_id, limits["memory_entries"])]
    project = ctx.project
    system_prompt = ctx.composer.compose_system_prompt(
        "synthesizer",
        system_instruction=ctx.settings.system_instruction,
        project_context=ctx.composer.build_project_context(
            project.name, project.description, project.repository, project.has_database,
        ),
        notes=notes,
    )

    addendum = framing(mode, tool_name, payload, limits["max_tool_output_chars"])
    content = f"{message}\n\n{addendum}" if addendum else message
    messages = [{"role": m["role"], "content": m["content"]} for m in history]
    messages.append({"role": "user", "content": content})

    temperature = ctx.settings.temperature
    if temperature is None:
        temperature = limits["synthesis_temperature"]
    return CompletionRequest(
        role="synthesizer",
        system_prompt=system_prompt,
        messages=messages,
        model=ctx.model_for("synthesis"),
        max_tokens=4096,
        temperature=temperature,
    )


async def synthesize(
    ctx: TurnContext,
    request: CompletionRequest,
    *,
    trailer: str = "",
    action_id: str | None = None,
) -> str:
    """Stream the answer to the channel, then persist it as one assistant turn."""
    parts: list[str] = []

    async def _consume() -> None:
        async for delta in ctx.chain.stream(request):
            parts.append(delta)
            await ctx.emit(llm_chunk(delta))

    timeout = ctx.limits["synthesis_timeout"]
    try:
        await asyncio.wait_for(_consume(), timeout=timeout)
    except asyncio.CancelledError:
        partial = "".join(parts)
        if partial:
            logger.info("Synthesis cancelled; saving %d partial chars", len(partial))
            await asyncio.shield(
                ctx.transcript.append(ctx.project_id, "assistant", partial, action_id)
            )
        raise
    except Exception as e:
        if isinstance(e, asyncio.TimeoutError):
            reason = f"the response timed out after {timeout}s"
        else:
            reason = "the language model is unavailable right now"
        logger.warning("Synthesis failed after %d chunks: %r", len(parts), e)
        if not parts:
            parts.append(f"Sorry, I couldn't generate a response because {reason}. Please try again.")
        await ctx.emit(error(f"Response interrupted: {reason}."))

    if trailer:
        parts.append(trailer)
        await ctx.emit(llm_chunk(trailer))

    text = "".join(parts)
    await ctx.transcript.append(ctx.project_id, "assistant", text, action_id)
    return text

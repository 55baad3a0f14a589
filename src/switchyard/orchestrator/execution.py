"""Execution engine: runs a confirmed pending action exactly once.

Order of work for one confirmation:

1. Re-read the action from storage; anything but ``pending`` is rejected.
2. Resolve owner-scoped credentials; a missing integration fails the action
   (``pending -> failed``) without a side effect.
3. Claim it with a compare-and-swap ``pending -> executing``. Losing the
   claim means another request got there first.
4. Run the side effect and the terminal transition in one shielded task, so a
   client disconnect cannot leave the action in ``executing``.
5. Narrate the outcome through the synthesizer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from switchyard.adapters.base import IntegrationError, ToolResult
from switchyard.adapters.database import require_database
from switchyard.adapters.github import require_repository
from switchyard.db.models import PendingAction
from switchyard.llm.base import CompletionRequest
from switchyard.models.actions import ActionType, PendingActionStatus
from switchyard.models.events import done, error, status, step_complete, step_error
from switchyard.orchestrator.context import TurnContext
from switchyard.orchestrator.router import strip_code_fences
from switchyard.orchestrator.stream import keep_alive
from switchyard.orchestrator.synthesizer import build_request, synthesize
from switchyard.vault.credentials import ProjectCredentials

logger = logging.getLogger(__name__)

_INTEGRATION_FOR_ACTION = {
    ActionType.EXECUTE_STATEMENT.value: "Database",
    ActionType.EDIT_FILE.value: "GitHub",
}

_TERMINAL_ATTEMPTS = 3
_TERMINAL_RETRY_DELAY = 0.1


def stale_action_message(current_status: str) -> str:
    return (
        f"Action already processed (status: {current_status}). "
        "Generate a new action to try again."
    )


@dataclass
class ExecutionOutcome:
    success: bool
    message: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "message": self.message}
        return {"success": False, "error": self.error}


class ExecutionEngine:
    """Stateless; all per-request collaborators come from the TurnContext."""

    async def execute(self, ctx: TurnContext, action_id: str) -> ExecutionOutcome:
        await ctx.emit(status("Analyzing the pending action..."))

        action = await ctx.actions.get(action_id)
        if action is None or action.project_id != ctx.project_id:
            return await self._reject(ctx, action_id, "Action not found.")
        if action.status != PendingActionStatus.PENDING.value:
            return await self._reject(ctx, action_id, stale_action_message(action.status))

        tool = action.action_type
        integration = _INTEGRATION_FOR_ACTION.get(tool)
        if integration is None:
            return await self._fail_unclaimed(ctx, action, f"Unsupported action type: {tool}")
        await ctx.emit(status(f"Tool identified: {tool}"))

        try:
            creds = await ctx.adapters.credentials(ctx.actor_id, ctx.project_id, integration)
            if tool == ActionType.EXECUTE_STATEMENT.value:
                require_database(creds)
            else:
                require_repository(creds)
        except IntegrationError as e:
            return await self._fail_unclaimed(ctx, action, str(e))
        await ctx.emit(status(f"{integration} credentials resolved"))

        if not await ctx.actions.transition(
            action.id, PendingActionStatus.PENDING, PendingActionStatus.EXECUTING,
        ):
            current = await ctx.actions.get(action.id)
            return await self._reject(
                ctx, action_id, stale_action_message(current.status if current else "unknown"),
            )

        await ctx.emit(status(f"Executing {tool}..."))
        resolve = keep_alive(asyncio.ensure_future(self._run_and_resolve(ctx, action, creds)))
        result = await asyncio.shield(resolve)

        narrative = await self._narrate(ctx, action, result)
        await ctx.emit(done())
        if result.success:
            return ExecutionOutcome(success=True, message=narrative)
        return ExecutionOutcome(success=False, error=result.error)

    # ------------------------------------------------------------------
    # Rejection paths (no side effect)
    # ------------------------------------------------------------------

    async def _reject(self, ctx: TurnContext, action_id: str, message: str) -> ExecutionOutcome:
        logger.info("Rejected execution of action %s: %s", action_id, message)
        await ctx.audit.record(
            actor_id=ctx.actor_id,
            project_id=ctx.project_id,
            tool_name="execute_action",
            tool_input={"action_id": action_id},
            tool_output={"success": False, "error": message},
            success=False,
            error=message,
        )
        await ctx.emit(error(message))
        await ctx.emit(done())
        return ExecutionOutcome(success=False, error=message)

    async def _fail_unclaimed(
        self, ctx: TurnContext, action: PendingAction, message: str,
    ) -> ExecutionOutcome:
        """Resolve ``pending -> failed`` before any side effect ran."""
        won = await ctx.actions.transition(
            action.id, PendingActionStatus.PENDING, PendingActionStatus.FAILED,
            result={"success": False, "error": message}, error=message,
        )
        if not won:
            current = await ctx.actions.get(action.id)
            return await self._reject(
                ctx, action.id, stale_action_message(current.status if current else "unknown"),
            )

        result = ToolResult.fail(message)
        await ctx.audit.record(
            actor_id=ctx.actor_id,
            project_id=ctx.project_id,
            tool_name=action.action_type,
            tool_input={"action_id": action.id, **action.payload},
            tool_output=result.to_dict(),
            success=False,
            error=message,
        )
        await ctx.emit(step_error(1, action.action_type, message))
        await self._narrate(ctx, action, result)
        await ctx.emit(done())
        return ExecutionOutcome(success=False, error=message)

    # ------------------------------------------------------------------
    # Side effect + terminal transition (shielded)
    # ------------------------------------------------------------------

    async def _run_and_resolve(
        self, ctx: TurnContext, action: PendingAction, creds: ProjectCredentials,
    ) -> ToolResult:
        timeout = ctx.limits["execution_timeout"]
        try:
            result = await asyncio.wait_for(self._perform(ctx, action, creds), timeout=timeout)
        except asyncio.TimeoutError:
            result = ToolResult.fail(f"Execution timed out after {timeout}s")
            await ctx.emit(step_error(1, action.action_type, result.error))
        except Exception as e:
            logger.exception("Action %s raised during execution", action.id)
            result = ToolResult.fail(str(e) or type(e).__name__)
            await ctx.emit(step_error(1, action.action_type, result.error))

        await self._resolve_terminal(ctx, action, result)
        await self._remember(ctx, action, result)

        await ctx.audit.record(
            actor_id=ctx.actor_id,
            project_id=ctx.project_id,
            tool_name=action.action_type,
            tool_input={"action_id": action.id, **action.payload},
            tool_output=result.to_dict(),
            success=result.success,
            error=result.error,
        )
        return result

    async def _resolve_terminal(
        self, ctx: TurnContext, action: PendingAction, result: ToolResult,
    ) -> None:
        """Move ``executing`` to its terminal state, retrying storage failures.

        The side effect has already happened at this point, so a failed UPDATE
        must not leave the action in ``executing``.
        """
        if result.success:
            target, values = PendingActionStatus.EXECUTED, {"result": result.to_dict()}
        else:
            target, values = PendingActionStatus.FAILED, {"result": result.to_dict(), "error": result.error}

        for attempt in range(1, _TERMINAL_ATTEMPTS + 1):
            try:
                await ctx.actions.transition(
                    action.id, PendingActionStatus.EXECUTING, target, **values,
                )
                return
            except Exception:
                logger.exception(
                    "Action %s: recording %s failed (attempt %d/%d)",
                    action.id, target.value, attempt, _TERMINAL_ATTEMPTS,
                )
                if attempt < _TERMINAL_ATTEMPTS:
                    await asyncio.sleep(_TERMINAL_RETRY_DELAY * attempt)
        logger.error("Action %s left in executing after %d attempts", action.id, _TERMINAL_ATTEMPTS)

    async def _remember(self, ctx: TurnContext, action: PendingAction, result: ToolResult) -> None:
        """Leave a project note so later turns know what was run."""
        if action.action_type == ActionType.EXECUTE_STATEMENT.value:
            target = f"statement `{action.payload['statement']}`"
        else:
            target = f"edit of {action.payload['file_path']}"
        if result.success:
            note = f"Executed {target}."
            commit_sha = (result.data or {}).get("commit_sha")
            if commit_sha:
                note += f" Commit {commit_sha}."
        else:
            note = f"Failed {target}: {result.error}"
        try:
            await ctx.memory.add(ctx.project_id, ctx.actor_id, note)
        except Exception:
            logger.exception("Could not save execution note for action %s", action.id)

    async def _perform(
        self, ctx: TurnContext, action: PendingAction, creds: ProjectCredentials,
    ) -> ToolResult:
        if action.action_type == ActionType.EXECUTE_STATEMENT.value:
            result = await ctx.adapters.database.execute(
                creds, action.payload["statement"], max_rows=ctx.limits["max_statement_rows"],
            )
            await self._emit_step(ctx, 1, "execute_statement", result)
            return result
        return await self._edit_file(ctx, action, creds)

    async def _edit_file(
        self, ctx: TurnContext, action: PendingAction, creds: ProjectCredentials,
    ) -> ToolResult:
        """Read (content + sha), rewrite via LLM, write back conditioned on the sha."""
        path = action.payload["file_path"]
        description = action.payload["change_description"]

        current = await ctx.adapters.github.read_file(creds, path, strict=True)
        await self._emit_step(ctx, 1, "read_repository_file", current)
        if not current.success:
            return current

        rewrite = await self._rewrite(ctx, path, current.data["content"], description)
        await self._emit_step(ctx, 2, "file_rewriter", rewrite)
        if not rewrite.success:
            return rewrite

        prefix = ctx.config["repo"]["commit_message_prefix"]
        commit = await ctx.adapters.github.commit_file(
            creds, path, rewrite.data["content"], current.data["sha"],
            message=f"{prefix}{description[:72]}",
        )
        await self._emit_step(ctx, 3, "commit_file_edit", commit)
        if not commit.success:
            return commit
        return ToolResult.ok({**commit.data, "previous_sha": current.data["sha"]})

    async def _rewrite(
        self, ctx: TurnContext, path: str, content: str, description: str,
    ) -> ToolResult:
        request = CompletionRequest(
            role="file_rewriter",
            system_prompt=ctx.composer.compose_system_prompt("file_rewriter"),
            messages=[{
                "role": "user",
                "content": (
                    f"## File: {path}\n\n```\n{content}\n```\n\n"
                    f"## Requested change\n\n{description}"
                ),
            }],
            model=ctx.model_for("rewrite"),
            max_tokens=32768,
            temperature=0.0,
        )
        try:
            result = await ctx.chain.complete(request)
        except Exception as e:
            logger.warning("Rewrite of %s failed: %s", path, e)
            return ToolResult.fail(f"Could not generate the new content for {path}: {e}")

        new_content = strip_code_fences(result.text)
        if not new_content:
            return ToolResult.fail(f"The rewrite of {path} came back empty; nothing was written.")
        if content.endswith("\n") and not new_content.endswith("\n"):
            new_content += "\n"
        if new_content == content:
            return ToolResult.fail(f"The requested change produced no modifications to {path}.")
        return ToolResult.ok({"content": new_content})

    async def _emit_step(self, ctx: TurnContext, step: int, tool: str, result: ToolResult) -> None:
        if result.success:
            await ctx.emit(step_complete(step, tool, True))
        else:
            await ctx.emit(step_error(step, tool, result.error or "Unknown error"))

    # ------------------------------------------------------------------
    # Narration
    # ------------------------------------------------------------------

    async def _narrate(self, ctx: TurnContext, action: PendingAction, result: ToolResult) -> str:
        history = [
            {"role": turn.role, "content": turn.content}
            for turn in await ctx.transcript.recent(ctx.project_id, ctx.limits["history_turns"])
        ]
        request = await build_request(
            ctx,
            "execution_result",
            f"I confirmed the pending action {action.id}.",
            history,
            tool_name=action.action_type,
            payload={"payload": action.payload, **result.to_dict()},
        )
        return await synthesize(ctx, request, action_id=action.id)

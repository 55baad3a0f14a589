"""Tests for the action proposal builder."""

from __future__ import annotations

import pytest

from switchyard.db.stores import AuditLog
from switchyard.models.tools import ProposeFileEdit, ProposeStatementExecution
from switchyard.orchestrator.proposals import build_proposal

from conftest import PROJECT_ID


def _statement(request: str, statement: str | None = None) -> ProposeStatementExecution:
    return ProposeStatementExecution(parameters={"request": request, "statement": statement})


class TestStatementProposal:
    @pytest.mark.asyncio
    async def test_supplied_statement_used_verbatim(self, project, backend, make_context, orchestrator) -> None:
        ctx = await make_context()
        descriptor = await build_proposal(
            ctx, _statement("remove Linus", "DELETE FROM customers WHERE name = 'Linus';"), [],
        )

        assert descriptor["success"] is True
        assert descriptor["isPendingAction"] is True
        assert descriptor["action_type"] == "execute_statement"
        assert descriptor["payload"] == {
            "statement": "DELETE FROM customers WHERE name = 'Linus';",
            "request": "remove Linus",
        }
        assert backend.requests_for("statement_writer") == []

        action = await orchestrator.actions.get(descriptor["action_id"])
        assert action.status == "pending"
        assert action.payload == descriptor["payload"]

    @pytest.mark.asyncio
    async def test_statement_drafted_when_missing(self, project, backend, make_context) -> None:
        backend.script("statement_writer", "```sql\nDELETE FROM customers;\n```")
        ctx = await make_context()
        history = [{"role": "user", "content": "we are resetting the demo data"}]

        descriptor = await build_proposal(ctx, _statement("delete all rows from customers"), history)

        assert descriptor["payload"]["statement"] == "DELETE FROM customers;"
        (request,) = backend.requests_for("statement_writer")
        prompt = request.messages[0]["content"]
        assert "delete all rows from customers" in prompt
        assert "we are resetting the demo data" in prompt

    @pytest.mark.asyncio
    async def test_empty_draft_is_failure_without_action(self, project, backend, make_context, orchestrator) -> None:
        backend.script("statement_writer", "``` ```")
        ctx = await make_context()

        descriptor = await build_proposal(ctx, _statement("do the thing"), [])

        assert descriptor["success"] is False
        assert "Could not generate a statement" in descriptor["error"]
        assert await orchestrator.actions.list_for_project(PROJECT_ID) == []

    @pytest.mark.asyncio
    async def test_draft_timeout(self, project, backend, make_context, orchestrator) -> None:
        backend.delays["statement_writer"] = 1.0
        ctx = await make_context()
        ctx.config["orchestrator"]["proposal_timeout"] = 0.05

        descriptor = await build_proposal(ctx, _statement("add an index"), [])

        assert descriptor == {
            "success": False,
            "error": "Generating the proposal timed out after 0.05s.",
        }
        assert await orchestrator.actions.list_for_project(PROJECT_ID) == []

    @pytest.mark.asyncio
    async def test_provider_failure(self, project, backend, make_context) -> None:
        backend.script("statement_writer", RuntimeError("quota exceeded"))
        ctx = await make_context()

        descriptor = await build_proposal(ctx, _statement("add an index"), [])

        assert descriptor["success"] is False
        assert descriptor["error"]


class TestFileEditProposal:
    @pytest.mark.asyncio
    async def test_edit_deferred_to_execution(self, project, backend, github, make_context) -> None:
        ctx = await make_context()
        selection = ProposeFileEdit(parameters={
            "file_path": "src/app.py", "change_description": " Print a greeting with the user's name ",
        })

        descriptor = await build_proposal(ctx, selection, [])

        assert descriptor["success"] is True
        assert descriptor["action_type"] == "edit_file"
        assert descriptor["payload"] == {
            "file_path": "src/app.py",
            "change_description": "Print a greeting with the user's name",
        }
        # Nothing is read or written until confirmation
        assert github.requests == []
        assert backend.requests == []


class TestProposalAudit:
    @pytest.mark.asyncio
    async def test_success_and_failure_audited(self, project, backend, make_context, session_factory) -> None:
        backend.script("statement_writer", "")
        ctx = await make_context()

        await build_proposal(ctx, _statement("clear it", "DELETE FROM customers"), [])
        await build_proposal(ctx, _statement("do the thing"), [])

        records = await AuditLog(session_factory).list_for_project(PROJECT_ID)
        assert [(r.tool_name, r.status) for r in records] == [
            ("propose_statement_execution", "error"),
            ("propose_statement_execution", "success"),
        ]
        assert records[1].output["action_id"]

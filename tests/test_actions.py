"""Tests for the pending action lifecycle and its compare-and-swap transitions."""

from __future__ import annotations

import asyncio

import pytest

from switchyard.db.stores import ActionStore
from switchyard.models.actions import (
    ActionType,
    InvalidTransition,
    PendingActionStatus,
    check_transition,
)

from conftest import OWNER_ID, PROJECT_ID


# ---------------------------------------------------------------------------
# check_transition
# ---------------------------------------------------------------------------


class TestCheckTransition:
    @pytest.mark.parametrize("target", [PendingActionStatus.EXECUTING, PendingActionStatus.FAILED])
    def test_pending_can_move_forward(self, target: PendingActionStatus) -> None:
        check_transition(PendingActionStatus.PENDING, target)

    def test_pending_cannot_jump_to_executed(self) -> None:
        with pytest.raises(InvalidTransition):
            check_transition(PendingActionStatus.PENDING, PendingActionStatus.EXECUTED)

    @pytest.mark.parametrize("terminal", [PendingActionStatus.EXECUTED, PendingActionStatus.FAILED])
    @pytest.mark.parametrize("target", list(PendingActionStatus))
    def test_terminal_states_are_final(
        self, terminal: PendingActionStatus, target: PendingActionStatus
    ) -> None:
        with pytest.raises(InvalidTransition):
            check_transition(terminal, target)

    def test_executing_cannot_return_to_pending(self) -> None:
        with pytest.raises(InvalidTransition):
            check_transition(PendingActionStatus.EXECUTING, PendingActionStatus.PENDING)

    def test_is_terminal(self) -> None:
        assert PendingActionStatus.EXECUTED.is_terminal
        assert PendingActionStatus.FAILED.is_terminal
        assert not PendingActionStatus.PENDING.is_terminal
        assert not PendingActionStatus.EXECUTING.is_terminal


# ---------------------------------------------------------------------------
# ActionStore.transition
# ---------------------------------------------------------------------------


@pytest.fixture
def actions(session_factory) -> ActionStore:
    return ActionStore(session_factory)


async def _new_action(actions: ActionStore) -> str:
    action = await actions.create(
        PROJECT_ID, OWNER_ID, ActionType.EXECUTE_STATEMENT,
        {"statement": "DELETE FROM customers", "request": "clear customers"},
    )
    return action.id


class TestActionStore:
    @pytest.mark.asyncio
    async def test_create_starts_pending(self, project, actions: ActionStore) -> None:
        action_id = await _new_action(actions)
        action = await actions.get(action_id)
        assert action.status == "pending"
        assert action.payload["statement"] == "DELETE FROM customers"
        assert action.executed_at is None

    @pytest.mark.asyncio
    async def test_executed_action_has_timestamp(self, project, actions: ActionStore) -> None:
        action_id = await _new_action(actions)
        assert await actions.transition(action_id, PendingActionStatus.PENDING, PendingActionStatus.EXECUTING)
        assert await actions.transition(
            action_id, PendingActionStatus.EXECUTING, PendingActionStatus.EXECUTED,
            result={"success": True, "data": {"rowcount": 3}},
        )

        action = await actions.get(action_id)
        assert action.status == "executed"
        assert action.executed_at is not None
        assert action.result["data"]["rowcount"] == 3
        assert action.error is None

    @pytest.mark.asyncio
    async def test_failed_action_carries_error(self, project, actions: ActionStore) -> None:
        action_id = await _new_action(actions)
        await actions.transition(action_id, PendingActionStatus.PENDING, PendingActionStatus.EXECUTING)
        await actions.transition(
            action_id, PendingActionStatus.EXECUTING, PendingActionStatus.FAILED,
            result={"success": False, "error": "no such table: customers"},
            error="no such table: customers",
        )

        action = await actions.get(action_id)
        assert action.status == "failed"
        assert action.error == "no such table: customers"
        assert action.result["success"] is False
        assert action.executed_at is not None

    @pytest.mark.asyncio
    async def test_transition_from_wrong_status_is_lost(self, project, actions: ActionStore) -> None:
        action_id = await _new_action(actions)
        assert await actions.transition(action_id, PendingActionStatus.PENDING, PendingActionStatus.EXECUTING)

        # A second claim sees "executing", not "pending"
        assert not await actions.transition(
            action_id, PendingActionStatus.PENDING, PendingActionStatus.EXECUTING,
        )
        assert (await actions.get(action_id)).status == "executing"

    @pytest.mark.asyncio
    async def test_concurrent_claims_have_one_winner(self, project, actions: ActionStore) -> None:
        action_id = await _new_action(actions)
        results = await asyncio.gather(*[
            actions.transition(action_id, PendingActionStatus.PENDING, PendingActionStatus.EXECUTING)
            for _ in range(5)
        ])
        assert sorted(results) == [False, False, False, False, True]

    @pytest.mark.asyncio
    async def test_invalid_transition_raises_before_touching_storage(
        self, project, actions: ActionStore
    ) -> None:
        action_id = await _new_action(actions)
        with pytest.raises(InvalidTransition):
            await actions.transition(action_id, PendingActionStatus.PENDING, PendingActionStatus.EXECUTED)
        assert (await actions.get(action_id)).status == "pending"

    @pytest.mark.asyncio
    async def test_list_for_project(self, project, actions: ActionStore) -> None:
        first = await _new_action(actions)
        second = await _new_action(actions)
        listed = {a.id for a in await actions.list_for_project(PROJECT_ID)}
        assert listed == {first, second}

"""Stores over the orchestrator's tables.

Each store takes the async session factory and opens one short session per
call, so a store can be shared across concurrent turns.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import sessionmaker

from switchyard.db.models import (
    ChatTurn,
    MemoryEntry,
    PendingAction,
    Project,
    ToolInvocation,
    UserProfile,
)
from switchyard.models.actions import ActionType, PendingActionStatus, check_transition

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class ProjectStore:
    """Read access to platform-owned project and profile rows."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    async def get_owned(self, owner_id: str, project_id: str) -> Project | None:
        """Return the project only if ``owner_id`` owns it."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Project).where(Project.id == project_id, Project.owner_id == owner_id)
            )
            return result.scalar_one_or_none()

    async def get_profile(self, user_id: str) -> UserProfile | None:
        async with self._session_factory() as session:
            result = await session.execute(select(UserProfile).where(UserProfile.id == user_id))
            return result.scalar_one_or_none()


class ChatTranscript:
    """Append-only log of user/assistant turns per project."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    async def append(
        self, project_id: str, role: str, content: str, action_id: str | None = None,
    ) -> ChatTurn:
        if role not in ("user", "assistant"):
            raise ValueError(f"Invalid chat role: {role}")
        turn = ChatTurn(project_id=project_id, role=role, content=content, action_id=action_id)
        async with self._session_factory() as session:
            session.add(turn)
            await session.commit()
            await session.refresh(turn)
        return turn

    async def recent(self, project_id: str, limit: int = 20) -> list[ChatTurn]:
        """Return the last ``limit`` turns, oldest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ChatTurn)
                .where(ChatTurn.project_id == project_id)
                .order_by(ChatTurn.created_at.desc(), ChatTurn.id.desc())
                .limit(limit)
            )
            turns = list(result.scalars().all())
        turns.reverse()
        return turns


class ActionStore:
    """Pending actions with compare-and-swap status transitions."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    async def create(
        self, project_id: str, actor_id: str, action_type: ActionType, payload: dict[str, Any],
    ) -> PendingAction:
        action = PendingAction(
            project_id=project_id,
            actor_id=actor_id,
            action_type=action_type.value,
            payload=payload,
            status=PendingActionStatus.PENDING.value,
        )
        async with self._session_factory() as session:
            session.add(action)
            await session.commit()
            await session.refresh(action)
        logger.info("Created pending action %s (%s) for project %s", action.id, action_type.value, project_id)
        return action

    async def get(self, action_id: str) -> PendingAction | None:
        async with self._session_factory() as session:
            result = await session.execute(select(PendingAction).where(PendingAction.id == action_id))
            return result.scalar_one_or_none()

    async def list_for_project(self, project_id: str, limit: int = 50) -> list[PendingAction]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PendingAction)
                .where(PendingAction.project_id == project_id)
                .order_by(PendingAction.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def transition(
        self,
        action_id: str,
        from_status: PendingActionStatus,
        to_status: PendingActionStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> bool:
        """Move an action from ``from_status`` to ``to_status`` atomically.

        Issues a single conditional UPDATE; returns False when the persisted
        status was no longer ``from_status`` (another request got there first).
        Terminal transitions stamp ``executed_at``.
        """
        check_transition(from_status, to_status)
        values: dict[str, Any] = {"status": to_status.value}
        if result is not None:
            values["result"] = result
        if error is not None:
            values["error"] = error
        if to_status.is_terminal:
            values["executed_at"] = _utcnow()

        async with self._session_factory() as session:
            outcome = await session.execute(
                update(PendingAction)
                .where(
                    PendingAction.id == action_id,
                    PendingAction.status == from_status.value,
                )
                .values(**values)
            )
            await session.commit()

        won = outcome.rowcount == 1
        if won:
            logger.info("Action %s: %s -> %s", action_id, from_status.value, to_status.value)
        else:
            logger.warning(
                "Action %s: transition %s -> %s lost (status changed concurrently)",
                action_id, from_status.value, to_status.value,
            )
        return won


class AuditLog:
    """Write-once record of router, adapter and execution calls."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        *,
        actor_id: str,
        project_id: str | None,
        tool_name: str,
        tool_input: dict[str, Any] | None,
        tool_output: dict[str, Any] | None,
        success: bool,
        error: str | None = None,
    ) -> None:
        """Persist one invocation. Failures are logged, never raised."""
        entry = ToolInvocation(
            actor_id=actor_id,
            project_id=project_id,
            tool_name=tool_name,
            input=tool_input,
            output=tool_output,
            status="success" if success else "error",
            error=error,
        )
        try:
            async with self._session_factory() as session:
                session.add(entry)
                await session.commit()
        except Exception:
            logger.exception("Failed to write audit record for %s", tool_name)

    async def list_for_project(self, project_id: str, limit: int = 100) -> list[ToolInvocation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ToolInvocation)
                .where(ToolInvocation.project_id == project_id)
                .order_by(ToolInvocation.id.desc())
                .limit(limit)
            )
            return list(result.scalars().all())


class MemoryStore:
    """Project notes written by add_memory and read back as synthesis context."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    async def add(self, project_id: str, actor_id: str, content: str) -> MemoryEntry:
        entry = MemoryEntry(project_id=project_id, actor_id=actor_id, content=content)
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()
            await session.refresh(entry)
        return entry

    async def recent(self, project_id: str, limit: int = 10) -> list[MemoryEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MemoryEntry)
                .where(MemoryEntry.project_id == project_id)
                .order_by(MemoryEntry.id.desc())
                .limit(limit)
            )
            entries = list(result.scalars().all())
        entries.reverse()
        return entries

"""Stream events emitted to clients during a chat turn or an action execution."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

DONE_SENTINEL = "[DONE]"


class StreamEventType(str, Enum):
    STATUS = "status"
    LLM_CHUNK = "llm_chunk"
    STEP_COMPLETE = "step_complete"
    STEP_ERROR = "step_error"
    PENDING_ACTION = "pending_action"
    SOURCES = "sources"
    ERROR = "error"
    DONE = "done"


class StreamEvent(BaseModel):
    """One frame on the turn/execution stream.

    Only the fields relevant to ``type`` are set; ``to_wire`` drops the rest
    so every frame is ``{"type": ..., <type-specific keys>}``.
    """

    type: StreamEventType
    message: str | None = None
    content: str | None = None
    step: int | None = None
    tool: str | None = None
    success: bool | None = None
    error: str | None = None
    action_id: str | None = None
    action_type: str | None = None
    payload: dict[str, Any] | None = None
    sources: list[str] | None = None

    stream_id: str = Field(default="", exclude=True)
    timestamp: float = Field(default_factory=time.time, exclude=True)

    def to_wire(self) -> str:
        """JSON body of the ``data:`` line. ``done`` maps to the bare sentinel."""
        if self.type is StreamEventType.DONE:
            return DONE_SENTINEL
        return self.model_dump_json(exclude_none=True)


def status(message: str) -> StreamEvent:
    return StreamEvent(type=StreamEventType.STATUS, message=message)


def llm_chunk(content: str) -> StreamEvent:
    return StreamEvent(type=StreamEventType.LLM_CHUNK, content=content)


def step_complete(step: int, tool: str, success: bool) -> StreamEvent:
    return StreamEvent(type=StreamEventType.STEP_COMPLETE, step=step, tool=tool, success=success)


def step_error(step: int, tool: str, error: str) -> StreamEvent:
    return StreamEvent(type=StreamEventType.STEP_ERROR, step=step, tool=tool, error=error)


def pending_action(action_id: str, action_type: str, payload: dict[str, Any]) -> StreamEvent:
    return StreamEvent(
        type=StreamEventType.PENDING_ACTION,
        action_id=action_id, action_type=action_type, payload=payload,
    )


def sources(urls: list[str]) -> StreamEvent:
    return StreamEvent(type=StreamEventType.SOURCES, sources=urls)


def error(message: str) -> StreamEvent:
    return StreamEvent(type=StreamEventType.ERROR, message=message)


def done() -> StreamEvent:
    return StreamEvent(type=StreamEventType.DONE)

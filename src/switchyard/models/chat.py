"""Request bodies for the chat and action routes."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=20_000)


class ExecuteActionRequest(BaseModel):
    stream: bool = Field(
        default=True,
        description="Stream progress as SSE frames; false returns one JSON envelope.",
    )

"""TurnState: the per-turn data flowing through the turn graph nodes.

LangGraph requires a TypedDict. Only plain data lives here; collaborators
(stores, vault, LLM chain, outbound channel) travel in the request-scoped
TurnContext passed via ``config["configurable"]["turn"]``.
"""

from __future__ import annotations

from typing import Any, TypedDict


class HistoryMessage(TypedDict):
    role: str  # user | assistant
    content: str


class TurnState(TypedDict, total=False):
    # --- Intake ---
    message: str
    history: list[HistoryMessage]

    # --- Routing ---
    selection: dict[str, Any]  # ToolSelection.model_dump()
    route: str  # none | capability | propose

    # --- Capability / proposal output ---
    tool_name: str
    tool_result: dict[str, Any]  # ToolResult envelope
    proposal: dict[str, Any]  # proposal descriptor

    # --- Synthesis ---
    response_text: str
    status: str  # completed | failed | cancelled

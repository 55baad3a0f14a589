"""Conditional edge functions for the turn graph."""

from __future__ import annotations

from switchyard.models.turn_state import TurnState


def after_route(state: TurnState) -> str:
    """Route after classification.

    Returns:
        "capability": read-class tool, run inline
        "propose": mutating tool, build a pending action
        "synthesize": no tool, answer conversationally
    """
    route = state.get("route", "none")
    if route == "capability":
        return "capability"
    if route == "propose":
        return "propose"
    return "synthesize"

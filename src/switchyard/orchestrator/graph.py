"""Turn graph: wires the nodes and conditional edge into a LangGraph StateGraph."""

from __future__ import annotations

from langgraph.graph import END, StateGraph

from switchyard.models.turn_state import TurnState
from switchyard.orchestrator.edges import after_route
from switchyard.orchestrator.nodes import (
    capability_node,
    intake_node,
    propose_node,
    route_node,
    synthesize_node,
)


def build_turn_graph() -> StateGraph:
    """Build the graph for one chat turn.

        Intake → Route ─┬─ (read tool) → Capability ─┐
                        ├─ (mutating)  → Propose ────┼→ Synthesize → END
                        └─ (none) ───────────────────┘

    At most one tool runs per turn; there is no fan-out.
    """
    graph = StateGraph(TurnState)

    graph.add_node("intake", intake_node)
    graph.add_node("route", route_node)
    graph.add_node("capability", capability_node)
    graph.add_node("propose", propose_node)
    graph.add_node("synthesize", synthesize_node)

    graph.set_entry_point("intake")
    graph.add_edge("intake", "route")

    graph.add_conditional_edges(
        "route",
        after_route,
        {"capability": "capability", "propose": "propose", "synthesize": "synthesize"},
    )

    graph.add_edge("capability", "synthesize")
    graph.add_edge("propose", "synthesize")
    graph.add_edge("synthesize", END)

    return graph

"""Completion backend protocol and shared data types."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import AsyncIterator, Protocol


# ---------------------------------------------------------------------------
# Model → provider mapping
# ---------------------------------------------------------------------------

def provider_for_model(model: str) -> str:
    """Return the provider name for a model identifier.

    Falls back to prefix matching if the model is not in the registry.
    """
    from switchyard.config.providers import get_provider_for_model as _get
    provider = _get(model)
    if provider:
        return provider

    if model.startswith("claude"):
        return "anthropic"
    if model.startswith("gemini"):
        return "gemini"

    return "unknown"


@dataclass
class CompletionRequest:
    """One completion call: router, statement_writer, file_rewriter, synthesizer."""

    role: str
    system_prompt: str
    messages: list[dict[str, str]]  # [{"role": "user"|"assistant", "content": ...}]
    model: str = "gemini-2.5-flash"
    max_tokens: int = 4096
    temperature: float = 0.0
    json_output: bool = False

    def with_model(self, model: str) -> CompletionRequest:
        return replace(self, model=model)


@dataclass
class CompletionResult:
    """Result of a non-streaming completion."""

    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0


@dataclass
class SearchResult:
    """Search-grounded completion: synthesized text plus the source URLs."""

    text: str
    sources: list[str] = field(default_factory=list)


class CompletionBackend(Protocol):
    """Protocol for completion backend implementations.

    Every backend exposes a ``name`` so the provider chain can route a
    request to the backend that owns the requested model.
    """

    @property
    def name(self) -> str:
        """Short provider identifier, e.g. ``'anthropic'``, ``'gemini'``."""
        ...

    async def complete(self, request: CompletionRequest) -> CompletionResult: ...

    def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Return an async iterator of text deltas, in arrival order.

        Implementations are async generator functions; callers use::

            async for delta in backend.stream(request):
                ...
        """
        ...


def compute_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """USD cost for a model and token counts; zero for unknown models."""
    from switchyard.config.providers import get_model_config
    cfg = get_model_config(model)
    if cfg is None:
        return 0.0
    return (input_tokens * cfg["cost_input_1m"] + output_tokens * cfg["cost_output_1m"]) / 1_000_000

"""Provider chain: routes completion requests to the right backend with failover.

Every LLM call in a turn goes through a ``ProviderChain``.  The chain:

1. Determines the natural backend from the request's ``model``.
2. Tries it first (each backend handles its own rate-limit retries).
3. On failure, falls through the configured chain order with model
   substitution.

Streams only fail over before the first delta has been yielded; once text
has reached the client a second provider would produce a spliced answer.

The ``BackendRegistry`` holds instantiated backends keyed by provider name.
One registry is built at controller start-up; a turn whose user stored their
own Gemini key gets a copy with that backend swapped in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator

from switchyard.llm.base import (
    CompletionBackend,
    CompletionRequest,
    CompletionResult,
    SearchResult,
    provider_for_model,
)

logger = logging.getLogger(__name__)


DEFAULT_FALLBACK_MODELS: dict[str, str] = {
    "anthropic": "claude-sonnet-4-20250514",
    "gemini": "gemini-2.5-flash",
}


class ProviderUnavailable(RuntimeError):
    """Raised when every provider in the chain failed or none is registered."""


# ---------------------------------------------------------------------------
# Backend registry
# ---------------------------------------------------------------------------


class BackendRegistry:
    """Holds instantiated completion backends keyed by provider name."""

    def __init__(self) -> None:
        self._backends: dict[str, CompletionBackend] = {}

    def register(self, backend: CompletionBackend) -> None:
        """Register a backend under its ``.name``."""
        self._backends[backend.name] = backend

    def get(self, provider: str) -> CompletionBackend | None:
        return self._backends.get(provider)

    def has(self, provider: str) -> bool:
        return provider in self._backends

    def with_override(self, backend: CompletionBackend) -> BackendRegistry:
        """Return a copy with ``backend`` replacing its provider's entry."""
        copy = BackendRegistry()
        copy._backends = {**self._backends, backend.name: backend}
        return copy

    @property
    def providers(self) -> list[str]:
        return list(self._backends.keys())

    def __repr__(self) -> str:
        return f"BackendRegistry(providers={self.providers})"


def build_registry(anthropic_api_key: str = "", gemini_api_key: str = "") -> BackendRegistry:
    """Register a backend for every provider that has a platform key."""
    from switchyard.llm.claude import ClaudeBackend
    from switchyard.llm.gemini import GeminiBackend

    registry = BackendRegistry()
    if gemini_api_key:
        registry.register(GeminiBackend(api_key=gemini_api_key))
    if anthropic_api_key:
        registry.register(ClaudeBackend(api_key=anthropic_api_key))
    logger.info("LLM backends registered: %s", registry.providers or "none")
    return registry


# ---------------------------------------------------------------------------
# Provider chain
# ---------------------------------------------------------------------------


@dataclass
class ProviderChainConfig:
    # Ordered provider names; the first is primary, the rest are fallbacks.
    chain: list[str] = field(default_factory=lambda: ["gemini", "anthropic"])
    fallback_models: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FALLBACK_MODELS))


class ProviderChain:
    """Routes completion requests to backends with automatic failover."""

    def __init__(
        self,
        registry: BackendRegistry,
        config: ProviderChainConfig | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or ProviderChainConfig()

    @property
    def name(self) -> str:
        return "provider_chain"

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        """Complete a request, trying providers in chain order."""
        last_error: Exception | None = None
        for provider_name in self._resolve_order(request.model):
            backend = self.registry.get(provider_name)
            effective = self._adapt_request(request, provider_name)
            try:
                return await backend.complete(effective)
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Provider %s failed for role=%s model=%s: %s; trying next",
                    provider_name, request.role, effective.model, exc,
                )

        raise ProviderUnavailable(
            f"All providers exhausted for role={request.role} model={request.model}. "
            f"Last error: {last_error}"
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Stream deltas from the first provider that produces one."""
        last_error: Exception | None = None
        for provider_name in self._resolve_order(request.model):
            backend = self.registry.get(provider_name)
            effective = self._adapt_request(request, provider_name)
            started = False
            try:
                async for delta in backend.stream(effective):
                    started = True
                    yield delta
                return
            except Exception as exc:
                if started:
                    raise
                last_error = exc
                logger.warning(
                    "Provider %s stream failed for role=%s: %s; trying next",
                    provider_name, request.role, exc,
                )

        raise ProviderUnavailable(
            f"All providers exhausted (stream) for role={request.role}. "
            f"Last error: {last_error}"
        )

    async def search(self, query: str, model: str) -> SearchResult:
        """Run a search-grounded completion on the first backend that supports it."""
        for provider_name in self._resolve_order(model):
            backend = self.registry.get(provider_name)
            search = getattr(backend, "search", None)
            if search is None:
                continue
            return await search(query, self._model_for(model, provider_name))
        raise ProviderUnavailable("No search-capable provider is configured")

    # --- internals --------------------------------------------------------

    def _resolve_order(self, model: str) -> list[str]:
        """Natural provider first, then the configured chain order."""
        natural = provider_for_model(model)
        order: list[str] = []
        if self.registry.has(natural):
            order.append(natural)
        for p in self.config.chain:
            if p not in order and self.registry.has(p):
                order.append(p)
        return order

    def _model_for(self, model: str, target_provider: str) -> str:
        """Return ``model``, or the fallback model when it belongs to another provider."""
        if provider_for_model(model) == target_provider:
            return model
        fallback_model = self.config.fallback_models.get(target_provider)
        if not fallback_model:
            return model
        logger.info("Substituting model %s → %s for provider %s", model, fallback_model, target_provider)
        return fallback_model

    def _adapt_request(self, request: CompletionRequest, target_provider: str) -> CompletionRequest:
        model = self._model_for(request.model, target_provider)
        if model == request.model:
            return request
        return request.with_model(model)

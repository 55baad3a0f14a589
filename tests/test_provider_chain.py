"""Tests for ProviderChain failover and BackendRegistry overrides."""

from __future__ import annotations

import pytest

from switchyard.llm.base import CompletionRequest, CompletionResult, SearchResult
from switchyard.llm.provider_chain import BackendRegistry, ProviderChain, ProviderUnavailable


class _Backend:
    def __init__(self, name: str, text: str = "ok", fail: bool = False, fail_after_first: bool = False) -> None:
        self.name = name
        self.text = text
        self.fail = fail
        self.fail_after_first = fail_after_first
        self.models: list[str] = []

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        self.models.append(request.model)
        if self.fail:
            raise RuntimeError(f"{self.name} down")
        return CompletionResult(text=self.text, model=request.model)

    async def stream(self, request: CompletionRequest):
        self.models.append(request.model)
        if self.fail:
            raise RuntimeError(f"{self.name} down")
        yield self.text
        if self.fail_after_first:
            raise RuntimeError(f"{self.name} dropped the connection")
        yield "."


class _SearchBackend(_Backend):
    async def search(self, query: str, model: str) -> SearchResult:
        self.models.append(model)
        return SearchResult(text=f"results for {query}", sources=["https://example.org"])


def _request(model: str = "gemini-2.5-flash") -> CompletionRequest:
    return CompletionRequest(
        role="router", system_prompt="", messages=[{"role": "user", "content": "hi"}], model=model,
    )


def _chain(*backends) -> ProviderChain:
    registry = BackendRegistry()
    for backend in backends:
        registry.register(backend)
    return ProviderChain(registry)


# ---------------------------------------------------------------------------
# complete()
# ---------------------------------------------------------------------------


class TestComplete:
    @pytest.mark.asyncio
    async def test_natural_provider_first(self) -> None:
        gemini, claude = _Backend("gemini", "from gemini"), _Backend("anthropic", "from claude")
        result = await _chain(gemini, claude).complete(_request("claude-sonnet-4-20250514"))
        assert result.text == "from claude"
        assert gemini.models == []

    @pytest.mark.asyncio
    async def test_failover_substitutes_model(self) -> None:
        gemini, claude = _Backend("gemini", fail=True), _Backend("anthropic", "from claude")

        result = await _chain(gemini, claude).complete(_request("gemini-2.5-pro"))

        assert result.text == "from claude"
        assert gemini.models == ["gemini-2.5-pro"]
        assert claude.models == ["claude-sonnet-4-20250514"]

    @pytest.mark.asyncio
    async def test_all_failed(self) -> None:
        with pytest.raises(ProviderUnavailable, match="anthropic down"):
            await _chain(_Backend("gemini", fail=True), _Backend("anthropic", fail=True)).complete(_request())

    @pytest.mark.asyncio
    async def test_empty_registry(self) -> None:
        with pytest.raises(ProviderUnavailable):
            await _chain().complete(_request())


# ---------------------------------------------------------------------------
# stream()
# ---------------------------------------------------------------------------


class TestStream:
    @pytest.mark.asyncio
    async def test_failover_before_first_delta(self) -> None:
        chain = _chain(_Backend("gemini", fail=True), _Backend("anthropic", "from claude"))
        deltas = [d async for d in chain.stream(_request())]
        assert deltas == ["from claude", "."]

    @pytest.mark.asyncio
    async def test_no_failover_after_first_delta(self) -> None:
        claude = _Backend("anthropic", "never")
        chain = _chain(_Backend("gemini", "partial", fail_after_first=True), claude)
        deltas: list[str] = []

        with pytest.raises(RuntimeError, match="dropped the connection"):
            async for delta in chain.stream(_request()):
                deltas.append(delta)

        assert deltas == ["partial"]
        assert claude.models == []


# ---------------------------------------------------------------------------
# search() and registry overrides
# ---------------------------------------------------------------------------


class TestSearch:
    @pytest.mark.asyncio
    async def test_uses_search_capable_backend(self) -> None:
        gemini = _SearchBackend("gemini")
        result = await _chain(_Backend("anthropic"), gemini).search("python", "claude-sonnet-4-20250514")
        assert result.sources == ["https://example.org"]
        assert gemini.models == ["gemini-2.5-flash"]

    @pytest.mark.asyncio
    async def test_no_search_backend(self) -> None:
        with pytest.raises(ProviderUnavailable, match="search"):
            await _chain(_Backend("anthropic")).search("python", "gemini-2.5-flash")


class TestRegistry:
    def test_with_override_leaves_original(self) -> None:
        platform, personal = _Backend("gemini", "platform"), _Backend("gemini", "personal")
        registry = BackendRegistry()
        registry.register(platform)
        registry.register(_Backend("anthropic"))

        override = registry.with_override(personal)

        assert override.get("gemini") is personal
        assert registry.get("gemini") is platform
        assert override.has("anthropic")

"""Web search capability: one search-grounded completion."""

from __future__ import annotations

import logging

from switchyard.adapters.base import IntegrationError, ToolResult, adapter_boundary
from switchyard.llm.provider_chain import ProviderChain, ProviderUnavailable

logger = logging.getLogger(__name__)


class WebSearchAdapter:
    def __init__(self, timeout: float = 30, model: str = "gemini-2.5-flash") -> None:
        self.timeout = timeout
        self.model = model

    @adapter_boundary("web_search")
    async def search(self, chain: ProviderChain, query: str) -> ToolResult:
        try:
            result = await chain.search(query, self.model)
        except ProviderUnavailable as e:
            raise IntegrationError(f"Web search is not available: {e}") from e
        logger.info("Web search returned %d sources", len(result.sources))
        return ToolResult.ok({"query": query, "answer": result.text, "sources": result.sources})

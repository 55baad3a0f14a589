"""Gemini completion backend using the Google GenAI SDK."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import AsyncIterator

from google import genai
from google.genai import types as genai_types

from switchyard.llm.base import CompletionRequest, CompletionResult, SearchResult, compute_cost

logger = logging.getLogger(__name__)

# Rate limit retry settings
_RATE_LIMIT_MAX_RETRIES = 3
_RATE_LIMIT_BASE_WAIT = 2  # seconds


def _contents(messages: list[dict[str, str]]) -> list[genai_types.Content]:
    """Map chat messages to Gemini contents (``assistant`` becomes ``model``)."""
    return [
        genai_types.Content(
            role="model" if msg["role"] == "assistant" else "user",
            parts=[genai_types.Part.from_text(text=msg["content"])],
        )
        for msg in messages
    ]


def _is_rate_limit(exc: Exception) -> bool:
    error_str = str(exc).lower()
    return "429" in error_str or "resource exhausted" in error_str or "rate" in error_str


def _grounding_sources(response: genai_types.GenerateContentResponse) -> list[str]:
    """Collect unique web source URIs from a grounded response, in order."""
    urls: list[str] = []
    for candidate in response.candidates or []:
        metadata = candidate.grounding_metadata
        if metadata is None:
            continue
        for chunk in metadata.grounding_chunks or []:
            uri = chunk.web.uri if chunk.web else None
            if uri and uri not in urls:
                urls.append(uri)
    return urls


class GeminiBackend:
    """Completion and search backend using the Google GenAI SDK."""

    def __init__(self, api_key: str | None = None) -> None:
        self._api_key = api_key or os.environ.get("GEMINI_API_KEY", "")
        self._client = genai.Client(api_key=self._api_key)

    @property
    def name(self) -> str:
        return "gemini"

    def _config(self, request: CompletionRequest) -> genai_types.GenerateContentConfig:
        return genai_types.GenerateContentConfig(
            system_instruction=request.system_prompt,
            max_output_tokens=request.max_tokens,
            temperature=request.temperature,
            response_mime_type="application/json" if request.json_output else None,
        )

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        response = await self._call_with_retry(
            request.model, _contents(request.messages), self._config(request), request.role,
        )
        input_tokens = output_tokens = 0
        if response.usage_metadata:
            input_tokens = response.usage_metadata.prompt_token_count or 0
            output_tokens = response.usage_metadata.candidates_token_count or 0
        return CompletionResult(
            text=response.text or "",
            model=request.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=compute_cost(request.model, input_tokens, output_tokens),
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Yield text deltas from ``generate_content_stream``."""
        response_stream = await self._client.aio.models.generate_content_stream(
            model=request.model,
            contents=_contents(request.messages),
            config=self._config(request),
        )
        async for chunk in response_stream:
            if chunk.text:
                yield chunk.text

    async def search(self, query: str, model: str) -> SearchResult:
        """One search-grounded completion via the GoogleSearch tool."""
        config = genai_types.GenerateContentConfig(
            tools=[genai_types.Tool(google_search=genai_types.GoogleSearch())],
            temperature=0.0,
        )
        contents = [
            genai_types.Content(role="user", parts=[genai_types.Part.from_text(text=query)]),
        ]
        response = await self._call_with_retry(model, contents, config, "web_search")
        return SearchResult(text=response.text or "", sources=_grounding_sources(response))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call_with_retry(
        self,
        model: str,
        contents: list[genai_types.Content],
        config: genai_types.GenerateContentConfig,
        role: str,
    ) -> genai_types.GenerateContentResponse:
        """Call the Gemini API with linear-backoff rate-limit handling."""
        for attempt in range(_RATE_LIMIT_MAX_RETRIES):
            try:
                return await self._client.aio.models.generate_content(
                    model=model,
                    contents=contents,
                    config=config,
                )
            except Exception as e:
                if not _is_rate_limit(e) or attempt == _RATE_LIMIT_MAX_RETRIES - 1:
                    raise
                wait = _RATE_LIMIT_BASE_WAIT * (attempt + 1)
                logger.warning(
                    "Gemini rate limited [%s] (attempt %d/%d), waiting %ds: %s",
                    role, attempt + 1, _RATE_LIMIT_MAX_RETRIES, wait, e,
                )
                await asyncio.sleep(wait)
        raise RuntimeError("Exhausted rate-limit retries")

"""Claude completion backend using the Anthropic SDK directly."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, AsyncIterator

import anthropic

from switchyard.llm.base import CompletionRequest, CompletionResult, compute_cost

logger = logging.getLogger(__name__)

# Rate limit retry settings. Interactive turns cannot wait minutes, so the
# budget is small and the provider chain fails over after it.
_RATE_LIMIT_MAX_RETRIES = 3
_RATE_LIMIT_BASE_WAIT = 2  # seconds

_JSON_INSTRUCTION = (
    "\n\nRespond with a single JSON object and nothing else: "
    "no prose, no markdown code fences."
)


def _anthropic_messages(messages: list[dict[str, str]]) -> list[dict[str, Any]]:
    """Merge consecutive same-role turns; the Messages API requires alternation."""
    merged: list[dict[str, Any]] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            merged[-1]["content"] += "\n\n" + msg["content"]
        else:
            merged.append({"role": msg["role"], "content": msg["content"]})
    if merged and merged[0]["role"] != "user":
        merged.insert(0, {"role": "user", "content": "(conversation continues)"})
    return merged


class ClaudeBackend:
    """Completion backend using the Anthropic Messages API."""

    def __init__(self, api_key: str | None = None) -> None:
        self._client = anthropic.AsyncAnthropic(
            api_key=api_key or os.environ.get("ANTHROPIC_API_KEY", ""),
        )

    @property
    def name(self) -> str:
        return "anthropic"

    def _system(self, request: CompletionRequest) -> str:
        if request.json_output:
            return request.system_prompt + _JSON_INSTRUCTION
        return request.system_prompt

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        for attempt in range(_RATE_LIMIT_MAX_RETRIES):
            try:
                response = await self._client.messages.create(
                    model=request.model,
                    max_tokens=request.max_tokens,
                    temperature=request.temperature,
                    system=self._system(request),
                    messages=_anthropic_messages(request.messages),
                )
                break
            except anthropic.RateLimitError as e:
                if attempt == _RATE_LIMIT_MAX_RETRIES - 1:
                    raise
                wait = _RATE_LIMIT_BASE_WAIT * (attempt + 1)
                logger.warning(
                    "Rate limited [%s] (attempt %d/%d), waiting %ds: %s",
                    request.role, attempt + 1, _RATE_LIMIT_MAX_RETRIES, wait, e,
                )
                await asyncio.sleep(wait)

        text = "".join(block.text for block in response.content if block.type == "text")
        return CompletionResult(
            text=text,
            model=request.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            cost_usd=compute_cost(
                request.model, response.usage.input_tokens, response.usage.output_tokens,
            ),
        )

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Yield text deltas as the Messages API streams them."""
        async with self._client.messages.stream(
            model=request.model,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
            system=self._system(request),
            messages=_anthropic_messages(request.messages),
        ) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text

"""Capability adapter envelope and boundary.

Every adapter call returns a ``ToolResult``; nothing raised inside an adapter
crosses ``adapter_boundary``. Cancellation still propagates so a dropped
client stops the call.
"""

from __future__ import annotations

import asyncio
import base64
import datetime
import decimal
import functools
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class IntegrationError(Exception):
    """An expected, user-presentable adapter failure (missing link, bad credentials)."""


def not_configured(integration: str) -> IntegrationError:
    return IntegrationError(f"{integration} integration not configured for this project")


def credentials_missing(integration: str) -> IntegrationError:
    return IntegrationError(f"{integration} credentials not found")


@dataclass
class ToolResult:
    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any) -> ToolResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> ToolResult:
        return cls(success=False, error=error or "Unknown error")

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}


def adapter_boundary(tool_name: str) -> Callable[..., Callable[..., Awaitable[ToolResult]]]:
    """Bound an adapter method by ``self.timeout`` and convert exceptions to envelopes."""

    def decorator(fn: Callable[..., Awaitable[ToolResult]]) -> Callable[..., Awaitable[ToolResult]]:
        @functools.wraps(fn)
        async def wrapper(self, *args: Any, **kwargs: Any) -> ToolResult:
            timeout = getattr(self, "timeout", None)
            try:
                return await asyncio.wait_for(fn(self, *args, **kwargs), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("%s timed out after %ss", tool_name, timeout)
                return ToolResult.fail(f"{tool_name} timed out after {timeout}s")
            except IntegrationError as e:
                logger.info("%s unavailable: %s", tool_name, e)
                return ToolResult.fail(str(e))
            except Exception as e:
                logger.exception("%s failed", tool_name)
                return ToolResult.fail(f"{tool_name} failed: {e}")

        return wrapper

    return decorator


def json_safe(value: Any) -> Any:
    """Coerce database values into JSON-serializable equivalents."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [json_safe(v) for v in value]
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return str(value)

"""add_memory capability: saves a project note for later turns."""

from __future__ import annotations

from switchyard.adapters.base import ToolResult, adapter_boundary
from switchyard.db.stores import MemoryStore


class MemoryAdapter:
    def __init__(self, store: MemoryStore, timeout: float = 10) -> None:
        self._store = store
        self.timeout = timeout

    @adapter_boundary("add_memory")
    async def add(self, project_id: str, actor_id: str, content: str) -> ToolResult:
        entry = await self._store.add(project_id, actor_id, content.strip())
        return ToolResult.ok({"memory_id": entry.id, "content": entry.content})

"""TurnContext: request-scoped collaborators for one chat turn or execution.

Built per HTTP request and handed to the turn graph through
``config["configurable"]["turn"]``. Nothing here is shared between requests
except the long-lived stores and adapters it points at.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from switchyard.adapters.capabilities import CapabilityAdapters
from switchyard.db.stores import ActionStore, AuditLog, ChatTranscript, MemoryStore
from switchyard.llm.prompt import PromptComposer
from switchyard.llm.provider_chain import ProviderChain
from switchyard.models.events import StreamEvent
from switchyard.orchestrator.stream import OutboundChannel


@dataclass
class ProjectInfo:
    """What the orchestrator needs to know about the project, without secrets."""

    id: str
    name: str
    description: str | None = None
    repository: str | None = None
    has_database: bool = False


@dataclass
class UserSettings:
    system_instruction: str = ""
    temperature: float | None = None
    ai_model: str | None = None


@dataclass
class TurnContext:
    actor_id: str
    project: ProjectInfo
    settings: UserSettings
    config: dict[str, Any]
    chain: ProviderChain
    adapters: CapabilityAdapters
    actions: ActionStore
    transcript: ChatTranscript
    audit: AuditLog
    memory: MemoryStore
    channel: OutboundChannel
    composer: PromptComposer = field(default_factory=PromptComposer)

    @property
    def project_id(self) -> str:
        return self.project.id

    @property
    def limits(self) -> dict[str, Any]:
        return self.config["orchestrator"]

    def model_for(self, call_site: str) -> str:
        """Model for a call site; the user's chosen model applies to synthesis only."""
        if call_site == "synthesis" and self.settings.ai_model:
            return self.settings.ai_model
        return self.limits[f"{call_site}_model"]

    async def emit(self, event: StreamEvent) -> None:
        await self.channel.send(event)

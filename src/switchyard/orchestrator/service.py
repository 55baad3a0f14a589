"""ChatOrchestrator: builds request contexts and runs turns and confirmations."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from switchyard.adapters.capabilities import CapabilityAdapters
from switchyard.config.defaults import get_config_snapshot
from switchyard.db.models import Project
from switchyard.db.stores import ActionStore, AuditLog, ChatTranscript, MemoryStore, ProjectStore
from switchyard.llm.gemini import GeminiBackend
from switchyard.llm.provider_chain import BackendRegistry, ProviderChain, ProviderChainConfig
from switchyard.models.events import done, error, pending_action
from switchyard.orchestrator.context import ProjectInfo, TurnContext, UserSettings
from switchyard.orchestrator.execution import ExecutionEngine, ExecutionOutcome
from switchyard.orchestrator.graph import build_turn_graph
from switchyard.orchestrator.stream import OutboundChannel
from switchyard.vault.credentials import CredentialDecryptionError

logger = logging.getLogger(__name__)


def new_stream_id() -> str:
    return uuid.uuid4().hex


class ChatOrchestrator:
    """Long-lived collaborators shared by every request in the process."""

    def __init__(
        self,
        *,
        projects: ProjectStore,
        transcript: ChatTranscript,
        actions: ActionStore,
        audit: AuditLog,
        memory: MemoryStore,
        adapters: CapabilityAdapters,
        registry: BackendRegistry,
        event_bus: Any = None,
        user_backend_factory: Any = GeminiBackend,
    ) -> None:
        self.projects = projects
        self.transcript = transcript
        self.actions = actions
        self.audit = audit
        self.memory = memory
        self.adapters = adapters
        self.registry = registry
        self.event_bus = event_bus
        self._user_backend_factory = user_backend_factory
        self._graph = build_turn_graph().compile()
        self._engine = ExecutionEngine()

    def open_channel(self, stream_id: str | None = None) -> OutboundChannel:
        return OutboundChannel(stream_id or new_stream_id(), self.event_bus)

    async def open_context(
        self, actor_id: str, project: Project, channel: OutboundChannel,
    ) -> TurnContext:
        """Snapshot config and user settings; pick the user's own model key if stored."""
        config = get_config_snapshot()
        profile = await self.projects.get_profile(actor_id)
        settings = UserSettings()
        if profile is not None:
            settings = UserSettings(
                system_instruction=profile.system_instruction or "",
                temperature=profile.temperature,
                ai_model=profile.ai_model,
            )

        registry = self.registry
        try:
            user_key = await self.adapters.vault.user_api_key(actor_id)
        except CredentialDecryptionError as e:
            logger.warning("Ignoring undecryptable API key for user %s: %s", actor_id, e)
            user_key = None
        if user_key:
            registry = registry.with_override(self._user_backend_factory(api_key=user_key))

        chain = ProviderChain(
            registry, ProviderChainConfig(chain=list(config["orchestrator"]["provider_chain"])),
        )
        repository = None
        if project.repo_owner and project.repo_name:
            repository = f"{project.repo_owner}/{project.repo_name}"

        return TurnContext(
            actor_id=actor_id,
            project=ProjectInfo(
                id=project.id,
                name=project.name,
                description=project.description,
                repository=repository,
                has_database=bool(project.database_url),
            ),
            settings=settings,
            config=config,
            chain=chain,
            adapters=self.adapters,
            actions=self.actions,
            transcript=self.transcript,
            audit=self.audit,
            memory=self.memory,
            channel=channel,
        )

    async def run_turn(self, ctx: TurnContext, message: str) -> dict[str, Any]:
        """Run one user turn through the graph; ``[DONE]`` then ``pending_action`` last."""
        logger.info("Turn started for project %s (stream %s)", ctx.project_id, ctx.channel.stream_id)
        state: dict[str, Any] = {}
        try:
            state = await self._graph.ainvoke(
                {"message": message},
                config={"configurable": {"turn": ctx}},
            )
        except Exception:
            logger.exception("Turn failed for project %s", ctx.project_id)
            await ctx.emit(error("Something went wrong while handling this message."))

        await ctx.emit(done())
        proposal = state.get("proposal")
        if proposal and proposal.get("success"):
            await ctx.emit(pending_action(
                proposal["action_id"], proposal["action_type"], proposal["payload"],
            ))
        return state

    async def confirm_action(self, ctx: TurnContext, action_id: str) -> ExecutionOutcome:
        logger.info("Confirmation of action %s by %s", action_id, ctx.actor_id)
        return await self._engine.execute(ctx, action_id)

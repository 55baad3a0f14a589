"""FastAPI application factory for the Switchyard controller."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI

from switchyard.adapters.capabilities import CapabilityAdapters
from switchyard.adapters.database import DatabaseAdapter
from switchyard.adapters.github import GitHubAdapter
from switchyard.adapters.memory import MemoryAdapter
from switchyard.adapters.web_search import WebSearchAdapter
from switchyard.config.bootstrap import load_bootstrap_config
from switchyard.config.defaults import DATABASE_DEFAULTS, ORCHESTRATOR_DEFAULTS
from switchyard.db.engine import create_engine, create_session_factory
from switchyard.db.stores import ActionStore, AuditLog, ChatTranscript, MemoryStore, ProjectStore
from switchyard.events.bus import RedisEventBus
from switchyard.llm.provider_chain import build_registry
from switchyard.orchestrator.service import ChatOrchestrator
from switchyard.vault.credentials import CredentialVault, load_vault_key


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage DB + Redis connections and the orchestrator across app lifecycle."""
    cfg = load_bootstrap_config()

    engine = create_engine(cfg.database_url)
    session_factory = create_session_factory(engine)
    redis_client = aioredis.from_url(cfg.redis_url)
    event_bus = RedisEventBus(redis_client)

    audit = AuditLog(session_factory)
    memory = MemoryStore(session_factory)
    timeout = ORCHESTRATOR_DEFAULTS["adapter_timeout"]
    adapters = CapabilityAdapters(
        vault=CredentialVault(session_factory, load_vault_key(cfg.vault_key)),
        audit=audit,
        github=GitHubAdapter(cfg.github_api_url, timeout=timeout),
        database=DatabaseAdapter(timeout=timeout, schema=DATABASE_DEFAULTS["schema"]),
        web_search=WebSearchAdapter(timeout=timeout, model=ORCHESTRATOR_DEFAULTS["search_model"]),
        memory=MemoryAdapter(memory),
    )
    registry = build_registry(cfg.anthropic_api_key, cfg.gemini_api_key)

    app.state.config = cfg
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.redis = redis_client
    app.state.event_bus = event_bus
    app.state.orchestrator = ChatOrchestrator(
        projects=ProjectStore(session_factory),
        transcript=ChatTranscript(session_factory),
        actions=ActionStore(session_factory),
        audit=audit,
        memory=memory,
        adapters=adapters,
        registry=registry,
        event_bus=event_bus,
    )

    yield

    await redis_client.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Switchyard",
        description="Natural-language commands over a project's database and repository",
        version="0.1.0",
        lifespan=lifespan,
    )

    from switchyard.controller.routes.actions import router as actions_router
    from switchyard.controller.routes.chat import router as chat_router
    from switchyard.controller.routes.config import router as config_router
    from switchyard.controller.routes.events import router as events_router
    from switchyard.controller.routes.health import router as health_router

    app.include_router(health_router)
    app.include_router(config_router, prefix="/api")
    app.include_router(chat_router, prefix="/api")
    app.include_router(actions_router, prefix="/api")
    app.include_router(events_router, prefix="/api")

    return app

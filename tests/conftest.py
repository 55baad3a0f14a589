"""Shared test fixtures.

Everything runs against file-backed SQLite (orchestrator tables and a
separate "customer" database), a scripted completion backend and a fake
GitHub served through ``httpx.MockTransport``. No network access.
"""

from __future__ import annotations

import asyncio
import base64
import json
import re
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import text

from switchyard.adapters.capabilities import CapabilityAdapters
from switchyard.adapters.database import DatabaseAdapter
from switchyard.adapters.github import GitHubAdapter
from switchyard.adapters.memory import MemoryAdapter
from switchyard.adapters.web_search import WebSearchAdapter
from switchyard.db.engine import create_engine, create_session_factory
from switchyard.db.models import Base, Project
from switchyard.db.stores import ActionStore, AuditLog, ChatTranscript, MemoryStore, ProjectStore
from switchyard.llm.base import CompletionRequest, CompletionResult, SearchResult
from switchyard.llm.provider_chain import BackendRegistry
from switchyard.orchestrator.context import TurnContext
from switchyard.orchestrator.service import ChatOrchestrator
from switchyard.vault.credentials import CredentialVault

OWNER_ID = "user-1"
PROJECT_ID = "proj-1"
BARE_PROJECT_ID = "proj-bare"
VAULT_KEY = bytes(range(32))
GITHUB_API = "https://api.github.test"


# ---------------------------------------------------------------------------
# Scripted completion backend
# ---------------------------------------------------------------------------

_DEFAULT_REPLIES: dict[str, str] = {
    "router": '{"tool": "none", "parameters": {}}',
    "synthesizer": "Happy to help with that.",
}


class ScriptedBackend:
    """Completion backend that replays scripted text per prompt role.

    Each role has a queue of replies; the last one repeats once the queue is
    down to one entry. A reply that is an Exception instance is raised.
    """

    def __init__(self, name: str = "gemini") -> None:
        self._name = name
        self.replies: dict[str, list[Any]] = {}
        self.delays: dict[str, float] = {}
        self.requests: list[CompletionRequest] = []
        self.hang_after_first_chunk = False
        self.search_result = SearchResult(
            text="Python 3.13 was released in October 2024.",
            sources=["https://www.python.org/downloads/"],
        )

    @property
    def name(self) -> str:
        return self._name

    def script(self, role: str, *replies: Any) -> None:
        self.replies[role] = list(replies)

    def requests_for(self, role: str) -> list[CompletionRequest]:
        return [r for r in self.requests if r.role == role]

    def _next(self, role: str) -> str:
        queue = self.replies.get(role)
        if not queue:
            reply: Any = _DEFAULT_REPLIES.get(role, "")
        elif len(queue) > 1:
            reply = queue.pop(0)
        else:
            reply = queue[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        self.requests.append(request)
        if request.role in self.delays:
            await asyncio.sleep(self.delays[request.role])
        return CompletionResult(text=self._next(request.role), model=request.model)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        if request.role in self.delays:
            await asyncio.sleep(self.delays[request.role])
        text = self._next(request.role)
        for i, word in enumerate(re.findall(r"\S+\s*", text)):
            yield word
            if i == 0 and self.hang_after_first_chunk:
                await asyncio.Event().wait()

    async def search(self, query: str, model: str) -> SearchResult:
        self.requests.append(CompletionRequest(
            role="search", system_prompt="", messages=[{"role": "user", "content": query}], model=model,
        ))
        return self.search_result


# ---------------------------------------------------------------------------
# Fake GitHub REST API
# ---------------------------------------------------------------------------

class FakeGitHub:
    """Just enough of the contents and trees API for the adapter."""

    def __init__(self, owner: str = "acme", repo: str = "shop") -> None:
        self.prefix = f"/repos/{owner}/{repo}"
        self.files: dict[str, str | bytes] = {
            "README.md": "# Shop\n",
            "src/app.py": "def main():\n    print('hello')\n",
            "src/models.py": "class Order:\n    pass\n",
        }
        self.shas: dict[str, str] = {path: f"blob-{i}" for i, path in enumerate(self.files)}
        self.commits: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.conflict = False

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "GET" and path.startswith(f"{self.prefix}/git/trees/"):
            tree = [{"path": "src", "type": "tree"}]
            tree += [{"path": p, "type": "blob"} for p in sorted(self.files)]
            return httpx.Response(200, json={"tree": tree, "truncated": False})

        contents = f"{self.prefix}/contents/"
        if path.startswith(contents):
            file_path = path[len(contents):]
            if request.method == "GET":
                if file_path not in self.files:
                    return httpx.Response(404, json={"message": "Not Found"})
                content = self.files[file_path]
                raw = content if isinstance(content, bytes) else content.encode()
                return httpx.Response(200, json={
                    "type": "file",
                    "path": file_path,
                    "sha": self.shas[file_path],
                    "size": len(raw),
                    "content": base64.b64encode(raw).decode(),
                })
            if request.method == "PUT":
                body = json.loads(request.content)
                if self.conflict or body.get("sha") != self.shas.get(file_path):
                    return httpx.Response(409, json={"message": f"{file_path} does not match {body.get('sha')}"})
                new_content = base64.b64decode(body["content"]).decode()
                self.files[file_path] = new_content
                self.shas[file_path] = f"blob-new-{len(self.commits)}"
                self.commits.append({
                    "path": file_path,
                    "message": body["message"],
                    "branch": body["branch"],
                    "content": new_content,
                })
                return httpx.Response(200, json={
                    "content": {"sha": self.shas[file_path]},
                    "commit": {"sha": f"commit-{len(self.commits)}"},
                })

        return httpx.Response(404, json={"message": "Not Found"})


# ---------------------------------------------------------------------------
# Databases
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'switchyard.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def target_db_url(tmp_path: Path) -> AsyncIterator[str]:
    """A project's own database with a small ``customers`` table."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'customer.db'}"
    engine = create_engine(url)
    async with engine.begin() as conn:
        await conn.execute(text(
            "CREATE TABLE customers (id INTEGER PRIMARY KEY, name TEXT NOT NULL, email TEXT)"
        ))
        await conn.execute(text(
            "INSERT INTO customers (name, email) VALUES "
            "('Ada', 'ada@example.com'), ('Grace', 'grace@example.com'), ('Linus', NULL)"
        ))
    await engine.dispose()
    yield url


async def count_customers(url: str) -> int:
    engine = create_engine(url)
    try:
        async with engine.connect() as conn:
            return (await conn.execute(text("SELECT COUNT(*) FROM customers"))).scalar_one()
    finally:
        await engine.dispose()


@pytest.fixture
def customer_count() -> Callable[[str], Awaitable[int]]:
    return count_customers


# ---------------------------------------------------------------------------
# Projects and credentials
# ---------------------------------------------------------------------------

@pytest.fixture
def vault(session_factory) -> CredentialVault:
    return CredentialVault(session_factory, VAULT_KEY)


@pytest_asyncio.fixture
async def project(session_factory, vault: CredentialVault, target_db_url: str) -> Project:
    """Project with a linked repository and database, secrets sealed in the vault."""
    row = Project(
        id=PROJECT_ID,
        owner_id=OWNER_ID,
        name="Acme Shop",
        description="Storefront backend",
        repo_owner="acme",
        repo_name="shop",
        repo_default_branch="main",
        database_url=target_db_url,
    )
    async with session_factory() as session:
        session.add(row)
        await session.commit()
    await vault.store_project_secrets(
        OWNER_ID, PROJECT_ID, repo_token="ghp_test_token", database_key="db-password",
    )
    return row


@pytest_asyncio.fixture
async def bare_project(session_factory) -> Project:
    """Project with no integrations linked."""
    row = Project(id=BARE_PROJECT_ID, owner_id=OWNER_ID, name="Scratchpad")
    async with session_factory() as session:
        session.add(row)
        await session.commit()
    return row


# ---------------------------------------------------------------------------
# Orchestrator wiring
# ---------------------------------------------------------------------------

@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def registry(backend: ScriptedBackend) -> BackendRegistry:
    registry = BackendRegistry()
    registry.register(backend)
    return registry


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def adapters(session_factory, vault: CredentialVault, github: FakeGitHub) -> CapabilityAdapters:
    return CapabilityAdapters(
        vault=vault,
        audit=AuditLog(session_factory),
        github=GitHubAdapter(GITHUB_API, timeout=5, transport=github.transport()),
        database=DatabaseAdapter(timeout=5, schema=None),
        web_search=WebSearchAdapter(timeout=5),
        memory=MemoryAdapter(MemoryStore(session_factory)),
    )


@pytest.fixture
def orchestrator(session_factory, adapters: CapabilityAdapters, registry: BackendRegistry) -> ChatOrchestrator:
    return ChatOrchestrator(
        projects=ProjectStore(session_factory),
        transcript=ChatTranscript(session_factory),
        actions=ActionStore(session_factory),
        audit=adapters.audit,
        memory=MemoryStore(session_factory),
        adapters=adapters,
        registry=registry,
    )


@pytest.fixture
def make_context(orchestrator: ChatOrchestrator) -> Callable[..., Awaitable[TurnContext]]:
    """Open a TurnContext (with its own channel) the way the routes do."""

    async def _make(project_id: str = PROJECT_ID, actor_id: str = OWNER_ID) -> TurnContext:
        project = await orchestrator.projects.get_owned(actor_id, project_id)
        assert project is not None
        return await orchestrator.open_context(actor_id, project, orchestrator.open_channel())

    return _make


async def sent_events(ctx: TurnContext) -> list:
    """Close the context's channel and return everything sent on it."""
    await ctx.channel.close()
    return [event async for event in ctx.channel.events()]


@pytest.fixture
def collect() -> Callable[[TurnContext], Awaitable[list]]:
    return sent_events

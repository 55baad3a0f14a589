"""Dispatch a read-class tool selection to its adapter and audit the call."""

from __future__ import annotations

import logging
from typing import Any

from switchyard.adapters.base import IntegrationError, ToolResult, credentials_missing
from switchyard.adapters.database import DatabaseAdapter
from switchyard.adapters.github import GitHubAdapter
from switchyard.adapters.memory import MemoryAdapter
from switchyard.adapters.web_search import WebSearchAdapter
from switchyard.db.stores import AuditLog
from switchyard.llm.provider_chain import ProviderChain
from switchyard.models.tools import (
    AddMemory,
    GetDatabaseSchema,
    ListRepositoryFiles,
    ReadRepositoryFile,
    WebSearch,
)
from switchyard.vault.credentials import (
    CredentialDecryptionError,
    CredentialVault,
    ProjectCredentials,
    ProjectNotFound,
)

logger = logging.getLogger(__name__)


class CapabilityAdapters:
    """The set of adapters one controller process shares across turns."""

    def __init__(
        self,
        vault: CredentialVault,
        audit: AuditLog,
        github: GitHubAdapter,
        database: DatabaseAdapter,
        web_search: WebSearchAdapter,
        memory: MemoryAdapter,
    ) -> None:
        self.vault = vault
        self.audit = audit
        self.github = github
        self.database = database
        self.web_search = web_search
        self.memory = memory

    async def credentials(
        self, actor_id: str, project_id: str, integration: str,
    ) -> ProjectCredentials:
        """Owner-scoped credential lookup; vault failures become IntegrationError."""
        try:
            return await self.vault.project_credentials(actor_id, project_id)
        except ProjectNotFound as e:
            raise IntegrationError(str(e)) from e
        except CredentialDecryptionError as e:
            logger.warning("Could not decrypt %s credentials for project %s: %s", integration, project_id, e)
            raise credentials_missing(integration) from e

    async def run(
        self,
        selection: Any,
        *,
        actor_id: str,
        project_id: str,
        chain: ProviderChain,
        limits: dict[str, Any],
    ) -> ToolResult:
        """Run one read-class capability. Never raises; always audited."""
        try:
            result = await self._dispatch(
                selection, actor_id=actor_id, project_id=project_id, chain=chain, limits=limits,
            )
        except IntegrationError as e:
            result = ToolResult.fail(str(e))
        except Exception as e:
            logger.exception("Capability %s failed outside its adapter", selection.tool)
            result = ToolResult.fail(f"{selection.tool} failed: {e}")

        await self.audit.record(
            actor_id=actor_id,
            project_id=project_id,
            tool_name=selection.tool,
            tool_input=selection.parameters.model_dump(),
            tool_output=result.to_dict(),
            success=result.success,
            error=result.error,
        )
        return result

    async def _dispatch(
        self,
        selection: Any,
        *,
        actor_id: str,
        project_id: str,
        chain: ProviderChain,
        limits: dict[str, Any],
    ) -> ToolResult:
        params = selection.parameters

        if isinstance(selection, ListRepositoryFiles):
            creds = await self.credentials(actor_id, project_id, "GitHub")
            return await self.github.list_files(
                creds, params.path_prefix, max_files=limits["max_repository_files"],
            )

        if isinstance(selection, ReadRepositoryFile):
            creds = await self.credentials(actor_id, project_id, "GitHub")
            return await self.github.read_file(
                creds, params.path, max_chars=limits["max_file_chars"],
            )

        if isinstance(selection, GetDatabaseSchema):
            creds = await self.credentials(actor_id, project_id, "Database")
            return await self.database.get_schema(creds, max_tables=limits["max_schema_tables"])

        if isinstance(selection, WebSearch):
            return await self.web_search.search(chain, params.query)

        if isinstance(selection, AddMemory):
            return await self.memory.add(project_id, actor_id, params.content)

        return ToolResult.fail(f"Unknown capability: {selection.tool}")

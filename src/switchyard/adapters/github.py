"""GitHub capability adapter (REST v3 over httpx)."""

from __future__ import annotations

import base64
import logging
from urllib.parse import quote

import httpx

from switchyard.adapters.base import (
    IntegrationError,
    ToolResult,
    adapter_boundary,
    credentials_missing,
    not_configured,
)
from switchyard.vault.credentials import ProjectCredentials

logger = logging.getLogger(__name__)

_INTEGRATION = "GitHub"
_CONFLICT_STATUSES = (409, 422)


def _api_error(response: httpx.Response) -> IntegrationError:
    """Prefer GitHub's own ``message`` over the bare status code."""
    message = f"GitHub API error: {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        message = f"{message} {body['message']}"
    elif response.text and len(response.text) < 200:
        message = f"{message} {response.text}"
    return IntegrationError(message)


def require_repository(creds: ProjectCredentials) -> tuple[str, str, str]:
    if not creds.has_repository:
        raise not_configured(_INTEGRATION)
    if not creds.repo_token:
        raise credentials_missing(_INTEGRATION)
    return creds.repo_owner, creds.repo_name, creds.repo_token


class GitHubAdapter:
    """Lists, reads and commits files in a project's linked repository."""

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self, token: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            transport=self._transport,
            timeout=self.timeout,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "switchyard",
            },
        )

    @adapter_boundary("list_repository_files")
    async def list_files(
        self,
        creds: ProjectCredentials,
        path_prefix: str | None = None,
        max_files: int = 500,
    ) -> ToolResult:
        owner, repo, token = require_repository(creds)
        branch = creds.repo_default_branch

        async with self._client(token) as client:
            response = await client.get(
                f"/repos/{owner}/{repo}/git/trees/{quote(branch, safe='')}",
                params={"recursive": "1"},
            )
        if response.status_code != 200:
            raise _api_error(response)

        tree = response.json()
        paths = [entry["path"] for entry in tree.get("tree", []) if entry.get("type") == "blob"]
        if path_prefix:
            prefix = path_prefix.strip("/")
            paths = [p for p in paths if p == prefix or p.startswith(prefix + "/")]

        logger.info("Listed %d files in %s/%s@%s", len(paths), owner, repo, branch)
        return ToolResult.ok({
            "repository": f"{owner}/{repo}",
            "branch": branch,
            "files": paths[:max_files],
            "total_files": len(paths),
            "truncated": len(paths) > max_files or bool(tree.get("truncated")),
        })

    @adapter_boundary("read_repository_file")
    async def read_file(
        self,
        creds: ProjectCredentials,
        path: str,
        max_chars: int | None = None,
        strict: bool = False,
    ) -> ToolResult:
        """Fetch a file's text and blob sha. ``max_chars=None`` returns it whole.

        ``strict`` rejects content that is not UTF-8 instead of substituting
        replacement characters; edits must round-trip the original bytes.
        """
        owner, repo, token = require_repository(creds)
        path = path.strip().lstrip("/")

        async with self._client(token) as client:
            response = await client.get(
                f"/repos/{owner}/{repo}/contents/{quote(path)}",
                params={"ref": creds.repo_default_branch},
            )
        if response.status_code == 404:
            raise IntegrationError(f"File not found in repository: {path}")
        if response.status_code != 200:
            raise _api_error(response)

        body = response.json()
        if isinstance(body, list) or body.get("type") != "file":
            raise IntegrationError(f"Not a file: {path}")

        raw = base64.b64decode(body.get("content", ""))
        if strict:
            try:
                content = raw.decode("utf-8")
            except UnicodeDecodeError:
                raise IntegrationError(f"{path} is not UTF-8 text; it cannot be edited") from None
        else:
            content = raw.decode("utf-8", errors="replace")
        truncated = max_chars is not None and len(content) > max_chars
        return ToolResult.ok({
            "path": path,
            "sha": body["sha"],
            "size": body.get("size", len(content)),
            "content": content[:max_chars] if truncated else content,
            "truncated": truncated,
        })

    @adapter_boundary("commit_file_edit")
    async def commit_file(
        self,
        creds: ProjectCredentials,
        path: str,
        content: str,
        sha: str,
        message: str,
    ) -> ToolResult:
        """Write ``content`` to ``path`` only if the blob is still at ``sha``."""
        owner, repo, token = require_repository(creds)

        async with self._client(token) as client:
            response = await client.put(
                f"/repos/{owner}/{repo}/contents/{quote(path)}",
                json={
                    "message": message,
                    "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
                    "sha": sha,
                    "branch": creds.repo_default_branch,
                },
            )
        if response.status_code in _CONFLICT_STATUSES:
            raise IntegrationError(
                f"{path} changed in the repository since it was read; "
                "generate a new edit to apply the change to the latest version"
            )
        if response.status_code not in (200, 201):
            raise _api_error(response)

        body = response.json()
        commit_sha = body.get("commit", {}).get("sha")
        logger.info("Committed %s to %s/%s (%s)", path, owner, repo, commit_sha)
        return ToolResult.ok({
            "path": path,
            "commit_sha": commit_sha,
            "content_sha": body.get("content", {}).get("sha"),
        })

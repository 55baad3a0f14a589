"""Credential vault: owner-scoped storage and decryption of integration secrets.

Secrets are sealed with AES-256-GCM into a versioned JSON envelope::

    {"v": 1, "alg": "AES-256-GCM", "nonce": "<b64>", "ct": "<b64>"}

The additional authenticated data binds each ciphertext to the row and
column it was written for (``project:<id>:repo_token`` etc.), so a
ciphertext copied into another project's row fails to open.

Plaintext never leaves this module except as the return value of
``project_credentials`` / ``user_api_key``, which callers hold for the
duration of a single adapter call.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from sqlalchemy import select, update
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from switchyard.db.models import Project, UserProfile

logger = logging.getLogger(__name__)

_CURRENT_VERSION = 1
_ALGORITHM = "AES-256-GCM"
_REQUIRED_KEY_LENGTH = 32


class VaultError(Exception):
    """Base class for vault failures."""


class ProjectNotFound(VaultError):
    """The project does not exist or is not owned by the requesting user."""


class CredentialDecryptionError(VaultError):
    """Raised when a stored secret cannot be decrypted."""


def load_vault_key(encoded: str) -> bytes:
    """Decode a base64 vault key and enforce the AES-256 key length."""
    try:
        key = base64.b64decode(encoded.strip(), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Vault key contains invalid base64: {e}") from e
    if len(key) != _REQUIRED_KEY_LENGTH:
        raise ValueError(
            f"Vault key has invalid length {len(key)} (expected {_REQUIRED_KEY_LENGTH})"
        )
    return key


def seal(plaintext: str, key: bytes, aad: str) -> str:
    """Encrypt ``plaintext`` into a JSON envelope string."""
    nonce = os.urandom(12)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), aad.encode("utf-8"))
    return json.dumps({
        "v": _CURRENT_VERSION,
        "alg": _ALGORITHM,
        "nonce": base64.b64encode(nonce).decode("ascii"),
        "ct": base64.b64encode(ciphertext).decode("ascii"),
    })


def unseal(envelope_text: str, key: bytes, aad: str) -> str:
    """Decrypt an envelope produced by ``seal``."""
    try:
        envelope = json.loads(envelope_text)
    except (json.JSONDecodeError, TypeError) as e:
        raise CredentialDecryptionError(f"Invalid envelope format: {e}") from e

    if envelope.get("v") != _CURRENT_VERSION or envelope.get("alg") != _ALGORITHM:
        raise CredentialDecryptionError(
            f"Unsupported envelope (v={envelope.get('v')}, alg={envelope.get('alg')})"
        )
    try:
        nonce = base64.b64decode(envelope["nonce"], validate=True)
        ciphertext = base64.b64decode(envelope["ct"], validate=True)
    except (KeyError, binascii.Error) as e:
        raise CredentialDecryptionError(f"Malformed envelope fields: {e}") from e

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, aad.encode("utf-8"))
    except InvalidTag as e:
        raise CredentialDecryptionError("Secret failed authentication (wrong key or row)") from e
    return plaintext.decode("utf-8")


@dataclass(frozen=True)
class ProjectCredentials:
    """Decrypted integration settings for one project.

    A field is None when the integration is not linked or its secret is not
    stored; adapters turn that into a "not configured" envelope.
    """

    project_id: str
    repo_owner: str | None
    repo_name: str | None
    repo_default_branch: str
    repo_token: str | None
    database_linked: bool
    database_url: str | None

    @property
    def repository(self) -> str | None:
        if self.repo_owner and self.repo_name:
            return f"{self.repo_owner}/{self.repo_name}"
        return None

    @property
    def has_repository(self) -> bool:
        return self.repository is not None

    @property
    def has_database(self) -> bool:
        return self.database_linked

    def __repr__(self) -> str:
        return (
            f"ProjectCredentials(project_id={self.project_id!r}, repository={self.repository!r}, "
            f"repo_token={'***' if self.repo_token else None}, "
            f"database={'***' if self.database_url else None})"
        )


class CredentialVault:
    """Owner-scoped store/decrypt boundary over the projects and profiles tables."""

    def __init__(self, session_factory: sessionmaker, key: bytes) -> None:
        if len(key) != _REQUIRED_KEY_LENGTH:
            raise ValueError(
                f"Vault key must be exactly {_REQUIRED_KEY_LENGTH} bytes (got {len(key)})"
            )
        self._session_factory = session_factory
        self._key = key

    # --- store ------------------------------------------------------------

    async def store_project_secrets(
        self,
        owner_id: str,
        project_id: str,
        *,
        repo_token: str | None = None,
        database_key: str | None = None,
    ) -> None:
        """Encrypt and store project secrets. ``None`` leaves a secret unchanged."""
        await self._owned_project(owner_id, project_id)
        values: dict[str, str] = {}
        if repo_token is not None:
            values["encrypted_repo_token"] = seal(repo_token, self._key, _aad(project_id, "repo_token"))
        if database_key is not None:
            values["encrypted_database_key"] = seal(
                database_key, self._key, _aad(project_id, "database_key"),
            )
        if not values:
            return
        async with self._session_factory() as session:
            await session.execute(
                update(Project).where(Project.id == project_id).values(**values)
            )
            await session.commit()
        logger.info("Stored %s for project %s", ", ".join(sorted(values)), project_id)

    async def store_user_api_key(self, owner_id: str, api_key: str) -> None:
        sealed = seal(api_key, self._key, f"user:{owner_id}:api_key")
        async with self._session_factory() as session:
            profile = await session.get(UserProfile, owner_id)
            if profile is None:
                session.add(UserProfile(id=owner_id, encrypted_api_key=sealed))
            else:
                profile.encrypted_api_key = sealed
            await session.commit()

    # --- decrypt ----------------------------------------------------------

    async def project_credentials(self, owner_id: str, project_id: str) -> ProjectCredentials:
        """Decrypt the project's integration secrets for its owner."""
        project = await self._owned_project(owner_id, project_id)

        repo_token = None
        if project.encrypted_repo_token:
            repo_token = unseal(
                project.encrypted_repo_token, self._key, _aad(project_id, "repo_token"),
            )

        database_url = None
        if project.database_url and project.encrypted_database_key:
            database_key = unseal(
                project.encrypted_database_key, self._key, _aad(project_id, "database_key"),
            )
            database_url = make_url(project.database_url).set(password=database_key).render_as_string(
                hide_password=False
            )

        return ProjectCredentials(
            project_id=project_id,
            repo_owner=project.repo_owner,
            repo_name=project.repo_name,
            repo_default_branch=project.repo_default_branch or "main",
            repo_token=repo_token,
            database_linked=bool(project.database_url),
            database_url=database_url,
        )

    async def user_api_key(self, owner_id: str) -> str | None:
        async with self._session_factory() as session:
            profile = await session.get(UserProfile, owner_id)
        if profile is None or not profile.encrypted_api_key:
            return None
        return unseal(profile.encrypted_api_key, self._key, f"user:{owner_id}:api_key")

    async def _owned_project(self, owner_id: str, project_id: str) -> Project:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Project).where(Project.id == project_id, Project.owner_id == owner_id)
            )
            project = result.scalar_one_or_none()
        if project is None:
            raise ProjectNotFound(f"Project {project_id} not found or unauthorized")
        return project


def _aad(project_id: str, column: str) -> str:
    return f"project:{project_id}:{column}"

"""Prompt composer: assembles the layered prompt for each completion role."""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).parent.parent / "prompts" / "v1"
_MAX_CONTEXT_CHARS = 48_000  # ~12k tokens


@lru_cache(maxsize=None)
def load_template(role: str) -> str:
    """Load a prompt template by role name."""
    path = _PROMPTS_DIR / f"{role}.md"
    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {path}")
    return path.read_text()


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "\n... (truncated)"


class PromptComposer:
    """Assembles layered prompts.

    Layer 1: Role template (router, statement_writer, file_rewriter, synthesizer)
    Layer 2: User instruction (the profile's ``system_instruction``)
    Layer 3: Project context (name, description, linked integrations)
    Layer 4: Project notes (recent memory entries)
    """

    def compose_system_prompt(
        self,
        role: str,
        *,
        system_instruction: str = "",
        project_context: str = "",
        notes: list[str] | None = None,
    ) -> str:
        parts = [load_template(role)]

        if system_instruction:
            parts.append(f"\n## User Instructions\n\n{system_instruction.strip()}")

        if project_context:
            parts.append(f"\n## Project Context\n\n{truncate(project_context, _MAX_CONTEXT_CHARS)}")

        if notes:
            lines = "\n".join(f"- {note}" for note in notes)
            parts.append(f"\n## Project Notes\n\n{lines}")

        return "\n".join(parts)

    def build_project_context(
        self,
        name: str,
        description: str | None = None,
        repository: str | None = None,
        has_database: bool = False,
    ) -> str:
        parts = [f"- Name: {name}"]
        if description:
            parts.append(f"- Description: {description}")
        parts.append(f"- Repository: {repository or 'not linked'}")
        parts.append(f"- Database: {'linked' if has_database else 'not linked'}")
        return "\n".join(parts)

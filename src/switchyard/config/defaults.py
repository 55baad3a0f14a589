"""Orchestration defaults.

Snapshotted once per request so a turn sees one consistent set of limits even
if the defaults are patched while it runs.
"""

from __future__ import annotations

ORCHESTRATOR_DEFAULTS: dict = {
    # Models per call site
    "router_model": "gemini-2.5-flash",
    "statement_model": "gemini-2.5-flash",
    "rewrite_model": "gemini-2.5-pro",
    "synthesis_model": "gemini-2.5-flash",
    "search_model": "gemini-2.5-flash",
    # Provider chain: ordered list of providers to try
    "provider_chain": ["gemini", "anthropic"],
    # Timeouts (seconds)
    "router_timeout": 20,
    "adapter_timeout": 30,
    "proposal_timeout": 30,
    "execution_timeout": 90,
    "synthesis_timeout": 120,
    # Payload caps
    "max_repository_files": 500,
    "max_schema_tables": 50,
    "max_file_chars": 60_000,
    "max_statement_rows": 100,
    "max_tool_output_chars": 30_000,
    # Context
    "history_turns": 20,
    "memory_entries": 10,
    "synthesis_temperature": 0.7,
}

DATABASE_DEFAULTS: dict = {
    "schema": "public",
}

REPO_DEFAULTS: dict = {
    "commit_message_prefix": "switchyard: ",
}


def get_config_snapshot() -> dict:
    """Return a frozen snapshot of all config for one turn or execution."""
    return {
        "orchestrator": {**ORCHESTRATOR_DEFAULTS},
        "database": {**DATABASE_DEFAULTS},
        "repo": {**REPO_DEFAULTS},
    }

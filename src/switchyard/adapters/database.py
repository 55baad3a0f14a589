"""Target database capability adapter.

Connections are opened per call against the project's linked database with
``NullPool``; nothing is pooled across users or turns.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from switchyard.adapters.base import (
    ToolResult,
    adapter_boundary,
    credentials_missing,
    json_safe,
    not_configured,
)
from switchyard.vault.credentials import ProjectCredentials

logger = logging.getLogger(__name__)

_INTEGRATION = "Database"


def require_database(creds: ProjectCredentials) -> str:
    if not creds.has_database:
        raise not_configured(_INTEGRATION)
    if not creds.database_url:
        raise credentials_missing(_INTEGRATION)
    return creds.database_url


def _describe_tables(sync_conn, schema: str | None, max_tables: int) -> dict[str, Any]:
    inspector = inspect(sync_conn)
    names = sorted(inspector.get_table_names(schema=schema))
    tables = []
    for name in names[:max_tables]:
        columns = [
            {
                "name": col["name"],
                "type": str(col["type"]),
                "nullable": bool(col.get("nullable", True)),
                "default": None if col.get("default") is None else str(col["default"]),
            }
            for col in inspector.get_columns(name, schema=schema)
        ]
        tables.append({"name": name, "columns": columns})
    return {
        "schema": schema,
        "tables": tables,
        "total_tables": len(names),
        "truncated": len(names) > max_tables,
    }


class DatabaseAdapter:
    """Reads the schema of, and runs confirmed statements against, a linked database."""

    def __init__(self, timeout: float = 30, schema: str | None = "public") -> None:
        self.timeout = timeout
        self.schema = schema

    def _engine(self, url: str) -> AsyncEngine:
        return create_async_engine(url, poolclass=NullPool)

    @adapter_boundary("get_database_schema")
    async def get_schema(self, creds: ProjectCredentials, max_tables: int = 50) -> ToolResult:
        engine = self._engine(require_database(creds))
        try:
            async with engine.connect() as conn:
                data = await conn.run_sync(_describe_tables, self.schema, max_tables)
        finally:
            await engine.dispose()
        logger.info("Read schema for project %s: %d tables", creds.project_id, data["total_tables"])
        return ToolResult.ok(data)

    @adapter_boundary("execute_statement")
    async def execute(
        self,
        creds: ProjectCredentials,
        statement: str,
        max_rows: int = 100,
    ) -> ToolResult:
        """Run one statement in its own transaction; commit on success."""
        engine = self._engine(require_database(creds))
        try:
            async with engine.begin() as conn:
                result = await conn.exec_driver_sql(statement)
                rows: list[dict[str, Any]] = []
                more_rows = False
                if result.returns_rows:
                    fetched = result.mappings().fetchmany(max_rows + 1)
                    more_rows = len(fetched) > max_rows
                    rows = [json_safe(dict(row)) for row in fetched[:max_rows]]
                rowcount = result.rowcount
        finally:
            await engine.dispose()

        logger.info("Executed statement for project %s (rowcount=%s)", creds.project_id, rowcount)
        return ToolResult.ok({
            "statement": statement,
            "rowcount": rowcount,
            "rows": rows,
            "truncated": more_rows,
        })

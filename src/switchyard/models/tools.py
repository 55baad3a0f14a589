"""Router output: one tool selection per turn, as a tagged union keyed by ``tool``."""

from __future__ import annotations

from typing import Annotated, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class _Params(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ListRepositoryFilesParams(_Params):
    path_prefix: str | None = None


class ReadRepositoryFileParams(_Params):
    path: str = Field(..., min_length=1)


class GetDatabaseSchemaParams(_Params):
    pass


class WebSearchParams(_Params):
    query: str = Field(..., min_length=1)


class AddMemoryParams(_Params):
    content: str = Field(..., min_length=1)


class ProposeStatementParams(_Params):
    request: str = Field(..., min_length=1, description="The user's request in natural language.")
    statement: str | None = Field(
        default=None, description="Exact statement text, when the user supplied one.",
    )

    @field_validator("statement", mode="before")
    @classmethod
    def blank_statement_is_none(cls, v: str | None) -> str | None:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class ProposeFileEditParams(_Params):
    file_path: str = Field(..., min_length=1)
    change_description: str = Field(..., min_length=1)

    @field_validator("file_path")
    @classmethod
    def strip_leading_slash(cls, v: str) -> str:
        return v.strip().lstrip("/")


class _Selection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    mutating: ClassVar[bool] = False


class NoTool(_Selection):
    tool: Literal["none"] = "none"


class ListRepositoryFiles(_Selection):
    tool: Literal["list_repository_files"] = "list_repository_files"
    parameters: ListRepositoryFilesParams = Field(default_factory=ListRepositoryFilesParams)


class ReadRepositoryFile(_Selection):
    tool: Literal["read_repository_file"] = "read_repository_file"
    parameters: ReadRepositoryFileParams


class GetDatabaseSchema(_Selection):
    tool: Literal["get_database_schema"] = "get_database_schema"
    parameters: GetDatabaseSchemaParams = Field(default_factory=GetDatabaseSchemaParams)


class WebSearch(_Selection):
    tool: Literal["web_search"] = "web_search"
    parameters: WebSearchParams


class AddMemory(_Selection):
    tool: Literal["add_memory"] = "add_memory"
    parameters: AddMemoryParams


class ProposeStatementExecution(_Selection):
    tool: Literal["propose_statement_execution"] = "propose_statement_execution"
    parameters: ProposeStatementParams
    mutating: ClassVar[bool] = True


class ProposeFileEdit(_Selection):
    tool: Literal["propose_file_edit"] = "propose_file_edit"
    parameters: ProposeFileEditParams
    mutating: ClassVar[bool] = True


ToolSelection = Annotated[
    Union[
        NoTool,
        ListRepositoryFiles,
        ReadRepositoryFile,
        GetDatabaseSchema,
        WebSearch,
        AddMemory,
        ProposeStatementExecution,
        ProposeFileEdit,
    ],
    Field(discriminator="tool"),
]

TOOL_SELECTION_ADAPTER: TypeAdapter[ToolSelection] = TypeAdapter(ToolSelection)

# Proposal tool -> persisted action type
ACTION_TYPE_FOR_TOOL: dict[str, str] = {
    "propose_statement_execution": "execute_statement",
    "propose_file_edit": "edit_file",
}

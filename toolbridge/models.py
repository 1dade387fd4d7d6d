from typing import Any, Literal

from pydantic import BaseModel, Field


class ToolCallModel(BaseModel):
    tool: str = Field(min_length=1, max_length=120)
    args: dict[str, Any] = Field(default_factory=dict)


class ToolResultModel(BaseModel):
    tool: str
    ok: bool
    result: Any = None
    error: str | None = None
    diagnostics: dict[str, Any] | None = None


class ParseRequest(BaseModel):
    text: str = Field(max_length=60000)
    max_calls: int | None = Field(default=None, ge=1, le=10)


class DetectRequest(BaseModel):
    text: str = Field(min_length=1, max_length=6000)
    source: str = "user"


class ToolCallsResponse(BaseModel):
    calls: list[ToolCallModel] = Field(default_factory=list)


class ExecuteRequest(BaseModel):
    calls: list[ToolCallModel] = Field(min_length=1, max_length=10)


class ExecuteResponse(BaseModel):
    results: list[ToolResultModel] = Field(default_factory=list)


class TurnRequest(BaseModel):
    thread_id: str = Field(min_length=1, max_length=200)
    model_text: str | None = Field(default=None, max_length=60000)
    user_text: str | None = Field(default=None, max_length=6000)
    source: str = "user"


class TurnResponse(BaseModel):
    thread_id: str
    origin: str
    stale: bool = False
    calls: list[ToolCallModel] = Field(default_factory=list)
    results: list[ToolResultModel] = Field(default_factory=list)
    followup_prompt: str = ""


class ErrorLogEntryModel(BaseModel):
    tool: str
    error: str
    args_summary: str
    count: int
    created_at: str
    last_seen_at: str


class ErrorLogResponse(BaseModel):
    entries: list[ErrorLogEntryModel] = Field(default_factory=list)
    summary: str = ""


class AliasModel(BaseModel):
    alias: str
    label: str
    target: str
    source: str
    use_count: int
    created_at: str
    updated_at: str
    last_used_at: str | None = None


class AliasListResponse(BaseModel):
    aliases: list[AliasModel] = Field(default_factory=list)


class AliasUpsertRequest(BaseModel):
    label: str = Field(min_length=2, max_length=64)
    target: str = Field(min_length=1, max_length=120)
    source: Literal["manual", "observed", "success"] = "manual"


class AliasSyncRequest(BaseModel):
    rows: list[dict[str, Any]] = Field(default_factory=list, max_length=2000)
    force: bool = False
    background: bool = False


class AliasUpsertResponse(BaseModel):
    changed: bool
    added: int
    updated: int
    skipped: bool = False
    queued: bool = False


class ToolDefinitionModel(BaseModel):
    name: str
    label: str
    description: str
    surface: str
    mutating: bool
    input_schema: dict[str, Any] = Field(default_factory=dict)


class ToolCatalogResponse(BaseModel):
    tools: list[ToolDefinitionModel] = Field(default_factory=list)
    unavailable: dict[str, str] = Field(default_factory=dict)
    prompt: str

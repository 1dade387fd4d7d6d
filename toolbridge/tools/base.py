from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

TOOL_NAME_PATTERN = re.compile(r"^[a-z]+\.[a-zA-Z]+$")


@dataclass(frozen=True)
class ToolCall:
    tool: str
    args: dict[str, Any] = field(default_factory=dict)

    @property
    def namespace(self) -> str:
        return self.tool.split(".", 1)[0]

    @property
    def action(self) -> str:
        return self.tool.split(".", 1)[1] if "." in self.tool else ""

    def to_dict(self) -> dict[str, Any]:
        return {"tool": self.tool, "args": dict(self.args)}


@dataclass(frozen=True)
class ToolResult:
    tool: str
    ok: bool
    result: Any = None
    error: str | None = None
    diagnostics: dict[str, Any] | None = None

    @classmethod
    def success(cls, tool: str, result: Any, diagnostics: dict[str, Any] | None = None) -> "ToolResult":
        return cls(tool=tool, ok=True, result=result, diagnostics=diagnostics)

    @classmethod
    def failure(cls, tool: str, error: str, diagnostics: dict[str, Any] | None = None) -> "ToolResult":
        return cls(tool=tool, ok=False, error=error or "unknown error", diagnostics=diagnostics)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"tool": self.tool, "ok": self.ok}
        if self.ok:
            out["result"] = self.result
        else:
            out["error"] = self.error
        if self.diagnostics:
            out["diagnostics"] = dict(self.diagnostics)
        return out


class Tool(ABC):
    """A request/response domain handler addressed as ``<namespace>.<action>``."""

    namespace: str

    @abstractmethod
    def run(self, action: str, args: dict[str, Any]) -> Any:
        raise NotImplementedError

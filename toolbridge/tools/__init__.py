from .base import Tool, ToolCall, ToolResult
from .catalog import TOOL_CALL_ALIASES, build_default_registry, canonical_tool_name
from .database import DatabaseTool
from .integration import IntegrationTool
from .mail import MailTool
from .registry import ToolDefinition, ToolRegistry

__all__ = [
    "Tool",
    "ToolCall",
    "ToolResult",
    "TOOL_CALL_ALIASES",
    "build_default_registry",
    "canonical_tool_name",
    "DatabaseTool",
    "IntegrationTool",
    "MailTool",
    "ToolDefinition",
    "ToolRegistry",
]

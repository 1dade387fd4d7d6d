from .staleness import StalenessGuard
from .token_security import redact_args, redact_sensitive_text, summarize_args

__all__ = [
    "StalenessGuard",
    "redact_args",
    "redact_sensitive_text",
    "summarize_args",
    "AliasBook",
    "ErrorLog",
    "RetryingDispatcher",
    "ToolExecutionOrchestrator",
    "ToolTurnRunner",
]

_LAZY_EXPORTS = {
    "AliasBook": ("alias_book", "AliasBook"),
    "ErrorLog": ("error_log", "ErrorLog"),
    "RetryingDispatcher": ("dispatcher", "RetryingDispatcher"),
    "ToolExecutionOrchestrator": ("orchestrator", "ToolExecutionOrchestrator"),
    "ToolTurnRunner": ("turn_runner", "ToolTurnRunner"),
}


def __getattr__(name: str):
    if name in _LAZY_EXPORTS:
        from importlib import import_module

        module_name, attr = _LAZY_EXPORTS[name]
        return getattr(import_module(f"{__name__}.{module_name}"), attr)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

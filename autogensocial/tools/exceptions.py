from __future__ import annotations


class ToolError(RuntimeError):
    """Base class for tooling-related failures."""


class ToolArgumentError(ToolError):
    """Raised when a tool call carries missing, malformed, or invalid arguments."""


class ToolNotFoundError(ToolError):
    """Raised when a requested tool or the record it targets cannot be resolved."""


class ToolExecutionError(ToolError):
    """Raised when a tool fails while talking to its backing store."""

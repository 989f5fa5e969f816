from __future__ import annotations

from typing import Any


class OrchestrationError(RuntimeError):
    """Failure surfaced to the HTTP caller with a status code and optional detail."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int = 500,
        detail: Any | None = None,
        tool_name: str | None = None,
        agent_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.detail = detail
        self.tool_name = tool_name
        self.agent_name = agent_name


class RequiresActionError(OrchestrationError):
    """Raised when a run asks for tool outputs without listing any tool calls."""

    def __init__(self, message: str = "Tool calls not found in required action", **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 502)
        super().__init__(message, **kwargs)


class RunFailedError(OrchestrationError):
    """Raised when the planner run ends as failed or cancelled."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 502)
        super().__init__(message, **kwargs)


class RunTimeoutError(OrchestrationError):
    """Raised when a run exceeds its configured poll budget or deadline."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("status_code", 504)
        super().__init__(message, **kwargs)


__all__ = ["OrchestrationError", "RequiresActionError", "RunFailedError", "RunTimeoutError"]

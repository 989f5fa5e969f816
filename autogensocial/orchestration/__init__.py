"""
Orchestration Package

Drives a remote copywriter agent run to completion:
- Run loop polling the planner and dispatching its tool calls
- Tool call guardrail with bounded retries
- Auto-default and auto-publish repair passes
- Execution trace recording
- Post copy extraction from the final agent answer
"""

from .enums import RunStatus, ToolName, ToolResultStatus, TraceEventType, TraceStatus
from .exceptions import OrchestrationError, RequiresActionError, RunFailedError, RunTimeoutError

__all__ = [
    "RunStatus",
    "ToolName",
    "ToolResultStatus",
    "TraceEventType",
    "TraceStatus",
    "OrchestrationError",
    "RequiresActionError",
    "RunFailedError",
    "RunTimeoutError",
]

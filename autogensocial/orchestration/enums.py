from __future__ import annotations

from enum import Enum


class RunStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED}


class TraceStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class TraceEventType(str, Enum):
    START = "start"
    TOOL_INVOKE = "tool-invoke"
    TOOL_RESULT = "tool-result"
    ERROR = "error"
    END = "end"
    CUSTOM = "custom"


class ToolResultStatus(str, Enum):
    OK = "ok"
    RETRY = "retry"
    FAILED = "failed"


class ToolName(str, Enum):
    """Closed set of tools the planner may call; anything else parses to UNKNOWN."""

    GET_BRAND = "getBrand"
    GET_POST_PLAN = "getPostPlan"
    GET_POSTS = "getPosts"
    DRAFT_POST_COPY = "draftPostCopy"
    CREATE_POST = "createPost"
    UPDATE_POST = "updatePost"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: str | None) -> "ToolName":
        if not isinstance(name, str):
            return cls.UNKNOWN
        try:
            parsed = cls(name.strip())
        except ValueError:
            return cls.UNKNOWN
        return parsed


__all__ = ["RunStatus", "TraceStatus", "TraceEventType", "ToolResultStatus", "ToolName"]

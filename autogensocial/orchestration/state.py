from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from ..tools.exceptions import ToolArgumentError
from .enums import RunStatus, ToolName, ToolResultStatus, TraceEventType


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)


class ToolCall(BaseModel):
    call_id: str = Field(min_length=1)
    name: str
    arguments: dict[str, Any] | str | None = None
    synthetic: bool = False

    def decoded_arguments(self) -> dict[str, Any]:
        """Return the call arguments as a dict, decoding JSON text when needed."""
        raw = self.arguments
        if raw is None:
            return {}
        if isinstance(raw, Mapping):
            return dict(raw)
        text = raw.strip()
        if not text:
            return {}
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ToolArgumentError(f"Arguments for '{self.name}' are not valid JSON: {exc.msg}") from exc
        if not isinstance(decoded, dict):
            raise ToolArgumentError(f"Arguments for '{self.name}' must be a JSON object")
        return decoded

    @property
    def tool(self) -> ToolName:
        return ToolName.parse(self.name)


class ToolResult(BaseModel):
    call_id: str
    tool: str
    output: Any = None
    error: str | None = None
    status: ToolResultStatus = ToolResultStatus.OK
    attempt: int | None = None
    max_attempts: int | None = None
    synthetic: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def output_payload(self) -> Any:
        if self.ok:
            return self.output
        payload: dict[str, Any] = {
            "tool": self.tool,
            "status": self.status.value,
            "error": self.error,
        }
        if self.attempt is not None:
            payload["attempt"] = self.attempt
        if self.max_attempts is not None:
            payload["maxAttempts"] = self.max_attempts
        if self.status is ToolResultStatus.RETRY:
            payload["message"] = f"Correct the arguments and call {self.tool} again."
        elif self.status is ToolResultStatus.FAILED and self.attempt is not None:
            payload["message"] = f"Do not call {self.tool} again with these arguments."
        return payload

    def to_submission(self) -> dict[str, str]:
        return {"tool_call_id": self.call_id, "output": json.dumps(self.output_payload(), default=str)}


class Run(BaseModel):
    run_id: str = Field(min_length=1)
    thread_id: str = Field(min_length=1)
    status: RunStatus
    created_at: datetime | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    last_error: dict[str, Any] | None = None


class TraceEvent(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    run_id: str = Field(alias="runId")
    timestamp: str
    event_type: TraceEventType = Field(alias="eventType")
    agent_name: str = Field(alias="agentName")
    tool_name: str | None = Field(default=None, alias="toolName")
    input: dict[str, Any] | None = None
    output: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(slots=True)
class RetryLedger:
    """Attempt counts for failing tool calls, keyed by tool name and canonical arguments."""

    counts: dict[str, int] = field(default_factory=dict)

    @staticmethod
    def key_for(tool: str, arguments: Mapping[str, Any] | None) -> str:
        return f"{tool}:{canonical_json(dict(arguments or {}))}"

    def count(self, key: str) -> int:
        return self.counts.get(key, 0)

    def increment(self, key: str) -> int:
        value = self.counts.get(key, 0) + 1
        self.counts[key] = value
        return value


@dataclass(slots=True)
class RunState:
    """Mutable state owned by one orchestration run and threaded through the loop."""

    retries: RetryLedger = field(default_factory=RetryLedger)
    brand_id: str | None = None
    post_plan_id: str | None = None
    post_plan: dict[str, Any] | None = None
    drafts: list[dict[str, Any]] = field(default_factory=list)
    published: list[dict[str, Any]] = field(default_factory=list)

    def remember_arguments(self, arguments: Mapping[str, Any]) -> None:
        brand_id = arguments.get("brandId")
        if isinstance(brand_id, str) and brand_id.strip():
            self.brand_id = brand_id.strip()
        plan_id = arguments.get("postPlanId")
        if isinstance(plan_id, str) and plan_id.strip():
            self.post_plan_id = plan_id.strip()

    def remember_result(
        self,
        tool: ToolName,
        result: ToolResult,
        arguments: Mapping[str, Any] | None = None,
    ) -> None:
        """Carry context forward from a call that succeeded; failed calls leave the state untouched."""
        if not result.ok:
            return
        if arguments:
            self.remember_arguments(arguments)
        if not isinstance(result.output, Mapping):
            return
        if tool is ToolName.GET_POST_PLAN and isinstance(result.output.get("postPlan"), Mapping):
            self.post_plan = dict(result.output["postPlan"])
        elif tool is ToolName.GET_BRAND and isinstance(result.output.get("brand"), Mapping):
            brand_id = result.output["brand"].get("id")
            if isinstance(brand_id, str) and brand_id:
                self.brand_id = brand_id
        elif tool is ToolName.DRAFT_POST_COPY and isinstance(result.output.get("postCopy"), Mapping):
            self.drafts.append(dict(result.output["postCopy"]))
        elif tool is ToolName.CREATE_POST:
            self.published.append(dict(result.output))


@dataclass(slots=True)
class RunOutcome:
    run: Run
    state: RunState
    messages: list[dict[str, Any]] = field(default_factory=list)
    iterations: int = 0

    @property
    def status(self) -> RunStatus:
        return self.run.status


__all__ = [
    "ToolCall",
    "ToolResult",
    "Run",
    "TraceEvent",
    "RetryLedger",
    "RunState",
    "RunOutcome",
    "canonical_json",
    "utc_now_iso",
]

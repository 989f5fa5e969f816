from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class OrchestrateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    brand_id: str = Field(..., alias="brandId", min_length=1)
    post_plan_id: str = Field(..., alias="postPlanId", min_length=1)
    input: dict[str, Any] | list[Any] | str | None = Field(
        None,
        description="Additional context forwarded to the copywriter agent.",
    )


class InvalidRequestBody(BaseModel):
    """A request body that could not be decoded as JSON."""

    raw: str
    error: str


class OrchestrateResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    post_copy: dict[str, Any] = Field(..., alias="postCopy")
    post: dict[str, Any]


class OrchestrateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(..., alias="runId")
    status: Literal["completed"] = "completed"
    result: OrchestrateResult
    trace_events: list[dict[str, Any]] = Field(default_factory=list, alias="traceEvents")

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ErrorDetail(BaseModel):
    message: str
    details: Any = None
    raw: Any = None


class ErrorResponse(BaseModel):
    """``{"error": {...}}`` envelope; ``status_code`` selects the HTTP status and is not serialized."""

    error: ErrorDetail
    status_code: int = Field(500, exclude=True)

    @classmethod
    def build(cls, message: str, *, status_code: int, details: Any = None, raw: Any = None) -> "ErrorResponse":
        return cls(error=ErrorDetail(message=message, details=details, raw=raw), status_code=status_code)

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "InvalidRequestBody",
    "OrchestrateRequest",
    "OrchestrateResponse",
    "OrchestrateResult",
]

from __future__ import annotations

from typing import Any, Callable, Mapping

from ..core.logging import get_logger
from ..core.metrics import increment_guardrail_verdict
from .enums import ToolName, ToolResultStatus
from .state import RetryLedger, RunState, ToolCall, ToolResult

logger = get_logger(name=__name__)

__all__ = ["ToolCallGuardrail"]

OutputCheck = Callable[[Mapping[str, Any], Any], str | None]


def _post_copy_content(value: Any) -> str | None:
    if not isinstance(value, Mapping):
        return None
    content = value.get("content")
    if isinstance(content, str) and content.strip():
        return content
    return None


def _check_brand(arguments: Mapping[str, Any], output: Any) -> str | None:
    if not isinstance(output, Mapping) or not isinstance(output.get("brand"), Mapping):
        return f"Brand {arguments.get('brandId')!r} was not returned"
    return None


def _check_post_plan(arguments: Mapping[str, Any], output: Any) -> str | None:
    if not isinstance(output, Mapping) or "postPlan" not in output:
        return "getPostPlan must return a postPlan field"
    return None


def _check_posts(arguments: Mapping[str, Any], output: Any) -> str | None:
    if not isinstance(output, Mapping) or not isinstance(output.get("posts"), list):
        return "getPosts must return a list of posts"
    return None


def _check_draft(arguments: Mapping[str, Any], output: Any) -> str | None:
    if not isinstance(output, Mapping) or _post_copy_content(output.get("postCopy")) is None:
        return "draftPostCopy must return postCopy with non-empty content"
    return None


def _check_created_post(arguments: Mapping[str, Any], output: Any) -> str | None:
    if not isinstance(output, Mapping) or not output.get("id"):
        return "createPost did not return a stored post"
    if _post_copy_content(output.get("postCopy")) is None:
        return "createPost must store postCopy with non-empty content"
    return None


_OUTPUT_CHECKS: dict[ToolName, OutputCheck] = {
    ToolName.GET_BRAND: _check_brand,
    ToolName.GET_POST_PLAN: _check_post_plan,
    ToolName.GET_POSTS: _check_posts,
    ToolName.DRAFT_POST_COPY: _check_draft,
    ToolName.CREATE_POST: _check_created_post,
}


class ToolCallGuardrail:
    """Validates tool results and bounds how often a failing call may be retried.

    Attempts are counted per tool name and canonical arguments in the run's
    :class:`RetryLedger`. The first ``max_attempts`` failures of the same call come
    back as ``retry`` results; every failure after that is ``failed``.
    """

    def __init__(self, *, max_attempts: int = 3) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts

    def validate(self, tool_name: str, arguments: Mapping[str, Any] | None, result: ToolResult) -> str | None:
        if result.error is not None:
            return result.error
        check = _OUTPUT_CHECKS.get(ToolName.parse(tool_name))
        if check is None:
            return None
        return check(arguments or {}, result.output)

    def review(
        self,
        call: ToolCall,
        result: ToolResult,
        state: RunState,
        *,
        arguments: Mapping[str, Any] | None = None,
    ) -> ToolResult:
        if arguments is None:
            arguments = call.arguments if isinstance(call.arguments, Mapping) else {"raw": call.arguments}
        error = self.validate(call.name, arguments, result)
        if error is None:
            increment_guardrail_verdict(tool=call.name, verdict="pass")
            return result

        if call.tool is ToolName.UNKNOWN:
            increment_guardrail_verdict(tool=ToolName.UNKNOWN.value, verdict="terminal")
            logger.warning("unknown_tool_rejected", tool=call.name, call_id=call.call_id)
            return result.model_copy(update={"error": error, "status": ToolResultStatus.FAILED})

        key = RetryLedger.key_for(call.name, arguments)
        attempt = state.retries.increment(key)
        status = ToolResultStatus.RETRY if attempt <= self.max_attempts else ToolResultStatus.FAILED
        increment_guardrail_verdict(tool=call.name, verdict=status.value)
        logger.info(
            "tool_call_rejected",
            tool=call.name,
            call_id=call.call_id,
            attempt=attempt,
            max_attempts=self.max_attempts,
            status=status.value,
            error=error,
        )
        return result.model_copy(
            update={
                "error": error,
                "status": status,
                "attempt": attempt,
                "max_attempts": self.max_attempts,
            }
        )

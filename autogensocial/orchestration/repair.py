from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping
from uuid import uuid4

from ..core.logging import get_logger
from ..core.metrics import increment_synthetic_call
from ..tools.plans import first_topic
from .enums import ToolName
from .state import RunState, ToolCall

logger = get_logger(name=__name__)

__all__ = ["DefaultedArguments", "apply_defaults", "plan_auto_publish"]


@dataclass(slots=True)
class DefaultedArguments:
    arguments: dict[str, Any]
    filled: list[str] = field(default_factory=list)


def _missing(arguments: Mapping[str, Any], key: str) -> bool:
    value = arguments.get(key)
    return value is None or (isinstance(value, str) and not value.strip())


def apply_defaults(
    tool: ToolName,
    arguments: Mapping[str, Any],
    state: RunState,
    *,
    default_topic: bool = True,
) -> DefaultedArguments:
    """Fill omitted optional arguments from context gathered earlier in the run."""
    filled: dict[str, Any] = {}
    if tool is ToolName.DRAFT_POST_COPY and default_topic and _missing(arguments, "topic"):
        topic = first_topic(state.post_plan)
        if topic is not None:
            filled["topic"] = topic
    if tool in (ToolName.CREATE_POST, ToolName.GET_POSTS):
        if _missing(arguments, "brandId") and state.brand_id:
            filled["brandId"] = state.brand_id
        if _missing(arguments, "postPlanId") and state.post_plan_id:
            filled["postPlanId"] = state.post_plan_id

    if not filled:
        return DefaultedArguments(arguments=dict(arguments))
    for name in filled:
        increment_synthetic_call(tool=tool.value, kind=f"default_{name}")
    logger.info("tool_arguments_defaulted", tool=tool.value, fields=sorted(filled))
    return DefaultedArguments(arguments={**arguments, **filled}, filled=sorted(filled))


def plan_auto_publish(state: RunState) -> ToolCall | None:
    """Synthesize the createPost call a planner skipped after drafting copy.

    Evaluated once the run has completed. Returns ``None`` when nothing was
    drafted, when any post was already published during the run, or when no
    brand id is known.
    """
    if state.published or not state.drafts:
        return None
    if not state.brand_id:
        logger.warning("auto_publish_skipped", reason="brand_id_unknown")
        return None

    arguments: dict[str, Any] = {"brandId": state.brand_id, "postCopy": dict(state.drafts[-1])}
    if state.post_plan_id:
        arguments["postPlanId"] = state.post_plan_id
    increment_synthetic_call(tool=ToolName.CREATE_POST.value, kind="auto_publish")
    return ToolCall(
        call_id=f"synthetic-{uuid4().hex}",
        name=ToolName.CREATE_POST.value,
        arguments=arguments,
        synthetic=True,
    )

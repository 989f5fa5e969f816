from __future__ import annotations

from typing import Any, Mapping

from .context import ToolContext, require_string
from .registry import ToolSpec

GET_POST_PLAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "postPlanId": {"type": "string", "description": "Unique identifier for the post plan."},
    },
    "required": ["postPlanId"],
    "additionalProperties": False,
}

_TOPIC_KEYS = ("topic", "title", "name")


def first_topic(post_plan: Mapping[str, Any] | None) -> str | None:
    """Return the first usable topic of a post plan, if it names any.

    Topics are read from a ``topics`` list (plain strings or objects carrying a
    ``topic``/``title``/``name``) and then from a single ``topic`` field.
    """
    if not isinstance(post_plan, Mapping):
        return None
    topics = post_plan.get("topics")
    if isinstance(topics, list):
        for entry in topics:
            if isinstance(entry, str) and entry.strip():
                return entry.strip()
            if isinstance(entry, Mapping):
                for key in _TOPIC_KEYS:
                    value = entry.get(key)
                    if isinstance(value, str) and value.strip():
                        return value.strip()
    topic = post_plan.get("topic")
    if isinstance(topic, str) and topic.strip():
        return topic.strip()
    return None


async def get_post_plan(context: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    plan_id = require_string(arguments, "postPlanId")
    matches = await context.call_store(
        context.store.query(context.post_plans, {"id": plan_id}, limit=1),
        action="query post plans",
    )
    return {"postPlan": matches[0] if matches else None}


def build_plan_tools(context: ToolContext) -> list[ToolSpec]:
    async def execute(arguments: dict[str, Any]) -> dict[str, Any]:
        return await get_post_plan(context, arguments)

    return [
        ToolSpec(
            name="getPostPlan",
            description="Retrieve a post plan document by its id. Returns null when the plan does not exist.",
            input_schema=GET_POST_PLAN_SCHEMA,
            execute=execute,
        )
    ]

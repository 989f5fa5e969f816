from __future__ import annotations

from typing import Any, Mapping

from .exceptions import ToolArgumentError
from .registry import ToolSpec

DRAFT_POST_COPY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "content": {"type": "string", "description": "Body text of the post."},
        "comment": {"type": "string", "description": "First comment published under the post."},
        "hashtags": {"type": "array", "items": {"type": "string"}, "description": "Hashtags for the post."},
        "topic": {"type": "string", "description": "Post plan topic the copy was written for."},
    },
    "required": ["content"],
    "additionalProperties": False,
}


def normalize_hashtags(values: Any) -> list[str]:
    if values is None:
        return []
    if not isinstance(values, list):
        raise ToolArgumentError("hashtags must be a list of strings")
    seen: set[str] = set()
    hashtags: list[str] = []
    for value in values:
        if not isinstance(value, str):
            raise ToolArgumentError("hashtags must be a list of strings")
        tag = "".join(value.split()).lstrip("#")
        if not tag:
            continue
        key = tag.lower()
        if key in seen:
            continue
        seen.add(key)
        hashtags.append(f"#{tag}")
    return hashtags


def normalize_post_copy(payload: Mapping[str, Any]) -> dict[str, Any]:
    content = payload.get("content")
    if not isinstance(content, str) or not content.strip():
        raise ToolArgumentError("postCopy.content is required and must be a non-empty string")
    comment = payload.get("comment")
    if comment is not None and not isinstance(comment, str):
        raise ToolArgumentError("postCopy.comment must be a string")
    post_copy: dict[str, Any] = {
        "content": content.strip(),
        "comment": (comment or "").strip(),
        "hashtags": normalize_hashtags(payload.get("hashtags")),
    }
    topic = payload.get("topic")
    if isinstance(topic, str) and topic.strip():
        post_copy["topic"] = topic.strip()
    return post_copy


async def draft_post_copy(arguments: dict[str, Any]) -> dict[str, Any]:
    return {"postCopy": normalize_post_copy(arguments)}


def build_copywriting_tools() -> list[ToolSpec]:
    return [
        ToolSpec(
            name="draftPostCopy",
            description=(
                "Submit drafted post copy for normalization. Returns the cleaned postCopy to pass to createPost."
            ),
            input_schema=DRAFT_POST_COPY_SCHEMA,
            execute=draft_post_copy,
        )
    ]

from __future__ import annotations

from typing import Any, Mapping, Sequence
from uuid import uuid4

from ..core.logging import get_logger
from ..orchestration.state import utc_now_iso
from .context import ToolContext, require_string
from .copywriting import normalize_post_copy
from .exceptions import ToolArgumentError, ToolExecutionError, ToolNotFoundError
from .registry import ToolSpec

logger = get_logger(name=__name__)

GET_POSTS_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "brandId": {"type": "string", "description": "Unique identifier for the brand."},
        "postPlanId": {"type": "string", "description": "Optional post plan id to filter posts."},
        "fields": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Dotted field paths to return from each post.",
        },
        "limit": {"type": "number", "description": "Maximum number of posts to return."},
    },
    "required": ["brandId"],
    "additionalProperties": False,
}

CREATE_POST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "brandId": {"type": "string", "description": "Unique identifier for the brand."},
        "postPlanId": {"type": "string", "description": "Post plan the post belongs to."},
        "postCopy": {"type": "object", "description": "Generated post copy object."},
    },
    "required": ["brandId", "postCopy"],
    "additionalProperties": False,
}

UPDATE_POST_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "postId": {"type": "string", "description": "Unique identifier for the post document."},
        "updateFields": {"type": "object", "description": "Fields to update in the post document."},
    },
    "required": ["postId", "updateFields"],
    "additionalProperties": False,
}

_MISSING = object()


def _lookup(document: Any, path: Sequence[str]) -> Any:
    current = document
    for part in path:
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def project_fields(document: Mapping[str, Any], fields: Sequence[str]) -> dict[str, Any]:
    """Copy only the requested dotted paths of ``document``, rebuilding nested objects."""
    projected: dict[str, Any] = {}
    for field in fields:
        parts = [part for part in field.split(".") if part]
        if not parts:
            continue
        value = _lookup(document, parts)
        if value is _MISSING:
            continue
        target = projected
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = value
    return projected


def validate_update_post_copy(post_copy: Any) -> None:
    if not isinstance(post_copy, Mapping):
        raise ToolArgumentError("postCopy must be an object")
    content = post_copy.get("content")
    if not isinstance(content, str) or not content:
        raise ToolArgumentError("postCopy.content is required and must be a non-empty string")
    comment = post_copy.get("comment")
    if not isinstance(comment, str) or not comment:
        raise ToolArgumentError("postCopy.comment is required and must be a non-empty string")
    hashtags = post_copy.get("hashtags")
    if not isinstance(hashtags, list) or not hashtags:
        raise ToolArgumentError("postCopy.hashtags is required and must be a non-empty array of strings")
    for tag in hashtags:
        if not isinstance(tag, str) or not tag:
            raise ToolArgumentError("Each hashtag in postCopy.hashtags must be a non-empty string")


async def get_posts(context: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    brand_id = require_string(arguments, "brandId")
    filters: dict[str, Any] = {"brandId": brand_id}
    plan_id = arguments.get("postPlanId")
    if isinstance(plan_id, str) and plan_id.strip():
        filters["postPlanId"] = plan_id.strip()

    limit = arguments.get("limit")
    if limit is not None:
        limit = int(limit)
        if limit < 1:
            raise ToolArgumentError("limit must be a positive number")

    posts = await context.call_store(
        context.store.query(context.posts, filters, limit=limit),
        action="query posts",
    )
    fields = arguments.get("fields")
    if fields:
        posts = [project_fields(post, [str(field) for field in fields]) for post in posts]
    return {"posts": posts}


async def create_post(context: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    brand_id = require_string(arguments, "brandId")
    post_copy = arguments.get("postCopy")
    if not isinstance(post_copy, Mapping):
        raise ToolArgumentError("Missing required field: postCopy")
    now = utc_now_iso()
    document: dict[str, Any] = {
        "id": str(uuid4()),
        "brandId": brand_id,
        "postCopy": normalize_post_copy(post_copy),
        "status": "draft",
        "createdAt": now,
        "updatedAt": now,
    }
    plan_id = arguments.get("postPlanId")
    if isinstance(plan_id, str) and plan_id.strip():
        document["postPlanId"] = plan_id.strip()
    created = await context.call_store(context.store.create(context.posts, document), action="create post")
    logger.info("post_created", post_id=created.get("id"), brand_id=brand_id)
    return created


async def update_post(context: ToolContext, arguments: dict[str, Any]) -> dict[str, Any]:
    post_id = require_string(arguments, "postId")
    update_fields = arguments.get("updateFields")
    if not isinstance(update_fields, Mapping):
        raise ToolArgumentError("Missing or invalid required field: updateFields")
    if "postCopy" in update_fields:
        validate_update_post_copy(update_fields["postCopy"])

    existing = await context.call_store(context.store.read(context.posts, post_id), action="read post")
    if existing is None:
        raise ToolNotFoundError(f"Post with id {post_id} not found")
    merged = {**existing, **{key: value for key, value in update_fields.items() if key != "id"}}
    merged["updatedAt"] = utc_now_iso()
    replaced = await context.call_store(
        context.store.replace(context.posts, post_id, merged),
        action="update post",
    )
    if replaced is None:
        raise ToolExecutionError("Failed to update post document")
    logger.info("post_updated", post_id=post_id, fields=sorted(update_fields))
    return replaced


def build_post_tools(context: ToolContext) -> list[ToolSpec]:
    async def execute_get(arguments: dict[str, Any]) -> dict[str, Any]:
        return await get_posts(context, arguments)

    async def execute_create(arguments: dict[str, Any]) -> dict[str, Any]:
        return await create_post(context, arguments)

    async def execute_update(arguments: dict[str, Any]) -> dict[str, Any]:
        return await update_post(context, arguments)

    return [
        ToolSpec(
            name="getPosts",
            description="Retrieve posts for a brand (and optional postPlanId), projecting only requested fields.",
            input_schema=GET_POSTS_SCHEMA,
            execute=execute_get,
        ),
        ToolSpec(
            name="createPost",
            description="Create a new post document in the database after generating postCopy.",
            input_schema=CREATE_POST_SCHEMA,
            execute=execute_create,
        ),
        ToolSpec(
            name="updatePost",
            description="Update an existing post document in the database.",
            input_schema=UPDATE_POST_SCHEMA,
            execute=execute_update,
        ),
    ]

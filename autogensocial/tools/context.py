from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, TypeVar

from ..core.config import Settings
from ..services.documents import DocumentStore, DocumentStoreError
from .exceptions import ToolArgumentError, ToolExecutionError

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class ToolContext:
    """Document store plus the collection names the tools read and write."""

    store: DocumentStore
    brands: str = "brands"
    post_plans: str = "postPlans"
    posts: str = "posts"

    @classmethod
    def from_settings(cls, store: DocumentStore, settings: Settings) -> "ToolContext":
        return cls(
            store=store,
            brands=settings.store.brands_collection,
            post_plans=settings.store.post_plans_collection,
            posts=settings.store.posts_collection,
        )

    async def call_store(self, operation: Awaitable[T], *, action: str) -> T:
        try:
            return await operation
        except DocumentStoreError as exc:
            raise ToolExecutionError(f"Failed to {action}: {exc}") from exc


def require_string(arguments: dict[str, Any], name: str) -> str:
    value = arguments.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ToolArgumentError(f"Missing required field: {name}")
    return value.strip()

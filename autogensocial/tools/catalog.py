from __future__ import annotations

from ..core.config import Settings
from ..services.documents import DocumentStore
from .brands import build_brand_tools
from .context import ToolContext
from .copywriting import build_copywriting_tools
from .plans import build_plan_tools
from .posts import build_post_tools
from .registry import ToolRegistry

__all__ = ["build_tool_registry"]


def build_tool_registry(store: DocumentStore, settings: Settings) -> ToolRegistry:
    """Registry of every tool the copywriter agent is allowed to call."""
    context = ToolContext.from_settings(store, settings)
    return ToolRegistry(
        [
            *build_brand_tools(context),
            *build_plan_tools(context),
            *build_post_tools(context),
            *build_copywriting_tools(),
        ]
    )

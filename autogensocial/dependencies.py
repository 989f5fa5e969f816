from __future__ import annotations

from collections.abc import AsyncIterator

from .core.config import Settings, get_settings
from .orchestration.service import ContentOrchestrator
from .services.documents import build_document_store
from .services.planner import AgentsPlannerClient
from .tools.catalog import build_tool_registry

_content_orchestrator_singleton: ContentOrchestrator | None = None


def build_content_orchestrator(settings: Settings) -> ContentOrchestrator:
    store = build_document_store(settings)
    return ContentOrchestrator(
        planner=AgentsPlannerClient(settings.planner),
        store=store,
        registry=build_tool_registry(store, settings),
        settings=settings,
    )


def get_content_orchestrator_singleton(settings: Settings) -> ContentOrchestrator:
    global _content_orchestrator_singleton
    if _content_orchestrator_singleton is None:
        _content_orchestrator_singleton = build_content_orchestrator(settings)
    return _content_orchestrator_singleton


async def close_content_orchestrator() -> None:
    global _content_orchestrator_singleton
    if _content_orchestrator_singleton is not None:
        orchestrator, _content_orchestrator_singleton = _content_orchestrator_singleton, None
        await orchestrator.aclose()


async def get_content_orchestrator() -> AsyncIterator[ContentOrchestrator]:
    yield get_content_orchestrator_singleton(get_settings())

from __future__ import annotations

import asyncio
import time
from typing import Any, Mapping
from uuid import uuid4

from pydantic import ValidationError

from ..core.config import Settings
from ..core.logging import get_logger
from ..core.metrics import mark_orchestration_completed, mark_orchestration_started
from ..schemas.orchestrator import (
    ErrorResponse,
    InvalidRequestBody,
    OrchestrateRequest,
    OrchestrateResponse,
    OrchestrateResult,
)
from ..services.documents import DocumentStore, DocumentStoreError
from ..services.planner import PlannerClient, PlannerError
from ..tools.brands import get_brand
from ..tools.context import ToolContext
from ..tools.exceptions import ToolError, ToolNotFoundError
from ..tools.plans import get_post_plan
from ..tools.posts import create_post
from ..tools.registry import ToolRegistry
from ..utils.json_encoding import json_safe
from .enums import RunStatus, TraceEventType
from .exceptions import OrchestrationError, RunFailedError
from .extraction import OutputExtractor
from .loop import RunLoop
from .state import RunState
from .trace import TraceManager

logger = get_logger(name=__name__)

__all__ = ["ContentOrchestrator"]


class _Abort(Exception):
    """Carries a finished error response out of the orchestration steps."""

    def __init__(self, response: ErrorResponse) -> None:
        super().__init__(response.error.message)
        self.response = response


class ContentOrchestrator:
    """Use case behind ``POST /orchestrate_content``.

    Fetches the brand and post plan, runs the copywriter agent through
    :class:`RunLoop`, extracts its post copy and makes sure a post document
    exists. Every outcome, including invalid input, leaves a finalized trace in
    the agent-runs collection. ``orchestrate`` never raises.
    """

    def __init__(
        self,
        *,
        planner: PlannerClient,
        store: DocumentStore,
        registry: ToolRegistry,
        settings: Settings,
        loop: RunLoop | None = None,
        extractor: OutputExtractor | None = None,
    ) -> None:
        self._planner = planner
        self._store = store
        self._registry = registry
        self._settings = settings
        self._tools = ToolContext.from_settings(store, settings)
        self._loop = loop or RunLoop(planner, registry, settings=settings.orchestration)
        self._extractor = extractor or OutputExtractor()
        self._agent_id: str | None = settings.planner.agent_id
        self._agent_lock = asyncio.Lock()

    @property
    def orchestrator_name(self) -> str:
        return self._settings.orchestration.orchestrator_agent_name

    @property
    def copywriter_name(self) -> str:
        return self._settings.orchestration.copywriter_agent_name

    async def orchestrate(self, body: Any) -> OrchestrateResponse | ErrorResponse:
        trace = TraceManager(str(uuid4()), self.orchestrator_name)
        started = time.perf_counter()
        mark_orchestration_started()
        try:
            response: OrchestrateResponse | ErrorResponse = await self._orchestrate(body, trace)
        except _Abort as abort:
            response = abort.response
        except OrchestrationError as exc:
            response = self._fail(
                trace,
                exc.message,
                status_code=exc.status_code,
                details=exc.detail,
                tool_name=exc.tool_name,
                agent_name=exc.agent_name or self.copywriter_name,
            )
        except PlannerError as exc:
            response = self._fail(
                trace,
                f"Planner request failed: {exc}",
                status_code=504 if exc.status_code == 504 else 502,
                details={"plannerStatus": exc.status_code},
                raw=exc.body,
                agent_name=self.copywriter_name,
            )
        except DocumentStoreError as exc:
            response = self._fail(trace, f"Document store failure: {exc}", status_code=500)
        except Exception as exc:  # noqa: BLE001 - the service boundary returns an envelope
            logger.exception("orchestration_crashed", run_id=trace.run_id)
            response = self._fail(trace, "Unexpected orchestration failure", status_code=500, raw=str(exc))

        status = "completed" if isinstance(response, OrchestrateResponse) else "failed"
        mark_orchestration_completed(status=status, latency=time.perf_counter() - started)
        await self._persist(trace)
        logger.info("orchestration_finished", run_id=trace.run_id, status=status)
        return response

    async def aclose(self) -> None:
        await self._planner.aclose()
        await self._store.aclose()

    async def get_agent_run(self, run_id: str) -> dict[str, Any] | None:
        return await self._store.read(self._settings.store.agent_runs_collection, run_id)

    async def ensure_agent(self) -> str:
        if self._agent_id is not None:
            return self._agent_id
        async with self._agent_lock:
            if self._agent_id is None:
                planner_settings = self._settings.planner
                self._agent_id = await self._planner.create_agent(
                    name=planner_settings.agent_name,
                    instructions=planner_settings.resolve_instructions(),
                    tools=self._registry.definitions(),
                    model=planner_settings.model,
                )
        return self._agent_id

    async def _orchestrate(self, body: Any, trace: TraceManager) -> OrchestrateResponse:
        if isinstance(body, InvalidRequestBody):
            raise _Abort(
                self._fail(
                    trace,
                    "Invalid JSON in request body",
                    status_code=400,
                    details={"error": body.error},
                    raw=body.raw,
                )
            )
        try:
            request = OrchestrateRequest.model_validate(body)
        except ValidationError as exc:
            raise _Abort(
                self._fail(
                    trace,
                    "Missing or invalid postPlanId or brandId in request body",
                    status_code=400,
                    details={"errors": exc.errors(include_url=False)},
                    raw=body,
                )
            ) from exc

        post_plan = await self._fetch_post_plan(trace, request)
        brand = await self._fetch_brand(trace, request)
        agent_id = await self.ensure_agent()

        state = RunState(brand_id=request.brand_id, post_plan_id=request.post_plan_id, post_plan=post_plan)
        message = {
            "payload": {
                "brandDocument": brand,
                "postPlanDocument": post_plan,
                "additionalContext": request.input,
            }
        }
        trace.add_event(
            TraceEventType.CUSTOM,
            agent_name=self.copywriter_name,
            input={"brandId": request.brand_id, "postPlanId": request.post_plan_id},
            metadata={"phase": "copywriter_started", "agentId": agent_id},
        )
        outcome = await self._loop.execute(agent_id, message, trace, state)

        if outcome.status in (RunStatus.FAILED, RunStatus.CANCELLED):
            raise RunFailedError(
                f"Copywriter run {outcome.status.value}",
                detail={"plannerRunId": outcome.run.run_id, "lastError": outcome.run.last_error},
                agent_name=self.copywriter_name,
            )

        extraction = self._extractor.extract(outcome.messages)
        if not extraction.ok or extraction.payload is None:
            raise _Abort(
                self._fail(
                    trace,
                    "No postCopy returned from agent",
                    status_code=500,
                    details={"reason": extraction.error},
                    raw=extraction.raw,
                    agent_name=self.copywriter_name,
                )
            )
        post_copy = extraction.payload
        trace.add_event(
            TraceEventType.CUSTOM,
            agent_name=self.copywriter_name,
            output={"postCopy": post_copy},
            metadata={"phase": "copywriter_completed", "iterations": outcome.iterations},
        )

        if outcome.state.published:
            post = outcome.state.published[-1]
        else:
            post = await self._publish(trace, request, post_copy)

        trace.succeed({"postId": post.get("id")})
        return OrchestrateResponse(
            run_id=trace.run_id,
            result=OrchestrateResult(post_copy=post_copy, post=post),
            trace_events=[event.to_record() for event in trace.events],
        )

    async def _fetch_post_plan(self, trace: TraceManager, request: OrchestrateRequest) -> dict[str, Any]:
        arguments = {"postPlanId": request.post_plan_id}
        result = await self._call_tool(trace, "getPostPlan", arguments, get_post_plan, "Error fetching postPlan")
        post_plan = result.get("postPlan")
        if not isinstance(post_plan, Mapping):
            raise _Abort(
                self._fail(trace, "postPlan not found", status_code=404, details=arguments, tool_name="getPostPlan")
            )
        return dict(post_plan)

    async def _fetch_brand(self, trace: TraceManager, request: OrchestrateRequest) -> dict[str, Any]:
        arguments = {"brandId": request.brand_id}
        result = await self._call_tool(trace, "getBrand", arguments, get_brand, "Error fetching brand")
        return dict(result["brand"])

    async def _publish(
        self,
        trace: TraceManager,
        request: OrchestrateRequest,
        post_copy: dict[str, Any],
    ) -> dict[str, Any]:
        arguments = {"brandId": request.brand_id, "postPlanId": request.post_plan_id, "postCopy": post_copy}
        return await self._call_tool(trace, "createPost", arguments, create_post, "Error creating post")

    async def _call_tool(
        self,
        trace: TraceManager,
        tool_name: str,
        arguments: dict[str, Any],
        function: Any,
        failure_message: str,
    ) -> dict[str, Any]:
        trace.add_event(TraceEventType.TOOL_INVOKE, tool_name=tool_name, input=arguments)
        try:
            result = await function(self._tools, dict(arguments))
        except ToolNotFoundError as exc:
            raise _Abort(
                self._fail(trace, str(exc), status_code=404, details=arguments, tool_name=tool_name)
            ) from exc
        except ToolError as exc:
            raise _Abort(
                self._fail(
                    trace,
                    failure_message,
                    status_code=500,
                    details={**arguments, "reason": str(exc)},
                    tool_name=tool_name,
                )
            ) from exc
        trace.add_event(TraceEventType.TOOL_RESULT, tool_name=tool_name, output=result)
        return result

    def _fail(
        self,
        trace: TraceManager,
        message: str,
        *,
        status_code: int,
        details: Any = None,
        raw: Any = None,
        tool_name: str | None = None,
        agent_name: str | None = None,
    ) -> ErrorResponse:
        extra = dict(details) if isinstance(details, Mapping) else ({"detail": details} if details is not None else {})
        safe_details = json_safe({"runId": trace.run_id, **extra})
        trace.fail(
            {"message": message, "statusCode": status_code, "details": safe_details},
            tool_name=tool_name,
            agent_name=agent_name,
        )
        logger.warning(
            "orchestration_failed",
            run_id=trace.run_id,
            status_code=status_code,
            message=message,
            tool=tool_name,
        )
        return ErrorResponse.build(message, status_code=status_code, details=safe_details, raw=json_safe(raw))

    async def _persist(self, trace: TraceManager) -> None:
        collection = self._settings.store.agent_runs_collection
        try:
            await self._store.append(collection, trace.build_record())
        except DocumentStoreError as exc:
            logger.error("trace_persist_failed", run_id=trace.run_id, collection=collection, error=str(exc))

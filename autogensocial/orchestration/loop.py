from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Mapping

from ..core.config import OrchestrationSettings
from ..core.logging import get_logger
from ..core.metrics import increment_planner_poll
from ..services.planner import PlannerClient, PlannerError
from ..tools.exceptions import ToolArgumentError
from ..tools.registry import ToolRegistry
from .enums import RunStatus, ToolResultStatus, TraceEventType
from .exceptions import RequiresActionError, RunTimeoutError
from .guardrails import ToolCallGuardrail
from .repair import apply_defaults, plan_auto_publish
from .state import Run, RunOutcome, RunState, ToolCall, ToolResult
from .trace import TraceManager

logger = get_logger(name=__name__)

__all__ = ["RunLoop"]

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


class _PreparedCall:
    __slots__ = ("call", "arguments", "error", "defaults")

    def __init__(
        self,
        call: ToolCall,
        arguments: dict[str, Any],
        *,
        error: str | None = None,
        defaults: list[str] | None = None,
    ) -> None:
        self.call = call
        self.arguments = arguments
        self.error = error
        self.defaults = defaults or []


class RunLoop:
    """Drives one remote planner run to a terminal status.

    Each ``requires_action`` round decodes and defaults the pending tool calls,
    dispatches them concurrently through the registry, reviews every result with
    the guardrail and submits the whole batch back in one request. A run that
    completes with drafted but unpublished copy gets one synthetic createPost.
    """

    def __init__(
        self,
        planner: PlannerClient,
        registry: ToolRegistry,
        *,
        settings: OrchestrationSettings | None = None,
        guardrail: ToolCallGuardrail | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self._planner = planner
        self._registry = registry
        self._settings = settings or OrchestrationSettings()
        self._guardrail = guardrail or ToolCallGuardrail(max_attempts=self._settings.max_tool_attempts)
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self,
        agent_id: str,
        message: Any,
        trace: TraceManager,
        state: RunState | None = None,
    ) -> RunOutcome:
        state = state or RunState()
        content = message if isinstance(message, str) else json.dumps(message, default=str)

        thread_id = await self._planner.create_thread()
        await self._planner.create_message(thread_id, content)
        run = await self._planner.create_run(thread_id, agent_id)
        trace.add_event(
            TraceEventType.CUSTOM,
            metadata={"phase": "run_created", "threadId": thread_id, "plannerRunId": run.run_id},
        )
        logger.info("planner_run_started", thread_id=thread_id, run_id=run.run_id, agent_id=agent_id)

        deadline = (
            self._clock() + self._settings.run_timeout_seconds
            if self._settings.run_timeout_seconds is not None
            else None
        )
        iterations = 0
        while True:
            increment_planner_poll(status=run.status.value)
            if run.status is RunStatus.COMPLETED:
                if self._settings.auto_publish:
                    await self.publish_pending_draft(trace, state)
                messages = await self._planner.list_messages(thread_id)
                logger.info("planner_run_completed", run_id=run.run_id, iterations=iterations)
                return RunOutcome(run=run, state=state, messages=messages, iterations=iterations)
            if run.status in (RunStatus.FAILED, RunStatus.CANCELLED):
                logger.warning(
                    "planner_run_terminated",
                    run_id=run.run_id,
                    status=run.status.value,
                    last_error=run.last_error,
                )
                return RunOutcome(run=run, state=state, iterations=iterations)

            iterations += 1
            await self._enforce_budget(run, iterations, deadline)
            if run.status is RunStatus.REQUIRES_ACTION:
                outputs = await self.process_tool_calls(run, trace, state)
                run = await self._planner.submit_tool_outputs(run.thread_id, run.run_id, outputs)
                continue
            await self._sleep(self._settings.poll_interval_seconds)
            run = await self._planner.get_run(run.thread_id, run.run_id)

    async def process_tool_calls(self, run: Run, trace: TraceManager, state: RunState) -> list[dict[str, str]]:
        """Dispatch one batch of pending calls and return the submission payload."""
        if not run.tool_calls:
            raise RequiresActionError(detail={"runId": run.run_id, "threadId": run.thread_id})

        prepared = [self._prepare(call, state) for call in run.tool_calls]
        results = await asyncio.gather(*(self._invoke(item, trace, state) for item in prepared))
        for item, result in zip(prepared, results):
            state.remember_result(item.call.tool, result, item.arguments)
        return [result.to_submission() for result in results]

    async def publish_pending_draft(self, trace: TraceManager, state: RunState) -> ToolResult | None:
        """Store the last draft when the completed run never called createPost."""
        synthetic = plan_auto_publish(state)
        if synthetic is None:
            return None
        item = _PreparedCall(synthetic, dict(synthetic.arguments or {}))
        result = await self._invoke(item, trace, state, review=False)
        state.remember_result(synthetic.tool, result)
        return result

    def _prepare(self, call: ToolCall, state: RunState) -> _PreparedCall:
        try:
            arguments = call.decoded_arguments()
        except ToolArgumentError as exc:
            return _PreparedCall(call, {}, error=str(exc))
        defaulted = apply_defaults(
            call.tool,
            arguments,
            state,
            default_topic=self._settings.auto_default_topic,
        )
        return _PreparedCall(call, defaulted.arguments, defaults=defaulted.filled)

    async def _invoke(
        self,
        item: _PreparedCall,
        trace: TraceManager,
        state: RunState,
        *,
        review: bool = True,
    ) -> ToolResult:
        call = item.call
        metadata: dict[str, Any] = {"callId": call.call_id}
        if call.synthetic:
            metadata["synthetic"] = True
        if item.defaults:
            metadata["defaulted"] = item.defaults
        trace.add_event(
            TraceEventType.TOOL_INVOKE,
            tool_name=call.name,
            input=item.arguments if item.error is None else {"raw": call.arguments},
            metadata=metadata,
        )

        if item.error is not None:
            result = ToolResult(
                call_id=call.call_id,
                tool=call.name,
                error=f"Invalid arguments: {item.error}",
                status=ToolResultStatus.RETRY,
            )
            retry_arguments: Mapping[str, Any] = {"raw": call.arguments}
        else:
            retry_arguments = item.arguments
            try:
                result = await self._registry.dispatch(call.call_id, call.name, item.arguments)
            except Exception as exc:  # noqa: BLE001 - every call must produce a result
                logger.exception("tool_dispatch_crashed", tool=call.name, call_id=call.call_id)
                result = ToolResult(call_id=call.call_id, tool=call.name, error=str(exc), status=ToolResultStatus.RETRY)

        if review:
            result = self._guardrail.review(call, result, state, arguments=retry_arguments)
        if call.synthetic:
            result = result.model_copy(update={"synthetic": True})

        if result.ok:
            trace.add_event(TraceEventType.TOOL_RESULT, tool_name=call.name, output=result.output, metadata=metadata)
        else:
            error: dict[str, Any] = {"message": result.error, "status": result.status.value}
            if result.attempt is not None:
                error["attempt"] = result.attempt
                error["maxAttempts"] = result.max_attempts
            trace.add_event(TraceEventType.ERROR, tool_name=call.name, error=error, metadata=metadata)
        return result

    async def _enforce_budget(self, run: Run, iterations: int, deadline: float | None) -> None:
        reason: str | None = None
        max_iterations = self._settings.max_iterations
        if max_iterations is not None and iterations > max_iterations:
            reason = f"Run exceeded {max_iterations} iterations"
        elif deadline is not None and self._clock() >= deadline:
            reason = f"Run exceeded {self._settings.run_timeout_seconds} seconds"
        if reason is None:
            return
        logger.warning("planner_run_budget_exceeded", run_id=run.run_id, reason=reason)
        try:
            await self._planner.cancel_run(run.thread_id, run.run_id)
        except PlannerError as exc:
            logger.warning("planner_run_cancel_failed", run_id=run.run_id, error=str(exc))
        raise RunTimeoutError(reason, detail={"runId": run.run_id, "iterations": iterations})

from __future__ import annotations

import asyncio
import json

import pytest

from autogensocial.orchestration.enums import RunStatus, ToolResultStatus, TraceEventType
from autogensocial.orchestration.exceptions import RequiresActionError, RunTimeoutError
from autogensocial.orchestration.extraction import extract_post_copy
from autogensocial.orchestration.loop import RunLoop
from autogensocial.orchestration.state import RunState
from autogensocial.orchestration.trace import TraceManager
from autogensocial.tools.catalog import build_tool_registry
from autogensocial.tools.registry import ToolRegistry, ToolSpec
from tests.helpers.stubs import (
    POST_PLAN,
    ScriptedPlannerClient,
    assistant_message,
    make_run,
    make_settings,
    post_copy_answer,
    seeded_store,
    tool_call,
)


def _loop(planner, *, store=None, registry=None, sleeps=None, clock=None, **orchestration) -> RunLoop:
    settings = make_settings(**orchestration)
    registry = registry or build_tool_registry(store or seeded_store(), settings)

    async def _sleep(seconds: float) -> None:
        if sleeps is not None:
            sleeps.append(seconds)

    kwargs = {"clock": clock} if clock is not None else {}
    return RunLoop(planner, registry, settings=settings.orchestration, sleep=_sleep, **kwargs)


def _outputs(planner: ScriptedPlannerClient, index: int) -> dict[str, dict]:
    return {item["tool_call_id"]: json.loads(item["output"]) for item in planner.submissions[index]}


@pytest.mark.asyncio
async def test_fetch_brand_then_complete_without_payload() -> None:
    planner = ScriptedPlannerClient(
        [
            make_run("requires_action", tool_calls=[tool_call("c1", "getBrand", {"brandId": "brand1"})]),
            make_run("completed"),
        ],
        messages=[assistant_message("I looked up the brand.")],
    )
    trace = TraceManager("trace-1", "orchestrator")

    outcome = await _loop(planner).execute("agent-1", {"payload": {}}, trace)

    assert outcome.status is RunStatus.COMPLETED
    assert _outputs(planner, 0)["c1"]["brand"]["id"] == "brand1"
    assert outcome.state.brand_id == "brand1"
    extracted = extract_post_copy(outcome.messages)
    assert extracted.status == "failed"
    assert extracted.payload is None


@pytest.mark.asyncio
async def test_message_is_json_encoded() -> None:
    planner = ScriptedPlannerClient([make_run("completed")])

    await _loop(planner).execute("agent-1", {"payload": {"brandDocument": {"id": "brand1"}}}, TraceManager("t", "o"))
    await _loop(planner).execute("agent-1", "plain text", TraceManager("t", "o"))

    assert json.loads(planner.posted_messages[0]) == {"payload": {"brandDocument": {"id": "brand1"}}}
    assert planner.posted_messages[1] == "plain text"


@pytest.mark.asyncio
async def test_missing_content_retries_three_times_then_fails() -> None:
    runs = [
        make_run("requires_action", tool_calls=[tool_call(f"c{index}", "draftPostCopy", {"comment": "hi"})])
        for index in range(1, 5)
    ]
    planner = ScriptedPlannerClient([*runs, make_run("completed")])

    outcome = await _loop(planner).execute("agent-1", "go", TraceManager("trace-1", "orchestrator"))

    assert outcome.status is RunStatus.COMPLETED
    results = [_outputs(planner, index)[f"c{index + 1}"] for index in range(4)]
    assert [(item["status"], item["attempt"]) for item in results] == [
        ("retry", 1),
        ("retry", 2),
        ("retry", 3),
        ("failed", 4),
    ]
    assert all(item["maxAttempts"] == 3 for item in results)
    assert "missing required fields: content" in results[0]["error"]


@pytest.mark.asyncio
async def test_malformed_arguments_produce_argument_error() -> None:
    planner = ScriptedPlannerClient(
        [make_run("requires_action", tool_calls=[tool_call("c1", "getBrand", "{not json")]), make_run("completed")]
    )

    await _loop(planner).execute("agent-1", "go", TraceManager("trace-1", "orchestrator"))

    output = _outputs(planner, 0)["c1"]
    assert output["status"] == "retry"
    assert output["error"].startswith("Invalid arguments: Arguments for 'getBrand' are not valid JSON")


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_terminal() -> None:
    planner = ScriptedPlannerClient(
        [make_run("requires_action", tool_calls=[tool_call("c1", "launchRocket", {})]), make_run("completed")]
    )
    trace = TraceManager("trace-1", "orchestrator")

    await _loop(planner).execute("agent-1", "go", trace)

    output = _outputs(planner, 0)["c1"]
    assert output == {"tool": "launchRocket", "status": "failed", "error": "Unknown tool: launchRocket"}
    errors = [event for event in trace.events if event.event_type is TraceEventType.ERROR]
    assert errors[0].tool_name == "launchRocket"


@pytest.mark.asyncio
async def test_draft_without_publish_is_auto_published() -> None:
    store = seeded_store()
    planner = ScriptedPlannerClient(
        [
            make_run("requires_action", tool_calls=[tool_call("c1", "getBrand", {"brandId": "brand1"})]),
            make_run(
                "requires_action",
                tool_calls=[tool_call("c2", "draftPostCopy", {"content": "Fresh beans", "hashtags": ["coffee"]})],
            ),
            make_run("completed"),
        ],
        messages=[assistant_message(post_copy_answer())],
    )
    trace = TraceManager("trace-1", "orchestrator")
    state = RunState(post_plan_id="plan1")

    outcome = await _loop(planner, store=store).execute("agent-1", "go", trace, state)

    assert list(_outputs(planner, 1)) == ["c2"]
    assert len(outcome.state.published) == 1
    published = outcome.state.published[0]
    assert published["brandId"] == "brand1"
    assert published["postPlanId"] == "plan1"
    assert published["postCopy"]["content"] == "Fresh beans"
    assert store.documents("posts") == [published]
    synthetic = [event for event in trace.events if (event.metadata or {}).get("synthetic")]
    assert [event.event_type for event in synthetic] == [TraceEventType.TOOL_INVOKE, TraceEventType.TOOL_RESULT]
    assert synthetic[0].tool_name == "createPost"


@pytest.mark.asyncio
async def test_publish_in_later_batch_is_not_duplicated() -> None:
    store = seeded_store()
    post_copy = {"content": "Fresh beans", "comment": "", "hashtags": []}
    planner = ScriptedPlannerClient(
        [
            make_run("requires_action", tool_calls=[tool_call("c1", "draftPostCopy", {"content": "Fresh beans"})]),
            make_run(
                "requires_action",
                tool_calls=[tool_call("c2", "createPost", {"brandId": "brand1", "postCopy": post_copy})],
            ),
            make_run("completed"),
        ],
        messages=[assistant_message(post_copy_answer())],
    )
    trace = TraceManager("trace-1", "orchestrator")

    outcome = await _loop(planner, store=store).execute("agent-1", "go", trace, RunState(brand_id="brand1"))

    assert len(store.documents("posts")) == 1
    assert len(outcome.state.published) == 1
    assert not [event for event in trace.events if (event.metadata or {}).get("synthetic")]


@pytest.mark.asyncio
async def test_failed_lookup_does_not_replace_known_brand() -> None:
    store = seeded_store()
    planner = ScriptedPlannerClient(
        [
            make_run("requires_action", tool_calls=[tool_call("c1", "getBrand", {"brandId": "nope"})]),
            make_run("requires_action", tool_calls=[tool_call("c2", "draftPostCopy", {"content": "Fresh"})]),
            make_run("completed"),
        ]
    )

    outcome = await _loop(planner, store=store).execute(
        "agent-1", "go", TraceManager("t", "o"), RunState(brand_id="brand1", post_plan_id="plan1")
    )

    assert _outputs(planner, 0)["c1"]["status"] == "retry"
    assert outcome.state.brand_id == "brand1"
    assert [post["brandId"] for post in store.documents("posts")] == ["brand1"]


@pytest.mark.asyncio
async def test_auto_publish_waits_for_completion() -> None:
    store = seeded_store()
    planner = ScriptedPlannerClient(
        [
            make_run("requires_action", tool_calls=[tool_call("c1", "draftPostCopy", {"content": "Fresh"})]),
            make_run("failed", last_error={"code": "server_error"}),
        ]
    )

    outcome = await _loop(planner, store=store).execute("agent-1", "go", TraceManager("t", "o"), RunState(brand_id="brand1"))

    assert outcome.status is RunStatus.FAILED
    assert outcome.state.published == []
    assert store.documents("posts") == []


@pytest.mark.asyncio
async def test_auto_publish_skipped_when_batch_creates_post_or_disabled() -> None:
    batch = [
        tool_call("c1", "draftPostCopy", {"content": "Fresh"}),
        tool_call("c2", "createPost", {"brandId": "brand1", "postCopy": {"content": "Fresh"}}),
    ]
    store = seeded_store()
    planner = ScriptedPlannerClient([make_run("requires_action", tool_calls=batch), make_run("completed")])

    outcome = await _loop(planner, store=store).execute("agent-1", "go", TraceManager("t", "o"), RunState(brand_id="brand1"))

    assert len(outcome.state.published) == 1
    assert len(store.documents("posts")) == 1

    planner = ScriptedPlannerClient(
        [make_run("requires_action", tool_calls=[tool_call("c1", "draftPostCopy", {"content": "Fresh"})]), make_run("completed")]
    )
    outcome = await _loop(planner, auto_publish=False).execute("agent-1", "go", TraceManager("t", "o"), RunState(brand_id="brand1"))

    assert outcome.state.published == []
    assert len(outcome.state.drafts) == 1


@pytest.mark.asyncio
async def test_defaults_fill_topic_and_identifiers() -> None:
    store = seeded_store()
    planner = ScriptedPlannerClient(
        [
            make_run(
                "requires_action",
                tool_calls=[
                    tool_call("c1", "draftPostCopy", {"content": "Fresh"}),
                    tool_call("c2", "createPost", {"postCopy": {"content": "Fresh"}}),
                ],
            ),
            make_run("completed"),
        ]
    )
    trace = TraceManager("trace-1", "orchestrator")
    state = RunState(brand_id="brand1", post_plan_id="plan1", post_plan=dict(POST_PLAN))

    await _loop(planner, store=store).execute("agent-1", "go", trace, state)

    outputs = _outputs(planner, 0)
    assert outputs["c1"]["postCopy"]["topic"] == "Morning rituals"
    assert outputs["c2"]["brandId"] == "brand1"
    assert outputs["c2"]["postPlanId"] == "plan1"
    invokes = {event.tool_name: event for event in trace.events if event.event_type is TraceEventType.TOOL_INVOKE}
    assert invokes["draftPostCopy"].metadata["defaulted"] == ["topic"]
    assert invokes["createPost"].metadata["defaulted"] == ["brandId", "postPlanId"]


@pytest.mark.asyncio
async def test_topic_default_can_be_disabled() -> None:
    planner = ScriptedPlannerClient(
        [make_run("requires_action", tool_calls=[tool_call("c1", "draftPostCopy", {"content": "Fresh"})]), make_run("completed")]
    )

    await _loop(planner, auto_default_topic=False, auto_publish=False).execute(
        "agent-1", "go", TraceManager("t", "o"), RunState(post_plan=dict(POST_PLAN))
    )

    assert "topic" not in _outputs(planner, 0)["c1"]["postCopy"]


@pytest.mark.asyncio
async def test_batch_is_dispatched_concurrently_and_traced_in_order() -> None:
    brand_started = asyncio.Event()

    async def slow_brand(arguments):  # noqa: ANN001
        brand_started.set()
        await asyncio.sleep(0)
        return {"brand": {"id": arguments["brandId"]}}

    async def plan_waits_for_brand(arguments):  # noqa: ANN001
        await asyncio.wait_for(brand_started.wait(), timeout=1.0)
        return {"postPlan": {"id": arguments["postPlanId"]}}

    registry = ToolRegistry(
        [
            ToolSpec(name="getPostPlan", description="", input_schema={"type": "object"}, execute=plan_waits_for_brand),
            ToolSpec(name="getBrand", description="", input_schema={"type": "object"}, execute=slow_brand),
        ]
    )
    planner = ScriptedPlannerClient(
        [
            make_run(
                "requires_action",
                tool_calls=[
                    tool_call("c1", "getPostPlan", {"postPlanId": "plan1"}),
                    tool_call("c2", "getBrand", {"brandId": "brand1"}),
                ],
            ),
            make_run("completed"),
        ]
    )
    trace = TraceManager("trace-1", "orchestrator")

    outcome = await _loop(planner, registry=registry).execute("agent-1", "go", trace)

    assert [item["tool_call_id"] for item in planner.submissions[0]] == ["c1", "c2"]
    assert outcome.state.post_plan == {"id": "plan1"}
    for call_id in ("c1", "c2"):
        kinds = [
            event.event_type
            for event in trace.events
            if (event.metadata or {}).get("callId") == call_id
        ]
        assert kinds == [TraceEventType.TOOL_INVOKE, TraceEventType.TOOL_RESULT]


@pytest.mark.asyncio
async def test_queued_runs_are_polled_with_interval() -> None:
    sleeps: list[float] = []
    planner = ScriptedPlannerClient([make_run("queued"), make_run("in_progress"), make_run("completed")])

    outcome = await _loop(planner, sleeps=sleeps, poll_interval_seconds=0.25).execute("agent-1", "go", TraceManager("t", "o"))

    assert outcome.status is RunStatus.COMPLETED
    assert sleeps == [0.25, 0.25]
    assert planner.polls == 2
    assert outcome.iterations == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["failed", "cancelled"])
async def test_terminal_failures_return_outcome(status: str) -> None:
    planner = ScriptedPlannerClient(
        [make_run(status, last_error={"code": "server_error", "message": "model overloaded"})],
        messages=[assistant_message(post_copy_answer())],
    )

    outcome = await _loop(planner).execute("agent-1", "go", TraceManager("t", "o"))

    assert outcome.status is RunStatus(status)
    assert outcome.run.last_error == {"code": "server_error", "message": "model overloaded"}
    assert outcome.messages == []


@pytest.mark.asyncio
async def test_requires_action_without_calls_raises() -> None:
    planner = ScriptedPlannerClient([make_run("requires_action")])

    with pytest.raises(RequiresActionError) as exc_info:
        await _loop(planner).execute("agent-1", "go", TraceManager("t", "o"))

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_iteration_cap_cancels_run() -> None:
    planner = ScriptedPlannerClient([make_run("in_progress")])

    with pytest.raises(RunTimeoutError) as exc_info:
        await _loop(planner, max_iterations=2).execute("agent-1", "go", TraceManager("t", "o"))

    assert exc_info.value.status_code == 504
    assert planner.cancelled == ["run-1"]
    assert planner.polls == 2


@pytest.mark.asyncio
async def test_deadline_cancels_run() -> None:
    ticks = iter([0.0, 1.0, 2.0, 11.0, 12.0])
    planner = ScriptedPlannerClient([make_run("in_progress")])

    with pytest.raises(RunTimeoutError):
        await _loop(planner, clock=lambda: next(ticks), run_timeout_seconds=10.0).execute(
            "agent-1", "go", TraceManager("t", "o")
        )

    assert planner.cancelled == ["run-1"]


@pytest.mark.asyncio
async def test_ledger_does_not_leak_between_runs() -> None:
    def _planner() -> ScriptedPlannerClient:
        return ScriptedPlannerClient(
            [make_run("requires_action", tool_calls=[tool_call("c1", "getBrand", {"brandId": "nope"})]), make_run("completed")]
        )

    loop_planner = _planner()
    loop = _loop(loop_planner, max_tool_attempts=1)
    await loop.execute("agent-1", "go", TraceManager("t1", "o"))
    first = _outputs(loop_planner, 0)["c1"]

    second_planner = _planner()
    await _loop(second_planner, max_tool_attempts=1).execute("agent-1", "go", TraceManager("t2", "o"))
    second = _outputs(second_planner, 0)["c1"]

    assert first["status"] == second["status"] == ToolResultStatus.RETRY.value
    assert first["attempt"] == second["attempt"] == 1

from __future__ import annotations

import json

import httpx
import pytest

from autogensocial.core.config import PlannerSettings
from autogensocial.orchestration.enums import RunStatus
from autogensocial.services.planner import AgentsPlannerClient, PlannerError, map_run_status, parse_run


def _client(handler, **settings) -> tuple[AgentsPlannerClient, httpx.AsyncClient]:  # noqa: ANN001
    config = PlannerSettings(endpoint="http://agents.local", api_key="secret", **settings)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=config.endpoint)
    return AgentsPlannerClient(config, client=http_client), http_client


def _run_payload(status: str, **extra) -> dict:
    return {"id": "run-1", "thread_id": "thread-1", "status": status, "created_at": 1760000000, **extra}


@pytest.mark.asyncio
async def test_create_run_sends_version_and_api_key() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_run_payload("queued"))

    planner, http_client = _client(handler)
    async with http_client:
        run = await planner.create_run("thread-1", "agent-1")

    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/threads/thread-1/runs"
    assert request.url.params["api-version"] == "2025-05-01"
    assert request.headers["api-key"] == "secret"
    assert json.loads(request.content) == {"assistant_id": "agent-1"}
    assert run.status is RunStatus.QUEUED
    assert run.created_at is not None


@pytest.mark.asyncio
async def test_bearer_auth_and_missing_version() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "thread-9"})

    planner, http_client = _client(handler, api_key_header="Authorization", api_version=None)
    async with http_client:
        thread_id = await planner.create_thread()

    assert thread_id == "thread-9"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert "api-version" not in seen[0].url.params


@pytest.mark.asyncio
async def test_requires_action_run_parses_tool_calls() -> None:
    payload = _run_payload(
        "requires_action",
        required_action={
            "type": "submit_tool_outputs",
            "submit_tool_outputs": {
                "tool_calls": [
                    {"id": "call-1", "type": "function", "function": {"name": "getBrand", "arguments": '{"brandId":"brand1"}'}},
                ]
            },
        },
    )

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    planner, http_client = _client(handler)
    async with http_client:
        run = await planner.get_run("thread-1", "run-1")

    assert run.status is RunStatus.REQUIRES_ACTION
    assert len(run.tool_calls) == 1
    call = run.tool_calls[0]
    assert call.call_id == "call-1"
    assert call.name == "getBrand"
    assert call.decoded_arguments() == {"brandId": "brand1"}


@pytest.mark.asyncio
async def test_submit_tool_outputs_posts_batch() -> None:
    bodies: list[dict] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        assert request.url.path == "/threads/thread-1/runs/run-1/submit_tool_outputs"
        return httpx.Response(200, json=_run_payload("in_progress"))

    planner, http_client = _client(handler)
    outputs = [{"tool_call_id": "call-1", "output": "{}"}, {"tool_call_id": "call-2", "output": "[]"}]
    async with http_client:
        run = await planner.submit_tool_outputs("thread-1", "run-1", outputs)

    assert bodies == [{"tool_outputs": outputs}]
    assert run.status is RunStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_list_messages_requests_chronological_order() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["order"] == "asc"
        return httpx.Response(200, json={"data": [{"role": "user", "content": []}, {"role": "assistant", "content": []}]})

    planner, http_client = _client(handler)
    async with http_client:
        messages = await planner.list_messages("thread-1")

    assert [message["role"] for message in messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_list_messages_follows_pagination_cursor() -> None:
    seen_after: list[str | None] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        after = request.url.params.get("after")
        seen_after.append(after)
        if after is None:
            page = [{"id": f"msg-{index}", "role": "user"} for index in range(20)]
            return httpx.Response(200, json={"data": page, "has_more": True, "last_id": "msg-19"})
        return httpx.Response(200, json={"data": [{"id": "msg-20", "role": "assistant"}], "has_more": False})

    planner, http_client = _client(handler)
    async with http_client:
        messages = await planner.list_messages("thread-1")

    assert seen_after == [None, "msg-19"]
    assert len(messages) == 21
    assert messages[-1]["role"] == "assistant"


@pytest.mark.asyncio
async def test_http_errors_raise_planner_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "slow down"}})

    planner, http_client = _client(handler)
    async with http_client:
        with pytest.raises(PlannerError) as exc_info:
            await planner.create_thread()

    assert exc_info.value.status_code == 429
    assert exc_info.value.body == {"error": {"message": "slow down"}}


@pytest.mark.asyncio
async def test_transport_failures_raise_planner_error() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def timeout_handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    planner, http_client = _client(handler)
    async with http_client:
        with pytest.raises(PlannerError) as connect_error:
            await planner.create_thread()

    planner, http_client = _client(timeout_handler)
    async with http_client:
        with pytest.raises(PlannerError) as timeout_error:
            await planner.create_thread()

    assert connect_error.value.status_code is None
    assert timeout_error.value.status_code == 504


@pytest.mark.parametrize(
    ("remote", "expected"),
    [
        ("queued", RunStatus.QUEUED),
        ("cancelling", RunStatus.IN_PROGRESS),
        ("expired", RunStatus.FAILED),
        ("incomplete", RunStatus.FAILED),
        ("cancelled", RunStatus.CANCELLED),
        ("COMPLETED", RunStatus.COMPLETED),
    ],
)
def test_remote_statuses_map_onto_run_status(remote: str, expected: RunStatus) -> None:
    assert map_run_status(remote) is expected


def test_unknown_status_and_incomplete_payloads_raise() -> None:
    with pytest.raises(PlannerError):
        map_run_status("paused")
    with pytest.raises(PlannerError):
        parse_run({"status": "queued"})


def test_failed_run_keeps_last_error() -> None:
    run = parse_run(_run_payload("failed", last_error={"code": "server_error", "message": "boom"}))

    assert run.status is RunStatus.FAILED
    assert run.last_error == {"code": "server_error", "message": "boom"}
    assert run.tool_calls == []


@pytest.mark.asyncio
async def test_owned_client_is_closed() -> None:
    planner = AgentsPlannerClient(PlannerSettings(endpoint="http://agents.local"))

    await planner.aclose()

    assert planner._client.is_closed

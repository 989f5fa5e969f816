from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

import httpx

from ..core.config import PlannerSettings
from ..core.logging import get_logger
from ..orchestration.enums import RunStatus
from ..orchestration.state import Run, ToolCall

logger = get_logger(name=__name__)

MESSAGE_PAGE_SIZE = 100

__all__ = [
    "AgentsPlannerClient",
    "PlannerClient",
    "PlannerError",
    "map_run_status",
    "parse_run",
]


class PlannerError(RuntimeError):
    """Raised when the agents service rejects a request or cannot be reached."""

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@runtime_checkable
class PlannerClient(Protocol):
    async def create_agent(
        self,
        *,
        name: str,
        instructions: str,
        tools: Sequence[Mapping[str, Any]],
        model: str,
    ) -> str: ...

    async def create_thread(self) -> str: ...

    async def create_message(self, thread_id: str, content: str) -> str: ...

    async def create_run(self, thread_id: str, agent_id: str) -> Run: ...

    async def get_run(self, thread_id: str, run_id: str) -> Run: ...

    async def submit_tool_outputs(self, thread_id: str, run_id: str, outputs: Sequence[Mapping[str, str]]) -> Run: ...

    async def cancel_run(self, thread_id: str, run_id: str) -> Run: ...

    async def list_messages(self, thread_id: str) -> list[dict[str, Any]]: ...

    async def aclose(self) -> None: ...


_STATUS_MAP: dict[str, RunStatus] = {
    "queued": RunStatus.QUEUED,
    "in_progress": RunStatus.IN_PROGRESS,
    "cancelling": RunStatus.IN_PROGRESS,
    "requires_action": RunStatus.REQUIRES_ACTION,
    "completed": RunStatus.COMPLETED,
    "failed": RunStatus.FAILED,
    "expired": RunStatus.FAILED,
    "incomplete": RunStatus.FAILED,
    "cancelled": RunStatus.CANCELLED,
}


def map_run_status(value: Any) -> RunStatus:
    status = _STATUS_MAP.get(str(value).lower()) if value is not None else None
    if status is None:
        raise PlannerError(f"Unrecognised run status '{value}'")
    return status


def _parse_created_at(value: Any) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def _parse_tool_calls(payload: Mapping[str, Any]) -> list[ToolCall]:
    required = payload.get("required_action")
    if not isinstance(required, Mapping):
        return []
    submit = required.get("submit_tool_outputs")
    raw_calls = submit.get("tool_calls") if isinstance(submit, Mapping) else None
    calls: list[ToolCall] = []
    for raw in raw_calls or []:
        if not isinstance(raw, Mapping) or not raw.get("id"):
            continue
        function = raw.get("function") if isinstance(raw.get("function"), Mapping) else {}
        calls.append(
            ToolCall(
                call_id=str(raw["id"]),
                name=str(function.get("name") or ""),
                arguments=function.get("arguments"),
            )
        )
    return calls


def parse_run(payload: Mapping[str, Any], *, thread_id: str | None = None) -> Run:
    """Translate an agents-service run object into a :class:`Run`."""
    run_id = payload.get("id")
    resolved_thread = payload.get("thread_id") or thread_id
    if not run_id or not resolved_thread:
        raise PlannerError("Run payload is missing id or thread_id", body=dict(payload))
    status = map_run_status(payload.get("status"))
    last_error = payload.get("last_error")
    return Run(
        run_id=str(run_id),
        thread_id=str(resolved_thread),
        status=status,
        created_at=_parse_created_at(payload.get("created_at")),
        tool_calls=_parse_tool_calls(payload) if status is RunStatus.REQUIRES_ACTION else [],
        last_error=dict(last_error) if isinstance(last_error, Mapping) else None,
    )


class AgentsPlannerClient:
    """httpx client for an Assistants-style agents REST API."""

    def __init__(self, settings: PlannerSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._headers = self._auth_headers(settings)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=settings.endpoint.rstrip("/"),
            timeout=httpx.Timeout(settings.timeout_seconds),
        )

    @staticmethod
    def _auth_headers(settings: PlannerSettings) -> dict[str, str]:
        if not settings.api_key:
            return {}
        if settings.api_key_header.lower() == "authorization":
            return {"Authorization": f"Bearer {settings.api_key}"}
        return {settings.api_key_header: settings.api_key}

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def create_agent(
        self,
        *,
        name: str,
        instructions: str,
        tools: Sequence[Mapping[str, Any]],
        model: str,
    ) -> str:
        payload = await self._request(
            "POST",
            "/assistants",
            json={"name": name, "instructions": instructions, "tools": list(tools), "model": model},
        )
        agent_id = payload.get("id")
        if not agent_id:
            raise PlannerError("Agent creation returned no id", body=payload)
        logger.info("planner_agent_created", agent_id=agent_id, name=name, tools=len(tools))
        return str(agent_id)

    async def create_thread(self) -> str:
        payload = await self._request("POST", "/threads", json={})
        thread_id = payload.get("id")
        if not thread_id:
            raise PlannerError("Thread creation returned no id", body=payload)
        return str(thread_id)

    async def create_message(self, thread_id: str, content: str) -> str:
        payload = await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            json={"role": "user", "content": content},
        )
        return str(payload.get("id", ""))

    async def create_run(self, thread_id: str, agent_id: str) -> Run:
        payload = await self._request("POST", f"/threads/{thread_id}/runs", json={"assistant_id": agent_id})
        return parse_run(payload, thread_id=thread_id)

    async def get_run(self, thread_id: str, run_id: str) -> Run:
        payload = await self._request("GET", f"/threads/{thread_id}/runs/{run_id}")
        return parse_run(payload, thread_id=thread_id)

    async def submit_tool_outputs(self, thread_id: str, run_id: str, outputs: Sequence[Mapping[str, str]]) -> Run:
        payload = await self._request(
            "POST",
            f"/threads/{thread_id}/runs/{run_id}/submit_tool_outputs",
            json={"tool_outputs": [dict(output) for output in outputs]},
        )
        return parse_run(payload, thread_id=thread_id)

    async def cancel_run(self, thread_id: str, run_id: str) -> Run:
        payload = await self._request("POST", f"/threads/{thread_id}/runs/{run_id}/cancel", json={})
        return parse_run(payload, thread_id=thread_id)

    async def list_messages(self, thread_id: str) -> list[dict[str, Any]]:
        """Return every message of the thread, oldest first, following the ``after`` cursor."""
        messages: list[dict[str, Any]] = []
        params: dict[str, Any] = {"order": "asc", "limit": MESSAGE_PAGE_SIZE}
        while True:
            payload = await self._request("GET", f"/threads/{thread_id}/messages", params=params)
            data = payload.get("data")
            if not isinstance(data, list):
                raise PlannerError("Message listing returned no data", body=payload)
            page = [dict(message) for message in data if isinstance(message, Mapping)]
            messages.extend(page)
            cursor = payload.get("last_id") or (page[-1].get("id") if page else None)
            if not payload.get("has_more") or not cursor:
                return messages
            params = {**params, "after": cursor}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        query = dict(params or {})
        if self._settings.api_version:
            query["api-version"] = self._settings.api_version
        try:
            response = await self._client.request(method, path, json=json, params=query, headers=self._headers)
        except httpx.TimeoutException as exc:
            logger.error("planner_request_timed_out", method=method, path=path)
            raise PlannerError(f"Planner request {method} {path} timed out", status_code=504) from exc
        except httpx.RequestError as exc:
            logger.error("planner_request_failed", method=method, path=path, error=str(exc))
            raise PlannerError(f"Planner request {method} {path} failed: {exc}") from exc
        if response.is_error:
            body = self._safe_body(response)
            logger.warning("planner_request_rejected", method=method, path=path, status=response.status_code)
            raise PlannerError(
                f"Planner request {method} {path} returned {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        body = self._safe_body(response)
        if not isinstance(body, dict):
            raise PlannerError(f"Planner response for {method} {path} is not a JSON object", body=body)
        return body

    @staticmethod
    def _safe_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

from __future__ import annotations

from typing import Any, Mapping

from ..core.logging import get_logger
from ..utils.json_encoding import json_safe
from .enums import TraceEventType, TraceStatus
from .state import TraceEvent, utc_now_iso

logger = get_logger(name=__name__)

__all__ = ["TraceManager"]


def _as_payload(value: Any) -> dict[str, Any] | None:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return json_safe(value)
    return {"value": json_safe(value)}


class TraceManager:
    """Append-only event log for one orchestration run.

    The constructor records the single ``start`` event. ``succeed``, ``fail`` and
    ``end`` finalize the trace exactly once; later calls are ignored so the
    sequence always closes with one ``end`` event carrying the final status.
    """

    def __init__(self, run_id: str, agent_name: str) -> None:
        self.run_id = run_id
        self.agent_name = agent_name
        self.status = TraceStatus.RUNNING
        self.started_at = utc_now_iso()
        self.ended_at: str | None = None
        self._events: list[TraceEvent] = []
        self._finalized = False
        self._record(TraceEventType.START, metadata={}, timestamp=self.started_at)

    @property
    def events(self) -> list[TraceEvent]:
        return list(self._events)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def add_event(
        self,
        event_type: TraceEventType | str,
        *,
        tool_name: str | None = None,
        input: Any = None,
        output: Any = None,
        error: Any = None,
        metadata: Mapping[str, Any] | None = None,
        timestamp: str | None = None,
        agent_name: str | None = None,
    ) -> TraceEvent | None:
        """Append an event; events arriving after finalization are logged and dropped."""
        event_type = TraceEventType(event_type)
        if event_type in (TraceEventType.START, TraceEventType.END):
            raise ValueError(f"'{event_type.value}' events are recorded by the trace lifecycle")
        if self._finalized:
            logger.warning(
                "trace_event_dropped",
                run_id=self.run_id,
                event_type=event_type.value,
                tool_name=tool_name,
            )
            return None
        return self._record(
            event_type,
            tool_name=tool_name,
            input=input,
            output=output,
            error=error,
            metadata=metadata,
            timestamp=timestamp,
            agent_name=agent_name,
        )

    def _record(
        self,
        event_type: TraceEventType,
        *,
        tool_name: str | None = None,
        input: Any = None,
        output: Any = None,
        error: Any = None,
        metadata: Mapping[str, Any] | None = None,
        timestamp: str | None = None,
        agent_name: str | None = None,
    ) -> TraceEvent:
        event = TraceEvent(
            run_id=self.run_id,
            timestamp=timestamp or utc_now_iso(),
            event_type=event_type,
            agent_name=agent_name or self.agent_name,
            tool_name=tool_name,
            input=_as_payload(input),
            output=_as_payload(output),
            error=_as_payload(error),
            metadata=_as_payload(metadata),
        )
        self._events.append(event)
        return event

    def fail(
        self,
        error: Any,
        *,
        tool_name: str | None = None,
        agent_name: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        if self._finalized:
            logger.warning("trace_already_finalized", run_id=self.run_id, attempted="fail")
            return
        self.status = TraceStatus.FAILED
        payload = error if isinstance(error, Mapping) else {"message": str(error)}
        self.add_event(
            TraceEventType.ERROR,
            tool_name=tool_name,
            agent_name=agent_name,
            error=payload,
            metadata=metadata,
        )
        self._finalize()

    def succeed(self, metadata: Mapping[str, Any] | None = None) -> None:
        if self._finalized:
            logger.warning("trace_already_finalized", run_id=self.run_id, attempted="succeed")
            return
        self.status = TraceStatus.SUCCEEDED
        self._finalize(metadata)

    def end(self, metadata: Mapping[str, Any] | None = None) -> None:
        if self._finalized:
            logger.warning("trace_already_finalized", run_id=self.run_id, attempted="end")
            return
        self._finalize(metadata)

    def build_record(self, *, envelope: bool = True) -> dict[str, Any]:
        base = {
            "runId": self.run_id,
            "agentName": self.agent_name,
            "events": [event.to_record() for event in self._events],
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "status": self.status.value,
        }
        if not envelope:
            return base
        now = utc_now_iso()
        return {
            "id": self.run_id,
            "metadata": {"createdDate": now, "updatedDate": now, "isActive": True},
            "brandInfo": base,
        }

    def _finalize(self, metadata: Mapping[str, Any] | None = None) -> None:
        self.ended_at = self.ended_at or utc_now_iso()
        end_metadata = dict(metadata or {})
        end_metadata["status"] = self.status.value
        self._record(TraceEventType.END, metadata=end_metadata, timestamp=self.ended_at)
        self._finalized = True
        logger.info(
            "trace_finalized",
            run_id=self.run_id,
            status=self.status.value,
            events=len(self._events),
        )

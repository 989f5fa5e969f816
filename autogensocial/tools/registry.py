from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Iterable, Iterator, Mapping

from ..core.logging import get_logger
from ..core.metrics import record_tool_invocation
from ..orchestration.enums import ToolName, ToolResultStatus
from ..orchestration.state import ToolResult
from .exceptions import ToolArgumentError, ToolError, ToolNotFoundError

logger = get_logger(name=__name__)

__all__ = ["ToolExecutor", "ToolSpec", "ToolRegistry", "validate_arguments"]

ToolExecutor = Callable[[dict[str, Any]], Awaitable[Any]]

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
    "null": (type(None),),
}


@dataclass(slots=True, frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: Mapping[str, Any]
    execute: ToolExecutor = field(compare=False)

    def definition(self) -> dict[str, Any]:
        """Function-tool definition advertised to the planner agent."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.input_schema),
            },
        }


def _type_matches(value: Any, declared: Any) -> bool:
    names = declared if isinstance(declared, list) else [declared]
    for name in names:
        expected = _JSON_TYPES.get(name)
        if expected is None:
            return True
        if isinstance(value, bool) and name in {"integer", "number"}:
            continue
        if isinstance(value, expected):
            return True
    return False


def validate_arguments(tool: str, arguments: Mapping[str, Any], schema: Mapping[str, Any]) -> None:
    """Check required fields, declared JSON types and unsupported fields."""
    properties = schema.get("properties") if isinstance(schema.get("properties"), Mapping) else {}
    required = schema.get("required") if isinstance(schema.get("required"), list) else []
    additional_allowed = schema.get("additionalProperties", True)

    missing = [name for name in required if arguments.get(name) is None]
    if missing:
        raise ToolArgumentError(f"Arguments for '{tool}' missing required fields: {', '.join(sorted(set(missing)))}")

    if additional_allowed is False:
        extraneous = [name for name in arguments if name not in properties]
        if extraneous:
            raise ToolArgumentError(
                f"Arguments for '{tool}' include unsupported fields: {', '.join(sorted(set(extraneous)))}"
            )

    for name, value in arguments.items():
        declared = properties.get(name)
        if not isinstance(declared, Mapping) or "type" not in declared or value is None:
            continue
        if not _type_matches(value, declared["type"]):
            raise ToolArgumentError(f"Field '{name}' for '{tool}' must be of type {declared['type']}")


class ToolRegistry:
    """Fixed set of tools the planner may call, keyed by tool name.

    The mapping is frozen at construction. :meth:`dispatch` never raises: unknown
    tools, invalid arguments and execution failures all come back as error
    :class:`ToolResult` values.
    """

    def __init__(self, specs: Iterable[ToolSpec]) -> None:
        registry: dict[str, ToolSpec] = {}
        for spec in specs:
            if ToolName.parse(spec.name) is ToolName.UNKNOWN:
                raise ValueError(f"'{spec.name}' is not a recognised tool name")
            if spec.name in registry:
                raise ValueError(f"Tool '{spec.name}' registered twice")
            registry[spec.name] = spec
        self._tools: Mapping[str, ToolSpec] = MappingProxyType(registry)

    @property
    def tools(self) -> Mapping[str, ToolSpec]:
        return self._tools

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def get(self, name: str) -> ToolSpec:
        spec = self._tools.get(name)
        if spec is None:
            raise ToolNotFoundError(f"Unknown tool: {name}")
        return spec

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[dict[str, Any]]:
        return [spec.definition() for spec in self._tools.values()]

    async def dispatch(self, call_id: str, name: str, arguments: Mapping[str, Any] | None) -> ToolResult:
        spec = self._tools.get(name)
        if spec is None:
            logger.warning("tool_unknown", tool=name, call_id=call_id)
            record_tool_invocation(tool=ToolName.UNKNOWN.value, outcome="unknown", latency=0.0)
            return ToolResult(
                call_id=call_id,
                tool=name,
                error=f"Unknown tool: {name}",
                status=ToolResultStatus.FAILED,
            )

        payload = dict(arguments or {})
        started = time.perf_counter()
        try:
            validate_arguments(name, payload, spec.input_schema)
            output = await spec.execute(payload)
        except ToolArgumentError as exc:
            outcome, error = "invalid_arguments", f"Invalid arguments: {exc}"
        except ToolError as exc:
            outcome, error = "error", str(exc)
        except Exception as exc:  # noqa: BLE001 - tool failures are reported to the planner
            logger.exception("tool_execution_failed", tool=name, call_id=call_id)
            outcome, error = "error", f"Tool '{name}' failed: {exc}"
        else:
            latency = time.perf_counter() - started
            record_tool_invocation(tool=name, outcome="success", latency=latency)
            logger.info("tool_dispatched", tool=name, call_id=call_id, latency=round(latency, 4))
            return ToolResult(call_id=call_id, tool=name, output=output)

        latency = time.perf_counter() - started
        record_tool_invocation(tool=name, outcome=outcome, latency=latency)
        logger.info("tool_dispatch_failed", tool=name, call_id=call_id, outcome=outcome, error=error)
        return ToolResult(call_id=call_id, tool=name, error=error, status=ToolResultStatus.RETRY)

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

TOOL_INVOCATIONS_TOTAL = Counter(
    "autogensocial_tool_invocations_total",
    "Local tool dispatches grouped by tool and outcome",
    labelnames=("tool", "outcome"),
)

TOOL_LATENCY_SECONDS = Histogram(
    "autogensocial_tool_latency_seconds",
    "Latency for local tool dispatches",
    labelnames=("tool",),
)

TOOL_GUARDRAIL_TOTAL = Counter(
    "autogensocial_tool_guardrail_total",
    "Guardrail verdicts for failed tool calls (retry or terminal)",
    labelnames=("tool", "verdict"),
)

SYNTHETIC_TOOL_CALLS_TOTAL = Counter(
    "autogensocial_synthetic_tool_calls_total",
    "Tool calls injected or patched by the orchestration loop",
    labelnames=("tool", "kind"),
)

PLANNER_POLLS_TOTAL = Counter(
    "autogensocial_planner_polls_total",
    "Run status polls grouped by the observed status",
    labelnames=("status",),
)

ORCHESTRATION_RUNS_TOTAL = Counter(
    "autogensocial_orchestration_runs_total",
    "Orchestration requests by final status",
    labelnames=("status",),
)

ORCHESTRATION_RUN_LATENCY_SECONDS = Histogram(
    "autogensocial_orchestration_run_latency_seconds",
    "End-to-end orchestration latency",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600, float("inf")),
)

ORCHESTRATION_ACTIVE_GAUGE = Gauge(
    "autogensocial_orchestration_runs_active",
    "Orchestration runs in flight",
)

EXTRACTION_OUTCOMES_TOTAL = Counter(
    "autogensocial_extraction_outcomes_total",
    "Planner output extraction outcomes",
    labelnames=("outcome", "strategy"),
)


def record_tool_invocation(*, tool: str, outcome: str, latency: float) -> None:
    TOOL_INVOCATIONS_TOTAL.labels(tool=tool, outcome=outcome).inc()
    TOOL_LATENCY_SECONDS.labels(tool=tool).observe(max(0.0, latency))


def increment_guardrail_verdict(*, tool: str, verdict: str) -> None:
    TOOL_GUARDRAIL_TOTAL.labels(tool=tool, verdict=verdict).inc()


def increment_synthetic_call(*, tool: str, kind: str) -> None:
    SYNTHETIC_TOOL_CALLS_TOTAL.labels(tool=tool, kind=kind).inc()


def increment_planner_poll(*, status: str) -> None:
    PLANNER_POLLS_TOTAL.labels(status=status).inc()


def mark_orchestration_started() -> None:
    ORCHESTRATION_ACTIVE_GAUGE.inc()


def mark_orchestration_completed(*, status: str, latency: float) -> None:
    ORCHESTRATION_ACTIVE_GAUGE.dec()
    ORCHESTRATION_RUNS_TOTAL.labels(status=status).inc()
    ORCHESTRATION_RUN_LATENCY_SECONDS.observe(max(0.0, latency))


def record_extraction(*, outcome: str, strategy: str) -> None:
    EXTRACTION_OUTCOMES_TOTAL.labels(outcome=outcome, strategy=strategy).inc()

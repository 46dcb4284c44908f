from __future__ import annotations

from prometheus_client import Counter, Histogram

RISK_ASSESSMENTS_TOTAL = Counter(
    "agentgate_risk_assessments_total",
    "Risk assessments grouped by resulting level",
    labelnames=("level",),
)

GUARDRAIL_DECISIONS_TOTAL = Counter(
    "agentgate_guardrail_decisions_total",
    "Guardrail decisions by stage and outcome",
    labelnames=("stage", "outcome", "rule"),
)

ROUTING_OUTCOMES_TOTAL = Counter(
    "agentgate_routing_outcomes_total",
    "Routing outcomes grouped by decision reason",
    labelnames=("reason",),
)

PIPELINE_RUNS_TOTAL = Counter(
    "agentgate_pipeline_runs_total",
    "Pipeline runs by final state and halt reason",
    labelnames=("state", "reason"),
)

PIPELINE_LATENCY_SECONDS = Histogram(
    "agentgate_pipeline_latency_seconds",
    "End-to-end latency of a single pipeline pass",
    labelnames=("state",),
    buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30, float("inf")),
)

CHECKPOINT_WRITES_TOTAL = Counter(
    "agentgate_checkpoint_writes_total",
    "Checkpoint snapshot attempts grouped by outcome",
    labelnames=("outcome",),
)

GRAPH_LOADS_TOTAL = Counter(
    "agentgate_graph_loads_total",
    "Capability graph load attempts grouped by outcome",
    labelnames=("operation", "outcome"),
)


def record_risk_assessment(*, level: str) -> None:
    RISK_ASSESSMENTS_TOTAL.labels(level=level).inc()


def increment_guardrail_decision(*, stage: str, passed: bool, rule: str | None) -> None:
    outcome = "pass" if passed else "fail"
    GUARDRAIL_DECISIONS_TOTAL.labels(stage=stage, outcome=outcome, rule=rule or "none").inc()


def record_routing_outcome(*, reason: str) -> None:
    ROUTING_OUTCOMES_TOTAL.labels(reason=reason).inc()


def observe_pipeline_run(*, state: str, reason: str | None, latency: float) -> None:
    PIPELINE_RUNS_TOTAL.labels(state=state, reason=reason or "none").inc()
    PIPELINE_LATENCY_SECONDS.labels(state=state).observe(max(0.0, latency))


def record_checkpoint_write(*, outcome: str) -> None:
    CHECKPOINT_WRITES_TOTAL.labels(outcome=outcome).inc()


def record_graph_load(*, operation: str, success: bool) -> None:
    GRAPH_LOADS_TOTAL.labels(operation=operation, outcome="success" if success else "failure").inc()

from __future__ import annotations

from typing import Any, Sequence

from agentgate.core.config import Settings
from agentgate.orchestration.capability_graph import CapabilityGraph
from agentgate.schemas.graph import WorkerNode
from agentgate.schemas.guardrails import ActionRequest
from agentgate.schemas.orchestrator import ExecutorResult, PipelineRequest


def sample_graph_document() -> dict[str, Any]:
    """Small organisation: one orchestrator, a research team of three and a coder."""
    return {
        "version": "1.0.0",
        "nodes": [
            {"id": "orchestrator", "type": "orchestrator", "domain": ["coordination"], "capabilities": ["planning"]},
            {
                "id": "research-lead",
                "type": "leader",
                "domain": ["research", "analysis"],
                "capabilities": ["literature-review"],
            },
            {"id": "web-researcher", "type": "specialist", "domain": ["research", "web"], "capabilities": ["search"]},
            {"id": "data-analyst", "type": "specialist", "domain": ["data", "analysis"], "capabilities": ["sql"]},
            {
                "id": "frontend-dev",
                "type": "specialist",
                "domain": ["ui", "frontend", "css"],
                "capabilities": ["tailwind", "astro"],
                "skillRef": "skills/frontend.md",
            },
            {
                "id": "research-team",
                "type": "team",
                "purpose": "Answer research questions",
                "leaderId": "research-lead",
                "memberIds": ["research-lead", "web-researcher", "data-analyst"],
            },
        ],
        "edges": [
            {"type": "reports_to", "from": "research-lead", "to": "orchestrator"},
            {"type": "reports_to", "from": "web-researcher", "to": "research-lead"},
            {"type": "reports_to", "from": "data-analyst", "to": "research-lead"},
            {"type": "reports_to", "from": "frontend-dev", "to": "orchestrator"},
            {"type": "member_of", "from": "web-researcher", "to": "research-team"},
            {"type": "routes_to", "from": "orchestrator", "to": "research-team", "condition": "research", "priority": 1},
            {"type": "routes_to", "from": "orchestrator", "to": "frontend-dev", "condition": "ui", "priority": 2},
            {"type": "depends_on", "from": "frontend-dev", "to": "data-analyst", "requirement": "metrics feed"},
        ],
    }


def sample_graph() -> CapabilityGraph:
    return CapabilityGraph.load(sample_graph_document())


def make_settings(**overrides: Any) -> Settings:
    payload: dict[str, Any] = {
        "environment": "test",
        "checkpoints": {"enabled": True, "timeout_seconds": 2.0},
        "learning": {"enabled": True},
    }
    payload.update(overrides)
    return Settings(**payload)


class StubExecutor:
    """Records calls and returns a scripted result."""

    def __init__(
        self,
        *,
        result: ExecutorResult | None = None,
        action: ActionRequest | None = None,
        error: Exception | None = None,
        propose_error: Exception | None = None,
    ) -> None:
        self.result = result or ExecutorResult(success=True, output_text="done")
        self.action = action or ActionRequest(type="file_read", target="README.md")
        self.error = error
        self.propose_error = propose_error
        self.proposed: list[tuple[PipelineRequest, list[str]]] = []
        self.executed: list[tuple[ActionRequest, list[str]]] = []

    def propose_action(self, request: PipelineRequest, workers: Sequence[WorkerNode]) -> ActionRequest:
        self.proposed.append((request, [worker.id for worker in workers]))
        if self.propose_error is not None:
            raise self.propose_error
        return self.action

    def execute(self, action: ActionRequest, workers: Sequence[WorkerNode]) -> ExecutorResult:
        self.executed.append((action, [worker.id for worker in workers]))
        if self.error is not None:
            raise self.error
        return self.result

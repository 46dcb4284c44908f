from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..schemas.guardrails import GuardrailResult
    from ..schemas.risk import RiskProfile


class AgentGateError(RuntimeError):
    """Base class for decision-core failures."""


class GraphLoadError(AgentGateError):
    """Raised when a capability graph is malformed or internally inconsistent."""

    def __init__(self, message: str, *, node_id: str | None = None, edge_index: int | None = None) -> None:
        details: list[str] = []
        if node_id is not None:
            details.append(f"node={node_id}")
        if edge_index is not None:
            details.append(f"edge={edge_index}")
        super().__init__(f"{message} ({', '.join(details)})" if details else message)
        self.node_id = node_id
        self.edge_index = edge_index


LoadError = GraphLoadError


class RulesetError(AgentGateError):
    """Raised when a risk or guardrail ruleset cannot be loaded."""


class GuardrailFailure(AgentGateError):
    """Raised inside the pipeline when a guardrail rejects a stage."""

    def __init__(self, result: "GuardrailResult") -> None:
        super().__init__(result.reason or "guardrail rejected request")
        self.result = result

    @property
    def stage(self) -> str:
        return self.result.level.value

    @property
    def reason(self) -> str:
        return self.result.reason or ""


class BlockedRisk(AgentGateError):
    """Raised when an instruction hits the risk denylist. Never retried."""

    def __init__(self, profile: "RiskProfile") -> None:
        super().__init__(profile.blocked_reason or "instruction blocked by risk denylist")
        self.profile = profile


class ExecutorError(AgentGateError):
    """Opaque failure reported by the external executor."""


class CheckpointWriteFailure(AgentGateError):
    """Raised by checkpoint stores when a snapshot cannot be persisted."""


__all__ = [
    "AgentGateError",
    "BlockedRisk",
    "CheckpointWriteFailure",
    "ExecutorError",
    "GraphLoadError",
    "GuardrailFailure",
    "LoadError",
    "RulesetError",
]

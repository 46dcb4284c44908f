from .graph import (
    DependsOnEdge,
    GraphDocument,
    GraphEdge,
    GraphNode,
    MemberOfEdge,
    ReportsToEdge,
    RoutesToEdge,
    TeamNode,
    WorkerNode,
)
from .guardrails import ActionRequest, GuardrailResult, GuardrailStage
from .orchestrator import (
    ExecutorResult,
    HaltReason,
    PipelineRequest,
    PipelineResponse,
    PipelineState,
    RoutingIntent,
    RoutingMode,
)
from .risk import AssessmentRequest, Checkpoint, CheckpointResult, RiskLevel, RiskProfile, RollbackResult

__all__ = [
    "ActionRequest",
    "AssessmentRequest",
    "Checkpoint",
    "CheckpointResult",
    "DependsOnEdge",
    "ExecutorResult",
    "GraphDocument",
    "GraphEdge",
    "GraphNode",
    "GuardrailResult",
    "GuardrailStage",
    "HaltReason",
    "MemberOfEdge",
    "PipelineRequest",
    "PipelineResponse",
    "PipelineState",
    "ReportsToEdge",
    "RiskLevel",
    "RiskProfile",
    "RollbackResult",
    "RoutesToEdge",
    "RoutingIntent",
    "RoutingMode",
    "TeamNode",
    "WorkerNode",
]

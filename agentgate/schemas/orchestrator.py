from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .guardrails import ActionRequest, GuardrailResult
from .risk import RiskProfile


class PipelineState(str, Enum):
    RECEIVED = "RECEIVED"
    RISK_ASSESSED = "RISK_ASSESSED"
    REASONING_CHECKED = "REASONING_CHECKED"
    ROUTED = "ROUTED"
    ACTION_CHECKED = "ACTION_CHECKED"
    EXECUTED = "EXECUTED"
    OUTPUT_CHECKED = "OUTPUT_CHECKED"
    DONE = "DONE"
    HALTED = "HALTED"


class HaltReason(str, Enum):
    BLOCKED_BY_RISK = "blocked-by-risk"
    REASONING_GUARDRAIL = "reasoning-guardrail"
    ACTION_GUARDRAIL = "action-guardrail"
    OUTPUT_GUARDRAIL = "output-guardrail"
    EXECUTOR_ERROR = "executor-error"


class RoutingIntent(BaseModel):
    """Declared intent of a request. Extra keys travel along as context."""

    model_config = ConfigDict(frozen=True, extra="allow")

    type: str = ""


class ExecutorResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    output_text: str | None = None
    error: str | None = None


class PipelineRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    instruction: str
    target_files: tuple[str, ...] = ()
    intent: RoutingIntent | None = None
    action: ActionRequest | None = None
    target_path: str = "."
    confirmed: bool = False
    previous_errors: tuple[str, ...] = ()
    request_id: str | None = None

    @field_validator("target_files", "previous_errors", mode="before")
    @classmethod
    def _coerce_sequences(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(str(item) for item in value)

    @field_validator("intent", mode="before")
    @classmethod
    def _coerce_intent(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"type": value}
        return value


class PipelineResponse(BaseModel):
    request_id: str | None = None
    state: PipelineState
    halt_reason: HaltReason | None = None
    reason: str | None = None
    risk_profile: RiskProfile | None = None
    guardrail_failures: list[GuardrailResult] = Field(default_factory=list)
    routed_workers: list[str] = Field(default_factory=list)
    routing_reason: str | None = None
    executor_result: ExecutorResult | None = None
    checkpoint_id: str | None = None
    awaiting_confirmation: bool = False
    output_suppressed: bool = False
    transitions: list[PipelineState] = Field(default_factory=list)


class RoutingMode(str, Enum):
    NONE = "none"
    SINGLE = "single"
    SWARM = "swarm"


TaskPriority = Literal["high", "medium", "low"]


__all__ = [
    "ExecutorResult",
    "HaltReason",
    "PipelineRequest",
    "PipelineResponse",
    "PipelineState",
    "RoutingIntent",
    "RoutingMode",
    "TaskPriority",
]

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    BLOCKED = "BLOCKED"


def _coerce_str_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple)):
        raise ValueError("expected a list of strings")
    return tuple(str(item) for item in value)


class AssessmentRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    instruction: str
    target_files: tuple[str, ...] = ()
    previous_errors: tuple[str, ...] = ()

    @field_validator("target_files", "previous_errors", mode="before")
    @classmethod
    def _coerce_lists(cls, value: Any) -> tuple[str, ...]:
        return _coerce_str_tuple(value)


class RiskProfile(BaseModel):
    """Outcome of a single risk assessment. Recomputed per call, never persisted."""

    model_config = ConfigDict(frozen=True)

    level: RiskLevel
    score: int = Field(..., ge=0)
    requires_confirmation: bool
    requires_backup: bool
    reasons: tuple[str, ...] = ()
    blocked_reason: str | None = None
    description: str = ""
    mitigations: tuple[str, ...] = ()
    estimated_tokens: int = Field(0, ge=0)

    @property
    def blocked(self) -> bool:
        return self.level is RiskLevel.BLOCKED


class Checkpoint(BaseModel):
    """Append-only record of a pre-action snapshot."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    target_path: str
    files: tuple[str, ...] = ()
    success: bool
    missing_files: tuple[str, ...] = ()
    error: str | None = None


class CheckpointResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    checkpoint_id: str
    message: str = ""
    files_backed_up: tuple[str, ...] = ()


class RollbackResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    checkpoint_id: str
    files_restored: tuple[str, ...] = ()
    message: str = ""


__all__ = [
    "AssessmentRequest",
    "Checkpoint",
    "CheckpointResult",
    "RiskLevel",
    "RiskProfile",
    "RollbackResult",
]

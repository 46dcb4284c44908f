from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class GuardrailStage(str, Enum):
    REASONING = "reasoning"
    ACTION = "action"
    OUTPUT = "output"


ActionType = Literal["file_write", "file_delete", "file_read", "command", "api_call", "browser"]


class ActionRequest(BaseModel):
    """Concrete effect the executor intends to perform."""

    model_config = ConfigDict(frozen=True)

    type: ActionType
    target: str = ""
    payload: Any = None

    def payload_text(self) -> str:
        if self.payload is None:
            return ""
        return str(self.payload)


class GuardrailResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: bool
    level: GuardrailStage
    reason: str | None = None
    rule: str | None = Field(default=None, description="Name of the rule that rejected the input.")


__all__ = ["ActionRequest", "ActionType", "GuardrailResult", "GuardrailStage"]

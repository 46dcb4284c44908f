from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ObservabilitySettings(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    metrics_enabled: bool = Field(True, description="Record prometheus metrics for pipeline decisions.")


class GraphSettings(BaseModel):
    path: Path | None = Field(
        default=None,
        description="Capability graph JSON document loaded by `GraphRegistry.from_settings`.",
    )


class RoutingSettings(BaseModel):
    max_agents: int = Field(4, ge=1, description="Upper bound on workers returned by domain-match routing.")
    domain_fallback: bool = Field(
        True,
        description="Match the instruction against worker domains when a request carries no intent.",
    )


class RiskSettings(BaseModel):
    ruleset_path: Path | None = Field(
        default=None,
        description="Optional JSON risk ruleset replacing the built-in defaults.",
    )


class GuardrailSettings(BaseModel):
    ruleset_path: Path | None = Field(
        default=None,
        description="Optional JSON guardrail ruleset replacing the built-in defaults.",
    )


class CheckpointSettings(BaseModel):
    enabled: bool = Field(True)
    directory: Path = Field(Path(".agentgate/checkpoints"), description="Root of the file checkpoint store.")
    timeout_seconds: float = Field(
        5.0,
        gt=0.0,
        description="Maximum time the pipeline waits for a snapshot before proceeding without it.",
    )
    max_workers: int = Field(2, ge=1, description="Snapshot threads. A request finding all of them busy skips its checkpoint.")


class LearningSettings(BaseModel):
    enabled: bool = Field(True)
    ledger_path: Path | None = Field(default=None, description="Optional JSONL file mirroring recorded outcomes.")
    low_success_threshold: float = Field(0.6, ge=0.0, le=1.0)
    min_samples: int = Field(3, ge=1)
    error_pattern_threshold: int = Field(3, ge=1)


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]
    graph: GraphSettings = Field(default_factory=GraphSettings)  # type: ignore[arg-type]
    routing: RoutingSettings = Field(default_factory=RoutingSettings)  # type: ignore[arg-type]
    risk: RiskSettings = Field(default_factory=RiskSettings)  # type: ignore[arg-type]
    guardrails: GuardrailSettings = Field(default_factory=GuardrailSettings)  # type: ignore[arg-type]
    checkpoints: CheckpointSettings = Field(default_factory=CheckpointSettings)  # type: ignore[arg-type]
    learning: LearningSettings = Field(default_factory=LearningSettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_prefix="AGENTGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()

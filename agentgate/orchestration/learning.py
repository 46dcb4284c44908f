from __future__ import annotations

import re
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.config import Settings, get_settings
from ..core.logging import get_logger
from ..schemas.orchestrator import HaltReason, PipelineState

__all__ = ["ImprovementSuggestion", "OutcomeLedger", "TaskOutcome"]

logger = get_logger(name=__name__)

_WORD = re.compile(r"[a-z0-9]+")


class TaskOutcome(BaseModel):
    """One processed request as seen by the learning loop."""

    model_config = ConfigDict(frozen=True)

    request_id: str | None = None
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    state: PipelineState
    halt_reason: HaltReason | None = None
    workers: tuple[str, ...] = ()
    success: bool
    error: str | None = None


@dataclass(slots=True)
class ImprovementSuggestion:
    type: Literal["routing", "prompt", "workflow"]
    description: str
    confidence: float


class OutcomeLedger:
    """Append-only record of task outcomes with simple performance analysis.

    Outcomes are kept in memory and, when ``path`` is set, mirrored as JSON
    lines so a later process can pick up where this one stopped.
    """

    def __init__(self, path: str | Path | None = None, *, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        if path is None:
            path = self._settings.learning.ledger_path
        self._path = Path(path) if path is not None else None
        self._outcomes: list[TaskOutcome] = []
        self._lock = threading.Lock()
        if self._path is not None and self._path.exists():
            self._outcomes.extend(self._read(self._path))

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def outcomes(self) -> tuple[TaskOutcome, ...]:
        with self._lock:
            return tuple(self._outcomes)

    def record(self, outcome: TaskOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)
            if self._path is None:
                return
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as handle:
                    handle.write(outcome.model_dump_json() + "\n")
            except OSError as exc:
                logger.warning("outcome_ledger_write_failed", path=str(self._path), error=str(exc))

    def success_rates(self) -> dict[str, float]:
        totals: Counter[str] = Counter()
        successes: Counter[str] = Counter()
        for outcome in self.outcomes:
            for worker in outcome.workers:
                totals[worker] += 1
                if outcome.success:
                    successes[worker] += 1
        return {worker: successes[worker] / total for worker, total in totals.items()}

    def error_patterns(self) -> dict[str, int]:
        counts: Counter[str] = Counter(outcome.error for outcome in self.outcomes if outcome.error)
        return dict(counts.most_common())

    def suggest_improvements(self) -> list[ImprovementSuggestion]:
        learning = self._settings.learning
        suggestions: list[ImprovementSuggestion] = []
        for error, count in self.error_patterns().items():
            if count > learning.error_pattern_threshold:
                suggestions.append(
                    ImprovementSuggestion(
                        type="workflow",
                        description=(
                            f'Frequent error detected: "{error}" ({count} times). '
                            "Consider a specific validation rule or recovery worker."
                        ),
                        confidence=0.9,
                    )
                )

        samples = Counter(worker for outcome in self.outcomes for worker in outcome.workers)
        for worker, rate in self.success_rates().items():
            if samples[worker] >= learning.min_samples and rate < learning.low_success_threshold:
                suggestions.append(
                    ImprovementSuggestion(
                        type="prompt",
                        description=(
                            f'Worker "{worker}" has a low success rate ({round(rate * 100)}%). '
                            "Review its prompt and tool definitions."
                        ),
                        confidence=0.85,
                    )
                )
        return suggestions

    def relevant_warnings(self, instruction: str, *, limit: int = 5) -> list[str]:
        """Past errors that share a meaningful word with ``instruction``."""
        query = instruction.lower()
        warnings: list[str] = []
        for error, count in self.error_patterns().items():
            if count <= 2:
                continue
            if any(len(word) > 3 and word in query for word in _WORD.findall(error.lower())):
                warnings.append(f'Past tasks failed due to "{error}". Plan a mitigation before retrying.')
            if len(warnings) >= limit:
                break
        return warnings

    @staticmethod
    def _read(path: Path) -> Iterable[TaskOutcome]:
        outcomes: list[TaskOutcome] = []
        with path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    outcomes.append(TaskOutcome.model_validate_json(line))
                except ValidationError:
                    logger.warning("outcome_ledger_line_invalid", path=str(path), line=line_number)
        return outcomes

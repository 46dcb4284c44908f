from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Sequence
from uuid import uuid4

from ..core.config import Settings, get_settings
from ..core.exceptions import CheckpointWriteFailure
from ..core.logging import get_logger
from ..core.metrics import record_checkpoint_write
from ..schemas.risk import (
    AssessmentRequest,
    Checkpoint,
    CheckpointResult,
    RiskLevel,
    RiskProfile,
    RollbackResult,
)
from .checkpoints import CheckpointStore, FileCheckpointStore, resolve_within
from .rulesets import RiskRuleset, default_risk_ruleset, path_matches

__all__ = ["RiskAssessor", "load_risk_ruleset"]

logger = get_logger(name=__name__)

_READ_ONLY = re.compile(
    r"analy[sz]e|audit|check|scan|inspect|read|view|show|display|list|find|search|grep|locate"
    r"|explain|describe|document|status|info|version",
    re.IGNORECASE,
)
_GENERATIVE = re.compile(r"create|build|generate|implement", re.IGNORECASE)

_DESCRIPTIONS = {
    RiskLevel.LOW: "Low risk: read-only, analysis or minor content changes.",
    RiskLevel.MEDIUM: "Medium risk: code modifications that may affect behavior.",
    RiskLevel.HIGH: "High risk: core system or configuration changes.",
    RiskLevel.CRITICAL: "Critical risk: potentially destructive or irreversible operation.",
}


def load_risk_ruleset(settings: Settings) -> RiskRuleset:
    if settings.risk.ruleset_path is not None:
        return RiskRuleset.from_file(settings.risk.ruleset_path)
    return default_risk_ruleset()


class RiskAssessor:
    """Scores instructions against a ruleset and manages rollback checkpoints."""

    def __init__(
        self,
        ruleset: RiskRuleset | None = None,
        *,
        checkpoint_store: CheckpointStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._ruleset = ruleset or load_risk_ruleset(self._settings)
        if checkpoint_store is None and self._settings.checkpoints.enabled:
            checkpoint_store = FileCheckpointStore(self._settings.checkpoints.directory)
        self._store = checkpoint_store
        self._last_checkpoint_id: str | None = None

    @property
    def ruleset(self) -> RiskRuleset:
        return self._ruleset

    @property
    def checkpoint_store(self) -> CheckpointStore | None:
        return self._store

    def analyze(self, request: AssessmentRequest | str) -> RiskProfile:
        """Classify a request. Identical input always yields an identical profile."""
        if isinstance(request, str):
            request = AssessmentRequest(instruction=request)
        ruleset = self._ruleset
        instruction = request.instruction
        score = 0
        reasons: list[str] = []
        blocked_reason: str | None = None

        for rule in ruleset.denylist:
            if rule.search(instruction):
                reasons.append(f"denylist:{rule.name}")
                blocked_reason = rule.reason or rule.name
                break

        for vocabulary in (ruleset.destructive, ruleset.secret_exfiltration):
            if vocabulary.search(instruction):
                score += vocabulary.weight
                reasons.append(vocabulary.name)

        for target in request.target_files:
            if path_matches(target, ruleset.sensitive_paths):
                score += ruleset.sensitive_path_weight
                reasons.append(f"sensitive-path:{target}")

        for vocabulary in (ruleset.core_surface, ruleset.broad_scope, ruleset.mutation):
            if vocabulary.search(instruction):
                score += vocabulary.weight
                reasons.append(vocabulary.name)

        if len(request.previous_errors) > ruleset.repeated_failure_threshold:
            score += ruleset.repeated_failure_weight
            reasons.append("repeated-failures")

        if blocked_reason is not None:
            return RiskProfile(
                level=RiskLevel.BLOCKED,
                score=score,
                requires_confirmation=False,
                requires_backup=False,
                reasons=tuple(reasons),
                blocked_reason=blocked_reason,
                description=f"BLOCKED: {blocked_reason}",
                mitigations=("This operation is not allowed for safety reasons.",),
                estimated_tokens=0,
            )

        level = self._level_for(score)
        return RiskProfile(
            level=level,
            score=score,
            requires_confirmation=level in (RiskLevel.HIGH, RiskLevel.CRITICAL),
            requires_backup=level is not RiskLevel.LOW,
            reasons=tuple(reasons),
            description=_DESCRIPTIONS[level],
            mitigations=tuple(self._mitigations(level, request.target_files)),
            estimated_tokens=self._estimate_tokens(instruction),
        )

    def _level_for(self, score: int) -> RiskLevel:
        thresholds = self._ruleset.thresholds
        if score >= thresholds.critical:
            return RiskLevel.CRITICAL
        if score >= thresholds.high:
            return RiskLevel.HIGH
        if score >= thresholds.medium:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    @staticmethod
    def _mitigations(level: RiskLevel, target_files: Sequence[str]) -> list[str]:
        mitigations: list[str] = []
        if level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            mitigations.append("A checkpoint will be created before execution")
            mitigations.append("Review changes carefully before confirming")
        elif level is RiskLevel.MEDIUM:
            mitigations.append("Files will be backed up before modification")
        if target_files:
            mitigations.append(f"Affects {len(target_files)} file(s)")
        return mitigations

    @staticmethod
    def _estimate_tokens(instruction: str) -> int:
        base = math.ceil(len(instruction) / 4)
        if _READ_ONLY.search(instruction):
            return base + 200
        if _GENERATIVE.search(instruction):
            return base + 2000
        return base + 500

    def create_checkpoint(self, target_path: str | Path, files: Sequence[str] = ()) -> CheckpointResult:
        """Snapshot ``files`` under ``target_path``. Never raises."""
        checkpoint_id = f"cp-{datetime.now(timezone.utc):%Y%m%dT%H%M%S}-{uuid4().hex[:8]}"
        if self._store is None:
            record_checkpoint_write(outcome="disabled")
            return CheckpointResult(success=False, checkpoint_id=checkpoint_id, message="Checkpoints are disabled")

        relative_files = tuple(PurePosixPath(name.replace("\\", "/")).as_posix() for name in files)
        blobs: dict[str, bytes] = {}
        missing: list[str] = []
        error: str | None = None
        for relative in relative_files:
            try:
                source = resolve_within(target_path, relative)
                if not source.exists():
                    missing.append(relative)
                    continue
                blobs[relative] = source.read_bytes()
            except (OSError, ValueError) as exc:
                error = f"{relative}: {exc}"
                break

        checkpoint = Checkpoint(
            id=checkpoint_id,
            target_path=str(target_path),
            files=relative_files,
            success=error is None,
            missing_files=tuple(missing),
            error=error,
        )
        try:
            written = self._store.write(checkpoint, blobs if error is None else {})
            if not written:
                raise CheckpointWriteFailure(f"Checkpoint {checkpoint_id} already exists")
        except Exception as exc:  # stores may be caller supplied
            message = str(exc) or exc.__class__.__name__
            record_checkpoint_write(outcome="failure")
            logger.warning(
                "checkpoint_write_failed",
                checkpoint_id=checkpoint_id,
                error=message,
                error_type=exc.__class__.__name__,
            )
            return CheckpointResult(success=False, checkpoint_id=checkpoint_id, message=message)

        if error is not None:
            record_checkpoint_write(outcome="failure")
            logger.warning("checkpoint_snapshot_failed", checkpoint_id=checkpoint_id, error=error)
            return CheckpointResult(success=False, checkpoint_id=checkpoint_id, message=f"Snapshot failed: {error}")

        self._last_checkpoint_id = checkpoint_id
        record_checkpoint_write(outcome="success")
        logger.info(
            "checkpoint_created",
            checkpoint_id=checkpoint_id,
            files=len(blobs),
            missing=len(missing),
        )
        return CheckpointResult(
            success=True,
            checkpoint_id=checkpoint_id,
            message=f"Backed up {len(blobs)} file(s)",
            files_backed_up=tuple(blobs),
        )

    def rollback(self, checkpoint_id: str, target_path: str | Path) -> RollbackResult:
        if self._store is None:
            return RollbackResult(success=False, checkpoint_id=checkpoint_id, message="Checkpoints are disabled")
        result = self._store.restore(checkpoint_id, target_path)
        log = logger.info if result.success else logger.warning
        log(
            "checkpoint_rollback",
            checkpoint_id=checkpoint_id,
            success=result.success,
            files=len(result.files_restored),
        )
        return result

    def last_checkpoint_id(self) -> str | None:
        return self._last_checkpoint_id

    def rollback_last(self, target_path: str | Path) -> RollbackResult | None:
        if self._last_checkpoint_id is None:
            return None
        return self.rollback(self._last_checkpoint_id, target_path)

    @staticmethod
    def should_proceed(profile: RiskProfile, *, confirmed: bool = False) -> bool:
        if profile.blocked:
            return False
        return confirmed or not profile.requires_confirmation

    @staticmethod
    def format_for_user(profile: RiskProfile) -> str:
        lines = [f"Risk: {profile.level.value} (score {profile.score})", profile.description]
        if profile.reasons:
            lines.append("Triggered: " + ", ".join(profile.reasons))
        if profile.mitigations:
            lines.append("Mitigations:")
            lines.extend(f"  - {item}" for item in profile.mitigations)
        if profile.estimated_tokens:
            lines.append(f"Estimated tokens: ~{profile.estimated_tokens}")
        return "\n".join(line for line in lines if line)

    @staticmethod
    def confirmation_prompt(profile: RiskProfile) -> str:
        if profile.blocked:
            return f"{profile.description}. This request cannot be confirmed."
        return f"{profile.level.value} risk operation. {profile.description} Proceed? (yes/no)"

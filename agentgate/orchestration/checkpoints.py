"""Append-only checkpoint stores used by the risk assessor."""

from __future__ import annotations

import threading
from pathlib import Path, PurePosixPath
from typing import Mapping, Protocol, runtime_checkable

from pydantic import ValidationError

from ..core.exceptions import CheckpointWriteFailure
from ..core.logging import get_logger
from ..schemas.risk import Checkpoint, RollbackResult

__all__ = [
    "CheckpointStore",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    "resolve_within",
]

logger = get_logger(name=__name__)

MANIFEST_NAME = "checkpoints.jsonl"


@runtime_checkable
class CheckpointStore(Protocol):
    def write(self, checkpoint: Checkpoint, blobs: Mapping[str, bytes]) -> bool:
        ...

    def get(self, checkpoint_id: str) -> Checkpoint | None:
        ...

    def list(self) -> list[Checkpoint]:
        ...

    def restore(self, checkpoint_id: str, target_path: str | Path) -> RollbackResult:
        ...


def resolve_within(root: str | Path, relative: str) -> Path:
    """Resolve ``relative`` under ``root`` and refuse anything escaping it."""
    base = Path(root).resolve()
    candidate = PurePosixPath(relative.replace("\\", "/"))
    if candidate.is_absolute():
        raise ValueError(f"absolute path not allowed: {relative}")
    resolved = (base / Path(*candidate.parts)).resolve() if candidate.parts else base
    if resolved != base and base not in resolved.parents:
        raise ValueError(f"path escapes target directory: {relative}")
    return resolved


def _apply(checkpoint: Checkpoint, blobs: Mapping[str, bytes], target_path: str | Path) -> RollbackResult:
    restored: list[str] = []
    try:
        for relative in checkpoint.files:
            destination = resolve_within(target_path, relative)
            if relative in blobs:
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_bytes(blobs[relative])
                restored.append(relative)
        for relative in checkpoint.missing_files:
            destination = resolve_within(target_path, relative)
            if destination.is_file():
                destination.unlink()
                restored.append(relative)
    except (OSError, ValueError) as exc:
        return RollbackResult(
            success=False,
            checkpoint_id=checkpoint.id,
            files_restored=tuple(restored),
            message=f"Rollback failed: {exc}",
        )
    return RollbackResult(
        success=True,
        checkpoint_id=checkpoint.id,
        files_restored=tuple(restored),
        message=f"Restored {len(restored)} file(s) from checkpoint {checkpoint.id}",
    )


def _missing(checkpoint_id: str) -> RollbackResult:
    return RollbackResult(success=False, checkpoint_id=checkpoint_id, message=f"Unknown checkpoint: {checkpoint_id}")


class InMemoryCheckpointStore:
    """Keeps snapshots in process memory."""

    def __init__(self) -> None:
        self._records: dict[str, tuple[Checkpoint, dict[str, bytes]]] = {}
        self._lock = threading.Lock()

    def write(self, checkpoint: Checkpoint, blobs: Mapping[str, bytes]) -> bool:
        with self._lock:
            if checkpoint.id in self._records:
                return False
            self._records[checkpoint.id] = (checkpoint, dict(blobs))
        return True

    def get(self, checkpoint_id: str) -> Checkpoint | None:
        record = self._records.get(checkpoint_id)
        return record[0] if record else None

    def list(self) -> list[Checkpoint]:
        with self._lock:
            return [checkpoint for checkpoint, _ in self._records.values()]

    def restore(self, checkpoint_id: str, target_path: str | Path) -> RollbackResult:
        record = self._records.get(checkpoint_id)
        if record is None:
            return _missing(checkpoint_id)
        checkpoint, blobs = record
        return _apply(checkpoint, blobs, target_path)


class FileCheckpointStore:
    """Stores snapshots on disk.

    File contents live under ``<root>/<id>/files/`` and every checkpoint is
    appended as one JSON line to ``<root>/checkpoints.jsonl``. Existing records
    are never rewritten.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def manifest_path(self) -> Path:
        return self._root / MANIFEST_NAME

    def write(self, checkpoint: Checkpoint, blobs: Mapping[str, bytes]) -> bool:
        with self._lock:
            files_root = self._root / checkpoint.id / "files"
            try:
                if self.get(checkpoint.id) is not None:
                    return False
                for relative, content in blobs.items():
                    destination = resolve_within(files_root, relative)
                    destination.parent.mkdir(parents=True, exist_ok=True)
                    destination.write_bytes(content)
                self._root.mkdir(parents=True, exist_ok=True)
                with self.manifest_path.open("a", encoding="utf-8") as handle:
                    handle.write(checkpoint.model_dump_json() + "\n")
            except (OSError, ValueError) as exc:
                raise CheckpointWriteFailure(f"Unable to persist checkpoint {checkpoint.id}: {exc}") from exc
        return True

    def get(self, checkpoint_id: str) -> Checkpoint | None:
        for checkpoint in self.list():
            if checkpoint.id == checkpoint_id:
                return checkpoint
        return None

    def list(self) -> list[Checkpoint]:
        if not self.manifest_path.exists():
            return []
        checkpoints: list[Checkpoint] = []
        # undecodable bytes become invalid lines instead of aborting the read
        with self.manifest_path.open("r", encoding="utf-8", errors="replace") as handle:
            for line_number, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    checkpoints.append(Checkpoint.model_validate_json(line))
                except ValidationError:
                    logger.warning("checkpoint_manifest_line_invalid", path=str(self.manifest_path), line=line_number)
        return checkpoints

    def restore(self, checkpoint_id: str, target_path: str | Path) -> RollbackResult:
        checkpoint = self.get(checkpoint_id)
        if checkpoint is None:
            return _missing(checkpoint_id)
        files_root = self._root / checkpoint.id / "files"
        blobs: dict[str, bytes] = {}
        try:
            for relative in checkpoint.files:
                source = resolve_within(files_root, relative)
                if source.is_file():
                    blobs[relative] = source.read_bytes()
        except (OSError, ValueError) as exc:
            return RollbackResult(
                success=False,
                checkpoint_id=checkpoint.id,
                message=f"Unable to read checkpoint {checkpoint.id}: {exc}",
            )
        return _apply(checkpoint, blobs, target_path)

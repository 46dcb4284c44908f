from __future__ import annotations

import json
from pathlib import Path

import pytest
from prometheus_client import REGISTRY

from agentgate.core.exceptions import CheckpointWriteFailure
from agentgate.orchestration.checkpoints import FileCheckpointStore, InMemoryCheckpointStore, resolve_within
from agentgate.orchestration.risk import RiskAssessor
from agentgate.schemas.risk import Checkpoint
from tests.helpers.stubs import make_settings


def _project(tmp_path: Path) -> Path:
    project = tmp_path / "project"
    (project / "src").mkdir(parents=True)
    (project / "src" / "app.py").write_text("print('v1')\n", encoding="utf-8")
    (project / "package.json").write_text('{"name": "demo"}', encoding="utf-8")
    return project


class _FailingStore(InMemoryCheckpointStore):
    def write(self, checkpoint: Checkpoint, blobs) -> bool:  # noqa: ARG002
        raise CheckpointWriteFailure("disk full")


def test_file_store_snapshot_and_rollback(tmp_path: Path) -> None:
    project = _project(tmp_path)
    store = FileCheckpointStore(tmp_path / "checkpoints")
    assessor = RiskAssessor(checkpoint_store=store, settings=make_settings())

    result = assessor.create_checkpoint(project, ["src/app.py", "package.json", "src/new.py"])

    assert result.success is True
    assert result.files_backed_up == ("src/app.py", "package.json")
    assert assessor.last_checkpoint_id() == result.checkpoint_id

    manifest = (tmp_path / "checkpoints" / "checkpoints.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(manifest) == 1
    record = json.loads(manifest[0])
    assert record["id"] == result.checkpoint_id
    assert record["missing_files"] == ["src/new.py"]
    assert (tmp_path / "checkpoints" / result.checkpoint_id / "files" / "src" / "app.py").exists()

    (project / "src" / "app.py").write_text("print('v2')\n", encoding="utf-8")
    (project / "src" / "new.py").write_text("created later\n", encoding="utf-8")

    rollback = assessor.rollback_last(project)

    assert rollback is not None and rollback.success is True
    assert (project / "src" / "app.py").read_text(encoding="utf-8") == "print('v1')\n"
    assert not (project / "src" / "new.py").exists()
    assert set(rollback.files_restored) == {"src/app.py", "package.json", "src/new.py"}


def test_manifest_is_append_only(tmp_path: Path) -> None:
    project = _project(tmp_path)
    store = FileCheckpointStore(tmp_path / "checkpoints")
    assessor = RiskAssessor(checkpoint_store=store, settings=make_settings())

    first = assessor.create_checkpoint(project, ["src/app.py"])
    second = assessor.create_checkpoint(project, ["package.json"])

    assert [checkpoint.id for checkpoint in store.list()] == [first.checkpoint_id, second.checkpoint_id]
    assert store.get(first.checkpoint_id) is not None
    duplicate = store.get(first.checkpoint_id)
    assert duplicate is not None
    assert store.write(duplicate, {}) is False
    assert len(store.list()) == 2


def test_path_escaping_target_fails_snapshot_without_raising(tmp_path: Path) -> None:
    project = _project(tmp_path)
    (tmp_path / "secret.txt").write_text("outside", encoding="utf-8")
    store = InMemoryCheckpointStore()
    assessor = RiskAssessor(checkpoint_store=store, settings=make_settings())

    result = assessor.create_checkpoint(project, ["../secret.txt"])

    assert result.success is False
    assert "escapes" in result.message
    assert assessor.last_checkpoint_id() is None
    recorded = store.get(result.checkpoint_id)
    assert recorded is not None and recorded.success is False


def test_store_write_failure_is_reported_not_raised(tmp_path: Path) -> None:
    project = _project(tmp_path)
    assessor = RiskAssessor(checkpoint_store=_FailingStore(), settings=make_settings())
    before = REGISTRY.get_sample_value("agentgate_checkpoint_writes_total", {"outcome": "failure"}) or 0.0

    result = assessor.create_checkpoint(project, ["src/app.py"])

    after = REGISTRY.get_sample_value("agentgate_checkpoint_writes_total", {"outcome": "failure"})
    assert result.success is False
    assert result.message == "disk full"
    assert after == pytest.approx(before + 1.0)


def test_disabled_checkpoints_report_failure(tmp_path: Path) -> None:
    assessor = RiskAssessor(settings=make_settings(checkpoints={"enabled": False}))

    result = assessor.create_checkpoint(tmp_path, ["anything.txt"])

    assert assessor.checkpoint_store is None
    assert result.success is False


def test_rollback_unknown_checkpoint(tmp_path: Path) -> None:
    assessor = RiskAssessor(checkpoint_store=InMemoryCheckpointStore(), settings=make_settings())

    result = assessor.rollback("cp-missing", tmp_path)

    assert result.success is False
    assert assessor.rollback_last(tmp_path) is None


def test_resolve_within_rejects_absolute_and_parent_paths(tmp_path: Path) -> None:
    assert resolve_within(tmp_path, "a/b.txt") == (tmp_path / "a" / "b.txt").resolve()
    with pytest.raises(ValueError):
        resolve_within(tmp_path, "/etc/passwd")
    with pytest.raises(ValueError):
        resolve_within(tmp_path, "a/../../b.txt")


class _CrashingStore(InMemoryCheckpointStore):
    def write(self, checkpoint: Checkpoint, blobs) -> bool:  # noqa: ARG002
        raise KeyError("index corrupted")


def test_unexpected_store_error_is_reported_not_raised(tmp_path: Path) -> None:
    project = _project(tmp_path)
    assessor = RiskAssessor(checkpoint_store=_CrashingStore(), settings=make_settings())

    result = assessor.create_checkpoint(project, ["src/app.py"])

    assert result.success is False
    assert "index corrupted" in result.message
    assert assessor.last_checkpoint_id() is None


def test_undecodable_manifest_lines_are_skipped(tmp_path: Path) -> None:
    project = _project(tmp_path)
    store = FileCheckpointStore(tmp_path / "checkpoints")
    store.root.mkdir(parents=True)
    store.manifest_path.write_bytes(b"\xff\xfe garbage\n")
    assessor = RiskAssessor(checkpoint_store=store, settings=make_settings())

    result = assessor.create_checkpoint(project, ["src/app.py"])

    assert result.success is True
    assert [checkpoint.id for checkpoint in store.list()] == [result.checkpoint_id]

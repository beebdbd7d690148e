from pathlib import Path

import pytest

from monorepo_merger.errors import PlanMismatchError
from monorepo_merger.oplog import COMPLETED, FAILED, STARTED, OperationLog, compute_plan_hash, log_path_for
from monorepo_merger.time_utils import utc_now_iso


def test_log_lives_beside_staging(tmp_path: Path):
    staging = tmp_path / "mono.staging-1a2b3c4d"
    assert log_path_for(staging) == tmp_path / "mono.staging-1a2b3c4d.ops.jsonl"


def test_record_and_read_back(tmp_path: Path):
    log = OperationLog.for_staging(tmp_path / "out.staging-00000000")
    plan_hash = compute_plan_hash('{"version": 1}\n')
    log.create(plan_hash)

    log.record("scaffold", STARTED)
    log.record("scaffold", COMPLETED, outputs=["packages"], duration_ms=3)
    log.record("move-packages", FAILED, error="disk full")

    entries = log.entries()
    assert [(e.id, e.status) for e in entries] == [
        ("header", STARTED),
        ("scaffold", STARTED),
        ("scaffold", COMPLETED),
        ("move-packages", FAILED),
    ]
    assert log.plan_hash == plan_hash
    assert log.is_completed("scaffold")
    assert not log.is_completed("move-packages")
    assert entries[2].outputs == ("packages",)
    assert entries[0].timestamp.endswith("Z")
    assert len(entries[0].timestamp) == len(utc_now_iso())


def test_torn_last_line_is_skipped(tmp_path: Path):
    log = OperationLog(tmp_path / "x.ops.jsonl")
    log.create("abc")
    log.record("scaffold", COMPLETED)
    with open(log.path, "a", encoding="utf-8") as f:
        f.write('{"id": "move-packages", "sta')

    assert [e.id for e in log.entries()] == ["header", "scaffold"]


def test_plan_mismatch_rejected(tmp_path: Path):
    log = OperationLog(tmp_path / "x.ops.jsonl")
    log.create(compute_plan_hash("one"))

    log.ensure_plan(compute_plan_hash("one"))
    with pytest.raises(PlanMismatchError):
        log.ensure_plan(compute_plan_hash("two"))


def test_missing_log_reads_empty(tmp_path: Path):
    log = OperationLog(tmp_path / "none.ops.jsonl")
    assert not log.exists()
    assert log.entries() == []
    assert log.plan_hash is None
    log.remove()

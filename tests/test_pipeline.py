"""
End-to-end tests for the pipeline entry points and their event stream.
"""

import json
import logging
import threading
from functools import partial
from pathlib import Path

from monorepo_merger.config import Settings
from monorepo_merger.pipeline import (
    ApplyRequest,
    PipelineContext,
    PlanRequest,
    VerifyRequest,
    collect_events,
    run_analyze,
    run_apply,
    run_plan,
    run_verify,
)
from monorepo_merger.planner import PlanOptions


def _ctx(tmp_path: Path, op_id: str = "op-1") -> PipelineContext:
    return PipelineContext(settings=Settings(concurrency=2), op_id=op_id, work_dir=tmp_path)


def test_analyze_emits_logs_then_result_then_done(two_repos, tmp_path: Path):
    repos = [str(r) for r in two_repos]
    events = collect_events(partial(run_analyze, repos), _ctx(tmp_path))

    types = [e["type"] for e in events]
    assert types[-2:] == ["result", "done"]
    assert set(types[:-2]) == {"log"}
    assert all(e["opId"] == "op-1" for e in events)

    data = events[-2]["data"]
    assert [p["repoName"] for p in data["packages"]] == ["web", "api"]
    assert data["conflicts"][0]["name"] == "lodash"
    assert data["conflicts"][0]["severity"] == "minor"
    assert data["collisions"][0]["path"] == ".gitignore"
    assert 0 <= data["complexityScore"] <= 100
    assert data["hotspots"][0]["name"] == "lodash"


def test_failure_emits_single_error_event(tmp_path: Path):
    events = collect_events(partial(run_analyze, [str(tmp_path / "missing")]), _ctx(tmp_path))

    assert [e["type"] for e in events if e["type"] != "log"] == ["error", "done"]
    error = events[-2]
    assert error["error"] == "ValidationError"
    assert "Local path does not exist" in error["message"]


def test_unexpected_errors_are_shaped(tmp_path: Path):
    def broken(ctx):
        raise FileNotFoundError("plan.json")

    events = collect_events(broken, _ctx(tmp_path))
    assert events[0] == {
        "type": "error",
        "opId": "op-1",
        "error": "MergeError",
        "message": "plan.json",
        "hint": "Check that the file or directory exists",
    }
    assert events[1] == {"type": "done", "opId": "op-1"}


def test_concurrent_operations_keep_logs_apart(tmp_path: Path):
    log = logging.getLogger("monorepo_merger.test")
    barrier = threading.Barrier(2)
    results = {}

    def operation(label, ctx):
        barrier.wait()
        for i in range(5):
            log.info("%s message %d", label, i)
        return label

    def run(op_id):
        results[op_id] = collect_events(partial(operation, op_id), _ctx(tmp_path, op_id))

    threads = [threading.Thread(target=run, args=(op_id,)) for op_id in ("first", "second")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for op_id, events in results.items():
        messages = [e["message"] for e in events if e["type"] == "log"]
        assert messages == [f"{op_id} message {i}" for i in range(5)]
        assert all(e["opId"] == op_id for e in events)


def test_plan_apply_verify_end_to_end(two_repos, tmp_path: Path):
    ctx = _ctx(tmp_path)
    request = PlanRequest(
        output_dir="mono",
        options=PlanOptions(package_manager_version="9.0.0", install=False),
    )

    planned = run_plan([str(r) for r in two_repos], request, ctx)
    plan_path = Path(planned["planPath"])
    assert plan_path == tmp_path / "mono.plan.json"
    assert planned["plan"]["rootPackageJson"]["name"] == "mono"
    assert json.loads(plan_path.read_text())["install"] is False
    # the original repositories are left alone; apply moves the acquired copies
    assert all(Path(r).exists() for r in two_repos)

    applied = run_apply(ApplyRequest(plan_path=str(plan_path), output_dir=str(tmp_path / "mono")), ctx=ctx)
    assert applied == {"outputDir": str((tmp_path / "mono").resolve()), "packageCount": 2}
    assert (tmp_path / "mono" / "packages" / "web" / "package.json").is_file()

    result = run_verify(VerifyRequest(directory=str(tmp_path / "mono")), ctx)
    assert result.ok
    assert result.input_type == "dir"


def test_plan_can_be_regenerated(two_repos, tmp_path: Path):
    ctx = _ctx(tmp_path)
    request = PlanRequest(output_dir="mono", options=PlanOptions(package_manager_version="9.0.0", install=False))
    repos = [str(r) for r in two_repos]

    run_plan(repos, request, ctx)
    (two_repos[0] / "src" / "index.js").unlink()
    planned = run_plan(repos, request, ctx)

    copied = tmp_path / "mono.plan.json.sources" / "web"
    assert (copied / "package.json").is_file()
    assert not (copied / "src" / "index.js").exists()
    assert [s["name"] for s in planned["plan"]["sources"]] == ["web", "api"]


def test_operations_restore_logger_level(tmp_path: Path):
    package_logger = logging.getLogger("monorepo_merger")
    previous = package_logger.level
    package_logger.setLevel(logging.WARNING)
    try:
        events = collect_events(lambda ctx: logging.getLogger("monorepo_merger.test").info("hello"), _ctx(tmp_path))
        assert [e["message"] for e in events if e["type"] == "log"] == ["hello"]
        assert package_logger.level == logging.WARNING
    finally:
        package_logger.setLevel(previous)

"""
Tests for plan and directory verification.
"""

import json
from pathlib import Path

import pytest

from monorepo_merger import verify as verify_module
from monorepo_merger.config import Settings
from monorepo_merger.errors import ValidationError
from monorepo_merger.models import ApplyPlan, PlanFile, PlanSource, RepoPath
from monorepo_merger.planner import PlanOptions, build_plan, write_plan
from monorepo_merger.verify import FAIL, PASS, WARN, verify

SETTINGS = Settings(concurrency=2)


def _statuses(result):
    return {c.id: c.status for c in result.checks}


def _plan_file(tmp_path: Path, repos, **options) -> Path:
    options.setdefault("package_manager_version", "9.0.0")
    plan = build_plan([RepoPath(r.name, str(r)) for r in repos], PlanOptions(**options)).plan
    path = tmp_path / "mono.plan.json"
    write_plan(plan, path)
    return path


def test_generated_plan_passes(two_repos, tmp_path: Path):
    result = verify(plan_path=_plan_file(tmp_path, two_repos), settings=SETTINGS)
    statuses = _statuses(result)

    assert result.ok
    assert result.input_type == "plan"
    assert statuses["root-private"] == PASS
    assert statuses["workspace-config"] == PASS
    assert statuses["pkg-name:web"] == PASS
    assert statuses["root-script:web:build"] == PASS
    assert statuses["circular-deps"] == PASS
    assert statuses["root-engines"] == PASS
    assert statuses["enforcement-overrides"] == WARN


def test_cycle_is_a_warning_not_a_failure(make_repo, tmp_path: Path):
    a = make_repo("a", {"name": "a", "version": "1.0.0", "dependencies": {"b": "^1.0.0"}})
    b = make_repo("b", {"name": "b", "version": "1.0.0", "dependencies": {"a": "^1.0.0"}})

    result = verify(plan_path=_plan_file(tmp_path, [a, b]), settings=SETTINGS)

    cycles = [c for c in result.checks if c.id.startswith("circular-dep")]
    assert len(cycles) == 1
    assert cycles[0].status == WARN
    assert cycles[0].message == "Circular dependency: a -> b -> a"
    assert result.ok


def test_broken_plan_fails(make_repo, tmp_path: Path):
    repo = make_repo("web", {"version": "1.0.0"})
    plan = ApplyPlan(
        sources=(PlanSource("web", str(repo)),),
        packages_dir="packages",
        root_package_json={"name": "mono", "scripts": {"api:build": "pnpm --filter api build"}},
        files=(PlanFile(".gitignore", "node_modules/\n"),),
        install=False,
    )
    path = tmp_path / "broken.plan.json"
    write_plan(plan, path)

    result = verify(plan_path=path, settings=SETTINGS)
    statuses = _statuses(result)

    assert not result.ok
    assert statuses["root-private"] == FAIL
    assert statuses["workspace-config"] == FAIL
    assert statuses["pkg-name:web"] == FAIL
    assert statuses["root-script:api:build"] == FAIL
    assert statuses["root-engines"] == WARN
    assert result.summary["fail"] == 4


def test_plan_mode_cannot_run_install_checks(two_repos, tmp_path: Path):
    result = verify(plan_path=_plan_file(tmp_path, two_repos), tier="full", settings=SETTINGS)
    statuses = _statuses(result)
    assert statuses["install"] == WARN
    assert statuses["build"] == WARN


def _monorepo(tmp_path: Path) -> Path:
    root = tmp_path / "mono"
    for name, scripts in (("web", {"build": "tsc"}), ("api", {"build": "tsc", "test": "jest"})):
        pkg = root / "packages" / name
        pkg.mkdir(parents=True)
        (pkg / "package.json").write_text(json.dumps({"name": name, "version": "1.0.0", "scripts": scripts}))
    (root / "package.json").write_text(json.dumps({
        "name": "mono",
        "private": True,
        "packageManager": "pnpm@9.0.0",
        "scripts": {"build": "pnpm -r build", "web:build": "pnpm --filter web build"},
        "engines": {"node": ">=18"},
    }))
    (root / "pnpm-workspace.yaml").write_text("packages:\n  - 'packages/*'\n")
    return root


def test_directory_static_checks(tmp_path: Path):
    result = verify(directory=_monorepo(tmp_path), settings=SETTINGS)
    assert result.input_type == "dir"
    assert result.ok
    assert "enforcement-overrides" not in _statuses(result)


def test_directory_install_and_full_tiers(tmp_path: Path, monkeypatch):
    root = _monorepo(tmp_path)
    (root / "pnpm-lock.yaml").write_text("lockfileVersion: '9.0'\n")
    (root / "node_modules").mkdir()
    calls = []

    def fake_run(args, cwd, timeout):
        calls.append((tuple(args), Path(cwd).name))
        if Path(cwd).name == "api" and args[-1] == "test":
            return False, "1 test failed"
        return True, ""

    monkeypatch.setattr(verify_module, "run_command", fake_run)
    result = verify(directory=root, tier="full", settings=SETTINGS)
    statuses = _statuses(result)

    assert statuses["install"] == PASS
    assert statuses["lockfile"] == PASS
    assert statuses["node-modules"] == PASS
    assert statuses["build:web"] == PASS
    assert statuses["build:api"] == PASS
    assert statuses["test:api"] == FAIL
    assert ("pnpm", "install", "--ignore-scripts") in [args for args, _ in calls]
    failed = [c for c in result.checks if c.id == "test:api"][0]
    assert failed.details == "1 test failed"


def test_missing_lockfile_and_node_modules_fail(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(verify_module, "run_command", lambda args, cwd, timeout: (False, "ENOENT"))
    result = verify(directory=_monorepo(tmp_path), tier="install", settings=SETTINGS)
    statuses = _statuses(result)
    assert statuses["install"] == FAIL
    assert statuses["lockfile"] == FAIL
    assert statuses["node-modules"] == FAIL


def test_exactly_one_input_required(tmp_path: Path):
    with pytest.raises(ValidationError):
        verify(settings=SETTINGS)
    with pytest.raises(ValidationError):
        verify(plan_path=tmp_path / "a.json", directory=tmp_path, settings=SETTINGS)
    with pytest.raises(ValidationError):
        verify(directory=tmp_path, tier="deep", settings=SETTINGS)


def test_undecodable_manifest_fails_only_its_package(tmp_path: Path):
    root = _monorepo(tmp_path)
    bad = root / "packages" / "bad"
    bad.mkdir()
    (bad / "package.json").write_bytes(b'{"name": "\xff\xfe"}')

    result = verify(directory=root, settings=SETTINGS)
    statuses = _statuses(result)

    assert not result.ok
    assert statuses["pkg-manifest:bad"] == FAIL
    assert "not valid UTF-8" in next(c.details for c in result.checks if c.id == "pkg-manifest:bad")
    assert statuses["pkg-name:web"] == PASS
    assert statuses["pkg-name:api"] == PASS


def test_malformed_root_fields_are_failures(make_repo, tmp_path: Path):
    repo = make_repo("web", {"name": "web", "version": "1.0.0"})
    plan = ApplyPlan(
        sources=(PlanSource("web", str(repo)),),
        packages_dir="packages",
        root_package_json={
            "name": "mono",
            "private": True,
            "scripts": ["build"],
            "dependencies": {"lodash": "^4.17.21"},
            "pnpm": "strict",
        },
        files=(PlanFile("pnpm-workspace.yaml", "packages:\n  - 'packages/*'\n"),),
        install=False,
    )
    path = tmp_path / "odd.plan.json"
    write_plan(plan, path)

    result = verify(plan_path=path, settings=SETTINGS)
    statuses = _statuses(result)

    assert statuses["root-scripts"] == FAIL
    assert statuses["root-scripts-exist"] == WARN
    assert statuses["enforcement-overrides"] == FAIL
    assert statuses["pkg-name:web"] == PASS
    assert result.summary["fail"] == 2

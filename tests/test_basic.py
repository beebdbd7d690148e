"""Tests for the monorepo_merger package."""

import pytest
from pathlib import Path


def test_package_import():
    """Test that the package can be imported."""
    import monorepo_merger
    assert monorepo_merger.__version__ == "0.1.0"


def test_cli_import():
    """Test that CLI module can be imported."""
    from monorepo_merger.cli import main
    assert callable(main)


def test_pipeline_import():
    """Test that the pipeline entry points can be imported."""
    from monorepo_merger.pipeline import run_analyze, run_apply, run_plan, run_verify
    assert all(callable(fn) for fn in (run_analyze, run_plan, run_apply, run_verify))


def test_plan_options_defaults():
    """Test default plan options."""
    from monorepo_merger.planner import PlanOptions

    options = PlanOptions()

    assert options.packages_dir == "packages"
    assert options.conflict_strategy == "highest"
    assert options.package_manager == "pnpm"
    assert options.install is True


def test_default_plan_path(tmp_path: Path, monkeypatch):
    """Test that the plan file is named after the output directory."""
    from monorepo_merger.planner import default_plan_path

    monkeypatch.chdir(tmp_path)
    assert default_plan_path("./out/my-monorepo") == tmp_path / "my-monorepo.plan.json"


def test_manifest_round_trip_keeps_unknown_fields():
    """Test that unknown package.json keys survive parse and serialize."""
    from monorepo_merger.manifest import PackageManifest

    data = {"name": "web", "browserslist": ["defaults"], "version": "1.0.0", "files": ["dist"]}
    manifest = PackageManifest.from_dict(data)

    assert manifest.to_dict() == data
    assert list(manifest.to_dict()) == list(data)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

import json
from pathlib import Path

import pytest

from monorepo_merger import cli
from monorepo_merger.cli import build_parser, main


def test_parser_requires_plan_or_dir_for_verify():
    parser = build_parser()
    with pytest.raises(SystemExit):
        parser.parse_args(["verify", "--plan", "a.json", "--dir", "out"])
    args = parser.parse_args(["verify", "--dir", "out", "--tier", "install"])
    assert args.tier == "install"


def test_analyze_json_output(two_repos, capsys):
    assert main(["analyze", *[str(r) for r in two_repos], "--json"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["conflicts"][0]["name"] == "lodash"


def test_analyze_exports_reports(two_repos, tmp_path: Path):
    reports = tmp_path / "reports"
    assert main(["analyze", *[str(r) for r in two_repos], "--output-dir", str(reports)]) == 0
    assert (reports / "analysis_results.json").is_file()
    assert (reports / "analysis_conflicts.csv").is_file()
    assert (reports / "analysis_hotspots.csv").is_file()


def test_plan_apply_verify(two_repos, tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        "monorepo_merger.package_manager.get_package_manager_version", lambda pm, timeout=10.0: "9.0.0"
    )

    assert main(["plan", *[str(r) for r in two_repos], "-o", "mono", "--no-install"]) == 0
    plan_path = tmp_path / "mono.plan.json"
    assert json.loads(plan_path.read_text())["rootPackageJson"]["packageManager"] == "pnpm@9.0.0"

    assert main(["apply", "--plan", str(plan_path), "--out", "mono", "--dry-run"]) == 0
    assert not (tmp_path / "mono").exists()

    assert main(["apply", "--plan", str(plan_path), "--out", "mono"]) == 0
    assert (tmp_path / "mono" / "packages" / "api" / "package.json").is_file()

    assert main(["verify", "--dir", "mono", "--output-dir", "reports"]) == 0
    assert (tmp_path / "reports" / "verify_static_checks.csv").is_file()


def test_errors_return_nonzero(tmp_path: Path, caplog):
    assert main(["apply", "--plan", str(tmp_path / "missing.json"), "--out", str(tmp_path / "out")]) == 1
    assert "Plan file not found" in caplog.text


def test_cleanup_flag(tmp_path: Path, monkeypatch):
    calls = []
    monkeypatch.setattr(cli, "cleanup_staging", lambda out: calls.append(out) or [])
    assert main(["apply", "--plan", "x.json", "--out", str(tmp_path / "out"), "--cleanup"]) == 0
    assert calls == [str(tmp_path / "out")]

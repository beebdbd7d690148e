from pathlib import Path

import json

import pandas as pd

from monorepo_merger.models import ConflictEntry, ConflictRecord, Hotspot, VerifyCheck, VerifyResult
from monorepo_merger.reporting import (
    conflicts_frame,
    export_conflicts_csv,
    export_hotspots_csv,
    export_verify_csv,
    print_summary,
    save_analysis_json,
)


def _conflict():
    return ConflictRecord(
        "react",
        (ConflictEntry("^17.0.2", "web"), ConflictEntry("^18.2.0", "api", "devDependencies")),
        "incompatible",
        "high",
        "declared",
    )


def test_reporting_exports(tmp_path: Path):
    output_dir = tmp_path / "out"
    result = {"packages": [{"name": "web"}], "conflicts": [_conflict().to_dict()], "complexityScore": 12}

    results_file = save_analysis_json(result, output_dir, "demo")
    conflicts_file = export_conflicts_csv([_conflict()], output_dir, "demo")
    hotspots_file = export_hotspots_csv([Hotspot("react", 2, True, ("^17.0.2", "^18.2.0"))], output_dir, "demo")

    assert json.loads(results_file.read_text())["complexityScore"] == 12
    assert conflicts_file.name == "demo_conflicts.csv"
    assert hotspots_file is not None and hotspots_file.exists()

    df = pd.read_csv(conflicts_file)
    assert list(df["version"]) == ["^17.0.2", "^18.2.0"]
    assert list(df["type"]) == ["dependencies", "devDependencies"]
    assert pd.read_csv(hotspots_file)["version_ranges"][0] == "^17.0.2 | ^18.2.0"


def test_empty_exports(tmp_path: Path):
    assert export_hotspots_csv([], tmp_path) is None
    assert conflicts_frame([]).empty


def test_verify_export(tmp_path: Path):
    result = VerifyResult(
        tier="static",
        input_type="dir",
        input_path=str(tmp_path),
        checks=(
            VerifyCheck("root-private", "Root package.json has private: true", "pass", "static"),
            VerifyCheck("root-engines", "Root package.json missing engines.node constraint", "warn", "static"),
        ),
        timestamp="2024-01-01T00:00:00.000Z",
    )

    path = export_verify_csv(result, tmp_path)

    assert path.name == "verify_static_checks.csv"
    assert list(pd.read_csv(path)["status"]) == ["pass", "warn"]


def test_print_summary_logs_conflicts(caplog):
    caplog.set_level("INFO", logger="monorepo_merger")
    print_summary({"packages": [{}, {}], "conflicts": [_conflict().to_dict()], "complexityScore": 40})

    assert "Packages: 2" in caplog.text
    assert "react: ^17.0.2 (web), ^18.2.0 (api) [INCOMPATIBLE]" in caplog.text
    assert "Complexity score: 40/100" in caplog.text

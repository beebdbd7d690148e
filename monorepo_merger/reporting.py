"""
Reporting and export utilities.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional
import logging

import pandas as pd

from .conflicts import conflict_summary, format_conflict
from .models import ConflictRecord, Hotspot, VerifyResult

logger = logging.getLogger(__name__)

CONFLICT_COLUMNS = ["name", "severity", "confidence", "conflict_source", "version", "source", "type"]
HOTSPOT_COLUMNS = ["name", "dependent_count", "has_conflict", "version_ranges"]
VERIFY_COLUMNS = ["id", "tier", "status", "message", "plan_ref", "details"]


def print_summary(result: Dict[str, Any]) -> None:
    """Log a human readable digest of an analysis result dictionary."""
    conflicts = [ConflictRecord.from_dict(c) for c in result.get("conflicts", [])]
    summary = conflict_summary(conflicts)
    logger.info("\n" + "=" * 60)
    logger.info("ANALYSIS RESULTS")
    logger.info("=" * 60)
    logger.info("Packages: %s", len(result.get("packages", [])))
    logger.info(
        "Conflicts: %s (%s incompatible, %s major, %s minor)",
        len(conflicts), summary["incompatible"], summary["major"], summary["minor"],
    )
    for conflict in conflicts:
        logger.info("  %s", format_conflict(conflict))
    logger.info("File collisions: %s", len(result.get("collisions", [])))
    logger.info("Circular dependencies: %s", len(result.get("circularDependencies", [])))
    logger.info("-" * 60)
    logger.info("Complexity score: %s/100", result.get("complexityScore", 0))
    for advice in result.get("recommendations", []):
        logger.info("  * %s", advice)
    logger.info("=" * 60)


def save_analysis_json(result: Dict[str, Any], output_dir: Path, name: str = "analysis") -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    results_file = output_dir / f"{name}_results.json"
    with open(results_file, 'w') as f:
        json.dump(result, f, indent=2, default=str)
    return results_file


def conflicts_frame(conflicts: Iterable[ConflictRecord]) -> pd.DataFrame:
    """One row per requested version of each conflicting dependency."""
    rows = [
        {
            "name": c.name,
            "severity": c.severity,
            "confidence": c.confidence,
            "conflict_source": c.source,
            "version": v.specifier,
            "source": v.source,
            "type": v.dep_type,
        }
        for c in conflicts
        for v in c.versions
    ]
    return pd.DataFrame(rows, columns=CONFLICT_COLUMNS)


def export_conflicts_csv(conflicts: Iterable[ConflictRecord], output_dir: Path, name: str = "analysis") -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    conflicts_file = output_dir / f"{name}_conflicts.csv"
    conflicts_frame(conflicts).to_csv(conflicts_file, index=False)
    return conflicts_file


def export_hotspots_csv(hotspots: Iterable[Hotspot], output_dir: Path, name: str = "analysis") -> Optional[Path]:
    rows = [
        {
            "name": h.name,
            "dependent_count": h.dependent_count,
            "has_conflict": h.has_conflict,
            "version_ranges": " | ".join(h.version_ranges),
        }
        for h in hotspots
    ]
    if not rows:
        return None
    output_dir.mkdir(parents=True, exist_ok=True)
    hotspots_file = output_dir / f"{name}_hotspots.csv"
    pd.DataFrame(rows, columns=HOTSPOT_COLUMNS).to_csv(hotspots_file, index=False)
    return hotspots_file


def export_verify_csv(result: VerifyResult, output_dir: Path, name: str = "verify") -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    verify_file = output_dir / f"{name}_{result.tier}_checks.csv"
    df = pd.DataFrame(
        [
            {
                "id": c.id,
                "tier": c.tier,
                "status": c.status,
                "message": c.message,
                "plan_ref": c.plan_ref or "",
                "details": c.details or "",
            }
            for c in result.checks
        ],
        columns=VERIFY_COLUMNS,
    )
    df.to_csv(verify_file, index=False)
    return verify_file

"""
Dependency conflict detection across the repositories being merged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .lockfile import parse_lockfile
from .manifest import read_package
from .models import (
    DEPENDENCIES,
    DEPENDENCY_TYPES,
    AnalysisFindings,
    ConflictEntry,
    ConflictRecord,
    Decision,
    DependencyWarning,
    LockfileResolution,
    PackageDescriptor,
    RepoPath,
)
from .peers import analyze_peer_dependencies
from .semver import FILE_PATTERN, GIT_PATTERN, NON_SEMVER, WILDCARD, VersionSpecifier, parse_semver

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"incompatible": 0, "major": 1, "minor": 2}


@dataclass(frozen=True)
class DependencyAnalysis:
    """Everything the conflict detector derives from one scan."""

    packages: Tuple[PackageDescriptor, ...]
    declared_conflicts: Tuple[ConflictRecord, ...]
    resolved_conflicts: Tuple[ConflictRecord, ...]
    peer_conflicts: Tuple[ConflictRecord, ...]
    decisions: Tuple[Decision, ...]
    warnings: Tuple[DependencyWarning, ...] = ()
    lockfile_resolutions: Tuple[LockfileResolution, ...] = field(default=())

    @property
    def conflicts(self) -> List[ConflictRecord]:
        """Merged view: one record per name, resolved beating declared,
        peer-constraint records always kept as separate entries."""
        merged: Dict[str, ConflictRecord] = {}
        for conflict in self.declared_conflicts:
            merged[conflict.name] = conflict
        for conflict in self.resolved_conflicts:
            merged[conflict.name] = conflict
        combined = list(merged.values()) + list(self.peer_conflicts)
        return sorted(combined, key=lambda c: (SEVERITY_ORDER[c.severity], c.name, c.source))

    def findings(self) -> AnalysisFindings:
        return AnalysisFindings(
            declared_conflicts=self.declared_conflicts,
            resolved_conflicts=self.resolved_conflicts,
            peer_conflicts=self.peer_conflicts,
            decisions=self.decisions,
        )


def determine_severity(specifiers: Iterable[str]) -> str:
    """Classify how far apart a set of specifiers is.

    Fewer than two parseable specifiers means a mix of semver and
    non-semver forms, which is reported as ``major`` rather than guessed.
    """
    parsed = [p for p in (parse_semver(s) for s in specifiers) if p is not None]
    if len(parsed) < 2:
        return "major"
    if len({p.major for p in parsed}) > 1:
        return "incompatible"
    if len({p.minor for p in parsed}) > 1:
        return "major"
    return "minor"


def scan_repositories(
    repo_paths: Sequence[RepoPath],
) -> Tuple[List[PackageDescriptor], List[LockfileResolution]]:
    """Read every repository's manifest and lockfile."""
    packages: List[PackageDescriptor] = []
    resolutions: List[LockfileResolution] = []
    for repo in repo_paths:
        package = read_package(Path(repo.path), repo.name)
        if package is not None:
            packages.append(package)
        resolution = parse_lockfile(Path(repo.path), repo.name)
        if resolution is not None:
            resolutions.append(resolution)
    logger.info("Scanned %d packages, %d lockfiles", len(packages), len(resolutions))
    return packages, resolutions


def group_declared(packages: Iterable[PackageDescriptor]) -> Dict[str, List[ConflictEntry]]:
    """Every declared specifier per dependency name, across repos and types."""
    groups: Dict[str, List[ConflictEntry]] = {}
    for pkg in packages:
        for dep_type in DEPENDENCY_TYPES:
            for name, version in pkg.dependency_map(dep_type).items():
                groups.setdefault(name, []).append(ConflictEntry(version, pkg.repo_name, dep_type))
    return groups


def detect_declared_conflicts(packages: Iterable[PackageDescriptor]) -> List[ConflictRecord]:
    conflicts = []
    for name, entries in sorted(group_declared(packages).items()):
        unique = _unique(e.specifier for e in entries)
        if len(unique) > 1:
            conflicts.append(ConflictRecord(
                name=name,
                versions=tuple(entries),
                severity=determine_severity(unique),
                confidence="high",
                source="declared",
            ))
    return conflicts


def detect_resolved_conflicts(resolutions: Iterable[LockfileResolution]) -> List[ConflictRecord]:
    """Mismatches among the versions lockfiles actually installed."""
    groups: Dict[str, List[ConflictEntry]] = {}
    for resolution in resolutions:
        for name, version in resolution.resolved_versions.items():
            groups.setdefault(name, []).append(ConflictEntry(version, resolution.repo_name, DEPENDENCIES))

    conflicts = []
    for name, entries in sorted(groups.items()):
        unique = _unique(e.specifier for e in entries)
        if len(unique) > 1:
            conflicts.append(ConflictRecord(
                name=name,
                versions=tuple(entries),
                severity=determine_severity(unique),
                confidence="high",
                source="resolved",
            ))
    return conflicts


def collect_warnings(packages: Iterable[PackageDescriptor]) -> List[DependencyWarning]:
    """Visibility records for git/file/url/wildcard specifiers."""
    warnings = []
    for pkg in packages:
        for dep_type in DEPENDENCY_TYPES:
            for name, version in pkg.dependency_map(dep_type).items():
                spec = VersionSpecifier.of(version)
                if spec.kind == NON_SEMVER:
                    if GIT_PATTERN.match(version):
                        kind = "git"
                    elif FILE_PATTERN.match(version):
                        kind = "file"
                    else:
                        kind = "url"
                    message = f'Non-semver dependency "{name}": {version} in {pkg.repo_name}'
                elif spec.kind == WILDCARD:
                    kind = "wildcard"
                    message = f'Wildcard version for "{name}": {version} in {pkg.repo_name}'
                else:
                    continue
                warnings.append(DependencyWarning(name, version, pkg.repo_name, kind, message))
    return warnings


def build_decisions(
    declared: Iterable[ConflictRecord],
    peers: Iterable[ConflictRecord],
) -> List[Decision]:
    decisions = []
    for conflict in declared:
        if conflict.severity != "incompatible":
            continue
        listed = ", ".join(f"{v.specifier} ({v.source})" for v in conflict.versions)
        decisions.append(Decision(
            kind="version-conflict",
            description=f'Incompatible versions of "{conflict.name}": {listed}',
            related_conflict=conflict.name,
            suggested_action="Consider the isolate strategy or updating packages to compatible versions.",
        ))
    for conflict in peers:
        listed = " vs ".join(f"{v.specifier} ({v.source})" for v in conflict.versions)
        decisions.append(Decision(
            kind="peer-constraint-violation",
            description=f'Peer dependency "{conflict.name}" may not be satisfied: {listed}',
            related_conflict=conflict.name,
            suggested_action="Review peer dependency requirements and update versions as needed.",
        ))
    return decisions


def analyze_dependencies(
    packages: Sequence[PackageDescriptor],
    resolutions: Optional[Sequence[LockfileResolution]] = None,
) -> DependencyAnalysis:
    """Detect declared, resolved and peer conflicts. Pure and repeatable."""
    resolutions = list(resolutions or [])
    declared = detect_declared_conflicts(packages)
    resolved = detect_resolved_conflicts(resolutions)
    peers = analyze_peer_dependencies(packages, resolutions)
    analysis = DependencyAnalysis(
        packages=tuple(packages),
        declared_conflicts=tuple(declared),
        resolved_conflicts=tuple(resolved),
        peer_conflicts=tuple(peers),
        decisions=tuple(build_decisions(declared, peers)),
        warnings=tuple(collect_warnings(packages)),
        lockfile_resolutions=tuple(resolutions),
    )
    logger.debug(
        "Conflicts: %d declared, %d resolved, %d peer",
        len(declared), len(resolved), len(peers),
    )
    return analysis


def conflict_summary(conflicts: Iterable[ConflictRecord]) -> Dict[str, int]:
    summary = {"incompatible": 0, "major": 0, "minor": 0}
    for conflict in conflicts:
        summary[conflict.severity] += 1
    return summary


def format_conflict(conflict: ConflictRecord) -> str:
    listed = ", ".join(f"{v.specifier} ({v.source})" for v in conflict.versions)
    indicator = {"incompatible": "[INCOMPATIBLE]", "major": "[MAJOR]"}.get(conflict.severity, "[minor]")
    return f"{conflict.name}: {listed} {indicator}"


def _unique(values: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(values))

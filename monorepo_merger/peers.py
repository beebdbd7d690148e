"""
Peer dependency constraint analysis.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .models import (
    DEPENDENCIES,
    PEER_DEPENDENCIES,
    ConflictEntry,
    ConflictRecord,
    LockfileResolution,
    PackageDescriptor,
)
from .semver import is_complex_range, parse_semver, satisfies_range


def analyze_peer_dependencies(
    packages: Iterable[PackageDescriptor],
    resolutions: Iterable[LockfileResolution],
) -> List[ConflictRecord]:
    """Report peer ranges that the available versions may not satisfy.

    The available version of a peer is the repository's lockfile-resolved
    version, falling back to the first declared version across all packages.
    Complex ranges cannot be checked and are reported with low confidence.
    """
    packages = list(packages)
    by_repo: Dict[str, Dict[str, str]] = {r.repo_name: dict(r.resolved_versions) for r in resolutions}

    declared: Dict[str, List[str]] = {}
    for pkg in packages:
        for deps in (pkg.dependencies, pkg.dev_dependencies):
            for name, version in deps.items():
                declared.setdefault(name, []).append(version)

    conflicts: List[ConflictRecord] = []
    for pkg in packages:
        for peer_name, peer_range in pkg.peer_dependencies.items():
            available = _available_version(peer_name, by_repo.get(pkg.repo_name, {}), declared)
            if available is None:
                continue

            if is_complex_range(peer_range):
                confidence = "low"
            elif satisfies_range(available, peer_range):
                continue
            else:
                confidence = "medium"

            conflicts.append(ConflictRecord(
                name=peer_name,
                versions=(
                    ConflictEntry(peer_range, f"{pkg.repo_name} (peer)", PEER_DEPENDENCIES),
                    ConflictEntry(available, "available", DEPENDENCIES),
                ),
                severity="major",
                confidence=confidence,
                source="peer-constraint",
            ))
    return conflicts


def _available_version(
    name: str,
    repo_resolutions: Dict[str, str],
    declared: Dict[str, List[str]],
) -> Optional[str]:
    if repo_resolutions.get(name):
        return repo_resolutions[name]
    versions = declared.get(name)
    if versions:
        parsed = parse_semver(versions[0])
        if parsed is not None:
            return parsed.release()
    return None

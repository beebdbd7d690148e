"""
Turns dependency conflicts plus a strategy into root version pins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import ValidationError
from .models import DEPENDENCIES, DEV_DEPENDENCIES, ConflictEntry, ConflictRecord, PackageDescriptor
from .semver import compare_versions

logger = logging.getLogger(__name__)

HIGHEST = "highest"
LOWEST = "lowest"
ISOLATE = "isolate"
HOIST_WITH_OVERRIDES = "hoist-with-overrides"
STRATEGIES = (HIGHEST, LOWEST, ISOLATE, HOIST_WITH_OVERRIDES)


@dataclass(frozen=True)
class ResolvedDependencies:
    """Root dependency maps chosen for the merged workspace.

    ``hoisted`` is False for the isolate strategy, in which case the root
    manifest keeps no dependency block at all.
    """

    dependencies: Dict[str, str] = field(default_factory=dict)
    dev_dependencies: Dict[str, str] = field(default_factory=dict)
    overrides: Dict[str, str] = field(default_factory=dict)
    hoisted: bool = True


def validate_strategy(strategy: str) -> str:
    if strategy not in STRATEGIES:
        raise ValidationError(
            f"Unknown conflict strategy: {strategy}",
            hint=f"Choose one of: {', '.join(STRATEGIES)}",
        )
    return strategy


def pick_entry(entries: Iterable[ConflictEntry], prefer_highest: bool = True) -> Optional[ConflictEntry]:
    """Winning entry by version; equal versions go to the lexically first source.

    Candidates are visited in (source, specifier) order and only a strictly
    better version replaces the current pick, so the result does not depend
    on the order the entries were supplied in.
    """
    best: Optional[ConflictEntry] = None
    for entry in sorted(entries, key=lambda e: (e.source, e.specifier)):
        if best is None:
            best = entry
            continue
        order = compare_versions(entry.specifier, best.specifier)
        if (order > 0) if prefer_highest else (order < 0):
            best = entry
    return best


def pick_version(specifiers: Sequence[str], strategy: str) -> Optional[str]:
    """Winning specifier for a bare list of specifiers."""
    entry = pick_entry((ConflictEntry(s, "") for s in specifiers), prefer_highest=strategy != LOWEST)
    return entry.specifier if entry else None


def baseline_dependencies(packages: Iterable[PackageDescriptor]) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Highest declared runtime and dev specifier per name.

    A name used at runtime anywhere is kept out of the dev map.
    """
    runtime: Dict[str, List[ConflictEntry]] = {}
    dev: Dict[str, List[ConflictEntry]] = {}
    for pkg in packages:
        for name, spec in pkg.dependencies.items():
            runtime.setdefault(name, []).append(ConflictEntry(spec, pkg.repo_name, DEPENDENCIES))
        for name, spec in pkg.dev_dependencies.items():
            dev.setdefault(name, []).append(ConflictEntry(spec, pkg.repo_name, DEV_DEPENDENCIES))

    deps = {name: pick_entry(entries).specifier for name, entries in runtime.items()}
    dev_deps = {name: pick_entry(entries).specifier for name, entries in dev.items() if name not in deps}
    return deps, dev_deps


def resolve_conflicts(
    packages: Sequence[PackageDescriptor],
    conflicts: Iterable[ConflictRecord],
    strategy: str,
    internal_names: Iterable[str] = (),
) -> ResolvedDependencies:
    """Resolve declared conflicts into root dependency maps.

    Runtime and dev specifiers are resolved separately. Packages that are
    themselves part of the merge are never hoisted to the root.
    """
    validate_strategy(strategy)
    if strategy == ISOLATE:
        logger.info("Isolate strategy: dependencies stay in their packages")
        return ResolvedDependencies(hoisted=False)

    internal = set(internal_names) | {p.name for p in packages}
    deps, dev_deps = baseline_dependencies(packages)
    prefer_highest = strategy != LOWEST
    overrides: Dict[str, str] = {}

    for conflict in sorted(conflicts, key=lambda c: c.name):
        if conflict.source == "peer-constraint":
            continue
        runtime = [e for e in conflict.versions if e.dep_type == DEPENDENCIES]
        dev = [e for e in conflict.versions if e.dep_type == DEV_DEPENDENCIES]
        if runtime:
            deps[conflict.name] = pick_entry(runtime, prefer_highest).specifier
            dev_deps.pop(conflict.name, None)
        elif dev:
            dev_deps[conflict.name] = pick_entry(dev, prefer_highest).specifier

        if strategy == HOIST_WITH_OVERRIDES and (runtime or dev):
            overrides[conflict.name] = pick_entry(runtime + dev, True).specifier

    for name in internal:
        deps.pop(name, None)
        dev_deps.pop(name, None)
        overrides.pop(name, None)

    resolved = ResolvedDependencies(
        dependencies=_sorted_map(deps),
        dev_dependencies=_sorted_map(dev_deps),
        overrides=_sorted_map(overrides),
    )
    logger.debug(
        "Resolved %d runtime, %d dev, %d overrides using %s",
        len(resolved.dependencies), len(resolved.dev_dependencies), len(resolved.overrides), strategy,
    )
    return resolved


def _sorted_map(values: Mapping[str, str]) -> Dict[str, str]:
    return {name: values[name] for name in sorted(values)}

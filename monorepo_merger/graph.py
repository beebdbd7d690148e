"""
Cross-package dependency graph: edges, cycles, hotspots and complexity.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from .models import (
    DEPENDENCY_TYPES,
    ConflictRecord,
    CrossDependencyEdge,
    CycleRecord,
    FileCollision,
    Hotspot,
    PackageDescriptor,
)


def detect_cross_dependencies(packages: Iterable[PackageDescriptor]) -> List[CrossDependencyEdge]:
    """Edges between packages that are both part of the merge set."""
    packages = list(packages)
    names = {p.name for p in packages}
    edges = []
    for pkg in packages:
        for dep_type in DEPENDENCY_TYPES:
            for dep_name, specifier in pkg.dependency_map(dep_type).items():
                if dep_name in names:
                    edges.append(CrossDependencyEdge(pkg.name, dep_name, specifier, dep_type))
    return edges


def detect_cycles(edges: Iterable[CrossDependencyEdge]) -> List[CycleRecord]:
    """Every elementary cycle, each reported once.

    Nodes are ranked by name; a cycle is found from its lowest-ranked node
    by extending paths through strictly higher-ranked nodes only. When two
    packages are linked by several dependency types, the first type in
    dependencies/devDependencies/peerDependencies order labels the hop.
    """
    type_rank = {t: i for i, t in enumerate(DEPENDENCY_TYPES)}
    adjacency: Dict[str, Dict[str, str]] = {}
    for edge in edges:
        targets = adjacency.setdefault(edge.from_package, {})
        adjacency.setdefault(edge.to_package, {})
        current = targets.get(edge.to_package)
        if current is None or type_rank.get(edge.dep_type, 99) < type_rank.get(current, 99):
            targets[edge.to_package] = edge.dep_type

    order = sorted(adjacency)
    rank = {node: i for i, node in enumerate(order)}
    cycles: List[CycleRecord] = []

    def extend(start: str, path: List[str], types: List[str]) -> None:
        node = path[-1]
        for target in sorted(adjacency[node]):
            edge_type = adjacency[node][target]
            if target == start:
                cycles.append(CycleRecord(nodes=tuple(path), edge_types=tuple(types + [edge_type])))
            elif rank[target] > rank[start] and target not in path:
                path.append(target)
                types.append(edge_type)
                extend(start, path, types)
                path.pop()
                types.pop()

    for start in order:
        extend(start, [start], [])
    return cycles


def compute_hotspots(
    packages: Iterable[PackageDescriptor],
    conflicts: Iterable[ConflictRecord],
    limit: int = 10,
) -> List[Hotspot]:
    """Dependencies referenced by more than one package, most shared first."""
    conflict_names = {c.name for c in conflicts}
    counts: Dict[str, int] = {}
    ranges: Dict[str, Dict[str, None]] = {}
    for pkg in packages:
        combined: Dict[str, str] = {}
        for dep_type in DEPENDENCY_TYPES:
            combined.update(pkg.dependency_map(dep_type))
        for name, version in combined.items():
            counts[name] = counts.get(name, 0) + 1
            ranges.setdefault(name, {})[version] = None

    hotspots = [
        Hotspot(
            name=name,
            dependent_count=count,
            has_conflict=name in conflict_names,
            version_ranges=tuple(sorted(ranges[name])),
        )
        for name, count in counts.items()
        if count >= 2
    ]
    hotspots.sort(key=lambda h: (-h.dependent_count, h.name))
    return hotspots[:limit]


def complexity_score(
    packages: Sequence[PackageDescriptor],
    conflicts: Iterable[ConflictRecord],
    collisions: Sequence[FileCollision],
    cross_dependencies: Sequence[CrossDependencyEdge],
    peer_conflicts: Sequence[ConflictRecord] = (),
    cycles: Sequence[CycleRecord] = (),
) -> int:
    """Advisory 0-100 score; higher means a harder merge."""
    weights = {"incompatible": 10, "major": 5, "minor": 1}
    package_count = len(packages)

    score = min(package_count * 2, 20)
    score += min(sum(weights.get(c.severity, 0) for c in conflicts if c.source != "peer-constraint"), 60)
    score += len(peer_conflicts) * 5
    score += len(cycles) * 10
    score += min(len(collisions) * 2, 20)

    cross_count = len(cross_dependencies)
    if 0 < cross_count <= package_count:
        score += 5
    elif cross_count > package_count * 2:
        score += 15

    return max(0, min(int(round(score)), 100))


def recommendations(
    packages: Sequence[PackageDescriptor],
    conflicts: Sequence[ConflictRecord],
    collisions: Sequence[FileCollision],
    cross_dependencies: Sequence[CrossDependencyEdge],
    peer_conflicts: Sequence[ConflictRecord] = (),
    cycles: Sequence[CycleRecord] = (),
) -> List[str]:
    """Human-readable advice derived from the analysis."""
    advice = []
    incompatible = sum(1 for c in conflicts if c.severity == "incompatible")
    major = sum(1 for c in conflicts if c.severity == "major" and c.source != "peer-constraint")

    if incompatible:
        advice.append(
            f"Found {incompatible} incompatible dependency conflict(s). "
            "Consider the isolate strategy to keep dependencies per package."
        )
    if major:
        advice.append(
            f"Found {major} major version conflict(s). "
            "Review these packages and consider updating to compatible versions."
        )

    not_workspace = [e for e in cross_dependencies if not e.specifier.startswith("workspace:")]
    if not_workspace:
        advice.append(
            f"Found {len(not_workspace)} cross-dependencies not using the workspace protocol. "
            "These will be rewritten automatically."
        )

    mergeable = [c for c in collisions if c.suggested_strategy == "merge"]
    if mergeable:
        advice.append(f"Found {len(mergeable)} file(s) that can be merged automatically (e.g. .gitignore).")

    if len(packages) > 5:
        advice.append(
            f"With {len(packages)} packages, consider a task runner such as turbo or nx "
            "for orchestration and caching."
        )

    with_build = sum(1 for p in packages if "build" in p.scripts)
    if 0 < with_build < len(packages):
        advice.append(
            f"Only {with_build}/{len(packages)} packages have a build script. "
            "Consider standardizing scripts across packages."
        )

    if peer_conflicts:
        advice.append(
            f"Found {len(peer_conflicts)} peer dependency violation(s). "
            "Review peer requirements and update versions to satisfy them."
        )
    if cycles:
        advice.append(
            f"Found {len(cycles)} circular dependency cycle(s). "
            "Consider extracting shared code into a common package to break them."
        )
    return advice

"""
Core data models for the merge pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

DEPENDENCIES = "dependencies"
DEV_DEPENDENCIES = "devDependencies"
PEER_DEPENDENCIES = "peerDependencies"
DEPENDENCY_TYPES = (DEPENDENCIES, DEV_DEPENDENCIES, PEER_DEPENDENCIES)

PLAN_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class PackageDescriptor:
    """Snapshot of one package manifest taken during a scan."""

    name: str
    version: str
    repo_name: str
    path: str
    dependencies: Mapping[str, str] = field(default_factory=dict)
    dev_dependencies: Mapping[str, str] = field(default_factory=dict)
    peer_dependencies: Mapping[str, str] = field(default_factory=dict)
    scripts: Mapping[str, str] = field(default_factory=dict)

    def dependency_map(self, dep_type: str) -> Mapping[str, str]:
        if dep_type == DEPENDENCIES:
            return self.dependencies
        if dep_type == DEV_DEPENDENCIES:
            return self.dev_dependencies
        if dep_type == PEER_DEPENDENCIES:
            return self.peer_dependencies
        raise ValueError(f"Unknown dependency type: {dep_type}")


@dataclass(frozen=True)
class LockfileResolution:
    """Versions actually resolved by one repository's lockfile."""

    package_manager: str
    repo_name: str
    resolved_versions: Mapping[str, str]


@dataclass(frozen=True)
class ConflictEntry:
    """One requested version of a conflicting dependency."""

    specifier: str
    source: str
    dep_type: str = DEPENDENCIES

    def to_dict(self) -> Dict[str, str]:
        return {"version": self.specifier, "source": self.source, "type": self.dep_type}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConflictEntry":
        return cls(
            specifier=str(data["version"]),
            source=str(data["source"]),
            dep_type=str(data.get("type", DEPENDENCIES)),
        )


@dataclass(frozen=True)
class ConflictRecord:
    """A dependency requested at more than one version."""

    name: str
    versions: Tuple[ConflictEntry, ...]
    severity: str
    confidence: str
    source: str

    @property
    def specifiers(self) -> List[str]:
        """Distinct specifiers in first-seen order."""
        seen: Dict[str, None] = {}
        for entry in self.versions:
            seen.setdefault(entry.specifier, None)
        return list(seen)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "versions": [v.to_dict() for v in self.versions],
            "severity": self.severity,
            "confidence": self.confidence,
            "conflictSource": self.source,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConflictRecord":
        return cls(
            name=str(data["name"]),
            versions=tuple(ConflictEntry.from_dict(v) for v in data.get("versions", [])),
            severity=str(data["severity"]),
            confidence=str(data.get("confidence", "high")),
            source=str(data.get("conflictSource", "declared")),
        )


@dataclass(frozen=True)
class DependencyWarning:
    """Non-conflict visibility record for a non-standard specifier."""

    name: str
    version: str
    source: str
    kind: str
    message: str


@dataclass(frozen=True)
class Decision:
    """A conflict that needs an operator decision."""

    kind: str
    description: str
    related_conflict: str
    suggested_action: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "kind": self.kind,
            "description": self.description,
            "relatedConflict": self.related_conflict,
            "suggestedAction": self.suggested_action,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Decision":
        return cls(
            kind=str(data["kind"]),
            description=str(data["description"]),
            related_conflict=str(data.get("relatedConflict", "")),
            suggested_action=str(data.get("suggestedAction", "")),
        )


@dataclass(frozen=True)
class AnalysisFindings:
    """Conflict findings embedded in a plan."""

    declared_conflicts: Tuple[ConflictRecord, ...] = ()
    resolved_conflicts: Tuple[ConflictRecord, ...] = ()
    peer_conflicts: Tuple[ConflictRecord, ...] = ()
    decisions: Tuple[Decision, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "declaredConflicts": [c.to_dict() for c in self.declared_conflicts],
            "resolvedConflicts": [c.to_dict() for c in self.resolved_conflicts],
            "peerConflicts": [c.to_dict() for c in self.peer_conflicts],
            "decisions": [d.to_dict() for d in self.decisions],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AnalysisFindings":
        return cls(
            declared_conflicts=tuple(ConflictRecord.from_dict(c) for c in data.get("declaredConflicts", [])),
            resolved_conflicts=tuple(ConflictRecord.from_dict(c) for c in data.get("resolvedConflicts", [])),
            peer_conflicts=tuple(ConflictRecord.from_dict(c) for c in data.get("peerConflicts", [])),
            decisions=tuple(Decision.from_dict(d) for d in data.get("decisions", [])),
        )


@dataclass(frozen=True)
class CrossDependencyEdge:
    """A dependency between two packages that are both being merged."""

    from_package: str
    to_package: str
    specifier: str
    dep_type: str


@dataclass(frozen=True)
class CycleRecord:
    """An elementary cycle in the cross-dependency graph.

    ``edge_types[i]`` is the type of the edge ``nodes[i] -> nodes[i + 1]``;
    the last entry closes the cycle back to ``nodes[0]``.
    """

    nodes: Tuple[str, ...]
    edge_types: Tuple[str, ...]

    def edges(self) -> Set[Tuple[str, str, str]]:
        count = len(self.nodes)
        return {
            (self.nodes[i], self.nodes[(i + 1) % count], self.edge_types[i])
            for i in range(count)
        }

    def describe(self) -> str:
        return " -> ".join(self.nodes + self.nodes[:1])


@dataclass(frozen=True)
class Hotspot:
    """An external dependency shared by several packages."""

    name: str
    dependent_count: int
    has_conflict: bool
    version_ranges: Tuple[str, ...]


@dataclass(frozen=True)
class FileCollision:
    """A root-level file present in more than one repository."""

    path: str
    sources: Tuple[str, ...]
    suggested_strategy: str


@dataclass(frozen=True)
class RepoPath:
    """A repository acquired to a local directory."""

    name: str
    path: str


@dataclass(frozen=True)
class PlanSource:
    name: str
    path: str


@dataclass(frozen=True)
class PlanFile:
    relative_path: str
    content: str


@dataclass(frozen=True)
class ApplyPlan:
    """The serializable handoff between planning and execution."""

    sources: Tuple[PlanSource, ...]
    packages_dir: str
    root_package_json: Mapping[str, Any]
    files: Tuple[PlanFile, ...] = ()
    install: bool = True
    install_command: Optional[str] = None
    analysis_findings: Optional[AnalysisFindings] = None
    version: int = PLAN_SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "version": self.version,
            "sources": [{"name": s.name, "path": s.path} for s in self.sources],
            "packagesDir": self.packages_dir,
            "rootPackageJson": dict(self.root_package_json),
            "files": [{"relativePath": f.relative_path, "content": f.content} for f in self.files],
            "install": self.install,
        }
        if self.install_command is not None:
            data["installCommand"] = self.install_command
        if self.analysis_findings is not None:
            data["analysisFindings"] = self.analysis_findings.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ApplyPlan":
        """Build a plan from an already validated document."""
        findings = data.get("analysisFindings")
        return cls(
            version=int(data["version"]),
            sources=tuple(PlanSource(name=s["name"], path=s["path"]) for s in data["sources"]),
            packages_dir=data["packagesDir"],
            root_package_json=dict(data["rootPackageJson"]),
            files=tuple(PlanFile(relative_path=f["relativePath"], content=f["content"]) for f in data["files"]),
            install=bool(data["install"]),
            install_command=data.get("installCommand"),
            analysis_findings=AnalysisFindings.from_dict(findings) if findings else None,
        )


@dataclass(frozen=True)
class OperationLogEntry:
    """One line of the append-only operation log."""

    id: str
    status: str
    timestamp: str
    plan_hash: Optional[str] = None
    outputs: Tuple[str, ...] = ()
    duration_ms: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "status": self.status, "timestamp": self.timestamp}
        if self.plan_hash is not None:
            data["planHash"] = self.plan_hash
        if self.outputs:
            data["outputs"] = list(self.outputs)
        if self.duration_ms is not None:
            data["durationMs"] = self.duration_ms
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OperationLogEntry":
        return cls(
            id=str(data["id"]),
            status=str(data["status"]),
            timestamp=str(data.get("timestamp", "")),
            plan_hash=data.get("planHash"),
            outputs=tuple(data.get("outputs", ())),
            duration_ms=data.get("durationMs"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class VerifyCheck:
    """Result of a single verification check."""

    id: str
    message: str
    status: str
    tier: str
    plan_ref: Optional[str] = None
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        data = {"id": self.id, "message": self.message, "status": self.status, "tier": self.tier}
        if self.plan_ref:
            data["planRef"] = self.plan_ref
        if self.details:
            data["details"] = self.details
        return data


@dataclass(frozen=True)
class VerifyResult:
    """Aggregated verification outcome."""

    tier: str
    input_type: str
    input_path: str
    checks: Tuple[VerifyCheck, ...]
    timestamp: str

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "total": len(self.checks),
            "pass": sum(1 for c in self.checks if c.status == "pass"),
            "warn": sum(1 for c in self.checks if c.status == "warn"),
            "fail": sum(1 for c in self.checks if c.status == "fail"),
        }

    @property
    def ok(self) -> bool:
        return self.summary["fail"] == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "inputType": self.input_type,
            "inputPath": self.input_path,
            "checks": [c.to_dict() for c in self.checks],
            "summary": self.summary,
            "ok": self.ok,
            "timestamp": self.timestamp,
        }

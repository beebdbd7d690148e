"""
The four pipeline entry points and the event stream they report through.

Every operation emits zero or more ``log`` events, then exactly one
``result`` or ``error`` event, then one ``done`` event.
"""

from __future__ import annotations

import contextvars
import logging
import tempfile
import threading
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .acquire import acquire_repositories, parse_repo_sources
from .apply import apply_plan
from .collisions import detect_file_collisions
from .config import Settings
from .conflicts import DependencyAnalysis, analyze_dependencies, scan_repositories
from .errors import MergeError, shape_error
from .graph import complexity_score, compute_hotspots, detect_cross_dependencies, detect_cycles, recommendations
from .interfaces import CollisionDetector, EventSink, RepoAcquirer
from .models import CrossDependencyEdge, CycleRecord, FileCollision, Hotspot, VerifyResult
from .planner import PlanOptions, build_plan, write_plan
from .verify import STATIC, verify

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "monorepo_merger"

_current_operation: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "monorepo_merger_operation", default=None
)

# Package logger level is lowered to INFO only while operations are running.
_level_lock = threading.Lock()
_active_operations = 0
_saved_level = logging.NOTSET


@dataclass(frozen=True)
class PipelineContext:
    """Everything one operation needs; nothing is shared between operations."""

    settings: Settings = field(default_factory=Settings.from_env)
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    acquirer: RepoAcquirer = acquire_repositories
    collision_detector: CollisionDetector = detect_file_collisions
    work_dir: Optional[Path] = None


class EventLogHandler(logging.Handler):
    """Forward log records of one operation to its event sink.

    Records are matched to the operation through a context variable, so
    concurrent operations in the same process never see each other's logs.
    """

    def __init__(self, sink: EventSink, op_id: str, level: int = logging.INFO):
        super().__init__(level)
        self.sink = sink
        self.op_id = op_id

    def emit(self, record: logging.LogRecord) -> None:
        if _current_operation.get() != self.op_id:
            return
        try:
            self.sink({
                "type": "log",
                "level": record.levelname.lower(),
                "message": record.getMessage(),
                "opId": self.op_id,
            })
        except Exception:
            self.handleError(record)


# ---------------------------------------------------------------------------
# Results and requests
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalyzeResult:
    analysis: DependencyAnalysis
    collisions: Tuple[FileCollision, ...]
    cross_dependencies: Tuple[CrossDependencyEdge, ...]
    cycles: Tuple[CycleRecord, ...]
    hotspots: Tuple[Hotspot, ...]
    complexity_score: int
    recommendations: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "packages": [
                {"name": p.name, "version": p.version, "repoName": p.repo_name, "path": p.path}
                for p in self.analysis.packages
            ],
            "conflicts": [c.to_dict() for c in self.analysis.conflicts],
            "collisions": [
                {"path": c.path, "sources": list(c.sources), "suggestedStrategy": c.suggested_strategy}
                for c in self.collisions
            ],
            "crossDependencies": [
                {"fromPackage": e.from_package, "toPackage": e.to_package,
                 "currentVersion": e.specifier, "dependencyType": e.dep_type}
                for e in self.cross_dependencies
            ],
            "circularDependencies": [
                {"cycle": list(c.nodes), "edgeTypes": list(c.edge_types)} for c in self.cycles
            ],
            "hotspots": [
                {"name": h.name, "dependentCount": h.dependent_count,
                 "hasConflict": h.has_conflict, "versionRanges": list(h.version_ranges)}
                for h in self.hotspots
            ],
            "complexityScore": self.complexity_score,
            "recommendations": list(self.recommendations),
            "findings": self.analysis.findings().to_dict(),
            "warnings": [
                {"name": w.name, "version": w.version, "source": w.source, "type": w.kind, "message": w.message}
                for w in self.analysis.warnings
            ],
        }


@dataclass(frozen=True)
class PlanRequest:
    output_dir: str = "monorepo"
    plan_file: Optional[str] = None
    root_name: Optional[str] = None
    options: PlanOptions = field(default_factory=PlanOptions)


@dataclass(frozen=True)
class ApplyRequest:
    plan_path: str
    output_dir: str
    resume: bool = False
    dry_run: bool = False
    cleanup_on_failure: bool = False


@dataclass(frozen=True)
class VerifyRequest:
    plan_path: Optional[str] = None
    directory: Optional[str] = None
    tier: str = STATIC


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def analyze_repo_paths(repo_paths, ctx: PipelineContext) -> AnalyzeResult:
    """Analysis over already acquired repositories."""
    packages, resolutions = scan_repositories(repo_paths)
    analysis = analyze_dependencies(packages, resolutions)
    logger.info("Detecting file collisions...")
    collisions = ctx.collision_detector(repo_paths)
    edges = detect_cross_dependencies(analysis.packages)
    cycles = detect_cycles(edges)
    hotspots = compute_hotspots(analysis.packages, analysis.conflicts)
    score = complexity_score(
        analysis.packages, analysis.conflicts, collisions, edges, analysis.peer_conflicts, cycles,
    )
    advice = recommendations(
        analysis.packages, analysis.conflicts, collisions, edges, analysis.peer_conflicts, cycles,
    )
    logger.info("Analysis complete: complexity score %d/100", score)
    return AnalyzeResult(
        analysis=analysis,
        collisions=tuple(collisions),
        cross_dependencies=tuple(edges),
        cycles=tuple(cycles),
        hotspots=tuple(hotspots),
        complexity_score=score,
        recommendations=tuple(advice),
    )


def run_analyze(repos: Sequence[str], ctx: Optional[PipelineContext] = None) -> AnalyzeResult:
    ctx = ctx or PipelineContext()
    logger.info("Validating repository sources...")
    sources = parse_repo_sources(repos)
    logger.info("Found %d repositories to analyze", len(sources))
    with tempfile.TemporaryDirectory(prefix="monorepo-analyze-") as temp_dir:
        logger.info("Fetching repositories...")
        repo_paths = ctx.acquirer(sources, Path(temp_dir), ctx.settings)
        logger.info("Analyzing dependencies...")
        return analyze_repo_paths(repo_paths, ctx)


def run_plan(repos: Sequence[str], request: Optional[PlanRequest] = None,
             ctx: Optional[PipelineContext] = None) -> Dict[str, Any]:
    """Acquire, analyze and write a plan. Returns ``{"planPath", "plan"}``.

    Sources are kept beside the plan file (``<plan>.sources``) because
    apply moves them into the output.
    """
    ctx = ctx or PipelineContext()
    request = request or PlanRequest()
    base = ctx.work_dir or Path.cwd()
    output_dir = (base / request.output_dir).resolve()
    plan_path = (base / request.plan_file).resolve() if request.plan_file else base / f"{output_dir.name}.plan.json"
    options = replace(request.options, root_name=request.root_name or output_dir.name)

    logger.info("Validating repository sources...")
    sources = parse_repo_sources(repos)
    sources_dir = plan_path.with_name(plan_path.name + ".sources")
    logger.info("Fetching %d repositories into %s", len(sources), sources_dir)
    repo_paths = ctx.acquirer(sources, sources_dir, ctx.settings)

    result = build_plan(repo_paths, options, collision_detector=ctx.collision_detector)
    write_plan(result.plan, plan_path)
    return {"planPath": str(plan_path), "plan": result.plan.to_dict()}


def run_apply(request: ApplyRequest, cancel_event: Optional[threading.Event] = None,
              ctx: Optional[PipelineContext] = None) -> Dict[str, Any]:
    """Apply a plan. Returns ``{"outputDir", "packageCount"}``."""
    result = apply_plan(
        request.plan_path,
        request.output_dir,
        cancel_event=cancel_event,
        resume=request.resume,
        dry_run=request.dry_run,
        cleanup_on_failure=request.cleanup_on_failure,
    )
    return {"outputDir": result.output_dir, "packageCount": result.package_count}


def run_verify(request: VerifyRequest, ctx: Optional[PipelineContext] = None) -> VerifyResult:
    ctx = ctx or PipelineContext()
    return verify(
        plan_path=request.plan_path,
        directory=request.directory,
        tier=request.tier,
        settings=ctx.settings,
    )


def to_payload(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def _enter_operation(package_logger: logging.Logger) -> None:
    global _active_operations, _saved_level
    with _level_lock:
        if _active_operations == 0:
            _saved_level = package_logger.level
            if package_logger.getEffectiveLevel() > logging.INFO:
                package_logger.setLevel(logging.INFO)
        _active_operations += 1


def _exit_operation(package_logger: logging.Logger) -> None:
    global _active_operations
    with _level_lock:
        _active_operations -= 1
        if _active_operations == 0:
            package_logger.setLevel(_saved_level)


def run_operation(
    fn: Callable[[PipelineContext], Any],
    sink: EventSink,
    ctx: Optional[PipelineContext] = None,
) -> None:
    """Run ``fn`` and stream its logs, then its result or error, then ``done``."""
    ctx = ctx or PipelineContext()
    handler = EventLogHandler(sink, ctx.op_id)
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    _enter_operation(package_logger)
    package_logger.addHandler(handler)
    token = _current_operation.set(ctx.op_id)
    try:
        try:
            result = fn(ctx)
        except Exception as e:
            error = e if isinstance(e, MergeError) else shape_error(e)
            logger.debug("Operation %s failed", ctx.op_id, exc_info=True)
            sink({"type": "error", "opId": ctx.op_id, **error.to_dict()})
        else:
            sink({"type": "result", "opId": ctx.op_id, "data": to_payload(result)})
    finally:
        _current_operation.reset(token)
        package_logger.removeHandler(handler)
        _exit_operation(package_logger)
        sink({"type": "done", "opId": ctx.op_id})


def collect_events(fn: Callable[[PipelineContext], Any], ctx: Optional[PipelineContext] = None) -> List[Dict[str, Any]]:
    """Run an operation and return its events as a list."""
    events: List[Dict[str, Any]] = []
    run_operation(fn, events.append, ctx)
    return events

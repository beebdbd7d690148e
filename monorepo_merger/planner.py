"""
Plan Builder: combines analysis, resolution and file collisions into an ApplyPlan.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from . import package_manager as pm
from .collisions import detect_file_collisions, merge_ignore_files, resolve_collision
from .config import DEFAULT_NODE_ENGINE, DEFAULT_PACKAGES_DIR
from .conflicts import DependencyAnalysis, analyze_dependencies, conflict_summary, scan_repositories
from .errors import PlanValidationError, ValidationError
from .interfaces import CollisionDetector
from .manifest import MANIFEST_NAME, PackageManifest, dump_json, load_manifest
from .models import (
    PLAN_SCHEMA_VERSION,
    ApplyPlan,
    FileCollision,
    PackageDescriptor,
    PlanFile,
    PlanSource,
    RepoPath,
)
from .oplog import compute_plan_hash
from .resolver import HIGHEST, ISOLATE, ResolvedDependencies, resolve_conflicts, validate_strategy

logger = logging.getLogger(__name__)

COMMON_SCRIPTS = ("build", "test", "lint", "typecheck", "dev", "start")
DEFAULT_GITIGNORE = "node_modules/\ndist/\n.DS_Store\n*.log\n"
NO_HOIST_NPMRC = (
    "# Dependencies stay inside each package\n"
    "shamefully-hoist=false\n"
    "hoist=false\n"
    "resolution-mode=lowest\n"
)


@dataclass(frozen=True)
class PlanOptions:
    """Choices that shape a plan."""

    root_name: str = "monorepo"
    packages_dir: str = DEFAULT_PACKAGES_DIR
    conflict_strategy: str = HIGHEST
    package_manager: str = pm.PNPM
    package_manager_version: Optional[str] = None
    auto_detect_pm: bool = False
    install: bool = True
    workspace_protocol: bool = True
    pin_versions: bool = False
    node_engine: str = DEFAULT_NODE_ENGINE
    file_strategies: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PlanResult:
    """A built plan together with what it was derived from."""

    plan: ApplyPlan
    analysis: DependencyAnalysis
    collisions: Tuple[FileCollision, ...]
    resolved: ResolvedDependencies
    package_manager: pm.PackageManagerConfig


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

def plan_problems(data: Any) -> List[str]:
    """Every structural problem in a plan document; empty when valid."""
    if not isinstance(data, Mapping):
        return ["plan must be a JSON object"]

    problems = []
    if data.get("version") != PLAN_SCHEMA_VERSION or isinstance(data.get("version"), bool):
        problems.append(f"version must be {PLAN_SCHEMA_VERSION}")

    sources = data.get("sources")
    if not isinstance(sources, list) or not sources:
        problems.append("sources must be a non-empty array")
    else:
        for i, source in enumerate(sources):
            if not isinstance(source, Mapping) or not isinstance(source.get("name"), str) \
                    or not isinstance(source.get("path"), str):
                problems.append(f"sources[{i}] must have string name and path")
            elif not _is_plain_name(source["name"]):
                problems.append(f"sources[{i}].name must be a single path segment")

    if not isinstance(data.get("packagesDir"), str):
        problems.append("packagesDir must be a string")
    elif not _is_inside(data["packagesDir"]):
        problems.append("packagesDir must be a relative path inside the output directory")
    if not isinstance(data.get("rootPackageJson"), Mapping):
        problems.append("rootPackageJson must be an object")

    files = data.get("files")
    if not isinstance(files, list):
        problems.append("files must be an array")
    else:
        for i, entry in enumerate(files):
            if not isinstance(entry, Mapping) or not isinstance(entry.get("relativePath"), str) \
                    or not isinstance(entry.get("content"), str):
                problems.append(f"files[{i}] must have string relativePath and content")
            elif not _is_inside(entry["relativePath"]):
                problems.append(f"files[{i}].relativePath must be a relative path inside the output directory")

    if not isinstance(data.get("install"), bool):
        problems.append("install must be a boolean")
    if "installCommand" in data and not isinstance(data["installCommand"], str):
        problems.append("installCommand must be a string")
    if "analysisFindings" in data and not isinstance(data["analysisFindings"], Mapping):
        problems.append("analysisFindings must be an object")
    return problems


def _is_inside(value: str) -> bool:
    """Relative, with no parent segments, so it cannot escape the output directory."""
    path = PurePosixPath(value.replace("\\", "/"))
    return bool(path.parts) and not path.is_absolute() and not PureWindowsPath(value).drive \
        and ".." not in path.parts


def _is_plain_name(value: str) -> bool:
    return _is_inside(value) and len(PurePosixPath(value.replace("\\", "/")).parts) == 1 and value != "."


def validate_plan_data(data: Any) -> ApplyPlan:
    problems = plan_problems(data)
    if problems:
        raise PlanValidationError(problems)
    return ApplyPlan.from_dict(data)


def parse_plan(content: str) -> ApplyPlan:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Plan file contains invalid JSON: {e}") from e
    return validate_plan_data(data)


def serialize_plan(plan: ApplyPlan) -> str:
    return json.dumps(plan.to_dict(), indent=2, ensure_ascii=False) + "\n"


def load_plan(path: Union[str, Path]) -> Tuple[ApplyPlan, str]:
    """Read and validate a plan file, returning it with its content hash."""
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"Plan file not found: {path}")
    content = path.read_text(encoding="utf-8")
    return parse_plan(content), compute_plan_hash(content)


def write_plan(plan: ApplyPlan, path: Union[str, Path]) -> str:
    """Write ``plan`` and return the hash apply will see."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    content = serialize_plan(plan)
    path.write_text(content, encoding="utf-8")
    logger.info("Plan written to %s", path)
    return compute_plan_hash(content)


def default_plan_path(output_dir: Union[str, Path]) -> Path:
    output_dir = Path(output_dir).resolve()
    return Path.cwd() / f"{output_dir.name}.plan.json"


# ---------------------------------------------------------------------------
# Root manifest and extras
# ---------------------------------------------------------------------------

def aggregate_scripts(packages: Sequence[PackageDescriptor], config: pm.PackageManagerConfig) -> Dict[str, str]:
    """Run-everywhere scripts for common names plus ``<repo>:<script>`` per package."""
    scripts: Dict[str, str] = {}
    for script in COMMON_SCRIPTS:
        if any(script in pkg.scripts for pkg in packages):
            scripts[script] = config.run_all_command(script)
    for pkg in packages:
        for script in pkg.scripts:
            scripts[f"{pkg.repo_name}:{script}"] = config.run_filtered_command(pkg.repo_name, script)
    return scripts


def generate_root_manifest(
    packages: Sequence[PackageDescriptor],
    resolved: ResolvedDependencies,
    config: pm.PackageManagerConfig,
    options: PlanOptions,
) -> Dict[str, Any]:
    root: Dict[str, Any] = {
        "name": options.root_name,
        "version": "0.0.0",
        "private": True,
        "type": "module",
        "packageManager": pm.package_manager_field(config),
        "scripts": aggregate_scripts(packages, config),
    }
    workspaces = pm.workspaces_field(config, options.packages_dir)
    if workspaces:
        root["workspaces"] = workspaces
    if resolved.hoisted and resolved.dependencies:
        root["dependencies"] = dict(resolved.dependencies)
    if resolved.hoisted and resolved.dev_dependencies:
        root["devDependencies"] = dict(resolved.dev_dependencies)
    root["engines"] = {"node": options.node_engine}
    if resolved.overrides:
        root = pm.apply_overrides(root, resolved.overrides, config.type)
    return root


def pin_specifiers(deps: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
    if deps is None:
        return None
    return {name: spec[1:] if spec.startswith(("^", "~")) else spec for name, spec in deps.items()}


def rewrite_package_manifest(
    repo: RepoPath,
    internal_names: Sequence[str],
    protocol: Optional[str],
    pin_versions: bool = False,
) -> Optional[PackageManifest]:
    """The repo's manifest with internal deps on ``protocol``; None if unchanged."""
    manifest_path = Path(repo.path) / MANIFEST_NAME
    if not manifest_path.is_file():
        return None
    original = load_manifest(manifest_path)
    internal = set(internal_names)

    def rewrite(deps: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if deps is None or protocol is None:
            return deps
        return {
            name: protocol if name in internal and not spec.startswith("workspace:") else spec
            for name, spec in deps.items()
        }

    updated = original.with_dependencies(
        dependencies=rewrite(original.dependencies),
        dev_dependencies=rewrite(original.dev_dependencies),
        peer_dependencies=rewrite(original.peer_dependencies),
    )
    if pin_versions:
        updated = updated.with_dependencies(
            dependencies=pin_specifiers(updated.dependencies),
            dev_dependencies=pin_specifiers(updated.dev_dependencies),
            peer_dependencies=pin_specifiers(updated.peer_dependencies),
        )
    return None if updated.to_dict() == original.to_dict() else updated


def merged_gitignore(repo_paths: Sequence[RepoPath], config: pm.PackageManagerConfig) -> str:
    contents = []
    for repo in repo_paths:
        path = Path(repo.path) / ".gitignore"
        if path.is_file():
            contents.append(path.read_text(encoding="utf-8", errors="replace"))
    content = merge_ignore_files(contents) if contents else DEFAULT_GITIGNORE
    if config.gitignore_entries:
        content += "\n# Package manager\n" + "\n".join(config.gitignore_entries) + "\n"
    return content


def generate_readme(package_names: Sequence[str], packages_dir: str, config: pm.PackageManagerConfig) -> str:
    package_list = "\n".join(f"- [`{name}`](./{packages_dir}/{name})" for name in package_names)
    tree = "\n".join(f"│   ├── {name}/" for name in package_names)
    workspace_file = "\n└── pnpm-workspace.yaml" if config.type == pm.PNPM else ""
    return (
        "# Monorepo\n\n"
        "## Packages\n\n"
        f"{package_list}\n\n"
        "## Getting Started\n\n"
        "```bash\n"
        f"{config.install_command}\n"
        f"{config.run_all_command('build')}\n"
        f"{config.run_all_command('test')}\n"
        "```\n\n"
        "## Structure\n\n"
        "```\n"
        ".\n"
        f"├── {packages_dir}/\n"
        f"{tree}\n"
        f"├── package.json{workspace_file}\n"
        "```\n"
    )


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def resolve_package_manager(repo_paths: Sequence[RepoPath], options: PlanOptions) -> pm.PackageManagerConfig:
    pm_type = pm.parse_package_manager_type(options.package_manager)
    if options.auto_detect_pm:
        detected = pm.detect_package_manager_from_sources(repo_paths)
        if detected:
            logger.info("Auto-detected package manager: %s", detected)
            pm_type = detected
    return pm.create_package_manager_config(pm_type, options.package_manager_version)


def build_plan(
    repo_paths: Sequence[RepoPath],
    options: Optional[PlanOptions] = None,
    collision_detector: CollisionDetector = detect_file_collisions,
    analysis: Optional[DependencyAnalysis] = None,
) -> PlanResult:
    """Build a self-describing plan for merging ``repo_paths``.

    Args:
        repo_paths: Acquired repositories with collision-free names.
        options: Plan choices; defaults to ``PlanOptions()``.
        collision_detector: Returns root-file collisions for the repos.
        analysis: Reuse an existing analysis instead of scanning again.

    Returns:
        PlanResult whose ``plan`` needs no further analysis to apply.
    """
    options = options or PlanOptions()
    validate_strategy(options.conflict_strategy)
    names = [repo.name for repo in repo_paths]
    if len(set(names)) != len(names):
        raise ValidationError("Source names must be unique within a plan")

    if analysis is None:
        packages, resolutions = scan_repositories(repo_paths)
        analysis = analyze_dependencies(packages, resolutions)
    packages = list(analysis.packages)
    summary = conflict_summary(analysis.conflicts)
    logger.info(
        "%d conflicts (%d incompatible, %d major, %d minor)",
        len(analysis.conflicts), summary["incompatible"], summary["major"], summary["minor"],
    )

    config = resolve_package_manager(repo_paths, options)
    resolved = resolve_conflicts(packages, analysis.declared_conflicts, options.conflict_strategy)
    root = generate_root_manifest(packages, resolved, config, options)

    files: List[PlanFile] = list(pm.workspace_files(config, options.packages_dir))

    collisions = collision_detector(repo_paths)
    for collision in collisions:
        strategy = options.file_strategies.get(collision.path, collision.suggested_strategy)
        files.extend(resolve_collision(collision, strategy, repo_paths))

    if not any(c.path == ".gitignore" for c in collisions):
        files.append(PlanFile(".gitignore", merged_gitignore(repo_paths, config)))

    files = [f for f in files if f.relative_path != "README.md"]
    files.append(PlanFile("README.md", generate_readme(names, options.packages_dir, config)))

    if options.conflict_strategy == ISOLATE:
        files.append(PlanFile(".npmrc", NO_HOIST_NPMRC))

    protocol = config.workspace_protocol if options.workspace_protocol else None
    internal = [p.name for p in packages]
    if protocol is not None or options.pin_versions:
        for repo in repo_paths:
            rewritten = rewrite_package_manifest(repo, internal, protocol, options.pin_versions)
            if rewritten is not None:
                relative = f"{options.packages_dir}/{repo.name}/{MANIFEST_NAME}"
                files.append(PlanFile(relative, dump_json(rewritten.to_dict())))

    plan = ApplyPlan(
        sources=tuple(PlanSource(repo.name, str(Path(repo.path).resolve())) for repo in repo_paths),
        packages_dir=options.packages_dir,
        root_package_json=root,
        files=tuple(files),
        install=options.install,
        install_command=config.install_command,
        analysis_findings=analysis.findings(),
    )
    logger.info("Plan covers %d sources and %d files", len(plan.sources), len(plan.files))
    return PlanResult(
        plan=plan,
        analysis=analysis,
        collisions=tuple(collisions),
        resolved=resolved,
        package_manager=config,
    )

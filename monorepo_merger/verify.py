"""
Tiered verification of a plan or a materialized monorepo.
"""

from __future__ import annotations

import contextvars
import json
import logging
import re
import shlex
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

from . import package_manager as pm
from .config import Settings
from .errors import ValidationError
from .graph import detect_cross_dependencies, detect_cycles
from .manifest import MANIFEST_NAME, PackageManifest, load_manifest
from .models import ApplyPlan, PackageDescriptor, VerifyCheck, VerifyResult
from .planner import load_plan
from .time_utils import utc_now_iso

logger = logging.getLogger(__name__)

STATIC = "static"
INSTALL = "install"
FULL = "full"
TIERS = (STATIC, INSTALL, FULL)

PASS = "pass"
WARN = "warn"
FAIL = "fail"

LOCKFILES = ("pnpm-lock.yaml", "yarn.lock", "package-lock.json")
_FILTER_REF = re.compile(r"--filter\s+(\S+)")
_WORKSPACE_REF = re.compile(r"(?:yarn workspace|-w)\s+(\S+)")


@dataclass(frozen=True)
class VerifyContext:
    """What a check looks at: a plan, or a directory. Never both."""

    plan: Optional[ApplyPlan] = None
    directory: Optional[Path] = None
    packages_dir: str = "packages"
    command_timeout: float = 120.0

    @property
    def root(self) -> Optional[Mapping[str, Any]]:
        if self.plan is not None:
            return self.plan.root_package_json
        try:
            data = json.loads((self.directory / MANIFEST_NAME).read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return data if isinstance(data, Mapping) else None


@dataclass(frozen=True)
class PackageEntry:
    """A package as seen by the verifier; ``error`` is set when unreadable."""

    repo_name: str
    manifest: Optional[PackageManifest]
    path: Optional[Path]
    error: Optional[str] = None

    def descriptor(self) -> PackageDescriptor:
        return PackageDescriptor(
            name=self.manifest.name or "",
            version=self.manifest.version or "",
            repo_name=self.repo_name,
            path=str(self.path or ""),
            dependencies=dict(self.manifest.dependencies or {}),
            dev_dependencies=dict(self.manifest.dev_dependencies or {}),
            peer_dependencies=dict(self.manifest.peer_dependencies or {}),
            scripts=dict(self.manifest.scripts or {}),
        )


def check(id: str, message: str, status: str, tier: str, plan_ref: Optional[str] = None,
          details: Optional[str] = None) -> VerifyCheck:
    return VerifyCheck(id=id, message=message, status=status, tier=tier, plan_ref=plan_ref, details=details)


# ---------------------------------------------------------------------------
# Package discovery
# ---------------------------------------------------------------------------

def packages_from_plan(plan: ApplyPlan) -> List[PackageEntry]:
    """Inline ``packages/<name>/package.json`` plan files win over source manifests."""
    inline = {f.relative_path: f.content for f in plan.files}
    entries = []
    for source in plan.sources:
        relative = f"{plan.packages_dir}/{source.name}/{MANIFEST_NAME}"
        try:
            if relative in inline:
                manifest = PackageManifest.from_dict(json.loads(inline[relative]))
            elif (Path(source.path) / MANIFEST_NAME).is_file():
                manifest = load_manifest(Path(source.path) / MANIFEST_NAME)
            else:
                continue
        except (ValueError, ValidationError) as e:
            entries.append(PackageEntry(source.name, None, Path(source.path), error=str(e)))
            continue
        entries.append(PackageEntry(source.name, manifest, Path(source.path)))
    return entries


def packages_from_dir(directory: Path, packages_dir: str) -> List[PackageEntry]:
    root = directory / packages_dir
    if not root.is_dir():
        return []
    entries = []
    for pkg_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        manifest_path = pkg_dir / MANIFEST_NAME
        if not manifest_path.is_file():
            continue
        try:
            entries.append(PackageEntry(pkg_dir.name, load_manifest(manifest_path), pkg_dir))
        except ValidationError as e:
            entries.append(PackageEntry(pkg_dir.name, None, pkg_dir, error=str(e)))
    return entries


def get_packages(ctx: VerifyContext) -> List[PackageEntry]:
    if ctx.plan is not None:
        return packages_from_plan(ctx.plan)
    return packages_from_dir(ctx.directory, ctx.packages_dir)


# ---------------------------------------------------------------------------
# Static tier
# ---------------------------------------------------------------------------

def check_root_manifest(ctx: VerifyContext) -> List[VerifyCheck]:
    root = ctx.root
    if root is None:
        return [check("root-private", "Could not read root package.json", FAIL, STATIC, "rootPackageJson")]
    checks = [
        check("root-private", "Root package.json has private: true", PASS, STATIC, "rootPackageJson.private")
        if root.get("private") is True else
        check("root-private", "Root package.json missing private: true", FAIL, STATIC, "rootPackageJson.private"),
        check("root-name", "Root package.json has name field", PASS, STATIC, "rootPackageJson.name")
        if root.get("name") else
        check("root-name", "Root package.json missing name field", FAIL, STATIC, "rootPackageJson.name"),
    ]
    scripts = root.get("scripts")
    if isinstance(scripts, Mapping) and scripts:
        checks.append(check("root-scripts-exist", "Root package.json has scripts", PASS, STATIC, "rootPackageJson.scripts"))
    else:
        checks.append(check("root-scripts-exist", "Root package.json has no scripts", WARN, STATIC, "rootPackageJson.scripts"))
    return checks


def check_workspace_config(ctx: VerifyContext) -> List[VerifyCheck]:
    if ctx.plan is not None:
        has_file = any(f.relative_path == "pnpm-workspace.yaml" for f in ctx.plan.files)
    else:
        has_file = (ctx.directory / "pnpm-workspace.yaml").is_file()
    root = ctx.root or {}
    if has_file or "workspaces" in root:
        return [check("workspace-config", "Workspace configuration found", PASS, STATIC, "files[pnpm-workspace.yaml]")]
    return [check(
        "workspace-config",
        "No workspace configuration found (pnpm-workspace.yaml or workspaces field)",
        FAIL, STATIC, "files[pnpm-workspace.yaml]",
    )]


def check_packages(ctx: VerifyContext) -> List[VerifyCheck]:
    """Every package has a name and a version."""
    packages = get_packages(ctx)
    if not packages:
        return [check("pkg-names", "No packages found", WARN, STATIC)]

    checks = []
    for entry in packages:
        ref = f"sources[{entry.repo_name}].name" if ctx.plan is not None else None
        if entry.manifest is None:
            checks.append(check(
                f"pkg-manifest:{entry.repo_name}", f"Package {entry.repo_name} has an unreadable package.json",
                FAIL, STATIC, ref, entry.error,
            ))
            continue
        if entry.manifest.name:
            checks.append(check(f"pkg-name:{entry.repo_name}",
                                f'Package {entry.repo_name} has name "{entry.manifest.name}"', PASS, STATIC, ref))
        else:
            checks.append(check(f"pkg-name:{entry.repo_name}",
                                f"Package {entry.repo_name} missing name in package.json", FAIL, STATIC, ref))
        if entry.manifest.version:
            checks.append(check(f"pkg-version:{entry.repo_name}",
                                f"Package {entry.repo_name} has version", PASS, STATIC, ref))
        else:
            checks.append(check(f"pkg-version:{entry.repo_name}",
                                f"Package {entry.repo_name} missing version field", WARN, STATIC, ref))
    return checks


def check_root_scripts(ctx: VerifyContext) -> List[VerifyCheck]:
    """Filtered root scripts must name a real package or source directory."""
    known = set()
    for entry in get_packages(ctx):
        known.add(entry.repo_name)
        if entry.manifest is not None and entry.manifest.name:
            known.add(entry.manifest.name)

    scripts = (ctx.root or {}).get("scripts") or {}
    if not isinstance(scripts, Mapping):
        return [check("root-scripts", "Root package.json scripts must be an object", FAIL, STATIC,
                      "rootPackageJson.scripts", f"Found {type(scripts).__name__}")]
    checks = []
    for name, command in scripts.items():
        match = _FILTER_REF.search(str(command)) or _WORKSPACE_REF.search(str(command))
        if not match:
            continue
        target = match.group(1)
        ref = f"rootPackageJson.scripts.{name}"
        if target in known:
            checks.append(check(f"root-script:{name}",
                                f'Script "{name}" filter ref "{target}" resolves to a real package', PASS, STATIC, ref))
        else:
            checks.append(check(f"root-script:{name}",
                                f'Script "{name}" filter ref "{target}" does not match any package', FAIL, STATIC, ref))
    if not checks:
        checks.append(check("root-scripts", "No filtered references found in root scripts", PASS, STATIC))
    return checks


def check_circular_deps(ctx: VerifyContext) -> List[VerifyCheck]:
    """Cycles are reported as warnings only."""
    descriptors = [e.descriptor() for e in get_packages(ctx) if e.manifest is not None]
    cycles = detect_cycles(detect_cross_dependencies(descriptors))
    if not cycles:
        return [check("circular-deps", "No circular dependencies detected", PASS, STATIC, "analysisFindings.decisions")]
    return [
        check(
            f"circular-dep:{i}",
            f"Circular dependency: {cycle.describe()}",
            WARN,
            STATIC,
            "analysisFindings.decisions",
            f"Edge types: {', '.join(cycle.edge_types)}",
        )
        for i, cycle in enumerate(cycles)
    ]


def check_engines(ctx: VerifyContext) -> List[VerifyCheck]:
    engines = (ctx.root or {}).get("engines")
    if isinstance(engines, Mapping) and engines.get("node"):
        return [check("root-engines", f"Root package.json requires node {engines['node']}", PASS, STATIC,
                      "rootPackageJson.engines")]
    return [check("root-engines", "Root package.json missing engines.node constraint", WARN, STATIC,
                  "rootPackageJson.engines")]


def check_enforcement(ctx: VerifyContext) -> List[VerifyCheck]:
    """Hoisted pins for conflicting dependencies should be backed by overrides."""
    root = ctx.root or {}
    hoisted = set()
    for field_name in ("dependencies", "devDependencies"):
        section = root.get(field_name) or {}
        if isinstance(section, Mapping):
            hoisted.update(section)
    if not hoisted:
        return []
    manager = pm.manager_from_field(root.get("packageManager")) or pm.PNPM
    key = pm.overrides_key(manager)
    try:
        overrides = pm.read_overrides(root, manager)
    except ValidationError as e:
        return [check("enforcement-overrides", str(e), FAIL, STATIC, f"rootPackageJson.{key}")]
    if overrides:
        return [check("enforcement-overrides", f"Root enforces {len(overrides)} override(s) via {key}",
                      PASS, STATIC, f"rootPackageJson.{key}")]

    conflicting = set()
    if ctx.plan is not None and ctx.plan.analysis_findings is not None:
        conflicting = {c.name for c in ctx.plan.analysis_findings.declared_conflicts}
    unenforced = sorted(hoisted & conflicting)
    if unenforced:
        return [check(
            "enforcement-overrides",
            f"{len(unenforced)} hoisted conflicting dependency pin(s) are not enforced with overrides",
            WARN, STATIC, f"rootPackageJson.{key}", ", ".join(unenforced),
        )]
    return [check("enforcement-overrides", "No conflicting hoisted dependencies need overrides",
                  PASS, STATIC, f"rootPackageJson.{key}")]


STATIC_CHECKS: Tuple[Callable[[VerifyContext], List[VerifyCheck]], ...] = (
    check_root_manifest,
    check_workspace_config,
    check_packages,
    check_root_scripts,
    check_circular_deps,
    check_engines,
    check_enforcement,
)


# ---------------------------------------------------------------------------
# Install and full tiers
# ---------------------------------------------------------------------------

def run_command(args: List[str], cwd: Path, timeout: float) -> Tuple[bool, str]:
    """Run a command and report (succeeded, output tail)."""
    try:
        result = subprocess.run(args, cwd=str(cwd), capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        return False, str(e)
    except subprocess.TimeoutExpired:
        return False, f"Timed out after {timeout:.0f}s"
    output = "\n".join(((result.stdout or "") + (result.stderr or "")).strip().splitlines()[-20:])
    return result.returncode == 0, output


def detect_manager(ctx: VerifyContext) -> str:
    detected = pm.detect_package_manager(ctx.directory)
    if detected:
        return detected
    return pm.manager_from_field((ctx.root or {}).get("packageManager")) or pm.PNPM


def check_install(ctx: VerifyContext) -> List[VerifyCheck]:
    manager = detect_manager(ctx)
    config = pm.create_package_manager_config(manager, pm.DEFAULT_VERSIONS[manager])
    ok, output = run_command(shlex.split(config.install_command), ctx.directory, ctx.command_timeout)
    if ok:
        return [check("install", f"Package install ({config.install_command}) succeeded", PASS, INSTALL, "installCommand")]
    return [check("install", "Package install failed", FAIL, INSTALL, "installCommand", output)]


def check_lockfile(ctx: VerifyContext) -> List[VerifyCheck]:
    for name in LOCKFILES:
        path = ctx.directory / name
        if path.is_file():
            if path.read_text(encoding="utf-8", errors="replace").strip():
                return [check("lockfile", f"Lockfile {name} exists and is non-empty", PASS, INSTALL)]
            return [check("lockfile", f"Lockfile {name} exists but is empty", FAIL, INSTALL)]
    return [check("lockfile", "No lockfile found after install", FAIL, INSTALL)]


def check_node_modules(ctx: VerifyContext) -> List[VerifyCheck]:
    if (ctx.directory / "node_modules").is_dir():
        return [check("node-modules", "node_modules/ directory exists", PASS, INSTALL)]
    return [check("node-modules", "node_modules/ directory not found", FAIL, INSTALL)]


def run_package_script(entry: PackageEntry, script: str, timeout: float) -> VerifyCheck:
    """One package's script, isolated so a failure only affects its own check."""
    ref = f"sources[{entry.repo_name}].name"
    name = entry.manifest.name or entry.repo_name
    try:
        ok, output = run_command(["npm", "run", script], entry.path, timeout)
    except Exception as e:
        ok, output = False, str(e)
    if ok:
        return check(f"{script}:{entry.repo_name}", f"{script} succeeded for {name}", PASS, FULL, ref)
    return check(f"{script}:{entry.repo_name}", f"{script} failed for {name}", FAIL, FULL, ref, output)


def check_package_scripts(ctx: VerifyContext, concurrency: int = 4) -> List[VerifyCheck]:
    """Run build and test for every package that defines them, concurrently."""
    packages = [e for e in get_packages(ctx) if e.manifest is not None]
    jobs = [
        (entry, script)
        for script in ("build", "test")
        for entry in packages
        if script in (entry.manifest.scripts or {})
    ]
    if not jobs:
        return [check("build", "No packages have a build or test script", PASS, FULL)]

    with ThreadPoolExecutor(max_workers=concurrency) as executor:
        futures = [
            executor.submit(contextvars.copy_context().run, run_package_script, entry, script, ctx.command_timeout)
            for entry, script in jobs
        ]
        return [f.result() for f in futures]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def verify(
    plan_path: Optional[Union[str, Path]] = None,
    directory: Optional[Union[str, Path]] = None,
    tier: str = STATIC,
    settings: Optional[Settings] = None,
) -> VerifyResult:
    """Verify a plan file (static checks only) or a materialized directory.

    Tiers are cumulative: ``install`` adds install/lockfile/node_modules
    checks, ``full`` adds per-package build and test runs.
    """
    if (plan_path is None) == (directory is None):
        raise ValidationError("Specify exactly one of a plan file or a directory")
    if tier not in TIERS:
        raise ValidationError(f"Unknown verify tier: {tier}", hint=f"Choose one of: {', '.join(TIERS)}")
    settings = settings or Settings.from_env()

    if plan_path is not None:
        plan, _ = load_plan(plan_path)
        ctx = VerifyContext(plan=plan, packages_dir=plan.packages_dir, command_timeout=settings.command_timeout)
        input_type, input_path = "plan", str(Path(plan_path).resolve())
    else:
        directory = Path(directory).resolve()
        if not directory.is_dir():
            raise ValidationError(f"Directory not found: {directory}")
        ctx = VerifyContext(directory=directory, packages_dir=settings.packages_dir,
                            command_timeout=settings.command_timeout)
        input_type, input_path = "dir", str(directory)

    with ThreadPoolExecutor(max_workers=settings.concurrency) as executor:
        futures = [executor.submit(contextvars.copy_context().run, fn, ctx) for fn in STATIC_CHECKS]
        static_results = [f.result() for f in futures]
    checks: List[VerifyCheck] = [c for result in static_results for c in result]

    if tier in (INSTALL, FULL):
        if ctx.plan is not None:
            checks.append(check("install", "Install checks require a directory", WARN, INSTALL))
        else:
            logger.info("Running install checks in %s", ctx.directory)
            checks.extend(check_install(ctx))
            checks.extend(check_lockfile(ctx))
            checks.extend(check_node_modules(ctx))

    if tier == FULL:
        if ctx.plan is not None:
            checks.append(check("build", "Build and test checks require a directory", WARN, FULL))
        else:
            logger.info("Running build and test scripts")
            checks.extend(check_package_scripts(ctx, settings.concurrency))

    result = VerifyResult(
        tier=tier,
        input_type=input_type,
        input_path=input_path,
        checks=tuple(checks),
        timestamp=utc_now_iso(),
    )
    summary = result.summary
    logger.info("Verify: %d pass, %d warn, %d fail", summary["pass"], summary["warn"], summary["fail"])
    return result

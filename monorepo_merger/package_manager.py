"""
Package manager specifics: commands, workspace files and override fields.
"""

from __future__ import annotations

import logging
import subprocess
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from packaging import version as pkg_version

from .errors import ValidationError
from .models import PlanFile, RepoPath

logger = logging.getLogger(__name__)

PNPM = "pnpm"
YARN = "yarn"
YARN_BERRY = "yarn-berry"
NPM = "npm"
PACKAGE_MANAGERS = (PNPM, YARN, YARN_BERRY, NPM)

DEFAULT_VERSIONS = {
    PNPM: "9.0.0",
    YARN: "1.22.22",
    YARN_BERRY: "4.0.0",
    NPM: "10.0.0",
}


@dataclass(frozen=True)
class PackageManagerConfig:
    """Commands and conventions of one package manager."""

    type: str
    version: str
    install_command: str
    run_all_template: str
    run_filtered_template: str
    lock_file: str
    workspace_protocol: str
    gitignore_entries: Tuple[str, ...] = ()

    def run_all_command(self, script: str) -> str:
        return self.run_all_template.format(script=script)

    def run_filtered_command(self, package: str, script: str) -> str:
        return self.run_filtered_template.format(package=package, script=script)

    @property
    def binary(self) -> str:
        return YARN if self.type == YARN_BERRY else self.type


_TEMPLATES = {
    PNPM: dict(
        install_command="pnpm install --ignore-scripts",
        run_all_template="pnpm -r {script}",
        run_filtered_template="pnpm --filter {package} {script}",
        lock_file="pnpm-lock.yaml",
        workspace_protocol="workspace:*",
        gitignore_entries=(".pnpm-store/",),
    ),
    YARN: dict(
        install_command="yarn install --ignore-scripts",
        run_all_template="yarn workspaces run {script}",
        run_filtered_template="yarn workspace {package} {script}",
        lock_file="yarn.lock",
        workspace_protocol="*",
        gitignore_entries=(),
    ),
    YARN_BERRY: dict(
        install_command="yarn install --ignore-scripts",
        run_all_template="yarn workspaces foreach run {script}",
        run_filtered_template="yarn workspace {package} {script}",
        lock_file="yarn.lock",
        workspace_protocol="workspace:*",
        gitignore_entries=(
            ".yarn/", "!.yarn/patches", "!.yarn/plugins",
            "!.yarn/releases", "!.yarn/sdks", "!.yarn/versions",
        ),
    ),
    NPM: dict(
        install_command="npm install --ignore-scripts",
        run_all_template="npm run {script} -ws",
        run_filtered_template="npm run {script} -w {package}",
        lock_file="package-lock.json",
        workspace_protocol="*",
        gitignore_entries=(".npm/",),
    ),
}


def parse_package_manager_type(value: Optional[str]) -> str:
    """Normalize user input; unknown values fall back to pnpm."""
    normalized = (value or "").strip().lower()
    if normalized in ("yarn-berry", "yarn2", "yarn3", "yarn4"):
        return YARN_BERRY
    if normalized in (PNPM, YARN, NPM):
        return normalized
    return PNPM


def get_package_manager_version(pm: str, timeout: float = 10.0) -> str:
    """Installed version of ``pm``, or a known default when unavailable."""
    binary = YARN if pm == YARN_BERRY else pm
    try:
        result = subprocess.run([binary, "--version"], capture_output=True, text=True, timeout=timeout)
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug("%s --version failed: %s", binary, e)
        return DEFAULT_VERSIONS[pm]

    output = result.stdout.strip()
    if result.returncode != 0 or not output:
        return DEFAULT_VERSIONS[pm]
    try:
        return str(pkg_version.Version(output))
    except pkg_version.InvalidVersion:
        logger.warning("Unrecognised %s version %r, using %s", binary, output, DEFAULT_VERSIONS[pm])
        return DEFAULT_VERSIONS[pm]


def create_package_manager_config(pm: str, version: Optional[str] = None) -> PackageManagerConfig:
    pm = parse_package_manager_type(pm)
    resolved = version or get_package_manager_version(pm)
    return PackageManagerConfig(type=pm, version=resolved, **_TEMPLATES[pm])


def is_yarn_berry(directory: Optional[Path] = None, yarn_version: Optional[str] = None) -> bool:
    """Berry is indicated by ``.yarnrc.yml`` or an installed yarn >= 2."""
    if directory is not None and (Path(directory) / ".yarnrc.yml").is_file():
        return True
    found = yarn_version or get_package_manager_version(YARN)
    try:
        return pkg_version.Version(found).major >= 2
    except pkg_version.InvalidVersion:
        return False


def detect_package_manager(directory: Path) -> Optional[str]:
    """Infer the package manager from the lockfile present in ``directory``."""
    directory = Path(directory)
    if (directory / "pnpm-lock.yaml").is_file():
        return PNPM
    if (directory / "yarn.lock").is_file():
        return YARN_BERRY if is_yarn_berry(directory) else YARN
    if (directory / "package-lock.json").is_file():
        return NPM
    return None


def detect_package_manager_from_sources(repo_paths: Iterable[RepoPath]) -> Optional[str]:
    """Most common package manager among the sources; ties go to the first seen."""
    counts = Counter()
    for repo in repo_paths:
        pm = detect_package_manager(Path(repo.path))
        if pm:
            counts[pm] += 1
    if not counts:
        return None
    return counts.most_common(1)[0][0]


def package_manager_field(config: PackageManagerConfig) -> str:
    """Value for the root manifest's ``packageManager`` field."""
    return f"{config.binary}@{config.version}"


def workspaces_field(config: PackageManagerConfig, packages_dir: str) -> Optional[List[str]]:
    """``workspaces`` array for yarn/npm; pnpm uses a workspace file instead."""
    if config.type == PNPM:
        return None
    return [f"{packages_dir}/*"]


def workspace_files(config: PackageManagerConfig, packages_dir: str) -> List[PlanFile]:
    if config.type == PNPM:
        return [PlanFile("pnpm-workspace.yaml", f"packages:\n  - '{packages_dir}/*'\n")]
    if config.type == YARN_BERRY:
        return [PlanFile(".yarnrc.yml", "nodeLinker: node-modules\n")]
    return []


def overrides_key(pm: str) -> str:
    if pm == PNPM:
        return "pnpm.overrides"
    if pm in (YARN, YARN_BERRY):
        return "resolutions"
    return "overrides"


def apply_overrides(root: Mapping[str, Any], overrides: Mapping[str, str], pm: str) -> Dict[str, Any]:
    """Return a copy of ``root`` with the override map under the manager's key."""
    result = dict(root)
    key = overrides_key(pm)
    if key == "pnpm.overrides":
        pnpm_section = dict(result.get("pnpm") or {})
        pnpm_section["overrides"] = dict(overrides)
        result["pnpm"] = pnpm_section
    else:
        result[key] = dict(overrides)
    return result


def read_overrides(root: Mapping[str, Any], pm: str) -> Dict[str, str]:
    """Override map under the manager's key; ValidationError when it is not an object."""
    key = overrides_key(pm)
    if key == "pnpm.overrides":
        section = root.get("pnpm") or {}
        if not isinstance(section, Mapping):
            raise ValidationError("Root package.json field pnpm must be an object")
        overrides = section.get("overrides") or {}
    else:
        overrides = root.get(key) or {}
    if not isinstance(overrides, Mapping):
        raise ValidationError(f"Root package.json field {key} must be an object")
    return dict(overrides)


def manager_from_field(value: Optional[str]) -> Optional[str]:
    """Map a ``packageManager`` field such as ``yarn@4.1.0`` to a manager type."""
    if not isinstance(value, str) or "@" not in value:
        return None
    name, _, version = value.partition("@")
    if name == YARN:
        try:
            return YARN_BERRY if pkg_version.Version(version).major >= 2 else YARN
        except pkg_version.InvalidVersion:
            return YARN
    return name if name in (PNPM, NPM) else None

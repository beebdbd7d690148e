"""
Extract resolved dependency versions from pnpm, yarn and npm lockfiles.

Parsing never raises: an unreadable or unrecognised lockfile simply yields
no resolution for that repository.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .models import LockfileResolution

logger = logging.getLogger(__name__)

_YARN_CLASSIC_ENTRY = re.compile(r'^"?(@?[^@\n"]+)@[^:\n]*"?:\s*\n\s+version\s+"([^"]+)"', re.MULTILINE)


def parse_lockfile(repo_path: Path, repo_name: str) -> Optional[LockfileResolution]:
    """Try each lockfile format in order pnpm, yarn, npm."""
    repo_path = Path(repo_path)
    candidates = (
        ("pnpm", "pnpm-lock.yaml", parse_pnpm_lock),
        ("yarn", "yarn.lock", parse_yarn_lock),
        ("npm", "package-lock.json", parse_package_lock),
    )
    for manager, filename, parser in candidates:
        lock_path = repo_path / filename
        if not lock_path.is_file():
            continue
        try:
            resolved = parser(lock_path.read_text(encoding="utf-8"))
        except OSError as e:
            logger.warning("Could not read %s: %s", lock_path, e)
            continue
        if resolved:
            logger.debug("Parsed %d resolved versions from %s", len(resolved), lock_path)
            return LockfileResolution(package_manager=manager, repo_name=repo_name, resolved_versions=resolved)
    return None


def parse_pnpm_lock(content: str) -> Dict[str, str]:
    """Root importer versions from ``pnpm-lock.yaml`` (v6+ and older flat format)."""
    data = _safe_yaml(content)
    if not isinstance(data, dict):
        return {}

    result: Dict[str, str] = {}
    importers = data.get("importers")
    if isinstance(importers, dict) and isinstance(importers.get("."), dict):
        root = importers["."]
        for section in ("dependencies", "devDependencies"):
            for name, entry in (root.get(section) or {}).items():
                version = entry.get("version") if isinstance(entry, dict) else entry
                if version:
                    result[str(name)] = _strip_peer_suffix(str(version))

    if not result:
        for section in ("dependencies", "devDependencies"):
            entries = data.get(section)
            if not isinstance(entries, dict):
                continue
            for name, entry in entries.items():
                version = entry.get("version") if isinstance(entry, dict) else entry
                if version:
                    result[str(name)] = _strip_peer_suffix(str(version))
    return result


def parse_yarn_lock(content: str) -> Dict[str, str]:
    """Resolved versions from a classic (v1) or berry ``yarn.lock``."""
    result: Dict[str, str] = {}
    if "__metadata:" in content:
        data = _safe_yaml(content)
        if not isinstance(data, dict):
            return result
        for key, entry in data.items():
            if str(key).startswith("__") or not isinstance(entry, dict):
                continue
            version = entry.get("version")
            if not version or "workspace:" in str(key):
                continue
            first_descriptor = str(key).split(",")[0].strip()
            name = _descriptor_name(first_descriptor)
            if name:
                result[name] = str(version)
        return result

    for match in _YARN_CLASSIC_ENTRY.finditer(content):
        result[match.group(1).strip()] = match.group(2)
    return result


def parse_package_lock(content: str) -> Dict[str, str]:
    """Direct dependency versions from ``package-lock.json`` v1-v3."""
    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        return {}
    if not isinstance(data, dict):
        return {}

    result: Dict[str, str] = {}
    packages = data.get("packages")
    if isinstance(packages, dict):
        prefix = "node_modules/"
        for pkg_path, pkg_data in packages.items():
            if not pkg_path.startswith(prefix):
                continue
            relative = pkg_path[len(prefix):]
            if prefix in relative:
                continue
            if isinstance(pkg_data, dict) and pkg_data.get("version"):
                result[relative] = str(pkg_data["version"])

    if not result and isinstance(data.get("dependencies"), dict):
        for name, dep_data in data["dependencies"].items():
            if isinstance(dep_data, dict) and dep_data.get("version"):
                result[name] = str(dep_data["version"])
    return result


def _safe_yaml(content: str) -> Any:
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as e:
        logger.debug("Lockfile is not valid YAML: %s", e)
        return None


def _strip_peer_suffix(version: str) -> str:
    # pnpm appends peer info: 18.2.0(react@18.2.0)
    return version.split("(", 1)[0].strip()


def _descriptor_name(descriptor: str) -> str:
    descriptor = descriptor.strip('"')
    at = descriptor.find("@", 1)
    return descriptor[:at] if at > 0 else descriptor

"""
Reading and writing ``package.json`` manifests.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ValidationError
from .models import PackageDescriptor

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"

# JSON key -> attribute name for the fields the pipeline reads or writes.
_KNOWN_FIELDS = {
    "name": "name",
    "version": "version",
    "private": "private",
    "scripts": "scripts",
    "dependencies": "dependencies",
    "devDependencies": "dev_dependencies",
    "peerDependencies": "peer_dependencies",
    "workspaces": "workspaces",
    "engines": "engines",
    "packageManager": "package_manager",
}


@dataclass(frozen=True)
class PackageManifest:
    """Typed view over a manifest with a passthrough bucket for unknown keys.

    ``to_dict`` re-emits unknown keys unchanged and keeps the original key
    order, so a parse/serialize round trip is lossless.
    """

    name: Optional[str] = None
    version: Optional[str] = None
    private: Optional[bool] = None
    scripts: Optional[Dict[str, str]] = None
    dependencies: Optional[Dict[str, str]] = None
    dev_dependencies: Optional[Dict[str, str]] = None
    peer_dependencies: Optional[Dict[str, str]] = None
    workspaces: Any = None
    engines: Optional[Dict[str, str]] = None
    package_manager: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    key_order: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PackageManifest":
        if not isinstance(data, Mapping):
            raise ValidationError("package.json must contain a JSON object")
        known: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in data.items():
            if key in _KNOWN_FIELDS:
                known[_KNOWN_FIELDS[key]] = value
            else:
                extra[key] = value
        for attr in ("scripts", "dependencies", "dev_dependencies", "peer_dependencies"):
            value = known.get(attr)
            if value is not None and not isinstance(value, Mapping):
                raise ValidationError(f"package.json field for {attr} must be an object")
            if value is not None:
                known[attr] = {str(k): str(v) for k, v in value.items()}
        return cls(extra=extra, key_order=tuple(data.keys()), **known)

    def to_dict(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for key, attr in _KNOWN_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                values[key] = value
        values.update(self.extra)

        result: Dict[str, Any] = {}
        for key in self.key_order:
            if key in values:
                result[key] = values.pop(key)
        result.update(values)
        return result

    def with_dependencies(self, **maps: Optional[Dict[str, str]]) -> "PackageManifest":
        return replace(self, **maps)

    def to_descriptor(self, repo_name: str, path: str) -> PackageDescriptor:
        return PackageDescriptor(
            name=self.name or repo_name,
            version=self.version or "0.0.0",
            repo_name=repo_name,
            path=path,
            dependencies=dict(self.dependencies or {}),
            dev_dependencies=dict(self.dev_dependencies or {}),
            peer_dependencies=dict(self.peer_dependencies or {}),
            scripts=dict(self.scripts or {}),
        )


def load_manifest(path: Path) -> PackageManifest:
    """Parse a manifest file, raising ValidationError on malformed content."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Malformed JSON in {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ValidationError(f"{path} is not valid UTF-8: {e}") from e
    return PackageManifest.from_dict(data)


def read_package(repo_path: Path, repo_name: str) -> Optional[PackageDescriptor]:
    """Read the root manifest of a repository; None when it has none."""
    manifest_path = Path(repo_path) / MANIFEST_NAME
    if not manifest_path.is_file():
        logger.debug("No %s in %s", MANIFEST_NAME, repo_path)
        return None
    return load_manifest(manifest_path).to_descriptor(repo_name, str(repo_path))


def dump_json(data: Mapping[str, Any]) -> str:
    """Serialize the way package managers write manifests."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"

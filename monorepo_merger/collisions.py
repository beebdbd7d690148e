"""
Root-level file collisions between repositories and their resolution.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .errors import ValidationError
from .models import FileCollision, PlanFile, RepoPath

logger = logging.getLogger(__name__)

MERGE = "merge"
KEEP_FIRST = "keep-first"
KEEP_LAST = "keep-last"
RENAME = "rename"
SKIP = "skip"
STRATEGY_ORDER = {MERGE: 0, KEEP_FIRST: 1, KEEP_LAST: 2, RENAME: 3, SKIP: 4}

MERGEABLE_FILES = frozenset({".gitignore", ".npmignore", ".eslintignore", ".prettierignore"})
KEEP_FIRST_FILES = frozenset({"LICENSE", "LICENSE.md", "LICENSE.txt", ".editorconfig", ".nvmrc", ".node-version"})
# Regenerated by the plan rather than copied.
SKIP_FILES = frozenset({
    "package.json", "package-lock.json", "pnpm-lock.yaml", "yarn.lock",
    "pnpm-workspace.yaml", ".yarnrc.yml", ".yarnrc", ".npmrc",
})


def suggest_strategy(filename: str) -> str:
    if filename in SKIP_FILES:
        return SKIP
    if filename in MERGEABLE_FILES:
        return MERGE
    if filename in KEEP_FIRST_FILES or filename.lower().startswith("readme"):
        return KEEP_FIRST
    return RENAME


def detect_file_collisions(repo_paths: Sequence[RepoPath]) -> List[FileCollision]:
    """Root-level files present in more than one repository."""
    owners: Dict[str, List[str]] = {}
    for repo in repo_paths:
        root = Path(repo.path)
        try:
            names = sorted(p.name for p in root.iterdir() if p.is_file())
        except OSError as e:
            logger.warning("Could not list %s: %s", root, e)
            continue
        for name in names:
            owners.setdefault(name, []).append(repo.name)

    collisions = [
        FileCollision(path=name, sources=tuple(sources), suggested_strategy=suggest_strategy(name))
        for name, sources in owners.items()
        if len(sources) > 1
    ]
    collisions.sort(key=lambda c: (STRATEGY_ORDER[c.suggested_strategy], c.path))
    return collisions


def merge_ignore_files(contents: Iterable[str]) -> str:
    """Union of non-comment entries, sorted, one per line."""
    entries = set()
    for content in contents:
        for line in content.splitlines():
            trimmed = line.strip()
            if trimmed and not trimmed.startswith("#"):
                entries.add(trimmed)
    return "\n".join(sorted(entries)) + "\n"


def renamed_path(path: str, source: str) -> str:
    """``README.md`` from ``web`` becomes ``README.web.md``."""
    p = Path(path)
    return f"{p.stem}.{source}{p.suffix}" if p.suffix else f"{p.name}.{source}"


def resolve_collision(
    collision: FileCollision,
    strategy: Optional[str],
    repo_paths: Sequence[RepoPath],
) -> List[PlanFile]:
    """Plan files produced by applying ``strategy`` to one collision."""
    strategy = strategy or collision.suggested_strategy
    if strategy not in STRATEGY_ORDER:
        raise ValidationError(f"Unknown file collision strategy: {strategy}")

    by_name = {repo.name: Path(repo.path) for repo in repo_paths}

    def read(source: str) -> Optional[str]:
        root = by_name.get(source)
        candidate = root / collision.path if root else None
        if candidate is None or not candidate.is_file():
            return None
        return candidate.read_text(encoding="utf-8", errors="replace")

    if strategy == MERGE:
        contents = [c for c in (read(s) for s in collision.sources) if c is not None]
        return [PlanFile(collision.path, merge_ignore_files(contents))]
    if strategy in (KEEP_FIRST, KEEP_LAST):
        source = collision.sources[0] if strategy == KEEP_FIRST else collision.sources[-1]
        content = read(source)
        return [PlanFile(collision.path, content)] if content is not None else []
    if strategy == RENAME:
        files = []
        for source in collision.sources:
            content = read(source)
            if content is not None:
                files.append(PlanFile(renamed_path(collision.path, source), content))
        return files
    return []

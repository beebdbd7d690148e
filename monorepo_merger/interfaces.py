"""
Interfaces for the collaborators the pipeline depends on.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .config import Settings
from .models import FileCollision, RepoPath


class RepoAcquirer(Protocol):
    """Bring parsed sources to local directories, in input order."""

    def __call__(self, sources: Sequence[Any], work_dir: Path, settings: Optional[Settings] = None) -> List[RepoPath]:
        ...


class CollisionDetector(Protocol):
    """Report root-level files shared by several repositories."""

    def __call__(self, repo_paths: Sequence[RepoPath]) -> List[FileCollision]:
        ...


class EventSink(Protocol):
    """Receives the event stream of one pipeline operation."""

    def __call__(self, event: Dict[str, Any]) -> None:
        ...

"""
Append-only operation log kept beside a staging directory.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .errors import PlanMismatchError
from .models import OperationLogEntry
from .time_utils import utc_now_iso

logger = logging.getLogger(__name__)

HEADER_ID = "header"
STARTED = "started"
COMPLETED = "completed"
FAILED = "failed"


def log_path_for(staging_dir: Union[str, Path]) -> Path:
    """The log lives next to the staging directory, never inside it."""
    staging_dir = Path(staging_dir)
    return staging_dir.with_name(staging_dir.name + ".ops.jsonl")


def compute_plan_hash(content: Union[str, bytes]) -> str:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


class OperationLog:
    """Newline-delimited JSON log of apply steps for one staging directory.

    The first line is a header carrying the hash of the plan the log was
    created for. Entries are only ever appended.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @classmethod
    def for_staging(cls, staging_dir: Union[str, Path]) -> "OperationLog":
        return cls(log_path_for(staging_dir))

    def exists(self) -> bool:
        return self.path.is_file()

    def create(self, plan_hash: str) -> None:
        header = OperationLogEntry(id=HEADER_ID, status=STARTED, timestamp=utc_now_iso(), plan_hash=plan_hash)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(header.to_dict()) + "\n", encoding="utf-8")

    def entries(self) -> List[OperationLogEntry]:
        """All readable entries; a missing log reads as empty.

        A torn final line from an interrupted write is skipped.
        """
        if not self.path.is_file():
            return []
        entries = []
        for number, line in enumerate(self.path.read_text(encoding="utf-8").splitlines(), start=1):
            if not line.strip():
                continue
            try:
                entries.append(OperationLogEntry.from_dict(json.loads(line)))
            except (ValueError, KeyError) as e:
                logger.warning("Skipping unreadable line %d in %s: %s", number, self.path, e)
        return entries

    @property
    def plan_hash(self) -> Optional[str]:
        for entry in self.entries():
            if entry.id == HEADER_ID:
                return entry.plan_hash
        return None

    def ensure_plan(self, plan_hash: str) -> None:
        """Refuse to reuse a log written for different plan content."""
        recorded = self.plan_hash
        if recorded != plan_hash:
            raise PlanMismatchError(
                f"Operation log {self.path} belongs to a different plan",
                hint="Run cleanup and start a fresh apply.",
            )

    def append(self, entry: OperationLogEntry) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict()) + "\n")
            f.flush()

    def is_completed(self, step_id: str) -> bool:
        return is_step_completed(self.entries(), step_id)

    def record(
        self,
        step_id: str,
        status: str,
        outputs: Sequence[str] = (),
        duration_ms: Optional[int] = None,
        error: Optional[str] = None,
    ) -> OperationLogEntry:
        entry = OperationLogEntry(
            id=step_id,
            status=status,
            timestamp=utc_now_iso(),
            outputs=tuple(outputs),
            duration_ms=duration_ms,
            error=error,
        )
        self.append(entry)
        return entry

    def remove(self) -> None:
        if self.path.exists():
            self.path.unlink()


def is_step_completed(entries: Sequence[OperationLogEntry], step_id: str) -> bool:
    return any(e.id == step_id and e.status == COMPLETED for e in entries)

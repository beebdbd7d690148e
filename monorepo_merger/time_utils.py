"""
Shared datetime helpers.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current time as an ISO 8601 string with a trailing Z."""
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def elapsed_ms(started: float) -> int:
    """Milliseconds elapsed since a ``time.monotonic()`` reading."""
    return int(round((time.monotonic() - started) * 1000))

"""
Error classification and a bounded retry loop for network-bound work.
"""

from __future__ import annotations

import errno
import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import requests

from .errors import AcquisitionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT = "transient"
PERMANENT = "permanent"

TRANSIENT_ERRNOS = frozenset({
    errno.ETIMEDOUT, errno.ECONNRESET, errno.ECONNREFUSED, errno.ENETUNREACH, errno.EHOSTUNREACH,
})
TRANSIENT_CODES = ("ETIMEDOUT", "ECONNRESET", "ECONNREFUSED", "ENOTFOUND", "EAI_AGAIN", "ENETUNREACH")
TRANSIENT_MESSAGES = (
    "timeout", "timed out", "connection refused", "connection reset", "network",
    "temporarily unavailable", "could not resolve host", "early eof",
)
PERMANENT_MESSAGES = (
    "authentication failed", "could not read username", "permission denied",
    "repository not found", "does not exist", "not found", "401", "403", "404",
)


@dataclass(frozen=True)
class ErrorClassification:
    classification: str
    detail: str

    @property
    def transient(self) -> bool:
        return self.classification == TRANSIENT


def error_text(exc: BaseException) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        stderr = exc.stderr.decode(errors="replace") if isinstance(exc.stderr, bytes) else exc.stderr
        return (stderr or "").strip() or str(exc)
    return str(exc)


def classify_error(exc: BaseException) -> ErrorClassification:
    """Decide whether ``exc`` is worth retrying.

    Auth and not-found failures are permanent even when their message also
    mentions the network.
    """
    detail = error_text(exc)
    lowered = detail.lower()

    if isinstance(exc, (subprocess.TimeoutExpired, requests.Timeout, requests.ConnectionError)):
        return ErrorClassification(TRANSIENT, detail)
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        status = exc.response.status_code
        return ErrorClassification(TRANSIENT if status >= 500 or status == 429 else PERMANENT, detail)
    if isinstance(exc, OSError) and exc.errno in TRANSIENT_ERRNOS:
        return ErrorClassification(TRANSIENT, detail)

    if any(marker in lowered for marker in PERMANENT_MESSAGES):
        return ErrorClassification(PERMANENT, detail)
    if any(code in detail for code in TRANSIENT_CODES) or any(m in lowered for m in TRANSIENT_MESSAGES):
        return ErrorClassification(TRANSIENT, detail)
    return ErrorClassification(PERMANENT, detail)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    return min(base * (2 ** (attempt - 1)), maximum)


def retry_call(
    fn: Callable[[], T],
    max_retries: int = 3,
    backoff_base: float = 1.0,
    backoff_max: float = 10.0,
    classify: Callable[[BaseException], ErrorClassification] = classify_error,
    sleep: Callable[[float], None] = time.sleep,
    describe: Optional[str] = None,
) -> T:
    """Call ``fn``, retrying transient failures up to ``max_retries`` attempts in total.

    Raises:
        AcquisitionError: carrying the classification of the last failure.
    """
    label = describe or getattr(fn, "__name__", "operation")
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            result = classify(exc)
            if result.transient and attempt < max_retries:
                delay = backoff_delay(attempt, backoff_base, backoff_max)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    label, attempt, max_retries, delay, result.detail,
                )
                sleep(delay)
                continue
            logger.debug("%s failed permanently after %d attempt(s)", label, attempt)
            raise AcquisitionError(result.detail, result.classification) from exc

"""
Error types raised by the merge pipeline.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


class MergeError(Exception):
    """Base error with an optional actionable hint for the operator."""

    def __init__(self, message: str, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.hint = hint

    def to_dict(self) -> dict:
        payload = {"error": type(self).__name__, "message": str(self)}
        if self.hint:
            payload["hint"] = self.hint
        return payload


class ConfigError(MergeError, ValueError):
    """Invalid configuration value."""


class ValidationError(MergeError, ValueError):
    """Malformed input (plan, manifest or source list). Nothing was executed."""


class PlanValidationError(ValidationError):
    """A plan document failed schema validation."""

    def __init__(self, problems: Iterable[str]) -> None:
        self.problems: List[str] = list(problems)
        super().__init__(
            "Plan file is invalid: " + "; ".join(self.problems),
            hint="Check version, sources, packagesDir, rootPackageJson, files and install fields.",
        )


class PlanMismatchError(ValidationError):
    """The operation log was written for a different plan."""


class AcquisitionError(MergeError):
    """A repository could not be acquired."""

    def __init__(self, message: str, classification: str, hint: Optional[str] = None) -> None:
        super().__init__(message, hint=hint)
        self.classification = classification


class StepFailedError(MergeError):
    """An apply step failed; the failure has been recorded in the operation log."""

    def __init__(self, step_id: str, message: str) -> None:
        super().__init__(f"Step '{step_id}' failed: {message}")
        self.step_id = step_id


class ApplyCancelled(MergeError):
    """Cancellation was requested while applying a plan."""

    def __init__(self, step_id: Optional[str] = None) -> None:
        message = "Apply cancelled"
        if step_id:
            message += f" during step '{step_id}'"
        super().__init__(message, hint="Re-run apply with resume to continue from the staging directory.")
        self.step_id = step_id


def shape_error(exc: BaseException) -> MergeError:
    """Wrap any exception in a MergeError carrying a helpful hint."""
    if isinstance(exc, MergeError):
        return exc

    message = str(exc) or type(exc).__name__
    if isinstance(exc, FileNotFoundError) or "ENOENT" in message:
        hint = "Check that the file or directory exists"
    elif isinstance(exc, PermissionError) or "EACCES" in message or "EPERM" in message:
        hint = "Check file permissions or try running with elevated privileges"
    elif "ENOSPC" in message or "No space left" in message:
        hint = "Insufficient disk space. Free up space and try again"
    elif "git" in message:
        hint = "Ensure git is installed and the repository is valid"
    else:
        hint = "Check the error details above and try again"

    shaped = MergeError(message, hint=hint)
    shaped.__cause__ = exc
    return shaped

"""
Apply Engine: executes a plan as ordered, resumable steps in a staging directory.
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import shlex
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .errors import ApplyCancelled, StepFailedError, ValidationError
from .manifest import MANIFEST_NAME, dump_json
from .models import ApplyPlan, OperationLogEntry
from .oplog import COMPLETED, FAILED, STARTED, OperationLog, is_step_completed, log_path_for
from .planner import load_plan
from .time_utils import elapsed_ms

logger = logging.getLogger(__name__)

SCAFFOLD = "scaffold"
MOVE_PACKAGES = "move-packages"
WRITE_ROOT = "write-root"
WRITE_EXTRAS = "write-extras"
INSTALL = "install"

DEFAULT_INSTALL_COMMAND = "pnpm install"
POLL_INTERVAL = 0.2
TERMINATE_GRACE = 5.0

InstallRunner = Callable[[str, Path, Optional[threading.Event]], None]


@dataclass(frozen=True)
class ApplyResult:
    """Outcome of an apply run."""

    output_dir: str
    package_count: int
    staging_dir: Optional[str] = None
    executed_steps: Tuple[str, ...] = ()
    skipped_steps: Tuple[str, ...] = ()
    log_entries: Tuple[OperationLogEntry, ...] = ()
    dry_run: bool = False
    planned_steps: Tuple[str, ...] = ()


def find_staging_dirs(output_dir: Union[str, Path]) -> List[Path]:
    """Existing ``<output>.staging-<8 hex>`` directories for ``output_dir``."""
    output_dir = Path(output_dir).resolve()
    parent = output_dir.parent
    if not parent.is_dir():
        return []
    pattern = re.compile(rf"^{re.escape(output_dir.name)}\.staging-[0-9a-f]{{8}}$")
    return sorted(p for p in parent.iterdir() if p.is_dir() and pattern.match(p.name))


def cleanup_staging(output_dir: Union[str, Path]) -> List[Path]:
    """Remove every staging directory and its log; failures are logged."""
    removed = []
    for staging in find_staging_dirs(output_dir):
        try:
            shutil.rmtree(staging)
            log_path_for(staging).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove %s: %s", staging, e)
            continue
        logger.info("Removed: %s", staging.name)
        removed.append(staging)
    return removed


def describe_steps(plan: ApplyPlan, output_dir: Path) -> List[str]:
    names = ", ".join(s.name for s in plan.sources)
    files = ", ".join(f.relative_path for f in plan.files)
    steps = [
        f"{SCAFFOLD}: create staging for {output_dir} and {plan.packages_dir}/",
        f"{MOVE_PACKAGES}: move {len(plan.sources)} package(s): {names}",
        f"{WRITE_ROOT}: write root {MANIFEST_NAME}",
        f"{WRITE_EXTRAS}: write {len(plan.files)} file(s): {files}",
    ]
    if plan.install:
        steps.append(f"{INSTALL}: run {plan.install_command or DEFAULT_INSTALL_COMMAND}")
    else:
        steps.append(f"{INSTALL}: skipped (install: false)")
    return steps


def run_install(command: str, cwd: Path, cancel_event: Optional[threading.Event] = None) -> None:
    """Run the install command, terminating it if ``cancel_event`` is set."""
    proc = subprocess.Popen(
        shlex.split(command),
        cwd=str(cwd),
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
    )
    while True:
        try:
            output, _ = proc.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Cancelling install (pid %d)", proc.pid)
                proc.terminate()
                try:
                    proc.wait(timeout=TERMINATE_GRACE)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait()
                raise ApplyCancelled(INSTALL)

    if proc.returncode != 0:
        tail = "\n".join((output or "").strip().splitlines()[-20:])
        raise RuntimeError(f"'{command}' exited with code {proc.returncode}\n{tail}".rstrip())


class ApplyEngine:
    """Runs one apply attempt for a validated plan.

    All work happens in a staging directory beside the output; the output
    is replaced only after every step has completed.
    """

    def __init__(
        self,
        plan: ApplyPlan,
        plan_hash: str,
        output_dir: Union[str, Path],
        cancel_event: Optional[threading.Event] = None,
        install_runner: InstallRunner = run_install,
    ):
        self.plan = plan
        self.plan_hash = plan_hash
        self.output_dir = Path(output_dir).resolve()
        self.cancel_event = cancel_event
        self.install_runner = install_runner
        self.staging_dir: Optional[Path] = None
        self.log: Optional[OperationLog] = None
        self.executed: List[str] = []
        self.skipped: List[str] = []

    # -- staging -----------------------------------------------------------

    def new_staging(self) -> Path:
        nonce = secrets.token_hex(4)
        self.staging_dir = self.output_dir.with_name(f"{self.output_dir.name}.staging-{nonce}")
        self.log = OperationLog.for_staging(self.staging_dir)
        self.log.create(self.plan_hash)
        logger.info("Starting transactional apply in %s", self.staging_dir.name)
        return self.staging_dir

    def reuse_staging(self, staging_dir: Optional[Path] = None) -> Path:
        if staging_dir is None:
            candidates = find_staging_dirs(self.output_dir)
            if not candidates:
                raise ValidationError(
                    "No staging directory found to resume",
                    hint="Run without resume to start fresh.",
                )
            if len(candidates) > 1:
                raise ValidationError(
                    "Multiple staging directories found",
                    hint="Run cleanup first.",
                )
            staging_dir = candidates[0]

        log = OperationLog.for_staging(staging_dir)
        if not log.exists():
            raise ValidationError(f"No operation log found for {staging_dir}")
        log.ensure_plan(self.plan_hash)

        self.staging_dir = Path(staging_dir)
        self.log = log
        completed = sum(1 for e in log.entries() if e.status == COMPLETED)
        logger.info("Resuming from %s (%d step(s) already completed)", self.staging_dir.name, completed)
        return self.staging_dir

    # -- steps -------------------------------------------------------------

    def check_cancelled(self, step_id: Optional[str] = None) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ApplyCancelled(step_id)

    def execute_step(self, step_id: str, fn: Callable[[], Sequence[str]]) -> None:
        self.check_cancelled(step_id)
        if is_step_completed(self.log.entries(), step_id):
            logger.debug('Step "%s" already completed, skipping', step_id)
            self.skipped.append(step_id)
            return

        logger.debug("Starting step: %s", step_id)
        started = time.monotonic()
        self.log.record(step_id, STARTED)
        try:
            outputs = fn()
        except ApplyCancelled as e:
            self.log.record(step_id, FAILED, duration_ms=elapsed_ms(started), error=str(e))
            raise
        except Exception as e:
            self.log.record(step_id, FAILED, duration_ms=elapsed_ms(started), error=str(e))
            raise StepFailedError(step_id, str(e)) from e

        duration = elapsed_ms(started)
        self.log.record(step_id, COMPLETED, outputs=outputs, duration_ms=duration)
        self.executed.append(step_id)
        logger.debug("Completed step: %s (%dms)", step_id, duration)

    def scaffold(self) -> List[str]:
        packages = self.staging_dir / self.plan.packages_dir
        packages.mkdir(parents=True, exist_ok=True)
        return [str(self.staging_dir), str(packages)]

    def move_packages(self) -> List[str]:
        outputs = []
        for source in self.plan.sources:
            self.check_cancelled(MOVE_PACKAGES)
            relative = f"{self.plan.packages_dir}/{source.name}"
            target = self.staging_dir / self.plan.packages_dir / source.name
            if target.exists():
                logger.debug('Package "%s" already in staging, skipping', source.name)
            else:
                shutil.move(source.path, str(target))
                logger.debug("Moved %s -> %s", source.name, relative)
            outputs.append(relative)
        return outputs

    def write_root(self) -> List[str]:
        (self.staging_dir / MANIFEST_NAME).write_text(dump_json(self.plan.root_package_json), encoding="utf-8")
        return [MANIFEST_NAME]

    def write_extras(self) -> List[str]:
        outputs = []
        for plan_file in self.plan.files:
            self.check_cancelled(WRITE_EXTRAS)
            path = self.staging_dir / plan_file.relative_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(plan_file.content, encoding="utf-8")
            outputs.append(plan_file.relative_path)
        return outputs

    def install(self) -> List[str]:
        command = self.plan.install_command or DEFAULT_INSTALL_COMMAND
        logger.info("Installing dependencies: %s", command)
        self.install_runner(command, self.staging_dir, self.cancel_event)
        return ["node_modules/"]

    # -- finalize ----------------------------------------------------------

    def promote(self) -> None:
        """Swap the finished staging directory into place."""
        logger.info("Finalizing %s", self.output_dir)
        if self.output_dir.exists():
            shutil.rmtree(self.output_dir)
        os.replace(self.staging_dir, self.output_dir)

    def discard_staging(self) -> None:
        """Best effort: return staged packages to their sources, then drop staging."""
        try:
            for source in self.plan.sources:
                staged = self.staging_dir / self.plan.packages_dir / source.name
                if staged.exists() and not Path(source.path).exists():
                    shutil.move(str(staged), source.path)
            shutil.rmtree(self.staging_dir, ignore_errors=False)
            self.log.remove()
        except OSError as e:
            logger.warning("Failed to clean up staging directory %s: %s", self.staging_dir, e)

    def validate_sources(self) -> None:
        entries = self.log.entries() if self.log is not None else []
        if is_step_completed(entries, MOVE_PACKAGES):
            return
        missing = [s for s in self.plan.sources if not Path(s.path).exists()]
        if self.staging_dir is not None:
            # A source already in staging was moved by an interrupted attempt.
            staged = self.staging_dir / self.plan.packages_dir
            missing = [s for s in missing if not (staged / s.name).exists()]
        if missing:
            listed = ", ".join(f'{s.path} (for "{s.name}")' for s in missing)
            raise ValidationError(
                f"Source path not found: {listed}",
                hint="Source repos may have been cleaned up. Regenerate the plan file.",
            )

    def run(self, cleanup_on_failure: bool = False) -> ApplyResult:
        self.validate_sources()
        steps = [
            (SCAFFOLD, self.scaffold),
            (MOVE_PACKAGES, self.move_packages),
            (WRITE_ROOT, self.write_root),
            (WRITE_EXTRAS, self.write_extras),
        ]
        if self.plan.install:
            steps.append((INSTALL, self.install))

        try:
            for step_id, fn in steps:
                self.execute_step(step_id, fn)
        except ApplyCancelled:
            logger.warning("Cancelled. Staging directory preserved for resume: %s", self.staging_dir)
            raise
        except Exception:
            if cleanup_on_failure:
                self.discard_staging()
            else:
                logger.info("Staging directory preserved at %s for resume or cleanup", self.staging_dir)
            raise

        entries = tuple(self.log.entries())
        self.promote()
        self.log.remove()
        logger.info("Apply completed: %d package(s) in %s", len(self.plan.sources), self.output_dir)
        return ApplyResult(
            output_dir=str(self.output_dir),
            package_count=len(self.plan.sources),
            staging_dir=str(self.staging_dir),
            executed_steps=tuple(self.executed),
            skipped_steps=tuple(self.skipped),
            log_entries=entries,
        )


def apply_plan(
    plan_path: Union[str, Path],
    output_dir: Union[str, Path],
    cancel_event: Optional[threading.Event] = None,
    resume: bool = False,
    staging_dir: Optional[Union[str, Path]] = None,
    dry_run: bool = False,
    cleanup_on_failure: bool = False,
    install_runner: InstallRunner = run_install,
) -> ApplyResult:
    """Apply the plan at ``plan_path`` to ``output_dir``.

    A structurally invalid plan is rejected before anything is touched.
    With ``resume`` (or an explicit ``staging_dir``) an earlier attempt's
    staging directory and log are reused and its completed steps skipped,
    provided the log was written for identical plan content.
    """
    plan, plan_hash = load_plan(plan_path)
    output = Path(output_dir).resolve()

    if dry_run:
        steps = describe_steps(plan, output)
        for line in steps:
            logger.info("  %s", line)
        return ApplyResult(
            output_dir=str(output),
            package_count=len(plan.sources),
            dry_run=True,
            planned_steps=tuple(steps),
        )

    engine = ApplyEngine(plan, plan_hash, output, cancel_event=cancel_event, install_runner=install_runner)
    if resume or staging_dir is not None:
        engine.reuse_staging(Path(staging_dir) if staging_dir is not None else None)
    else:
        engine.validate_sources()
        engine.new_staging()
    return engine.run(cleanup_on_failure=cleanup_on_failure)

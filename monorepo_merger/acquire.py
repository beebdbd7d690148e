"""
Repository acquisition: parse sources and bring each one to a local directory.
"""

from __future__ import annotations

import contextvars
import logging
import re
import shutil
import subprocess
import tarfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import requests
from tqdm import tqdm

from .config import Settings
from .errors import AcquisitionError, ValidationError
from .models import RepoPath
from .retry import PERMANENT, retry_call

logger = logging.getLogger(__name__)

LOCAL = "local"
GITHUB = "github"
GITLAB = "gitlab"
URL = "url"
TARBALL = "tarball"

EXCLUDE_PATTERNS = ("node_modules", ".git", ".pnpm-store", "dist", "build", ".next", ".nuxt", "coverage")

_GITHUB_SHORTHAND = re.compile(r"^[a-zA-Z0-9_.-]+/[a-zA-Z0-9_.-]+$")
_GITLAB_SHORTHAND = re.compile(r"^gitlab:([a-zA-Z0-9_.-]+/[a-zA-Z0-9_.-]+)$")
_GIT_URL_PATTERNS = (
    re.compile(r"^https?://github\.com/[^/]+/[^/]+"),
    re.compile(r"^https?://gitlab\.com/[^/]+/[^/]+"),
    re.compile(r"^git@github\.com:[^/]+/[^/]+"),
    re.compile(r"^git@gitlab\.com:[^/]+/[^/]+"),
    re.compile(r"^https?://.*\.git$"),
    re.compile(r"^git://"),
)
_TARBALL_PATTERN = re.compile(r"^https?://.*\.(tar\.gz|tgz)$")


@dataclass(frozen=True)
class RepoSource:
    """A repository named on the command line, before acquisition."""

    type: str
    original: str
    resolved: str
    name: str


def extract_repo_name(value: str) -> str:
    name = re.sub(r"\.(git|tar\.gz|tgz)$", "", value)
    if "://" in name or "@" in name or "/" in name:
        name = name.rstrip("/").split("/")[-1]
    name = re.sub(r"^gitlab:", "", name)
    return name or "unknown"


def source_type(value: str) -> str:
    if value.startswith(("./", "../", "/")):
        return LOCAL
    if _GITLAB_SHORTHAND.match(value):
        return GITLAB
    if _TARBALL_PATTERN.match(value):
        return TARBALL
    for pattern in _GIT_URL_PATTERNS:
        if pattern.match(value):
            if "gitlab.com" in value:
                return GITLAB
            if "github.com" in value:
                return GITHUB
            return URL
    if _GITHUB_SHORTHAND.match(value):
        return GITHUB
    return LOCAL


def parse_repo_source(value: str) -> RepoSource:
    trimmed = value.strip()
    kind = source_type(trimmed)
    if kind == GITHUB and _GITHUB_SHORTHAND.match(trimmed):
        resolved = f"https://github.com/{trimmed}.git"
    elif kind == GITLAB and _GITLAB_SHORTHAND.match(trimmed):
        resolved = f"https://gitlab.com/{_GITLAB_SHORTHAND.match(trimmed).group(1)}.git"
    elif kind == LOCAL:
        resolved = str(Path(trimmed).resolve())
    else:
        resolved = trimmed
    return RepoSource(type=kind, original=trimmed, resolved=resolved, name=extract_repo_name(trimmed))


def parse_repo_sources(values: Sequence[str]) -> List[RepoSource]:
    """Parse and validate sources; duplicate names get ``-1``, ``-2`` suffixes."""
    if not values:
        raise ValidationError("At least one repository is required")

    sources = [parse_repo_source(v) for v in values]
    totals = {}
    for source in sources:
        totals[source.name] = totals.get(source.name, 0) + 1

    counters = {}
    renamed = []
    for source in sources:
        if totals[source.name] > 1:
            counters[source.name] = counters.get(source.name, 0) + 1
            source = replace(source, name=f"{source.name}-{counters[source.name]}")
        renamed.append(source)

    problems = []
    for source in renamed:
        if source.type == LOCAL:
            path = Path(source.resolved)
            if not path.exists():
                problems.append(f"Local path does not exist: {path}")
            elif not path.is_dir():
                problems.append(f"Local path is not a directory: {path}")
        elif "/" not in source.resolved:
            problems.append(f"Invalid repository URL: {source.original}")
    if problems:
        raise ValidationError("; ".join(problems))
    return renamed


def clone_error_message(detail: str, url: str) -> str:
    """Human readable explanation of a failed clone."""
    if any(m in detail for m in ("Authentication failed", "could not read Username", "Permission denied", "401", "403")):
        return (
            f"Authentication failed for {url}. If this is a private repository, "
            "set up SSH keys or use a personal access token in the URL"
        )
    if any(m in detail for m in ("Repository not found", "does not exist", "404")):
        return f"Repository not found: {url}. Check the name and your access to it"
    if "Could not resolve host" in detail or "ENOTFOUND" in detail:
        return f"Cannot reach repository host for {url}. Check your internet connection."
    if "Connection refused" in detail or "ECONNREFUSED" in detail:
        return f"Connection refused when cloning {url}. The server may be down or blocking connections."
    if "timed out" in detail or "ETIMEDOUT" in detail:
        return f"Clone operation timed out for {url}. Try again later or raise the clone timeout."
    if "empty repository" in detail or "no commits" in detail:
        return f"Repository {url} appears to be empty (no commits). Cannot clone an empty repository."
    return f"Failed to clone {url}: {detail}"


def copy_local_repo(source: Path, target: Path) -> None:
    logger.debug("Copying %s to %s", source, target)
    if target.exists():
        shutil.rmtree(target)
    shutil.copytree(source, target, ignore=shutil.ignore_patterns(*EXCLUDE_PATTERNS), symlinks=True)


def clone_repo(url: str, target: Path, timeout: float) -> None:
    if target.exists():
        shutil.rmtree(target)
    subprocess.run(
        ["git", "clone", "--depth", "1", url, str(target)],
        check=True,
        capture_output=True,
        text=True,
        timeout=timeout,
    )
    shutil.rmtree(target / ".git", ignore_errors=True)


def download_tarball(url: str, target: Path, timeout: float) -> None:
    """Download a .tar.gz source with a progress bar and unpack it into ``target``."""
    if target.exists():
        shutil.rmtree(target)
    archive = target.with_name(target.name + ".tar.gz")
    response = requests.get(url, stream=True, timeout=timeout)
    response.raise_for_status()

    total_size = int(response.headers.get("content-length", 0))
    with open(archive, "wb") as f:
        with tqdm(total=total_size, unit="B", unit_scale=True, desc=target.name, leave=False) as pbar:
            for chunk in response.iter_content(chunk_size=8192):
                f.write(chunk)
                pbar.update(len(chunk))

    try:
        unpack_tarball(archive, target)
    finally:
        archive.unlink()


def unpack_tarball(archive: Path, target: Path) -> None:
    """Extract ``archive``; a single top-level directory is flattened away."""
    target.mkdir(parents=True, exist_ok=True)
    root = target.resolve()
    with tarfile.open(archive, "r:gz") as tar:
        members = []
        for member in tar.getmembers():
            destination = (root / member.name).resolve()
            if root not in destination.parents and destination != root:
                raise AcquisitionError(f"Refusing to extract {member.name} outside {target}", PERMANENT)
            if member.issym() or member.islnk():
                continue
            members.append(member)
        tar.extractall(target, members=members)

    entries = list(target.iterdir())
    if len(entries) == 1 and entries[0].is_dir():
        nested = entries[0]
        for child in nested.iterdir():
            shutil.move(str(child), str(target / child.name))
        nested.rmdir()


def acquire_repository(source: RepoSource, work_dir: Path, settings: Settings) -> RepoPath:
    """Bring one source into ``work_dir/<name>``, retrying transient failures."""
    target = Path(work_dir) / source.name
    if source.type == LOCAL:
        copy_local_repo(Path(source.resolved), target)
        return RepoPath(source.name, str(target))

    if source.type == TARBALL:
        action = partial(download_tarball, source.resolved, target, settings.clone_timeout)
    else:
        action = partial(clone_repo, source.resolved, target, settings.clone_timeout)

    try:
        retry_call(
            action,
            max_retries=settings.max_retries,
            backoff_base=settings.backoff_base,
            backoff_max=settings.backoff_max,
            describe=f"Fetching {source.name}",
        )
    except AcquisitionError as e:
        raise AcquisitionError(
            clone_error_message(str(e), source.resolved), e.classification
        ) from e.__cause__
    logger.info("Fetched %s", source.name)
    return RepoPath(source.name, str(target))


def acquire_repositories(
    sources: Sequence[RepoSource],
    work_dir: Path,
    settings: Optional[Settings] = None,
    acquire: Callable[[RepoSource, Path, Settings], RepoPath] = acquire_repository,
) -> List[RepoPath]:
    """Acquire every source with at most ``settings.concurrency`` in flight.

    Results are returned in input order regardless of completion order.
    """
    settings = settings or Settings.from_env()
    work_dir = Path(work_dir)
    work_dir.mkdir(parents=True, exist_ok=True)

    with ThreadPoolExecutor(max_workers=settings.concurrency) as executor:
        futures = [
            executor.submit(contextvars.copy_context().run, acquire, source, work_dir, settings)
            for source in sources
        ]
        with tqdm(total=len(futures), desc="Acquiring", unit="repo", disable=len(futures) < 2) as pbar:
            results = []
            for future in futures:
                results.append(future.result())
                pbar.update(1)
    return results


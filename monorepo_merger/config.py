"""
Runtime settings for the merge pipeline.

Defaults live here; every value can be overridden per call or through
``MONOREPO_MERGER_*`` environment variables via :meth:`Settings.from_env`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Callable, Mapping, Optional, TypeVar

from .errors import ConfigError

ENV_PREFIX = "MONOREPO_MERGER_"

DEFAULT_CONCURRENCY = 4
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 1.0
DEFAULT_BACKOFF_MAX = 10.0
DEFAULT_CLONE_TIMEOUT = 60.0
DEFAULT_COMMAND_TIMEOUT = 120.0
DEFAULT_PACKAGE_MANAGER = "pnpm"
DEFAULT_PACKAGES_DIR = "packages"
DEFAULT_NODE_ENGINE = ">=18"

T = TypeVar("T")


@dataclass(frozen=True)
class Settings:
    """Tunable knobs shared by every phase."""

    concurrency: int = DEFAULT_CONCURRENCY
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_base: float = DEFAULT_BACKOFF_BASE
    backoff_max: float = DEFAULT_BACKOFF_MAX
    clone_timeout: float = DEFAULT_CLONE_TIMEOUT
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    package_manager: str = DEFAULT_PACKAGE_MANAGER
    packages_dir: str = DEFAULT_PACKAGES_DIR
    node_engine: str = DEFAULT_NODE_ENGINE

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.max_retries < 1:
            raise ConfigError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ConfigError("backoff values must be non-negative")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Settings":
        """Build settings from the environment, then apply explicit overrides."""
        env = os.environ if environ is None else environ
        settings = cls(
            concurrency=_env_value(env, "CONCURRENCY", int, DEFAULT_CONCURRENCY),
            max_retries=_env_value(env, "MAX_RETRIES", int, DEFAULT_MAX_RETRIES),
            backoff_base=_env_value(env, "BACKOFF_BASE", float, DEFAULT_BACKOFF_BASE),
            backoff_max=_env_value(env, "BACKOFF_MAX", float, DEFAULT_BACKOFF_MAX),
            clone_timeout=_env_value(env, "CLONE_TIMEOUT", float, DEFAULT_CLONE_TIMEOUT),
            command_timeout=_env_value(env, "COMMAND_TIMEOUT", float, DEFAULT_COMMAND_TIMEOUT),
            package_manager=env.get(ENV_PREFIX + "PACKAGE_MANAGER", DEFAULT_PACKAGE_MANAGER),
            packages_dir=env.get(ENV_PREFIX + "PACKAGES_DIR", DEFAULT_PACKAGES_DIR),
            node_engine=env.get(ENV_PREFIX + "NODE_ENGINE", DEFAULT_NODE_ENGINE),
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(settings, **overrides) if overrides else settings


def _env_value(env: Mapping[str, str], key: str, cast: Callable[[str], T], default: T) -> T:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid value for {ENV_PREFIX}{key}: {raw!r}") from e

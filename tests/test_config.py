import pytest

from monorepo_merger.config import Settings
from monorepo_merger.errors import ConfigError, MergeError, PlanValidationError, StepFailedError, shape_error


def test_defaults():
    settings = Settings()
    assert settings.concurrency == 4
    assert settings.max_retries == 3
    assert settings.package_manager == "pnpm"


def test_from_env_with_overrides():
    env = {"MONOREPO_MERGER_CONCURRENCY": "8", "MONOREPO_MERGER_BACKOFF_BASE": "0.5"}
    settings = Settings.from_env(env, concurrency=None, packages_dir="apps")
    assert settings.concurrency == 8
    assert settings.backoff_base == 0.5
    assert settings.packages_dir == "apps"


def test_invalid_values_rejected():
    with pytest.raises(ConfigError):
        Settings(concurrency=0)
    with pytest.raises(ConfigError):
        Settings.from_env({"MONOREPO_MERGER_MAX_RETRIES": "many"})


def test_error_payloads():
    err = PlanValidationError(["version must be 1", "sources must be a non-empty list"])
    payload = err.to_dict()
    assert payload["error"] == "PlanValidationError"
    assert payload["message"].startswith("Plan file is invalid: version must be 1")
    assert "hint" in payload

    assert StepFailedError("install", "exit 1").to_dict() == {
        "error": "StepFailedError",
        "message": "Step 'install' failed: exit 1",
    }


def test_shape_error_adds_hint():
    shaped = shape_error(FileNotFoundError("missing.json"))
    assert isinstance(shaped, MergeError)
    assert shaped.hint == "Check that the file or directory exists"
    assert isinstance(shaped.__cause__, FileNotFoundError)

    original = ConfigError("bad")
    assert shape_error(original) is original

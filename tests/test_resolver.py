import itertools

import pytest

from monorepo_merger.conflicts import detect_declared_conflicts
from monorepo_merger.errors import ValidationError
from monorepo_merger.models import ConflictEntry, PackageDescriptor
from monorepo_merger.resolver import (
    HIGHEST,
    HOIST_WITH_OVERRIDES,
    ISOLATE,
    LOWEST,
    baseline_dependencies,
    pick_entry,
    pick_version,
    resolve_conflicts,
    validate_strategy,
)


def _pkg(repo, dependencies=None, dev=None):
    return PackageDescriptor(
        name=repo,
        version="1.0.0",
        repo_name=repo,
        path=f"/tmp/{repo}",
        dependencies=dependencies or {},
        dev_dependencies=dev or {},
    )


def test_pick_version_highest_and_lowest():
    specs = ["^4.17.15", "^4.17.21", "^4.16.0"]
    assert pick_version(specs, HIGHEST) == "^4.17.21"
    assert pick_version(specs, LOWEST) == "^4.16.0"
    assert pick_version([], HIGHEST) is None


def test_pick_version_equal_releases_take_smallest_string():
    versions = ["^4.17.15", "^4.17.21", "4.17.21"]
    assert pick_version(versions, HIGHEST) == pick_version(list(reversed(versions)), HIGHEST) == "4.17.21"
    assert pick_version(versions, LOWEST) == "^4.17.15"


def test_pick_entry_ignores_input_order():
    entries = [
        ConflictEntry("^1.0.0", "web"),
        ConflictEntry("1.0.0", "api"),
        ConflictEntry("~1.0.0", "cli"),
        ConflictEntry("^0.9.0", "docs"),
    ]
    results = {pick_entry(list(order)) for order in itertools.permutations(entries)}
    assert results == {ConflictEntry("1.0.0", "api")}


def test_resolution_ignores_package_order():
    packages = [
        _pkg("a", {"lodash": "^4.17.15", "react": "^17.0.2"}),
        _pkg("b", {"lodash": "^4.17.21"}, {"react": "^18.2.0"}),
        _pkg("c", {"lodash": "~4.17.21"}),
    ]
    results = []
    for order in itertools.permutations(packages):
        order = list(order)
        results.append(resolve_conflicts(order, detect_declared_conflicts(order), HIGHEST))
    assert all(r == results[0] for r in results)


def test_runtime_and_dev_resolved_separately():
    packages = [_pkg("a", {"react": "^17.0.2"}), _pkg("b", dev={"react": "^18.2.0", "jest": "^29.0.0"})]
    resolved = resolve_conflicts(packages, detect_declared_conflicts(packages), HIGHEST)

    assert resolved.dependencies == {"react": "^17.0.2"}
    assert resolved.dev_dependencies == {"jest": "^29.0.0"}
    assert resolved.overrides == {}


def test_hoist_with_overrides_pins_highest():
    packages = [_pkg("a", {"react": "^17.0.2"}), _pkg("b", dev={"react": "^18.2.0"})]
    resolved = resolve_conflicts(packages, detect_declared_conflicts(packages), HOIST_WITH_OVERRIDES)
    assert resolved.overrides == {"react": "^18.2.0"}


def test_isolate_hoists_nothing():
    packages = [_pkg("a", {"react": "^17.0.2"}), _pkg("b", {"react": "^18.2.0"})]
    resolved = resolve_conflicts(packages, detect_declared_conflicts(packages), ISOLATE)
    assert not resolved.hoisted
    assert resolved.dependencies == {}


def test_internal_packages_never_hoisted():
    packages = [_pkg("a", {"b": "^1.0.0", "lodash": "^4.17.21"}), _pkg("b")]
    resolved = resolve_conflicts(packages, [], HIGHEST)
    assert resolved.dependencies == {"lodash": "^4.17.21"}


def test_baseline_keeps_runtime_names_out_of_dev():
    deps, dev = baseline_dependencies([_pkg("a", {"react": "^18.2.0"}), _pkg("b", dev={"react": "^18.0.0"})])
    assert deps == {"react": "^18.2.0"}
    assert dev == {}


def test_unknown_strategy_rejected():
    with pytest.raises(ValidationError) as exc_info:
        validate_strategy("newest")
    assert "highest" in exc_info.value.hint

"""
Tests for version specifier parsing and comparison.
"""

from monorepo_merger.semver import (
    NON_SEMVER,
    SEMVER,
    WILDCARD,
    VersionSpecifier,
    classify,
    compare_versions,
    is_complex_range,
    parse_semver,
    satisfies_range,
)


def test_parse_strips_range_operators():
    parsed = parse_semver("^4.17.21")
    assert (parsed.major, parsed.minor, parsed.patch) == (4, 17, 21)
    assert parse_semver(">=1.2.3 <2.0.0")[:3] == (1, 2, 3)
    assert parse_semver("1.0.0-beta.1").prerelease == "beta.1"


def test_parse_rejects_non_semver_and_wildcards():
    for spec in ("git+https://github.com/a/b.git", "file:../lib", "workspace:*", "*", "1.x", "latest"):
        assert parse_semver(spec) is None


def test_classify():
    assert classify("~1.2.3") == SEMVER
    assert classify("github:user/repo") == NON_SEMVER
    assert classify("*") == WILDCARD

    spec = VersionSpecifier.of("~2.1.0")
    assert spec.kind == SEMVER
    assert spec.parsed.release() == "2.1.0"
    assert VersionSpecifier.of("latest").parsed is None


def test_compare_versions():
    assert compare_versions("^18.2.0", "^17.0.2") == 1
    assert compare_versions("1.0.0-alpha", "1.0.0") == -1
    assert compare_versions("~1.2.3", "^1.2.3") == 0
    # unparseable sorts below parseable
    assert compare_versions("latest", "0.0.1") == -1


def test_satisfies_range():
    assert satisfies_range("18.2.0", "^18.0.0")
    assert not satisfies_range("17.0.2", "^18.0.0")
    assert satisfies_range("1.2.9", "~1.2.3")
    assert not satisfies_range("1.3.0", "~1.2.3")
    assert satisfies_range("3.0.0", ">=2.0.0")
    assert satisfies_range("0.2.5", "^0.2.3")
    assert not satisfies_range("0.3.0", "^0.2.3")
    assert satisfies_range("1.0.0", "1.0.0")


def test_complex_ranges_never_satisfy():
    assert is_complex_range("^17.0.0 || ^18.0.0")
    assert is_complex_range("1.0.0 - 2.0.0")
    assert not satisfies_range("18.2.0", "^17.0.0 || ^18.0.0")

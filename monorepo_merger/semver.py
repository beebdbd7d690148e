"""
Version specifier classification and comparison for npm-style manifests.

Only the precision needed to classify conflicts is provided: ranges are
approximated by their first (lower) bound and pre-release tags compare
lexically.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import NamedTuple, Optional

SEMVER = "semver"
NON_SEMVER = "non-semver"
WILDCARD = "wildcard"
UNPARSED = "unparsed"

NON_SEMVER_PATTERNS = (
    re.compile(r"^git\+"),
    re.compile(r"^github:"),
    re.compile(r"^gitlab:"),
    re.compile(r"^bitbucket:"),
    re.compile(r"^file:"),
    re.compile(r"^link:"),
    re.compile(r"^npm:"),
    re.compile(r"^https?://"),
    re.compile(r"^workspace:"),
)
GIT_PATTERN = re.compile(r"^(git\+|github:|gitlab:|bitbucket:)")
FILE_PATTERN = re.compile(r"^(file:|link:)")

_WILDCARD_PATTERN = re.compile(r"^(\*|x|\d+\.x|\d+\.\d+\.x)$")
_OPERATOR_PREFIX = re.compile(r"^[\^~=><]+")
_SEMVER_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)(?:-([a-zA-Z0-9.+-]+))?")


class ParsedVersion(NamedTuple):
    major: int
    minor: int
    patch: int
    prerelease: Optional[str] = None

    def release(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class VersionSpecifier:
    """A raw specifier together with its classification."""

    raw: str
    kind: str
    parsed: Optional[ParsedVersion] = None

    @classmethod
    def of(cls, raw: str) -> "VersionSpecifier":
        return cls(raw=raw, kind=classify(raw), parsed=parse_semver(raw))


def is_non_semver(version: str) -> bool:
    """True for git/file/link/npm-alias/URL/workspace references."""
    return any(pattern.search(version) for pattern in NON_SEMVER_PATTERNS)


def is_wildcard(version: str) -> bool:
    return bool(_WILDCARD_PATTERN.match(version.strip()))


def parse_semver(version: str) -> Optional[ParsedVersion]:
    """Parse the first dotted triple of a specifier after stripping range operators."""
    if is_non_semver(version) or is_wildcard(version):
        return None

    cleaned = _OPERATOR_PREFIX.sub("", version.strip())
    parts = cleaned.split()
    if not parts:
        return None

    match = _SEMVER_PATTERN.match(parts[0])
    if not match:
        return None
    return ParsedVersion(
        major=int(match.group(1)),
        minor=int(match.group(2)),
        patch=int(match.group(3)),
        prerelease=match.group(4),
    )


def classify(version: str) -> str:
    if is_non_semver(version):
        return NON_SEMVER
    if is_wildcard(version):
        return WILDCARD
    if parse_semver(version) is not None:
        return SEMVER
    return UNPARSED


def compare_versions(a: str, b: str) -> int:
    """Compare two specifiers, returning -1, 0 or 1.

    Unparseable specifiers sort below any parseable one. When neither side
    parses the comparison degrades to plain string ordering.
    """
    parsed_a = parse_semver(a)
    parsed_b = parse_semver(b)

    if parsed_a is None and parsed_b is None:
        return _cmp(a, b)
    if parsed_a is None:
        return -1
    if parsed_b is None:
        return 1

    release = _cmp(parsed_a[:3], parsed_b[:3])
    if release:
        return release

    if parsed_a.prerelease and not parsed_b.prerelease:
        return -1
    if not parsed_a.prerelease and parsed_b.prerelease:
        return 1
    if parsed_a.prerelease and parsed_b.prerelease:
        return _cmp(parsed_a.prerelease, parsed_b.prerelease)
    return 0


def is_complex_range(version_range: str) -> bool:
    return "||" in version_range or " - " in version_range


def satisfies_range(version: str, version_range: str) -> bool:
    """Basic range check supporting exact, ``^``, ``~`` and ``>=`` forms.

    Complex ranges (``||`` or hyphen ranges) always return False.
    """
    trimmed = version_range.strip()
    if is_complex_range(trimmed):
        return False

    parsed = parse_semver(version)
    bound = parse_semver(trimmed)
    if parsed is None or bound is None:
        return False

    if re.match(r"^\d+\.\d+\.\d+", trimmed):
        return parsed[:3] == bound[:3]

    if trimmed.startswith("^"):
        if bound.major > 0:
            return parsed.major == bound.major and parsed[1:3] >= bound[1:3]
        return parsed.major == 0 and parsed.minor == bound.minor and parsed.patch >= bound.patch

    if trimmed.startswith("~"):
        return parsed[:2] == bound[:2] and parsed.patch >= bound.patch

    if trimmed.startswith(">="):
        return parsed[:3] >= bound[:3]

    return False


def _cmp(a, b) -> int:
    return (a > b) - (a < b)

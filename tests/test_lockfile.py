import json
from pathlib import Path

from monorepo_merger.lockfile import parse_lockfile, parse_package_lock, parse_pnpm_lock, parse_yarn_lock


PNPM_LOCK = """\
lockfileVersion: '6.0'
importers:
  .:
    dependencies:
      react:
        specifier: ^18.2.0
        version: 18.2.0
      react-dom:
        specifier: ^18.2.0
        version: 18.2.0(react@18.2.0)
    devDependencies:
      typescript:
        specifier: ^5.0.0
        version: 5.3.3
"""

YARN_CLASSIC_LOCK = """\
# THIS IS AN AUTOGENERATED FILE. DO NOT EDIT THIS FILE DIRECTLY.
# yarn lockfile v1


lodash@^4.17.15:
  version "4.17.21"
  resolved "https://registry.yarnpkg.com/lodash/-/lodash-4.17.21.tgz"

"@babel/core@^7.0.0":
  version "7.23.0"
"""

YARN_BERRY_LOCK = """\
__metadata:
  version: 6

"lodash@npm:^4.17.21":
  version: 4.17.21
  resolution: "lodash@npm:4.17.21"

"web@workspace:.":
  version: 0.0.0-use.local
"""


def test_pnpm_importer_versions_strip_peer_suffix():
    resolved = parse_pnpm_lock(PNPM_LOCK)
    assert resolved == {"react": "18.2.0", "react-dom": "18.2.0", "typescript": "5.3.3"}


def test_yarn_classic_and_berry():
    assert parse_yarn_lock(YARN_CLASSIC_LOCK) == {"lodash": "4.17.21", "@babel/core": "7.23.0"}
    assert parse_yarn_lock(YARN_BERRY_LOCK) == {"lodash": "4.17.21"}


def test_package_lock_reads_only_direct_node_modules():
    content = json.dumps({
        "lockfileVersion": 3,
        "packages": {
            "": {"name": "demo"},
            "node_modules/express": {"version": "4.18.2"},
            "node_modules/express/node_modules/debug": {"version": "2.6.9"},
        },
    })
    assert parse_package_lock(content) == {"express": "4.18.2"}
    assert parse_package_lock("not json") == {}


def test_parse_lockfile_detects_format(tmp_path: Path):
    (tmp_path / "pnpm-lock.yaml").write_text(PNPM_LOCK, encoding="utf-8")
    resolution = parse_lockfile(tmp_path, "web")
    assert resolution.package_manager == "pnpm"
    assert resolution.repo_name == "web"
    assert resolution.resolved_versions["react"] == "18.2.0"


def test_unreadable_lockfile_yields_nothing(tmp_path: Path):
    (tmp_path / "pnpm-lock.yaml").write_text("key: [unclosed", encoding="utf-8")
    assert parse_lockfile(tmp_path, "web") is None
    assert parse_lockfile(tmp_path / "missing", "web") is None

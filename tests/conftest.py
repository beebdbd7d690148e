import json
from pathlib import Path

import pytest


def write_repo(base: Path, name: str, manifest=None, files=None) -> Path:
    """Create a repository directory with a package.json and extra files."""
    repo = base / name
    repo.mkdir(parents=True, exist_ok=True)
    if manifest is not None:
        (repo / "package.json").write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    for relative, content in (files or {}).items():
        target = repo / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return repo


@pytest.fixture
def make_repo(tmp_path: Path):
    def factory(name, manifest=None, files=None):
        return write_repo(tmp_path / "repos", name, manifest, files)
    return factory


@pytest.fixture
def two_repos(make_repo):
    web = make_repo(
        "web",
        {
            "name": "web",
            "version": "1.0.0",
            "scripts": {"build": "tsc", "test": "jest"},
            "dependencies": {"lodash": "^4.17.21", "react": "^18.2.0"},
        },
        {".gitignore": "node_modules\ndist\n", "README.md": "# web\n", "src/index.js": "export {}\n"},
    )
    api = make_repo(
        "api",
        {
            "name": "api",
            "version": "2.0.0",
            "scripts": {"build": "tsc", "start": "node index.js"},
            "dependencies": {"lodash": "^4.17.15", "express": "^4.18.0"},
            "devDependencies": {"jest": "^29.0.0"},
        },
        {".gitignore": "node_modules\n.env\n", "README.md": "# api\n", "index.js": "module.exports = {}\n"},
    )
    return web, api

"""Shared fixtures for ecoflow tests."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from ecoflow.dag.models import PackageRecord
from ecoflow.settings import reset_settings


def git(repo: Path, *args: str) -> str:
    """Run git in ``repo`` and return stripped stdout."""
    result = subprocess.run(
        ["git", *args],
        cwd=str(repo),
        capture_output=True,
        text=True,
    )
    return result.stdout.strip()


def init_repo(repo: Path) -> Path:
    """Turn ``repo`` into a git repository on ``main`` with one commit."""
    repo.mkdir(parents=True, exist_ok=True)
    git(repo, "init")
    git(repo, "config", "user.email", "test@test.com")
    git(repo, "config", "user.name", "Test")
    git(repo, "config", "commit.gpgsign", "false")

    readme = repo / "README.md"
    if not readme.exists():
        readme.write_text("# Test\n")
    git(repo, "add", ".")
    git(repo, "commit", "-m", "initial commit")
    git(repo, "branch", "-M", "main")
    return repo


def write_package_json(directory: Path, name: str, deps: dict | None = None) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    data = {"name": name, "version": "0.0.1", "dependencies": deps or {}}
    (directory / "package.json").write_text(json.dumps(data, indent=2))
    return directory


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Never let a cached settings object leak between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def temp_git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository with an initial commit on main."""
    return init_repo(tmp_path / "test-repo")


@pytest.fixture
def temp_git_repo_dirty(temp_git_repo: Path) -> Path:
    """Create a temp git repo with an untracked file."""
    (temp_git_repo / "dirty.txt").write_text("uncommitted\n")
    return temp_git_repo


@pytest.fixture
def abc_packages(tmp_path: Path) -> dict[str, PackageRecord]:
    """A <- B, A <- C, B <- C."""
    return {
        "A": PackageRecord(name="A", repo_path=tmp_path / "A"),
        "B": PackageRecord(name="B", repo_path=tmp_path / "B", dependencies=["A"]),
        "C": PackageRecord(name="C", repo_path=tmp_path / "C", dependencies=["A", "B"]),
    }


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A workspace root with three git-backed packages: core <- util <- app."""
    root = tmp_path / "git"
    owner_ref = "github:ecosystem/{}#main"

    core = write_package_json(root / "core", "@ecosystem/core")
    util = write_package_json(
        root / "util",
        "@ecosystem/util",
        {"@ecosystem/core": owner_ref.format("core"), "lodash": "^4.17.21"},
    )
    app = write_package_json(
        root / "app",
        "@ecosystem/app",
        {
            "@ecosystem/core": owner_ref.format("core"),
            "@ecosystem/util": owner_ref.format("util"),
        },
    )
    for repo in (core, util, app):
        init_repo(repo)
    return root


@pytest.fixture
def run_git():
    """The ``git(repo, *args)`` helper, for asserting on repository state."""
    return git

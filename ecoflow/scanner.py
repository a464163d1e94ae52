"""Ecosystem package scanner.

Walks a workspace root looking for ``package.json`` directories and turns
each named package into a ``PackageRecord``. Read-only: nothing on disk or
in git is modified. Problems with individual directories are collected as
warnings so one broken checkout never hides the rest of the workspace.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ecoflow.dag.models import PackageRecord
from ecoflow.git_ops import GitClient, GitCommandError
from ecoflow.git_ref import is_ecosystem_ref
from ecoflow.settings import DEFAULT_OWNER

logger = logging.getLogger(__name__)

SKIP_DIRS = frozenset({"node_modules", "dist", ".git", ".vscode", "coverage"})


@dataclass
class ScanWarning:
    """A directory that could not be scanned cleanly."""

    path: Path
    issue: str


@dataclass
class ScanResult:
    """Packages found under a root, keyed by package name."""

    root: Path
    packages: dict[str, PackageRecord] = field(default_factory=dict)
    warnings: list[ScanWarning] = field(default_factory=list)


def read_package_json(directory: Path) -> Optional[dict]:
    """Parse ``directory/package.json``; None if absent or unreadable."""
    path = directory / "package.json"
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def ecosystem_dependencies(package_json: dict, owner: str = DEFAULT_OWNER) -> list[str]:
    """Names of dependencies whose version is a git ref owned by ``owner``.

    Both ``dependencies`` and ``devDependencies`` are considered.
    """
    deps: list[str] = []
    for section in ("dependencies", "devDependencies"):
        for name, version in (package_json.get(section) or {}).items():
            if name in deps or not isinstance(version, str):
                continue
            if is_ecosystem_ref(version, owner):
                deps.append(name)
    return deps


class PackageScanner:
    """Scans a workspace directory tree for packages."""

    def __init__(
        self,
        owner: str = DEFAULT_OWNER,
        max_depth: int = 2,
        git: Optional[GitClient] = None,
    ):
        self.owner = owner
        self.max_depth = max_depth
        self.git = git or GitClient()

    async def scan(self, root: Path) -> ScanResult:
        result = ScanResult(root=root)
        if not root.is_dir():
            result.warnings.append(ScanWarning(root, "Root directory does not exist"))
            return result

        await self._scan_directory(root, result, depth=0)
        logger.info(
            f"Scanned {root}: {len(result.packages)} package(s), "
            f"{len(result.warnings)} warning(s)"
        )
        return result

    async def _scan_directory(self, directory: Path, result: ScanResult, depth: int) -> None:
        if depth > self.max_depth:
            return

        if (directory / "package.json").is_file():
            await self._add_package(directory, result)

        try:
            entries = sorted(p for p in directory.iterdir() if p.is_dir())
        except OSError as e:
            result.warnings.append(ScanWarning(directory, f"Failed to scan directory: {e}"))
            return

        for entry in entries:
            if entry.name in SKIP_DIRS:
                continue
            await self._scan_directory(entry, result, depth + 1)

    async def _add_package(self, directory: Path, result: ScanResult) -> None:
        data = read_package_json(directory)
        if data is None:
            result.warnings.append(ScanWarning(directory, "Unreadable package.json"))
            return

        name = data.get("name")
        if not name:
            result.warnings.append(ScanWarning(directory, "Package has no name in package.json"))
            return

        if name in result.packages:
            logger.warning(
                f"Duplicate package '{name}' at {directory}; "
                f"keeping {result.packages[name].repo_path}"
            )
            result.warnings.append(ScanWarning(directory, f"Duplicate package name '{name}'"))
            return

        record = PackageRecord(
            name=name,
            repo_path=directory.resolve(),
            dependencies=ecosystem_dependencies(data, self.owner),
        )
        try:
            record.current_branch = await self.git.current_branch(directory)
            record.git_remote = await self.git.remote_url(directory)
        except GitCommandError as e:
            result.warnings.append(ScanWarning(directory, f"Failed to get git info: {e}"))
            record.current_branch = None
            record.git_remote = None

        result.packages[name] = record


async def scan_packages(
    root: Path,
    max_depth: int = 2,
    owner: str = DEFAULT_OWNER,
    git: Optional[GitClient] = None,
) -> ScanResult:
    """Scan ``root`` for ecosystem packages.

    Args:
        root: Workspace directory to walk.
        max_depth: How many directory levels below ``root`` to descend.
        owner: Git owner whose refs mark a dependency as in-ecosystem.
        git: Git adapter, mainly for tests.

    Returns:
        ScanResult with one PackageRecord per named package and a warning
        for every directory that could not be read.
    """
    scanner = PackageScanner(owner=owner, max_depth=max_depth, git=git)
    return await scanner.scan(root.expanduser())

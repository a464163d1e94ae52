"""External process adapter.

Every third-party tool (git, pnpm/npm) is run through ``execute_command``,
which never raises for a tool failure: the outcome is returned as a
``ShellResult`` value and callers decide what a non-zero exit means.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124

LOCKFILES = ("package-lock.json", "pnpm-lock.yaml", "yarn.lock")
BUILD_ARTIFACTS = ("node_modules", "dist")


@dataclass
class ShellResult:
    """Outcome of one external command."""

    exit_code: int
    stdout: str
    stderr: str
    success: bool
    duration: float = 0.0

    @property
    def output(self) -> str:
        """Combined stdout/stderr, trimmed, for error messages."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


async def execute_command(
    argv: Sequence[str],
    cwd: Optional[Path] = None,
    timeout: Optional[float] = 300.0,
) -> ShellResult:
    """Run ``argv`` asynchronously and capture its output.

    Args:
        argv: Program and arguments; no shell is involved.
        cwd: Working directory, or None for the current one.
        timeout: Seconds before the process is killed, or None to wait forever.

    Returns:
        ShellResult. A missing executable yields exit code 127, a timeout
        yields exit code 124.
    """
    cmd = list(argv)
    start = time.monotonic()
    logger.debug(f"$ {' '.join(cmd)} (cwd={cwd or '.'})")

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        logger.warning(f"Command not found: {cmd[0]}")
        return ShellResult(
            exit_code=EXIT_NOT_FOUND,
            stdout="",
            stderr=f"command not found: {cmd[0]}",
            success=False,
            duration=time.monotonic() - start,
        )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.communicate()
        logger.warning(f"Command timed out after {timeout}s: {' '.join(cmd)}")
        return ShellResult(
            exit_code=EXIT_TIMEOUT,
            stdout="",
            stderr=f"command timed out after {timeout}s",
            success=False,
            duration=time.monotonic() - start,
        )

    exit_code = process.returncode if process.returncode is not None else 1
    return ShellResult(
        exit_code=exit_code,
        stdout=stdout_bytes.decode("utf-8", errors="replace") if stdout_bytes else "",
        stderr=stderr_bytes.decode("utf-8", errors="replace") if stderr_bytes else "",
        success=exit_code == 0,
        duration=time.monotonic() - start,
    )


class PackageManager:
    """Install and build a package with pnpm (or npm/yarn)."""

    def __init__(self, name: str = "pnpm", timeout: Optional[float] = 300.0):
        self.name = name
        self.timeout = timeout

    async def install(self, cwd: Path) -> ShellResult:
        return await execute_command([self.name, "install"], cwd=cwd, timeout=self.timeout)

    async def build(self, cwd: Path) -> ShellResult:
        return await execute_command(
            [self.name, "run", "build"], cwd=cwd, timeout=self.timeout
        )


def remove_path(path: Path) -> bool:
    """Delete a file or directory tree. Returns True if something was removed."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False


def clean_package(repo_path: Path) -> list[str]:
    """Remove build artifacts and lockfiles from a package directory.

    Returns:
        Names of the entries that were removed.
    """
    removed: list[str] = []
    for name in BUILD_ARTIFACTS + LOCKFILES:
        if remove_path(repo_path / name):
            removed.append(name)
    return removed

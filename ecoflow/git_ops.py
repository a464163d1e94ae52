"""Git operations for ecosystem repositories, plus branch reconciliation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ecoflow.shell import ShellResult, execute_command

logger = logging.getLogger(__name__)

STAGED_COMMIT_MESSAGE = "WIP: Auto-commit staged changes before branch switch"
ALL_COMMIT_MESSAGE = "WIP: Auto-commit all changes before branch switch"


class GitCommandError(RuntimeError):
    """A git command exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str):
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"git {' '.join(args)} failed: {detail}")


@dataclass
class GitStatus:
    """Snapshot of a working tree, taken fresh on every query."""

    current_branch: str
    has_staged_changes: bool
    has_uncommitted_changes: bool

    @property
    def is_clean(self) -> bool:
        return not self.has_uncommitted_changes


@dataclass
class BranchReconciliation:
    """What ``ensure_branch`` had to do to reach the required branch."""

    switched: bool = False
    commits: list[str] = field(default_factory=list)


class GitClient:
    """Async git adapter. Every call runs against an explicit repository path."""

    def __init__(self, timeout: Optional[float] = 120.0):
        self.timeout = timeout

    async def _run(self, args: list[str], cwd: Path) -> ShellResult:
        return await execute_command(["git"] + args, cwd=cwd, timeout=self.timeout)

    async def _git(self, args: list[str], cwd: Path) -> str:
        """Run a git command and return stripped stdout.

        Raises:
            GitCommandError: If git exits non-zero.
        """
        result = await self._run(args, cwd)
        if not result.success:
            raise GitCommandError(args, result.exit_code, result.stderr)
        return result.stdout.strip()

    async def current_branch(self, repo_path: Path) -> str:
        return await self._git(["rev-parse", "--abbrev-ref", "HEAD"], repo_path)

    async def status(self, repo_path: Path) -> GitStatus:
        """Query branch and working-tree state.

        Staged changes are porcelain entries whose index column is set;
        untracked files count as uncommitted but not staged.
        """
        branch = await self.current_branch(repo_path)
        args = ["status", "--porcelain"]
        result = await self._run(args, repo_path)
        if not result.success:
            raise GitCommandError(args, result.exit_code, result.stderr)
        # stdout is not stripped: the leading index column may be a space
        lines = [line for line in result.stdout.splitlines() if line.strip()]
        staged = any(line[0] not in (" ", "?") for line in lines)
        return GitStatus(
            current_branch=branch,
            has_staged_changes=staged,
            has_uncommitted_changes=bool(lines),
        )

    async def has_changes(self, repo_path: Path) -> bool:
        return not (await self.status(repo_path)).is_clean

    async def remote_url(self, repo_path: Path, remote: str = "origin") -> Optional[str]:
        """Return the URL of ``remote``, or None if it is not configured."""
        result = await self._run(["remote", "get-url", remote], repo_path)
        if not result.success:
            return None
        return result.stdout.strip() or None

    async def stage_all(self, repo_path: Path) -> None:
        await self._git(["add", "-A"], repo_path)

    async def commit(self, repo_path: Path, message: str) -> None:
        logger.info(f"{repo_path.name}: committing: {message[:60]}")
        await self._git(["commit", "-m", message], repo_path)

    async def push(
        self, repo_path: Path, remote: str = "origin", branch: Optional[str] = None
    ) -> None:
        """Push ``branch`` (default: the current branch) to ``remote``."""
        branch = branch or await self.current_branch(repo_path)
        logger.info(f"{repo_path.name}: pushing {branch} to {remote}")
        await self._git(["push", "-u", remote, branch], repo_path)

    async def pull(
        self, repo_path: Path, remote: str = "origin", branch: Optional[str] = None
    ) -> None:
        args = ["pull", remote]
        if branch:
            args.append(branch)
        await self._git(args, repo_path)

    async def checkout(self, repo_path: Path, branch: str) -> None:
        await self._git(["checkout", branch], repo_path)

    async def branch_exists(self, repo_path: Path, branch: str) -> bool:
        """True if ``refs/heads/<branch>`` exists locally."""
        result = await self._run(
            ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], repo_path
        )
        return result.success

    async def clone(self, url: str, target: Path, branch: Optional[str] = None) -> None:
        """Clone ``url`` into ``target``; the parent directory is created if needed.

        Raises:
            GitCommandError: If the clone fails.
        """
        target.parent.mkdir(parents=True, exist_ok=True)
        args = ["clone"]
        if branch:
            args.extend(["--branch", branch])
        args.extend([url, str(target)])
        logger.info(f"Cloning {url} to {target}")
        await self._git(args, target.parent)


async def ensure_branch(
    repo_path: Path,
    required_branch: str,
    git: Optional[GitClient] = None,
) -> BranchReconciliation:
    """Put ``repo_path`` on ``required_branch``, committing stray work first.

    Staged changes are committed on their own before anything else is
    staged, then any remaining changes are committed together, then the
    required branch is checked out. Status is re-queried after each step.

    Args:
        repo_path: Repository working tree.
        required_branch: Branch the repository must be on.
        git: Git adapter; a default ``GitClient`` is used when omitted.

    Returns:
        BranchReconciliation describing the commits and checkout performed.

    Raises:
        GitCommandError: If a commit, add or checkout fails (e.g. the
            required branch does not exist).
    """
    git = git or GitClient()
    outcome = BranchReconciliation()

    status = await git.status(repo_path)
    if status.current_branch == required_branch:
        return outcome

    logger.info(
        f"{repo_path.name}: on '{status.current_branch}', switching to '{required_branch}'"
    )

    if status.has_staged_changes:
        await git.commit(repo_path, STAGED_COMMIT_MESSAGE)
        outcome.commits.append("Committed staged changes")
        status = await git.status(repo_path)

    if status.has_uncommitted_changes:
        await git.stage_all(repo_path)
        await git.commit(repo_path, ALL_COMMIT_MESSAGE)
        outcome.commits.append("Committed all changes")

    await git.checkout(repo_path, required_branch)
    outcome.switched = True
    outcome.commits.append(f"Switched to branch {required_branch}")
    return outcome

"""Tests for the async git adapter and branch reconciliation."""

from __future__ import annotations

from pathlib import Path

import pytest

from ecoflow.git_ops import (
    ALL_COMMIT_MESSAGE,
    STAGED_COMMIT_MESSAGE,
    GitClient,
    GitCommandError,
    ensure_branch,
)


class TestGitClient:
    """Tests for GitClient queries and mutations against real repos."""

    @pytest.mark.asyncio
    async def test_current_branch(self, temp_git_repo: Path) -> None:
        assert await GitClient().current_branch(temp_git_repo) == "main"

    @pytest.mark.asyncio
    async def test_status_clean(self, temp_git_repo: Path) -> None:
        status = await GitClient().status(temp_git_repo)
        assert status.current_branch == "main"
        assert status.is_clean
        assert not status.has_staged_changes

    @pytest.mark.asyncio
    async def test_untracked_file_is_uncommitted_not_staged(self, temp_git_repo_dirty: Path) -> None:
        status = await GitClient().status(temp_git_repo_dirty)
        assert status.has_uncommitted_changes
        assert not status.has_staged_changes

    @pytest.mark.asyncio
    async def test_unstaged_modification_is_not_staged(self, temp_git_repo: Path) -> None:
        (temp_git_repo / "README.md").write_text("# Changed\n")
        status = await GitClient().status(temp_git_repo)
        assert status.has_uncommitted_changes
        assert not status.has_staged_changes

    @pytest.mark.asyncio
    async def test_staged_file_detected(self, temp_git_repo: Path, run_git) -> None:
        (temp_git_repo / "new.txt").write_text("x\n")
        run_git(temp_git_repo, "add", "new.txt")
        status = await GitClient().status(temp_git_repo)
        assert status.has_staged_changes

    @pytest.mark.asyncio
    async def test_remote_url_missing_returns_none(self, temp_git_repo: Path) -> None:
        assert await GitClient().remote_url(temp_git_repo) is None

    @pytest.mark.asyncio
    async def test_remote_url(self, temp_git_repo: Path, run_git) -> None:
        run_git(temp_git_repo, "remote", "add", "origin", "git@github.com:ecosystem/core.git")
        assert await GitClient().remote_url(temp_git_repo) == "git@github.com:ecosystem/core.git"

    @pytest.mark.asyncio
    async def test_branch_exists(self, temp_git_repo: Path) -> None:
        git = GitClient()
        assert await git.branch_exists(temp_git_repo, "main")
        assert not await git.branch_exists(temp_git_repo, "nope")

    @pytest.mark.asyncio
    async def test_current_branch_outside_repo_raises(self, tmp_path: Path) -> None:
        with pytest.raises(GitCommandError) as exc_info:
            await GitClient().current_branch(tmp_path)
        assert exc_info.value.returncode != 0
        assert exc_info.value.args_list[0] == "rev-parse"

    @pytest.mark.asyncio
    async def test_commit_and_has_changes(self, temp_git_repo_dirty: Path, run_git) -> None:
        git = GitClient()
        assert await git.has_changes(temp_git_repo_dirty)
        await git.stage_all(temp_git_repo_dirty)
        await git.commit(temp_git_repo_dirty, "add dirty file")
        assert not await git.has_changes(temp_git_repo_dirty)
        assert run_git(temp_git_repo_dirty, "log", "-1", "--format=%s") == "add dirty file"

    @pytest.mark.asyncio
    async def test_clone_and_push(self, temp_git_repo: Path, tmp_path: Path, run_git) -> None:
        bare = tmp_path / "remote.git"
        run_git(tmp_path, "clone", "--bare", str(temp_git_repo), str(bare))

        git = GitClient()
        target = tmp_path / "checkouts" / "core"
        await git.clone(str(bare), target, branch="main")
        assert (target / "README.md").exists()

        run_git(target, "config", "user.email", "test@test.com")
        run_git(target, "config", "user.name", "Test")
        (target / "change.txt").write_text("y\n")
        await git.stage_all(target)
        await git.commit(target, "change")
        await git.push(target)

        assert run_git(bare, "log", "-1", "--format=%s", "main") == "change"

    @pytest.mark.asyncio
    async def test_clone_failure_raises(self, tmp_path: Path) -> None:
        with pytest.raises(GitCommandError):
            await GitClient().clone(str(tmp_path / "missing.git"), tmp_path / "out")


class TestEnsureBranch:
    """Tests for the branch reconciliation protocol."""

    @pytest.mark.asyncio
    async def test_already_on_branch_is_noop(self, temp_git_repo_dirty: Path, run_git) -> None:
        before = run_git(temp_git_repo_dirty, "rev-parse", "HEAD")
        outcome = await ensure_branch(temp_git_repo_dirty, "main")
        assert outcome.switched is False
        assert outcome.commits == []
        assert run_git(temp_git_repo_dirty, "rev-parse", "HEAD") == before
        assert (temp_git_repo_dirty / "dirty.txt").exists()

    @pytest.mark.asyncio
    async def test_clean_tree_just_switches(self, temp_git_repo: Path, run_git) -> None:
        run_git(temp_git_repo, "checkout", "-b", "feature")
        outcome = await ensure_branch(temp_git_repo, "main")
        assert outcome.switched is True
        assert outcome.commits == ["Switched to branch main"]
        assert run_git(temp_git_repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"

    @pytest.mark.asyncio
    async def test_staged_and_unstaged_changes_make_two_commits(
        self, temp_git_repo: Path, run_git
    ) -> None:
        run_git(temp_git_repo, "checkout", "-b", "feature")
        (temp_git_repo / "staged.txt").write_text("staged\n")
        run_git(temp_git_repo, "add", "staged.txt")
        (temp_git_repo / "README.md").write_text("# Unstaged edit\n")

        outcome = await ensure_branch(temp_git_repo, "main")

        assert outcome.switched is True
        assert outcome.commits == [
            "Committed staged changes",
            "Committed all changes",
            "Switched to branch main",
        ]
        assert run_git(temp_git_repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"
        assert run_git(temp_git_repo, "rev-list", "--count", "main..feature") == "2"
        subjects = run_git(temp_git_repo, "log", "--format=%s", "-2", "feature").splitlines()
        assert subjects == [ALL_COMMIT_MESSAGE, STAGED_COMMIT_MESSAGE]
        # The staged commit holds only the staged file.
        first = run_git(temp_git_repo, "show", "--name-only", "--format=", "feature~1")
        assert first.splitlines() == ["staged.txt"]

    @pytest.mark.asyncio
    async def test_untracked_only_makes_one_commit(self, temp_git_repo: Path, run_git) -> None:
        run_git(temp_git_repo, "checkout", "-b", "feature")
        (temp_git_repo / "untracked.txt").write_text("u\n")

        outcome = await ensure_branch(temp_git_repo, "main")

        assert outcome.commits == ["Committed all changes", "Switched to branch main"]
        assert run_git(temp_git_repo, "rev-list", "--count", "main..feature") == "1"

    @pytest.mark.asyncio
    async def test_missing_target_branch_raises(self, temp_git_repo: Path) -> None:
        with pytest.raises(GitCommandError):
            await ensure_branch(temp_git_repo, "does-not-exist")

"""Tests for git worktree isolation.

All tests except the non-repository checks run real git.
"""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest
from filelock import Timeout

from agentloop.core.workspace import (
    DIFF_UNAVAILABLE,
    NO_CHANGES,
    NO_CHANGES_FROM_BASE,
    IsolatedWorkspace,
    WorktreeError,
    WorktreeInfo,
)


def git(cwd: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    ).stdout.strip()


class TestNotARepository:
    def test_create_raises(self, tmp_path: Path):
        with pytest.raises(WorktreeError, match="Not a git repository"):
            IsolatedWorkspace(tmp_path).create()

    def test_cleanup_raises(self, tmp_path: Path):
        with pytest.raises(WorktreeError, match="Not a git repository"):
            IsolatedWorkspace(tmp_path).cleanup()

    def test_get_diff_never_raises(self, tmp_path: Path):
        assert IsolatedWorkspace(tmp_path).get_diff(tmp_path) == DIFF_UNAVAILABLE

    def test_changed_files_empty(self, tmp_path: Path):
        assert IsolatedWorkspace(tmp_path).get_changed_files(tmp_path) == []


@pytest.mark.git
class TestCreate:
    def test_creates_worktree_on_new_branch(self, repo_with_git: Path, worktree_root: Path):
        base = git(repo_with_git, "rev-parse", "--abbrev-ref", "HEAD")
        info = IsolatedWorkspace(repo_with_git, worktree_root).create()

        assert info.path.exists()
        assert info.path.parent == worktree_root
        assert info.path.name.startswith(f"agentloop-{repo_with_git.name}-")
        assert info.branch.startswith("agentloop/run-")
        assert len(info.branch.removeprefix("agentloop/run-")) == 8
        assert info.base_branch == base
        assert git(info.path, "rev-parse", "--abbrev-ref", "HEAD") == info.branch
        assert (info.path / "app.py").exists()

    def test_user_checkout_untouched(self, repo_with_git: Path, worktree_root: Path):
        base = git(repo_with_git, "rev-parse", "--abbrev-ref", "HEAD")
        IsolatedWorkspace(repo_with_git, worktree_root).create()
        assert git(repo_with_git, "rev-parse", "--abbrev-ref", "HEAD") == base
        assert git(repo_with_git, "status", "--porcelain") == ""

    def test_unique_per_run(self, repo_with_git: Path, worktree_root: Path):
        workspace = IsolatedWorkspace(repo_with_git, worktree_root)
        first, second = workspace.create(), workspace.create()
        assert first.branch != second.branch
        assert first.path != second.path

    def test_detached_head_uses_sha(self, repo_with_git: Path, worktree_root: Path):
        sha = git(repo_with_git, "rev-parse", "HEAD")
        git(repo_with_git, "checkout", "--detach")
        info = IsolatedWorkspace(repo_with_git, worktree_root).create()
        assert info.base_branch == sha


@pytest.mark.git
class TestSnapshotCommit:
    def test_no_changes_skips_commit(self, repo_with_git: Path, worktree_root: Path):
        workspace = IsolatedWorkspace(repo_with_git, worktree_root)
        info = workspace.create()
        before = git(info.path, "rev-parse", "HEAD")

        assert workspace.snapshot_commit(info.path, "agentloop: noop (iteration 1)") is False
        assert git(info.path, "rev-parse", "HEAD") == before

    def test_commits_all_changes(self, repo_with_git: Path, worktree_root: Path):
        workspace = IsolatedWorkspace(repo_with_git, worktree_root)
        info = workspace.create()
        (info.path / "new.txt").write_text("new\n")
        (info.path / "app.py").write_text("def main():\n    return 2\n")

        assert workspace.snapshot_commit(info.path, "agentloop: build (iteration 1)") is True
        assert git(info.path, "log", "-1", "--format=%s") == "agentloop: build (iteration 1)"
        assert git(info.path, "status", "--porcelain") == ""
        # Commit landed on the run branch only
        assert not (repo_with_git / "new.txt").exists()


@pytest.mark.git
class TestDiff:
    def test_cumulative_from_base(self, repo_with_git: Path, worktree_root: Path):
        workspace = IsolatedWorkspace(repo_with_git, worktree_root)
        info = workspace.create()

        assert workspace.get_diff(info.path, info.base_branch) == NO_CHANGES_FROM_BASE

        (info.path / "one.txt").write_text("first\n")
        workspace.snapshot_commit(info.path, "agentloop: one (iteration 1)")
        (info.path / "two.txt").write_text("second\n")
        workspace.snapshot_commit(info.path, "agentloop: two (iteration 1)")

        diff = workspace.get_diff(info.path, info.base_branch)
        assert "one.txt" in diff
        assert "two.txt" in diff
        assert workspace.get_changed_files(info.path, info.base_branch) == ["one.txt", "two.txt"]
        # Committed work is not an uncommitted change
        assert workspace.get_changed_files(info.path) == []

    def test_working_tree_diff(self, repo_with_git: Path):
        workspace = IsolatedWorkspace(repo_with_git)
        assert workspace.get_diff(repo_with_git) == NO_CHANGES

        (repo_with_git / "app.py").write_text("def main():\n    return 42\n")
        diff = workspace.get_diff(repo_with_git)
        assert "return 42" in diff
        assert workspace.get_changed_files(repo_with_git) == ["app.py"]

    def test_staged_changes_included(self, repo_with_git: Path):
        (repo_with_git / "README.md").write_text("# Changed\n")
        git(repo_with_git, "add", "README.md")
        assert "# Changed" in IsolatedWorkspace(repo_with_git).get_diff(repo_with_git)


@pytest.mark.git
class TestListAndCleanup:
    def test_list_only_agentloop_branches(self, repo_with_git: Path, worktree_root: Path):
        workspace = IsolatedWorkspace(repo_with_git, worktree_root)
        info = workspace.create()
        git(repo_with_git, "worktree", "add", "-b", "feature/other", str(worktree_root / "other"))

        listed = workspace.list()
        assert [w.branch for w in listed] == [info.branch]
        assert listed[0].path.resolve() == info.path.resolve()

    def test_remove_deletes_worktree_and_branch(self, repo_with_git: Path, worktree_root: Path):
        workspace = IsolatedWorkspace(repo_with_git, worktree_root)
        info = workspace.create()

        result = workspace.remove(info)
        assert result.removed
        assert result.error is None
        assert not info.path.exists()
        assert git(repo_with_git, "branch", "--list", info.branch) == ""

    def test_remove_missing_worktree_reports_error(
        self, repo_with_git: Path, worktree_root: Path
    ):
        workspace = IsolatedWorkspace(repo_with_git, worktree_root)
        ghost = WorktreeInfo(path=worktree_root / "ghost", branch="agentloop/run-ghost", base_branch="")
        result = workspace.remove(ghost)
        assert not result.removed
        assert result.error

    def test_cleanup_removes_all(self, repo_with_git: Path, worktree_root: Path):
        workspace = IsolatedWorkspace(repo_with_git, worktree_root)
        workspace.create()
        workspace.create()

        results = workspace.cleanup()
        assert len(results) == 2
        assert all(r.removed for r in results)
        assert workspace.list() == []

    def test_cleanup_nothing_to_do(self, repo_with_git: Path):
        assert IsolatedWorkspace(repo_with_git).cleanup() == []

    def test_cleanup_lock_held_elsewhere(self, repo_with_git: Path, mocker):
        lock = mocker.patch("agentloop.core.workspace.FileLock")
        lock.return_value.__enter__.side_effect = Timeout("agentloop-cleanup.lock")
        with pytest.raises(WorktreeError, match="already running"):
            IsolatedWorkspace(repo_with_git).cleanup()

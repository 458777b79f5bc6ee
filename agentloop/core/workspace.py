"""Git worktree isolation for workflow runs.

A run can execute inside a fresh worktree on its own ``agentloop/`` branch,
located outside the user's checkout. Each step (or parallel batch) is
snapshot-committed on that branch; the worktree is kept after the run so
the result can be reviewed and merged, and is removed only by ``cleanup``.
"""

from __future__ import annotations

import logging
import subprocess
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path

from filelock import FileLock, Timeout

from agentloop.core.errors import AgentLoopError

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "agentloop/"

NO_CHANGES_FROM_BASE = "(no changes from base branch)"
NO_CHANGES = "(no changes detected)"
DIFF_UNAVAILABLE = "(git diff unavailable - not a git repository?)"


class WorktreeError(AgentLoopError):
    """Error during worktree operations."""

    pass


@dataclass
class WorktreeInfo:
    """An isolated checkout created for one run."""

    path: Path
    branch: str
    base_branch: str


@dataclass
class RemovalResult:
    """Outcome of removing one worktree during cleanup."""

    worktree: WorktreeInfo
    removed: bool
    error: str | None = None


class IsolatedWorkspace:
    """Create, snapshot and garbage-collect agentloop worktrees.

    Workflow:
    1. ``create()`` a worktree on a new ``agentloop/run-<id>`` branch
    2. Steps run inside it; ``snapshot_commit()`` after each step or batch
    3. ``get_diff()`` shows the cumulative change from the base reference
    4. ``cleanup()`` later removes every agentloop worktree and branch
    """

    # Timeout for git subprocess calls (seconds)
    # Local git operations should complete quickly, but can hang on
    # corrupted repos or busy filesystems
    GIT_TIMEOUT = 30
    CLEANUP_LOCK_TIMEOUT = 10
    CLEANUP_LOCK_NAME = "agentloop-cleanup.lock"

    def __init__(self, repo_path: str | Path, worktree_root: str | Path | None = None):
        self.repo_path = Path(repo_path).absolute()
        self.worktree_root = Path(worktree_root or tempfile.gettempdir())

    def _git(
        self, args: list[str], cwd: str | Path | None = None
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command, converting a hang into WorktreeError."""
        try:
            return subprocess.run(
                ["git", *args],
                cwd=str(cwd or self.repo_path),
                capture_output=True,
                text=True,
                timeout=self.GIT_TIMEOUT,
            )
        except subprocess.TimeoutExpired:
            raise WorktreeError(f"git {args[0]} timed out after {self.GIT_TIMEOUT}s")
        except OSError as e:
            raise WorktreeError(f"git {args[0]} failed to start: {e}")

    def _validate_git_repo(self) -> None:
        """Ensure we're in a git work tree."""
        result = self._git(["rev-parse", "--is-inside-work-tree"])
        if result.returncode != 0 or result.stdout.strip() != "true":
            raise WorktreeError(
                f"Not a git repository: {self.repo_path}. "
                "--worktree requires a git repo."
            )

    def _get_base_branch(self) -> str:
        """Current branch name, or the commit SHA when HEAD is detached."""
        result = self._git(["rev-parse", "--abbrev-ref", "HEAD"])
        if result.returncode != 0:
            raise WorktreeError(f"Failed to resolve HEAD: {result.stderr.strip()}")
        ref = result.stdout.strip()
        if ref != "HEAD":
            return ref

        result = self._git(["rev-parse", "HEAD"])
        if result.returncode != 0:
            raise WorktreeError(f"Failed to get HEAD: {result.stderr.strip()}")
        return result.stdout.strip()

    def create(self) -> WorktreeInfo:
        """Create a worktree on a fresh branch from the current reference.

        Raises:
            WorktreeError: Not a git repository, or git refused the worktree
        """
        self._validate_git_repo()
        base_branch = self._get_base_branch()

        run_id = uuid.uuid4().hex[:8]
        branch = f"{BRANCH_PREFIX}run-{run_id}"
        path = self.worktree_root / f"agentloop-{self.repo_path.name}-{run_id}"

        result = self._git(["worktree", "add", "-b", branch, str(path)])
        if result.returncode != 0:
            raise WorktreeError(f"Failed to create worktree: {result.stderr.strip()}")

        logger.debug(f"Created worktree {path} on {branch} (base {base_branch})")
        return WorktreeInfo(path=path, branch=branch, base_branch=base_branch)

    def snapshot_commit(self, path: str | Path, message: str) -> bool:
        """Stage and commit everything in ``path``.

        Returns:
            True if a commit was created, False if there was nothing to commit

        Raises:
            WorktreeError: git failed to stage or commit
        """
        result = self._git(["add", "-A"], cwd=path)
        if result.returncode != 0:
            raise WorktreeError(f"git add failed: {result.stderr.strip()}")

        status = self._git(["status", "--porcelain"], cwd=path)
        if status.returncode != 0:
            raise WorktreeError(f"git status failed: {status.stderr.strip()}")
        if not status.stdout.strip():
            return False

        result = self._git(["commit", "-m", message], cwd=path)
        if result.returncode != 0:
            raise WorktreeError(
                f"git commit failed: {result.stderr.strip() or result.stdout.strip()}"
            )
        return True

    def get_diff(self, path: str | Path, base_branch: str | None = None) -> str:
        """Diff text for prompt context. Never raises.

        With ``base_branch`` the diff is cumulative from the base to HEAD.
        Otherwise it is staged plus unstaged changes, falling back to
        ``git diff HEAD``.
        """
        try:
            if base_branch:
                result = self._git(["diff", f"{base_branch}...HEAD"], cwd=path)
                if result.returncode != 0:
                    return DIFF_UNAVAILABLE
                return result.stdout.strip() or NO_CHANGES_FROM_BASE

            staged = self._git(["diff", "--cached"], cwd=path)
            unstaged = self._git(["diff"], cwd=path)
            if staged.returncode != 0 or unstaged.returncode != 0:
                return DIFF_UNAVAILABLE
            combined = "\n".join(
                part for part in (staged.stdout.strip(), unstaged.stdout.strip()) if part
            )
            if combined:
                return combined

            head = self._git(["diff", "HEAD"], cwd=path)
            return head.stdout.strip() or NO_CHANGES
        except WorktreeError as e:
            logger.debug(f"Diff failed in {path}: {e}")
            return DIFF_UNAVAILABLE

    def get_changed_files(self, path: str | Path, base_branch: str | None = None) -> list[str]:
        """Files changed in ``path`` (empty on failure).

        With ``base_branch`` the list covers every commit since the base;
        otherwise it is uncommitted changes against HEAD.
        """
        ref = f"{base_branch}...HEAD" if base_branch else "HEAD"
        try:
            result = self._git(["diff", "--name-only", ref], cwd=path)
        except WorktreeError:
            return []
        if result.returncode != 0:
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]

    def list(self) -> list[WorktreeInfo]:
        """All worktrees on an ``agentloop/`` branch, from any run."""
        result = self._git(["worktree", "list", "--porcelain"])
        if result.returncode != 0:
            raise WorktreeError(f"Failed to list worktrees: {result.stderr.strip()}")

        worktrees: list[WorktreeInfo] = []
        current_path: str | None = None
        for line in result.stdout.splitlines():
            if line.startswith("worktree "):
                current_path = line[len("worktree ") :]
            elif line.startswith("branch ") and current_path:
                branch = line[len("branch ") :].removeprefix("refs/heads/")
                if branch.startswith(BRANCH_PREFIX):
                    # The base is not recorded by git
                    worktrees.append(
                        WorktreeInfo(path=Path(current_path), branch=branch, base_branch="")
                    )
            elif not line.strip():
                current_path = None
        return worktrees

    def remove(self, info: WorktreeInfo) -> RemovalResult:
        """Remove a worktree, then delete its branch on a best-effort basis."""
        try:
            result = self._git(["worktree", "remove", "--force", str(info.path)])
        except WorktreeError as e:
            return RemovalResult(worktree=info, removed=False, error=str(e))
        if result.returncode != 0:
            return RemovalResult(
                worktree=info,
                removed=False,
                error=result.stderr.strip() or "git worktree remove failed",
            )

        try:
            branch = self._git(["branch", "-D", info.branch])
            if branch.returncode != 0:
                logger.debug(f"Branch {info.branch} not deleted: {branch.stderr.strip()}")
        except WorktreeError as e:
            logger.debug(f"Branch {info.branch} not deleted: {e}")
        return RemovalResult(worktree=info, removed=True)

    def _cleanup_lock_path(self) -> Path:
        result = self._git(["rev-parse", "--git-common-dir"])
        if result.returncode != 0:
            raise WorktreeError(f"Not a git repository: {self.repo_path}")
        common_dir = Path(result.stdout.strip())
        if not common_dir.is_absolute():
            common_dir = self.repo_path / common_dir
        return common_dir / self.CLEANUP_LOCK_NAME

    def cleanup(self) -> list[RemovalResult]:
        """Remove every agentloop worktree and branch.

        Serialized across processes by a lock in the git common dir so two
        cleanups never race on the same worktree.

        Raises:
            WorktreeError: Not a git repository, or another cleanup holds
                the lock
        """
        self._validate_git_repo()
        lock = FileLock(str(self._cleanup_lock_path()), timeout=self.CLEANUP_LOCK_TIMEOUT)
        try:
            with lock:
                return [self.remove(info) for info in self.list()]
        except Timeout:
            raise WorktreeError("Another agentloop cleanup is already running")

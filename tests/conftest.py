# conftest.py - Shared pytest fixtures for all tests
"""Shared pytest fixtures for the AgentLoop test suite.

Provides:
- Temporary git repositories (real git, marked tests only)
- Fake tool adapters that record their invocations
- An event sink that collects everything the engine emits
- Helpers for building workflows from plain dicts
"""

from __future__ import annotations

import os
import shutil
import stat
import subprocess
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from agentloop.adapters.base import AgentAdapter
from agentloop.core.config import parse_workflow
from agentloop.core.events import Event, EventType
from agentloop.core.models import AgentConfig, AgentResult, WorkflowConfig

# =============================================================================
# Repository Fixtures
# =============================================================================


def _git(cwd: Path, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)


@pytest.fixture
def repo_with_git(tmp_path: Path) -> Path:
    """Create a temporary git repository with one commit.

    WARNING: Runs actual git commands. Only use for tests marked ``git``.
    """
    if shutil.which("git") is None:
        pytest.skip("Git not available")

    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / "README.md").write_text("# Test Project\n")
    (repo / "app.py").write_text("def main():\n    return 1\n")
    try:
        _git(repo, "init")
        _git(repo, "config", "user.email", "test@example.com")
        _git(repo, "config", "user.name", "Test User")
        _git(repo, "add", ".")
        _git(repo, "commit", "-m", "Initial commit")
    except subprocess.CalledProcessError:
        pytest.skip("Git not available")
    return repo


@pytest.fixture
def worktree_root(tmp_path: Path) -> Path:
    """Directory that receives isolated worktrees instead of the system tmpdir."""
    root = tmp_path / "worktrees"
    root.mkdir()
    return root


# =============================================================================
# Fake Adapters and Sinks
# =============================================================================


Responder = Callable[[str, AgentConfig, Path], AgentResult]


class FakeAdapter(AgentAdapter):
    """In-process adapter returning scripted results.

    ``responses`` is either a list consumed in order (the last entry repeats)
    or a callable ``(prompt, config, cwd) -> AgentResult``.
    """

    def __init__(
        self,
        name: str = "fake",
        responses: list[AgentResult | str] | Responder | None = None,
        available: bool = True,
    ):
        self.name = name
        self.responses = responses if responses is not None else ["ok"]
        self.available = available
        self.prompts: list[str] = []
        self.cwds: list[Path] = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def is_available(self) -> bool:
        return self.available

    def execute(self, prompt: str, config: AgentConfig, cwd: str | Path) -> AgentResult:
        with self._lock:
            index = len(self.prompts)
            self.prompts.append(prompt)
            self.cwds.append(Path(cwd))
        if callable(self.responses):
            return self.responses(prompt, config, Path(cwd))
        response = self.responses[min(index, len(self.responses) - 1)]
        if isinstance(response, AgentResult):
            return response
        return AgentResult(output=response, exit_code=0, duration_ms=5)


def result(output: str, exit_code: int = 0, cost_usd: float | None = None) -> AgentResult:
    return AgentResult(output=output, exit_code=exit_code, duration_ms=5, cost_usd=cost_usd)


class RecordingSink:
    """Collects emitted events for assertions."""

    def __init__(self):
        self.events: list[Event] = []

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[Event]:
        return [e for e in self.events if e.event_type == event_type]

    def states(self) -> list[str]:
        return [e.payload["state"] for e in self.of_type(EventType.STATE_CHANGED)]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def make_workflow() -> Callable[..., WorkflowConfig]:
    """Build a validated workflow from step dicts.

    Agents default to one per tool selector: ``claude`` (claude-code),
    ``codex`` (codex) and ``gemini`` (gemini).
    """

    def _make(steps: list[dict[str, Any]], agents: dict[str, Any] | None = None,
              name: str = "test-workflow") -> WorkflowConfig:
        if agents is None:
            agents = {
                "claude": {"cli": "claude-code"},
                "codex": {"cli": "codex"},
                "gemini": {"cli": "gemini"},
            }
        return parse_workflow({"name": name, "agents": agents, "steps": steps})

    return _make


# =============================================================================
# Fake CLI Executables
# =============================================================================


@pytest.fixture
def fake_bin(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Callable[[str, str], Path]:
    """Install fake executables on PATH.

    Returns a function ``install(name, body)`` writing ``body`` as a ``/bin/sh``
    script. Every script answers ``--version`` before running ``body``.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")

    def install(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text(
            "#!/bin/sh\n"
            'if [ "$1" = "--version" ]; then echo "0.0.0"; exit 0; fi\n'
            f"{body}\n"
        )
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return install

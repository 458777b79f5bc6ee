"""Build the context block appended to an agent prompt.

A step's ``context`` list holds either the ``git:diff`` token or file paths
relative to the effective working directory. Each entry becomes a fenced
section; unreadable files are reported back rather than raised.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from agentloop.core.workspace import IsolatedWorkspace

logger = logging.getLogger(__name__)

GIT_DIFF_TOKEN = "git:diff"


@dataclass
class ContextBlock:
    text: str = ""
    unreadable: list[str] = field(default_factory=list)


def _section(title: str, body: str) -> str:
    return f"\n\n### {title}:\n```\n{body}\n```"


def build_context(
    entries: list[str],
    cwd: str | Path,
    workspace: IsolatedWorkspace,
    base_branch: str | None = None,
) -> ContextBlock:
    """Resolve context entries into prompt text.

    Args:
        entries: ``git:diff`` or file paths
        cwd: Effective working directory (the worktree when isolated)
        workspace: Used for diff computation
        base_branch: When set, diffs are cumulative from this reference
    """
    block = ContextBlock()
    cwd = Path(cwd)
    for entry in entries:
        if entry == GIT_DIFF_TOKEN:
            block.text += _section("Git Diff", workspace.get_diff(cwd, base_branch))
            continue
        try:
            content = (cwd / entry).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug(f"Could not read context {entry}: {e}")
            block.unreadable.append(entry)
            continue
        block.text += _section(entry, content)
    return block

"""Direct shell steps (``run:``) with the same result shape as agents."""

import logging
from pathlib import Path

from agentloop.adapters.base import run_process
from agentloop.core.models import DEFAULT_TIMEOUT_MINUTES, AgentResult

logger = logging.getLogger(__name__)


class ShellRunner:
    """Run a command through ``sh -c`` and capture combined output."""

    def run(
        self,
        command: str,
        cwd: str | Path,
        timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES,
    ) -> AgentResult:
        logger.debug(f"  $ {command[:80]}")
        return run_process(
            ["sh", "-c", command],
            cwd,
            label="Shell command",
            timeout_minutes=timeout_minutes,
            merge_stderr=True,
        )

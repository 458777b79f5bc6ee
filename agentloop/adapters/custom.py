"""Run an arbitrary command template as an agent.

The ``command`` field of the agent config is a shell command template whose
``{{prompt}}`` placeholder is replaced with the single-quoted prompt::

    agents:
      my_agent:
        cli: custom
        command: "aider --yes-always --message {{prompt}}"
"""

import logging
import re
import shlex
from pathlib import Path

from agentloop.adapters.base import AgentAdapter, run_process
from agentloop.core.models import AgentConfig, AgentResult

logger = logging.getLogger(__name__)

_PROMPT_PLACEHOLDER = re.compile(r"\{\{\s*prompt\s*\}\}")


def render_command(command: str, prompt: str) -> str:
    """Substitute the shell-quoted prompt into a command template."""
    quoted = shlex.quote(prompt)
    return _PROMPT_PLACEHOLDER.sub(lambda _match: quoted, command)


class CustomAdapter(AgentAdapter):
    name = "custom"

    def is_available(self) -> bool:
        # The command itself is only validated at execution time
        return True

    def execute(self, prompt: str, config: AgentConfig, cwd: str | Path) -> AgentResult:
        if not config.command:
            return AgentResult(
                output=(
                    'Custom agent requires a "command" field in config, e.g.: '
                    'command: "aider --yes-always --message {{prompt}}"'
                ),
                exit_code=1,
                duration_ms=0,
            )

        resolved = render_command(config.command, prompt)
        logger.debug(f"  -> {resolved[:60]}...")
        return run_process(
            ["sh", "-c", resolved],
            cwd,
            label="Custom command",
            timeout_minutes=config.timeout_minutes,
        )

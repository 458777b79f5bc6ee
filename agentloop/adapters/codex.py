"""OpenAI Codex CLI adapter."""

import logging
from pathlib import Path

from agentloop.adapters.base import AgentAdapter, binary_responds, run_process
from agentloop.core.models import AgentConfig, AgentResult

logger = logging.getLogger(__name__)


def with_system_text(prompt: str, config: AgentConfig) -> str:
    """Prepend role text for CLIs without a system prompt flag."""
    if not config.system:
        return prompt
    return f"{config.system.strip()}\n\n{prompt}"


class CodexAdapter(AgentAdapter):
    name = "codex"
    binary = "codex"

    def is_available(self) -> bool:
        return binary_responds(self.binary)

    def build_args(self, config: AgentConfig) -> list[str]:
        args = [self.binary, "exec"]
        if config.model:
            args.extend(["--model", config.model])
        if config.allow_edits:
            args.append("--full-auto")
        # "-" reads the prompt from stdin
        args.append("-")
        return args

    def execute(self, prompt: str, config: AgentConfig, cwd: str | Path) -> AgentResult:
        args = self.build_args(config)
        logger.debug(f"  -> {' '.join(args)}")
        return run_process(
            args,
            cwd,
            label="Codex",
            timeout_minutes=config.timeout_minutes,
            input_text=with_system_text(prompt, config),
        )

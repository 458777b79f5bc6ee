"""Gemini CLI adapter."""

import logging
from pathlib import Path

from agentloop.adapters.base import AgentAdapter, binary_responds, run_process
from agentloop.adapters.codex import with_system_text
from agentloop.core.models import AgentConfig, AgentResult

logger = logging.getLogger(__name__)


class GeminiAdapter(AgentAdapter):
    name = "gemini"
    binary = "gemini"

    def is_available(self) -> bool:
        return binary_responds(self.binary)

    def build_args(self, config: AgentConfig) -> list[str]:
        args = [self.binary]
        if config.model:
            args.extend(["--model", config.model])
        if config.allow_edits:
            args.append("--yolo")
        return args

    def execute(self, prompt: str, config: AgentConfig, cwd: str | Path) -> AgentResult:
        args = self.build_args(config)
        logger.debug(f"  -> {' '.join(args)}")
        # Gemini reads the prompt from stdin when it is not a TTY
        return run_process(
            args,
            cwd,
            label="Gemini CLI",
            timeout_minutes=config.timeout_minutes,
            input_text=with_system_text(prompt, config),
        )

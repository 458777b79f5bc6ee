"""Claude Code CLI adapter."""

import json
import logging
from pathlib import Path

from agentloop.adapters.base import AgentAdapter, binary_responds, run_process
from agentloop.core.models import AgentConfig, AgentResult

logger = logging.getLogger(__name__)


def _parse_json_output(raw: str) -> tuple[str, float | None]:
    """Extract result text and cost from ``--output-format json`` output.

    Falls back to the raw text when the output is not a JSON object.
    """
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return raw, None
    if not isinstance(parsed, dict):
        return raw, None

    text = parsed.get("result", parsed.get("text"))
    output = text if isinstance(text, str) else raw

    cost = None
    for key in ("cost_usd", "total_cost_usd"):
        value = parsed.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            cost = float(value)
            break
    return output, cost


class ClaudeCodeAdapter(AgentAdapter):
    name = "claude-code"
    binary = "claude"

    def is_available(self) -> bool:
        return binary_responds(self.binary)

    def build_args(self, config: AgentConfig) -> list[str]:
        args = [self.binary, "--print", "--output-format", "json"]
        if config.allow_edits:
            args.append("--dangerously-skip-permissions")
        if config.model:
            args.extend(["--model", config.model])
        if config.system:
            args.extend(["--system-prompt", config.system])
        # Prompt goes via stdin to avoid ARG_MAX limits on large contexts
        args.append("-")
        return args

    def execute(self, prompt: str, config: AgentConfig, cwd: str | Path) -> AgentResult:
        args = self.build_args(config)
        logger.debug(f"  -> {' '.join(args[:4])}...")

        result = run_process(
            args,
            cwd,
            label="Claude Code",
            timeout_minutes=config.timeout_minutes,
            input_text=prompt,
        )
        if result.timed_out:
            return result

        output, cost = _parse_json_output(result.output.strip())
        return result.model_copy(update={"output": output, "cost_usd": cost})

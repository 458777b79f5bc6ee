"""Tool adapters keyed by the ``cli`` selector of an agent definition."""

from agentloop.adapters.base import AdapterError, AgentAdapter, UnknownToolError
from agentloop.adapters.claude_code import ClaudeCodeAdapter
from agentloop.adapters.codex import CodexAdapter
from agentloop.adapters.custom import CustomAdapter
from agentloop.adapters.gemini import GeminiAdapter
from agentloop.adapters.shell import ShellRunner

_custom = CustomAdapter()

ADAPTERS: dict[str, AgentAdapter] = {
    "claude-code": ClaudeCodeAdapter(),
    "codex": CodexAdapter(),
    "gemini": GeminiAdapter(),
    "aider": _custom,
    "custom": _custom,
}


def get_adapter(cli: str, registry: dict[str, AgentAdapter] | None = None) -> AgentAdapter:
    registry = ADAPTERS if registry is None else registry
    adapter = registry.get(cli)
    if adapter is None:
        raise UnknownToolError(
            f'No adapter for CLI "{cli}". Available: {", ".join(registry)}'
        )
    return adapter


def check_adapters(
    clis: list[str],
    registry: dict[str, AgentAdapter] | None = None,
) -> tuple[list[str], list[str]]:
    """Split tool selectors into (available, missing)."""
    registry = ADAPTERS if registry is None else registry
    available: list[str] = []
    missing: list[str] = []
    for cli in clis:
        adapter = registry.get(cli)
        if adapter is not None and adapter.is_available():
            available.append(cli)
        else:
            missing.append(cli)
    return available, missing


__all__ = [
    "ADAPTERS",
    "AdapterError",
    "AgentAdapter",
    "ClaudeCodeAdapter",
    "CodexAdapter",
    "CustomAdapter",
    "GeminiAdapter",
    "ShellRunner",
    "UnknownToolError",
    "check_adapters",
    "get_adapter",
]

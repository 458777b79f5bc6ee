"""AgentLoop - multi-agent orchestration for AI coding CLIs.

Chains coding CLIs (Claude Code, Codex, Gemini, ...) and shell commands into
declarative build -> audit -> fix workflows.
"""

__version__ = "0.1.0"

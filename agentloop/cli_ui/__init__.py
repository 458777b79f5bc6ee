"""Terminal rendering for the agentloop command line."""

from agentloop.cli_ui.console import ConsoleSink

__all__ = ["ConsoleSink"]

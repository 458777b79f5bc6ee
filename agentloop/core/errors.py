"""Base exception for AgentLoop.

Each module defines its own subclasses next to the code that raises them.
"""


class AgentLoopError(Exception):
    """Base class for errors that stop a run before or during execution."""

    pass

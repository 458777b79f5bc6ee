"""Core modules for the AgentLoop orchestrator."""

from agentloop.core.errors import AgentLoopError
from agentloop.core.events import Event, EventType
from agentloop.core.models import (
    AgentConfig,
    AgentResult,
    ExitCodePolicy,
    LoopConfig,
    RunStatus,
    StepConfig,
    StepRecord,
    WorkflowConfig,
)

__all__ = [
    "AgentConfig",
    "AgentLoopError",
    "AgentResult",
    "Event",
    "EventType",
    "ExitCodePolicy",
    "LoopConfig",
    "RunStatus",
    "StepConfig",
    "StepRecord",
    "WorkflowConfig",
]

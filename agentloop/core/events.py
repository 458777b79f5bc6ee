"""Structured run events and the sinks that consume them.

The engine never prints. It emits Events to an injected EventSink; the CLI
installs a rich console sink, library callers get logging by default.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EngineState(str, Enum):
    """Lifecycle states of a workflow run."""

    LOADING = "loading"
    CHECKING_PREREQS = "checking_prereqs"
    DRY_RUN = "dry_run"
    ISOLATING_WORKSPACE = "isolating_workspace"
    ITERATING = "iterating"
    RUNNING_GROUP = "running_group"
    DONE = "done"
    FAILED = "failed"


class EventType(str, Enum):
    """Types of events emitted during a run."""

    STATE_CHANGED = "state_changed"

    # Workflow events
    WORKFLOW_LOADED = "workflow_loaded"
    PREREQS_CHECKED = "prereqs_checked"
    PLAN_STEP = "plan_step"  # Dry run only
    WORKTREE_CREATED = "worktree_created"

    # Iteration events
    ITERATION_STARTED = "iteration_started"
    STEP_SKIPPED = "step_skipped"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"  # Fail-fast stop
    CONTEXT_UNREADABLE = "context_unreadable"

    # Workspace events
    SNAPSHOT_COMMITTED = "snapshot_committed"
    SNAPSHOT_SKIPPED = "snapshot_skipped"
    SNAPSHOT_FAILED = "snapshot_failed"

    # Loop events
    LOOP_CONDITION_MET = "loop_condition_met"
    LOOP_CONDITION_NOT_MET = "loop_condition_not_met"
    ITERATIONS_EXHAUSTED = "iterations_exhausted"

    # Completion events
    RUN_FINISHED = "run_finished"
    REPORT_WRITTEN = "report_written"
    WORKTREE_RETAINED = "worktree_retained"


class Event(BaseModel):
    """Immutable record of something that happened during a run."""

    event_type: EventType
    step: str | None = None
    iteration: int | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utc_now)


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


# Events that describe a problem rather than progress
_WARNING_EVENTS = {
    EventType.CONTEXT_UNREADABLE,
    EventType.SNAPSHOT_FAILED,
    EventType.ITERATIONS_EXHAUSTED,
    EventType.STEP_FAILED,
}


class LoggingSink:
    """Forward events to stdlib logging."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logger

    def emit(self, event: Event) -> None:
        level = logging.WARNING if event.event_type in _WARNING_EVENTS else logging.INFO
        if event.event_type == EventType.STATE_CHANGED:
            level = logging.DEBUG

        parts = [event.event_type.value]
        if event.step:
            parts.append(f"step={event.step}")
        if event.iteration is not None:
            parts.append(f"iteration={event.iteration}")
        for key, value in event.payload.items():
            if key == "output":
                continue
            parts.append(f"{key}={value}")
        self.log.log(level, " ".join(parts))

"""Data models for AgentLoop workflows.

Uses Pydantic for schema-enforced workflow definitions. Definitions are
frozen once loaded; runtime records are plain dataclasses.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Closed set of tool selectors; each maps to an adapter in agentloop.adapters
ToolSelector = Literal["claude-code", "codex", "gemini", "aider", "custom"]
OverflowPolicy = Literal["fail", "pause", "continue"]

DEFAULT_TIMEOUT_MINUTES = 10.0

# Letters, digits, underscore, dot and hyphen; the same set template tokens accept
STEP_NAME_PATTERN = r"^[\w.\-]+$"


class RunStatus(str, Enum):
    """Final status of a workflow run."""

    DRY_RUN = "dry_run"
    COMPLETE = "complete"  # No loop declared, every group ran
    APPROVED = "approved"  # Loop condition met
    MAX_ITERATIONS = "max_iterations"  # Exhausted, on_max=continue
    PAUSED = "paused"  # Exhausted, on_max=pause
    EXHAUSTED = "exhausted"  # Exhausted, on_max=fail
    FAILED = "failed"  # A step failed under the fail-fast contract


class ExitCodePolicy(str, Enum):
    """How the engine reacts to a non-zero step exit code."""

    RECORD = "record"  # Store it; conditions and prompts gate on it
    FAIL_FAST = "fail_fast"  # Stop the run after the group that produced it


# --- Workflow Definition Models ---


class AgentConfig(BaseModel):
    """An external coding CLI the workflow can delegate to."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cli: ToolSelector
    model: str | None = None
    system: str | None = None
    command: str | None = None  # Template for custom/aider, uses {{prompt}}
    allow_edits: bool = Field(default=False, alias="allowEdits")
    timeout: float | None = Field(default=None, gt=0)  # Minutes

    @property
    def timeout_minutes(self) -> float:
        return self.timeout if self.timeout is not None else DEFAULT_TIMEOUT_MINUTES


class LoopConfig(BaseModel):
    """Bounded retry loop attached to a single sequential step."""

    model_config = ConfigDict(frozen=True)

    until: str = Field(..., min_length=1)
    max: int = Field(default=5, ge=1)
    on_max: OverflowPolicy = "fail"


class StepConfig(BaseModel):
    """One unit of work: an agent invocation or a shell command."""

    model_config = ConfigDict(frozen=True)

    # Names appear in template keys such as steps.<name>.output
    name: str = Field(..., pattern=STEP_NAME_PATTERN)
    agent: str | None = None
    prompt: str | None = None
    run: str | None = Field(default=None, min_length=1)
    parallel: bool = False
    context: list[str] = Field(default_factory=list)
    loop: LoopConfig | None = None

    @model_validator(mode="after")
    def check_mode(self) -> "StepConfig":
        """Exactly one of agent+prompt or run; parallel steps cannot loop."""
        if self.run is not None and self.agent is not None:
            raise ValueError(
                'Step cannot have both "run" and "agent" - use one or the other'
            )
        if self.run is None and not (self.agent and self.prompt):
            raise ValueError('Step must have either "agent" + "prompt" or "run"')
        if self.parallel and self.loop:
            raise ValueError(
                'Parallel steps cannot have "loop" - move the loop to a sequential step'
            )
        return self

    @property
    def is_shell(self) -> bool:
        return self.run is not None


class WorkflowConfig(BaseModel):
    """Complete workflow definition."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    agents: dict[str, AgentConfig] = Field(default_factory=dict)
    steps: list[StepConfig] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_references(self) -> "WorkflowConfig":
        """Unique step names, resolvable agents, at most one loop."""
        seen: set[str] = set()
        for i, step in enumerate(self.steps):
            if step.name in seen:
                raise ValueError(f"steps.{i}.name: duplicate step name '{step.name}'")
            seen.add(step.name)

            if step.agent is not None and step.agent not in self.agents:
                raise ValueError(
                    f"steps.{i}.agent: agent '{step.agent}' is not defined. "
                    f"Available: {', '.join(sorted(self.agents)) or '(none)'}"
                )

        loops = [step.name for step in self.steps if step.loop]
        if len(loops) > 1:
            raise ValueError(
                f"Only one step may declare a loop, found {len(loops)}: {', '.join(loops)}"
            )
        return self

    @property
    def loop_step(self) -> StepConfig | None:
        for step in self.steps:
            if step.loop:
                return step
        return None

    @property
    def tools(self) -> list[str]:
        """Distinct tool selectors used by agents that steps reference."""
        used: list[str] = []
        for step in self.steps:
            if step.agent is None:
                continue
            cli = self.agents[step.agent].cli
            if cli not in used:
                used.append(cli)
        return used


# --- Runtime Models ---


class AgentResult(BaseModel):
    """Result of one external invocation (agent or shell)."""

    output: str
    exit_code: int
    duration_ms: int
    cost_usd: float | None = None
    timed_out: bool = False


@dataclass
class StepRecord:
    """One executed step in one iteration, as shown in the run report."""

    step: str
    agent: str  # Display label, e.g. "builder (claude-code)" or "shell"
    iteration: int
    output: str
    exit_code: int
    duration_ms: int
    cost_usd: float | None = None
    timed_out: bool = False
    committed: bool = False

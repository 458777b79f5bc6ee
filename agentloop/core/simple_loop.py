"""Fixed build -> review -> fix loop.

Two roles, no workflow file: a builder (Claude Code, edits allowed) and a
reviewer (Codex). Unlike workflow steps, any non-zero exit from a build,
review or fix invocation stops the loop immediately.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from agentloop.adapters import ADAPTERS, AgentAdapter, check_adapters, get_adapter
from agentloop.core.engine import PrerequisiteError
from agentloop.core.errors import AgentLoopError
from agentloop.core.events import Event, EventSink, EventType, LoggingSink
from agentloop.core.models import AgentConfig, AgentResult, StepRecord
from agentloop.core.verdict import Verdict, classify_review, clean_review
from agentloop.core.workspace import IsolatedWorkspace

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROUNDS = 3

BUILDER = AgentConfig(cli="claude-code", allow_edits=True)
REVIEWER = AgentConfig(cli="codex")

REVIEW_PROMPT = """\
Review the current changes in this repository for correctness bugs,
security issues and missing error handling.
If there are no blocking issues, respond with exactly: APPROVED
Otherwise list each blocking issue with file paths and line numbers.
Label optional improvements as suggestions.

### Git Diff:
```
{diff}
```
"""

FIX_PROMPT = """\
Address the following review feedback. Fix every blocking issue mentioned:

{review}
"""


class SimpleLoopError(AgentLoopError):
    """A build, review or fix invocation exited non-zero."""

    def __init__(self, phase: str, result: AgentResult):
        self.phase = phase
        self.result = result
        super().__init__(f"{phase} failed (exit code {result.exit_code})")


@dataclass
class SimpleLoopResult:
    verdict: Verdict
    rounds: int
    review: str  # Cleaned text of the last review
    records: list[StepRecord] = field(default_factory=list)

    @property
    def total_cost_usd(self) -> float | None:
        costs = [r.cost_usd for r in self.records if r.cost_usd is not None]
        return sum(costs) if costs else None

    @property
    def exit_code(self) -> int:
        return 2 if self.verdict == Verdict.BLOCKING else 0


class SimpleLoop:
    """Build once, then review and fix until the review stops blocking."""

    def __init__(
        self,
        cwd: str | Path,
        sink: EventSink | None = None,
        adapters: dict[str, AgentAdapter] | None = None,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
    ):
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.cwd = Path(cwd).absolute()
        self.sink = sink or LoggingSink()
        self.adapters = ADAPTERS if adapters is None else adapters
        self.max_rounds = max_rounds
        self.workspace = IsolatedWorkspace(self.cwd)
        self.records: list[StepRecord] = []

    def _emit(self, event_type: EventType, step: str, round_: int, **payload) -> None:
        self.sink.emit(Event(event_type=event_type, step=step, iteration=round_, payload=payload))

    def _invoke(self, phase: str, config: AgentConfig, prompt: str, round_: int) -> AgentResult:
        step = phase.lower()
        label = f"{step} ({config.cli})"
        self._emit(EventType.STEP_STARTED, step, round_, agent=label, parallel=False)

        result = get_adapter(config.cli, self.adapters).execute(prompt, config, self.cwd)
        self.records.append(
            StepRecord(
                step=step,
                agent=label,
                iteration=round_,
                output=result.output,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                cost_usd=result.cost_usd,
                timed_out=result.timed_out,
            )
        )
        self._emit(
            EventType.STEP_COMPLETED,
            step,
            round_,
            agent=label,
            exit_code=result.exit_code,
            duration_ms=result.duration_ms,
            cost_usd=result.cost_usd,
            timed_out=result.timed_out,
            output=result.output,
        )
        if result.exit_code != 0:
            self._emit(EventType.STEP_FAILED, step, round_, exit_code=result.exit_code)
            raise SimpleLoopError(phase, result)
        return result

    def run(self, prompt: str) -> SimpleLoopResult:
        """Run the loop for a feature request.

        Raises:
            PrerequisiteError: claude or codex is not installed
            SimpleLoopError: Any invocation exited non-zero
        """
        _, missing = check_adapters([BUILDER.cli, REVIEWER.cli], self.adapters)
        if missing:
            raise PrerequisiteError(missing)

        self.records = []
        # The request goes to the builder verbatim
        self._invoke("Build", BUILDER, prompt, 1)

        review = ""
        for round_ in range(1, self.max_rounds + 1):
            diff = self.workspace.get_diff(self.cwd)
            result = self._invoke("Review", REVIEWER, REVIEW_PROMPT.format(diff=diff), round_)
            review = clean_review(result.output)
            verdict = classify_review(review)
            logger.debug(f"Round {round_} review verdict: {verdict.value}")

            if verdict != Verdict.BLOCKING:
                return SimpleLoopResult(
                    verdict=verdict, rounds=round_, review=review, records=self.records
                )
            if round_ < self.max_rounds:
                self._invoke("Fix", BUILDER, FIX_PROMPT.format(review=review), round_)

        return SimpleLoopResult(
            verdict=Verdict.BLOCKING, rounds=self.max_rounds, review=review, records=self.records
        )

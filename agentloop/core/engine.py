"""Workflow execution engine.

Drives one run of a workflow:

    LOADING -> CHECKING_PREREQS -> [DRY_RUN] -> [ISOLATING_WORKSPACE]
            -> ITERATING -> RUNNING_GROUP* -> DONE | FAILED

Steps are grouped into sequential singletons and parallel batches. A single
optional loop repeats the workflow from its re-entry group until the loop
condition holds or ``max`` iterations are spent. Steps before the re-entry
group are skipped on later iterations and their earlier outputs are reused.

All progress is reported through an injected EventSink; invocation faults
become failed AgentResults so bookkeeping and the report always complete.
"""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from agentloop.adapters import ADAPTERS, AgentAdapter, ShellRunner, check_adapters, get_adapter
from agentloop.core.config import DEFAULT_CONFIG_NAME, load_workflow
from agentloop.core.context import build_context
from agentloop.core.errors import AgentLoopError
from agentloop.core.events import EngineState, Event, EventSink, EventType, LoggingSink
from agentloop.core.grouping import StepGroup, find_reentry_index, group_steps
from agentloop.core.models import (
    AgentConfig,
    AgentResult,
    ExitCodePolicy,
    OverflowPolicy,
    RunStatus,
    StepConfig,
    StepRecord,
    WorkflowConfig,
)
from agentloop.core.report import write_report
from agentloop.core.template import evaluate_condition, resolve_template
from agentloop.core.workspace import IsolatedWorkspace, WorktreeError, WorktreeInfo

logger = logging.getLogger(__name__)

# Characters of each prompt shown in a dry-run plan
PLAN_PREVIEW_CHARS = 100

SHELL_LABEL = "shell"


class PrerequisiteError(AgentLoopError):
    """A tool referenced by the workflow is not installed."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            f"Missing CLIs: {', '.join(missing)}. "
            "Install them and make sure they're on your PATH."
        )


@dataclass
class RunOptions:
    """Inputs for one run. ``config`` is a YAML path or a loaded workflow."""

    config: str | Path | WorkflowConfig = DEFAULT_CONFIG_NAME
    cwd: str | Path | None = None
    spec: str | None = None
    dry_run: bool = False
    worktree: bool = False
    exit_code_policy: ExitCodePolicy = ExitCodePolicy.RECORD
    write_report: bool = True


@dataclass
class RunResult:
    workflow: str
    status: RunStatus
    records: list[StepRecord] = field(default_factory=list)
    total_duration_ms: int = 0
    total_cost_usd: float | None = None
    report_path: Path | None = None
    worktree: WorktreeInfo | None = None
    failed_step: str | None = None

    @property
    def approved(self) -> bool:
        return self.status == RunStatus.APPROVED

    @property
    def exit_code(self) -> int:
        """Process exit code: 2 for exhausted iterations, 1 for a failed step."""
        if self.status == RunStatus.EXHAUSTED:
            return 2
        if self.status == RunStatus.FAILED:
            return 1
        return 0


@dataclass
class _Invocation:
    """A step with its templates resolved, ready to run on any thread."""

    step: StepConfig
    label: str
    prompt: str | None = None
    command: str | None = None
    agent: AgentConfig | None = None


# Overflow policy -> final status when the loop never approves
_OVERFLOW_STATUS: dict[str, RunStatus] = {
    "fail": RunStatus.EXHAUSTED,
    "pause": RunStatus.PAUSED,
    "continue": RunStatus.MAX_ITERATIONS,
}


def load_spec(spec: str | None, cwd: str | Path) -> str:
    """Spec text, read from a file when a single line names one in ``cwd``."""
    if not spec:
        return ""
    if "\n" in spec:
        return spec
    try:
        candidate = Path(cwd) / spec.strip()
        if candidate.is_file():
            return candidate.read_text(encoding="utf-8")
    except OSError:
        # Inline text that is not a usable path (too long, bad characters)
        pass
    return spec


class WorkflowEngine:
    """Run workflows against a registry of tool adapters.

    Args:
        sink: Receives every Event; defaults to logging
        adapters: Tool registry, defaults to ``agentloop.adapters.ADAPTERS``
        shell: Runner for ``run:`` steps
        workspace_factory: Builds the worktree manager for a repository path
    """

    def __init__(
        self,
        sink: EventSink | None = None,
        adapters: dict[str, AgentAdapter] | None = None,
        shell: ShellRunner | None = None,
        workspace_factory=IsolatedWorkspace,
    ):
        self.sink = sink or LoggingSink()
        self.adapters = ADAPTERS if adapters is None else adapters
        self.shell = shell or ShellRunner()
        self.workspace_factory = workspace_factory

    def emit(
        self,
        event_type: EventType,
        step: str | None = None,
        iteration: int | None = None,
        **payload,
    ) -> None:
        self.sink.emit(
            Event(event_type=event_type, step=step, iteration=iteration, payload=payload)
        )

    def set_state(self, state: EngineState) -> None:
        self.emit(EventType.STATE_CHANGED, state=state.value)

    def run(self, options: RunOptions) -> RunResult:
        """Execute a workflow.

        Raises:
            ConfigError: Workflow file invalid
            PrerequisiteError: A referenced tool is unavailable
            WorktreeError: Isolation requested outside a git repository
        """
        start = time.monotonic()
        cwd = Path(options.cwd or Path.cwd()).absolute()

        self.set_state(EngineState.LOADING)
        if isinstance(options.config, WorkflowConfig):
            workflow = options.config
        else:
            workflow = load_workflow(options.config)
        self.emit(
            EventType.WORKFLOW_LOADED,
            name=workflow.name,
            steps=[step.name for step in workflow.steps],
            agents=list(workflow.agents),
        )

        self.set_state(EngineState.CHECKING_PREREQS)
        available, missing = check_adapters(workflow.tools, self.adapters)
        if missing:
            self.set_state(EngineState.FAILED)
            raise PrerequisiteError(missing)
        self.emit(EventType.PREREQS_CHECKED, available=available)

        variables = {"feature_spec": load_spec(options.spec, cwd)}
        groups = group_steps(workflow.steps)
        loop_step = workflow.loop_step
        reentry = (
            find_reentry_index(workflow.steps, groups, loop_step.loop.until)
            if loop_step
            else 0
        )

        if options.dry_run:
            self.set_state(EngineState.DRY_RUN)
            self._emit_plan(workflow, groups, variables, reentry)
            return RunResult(workflow=workflow.name, status=RunStatus.DRY_RUN)

        workspace = self.workspace_factory(cwd)
        worktree: WorktreeInfo | None = None
        if options.worktree:
            self.set_state(EngineState.ISOLATING_WORKSPACE)
            try:
                worktree = workspace.create()
            except WorktreeError:
                self.set_state(EngineState.FAILED)
                raise
            self.emit(
                EventType.WORKTREE_CREATED,
                path=str(worktree.path),
                branch=worktree.branch,
                base_branch=worktree.base_branch,
            )

        run = _Run(
            engine=self,
            workflow=workflow,
            groups=groups,
            reentry=reentry,
            variables=variables,
            cwd=worktree.path if worktree else cwd,
            workspace=workspace,
            worktree=worktree,
            policy=options.exit_code_policy,
        )
        self.set_state(EngineState.ITERATING)
        status = run.iterate()

        result = RunResult(
            workflow=workflow.name,
            status=status,
            records=run.records,
            total_duration_ms=int((time.monotonic() - start) * 1000),
            total_cost_usd=_total_cost(run.records),
            worktree=worktree,
            failed_step=run.failed_step,
        )
        self._finish(
            result, cwd, workspace, options.write_report, has_loop=loop_step is not None
        )
        return result

    def _finish(
        self,
        result: RunResult,
        cwd: Path,
        workspace: IsolatedWorkspace,
        write: bool,
        has_loop: bool,
    ) -> None:
        self.emit(
            EventType.RUN_FINISHED,
            status=result.status.value,
            steps=len(result.records),
            duration_ms=result.total_duration_ms,
            cost_usd=result.total_cost_usd,
            has_loop=has_loop,
            failed_step=result.failed_step,
        )
        if write:
            # Always the original directory, never the worktree
            result.report_path = write_report(
                cwd,
                result.workflow,
                result.records,
                result.status,
                result.total_duration_ms,
                total_cost_usd=result.total_cost_usd,
                failed_step=result.failed_step,
                worktree=result.worktree is not None,
            )
            self.emit(EventType.REPORT_WRITTEN, path=str(result.report_path))
        if result.worktree:
            self.emit(
                EventType.WORKTREE_RETAINED,
                path=str(result.worktree.path),
                branch=result.worktree.branch,
                base_branch=result.worktree.base_branch,
                changed_files=workspace.get_changed_files(
                    result.worktree.path, result.worktree.base_branch
                ),
            )
        failed = result.status in (RunStatus.FAILED, RunStatus.EXHAUSTED)
        self.set_state(EngineState.FAILED if failed else EngineState.DONE)

    def _emit_plan(
        self,
        workflow: WorkflowConfig,
        groups: list[StepGroup],
        variables: dict[str, str],
        reentry: int,
    ) -> None:
        reentry_step = workflow.steps[reentry].name
        for index, group in enumerate(groups):
            for step in group.steps:
                payload: dict = {"group": index, "parallel": group.parallel}
                if step.is_shell:
                    payload["agent"] = SHELL_LABEL
                    payload["command"] = resolve_template(step.run, variables)
                else:
                    agent = workflow.agents[step.agent]
                    payload["agent"] = f"{step.agent} ({agent.cli})"
                    preview = resolve_template(step.prompt, variables)
                    payload["prompt"] = preview[:PLAN_PREVIEW_CHARS].strip()
                if step.context:
                    payload["context"] = list(step.context)
                if step.loop:
                    payload["loop"] = {
                        "until": step.loop.until,
                        "max": step.loop.max,
                        "on_max": step.loop.on_max,
                        "reentry_step": reentry_step,
                    }
                self.emit(EventType.PLAN_STEP, step=step.name, **payload)

    def prepare(
        self,
        step: StepConfig,
        workflow: WorkflowConfig,
        variables: dict[str, str],
        cwd: Path,
        workspace: IsolatedWorkspace,
        base_branch: str | None,
        iteration: int,
    ) -> _Invocation:
        """Resolve a step's templates and context against ``variables``."""
        if step.is_shell:
            return _Invocation(
                step=step,
                label=SHELL_LABEL,
                command=resolve_template(step.run, variables),
            )

        agent = workflow.agents[step.agent]
        prompt = resolve_template(step.prompt, variables)
        if step.context:
            block = build_context(step.context, cwd, workspace, base_branch)
            for entry in block.unreadable:
                self.emit(
                    EventType.CONTEXT_UNREADABLE, step=step.name, iteration=iteration, path=entry
                )
            prompt += block.text
        return _Invocation(
            step=step,
            label=f"{step.agent} ({agent.cli})",
            prompt=prompt,
            agent=agent,
        )

    def invoke(self, invocation: _Invocation, cwd: Path) -> AgentResult:
        """Run one prepared step. Safe to call from worker threads."""
        try:
            if invocation.command is not None:
                return self.shell.run(invocation.command, cwd)
            adapter = get_adapter(invocation.agent.cli, self.adapters)
            return adapter.execute(invocation.prompt, invocation.agent, cwd)
        except Exception as e:
            logger.error(f"Step '{invocation.step.name}' raised: {e}", exc_info=True)
            return AgentResult(
                output=f"{invocation.label} execution failed: {e}",
                exit_code=1,
                duration_ms=0,
            )


def _total_cost(records: list[StepRecord]) -> float | None:
    costs = [record.cost_usd for record in records if record.cost_usd is not None]
    return sum(costs) if costs else None


class _Run:
    """Mutable state of one run. Only the orchestrating thread touches it."""

    def __init__(
        self,
        engine: WorkflowEngine,
        workflow: WorkflowConfig,
        groups: list[StepGroup],
        reentry: int,
        variables: dict[str, str],
        cwd: Path,
        workspace: IsolatedWorkspace,
        worktree: WorktreeInfo | None,
        policy: ExitCodePolicy,
    ):
        self.engine = engine
        self.workflow = workflow
        self.groups = groups
        self.reentry = reentry
        self.variables = variables
        self.cwd = cwd
        self.workspace = workspace
        self.worktree = worktree
        self.policy = policy
        self.records: list[StepRecord] = []
        self.failed_step: str | None = None

    @property
    def base_branch(self) -> str | None:
        return self.worktree.base_branch if self.worktree else None

    def iterate(self) -> RunStatus:
        loop_step = self.workflow.loop_step
        if loop_step is None:
            max_iterations = 1
            on_max: OverflowPolicy = "continue"
        else:
            max_iterations = loop_step.loop.max
            on_max = loop_step.loop.on_max

        for iteration in range(1, max_iterations + 1):
            self.engine.emit(
                EventType.ITERATION_STARTED, iteration=iteration, max=max_iterations
            )
            start_index = 0 if iteration == 1 else self.reentry
            finishing = False

            for group in self.groups:
                if group.start_index < start_index:
                    for step in group.steps:
                        self.engine.emit(EventType.STEP_SKIPPED, step=step.name, iteration=iteration)
                    continue

                self.engine.set_state(EngineState.RUNNING_GROUP)
                results = self._run_group(group, iteration)

                if self.policy == ExitCodePolicy.FAIL_FAST:
                    failed = next((name for name, r in results if r.exit_code != 0), None)
                    if failed:
                        self.failed_step = failed
                        self.engine.emit(EventType.STEP_FAILED, step=failed, iteration=iteration)
                        return RunStatus.FAILED

                step = group.steps[0]
                if group.parallel or step.loop is None or finishing:
                    continue

                if evaluate_condition(step.loop.until, self.variables):
                    self.engine.emit(
                        EventType.LOOP_CONDITION_MET,
                        step=step.name,
                        iteration=iteration,
                        until=step.loop.until,
                    )
                    return RunStatus.APPROVED
                if iteration < max_iterations:
                    self.engine.emit(
                        EventType.LOOP_CONDITION_NOT_MET,
                        step=step.name,
                        iteration=iteration,
                        until=step.loop.until,
                        max=max_iterations,
                    )
                    continue

                self.engine.emit(
                    EventType.ITERATIONS_EXHAUSTED,
                    step=step.name,
                    iteration=iteration,
                    on_max=on_max,
                    max=max_iterations,
                )
                if on_max != "continue":
                    return _OVERFLOW_STATUS[on_max]
                finishing = True

        if loop_step is None:
            return RunStatus.COMPLETE
        # Loop step never re-ran or was still unapproved after the last iteration
        return _OVERFLOW_STATUS[on_max]

    def _run_group(self, group: StepGroup, iteration: int) -> list[tuple[str, AgentResult]]:
        # Every member resolves against the same snapshot; sequential groups
        # are the one-member case
        snapshot = dict(self.variables)
        invocations = [
            self.engine.prepare(
                step,
                self.workflow,
                snapshot,
                self.cwd,
                self.workspace,
                self.base_branch,
                iteration,
            )
            for step in group.steps
        ]
        for invocation in invocations:
            self.engine.emit(
                EventType.STEP_STARTED,
                step=invocation.step.name,
                iteration=iteration,
                agent=invocation.label,
                parallel=group.parallel,
            )

        if group.parallel:
            results = self._invoke_parallel(invocations)
        else:
            results = [self.engine.invoke(invocations[0], self.cwd)]

        # Apply the whole group at once
        for invocation, result in zip(invocations, results):
            name = invocation.step.name
            self.variables[f"steps.{name}.output"] = result.output
            self.variables[f"steps.{name}.exitCode"] = str(result.exit_code)

        committed = self._commit(group, iteration)

        for invocation, result in zip(invocations, results):
            self.records.append(
                StepRecord(
                    step=invocation.step.name,
                    agent=invocation.label,
                    iteration=iteration,
                    output=result.output,
                    exit_code=result.exit_code,
                    duration_ms=result.duration_ms,
                    cost_usd=result.cost_usd,
                    timed_out=result.timed_out,
                    committed=committed,
                )
            )
            self.engine.emit(
                EventType.STEP_COMPLETED,
                step=invocation.step.name,
                iteration=iteration,
                agent=invocation.label,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                cost_usd=result.cost_usd,
                timed_out=result.timed_out,
                output=result.output,
            )
        return [(inv.step.name, result) for inv, result in zip(invocations, results)]

    def _invoke_parallel(self, invocations: list[_Invocation]) -> list[AgentResult]:
        """Fan out every member and wait for all of them.

        A failing member never cancels its siblings. Results come back in
        declaration order.
        """
        by_name: dict[str, AgentResult] = {}
        with ThreadPoolExecutor(max_workers=len(invocations)) as executor:
            futures: dict[Future, _Invocation] = {
                executor.submit(self.engine.invoke, invocation, self.cwd): invocation
                for invocation in invocations
            }
            for future in as_completed(futures):
                invocation = futures[future]
                try:
                    by_name[invocation.step.name] = future.result()
                except Exception as e:
                    logger.error(f"Parallel step '{invocation.step.name}' failed: {e}")
                    by_name[invocation.step.name] = AgentResult(
                        output=f"{invocation.label} execution failed: {e}",
                        exit_code=1,
                        duration_ms=0,
                    )
        return [by_name[invocation.step.name] for invocation in invocations]

    def _commit(self, group: StepGroup, iteration: int) -> bool:
        """Snapshot-commit the worktree once per group."""
        if self.worktree is None:
            return False

        message = f"agentloop: {' + '.join(group.names)} (iteration {iteration})"
        try:
            committed = self.workspace.snapshot_commit(self.worktree.path, message)
        except WorktreeError as e:
            self.engine.emit(
                EventType.SNAPSHOT_FAILED, step=group.names[0], iteration=iteration, error=str(e)
            )
            return False

        event = EventType.SNAPSHOT_COMMITTED if committed else EventType.SNAPSHOT_SKIPPED
        self.engine.emit(event, step=group.names[0], iteration=iteration, message=message)
        return committed

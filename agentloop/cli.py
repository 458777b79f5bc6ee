"""CLI entry point for AgentLoop.

Commands:
- agentloop run: Execute a workflow
- agentloop init: Create a starter agentloop.yml
- agentloop validate: Validate a workflow file
- agentloop cleanup: Remove agentloop worktrees and branches
- agentloop loop: Build, review and fix a feature without a workflow file
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

from agentloop import __version__
from agentloop.cli_ui.console import ConsoleSink
from agentloop.core.config import DEFAULT_CONFIG_NAME, STARTER_WORKFLOW, ConfigError, load_workflow
from agentloop.core.engine import PrerequisiteError, RunOptions, WorkflowEngine
from agentloop.core.grouping import group_steps
from agentloop.core.models import ExitCodePolicy
from agentloop.core.simple_loop import DEFAULT_MAX_ROUNDS, SimpleLoop, SimpleLoopError
from agentloop.core.verdict import Verdict
from agentloop.core.workspace import IsolatedWorkspace, WorktreeError

console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _print_config_error(error: ConfigError) -> None:
    console.print(f"[red]✗[/red] {escape(str(error))}")
    for line in error.errors:
        console.print(f"[dim]  - {escape(line)}[/dim]")


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """AgentLoop - multi-agent orchestration for coding CLIs.

    Chains AI coding CLIs (Claude Code, Codex, Gemini, Aider) and shell
    commands into workflows with a bounded review loop.
    """
    _configure_logging(verbose)


@main.command()
@click.option(
    "--config", "-c", default=DEFAULT_CONFIG_NAME, show_default=True, help="Path to workflow YAML"
)
@click.option("--spec", "-s", help="Feature spec (text or file path)")
@click.option(
    "--cwd",
    "-d",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Working directory (defaults to the current directory)",
)
@click.option("--dry-run", is_flag=True, help="Preview execution plan without running")
@click.option("--worktree", is_flag=True, help="Run in an isolated git worktree")
@click.option("--fail-fast", is_flag=True, help="Stop the run when any step exits non-zero")
def run(
    config: str,
    spec: str | None,
    cwd: Path | None,
    dry_run: bool,
    worktree: bool,
    fail_fast: bool,
) -> None:
    """Execute a workflow.

    \b
    Exit codes:
      0  complete, approved or dry run; also paused or max_iterations
         (loop not approved, see the summary status)
      1  invalid config, missing CLI, worktree error or --fail-fast stop
      2  loop not approved with on_max: fail
    """
    engine = WorkflowEngine(sink=ConsoleSink(console))
    options = RunOptions(
        config=config,
        cwd=cwd,
        spec=spec,
        dry_run=dry_run,
        worktree=worktree,
        exit_code_policy=ExitCodePolicy.FAIL_FAST if fail_fast else ExitCodePolicy.RECORD,
    )

    try:
        result = engine.run(options)
    except ConfigError as e:
        _print_config_error(e)
        sys.exit(1)
    except (PrerequisiteError, WorktreeError) as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        sys.exit(1)

    if result.exit_code != 0:
        sys.exit(result.exit_code)


@main.command()
def init() -> None:
    """Create a starter agentloop.yml in the current directory."""
    path = Path.cwd() / DEFAULT_CONFIG_NAME
    if path.exists():
        console.print(f"[yellow]![/yellow] {DEFAULT_CONFIG_NAME} already exists. Skipping.")
        return

    path.write_text(STARTER_WORKFLOW, encoding="utf-8")
    console.print(
        f"[green]✓[/green] Created {DEFAULT_CONFIG_NAME} - edit it and run: "
        "agentloop run --spec 'your feature'"
    )


@main.command()
@click.option(
    "--config", "-c", default=DEFAULT_CONFIG_NAME, show_default=True, help="Path to workflow YAML"
)
def validate(config: str) -> None:
    """Validate a workflow YAML file."""
    try:
        workflow = load_workflow(config)
    except ConfigError as e:
        _print_config_error(e)
        sys.exit(1)

    groups = group_steps(workflow.steps)
    console.print(f"[green]✓[/green] {escape(config)} is valid!")
    console.print(
        f"[dim]  {len(workflow.steps)} step(s) in {len(groups)} group(s), "
        f"{len(workflow.agents)} agent(s)[/dim]"
    )
    if workflow.loop_step:
        loop_step = workflow.loop_step
        console.print(Text(f"  Loop on {loop_step.name}: {loop_step.loop.until}", style="dim"))


@main.command()
@click.option(
    "--cwd",
    "-d",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Repository directory (defaults to the current directory)",
)
def cleanup(cwd: Path | None) -> None:
    """Remove agentloop worktrees and branches."""
    workspace = IsolatedWorkspace(cwd or Path.cwd())
    try:
        results = workspace.cleanup()
    except WorktreeError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        sys.exit(1)

    if not results:
        console.print("[green]✓[/green] No agentloop worktrees found. Nothing to clean up.")
        return

    removed = 0
    for result in results:
        branch = escape(result.worktree.branch)
        if result.removed:
            console.print(f"[green]✓[/green] Removed {branch}  [dim]{result.worktree.path}[/dim]")
            removed += 1
        else:
            console.print(f"[yellow]![/yellow] {branch}: {escape(result.error or 'unknown error')}")
    console.print(f"[blue]i[/blue] Cleaned up {removed}/{len(results)} worktree(s).")


@main.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option(
    "--max-rounds",
    type=click.IntRange(min=1),
    default=DEFAULT_MAX_ROUNDS,
    show_default=True,
    help="Maximum review rounds",
)
@click.option(
    "--cwd",
    "-d",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Working directory (defaults to the current directory)",
)
def loop(prompt: tuple[str, ...], max_rounds: int, cwd: Path | None) -> None:
    """Build PROMPT with Claude Code, review with Codex, fix until clean."""
    simple = SimpleLoop(
        cwd or Path.cwd(), sink=ConsoleSink(console, show_output=False), max_rounds=max_rounds
    )
    try:
        result = simple.run(" ".join(prompt))
    except PrerequisiteError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        sys.exit(1)
    except SimpleLoopError as e:
        console.print(f"[red]✗[/red] {escape(str(e))}")
        if e.result.output.strip():
            console.print(Text(e.result.output.strip(), style="dim"))
        sys.exit(1)

    review = Text(result.review or "(empty review)")
    if result.verdict == Verdict.APPROVED:
        console.print(f"[green]✓[/green] Review approved after {result.rounds} round(s)")
    elif result.verdict == Verdict.NON_BLOCKING:
        console.print("[green]✓[/green] No blocking issues. Remaining review feedback:")
        console.print(Panel(review, border_style="dim", expand=False))
    else:
        console.print(
            f"[yellow]![/yellow] Blocking issues remain after {result.rounds} round(s):"
        )
        console.print(Panel(review, border_style="dim", expand=False))

    if result.total_cost_usd:
        console.print(f"[dim]  Est. cost: ${result.total_cost_usd:.4f}[/dim]")
    if result.exit_code != 0:
        sys.exit(result.exit_code)


if __name__ == "__main__":
    main()

"""Rich terminal rendering of run events."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from agentloop.core.events import Event

# Lines of step output shown inline before eliding
MAX_OUTPUT_LINES = 20

_STATUS_STYLES = {
    "complete": ("COMPLETE", "bold green"),
    "approved": ("APPROVED", "bold green"),
    "max_iterations": ("MAX ITERATIONS REACHED", "bold yellow"),
    "paused": ("PAUSED AT MAX ITERATIONS", "bold yellow"),
    "exhausted": ("MAX ITERATIONS REACHED", "bold red"),
    "failed": ("FAILED", "bold red"),
}


class ConsoleSink:
    """Print workflow progress to a rich Console."""

    def __init__(self, console: Console | None = None, show_output: bool = True):
        self.console = console or Console()
        self.show_output = show_output

    def emit(self, event: Event) -> None:
        handler = getattr(self, f"_on_{event.event_type.value}", None)
        if handler is not None:
            handler(event)

    def _output(self, text: str) -> None:
        lines = text.splitlines()
        shown = lines[:MAX_OUTPUT_LINES]
        body = Text("\n".join(shown))
        if len(lines) > MAX_OUTPUT_LINES:
            body.append(f"\n... ({len(lines) - MAX_OUTPUT_LINES} more lines)", style="dim")
        self.console.print(Panel(body, border_style="dim", expand=False))

    def _on_workflow_loaded(self, event: Event) -> None:
        p = event.payload
        self.console.print(Panel.fit("[bold cyan]AgentLoop[/bold cyan]\nMulti-agent CLI"))
        self.console.print(f"[blue]i[/blue] Workflow: [bold]{p['name']}[/bold]")
        self.console.print(f"[blue]i[/blue] Steps: {' -> '.join(p['steps'])}")
        if p["agents"]:
            self.console.print(f"[blue]i[/blue] Agents: {', '.join(p['agents'])}")

    def _on_prereqs_checked(self, event: Event) -> None:
        available = event.payload["available"]
        if available:
            self.console.print(f"[green]✓[/green] All CLIs available: {', '.join(available)}")

    def _on_plan_step(self, event: Event) -> None:
        p = event.payload
        marker = " [magenta](parallel)[/magenta]" if p["parallel"] else ""
        self.console.print(f"\n[bold cyan]>[/bold cyan] [bold]{event.step}[/bold]{marker}")
        self.console.print(f"    [dim]Agent: {p['agent']}[/dim]")
        if "command" in p:
            self.console.print(Text(f"    Command: {p['command']}", style="dim"))
        if "prompt" in p:
            self.console.print(Text(f"    Prompt: {p['prompt']}...", style="dim"))
        if "context" in p:
            self.console.print(f"    [dim]Context: {', '.join(p['context'])}[/dim]")
        if "loop" in p:
            loop = p["loop"]
            self.console.print(
                Text(
                    f'    Loop: until "{loop["until"]}" (max {loop["max"]}, '
                    f"on_max {loop['on_max']}), re-enters at {loop['reentry_step']}",
                    style="dim",
                )
            )

    def _on_worktree_created(self, event: Event) -> None:
        p = event.payload
        self.console.print(
            f"[green]✓[/green] Worktree [green]{p['branch']}[/green] at {p['path']} "
            f"(base {p['base_branch']})"
        )

    def _on_iteration_started(self, event: Event) -> None:
        if event.iteration and event.iteration > 1:
            self.console.rule(f"Iteration {event.iteration}/{event.payload['max']}", style="dim")

    def _on_step_skipped(self, event: Event) -> None:
        self.console.print(
            f'[dim]  Skipping "{event.step}" on iteration {event.iteration}[/dim]'
        )

    def _on_step_started(self, event: Event) -> None:
        iteration = f" [dim](iteration {event.iteration})[/dim]" if event.iteration else ""
        marker = " [magenta](parallel)[/magenta]" if event.payload.get("parallel") else ""
        self.console.print(f"\n[bold cyan]>[/bold cyan] [bold]{event.step}[/bold]{iteration}{marker}")

    def _on_step_completed(self, event: Event) -> None:
        p = event.payload
        seconds = p["duration_ms"] / 1000
        if p["timed_out"]:
            self.console.print(f"[yellow]![/yellow] {event.step} timed out after {seconds:.1f}s")
        elif p["exit_code"] != 0:
            self.console.print(
                f"[yellow]![/yellow] {event.step} exited {p['exit_code']} in {seconds:.1f}s"
            )
        else:
            self.console.print(f"[green]✓[/green] {event.step} done in {seconds:.1f}s")
        if self.show_output and p["output"]:
            self._output(p["output"])

    def _on_step_failed(self, event: Event) -> None:
        self.console.print(f"[red]✗[/red] Step {event.step} failed; stopping run")

    def _on_context_unreadable(self, event: Event) -> None:
        self.console.print(f"[yellow]![/yellow] Could not read context: {event.payload['path']}")

    def _on_snapshot_committed(self, event: Event) -> None:
        self.console.print(Text(f"  committed: {event.payload['message']}", style="dim"))

    def _on_snapshot_skipped(self, event: Event) -> None:
        self.console.print("[dim]  no changes to commit[/dim]")

    def _on_snapshot_failed(self, event: Event) -> None:
        self.console.print(f"[yellow]![/yellow] Snapshot commit failed: {event.payload['error']}")

    def _on_loop_condition_met(self, event: Event) -> None:
        self.console.print("[green]✓[/green] Loop condition met - workflow complete!")

    def _on_loop_condition_not_met(self, event: Event) -> None:
        p = event.payload
        self.console.print(
            Text(
                f'! Condition not met: "{p["until"]}" - looping ({event.iteration}/{p["max"]})',
                style="yellow",
            )
        )

    def _on_iterations_exhausted(self, event: Event) -> None:
        p = event.payload
        self.console.print(
            f"[yellow]![/yellow] Loop not approved after {p['max']} iteration(s) "
            f"(on_max: {p['on_max']})"
        )

    def _on_run_finished(self, event: Event) -> None:
        p = event.payload
        label, style = _STATUS_STYLES.get(p["status"], (p["status"].upper(), "bold"))

        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_row("Status", Text(label, style=style))
        table.add_row("Steps run", str(p["steps"]))
        table.add_row("Duration", f"{p['duration_ms'] / 1000:.1f}s")
        if p.get("cost_usd"):
            table.add_row("Est. cost", Text(f"${p['cost_usd']:.4f}", style="yellow"))
        if p.get("failed_step"):
            table.add_row("Failed step", p["failed_step"])
        self.console.print()
        self.console.rule(style="dim")
        self.console.print(table)
        self.console.rule(style="dim")

    def _on_report_written(self, event: Event) -> None:
        self.console.print(f"[blue]i[/blue] Report saved to: {event.payload['path']}")

    def _on_worktree_retained(self, event: Event) -> None:
        p = event.payload
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_row("Path", p["path"])
        table.add_row("Branch", Text(p["branch"], style="green"))
        if p.get("changed_files"):
            table.add_row("Changed", Text(", ".join(p["changed_files"])))
        table.add_row("Review", f"git diff {p['base_branch']}...{p['branch']}")
        table.add_row("Merge", f"git merge {p['branch']}")
        table.add_row("Cleanup", "agentloop cleanup")
        self.console.print(Panel(table, title="Worktree", title_align="left", expand=False))

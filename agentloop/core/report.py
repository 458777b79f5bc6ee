"""Markdown run report.

Rendered from ``agentloop/templates/report.md.j2`` and always written to the
directory the run was started from, never inside an isolated worktree.
"""

import logging
import time
from pathlib import Path

from jinja2 import FileSystemLoader, StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from agentloop.core.models import RunStatus, StepRecord

logger = logging.getLogger(__name__)

# Per-record output limit in the report (characters)
MAX_REPORT_OUTPUT = 5000

STATUS_LABELS = {
    RunStatus.COMPLETE: "Complete",
    RunStatus.APPROVED: "Approved",
    RunStatus.MAX_ITERATIONS: "Max iterations reached",
    RunStatus.PAUSED: "Max iterations reached (paused)",
    RunStatus.EXHAUSTED: "Max iterations reached",
    RunStatus.FAILED: "Failed",
    RunStatus.DRY_RUN: "Dry run",
}

_TEMPLATE_DIR = Path(__file__).parent.parent / "templates"


def _seconds(duration_ms: int) -> str:
    return f"{duration_ms / 1000:.1f}"


def _truncate_output(output: str) -> str:
    return output[:MAX_REPORT_OUTPUT]


def _build_env() -> SandboxedEnvironment:
    env = SandboxedEnvironment(
        loader=FileSystemLoader(_TEMPLATE_DIR),
        undefined=StrictUndefined,
        autoescape=False,  # Markdown, not HTML
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["seconds"] = _seconds
    env.filters["truncate_output"] = _truncate_output
    return env


def render_report(
    workflow: str,
    records: list[StepRecord],
    status: RunStatus,
    total_duration_ms: int,
    total_cost_usd: float | None = None,
    failed_step: str | None = None,
    worktree: bool = False,
) -> str:
    status_label = STATUS_LABELS[status]
    if status == RunStatus.FAILED and failed_step:
        status_label = f"Failed at step {failed_step}"

    template = _build_env().get_template("report.md.j2")
    return template.render(
        workflow=workflow,
        status_label=status_label,
        records=records,
        total_duration_ms=total_duration_ms,
        total_cost_usd=total_cost_usd,
        worktree=worktree,
    )


def write_report(
    cwd: str | Path,
    workflow: str,
    records: list[StepRecord],
    status: RunStatus,
    total_duration_ms: int,
    total_cost_usd: float | None = None,
    failed_step: str | None = None,
    worktree: bool = False,
) -> Path:
    """Render and write ``agentloop-report-<timestamp>.md`` into ``cwd``."""
    content = render_report(
        workflow,
        records,
        status,
        total_duration_ms,
        total_cost_usd=total_cost_usd,
        failed_step=failed_step,
        worktree=worktree,
    )
    path = Path(cwd) / f"agentloop-report-{int(time.time() * 1000)}.md"
    path.write_text(content, encoding="utf-8")
    logger.debug(f"Report written to {path}")
    return path

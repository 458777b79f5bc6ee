"""Agent invocation contract and the shared subprocess runner.

Every invocation fault (spawn failure, timeout) is converted into a failed
AgentResult. Nothing in this module raises for a misbehaving child process.
"""

import logging
import os
import re
import signal
import subprocess
import time
from abc import ABC, abstractmethod
from pathlib import Path

from agentloop.core.errors import AgentLoopError
from agentloop.core.models import AgentConfig, AgentResult

logger = logging.getLogger(__name__)

# ANSI escape code pattern for stripping terminal colors
ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")

# Output limits (prevent OOM from unbounded output)
MAX_OUTPUT_BYTES = 10 * 1024 * 1024

VERSION_CHECK_TIMEOUT = 10  # seconds


class AdapterError(AgentLoopError):
    """Error in adapter lookup or configuration."""

    pass


class UnknownToolError(AdapterError):
    """No adapter is registered for a tool selector."""

    pass


def _truncate_output(output: str, max_bytes: int) -> str:
    """Truncate output to max_bytes, adding truncation notice if needed."""
    if len(output.encode("utf-8", errors="replace")) <= max_bytes:
        return output

    # Truncate by bytes, ensuring we don't cut in the middle of a UTF-8 sequence
    truncated = output.encode("utf-8", errors="replace")[:max_bytes].decode(
        "utf-8", errors="ignore"
    )
    return truncated + f"\n\n[OUTPUT TRUNCATED - exceeded {max_bytes} bytes]"


def _kill_process_group(proc: subprocess.Popen) -> None:
    """Kill the child and anything it spawned (shells, CLI helpers)."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()


def _format_minutes(minutes: float) -> str:
    return f"{minutes:g} minute" + ("" if minutes == 1 else "s")


def run_process(
    args: list[str],
    cwd: str | Path,
    *,
    label: str,
    timeout_minutes: float,
    input_text: str | None = None,
    merge_stderr: bool = False,
) -> AgentResult:
    """Run a child process to completion or timeout.

    Args:
        args: Command and arguments (no shell unless args invoke one)
        cwd: Effective working directory
        label: Human name used in failure/timeout messages
        timeout_minutes: Wall-clock budget; the whole process group is
            killed when it is exceeded
        input_text: Sent on stdin when provided
        merge_stderr: Capture stderr interleaved with stdout

    Returns:
        AgentResult. Output is stdout, or stderr when stdout is empty.
        Timeouts yield exit code 1, ``timed_out=True`` and a ``[TIMED OUT]``
        prefix. Spawn failures yield exit code 1 and a descriptive message.
    """
    start = time.monotonic()
    timeout_seconds = timeout_minutes * 60

    def _elapsed_ms() -> int:
        return int((time.monotonic() - start) * 1000)

    try:
        proc = subprocess.Popen(
            args,
            cwd=str(cwd),
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_stderr else subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except OSError as e:
        logger.debug(f"Failed to spawn {args[0]}: {e}")
        return AgentResult(
            output=f"{label} execution failed: {e}",
            exit_code=1,
            duration_ms=_elapsed_ms(),
        )

    try:
        stdout, stderr = proc.communicate(input=input_text, timeout=timeout_seconds)
    except subprocess.TimeoutExpired:
        _kill_process_group(proc)
        try:
            stdout, stderr = proc.communicate(timeout=5)
        except subprocess.TimeoutExpired:
            # Pipes held open by an unkillable grandchild; give up on the output
            stdout, stderr = "", ""
        partial = stdout or stderr or ""
        logger.warning(f"{label} timed out after {_format_minutes(timeout_minutes)}")
        return AgentResult(
            output=(
                f"[TIMED OUT] {label} exceeded the {_format_minutes(timeout_minutes)} timeout.\n"
                + _truncate_output(ANSI_ESCAPE.sub("", partial), MAX_OUTPUT_BYTES)
            ),
            exit_code=1,
            duration_ms=_elapsed_ms(),
            timed_out=True,
        )

    output = stdout or stderr or ""
    return AgentResult(
        output=_truncate_output(ANSI_ESCAPE.sub("", output), MAX_OUTPUT_BYTES),
        exit_code=proc.returncode if proc.returncode is not None else 1,
        duration_ms=_elapsed_ms(),
    )


def binary_responds(binary: str) -> bool:
    """Return True if ``<binary> --version`` runs and exits 0."""
    try:
        result = subprocess.run(
            [binary, "--version"],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=VERSION_CHECK_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


class AgentAdapter(ABC):
    """Capability interface every tool integration implements.

    Adding a tool means adding an adapter and registering it; the engine
    never branches on the tool selector.
    """

    name: str = ""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the CLI tool is installed and accessible."""

    @abstractmethod
    def execute(self, prompt: str, config: AgentConfig, cwd: str | Path) -> AgentResult:
        """Execute a fully-resolved prompt in ``cwd``."""

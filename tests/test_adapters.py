"""Tests for tool adapters, the shared process runner and the shell runner.

Process tests run real ``sh`` children; CLI adapters are exercised against
fake executables placed on PATH.
"""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from agentloop.adapters import (
    ADAPTERS,
    ClaudeCodeAdapter,
    CodexAdapter,
    CustomAdapter,
    GeminiAdapter,
    ShellRunner,
    UnknownToolError,
    check_adapters,
    get_adapter,
)
from agentloop.adapters.base import _truncate_output, binary_responds, run_process
from agentloop.adapters.claude_code import _parse_json_output
from agentloop.adapters.custom import render_command
from agentloop.core.models import AgentConfig
from conftest import FakeAdapter

# 0.01 minutes = 0.6 seconds
TINY_TIMEOUT = 0.01


class TestRunProcess:
    def test_captures_stdout_and_exit_code(self, tmp_path: Path):
        result = run_process(
            ["sh", "-c", "echo hello; exit 3"], tmp_path, label="Test", timeout_minutes=1
        )
        assert result.output == "hello\n"
        assert result.exit_code == 3
        assert result.timed_out is False
        assert result.duration_ms >= 0

    def test_stderr_used_when_stdout_empty(self, tmp_path: Path):
        result = run_process(
            ["sh", "-c", "echo oops >&2; exit 1"], tmp_path, label="Test", timeout_minutes=1
        )
        assert result.output == "oops\n"
        assert result.exit_code == 1

    def test_stdin_input(self, tmp_path: Path):
        result = run_process(
            ["cat"], tmp_path, label="Test", timeout_minutes=1, input_text="from stdin"
        )
        assert result.output == "from stdin"

    def test_runs_in_cwd(self, tmp_path: Path):
        result = run_process(["pwd"], tmp_path, label="Test", timeout_minutes=1)
        assert Path(result.output.strip()).resolve() == tmp_path.resolve()

    def test_ansi_stripped(self, tmp_path: Path):
        result = run_process(
            ["printf", "\\033[31mred\\033[0m"], tmp_path, label="Test", timeout_minutes=1
        )
        assert result.output == "red"

    def test_timeout_produces_failed_result(self, tmp_path: Path):
        """A hung child is killed; the result is well-formed and fast."""
        start = time.monotonic()
        result = run_process(
            ["sh", "-c", "echo partial; sleep 30"],
            tmp_path,
            label="Slow agent",
            timeout_minutes=TINY_TIMEOUT,
        )
        elapsed = time.monotonic() - start

        assert result.exit_code == 1
        assert result.timed_out is True
        assert result.output.startswith("[TIMED OUT] Slow agent exceeded the 0.01 minutes timeout.")
        assert elapsed < 15

    def test_spawn_failure_produces_failed_result(self, tmp_path: Path):
        result = run_process(
            ["definitely-not-a-real-binary-xyz"], tmp_path, label="Ghost", timeout_minutes=1
        )
        assert result.exit_code == 1
        assert result.timed_out is False
        assert result.output.startswith("Ghost execution failed:")

    def test_truncate_output(self):
        assert _truncate_output("short", 100) == "short"
        truncated = _truncate_output("x" * 50, 10)
        assert truncated.startswith("x" * 10)
        assert "[OUTPUT TRUNCATED" in truncated


class TestShellRunner:
    def test_combined_output(self, tmp_path: Path):
        result = ShellRunner().run("echo out; echo err >&2", tmp_path)
        assert "out" in result.output
        assert "err" in result.output
        assert result.exit_code == 0

    def test_exit_code(self, tmp_path: Path):
        assert ShellRunner().run("exit 7", tmp_path).exit_code == 7

    def test_timeout(self, tmp_path: Path):
        result = ShellRunner().run("sleep 30", tmp_path, timeout_minutes=TINY_TIMEOUT)
        assert result.timed_out
        assert result.exit_code == 1
        assert result.output.startswith("[TIMED OUT] Shell command")


class TestClaudeCodeAdapter:
    def test_parse_json_result(self):
        output, cost = _parse_json_output('{"type":"result","result":"done","total_cost_usd":0.02}')
        assert output == "done"
        assert cost == 0.02

    def test_parse_json_text_and_cost_usd(self):
        output, cost = _parse_json_output('{"text":"hi","cost_usd":1}')
        assert output == "hi"
        assert cost == 1.0

    def test_parse_non_json_keeps_raw(self):
        assert _parse_json_output("plain text") == ("plain text", None)
        assert _parse_json_output("[1, 2]") == ("[1, 2]", None)

    def test_build_args(self):
        config = AgentConfig(
            cli="claude-code", model="opus", system="Be strict", allow_edits=True
        )
        args = ClaudeCodeAdapter().build_args(config)
        assert args[:4] == ["claude", "--print", "--output-format", "json"]
        assert "--dangerously-skip-permissions" in args
        assert args[args.index("--model") + 1] == "opus"
        assert args[args.index("--system-prompt") + 1] == "Be strict"
        assert args[-1] == "-"

    def test_build_args_minimal(self):
        args = ClaudeCodeAdapter().build_args(AgentConfig(cli="claude-code"))
        assert args == ["claude", "--print", "--output-format", "json", "-"]

    def test_execute_sends_prompt_on_stdin(self, tmp_path: Path, fake_bin):
        captured = tmp_path / "prompt.txt"
        fake_bin(
            "claude",
            f'cat > "{captured}"\n'
            "printf '{\"type\":\"result\",\"result\":\"build ok\",\"total_cost_usd\":0.01}\\n'",
        )
        adapter = ClaudeCodeAdapter()
        assert adapter.is_available()

        result = adapter.execute("add dark mode", AgentConfig(cli="claude-code"), tmp_path)
        assert captured.read_text() == "add dark mode"
        assert result.output == "build ok"
        assert result.cost_usd == 0.01
        assert result.exit_code == 0

    def test_unavailable_when_missing(self, mocker):
        mocker.patch("agentloop.adapters.claude_code.binary_responds", return_value=False)
        assert not ClaudeCodeAdapter().is_available()


class TestCodexAndGeminiAdapters:
    def test_codex_args(self):
        args = CodexAdapter().build_args(AgentConfig(cli="codex", model="o3", allow_edits=True))
        assert args == ["codex", "exec", "--model", "o3", "--full-auto", "-"]

    def test_gemini_args(self):
        args = GeminiAdapter().build_args(AgentConfig(cli="gemini", allow_edits=True))
        assert args == ["gemini", "--yolo"]

    def test_codex_prepends_system_text(self, tmp_path: Path, fake_bin):
        fake_bin("codex", "cat")
        result = CodexAdapter().execute(
            "review this", AgentConfig(cli="codex", system="You audit code."), tmp_path
        )
        assert result.output == "You audit code.\n\nreview this"

    def test_gemini_reads_stdin(self, tmp_path: Path, fake_bin):
        fake_bin("gemini", "cat")
        result = GeminiAdapter().execute("hello", AgentConfig(cli="gemini"), tmp_path)
        assert result.output == "hello"

    def test_binary_responds(self, fake_bin):
        fake_bin("codex", "exit 0")
        assert binary_responds("codex")
        assert not binary_responds("definitely-not-a-real-binary-xyz")


class TestCustomAdapter:
    def test_render_command_quotes_prompt(self):
        command = render_command("echo {{prompt}}", "it's $HOME; rm -rf /")
        assert command == "echo 'it'\"'\"'s $HOME; rm -rf /'"

    def test_render_command_whitespace_placeholder(self):
        assert render_command("tool --msg {{ prompt }}", "hi") == "tool --msg hi"

    def test_execute(self, tmp_path: Path):
        config = AgentConfig(cli="custom", command="echo {{prompt}}")
        result = CustomAdapter().execute("it's $HOME", config, tmp_path)
        assert result.output == "it's $HOME\n"
        assert result.exit_code == 0

    def test_missing_command(self, tmp_path: Path):
        result = CustomAdapter().execute("x", AgentConfig(cli="aider"), tmp_path)
        assert result.exit_code == 1
        assert 'requires a "command" field' in result.output

    def test_timeout(self, tmp_path: Path):
        config = AgentConfig(cli="custom", command="sleep 30", timeout=TINY_TIMEOUT)
        result = CustomAdapter().execute("x", config, tmp_path)
        assert result.timed_out
        assert result.exit_code == 1
        assert result.output.startswith("[TIMED OUT]")

    def test_always_available(self):
        assert CustomAdapter().is_available()


class TestRegistry:
    def test_all_selectors_registered(self):
        assert set(ADAPTERS) == {"claude-code", "codex", "gemini", "aider", "custom"}
        assert ADAPTERS["aider"] is ADAPTERS["custom"]

    def test_get_adapter(self):
        assert isinstance(get_adapter("codex"), CodexAdapter)

    def test_unknown_tool(self):
        with pytest.raises(UnknownToolError, match='No adapter for CLI "copilot"'):
            get_adapter("copilot")

    def test_custom_registry(self):
        fake = FakeAdapter()
        assert get_adapter("claude-code", {"claude-code": fake}) is fake

    def test_check_adapters(self):
        registry = {
            "claude-code": FakeAdapter(available=True),
            "codex": FakeAdapter(available=False),
        }
        available, missing = check_adapters(["claude-code", "codex", "gemini"], registry)
        assert available == ["claude-code"]
        assert missing == ["codex", "gemini"]

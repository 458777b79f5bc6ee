"""Load and validate workflow YAML.

YAML is parsed with ``yaml.safe_load`` and validated by the pydantic models
in ``agentloop.core.models``. Every failure surfaces as ConfigError with
dotted field paths such as ``steps.2.loop.max``.
"""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from agentloop.core.errors import AgentLoopError
from agentloop.core.models import WorkflowConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "agentloop.yml"

_VALUE_ERROR_PREFIX = "Value error, "


class ConfigError(AgentLoopError):
    """Invalid or unreadable workflow definition."""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or []
        super().__init__(message)


def _format_validation_error(error: ValidationError) -> list[str]:
    """One ``path: message`` line per pydantic error."""
    lines = []
    for item in error.errors():
        path = ".".join(str(part) for part in item["loc"])
        message = item["msg"].removeprefix(_VALUE_ERROR_PREFIX)
        lines.append(f"{path}: {message}" if path else message)
    return lines


def parse_workflow(data: Any, source: str = "<workflow>") -> WorkflowConfig:
    """Validate already-parsed YAML data.

    Raises:
        ConfigError: Data is not a mapping or fails validation
    """
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid config {source}: expected a mapping at the top level")
    try:
        return WorkflowConfig.model_validate(data)
    except ValidationError as e:
        errors = _format_validation_error(e)
        raise ConfigError(f"Invalid config {source}: {len(errors)} error(s)", errors) from e


def load_workflow(path: str | Path) -> WorkflowConfig:
    """Read, parse and validate a workflow file.

    Raises:
        ConfigError: File missing, YAML malformed, or schema violated
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e.strerror or e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    workflow = parse_workflow(data, source=str(path))
    logger.debug(f"Loaded workflow '{workflow.name}' with {len(workflow.steps)} steps")
    return workflow


STARTER_WORKFLOW = """\
name: build-and-audit

agents:
  builder:
    cli: claude-code
    allowEdits: true
    system: |
      You are a senior full-stack engineer.
      Write clean, tested, production-ready code.
      When fixing issues, address each point specifically.

  auditor:
    cli: codex
    system: |
      You are a strict code auditor.
      Review for: security vulnerabilities, performance issues,
      correctness bugs, missing error handling, and test coverage.
      If everything passes, respond with exactly: APPROVED
      Otherwise, list specific issues with file paths and line numbers.

steps:
  - name: build
    agent: builder
    prompt: |
      Implement the following feature:
      {{ feature_spec }}

  - name: test
    run: "npm test 2>&1 || true"

  - name: audit
    agent: auditor
    prompt: |
      Carefully audit all recent code changes in this repository.
      Review every file that was added or modified.

      ## Test Results:
      {{ steps.test.output }}
    context:
      - git:diff

  - name: fix
    agent: builder
    prompt: |
      Address the following audit feedback. Fix every issue mentioned:
      {{ steps.audit.output }}
    loop:
      until: steps.audit.output contains APPROVED
      max: 5
      on_max: fail
"""

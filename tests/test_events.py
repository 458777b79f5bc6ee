"""Tests for engine events and the logging sink."""

import logging

from agentloop.core.events import Event, EventType, LoggingSink


def test_event_defaults():
    event = Event(event_type=EventType.RUN_FINISHED)
    assert event.step is None
    assert event.iteration is None
    assert event.payload == {}
    assert event.timestamp.tzinfo is not None


class TestLoggingSink:
    def test_progress_at_info(self, caplog):
        caplog.set_level(logging.DEBUG, logger="agentloop")
        LoggingSink().emit(
            Event(
                event_type=EventType.STEP_COMPLETED,
                step="build",
                iteration=2,
                payload={"exit_code": 0, "output": "very long output"},
            )
        )
        (entry,) = caplog.records
        assert entry.levelno == logging.INFO
        assert entry.getMessage() == "step_completed step=build iteration=2 exit_code=0"

    def test_problems_at_warning(self, caplog):
        caplog.set_level(logging.DEBUG, logger="agentloop")
        LoggingSink().emit(
            Event(event_type=EventType.CONTEXT_UNREADABLE, step="audit", payload={"path": "x.md"})
        )
        assert caplog.records[0].levelno == logging.WARNING

    def test_state_changes_at_debug(self, caplog):
        caplog.set_level(logging.DEBUG, logger="agentloop")
        LoggingSink().emit(Event(event_type=EventType.STATE_CHANGED, payload={"state": "done"}))
        assert caplog.records[0].levelno == logging.DEBUG

    def test_custom_logger(self, caplog):
        caplog.set_level(logging.INFO, logger="custom")
        LoggingSink(logging.getLogger("custom")).emit(Event(event_type=EventType.RUN_FINISHED))
        assert caplog.records[0].name == "custom"

"""Tests for the logging configuration module."""

import logging
from pathlib import Path

import structlog

from failure_triage.utils.logging import (
    SERVICE_NAME,
    LogEventNames,
    LogFormat,
    LogLevel,
    ValueTruncator,
    add_service_context,
    bind_context,
    clear_context,
    configure_logging,
    truncate_log_value,
)


class TestTruncateLogValue:
    """Tests for truncate_log_value function."""

    def test_short_string_unchanged(self) -> None:
        """Test that strings within the limit are kept."""
        assert truncate_log_value("short", max_length=10) == "short"
        assert truncate_log_value("x" * 10, max_length=10) == "x" * 10

    def test_long_string_marked(self) -> None:
        """Test that long strings are cut and report what was dropped."""
        result = truncate_log_value("a" * 25, max_length=10)
        assert result == "a" * 10 + "...[truncated 15 chars]"

    def test_nested_containers(self) -> None:
        """Test that dicts, lists and tuples are walked recursively."""
        data = {"dom": "<div>" * 10, "frames": ["f" * 20, 3], "pair": ("ok", "p" * 20)}

        result = truncate_log_value(data, max_length=8)

        assert result["dom"].startswith("<div><di...[truncated")
        assert result["frames"][0] == "f" * 8 + "...[truncated 12 chars]"
        assert result["frames"][1] == 3
        assert isinstance(result["pair"], tuple)
        assert result["pair"][0] == "ok"

    def test_non_string_values(self) -> None:
        """Test that scalars pass through."""
        assert truncate_log_value(12345, max_length=2) == 12345
        assert truncate_log_value(None) is None


class TestValueTruncator:
    """Tests for the ValueTruncator processor."""

    def test_event_name_is_kept(self) -> None:
        """Test that the event itself is never truncated."""
        processor = ValueTruncator(max_length=5)
        event = {"event": "harness_finished_with_output", "stdout": "line\n" * 10}

        result = processor(logging.getLogger("test"), "info", event)

        assert result["event"] == "harness_finished_with_output"
        assert result["stdout"] == "line\n...[truncated 45 chars]"


class TestAddServiceContext:
    """Tests for add_service_context."""

    def test_adds_service_and_version(self) -> None:
        """Test that the service name and version are attached."""
        result = add_service_context(logging.getLogger("test"), "info", {"event": "x"})

        assert result["service"] == SERVICE_NAME
        assert isinstance(result["version"], str)


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_with_console_format(self) -> None:
        """Test configuration with console format."""
        configure_logging(level=LogLevel.DEBUG, log_format=LogFormat.CONSOLE)
        assert logging.getLogger().level == logging.DEBUG

    def test_configure_with_json_format(self) -> None:
        """Test configuration with JSON format."""
        configure_logging(level=LogLevel.INFO, log_format=LogFormat.JSON)
        assert logging.getLogger().level == logging.INFO

    def test_configure_with_string_values(self) -> None:
        """Test that level and format strings are case-insensitive."""
        configure_logging(level="warning", log_format="JSON")
        assert logging.getLogger().level == logging.WARNING

    def test_configure_with_file_logging(self, tmp_path: Path) -> None:
        """Test that the log directory is created and events reach the file."""
        log_file = tmp_path / "cache" / "triage.log"
        configure_logging(
            level=LogLevel.INFO,
            log_format=LogFormat.JSON,
            file_path=log_file,
            file_enabled=True,
            max_value_length=100,
        )

        structlog.get_logger("test").info("file_logging_check", payload="z" * 500)
        for handler in logging.getLogger().handlers:
            handler.flush()

        content = log_file.read_text()
        assert "file_logging_check" in content
        assert "[truncated 400 chars]" in content

    def test_file_logging_disabled(self, tmp_path: Path) -> None:
        """Test that no file is written unless enabled."""
        log_file = tmp_path / "triage.log"
        configure_logging(file_path=log_file, file_enabled=False)
        assert not log_file.exists()

    def test_unusable_log_file_falls_back_to_stderr(self, tmp_path: Path) -> None:
        """Test that a log path under a regular file leaves only the stderr handler."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")

        configure_logging(file_path=blocker / "triage.log", file_enabled=True)

        assert [type(h) for h in logging.getLogger().handlers] == [logging.StreamHandler]


class TestContextFunctions:
    """Tests for context binding functions."""

    def test_bind_and_clear_context(self) -> None:
        """Test binding and clearing context."""
        bind_context(run_id="20240501T100000", session_id="lq3k9x-1a2b3c4d")
        assert structlog.contextvars.get_contextvars()["run_id"] == "20240501T100000"

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_bound_context_reaches_events(self, tmp_path: Path) -> None:
        """Test that bound fields are merged into rendered events."""
        log_file = tmp_path / "triage.log"
        configure_logging(log_format=LogFormat.JSON, file_path=log_file, file_enabled=True)

        bind_context(session_id="lq3k9x-1a2b3c4d")
        structlog.get_logger("test").info("context_check")
        clear_context()
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "lq3k9x-1a2b3c4d" in log_file.read_text()


class TestEnums:
    """Tests for LogLevel, LogFormat and event names."""

    def test_log_levels(self) -> None:
        """Test that all expected log levels exist."""
        assert [level.value for level in LogLevel] == [
            "DEBUG",
            "INFO",
            "WARNING",
            "ERROR",
            "CRITICAL",
        ]

    def test_log_formats(self) -> None:
        """Test that all expected formats exist."""
        assert LogFormat.JSON.value == "json"
        assert LogFormat.CONSOLE.value == "console"

    def test_event_names_are_snake_case(self) -> None:
        """Test that event name constants follow the logging convention."""
        names = [v for k, v in vars(LogEventNames).items() if k.isupper()]
        assert names
        assert all(name == name.lower() and " " not in name for name in names)

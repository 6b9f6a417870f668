"""Structured logging for failure-triage.

structlog renders every event, either as JSON lines for CI collectors or as
colored console output. String fields are cut to a maximum length before
rendering, because a single DOM snapshot or stack dump can run to megabytes.
Log lines always go to stderr so that stdout carries only command output.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog

from failure_triage._version import __version__

SERVICE_NAME = "failure-triage"
DEFAULT_MAX_VALUE_LENGTH = 2000
TRUNCATION_MARKER = "...[truncated {count} chars]"

EventDict = MutableMapping[str, Any]


class LogFormat(StrEnum):
    """Renderer selection."""

    JSON = "json"
    CONSOLE = "console"


class LogLevel(StrEnum):
    """Accepted level names, matching :mod:`logging`."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def truncate_log_value(value: Any, max_length: int = DEFAULT_MAX_VALUE_LENGTH) -> Any:
    """Shorten long strings, descending into dicts, lists and tuples.

    Args:
        value: Any log field value
        max_length: Longest string kept as is

    Returns:
        The value with every over-long string cut and marked with the
        number of characters dropped
    """
    if isinstance(value, str):
        if len(value) <= max_length:
            return value
        dropped = len(value) - max_length
        return value[:max_length] + TRUNCATION_MARKER.format(count=dropped)
    if isinstance(value, dict):
        return {k: truncate_log_value(v, max_length) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(truncate_log_value(v, max_length) for v in value)
    return value


class ValueTruncator:
    """Structlog processor that keeps every event below a size limit.

    The event name itself is never cut.

    Example:
        >>> ValueTruncator(4)(None, "info", {"event": "e", "stack": "abcdefg"})
        {'event': 'e', 'stack': 'abcd...[truncated 3 chars]'}
    """

    def __init__(self, max_length: int = DEFAULT_MAX_VALUE_LENGTH) -> None:
        self.max_length = max_length

    def __call__(self, logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in event_dict.items():
            if key != "event":
                event_dict[key] = truncate_log_value(value, self.max_length)
        return event_dict


def add_service_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp each event with the tool name and installed version."""
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = __version__
    return event_dict


def _renderer(log_format: LogFormat) -> Any:
    if log_format == LogFormat.JSON:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(), exception_formatter=structlog.dev.plain_traceback
    )


def _handlers(level: int, file_path: Path | None) -> list[logging.Handler]:
    stderr = logging.StreamHandler(sys.stderr)
    stderr.setLevel(level)
    if file_path is None:
        return [stderr]

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        to_file = logging.FileHandler(file_path)
    except OSError as e:
        logging.getLogger("failure_triage.logging").warning(
            "log file %s unavailable, logging to stderr only: %s", file_path, e
        )
        return [stderr]
    to_file.setLevel(level)
    return [stderr, to_file]


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    log_format: LogFormat | str = LogFormat.CONSOLE,
    file_path: Path | str | None = None,
    file_enabled: bool = False,
    max_value_length: int = DEFAULT_MAX_VALUE_LENGTH,
) -> None:
    """Set up structlog and the stdlib root logger.

    Safe to call more than once; the last call wins.

    Args:
        level: Minimum level, case-insensitive
        log_format: ``json`` or ``console``, case-insensitive
        file_path: Extra log file, also written when ``file_enabled``
        file_enabled: Whether ``file_path`` is used
        max_value_length: Longest string field rendered in full

    Example:
        configure_logging(level="DEBUG")                      # local runs
        configure_logging(log_format="json", file_enabled=True,
                          file_path=".e2e-cache/triage.log")  # CI
    """
    level = LogLevel(level.upper()) if isinstance(level, str) else level
    log_format = LogFormat(log_format.lower()) if isinstance(log_format, str) else log_format
    numeric_level: int = getattr(logging, level.value)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_context,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            ValueTruncator(max_value_length),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(log_format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    target = Path(file_path) if file_enabled and file_path else None
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=_handlers(numeric_level, target),
        force=True,
    )


def bind_context(**kwargs: Any) -> None:
    """Attach fields to every later event in this context.

    Example:
        bind_context(run_id="20240501T100000", session_id="lq3k9x-1a2b3c4d")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogEventNames:
    """Event names shared across modules.

    CI log searches key on these, so renaming one is a breaking change.
    """

    # Harness
    HARNESS_STARTED = "harness_started"
    HARNESS_FINISHED = "harness_finished"
    HARNESS_TIMEOUT = "harness_timeout"
    HARNESS_RETRY = "retrying_harness_run"

    # Analysis
    RUN_SAVED = "run_saved"
    ANALYSIS_COMPLETED = "analysis_completed"
    DEEP_ANALYSIS_COMPLETED = "deep_analysis_completed"
    ROOT_CAUSE_SYNTHESIZED = "root_cause_synthesized"
    DEEP_ANALYSIS_SKIPPED = "deep_analysis_skipped"

    # Import graph
    GRAPH_BUILT = "import_graph_built"
    GRAPH_CACHE_HIT = "import_graph_cache_hit"
    GRAPH_CACHE_STALE = "import_graph_cache_stale"

    # Fixes
    FIX_APPLIED = "fix_applied"
    FIX_APPLY_FAILED = "fix_apply_failed"
    FIX_TRANSACTION_ROLLED_BACK = "fix_transaction_rolled_back"
    BACKUP_RESTORED = "backup_restored"

    # Sessions
    SESSION_CREATED = "session_created"
    SESSION_CLEARED = "session_cleared"

    # Watch mode
    WATCH_STARTED = "watch_started"
    WATCH_RUN_STARTED = "watch_run_started"
    WATCH_RUN_FAILED = "watch_run_failed"
    WATCH_STOPPED = "watch_stopped"

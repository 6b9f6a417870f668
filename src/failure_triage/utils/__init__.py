"""Utility functions and helpers.

This module provides shared utilities for failure-triage:
- fs: Source tree walking and verbatim text reads/writes
- logging: Structured logging with value truncation
"""

from failure_triage.utils.fs import (
    iter_source_files,
    line_and_column,
    read_text,
    to_relative,
    write_text,
)
from failure_triage.utils.logging import (
    LogEventNames,
    LogFormat,
    LogLevel,
    bind_context,
    clear_context,
    configure_logging,
)

__all__ = [
    # Filesystem
    "iter_source_files",
    "line_and_column",
    "read_text",
    "to_relative",
    "write_text",
    # Logging
    "LogEventNames",
    "LogFormat",
    "LogLevel",
    "bind_context",
    "clear_context",
    "configure_logging",
]

"""Exception hierarchy for the triage pipeline.

Analysis-input errors (missing or malformed run data) abort an operation with
an actionable message. Per-file filesystem problems during scans are not
raised at all: the file is logged and skipped. Trace exhaustion and
"no matching signature" are valid results, not errors.
"""

from __future__ import annotations


class TriageError(Exception):
    """Base exception for all pipeline errors."""


class ResultParseError(TriageError):
    """Harness output could not be parsed into test results."""


class MissingRunDataError(TriageError):
    """A cached document the command depends on is absent or unreadable.

    Attributes:
        path: The document that was expected.
        hint: Command the user should run first.
    """

    def __init__(self, message: str, path: str | None = None, hint: str | None = None) -> None:
        super().__init__(message)
        self.path = path
        self.hint = hint

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base} (run `{self.hint}` first)" if self.hint else base


class PatternLibraryError(TriageError):
    """The failure signature library is missing or invalid."""


class TemplateError(TriageError):
    """A fix template is missing or invalid."""


class HarnessError(TriageError):
    """The external test harness failed to produce a report."""


class HarnessTimeoutError(HarnessError):
    """The external test harness exceeded its timeout."""


class SessionError(TriageError):
    """Session state could not be read or written."""

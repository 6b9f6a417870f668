"""Report builders: compressed status, diffs, sessions, actions and full reports."""

from .actions import ActionPlanner, ActionSet
from .compression import compress, exit_code, minimal_status, parse_compressed
from .dashboard import DashboardRenderer
from .diff import DiffReporter
from .json_report import JSONReporter
from .session import ReportItems, SessionManager, format_session_output
from .summary import ConsumerSummary, SummaryReporter

__all__ = [
    "ActionPlanner",
    "ActionSet",
    "ConsumerSummary",
    "DashboardRenderer",
    "DiffReporter",
    "JSONReporter",
    "ReportItems",
    "SessionManager",
    "SummaryReporter",
    "compress",
    "exit_code",
    "format_session_output",
    "minimal_status",
    "parse_compressed",
]

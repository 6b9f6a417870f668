"""Compressed status lines built from two-letter semantic codes.

A full run collapses into one line such as ``X:12/40|BC:9@LI|AF``: status,
failed/total, the dominant category with its count and fix strategy, and
the next action.
"""

from __future__ import annotations

import re

from failure_triage.models.analysis import AggregatedCategories
from failure_triage.models.report import (
    CATEGORY_FIXES,
    STATUS_ACTIONS,
    ActionCode,
    CategoryCode,
    CompressedReport,
    FixCode,
    StatusCode,
    category_code,
)
from failure_triage.models.test_result import RunSummary

COMPRESSED_PATTERN = re.compile(
    r"^(?P<status>[PFXB]):(?P<failed>\d+)(?:/(?P<total>\d+))?"
    r"(?:\|(?P<category>[A-Z]{2}):(?P<count>\d+)(?:@(?P<fix>[A-Z]{2}))?)?"
    r"(?:\|(?P<action>[A-Z]{2}))?$"
)

TEMPLATE_FIXES: dict[str, FixCode] = {
    "lazy-initialization": FixCode.LAZY_INIT,
    "dynamic-import": FixCode.DYNAMIC_IMPORT,
    "browser-guard": FixCode.BROWSER_GUARD,
    "data-source-import": FixCode.DATA_SOURCE,
    "wait-for-selector": FixCode.WAIT_TIMEOUT,
    "increase-timeout": FixCode.WAIT_TIMEOUT,
}

ACTION_COMMANDS: dict[ActionCode, str] = {
    ActionCode.AUTO_FIX: "failure-triage fix --apply",
    ActionCode.RE_ANALYZE: "failure-triage analyze",
    ActionCode.RE_TEST: "failure-triage run",
    ActionCode.DEEP_ANALYZE: "failure-triage deep",
    ActionCode.MANUAL_FIX: "failure-triage deep --format json",
    ActionCode.CHECK_INFRA: "failure-triage run --debug",
}

EXIT_CODES: dict[StatusCode, int] = {
    StatusCode.PASS: 0,
    StatusCode.FAIL: 1,
    StatusCode.FIXABLE: 2,
    StatusCode.BLOCKED: 3,
}

CODE_DESCRIPTIONS: dict[str, str] = {
    StatusCode.PASS: "All tests passed",
    StatusCode.FAIL: "Tests failed, no automatic fix known",
    StatusCode.FIXABLE: "Tests failed, automatic fixes available",
    StatusCode.BLOCKED: "No usable run data; the harness did not report",
    CategoryCode.BROWSER_COMPAT: "Server-only code reached the browser bundle",
    CategoryCode.TIMEOUT: "Operation exceeded its timeout",
    CategoryCode.NOT_FOUND: "Expected element never appeared",
    CategoryCode.NETWORK: "Request failed at the network layer",
    CategoryCode.SERVER_ERROR: "Backend answered with a server error",
    CategoryCode.ASSERTION: "Assertion did not hold",
    CategoryCode.PERMISSION: "Access was denied",
    CategoryCode.DATABASE: "Database query or connection failed",
    CategoryCode.UNKNOWN: "Unclassified failure",
    ActionCode.AUTO_FIX: "Apply the generated fixes",
    ActionCode.RE_ANALYZE: "Re-run the pattern analysis",
    ActionCode.RE_TEST: "Re-run the tests to confirm",
    ActionCode.DEEP_ANALYZE: "Run root-cause analysis",
    ActionCode.MANUAL_FIX: "Fix by hand using the suggestions",
    ActionCode.CHECK_INFRA: "Check the test infrastructure",
    FixCode.LAZY_INIT: "Defer singleton construction to a getter",
    FixCode.DYNAMIC_IMPORT: "Load the module with a dynamic import",
    FixCode.BROWSER_GUARD: "Guard Node-only code behind a runtime check",
    FixCode.DATA_SOURCE: "Route data access through the API client",
    FixCode.WAIT_TIMEOUT: "Wait longer or wait for the right selector",
    FixCode.RETRY_LOGIC: "Retry the failing request",
}


def status_code(summary: RunSummary | None, fixable: int = 0, blocked: bool = False) -> StatusCode:
    """P, F, X or B for a run."""
    if blocked or summary is None:
        return StatusCode.BLOCKED
    if summary.failed == 0:
        return StatusCode.PASS
    if fixable > 0:
        return StatusCode.FIXABLE
    return StatusCode.FAIL


def exit_code(status: StatusCode) -> int:
    """Process exit code for a status: 0 pass, 1 fail, 2 fixable, 3 blocked."""
    return EXIT_CODES[status]


def action_code(status: StatusCode, has_categories: bool = True) -> ActionCode:
    """Next action for a status; a plain failure without categories is re-analyzed."""
    if status == StatusCode.FAIL and not has_categories:
        return ActionCode.RE_ANALYZE
    return STATUS_ACTIONS[status]


def fix_code(category: CategoryCode) -> FixCode:
    return CATEGORY_FIXES.get(category, FixCode.LAZY_INIT)


def template_fix_code(template_id: str) -> FixCode:
    """Fix code for a template id, accepting ``_`` or ``-`` separators."""
    return TEMPLATE_FIXES.get(template_id.lower().replace("_", "-"), FixCode.LAZY_INIT)


def compress(
    summary: RunSummary | None, aggregated: AggregatedCategories | None = None
) -> CompressedReport:
    """Collapse a run and its category analysis into one status line.

    Args:
        summary: Run counts; None means the harness produced nothing
        aggregated: Category roll-up, if the run was analyzed

    Returns:
        CompressedReport whose ``raw`` is ``S:{failed}/{total}|{CAT}:{n}@{FIX}|{ACTION}``
    """
    fixable = aggregated.fixable_errors if aggregated is not None else 0
    status = status_code(summary, fixable)
    failed = summary.failed if summary is not None else 0
    total = summary.total if summary is not None else 0

    category = None
    count = None
    fix = None
    if aggregated is not None and aggregated.categories and status != StatusCode.PASS:
        primary = aggregated.categories[0]
        category = category_code(primary.category)
        count = primary.count
        fix = fix_code(category)

    action = action_code(status, has_categories=category is not None)

    raw = f"{status}:{failed}/{total}"
    if category is not None:
        raw += f"|{category}:{count}@{fix}"
    raw += f"|{action}"

    return CompressedReport(
        raw=raw,
        status=status,
        failed=failed,
        total=total,
        action=action,
        category=category,
        category_count=count,
        fix=fix,
    )


def parse_compressed(raw: str) -> CompressedReport:
    """Inverse of :func:`compress`.

    A missing total is taken to equal the failed count, and a missing action
    is derived from the status.

    Raises:
        ValueError: If ``raw`` is not a compressed status line
    """
    match = COMPRESSED_PATTERN.match(raw.strip())
    if match is None:
        raise ValueError(f"Not a compressed status line: {raw!r}")

    status = StatusCode(match["status"])
    failed = int(match["failed"])
    total = int(match["total"]) if match["total"] else failed
    category = CategoryCode(match["category"]) if match["category"] else None
    fix = FixCode(match["fix"]) if match["fix"] else None
    action = (
        ActionCode(match["action"])
        if match["action"]
        else action_code(status, has_categories=category is not None)
    )
    return CompressedReport(
        raw=raw.strip(),
        status=status,
        failed=failed,
        total=total,
        action=action,
        category=category,
        category_count=int(match["count"]) if match["count"] else None,
        fix=fix,
    )


def minimal_status(summary: RunSummary | None, fixable: int = 0) -> str:
    """Shortest form: ``P`` when green, else ``{status}:{failed}``."""
    status = status_code(summary, fixable)
    if status == StatusCode.PASS:
        return str(status)
    return f"{status}:{summary.failed if summary is not None else 0}"


def expand_code(code: str) -> str:
    """Human description of any two-letter code; unknown codes echo back."""
    return CODE_DESCRIPTIONS.get(code, code)


def action_command(action: ActionCode) -> str:
    return ACTION_COMMANDS[action]


def format_codes_reference() -> str:
    """One-screen legend of every code family."""
    families = (
        ("Status", StatusCode),
        ("Categories", CategoryCode),
        ("Actions", ActionCode),
        ("Fixes", FixCode),
    )
    lines = ["SEMANTIC CODES:"]
    for title, codes in families:
        entries = " ".join(f"{code}={code.name.title().replace('_', '')}" for code in codes)
        lines.append(f"{title}: {entries}")
    return "\n".join(lines)

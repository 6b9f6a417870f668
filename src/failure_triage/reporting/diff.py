"""Differential reports: only what changed since the previous run.

Each run is reduced to a hashed snapshot persisted in ``last-snapshot.json``.
When the hash matches the previous snapshot the whole report is
``{"unchanged": true}``.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from failure_triage.models.analysis import AggregatedCategories
from failure_triage.models.report import (
    ActionCode,
    CategoryDelta,
    DiffReport,
    Snapshot,
    StatusCode,
    category_code,
)
from failure_triage.models.test_result import RunSummary
from failure_triage.reporting.compression import status_code
from failure_triage.utils.fs import write_text

log = structlog.get_logger()

SNAPSHOT_FILE = "last-snapshot.json"
SNAPSHOT_SCHEMA_VERSION = 1
PASS_RATE_EPSILON = 0.1
MAX_JSON_FAILURES = 5

DIFF_ACTIONS = {
    "FIX": "failure-triage fix --apply",
    "INVESTIGATE": "failure-triage deep",
    "NONE": "failure-triage run",
}

DIFF_ACTION_CODES = {
    "FIX": ActionCode.AUTO_FIX,
    "INVESTIGATE": ActionCode.DEEP_ANALYZE,
    "NONE": ActionCode.RE_TEST,
}


def snapshot_hash(
    status: StatusCode,
    summary: dict[str, int],
    failed_tests: Iterable[str],
    categories: dict[str, int],
    fixable_count: int,
) -> str:
    """First 8 hex chars of the md5 of the canonical JSON form."""
    canonical = json.dumps(
        {
            "status": str(status),
            "summary": summary,
            "failed_tests": sorted(failed_tests),
            "categories": categories,
            "fixable_count": fixable_count,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()[:8]


def _pass_rate(summary: dict[str, int]) -> float | None:
    total = summary.get("total", 0)
    if not total:
        return None
    return summary.get("passed", 0) / total * 100


class DiffReporter:
    """Compares the current run with the last persisted snapshot.

    Example:
        reporter = DiffReporter(config.paths.cache_path)
        report = reporter.generate(run.summary, aggregated, failed_names)
        print(reporter.format_compact(report))
    """

    def __init__(self, cache_dir: Path) -> None:
        self._snapshot_path = cache_dir / SNAPSHOT_FILE

    @property
    def snapshot_path(self) -> Path:
        return self._snapshot_path

    def create_snapshot(
        self,
        summary: RunSummary | None,
        aggregated: AggregatedCategories | None,
        failed_tests: Iterable[str],
    ) -> Snapshot:
        """Hash the parts of a run that matter for change detection.

        Durations are left out of the hash so identical outcomes compare equal.
        """
        fixable = aggregated.fixable_errors if aggregated is not None else 0
        status = status_code(summary, fixable)
        counts = (
            {
                "total": summary.total,
                "passed": summary.passed,
                "failed": summary.failed,
                "skipped": summary.skipped,
            }
            if summary is not None
            else {}
        )
        categories = (
            {c.category.value: c.count for c in aggregated.categories}
            if aggregated is not None
            else {}
        )
        failed = sorted(set(failed_tests))
        return Snapshot(
            hash=snapshot_hash(status, counts, failed, categories, fixable),
            timestamp=datetime.now(UTC).isoformat(),
            status=status,
            summary=counts,
            failed_tests=tuple(failed),
            categories=categories,
            fixable_count=fixable,
        )

    def generate(
        self,
        summary: RunSummary | None,
        aggregated: AggregatedCategories | None,
        failed_tests: Iterable[str],
    ) -> DiffReport:
        """Diff against the stored snapshot, then store the current one."""
        current = self.create_snapshot(summary, aggregated, failed_tests)
        previous = self.load_snapshot()
        self.save_snapshot(current)

        if previous is None:
            return self.first_run_report(current)
        if previous.hash == current.hash:
            return DiffReport(unchanged=True)
        return self.compute_diff(previous, current)

    def load_snapshot(self) -> Snapshot | None:
        """Previous snapshot, or None when absent or unreadable."""
        if not self._snapshot_path.is_file():
            return None
        try:
            data = json.loads(self._snapshot_path.read_text(encoding="utf-8"))
            return Snapshot.from_dict(data)
        except (OSError, ValueError, KeyError) as e:
            log.warning("snapshot_unreadable", path=str(self._snapshot_path), error=str(e))
            return None

    def save_snapshot(self, snapshot: Snapshot) -> None:
        document = {"schema_version": SNAPSHOT_SCHEMA_VERSION, **snapshot.to_dict()}
        write_text(self._snapshot_path, json.dumps(document, indent=2))

    def first_run_report(self, current: Snapshot) -> DiffReport:
        """Everything is new; the previous state is assumed green."""
        action = self._action(current, new_failures=bool(current.failed_tests))
        return DiffReport(
            unchanged=False,
            status_change=f"{StatusCode.PASS}→{current.status}",
            new_failures=current.failed_tests,
            failed_delta=current.summary.get("failed", 0),
            action=action,
            command=DIFF_ACTIONS[action],
        )

    def compute_diff(self, previous: Snapshot, current: Snapshot) -> DiffReport:
        """Field-by-field delta between two snapshots."""
        status_change = (
            f"{previous.status}→{current.status}" if previous.status != current.status else None
        )

        before = set(previous.failed_tests)
        after = set(current.failed_tests)
        new_failures = tuple(t for t in current.failed_tests if t not in before)
        fixed = tuple(t for t in previous.failed_tests if t not in after)

        deltas = []
        for category in sorted(set(previous.categories) | set(current.categories)):
            delta = current.categories.get(category, 0) - previous.categories.get(category, 0)
            if delta:
                deltas.append(CategoryDelta(category=category, delta=delta))

        pass_rate_delta = None
        before_rate = _pass_rate(previous.summary)
        after_rate = _pass_rate(current.summary)
        if before_rate is not None and after_rate is not None:
            rate_delta = after_rate - before_rate
            if abs(rate_delta) > PASS_RATE_EPSILON:
                pass_rate_delta = round(rate_delta, 1)

        failed_delta = current.summary.get("failed", 0) - previous.summary.get("failed", 0)
        action = self._action(current, new_failures=bool(new_failures))

        return DiffReport(
            unchanged=False,
            status_change=status_change,
            new_failures=new_failures,
            fixed_tests=fixed,
            changed_categories=tuple(deltas),
            pass_rate_delta=pass_rate_delta,
            failed_delta=failed_delta or None,
            action=action,
            command=DIFF_ACTIONS[action],
        )

    @staticmethod
    def _action(current: Snapshot, new_failures: bool) -> str:
        if current.fixable_count > 0:
            return "FIX"
        if new_failures:
            return "INVESTIGATE"
        return "NONE"

    @staticmethod
    def format_compact(report: DiffReport) -> str:
        """``UNCHANGED`` or ``P→X|+1F|-3F|BC:+1|AF``."""
        if report.unchanged:
            return "UNCHANGED"

        parts = []
        if report.status_change:
            parts.append(report.status_change)
        if report.new_failures:
            parts.append(f"+{len(report.new_failures)}F")
        if report.fixed_tests:
            parts.append(f"-{len(report.fixed_tests)}F")
        for change in report.changed_categories:
            parts.append(f"{category_code(change.category)}:{change.delta:+d}")
        if report.action:
            parts.append(str(DIFF_ACTION_CODES[report.action]))
        return "|".join(parts) or "NO_CHANGE"

    @staticmethod
    def format_json(report: DiffReport) -> str:
        """Minimal JSON holding only the fields that changed."""
        if report.unchanged:
            return json.dumps({"unchanged": True})

        minimal: dict[str, Any] = {}
        if report.status_change:
            minimal["status"] = report.status_change
        if report.new_failures:
            failures = list(report.new_failures[:MAX_JSON_FAILURES])
            if len(report.new_failures) > MAX_JSON_FAILURES:
                failures.append(f"+{len(report.new_failures) - MAX_JSON_FAILURES} more")
            minimal["new_failures"] = failures
        if report.fixed_tests:
            minimal["fixed"] = len(report.fixed_tests)
        if report.changed_categories:
            minimal["categories"] = {c.category: c.delta for c in report.changed_categories}
        if report.pass_rate_delta is not None:
            minimal["pass_rate_delta"] = report.pass_rate_delta
        if report.failed_delta:
            minimal["failed_delta"] = report.failed_delta
        if report.action:
            minimal["action"] = report.action
            minimal["cmd"] = report.command
        return json.dumps(minimal, ensure_ascii=False)

    @staticmethod
    def format_summary(report: DiffReport) -> str:
        """Human-readable lines describing the change."""
        if report.unchanged:
            return "No changes since the last run."

        lines = []
        if report.status_change:
            lines.append(f"Status: {report.status_change}")
        if report.new_failures:
            lines.append(f"New failures ({len(report.new_failures)}):")
            lines.extend(f"  + {name}" for name in report.new_failures)
        if report.fixed_tests:
            lines.append(f"Fixed ({len(report.fixed_tests)}):")
            lines.extend(f"  - {name}" for name in report.fixed_tests)
        for change in report.changed_categories:
            lines.append(f"Category {change.category}: {change.delta:+d}")
        if report.pass_rate_delta is not None:
            lines.append(f"Pass rate: {report.pass_rate_delta:+.1f}%")
        if report.action and report.action != "NONE":
            lines.append(f"Next: {report.action} ($ {report.command})")
        return "\n".join(lines) or "No significant changes."

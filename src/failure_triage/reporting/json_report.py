"""Comprehensive JSON report: current run, trends, comparison and health.

History entries are the per-run documents the pipeline writes to
``history/<timestamp>.json``; the newest ``max_history`` of them feed the
trend series and the health score.
"""

from __future__ import annotations

import json
import statistics
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from failure_triage.models.analysis import AggregatedCategories
from failure_triage.models.report import HealthScore
from failure_triage.models.test_result import RunSummary, TestRun
from failure_triage.utils.fs import write_text

log = structlog.get_logger()

REPORT_SCHEMA_VERSION = 1
MAX_HISTORY = 30
RECENT_RUNS = 5

GRADE_THRESHOLDS = ((90, "A"), (80, "B"), (70, "C"), (60, "D"))


def grade_for(score: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def _pass_rate(summary: dict[str, Any] | None) -> float:
    """Pass rate in percent from a serialized summary."""
    if not summary or not summary.get("total"):
        return 0.0
    return summary.get("passed", 0) / summary["total"] * 100


class JSONReporter:
    """Builds ``report.json`` from the current run and run history.

    Example:
        reporter = JSONReporter(config.paths.history_path)
        report = reporter.generate(run, aggregated, root_causes)
        reporter.save(report, config.paths.cache_path / "report.json")
    """

    def __init__(self, history_dir: Path, max_history: int = MAX_HISTORY) -> None:
        self._history_dir = history_dir
        self._max_history = max_history

    def load_history(self) -> list[dict[str, Any]]:
        """Newest history entries first; unreadable entries are skipped."""
        if not self._history_dir.is_dir():
            return []
        entries = []
        paths = sorted(self._history_dir.glob("*.json"), reverse=True)[: self._max_history]
        for path in paths:
            try:
                entries.append(json.loads(path.read_text(encoding="utf-8")))
            except (OSError, ValueError) as e:
                log.debug("history_entry_skipped", path=str(path), error=str(e))
        return entries

    def generate(
        self,
        run: TestRun | None,
        aggregated: AggregatedCategories | None,
        root_causes: Sequence[dict[str, Any]] = (),
    ) -> dict[str, Any]:
        """Assemble the full report document.

        Args:
            run: Current run, None when no run has been recorded
            aggregated: Category roll-up of the current run
            root_causes: Root-cause summaries from the last deep analysis
        """
        history = self.load_history()
        summary = run.summary if run is not None else None
        health = self.health_score(summary, aggregated, history)

        return {
            "schema_version": REPORT_SCHEMA_VERSION,
            "generated": datetime.now(UTC).isoformat(),
            "current": {
                "timestamp": run.timestamp if run is not None else None,
                "summary": summary_to_dict(summary),
                "analysis": aggregated_to_dict(aggregated),
            },
            "trends": self.calculate_trends(history),
            "root_causes": list(root_causes),
            "comparison": self.compare_to_history(run, history),
            "health": {
                "score": health.score,
                "grade": health.grade,
                "factors": list(health.factors),
            },
        }

    def save(self, report: dict[str, Any], path: Path) -> Path:
        write_text(path, json.dumps(report, indent=2, ensure_ascii=False))
        log.info("report_saved", path=str(path), grade=report["health"]["grade"])
        return path

    @staticmethod
    def calculate_trends(history: Sequence[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
        """Series of ``{date, value}`` points, oldest first."""
        ordered = list(reversed(history))

        def series(value_of: Callable[[dict[str, Any]], Any]) -> list[dict[str, Any]]:
            return [
                {"date": entry.get("timestamp", ""), "value": value_of(entry)} for entry in ordered
            ]

        return {
            "pass_rate": series(lambda e: round(_pass_rate(e.get("summary")), 1)),
            "failure_count": series(lambda e: (e.get("summary") or {}).get("failed", 0)),
            "fixable_count": series(lambda e: e.get("fixable_count", 0)),
            "duration_ms": series(lambda e: (e.get("summary") or {}).get("duration_ms", 0)),
        }

    @staticmethod
    def compare_to_history(
        run: TestRun | None, history: Sequence[dict[str, Any]]
    ) -> dict[str, Any]:
        """Change against the newest history entry that is not this run."""
        empty: dict[str, Any] = {
            "pass_rate_change": 0.0,
            "failure_change": 0,
            "new_failures": [],
            "fixed_tests": [],
        }
        if run is None:
            return empty
        previous = next((h for h in history if h.get("timestamp") != run.timestamp), None)
        if previous is None or not previous.get("summary"):
            return empty

        current_failed = {r.name for r in run.failures}
        current_passed = {r.name for r in run.results if not r.failed}
        previous_failed = set(previous.get("failed_tests", ()))
        current_rate = run.summary.pass_rate

        return {
            "pass_rate_change": round(current_rate - _pass_rate(previous["summary"]), 1),
            "failure_change": run.summary.failed - previous["summary"].get("failed", 0),
            "new_failures": sorted(current_failed - previous_failed),
            "fixed_tests": sorted(previous_failed & current_passed),
        }

    @staticmethod
    def health_score(
        summary: RunSummary | None,
        aggregated: AggregatedCategories | None,
        history: Sequence[dict[str, Any]],
    ) -> HealthScore:
        """0-100 score from pass rate, fixability, trend and consistency.

        Pass rate weighs 40 points and each other factor 20. Fixability is
        neutral (10) without an analysis, the trend without two history
        points and consistency without three.
        """
        if summary is None:
            return HealthScore(score=0, grade="F", factors=("No test data available",))

        factors = []
        pass_rate = summary.pass_rate / 100
        score = pass_rate * 40
        if pass_rate < 0.9:
            factors.append(f"Low pass rate: {pass_rate * 100:.0f}%")

        if aggregated is not None:
            fixable = aggregated.fixable_errors
            # a green run has nothing left to fix
            ratio = min(fixable / summary.failed, 1.0) if summary.failed else 1.0
            score += ratio * 20
            if ratio > 0.5 and fixable > 0:
                factors.append(f"{fixable} auto-fixable issues")
        else:
            score += 10

        if len(history) > 1:
            recent = [_pass_rate(h.get("summary")) / 100 for h in history[:RECENT_RUNS]]
            average = sum(recent) / len(recent)
            score += average * 20
            if average < pass_rate:
                factors.append("Improving trend")
            elif average > pass_rate:
                factors.append("Declining trend")
        else:
            score += 10

        if len(history) > 2:
            deviation = statistics.pstdev(_pass_rate(h.get("summary")) for h in history)
            score += max(0.0, 20 - deviation * 2)
            if deviation > 5:
                factors.append("Inconsistent results")
        else:
            score += 10

        return HealthScore(score=round(score), grade=grade_for(score), factors=tuple(factors))

    @staticmethod
    def format_compact_summary(report: dict[str, Any]) -> str:
        health = report["health"]
        lines = [f"Health: {health['grade']} ({health['score']}/100)"]
        summary = report["current"]["summary"]
        if summary:
            lines.append(
                f"Tests: {summary['passed']}/{summary['total']} passing "
                f"({summary['failed']} failed)"
            )
        change = report["comparison"]["pass_rate_change"]
        if change:
            lines.append(f"Trend: {change:+.1f}% from last run")
        if health["factors"]:
            lines.append(f"Factors: {', '.join(health['factors'])}")
        return "\n".join(lines)


def summary_to_dict(summary: RunSummary | None) -> dict[str, Any] | None:
    if summary is None:
        return None
    return {
        "total": summary.total,
        "passed": summary.passed,
        "failed": summary.failed,
        "skipped": summary.skipped,
        "duration_ms": summary.duration_ms,
        "pass_rate": round(summary.pass_rate, 1),
    }


def aggregated_to_dict(aggregated: AggregatedCategories | None) -> dict[str, Any] | None:
    if aggregated is None:
        return None
    return {
        "total_errors": aggregated.total_errors,
        "fixable_errors": aggregated.fixable_errors,
        "by_severity": dict(aggregated.by_severity),
        "categories": [
            {
                "category": c.category.value,
                "code": c.semantic_code,
                "count": c.count,
                "fixable": c.fixable_count,
                "severity": c.severity.value,
                "root_cause": c.primary_root_cause,
                "avg_confidence": c.avg_confidence,
                "files": list(c.affected_files),
            }
            for c in aggregated.categories
        ],
    }

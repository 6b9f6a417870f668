"""Consumer summary: the smallest useful picture of a run.

Built for automated readers with little room for text: a status word,
counts, a few prioritized actions and the commands to run next.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import asdict, dataclass

from failure_triage.models.analysis import AggregatedCategories, FixKind, RootCauseAnalysis
from failure_triage.models.pattern import DeduplicationResult
from failure_triage.models.test_result import RunSummary

MAX_LISTED_ACTIONS = 5
MAX_FOCUS_FILES = 10
MAX_ROOT_CAUSES = 5
FILES_PER_CATEGORY = 3


@dataclass(frozen=True)
class SummaryAction:
    """One entry of the prioritized action list."""

    priority: int
    type: str
    description: str
    impact: int = 1
    command: str | None = None
    file: str | None = None
    line: int | None = None


@dataclass(frozen=True)
class ConsumerSummary:
    status: str
    metrics: dict[str, int]
    actions: tuple[SummaryAction, ...] = ()
    primary_issue: str | None = None
    next_commands: tuple[str, ...] = ()
    focus_files: tuple[str, ...] = ()
    root_causes: tuple[str, ...] = ()


class SummaryReporter:
    """Condenses a run and its analyses into a :class:`ConsumerSummary`.

    Example:
        reporter = SummaryReporter()
        summary = reporter.generate(run.summary, aggregated, dedup, analyses)
        print(reporter.format_one_liner(summary))
    """

    def generate(
        self,
        summary: RunSummary,
        aggregated: AggregatedCategories | None = None,
        dedup: DeduplicationResult | None = None,
        analyses: Sequence[RootCauseAnalysis] = (),
    ) -> ConsumerSummary:
        fixable = aggregated.fixable_errors if aggregated is not None else 0
        return ConsumerSummary(
            status=self._status(summary, fixable),
            metrics={
                "total": summary.total,
                "passed": summary.passed,
                "failed": summary.failed,
                "fixable": fixable,
                "unique": dedup.unique_count if dedup is not None else summary.failed,
            },
            actions=self._actions(aggregated, analyses),
            primary_issue=self._primary_issue(aggregated),
            next_commands=self._next_commands(fixable),
            focus_files=self._focus_files(aggregated, analyses),
            root_causes=tuple(dict.fromkeys(a.root_cause for a in analyses))[:MAX_ROOT_CAUSES],
        )

    def format_for_cli(self, summary: ConsumerSummary) -> str:
        metrics = summary.metrics
        lines = [
            f"[{summary.status}] {metrics['failed']}/{metrics['total']} failed, "
            f"{metrics['fixable']} fixable",
            "",
        ]
        if summary.primary_issue:
            lines.extend([f"PRIMARY: {summary.primary_issue}", ""])

        if summary.actions:
            lines.append("ACTIONS:")
            for action in summary.actions[:MAX_LISTED_ACTIONS]:
                prefix = "[AUTO]" if action.type == FixKind.AUTO else "[MANUAL]"
                lines.append(f"  {prefix} {action.description}")
                if action.command:
                    lines.append(f"     $ {action.command}")
            lines.append("")

        if summary.focus_files:
            lines.append("FOCUS FILES:")
            for path in summary.focus_files[:MAX_LISTED_ACTIONS]:
                lines.append(f"  - {'/'.join(path.split('/')[-2:])}")
            lines.append("")

        if summary.next_commands:
            lines.append("NEXT:")
            lines.extend(f"  $ {command}" for command in summary.next_commands)
        return "\n".join(lines).rstrip("\n")

    @staticmethod
    def format_json(summary: ConsumerSummary) -> str:
        return json.dumps(asdict(summary), indent=2, ensure_ascii=False)

    @staticmethod
    def format_one_liner(summary: ConsumerSummary) -> str:
        """``STATUS: n failed (m fixable) | issue | Run: command``."""
        issue = (summary.primary_issue or "")[:50] or "No issues"
        command = summary.next_commands[0] if summary.next_commands else "none"
        return (
            f"{summary.status}: {summary.metrics['failed']} failed "
            f"({summary.metrics['fixable']} fixable) | {issue} | Run: {command}"
        )

    @staticmethod
    def _status(summary: RunSummary, fixable: int) -> str:
        if summary.failed == 0:
            return "PASS"
        return "FIXABLE" if fixable > 0 else "FAIL"

    @staticmethod
    def _actions(
        aggregated: AggregatedCategories | None, analyses: Sequence[RootCauseAnalysis]
    ) -> tuple[SummaryAction, ...]:
        actions: list[SummaryAction] = []
        if aggregated is not None:
            for category in aggregated.categories:
                if category.fixable_count > 0:
                    actions.append(
                        SummaryAction(
                            priority=1,
                            type=FixKind.AUTO,
                            description=(
                                f"Fix {category.fixable_count} {category.category} errors"
                            ),
                            command=f"failure-triage fix --category={category.category} --apply",
                            impact=category.count,
                        )
                    )

        seen: set[str] = set()
        for analysis in analyses:
            for fix in analysis.suggested_fixes:
                if fix.type != FixKind.MANUAL or fix.description in seen:
                    continue
                seen.add(fix.description)
                actions.append(
                    SummaryAction(
                        priority=2,
                        type=FixKind.MANUAL,
                        description=fix.description,
                        file=fix.file,
                        line=fix.line,
                    )
                )

        actions.sort(key=lambda a: (a.priority, -a.impact))
        return tuple(actions)

    @staticmethod
    def _primary_issue(aggregated: AggregatedCategories | None) -> str | None:
        if aggregated is None or not aggregated.categories:
            return None
        top = aggregated.categories[0]
        return f"{top.count} errors from {top.category}: {top.primary_root_cause}"

    @staticmethod
    def _next_commands(fixable: int) -> tuple[str, ...]:
        if fixable > 0:
            return ("failure-triage fix --apply", "failure-triage run")
        return ("failure-triage run",)

    @staticmethod
    def _focus_files(
        aggregated: AggregatedCategories | None, analyses: Sequence[RootCauseAnalysis]
    ) -> tuple[str, ...]:
        files: dict[str, None] = {}
        if aggregated is not None:
            for category in aggregated.categories:
                files.update(dict.fromkeys(category.affected_files[:FILES_PER_CATEGORY]))
        for analysis in analyses:
            if analysis.import_chain is None:
                continue
            for node in analysis.import_chain.chain:
                if node.is_problematic:
                    files[node.file] = None
        return tuple(files)[:MAX_FOCUS_FILES]

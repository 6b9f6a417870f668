"""Roll-up of pattern matches by category, and the action items they imply."""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Sequence

import structlog

from failure_triage.core.root_cause import UNKNOWN_ROOT_CAUSE
from failure_triage.models.analysis import (
    ActionItem,
    ActionType,
    AggregatedCategories,
    CategorySummary,
)
from failure_triage.models.pattern import PatternMatchResult, Severity
from failure_triage.models.report import category_code
from failure_triage.models.test_result import ErrorCategory

log = structlog.get_logger()

MAX_SUGGESTIONS = 5


class CategoryAggregator:
    """Groups match results by category to expose systemic failures.

    Example:
        aggregator = CategoryAggregator()
        aggregated = aggregator.aggregate(matcher.match_all(errors))
        for item in aggregator.action_items(aggregated):
            print(item.priority, item.description)
    """

    FIX_COMMAND = "failure-triage fix --category={category}"

    def aggregate(
        self,
        match_results: Sequence[PatternMatchResult],
        test_names: Sequence[str] | None = None,
    ) -> AggregatedCategories:
        """Summarize every category present in ``match_results``.

        Args:
            match_results: One result per failing test
            test_names: Test titles aligned with ``match_results``; tests
                without an error file are listed by title

        Returns:
            Summaries sorted by count, then severity
        """
        grouped: dict[ErrorCategory, list[tuple[PatternMatchResult, str | None]]] = defaultdict(
            list
        )
        names = list(test_names or ())
        for index, result in enumerate(match_results):
            name = names[index] if index < len(names) else None
            grouped[result.category].append((result, name))

        summaries = [self._summarize(category, items) for category, items in grouped.items()]
        summaries.sort(key=lambda s: (-s.count, s.severity.rank))

        by_severity = {severity.value: 0 for severity in Severity}
        for summary in summaries:
            by_severity[summary.severity.value] += 1

        return AggregatedCategories(
            total_errors=len(match_results),
            fixable_errors=sum(s.fixable_count for s in summaries),
            categories=tuple(summaries),
            by_severity=by_severity,
        )

    def action_items(self, aggregated: AggregatedCategories) -> list[ActionItem]:
        """Prioritized next steps; lower priority values come first."""
        items = []
        for summary in aggregated.categories:
            label = summary.category.value.replace("_", " ")
            priority = self._priority(summary.severity, summary.count)
            if summary.fixable_count > 0:
                plural = "s" if summary.fixable_count != 1 else ""
                items.append(
                    ActionItem(
                        priority=priority,
                        type=ActionType.AUTO_FIX,
                        category=summary.category,
                        semantic_code=summary.semantic_code,
                        description=f"Fix {summary.fixable_count} {label} error{plural}",
                        estimated_impact=summary.count,
                        command=self.FIX_COMMAND.format(category=summary.category.value),
                        affected_files=summary.affected_files,
                        suggestions=summary.suggestions,
                    )
                )
            elif summary.count > 0:
                plural = "s" if summary.count != 1 else ""
                items.append(
                    ActionItem(
                        priority=priority,
                        type=(
                            ActionType.INVESTIGATE
                            if summary.severity == Severity.CRITICAL
                            else ActionType.MANUAL_FIX
                        ),
                        category=summary.category,
                        semantic_code=summary.semantic_code,
                        description=f"Investigate {summary.count} {label} error{plural}",
                        estimated_impact=summary.count,
                        root_cause=summary.primary_root_cause,
                        affected_files=summary.affected_files,
                        suggestions=summary.suggestions,
                    )
                )

        items.sort(key=lambda item: item.priority)
        return items

    def best_action(self, aggregated: AggregatedCategories) -> ActionItem | None:
        items = self.action_items(aggregated)
        return items[0] if items else None

    @staticmethod
    def format_compact(aggregated: AggregatedCategories) -> str:
        """``X:{total}|BC:3@AF|TO:1`` style status, ``P:0/0`` when clean."""
        if aggregated.total_errors == 0:
            return "P:0/0"
        codes = "|".join(
            f"{s.semantic_code}:{s.count}{'@AF' if s.fixable_count else ''}"
            for s in aggregated.categories
        )
        status = "X" if aggregated.fixable_errors else "F"
        return f"{status}:{aggregated.total_errors}|{codes}"

    def _summarize(
        self,
        category: ErrorCategory,
        items: list[tuple[PatternMatchResult, str | None]],
    ) -> CategorySummary:
        results = [result for result, _ in items]
        root_causes = Counter(r.best_match.root_cause for r in results if r.best_match is not None)
        primary = root_causes.most_common(1)[0][0] if root_causes else UNKNOWN_ROOT_CAUSE

        files: dict[str, None] = {}
        for result, name in items:
            if result.error.file:
                files[result.error.file] = None
            elif name:
                files[name] = None

        severity = min(
            (r.best_match.severity if r.best_match else Severity.LOW for r in results),
            key=lambda s: s.rank,
        )

        suggestions: dict[str, None] = {}
        for result in results:
            for suggestion in result.best_match.suggestions if result.best_match else ():
                suggestions[suggestion] = None

        return CategorySummary(
            category=category,
            semantic_code=category_code(category).value,
            count=len(results),
            fixable_count=sum(1 for r in results if r.fixable),
            primary_root_cause=primary,
            affected_files=tuple(files),
            severity=severity,
            avg_confidence=round(sum(r.confidence for r in results) / len(results), 2),
            suggestions=tuple(suggestions)[:MAX_SUGGESTIONS],
        )

    @staticmethod
    def _priority(severity: Severity, count: int) -> float:
        # more failures in a category pull it forward by at most half a step
        return round(severity.rank + 1 - min(count / 20, 0.5), 2)

"""Tests for SummaryReporter."""

import json

import pytest

from failure_triage.models.analysis import (
    AggregatedCategories,
    CategorySummary,
    FixKind,
    RootCauseAnalysis,
    SuggestedFix,
)
from failure_triage.models.graph import ChainNode, ImportChain
from failure_triage.models.pattern import PatternMatchResult, Severity
from failure_triage.models.test_result import ErrorCategory, RunSummary, TestError
from failure_triage.reporting.summary import SummaryReporter


@pytest.fixture
def reporter() -> SummaryReporter:
    """Create a SummaryReporter instance."""
    return SummaryReporter()


@pytest.fixture
def aggregated() -> AggregatedCategories:
    """Return one fixable browser-compat category."""
    return AggregatedCategories(
        total_errors=3,
        fixable_errors=2,
        categories=(
            CategorySummary(
                category=ErrorCategory.BROWSER_COMPAT,
                semantic_code="BC",
                count=2,
                fixable_count=2,
                primary_root_cause="Server code",
                affected_files=("src/services/UserService.ts", "src/db/data-source.ts"),
                severity=Severity.CRITICAL,
                avg_confidence=0.85,
            ),
        ),
        by_severity={"critical": 1},
    )


def _analysis(error: TestError) -> RootCauseAnalysis:
    return RootCauseAnalysis(
        error=error,
        pattern_match=PatternMatchResult(error, (), None, ErrorCategory.TIMEOUT, 0.0),
        confidence=0.5,
        root_cause="Locator never appeared",
        import_chain=ImportChain(
            start_file="src/pages/Dashboard.tsx",
            chain=(
                ChainNode("src/pages/Dashboard.tsx", (), 0),
                ChainNode(
                    "src/services/UserService.ts", (), 1, problematic_exports=("userService",)
                ),
            ),
            found=True,
        ),
        suggested_fixes=(
            SuggestedFix(FixKind.AUTO, "Apply template", 0.95),
            SuggestedFix(FixKind.MANUAL, "Wait for the locator", 0.5, file="a.spec.ts", line=12),
        ),
    )


class TestGenerate:
    """Tests for generate."""

    def test_fixable_run(
        self,
        reporter: SummaryReporter,
        aggregated: AggregatedCategories,
        timeout_error: TestError,
    ) -> None:
        """Test status, actions, focus files and root causes."""
        analyses = [_analysis(timeout_error), _analysis(timeout_error)]

        summary = reporter.generate(RunSummary(4, 1, 3), aggregated, None, analyses)

        assert summary.status == "FIXABLE"
        assert summary.metrics == {
            "total": 4,
            "passed": 1,
            "failed": 3,
            "fixable": 2,
            "unique": 3,
        }
        assert [(a.type, a.description) for a in summary.actions] == [
            (FixKind.AUTO, "Fix 2 browser_compat errors"),
            (FixKind.MANUAL, "Wait for the locator"),
        ]
        assert summary.actions[0].command == (
            "failure-triage fix --category=browser_compat --apply"
        )
        assert summary.primary_issue == "2 errors from browser_compat: Server code"
        assert summary.focus_files == ("src/services/UserService.ts", "src/db/data-source.ts")
        assert summary.root_causes == ("Locator never appeared",)
        assert summary.next_commands == ("failure-triage fix --apply", "failure-triage run")

    @pytest.mark.parametrize(
        ("run", "status"),
        [(RunSummary(2, 2, 0), "PASS"), (RunSummary(2, 1, 1), "FAIL")],
    )
    def test_status_without_fixes(
        self, reporter: SummaryReporter, run: RunSummary, status: str
    ) -> None:
        """Test statuses when nothing is auto-fixable."""
        summary = reporter.generate(run)

        assert summary.status == status
        assert summary.actions == ()
        assert summary.next_commands == ("failure-triage run",)


class TestFormatting:
    """Tests for the output formats."""

    def test_cli(
        self,
        reporter: SummaryReporter,
        aggregated: AggregatedCategories,
        timeout_error: TestError,
    ) -> None:
        """Test the terminal layout."""
        summary = reporter.generate(
            RunSummary(4, 1, 3), aggregated, None, [_analysis(timeout_error)]
        )

        assert reporter.format_for_cli(summary).splitlines() == [
            "[FIXABLE] 3/4 failed, 2 fixable",
            "",
            "PRIMARY: 2 errors from browser_compat: Server code",
            "",
            "ACTIONS:",
            "  [AUTO] Fix 2 browser_compat errors",
            "     $ failure-triage fix --category=browser_compat --apply",
            "  [MANUAL] Wait for the locator",
            "",
            "FOCUS FILES:",
            "  - services/UserService.ts",
            "  - db/data-source.ts",
            "",
            "NEXT:",
            "  $ failure-triage fix --apply",
            "  $ failure-triage run",
        ]

    def test_one_liner(self, reporter: SummaryReporter, aggregated: AggregatedCategories) -> None:
        """Test the single-line form."""
        fixable = reporter.generate(RunSummary(4, 1, 3), aggregated)
        green = reporter.generate(RunSummary(2, 2, 0))

        assert SummaryReporter.format_one_liner(fixable) == (
            "FIXABLE: 3 failed (2 fixable) | 2 errors from browser_compat: Server code"
            " | Run: failure-triage fix --apply"
        )
        assert SummaryReporter.format_one_liner(green) == (
            "PASS: 0 failed (0 fixable) | No issues | Run: failure-triage run"
        )

    def test_json(self, reporter: SummaryReporter) -> None:
        """Test that the JSON form is plain data."""
        data = json.loads(SummaryReporter.format_json(reporter.generate(RunSummary(2, 1, 1))))

        assert data["status"] == "FAIL"
        assert data["metrics"]["unique"] == 1
        assert data["actions"] == []

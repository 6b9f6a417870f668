"""Tests for RootCauseSynthesizer."""

from pathlib import Path

import pytest

from failure_triage.config.schema import PathsConfig
from failure_triage.core.compat_analyzer import CompatAnalyzer
from failure_triage.core.fix_generator import FixGenerator
from failure_triage.core.import_tracer import ImportTracer
from failure_triage.core.pattern_matcher import PatternMatcher
from failure_triage.core.root_cause import (
    ERROR_BOUNDARY_ROOT_CAUSE,
    UNKNOWN_ROOT_CAUSE,
    RootCauseSynthesizer,
)
from failure_triage.models.analysis import DOMAnalysis, FixKind
from failure_triage.models.pattern import (
    ErrorPattern,
    PatternMatch,
    PatternMatchResult,
    Severity,
)
from failure_triage.models.test_result import ErrorCategory, StackFrame, TestError


class FakeDOMAnalyzer:
    """DOM analyzer returning a fixed error state."""

    def __init__(self, analyses: list[DOMAnalysis]) -> None:
        self.analyses = analyses
        self.calls: list[str | None] = []

    def analyze(self, error: TestError, test_name: str | None = None) -> list[DOMAnalysis]:
        self.calls.append(test_name)
        return self.analyses


def _browser_match(error: TestError, confidence: float = 0.5) -> PatternMatchResult:
    match = PatternMatch(
        pattern_id="typeorm",
        pattern_name="TypeORM in browser",
        category=ErrorCategory.BROWSER_COMPAT,
        severity=Severity.CRITICAL,
        confidence=confidence,
        root_cause="Database code reached the browser bundle",
        fix_available=True,
        requires_import_trace=True,
        fix_template="lazy-initialization",
        suggestions=("Move data access behind an API route",),
        semantic_code="BC",
    )
    return PatternMatchResult(
        error=error,
        matches=(match,),
        best_match=match,
        category=ErrorCategory.BROWSER_COMPAT,
        confidence=confidence,
    )


@pytest.fixture
def synthesizer(paths_config: PathsConfig) -> RootCauseSynthesizer:
    """Create a RootCauseSynthesizer for the sample project."""
    return RootCauseSynthesizer(ImportTracer(paths_config), CompatAnalyzer(paths_config))


class TestAnalyze:
    """Tests for analyze."""

    def test_browser_compat_evidence(
        self, synthesizer: RootCauseSynthesizer, browser_error: TestError
    ) -> None:
        """Test that the trace and compat findings refine and boost the verdict."""
        analysis = synthesizer.analyze(browser_error, _browser_match(browser_error))

        assert analysis.root_cause == (
            r"UserService.ts contains browser-incompatible code: AppDataSource\.getRepository"
        )
        # 0.5 + 0.2 for the import chain + 0.15 for critical compat issues
        assert analysis.confidence == pytest.approx(0.85)
        assert analysis.import_chain is not None
        assert analysis.import_chain.found
        assert [r.file for r in analysis.compat_results] == ["src/services/UserService.ts"]
        assert analysis.evidence == (
            "Import chain traced from src/services/UserService.ts",
            "Found 3 browser compatibility issue(s) in UserService.ts",
        )
        assert analysis.category == ErrorCategory.BROWSER_COMPAT

    def test_fix_ordering(
        self, synthesizer: RootCauseSynthesizer, browser_error: TestError
    ) -> None:
        """Test that auto fixes lead and the rest follow by confidence."""
        fixes = synthesizer.analyze(browser_error, _browser_match(browser_error)).suggested_fixes

        assert fixes[0].type == FixKind.AUTO
        assert fixes[0].command == "failure-triage fix --template=lazy-initialization"
        assert [f.confidence for f in fixes[1:]] == [0.95, 0.95, 0.95, 0.9, 0.5]
        assert fixes[4].description == (
            "Convert eager singleton to lazy initialization in UserService.ts"
        )
        assert fixes[-1].type == FixKind.SUGGESTION

    def test_confidence_is_capped(
        self, synthesizer: RootCauseSynthesizer, browser_error: TestError
    ) -> None:
        """Test that boosts never push confidence past 1.0."""
        analysis = synthesizer.analyze(browser_error, _browser_match(browser_error, 0.95))
        assert analysis.confidence == 1.0

    def test_each_critical_file_boosts(
        self, synthesizer: RootCauseSynthesizer, project_root: Path
    ) -> None:
        """Test that every implicated file with a critical finding adds its own boost."""
        (project_root / "src/lib").mkdir(parents=True, exist_ok=True)
        (project_root / "src/lib/a.ts").write_text('import fs from "fs";\n')
        (project_root / "src/lib/b.ts").write_text(
            "const require = module.createRequire(import.meta.url);\n"
        )
        error = TestError(
            message="fs.readFileSync is not a function",
            file="src/lib/a.ts",
            stack=(StackFrame("load", "src/lib/b.ts", 1, 1),),
        )
        match = PatternMatch(
            pattern_id="node-api",
            pattern_name="Node API in browser",
            category=ErrorCategory.BROWSER_COMPAT,
            severity=Severity.HIGH,
            confidence=0.3,
            root_cause="Node-only API reached the browser bundle",
            fix_available=False,
            requires_import_trace=False,
        )
        result = PatternMatchResult(error, (match,), match, ErrorCategory.BROWSER_COMPAT, 0.3)

        analysis = synthesizer.analyze(error, result)

        assert [r.file for r in analysis.compat_results] == ["src/lib/a.ts", "src/lib/b.ts"]
        # 0.3 + 0.15 for each of the two critical files
        assert analysis.confidence == pytest.approx(0.6)

    def test_singleton_repository_error_end_to_end(self, tmp_path: Path) -> None:
        """Test a getRepository failure from match through trace to the lazy getter fix."""
        root = tmp_path / "app"
        (root / "src/services").mkdir(parents=True)
        (root / "src/pages").mkdir(parents=True)
        (root / "src/services/FooService.ts").write_text(
            "export class FooService {}\n\nexport const fooService = new FooService();\n"
        )
        (root / "src/pages/Foo.tsx").write_text(
            'import { fooService } from "@/services/FooService";\n\n'
            "export const Foo = () => fooService;\n"
        )
        paths = PathsConfig(project_root=root)
        matcher = PatternMatcher(
            patterns=[
                ErrorPattern(
                    id="repository-not-function",
                    name="Repository method missing",
                    category="browser_compat",
                    severity=Severity.HIGH,
                    patterns=["getRepository is not a function", "ENOENT", "Cannot find module"],
                    root_cause="A data source was bundled for the browser",
                    import_trace_required=True,
                    fix_available=True,
                    fix_template="lazy-initialization",
                    semantic_code="BC",
                )
            ]
        )
        error = TestError(
            message="AppDataSource.getRepository is not a function",
            stack=(
                StackFrame("", "http://localhost:5173/src/services/FooService.ts", 3, 26),
                StackFrame("Foo", "http://localhost:5173/src/pages/Foo.tsx", 3, 28),
            ),
        )

        pattern_match = matcher.match(error)
        assert pattern_match.confidence == pytest.approx(0.53)

        synthesizer = RootCauseSynthesizer(ImportTracer(paths), CompatAnalyzer(paths))
        analysis = synthesizer.analyze(error, pattern_match)

        assert analysis.import_chain is not None
        assert analysis.import_chain.found
        assert analysis.import_chain.root is not None
        assert analysis.import_chain.root.file == "src/services/FooService.ts"
        assert analysis.root_cause.startswith(
            "FooService.ts contains browser-incompatible code: "
        )
        # 0.53 + 0.2 for the import chain + 0.15 for the critical singleton export
        assert analysis.confidence == pytest.approx(0.88)

        fixes = FixGenerator(paths).generate_fixes(analysis)

        assert [fix.file for fix in fixes] == ["src/services/FooService.ts"]
        assert fixes[0].template_id == "lazy-initialization"
        assert "export function getFooService(): FooService {" in fixes[0].modified_content
        assert fixes[0].manual_steps == (
            "Update callers of fooService to invoke getFooService() instead",
        )

    def test_unmatched_error(
        self, synthesizer: RootCauseSynthesizer, timeout_error: TestError
    ) -> None:
        """Test that an unmatched error keeps the unknown verdict."""
        match = PatternMatchResult(
            error=timeout_error,
            matches=(),
            best_match=None,
            category=ErrorCategory.UNKNOWN,
            confidence=0.0,
        )
        analysis = synthesizer.analyze(timeout_error, match)

        assert analysis.root_cause == UNKNOWN_ROOT_CAUSE
        assert analysis.confidence == 0.0
        assert analysis.import_chain is None
        assert analysis.suggested_fixes == ()
        assert not analysis.has_auto_fix

    def test_dom_error_boundary(self, paths_config: PathsConfig) -> None:
        """Test that a visible error boundary overrides the root cause."""
        dom = FakeDOMAnalyzer(
            [
                DOMAnalysis(),
                DOMAnalysis(
                    issues=("error boundary",),
                    has_error_state=True,
                    visible_text="System Error - something went wrong",
                ),
            ]
        )
        synthesizer = RootCauseSynthesizer(
            ImportTracer(paths_config), CompatAnalyzer(paths_config), dom
        )
        error = TestError(message="expect(locator).toBeVisible() failed")
        match = PatternMatchResult(
            error=error,
            matches=(),
            best_match=None,
            category=ErrorCategory.ASSERTION,
            confidence=0.4,
        )

        analysis = synthesizer.analyze(error, match, test_name="shows the dashboard")

        assert dom.calls == ["shows the dashboard"]
        assert analysis.root_cause == ERROR_BOUNDARY_ROOT_CAUSE
        assert analysis.confidence == pytest.approx(0.5)
        assert analysis.evidence == ("DOM snapshot shows: error boundary",)
        assert RootCauseSynthesizer.format_compact(analysis) == "C:50%|DOM"


class TestFormatting:
    """Tests for format_compact and summarize."""

    def test_format_compact(
        self, synthesizer: RootCauseSynthesizer, browser_error: TestError
    ) -> None:
        """Test the evidence markers."""
        analysis = synthesizer.analyze(browser_error, _browser_match(browser_error))
        assert RootCauseSynthesizer.format_compact(analysis) == "C:85%|BC|IMP|FIX:1"

    def test_summarize(self, synthesizer: RootCauseSynthesizer, browser_error: TestError) -> None:
        """Test that the top suggestion becomes the action."""
        summary = RootCauseSynthesizer.summarize(
            synthesizer.analyze(browser_error, _browser_match(browser_error))
        )

        assert summary["action"] == "Apply lazy-initialization fix template"
        assert summary["command"] == "failure-triage fix --template=lazy-initialization"
        assert summary["confidence"] == pytest.approx(0.85)

    def test_summarize_without_fixes(
        self, synthesizer: RootCauseSynthesizer, timeout_error: TestError
    ) -> None:
        """Test the fallback action."""
        match = PatternMatchResult(timeout_error, (), None, ErrorCategory.UNKNOWN, 0.0)
        summary = RootCauseSynthesizer.summarize(synthesizer.analyze(timeout_error, match))

        assert summary["action"] == "Manual investigation required"
        assert summary["command"] is None

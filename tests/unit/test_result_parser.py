"""Tests for ResultParser functionality."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from failure_triage.core.errors import ResultParseError
from failure_triage.core.result_parser import ResultParser
from failure_triage.models.test_result import ErrorCategory, TestRun, TestStatus

LIST_OUTPUT = """Running 3 tests using 1 worker

  ✓  1 [chromium] › specs/format.spec.ts:3:5 › formats names (850ms)
  ✘  2 [chromium] › specs/dashboard.spec.ts:8:5 › shows the dashboard (1.2s)
  -  3 [chromium] › specs/format.spec.ts:9:5 › skipped case

  1) [chromium] › specs/dashboard.spec.ts:8:5 › shows the dashboard

    Error: page.goto: net::ERR_CONNECTION_REFUSED at http://localhost:5173/

  1 failed
  1 skipped
  1 passed (3.1s)
"""

ERROR_CONTEXT = """# Page snapshot

```yaml
- heading "System Error" [level=1]
```

# Test source

```ts
  8 |   await page.goto('/');
```
"""


@pytest.fixture
def parser() -> ResultParser:
    """Create a ResultParser instance."""
    return ResultParser()


class TestParseReport:
    """Tests for parse_report."""

    def test_parses_json_report(self, parser: ResultParser, playwright_report_text: str) -> None:
        """Test that every project run of every spec becomes a result."""
        run = parser.parse_report(playwright_report_text)

        assert run.summary.total == 3
        assert run.summary.failed == 1
        assert run.summary.passed == 1
        assert run.summary.skipped == 1
        assert run.summary.projects == ("chromium", "firefox")

    def test_nested_suite_inherits_file(
        self, parser: ResultParser, playwright_report_text: str
    ) -> None:
        """Test that specs in nested suites take the file of the outer suite."""
        run = parser.parse_report(playwright_report_text)
        failure = run.failures[0]

        assert failure.name == "shows the dashboard"
        assert failure.file == "specs/dashboard.spec.ts"
        assert failure.line == 8
        assert failure.project == "chromium"
        assert failure.duration_ms == 1234

    def test_failed_result_has_error(
        self, parser: ResultParser, playwright_report_text: str
    ) -> None:
        """Test that the failing result carries a categorized error."""
        error = parser.parse_report(playwright_report_text).failures[0].error

        assert error is not None
        assert error.category == ErrorCategory.BROWSER_COMPAT
        assert error.message == "AppDataSource.getRepository cannot be used in the browser"
        assert error.file == "http://localhost:5173/src/services/UserService.ts"
        assert error.line == 5
        assert len(error.stack) == 3

    def test_json_embedded_in_noise(
        self, parser: ResultParser, playwright_report_text: str
    ) -> None:
        """Test that a JSON report surrounded by other output is found."""
        run = parser.parse_report(f"npm notice\n{playwright_report_text}\nDone in 3s\n")
        assert run.summary.total == 3

    def test_parses_list_output(self, parser: ResultParser) -> None:
        """Test parsing list reporter output."""
        run = parser.parse_report(LIST_OUTPUT)

        assert [r.status for r in run.results] == [
            TestStatus.PASSED,
            TestStatus.FAILED,
            TestStatus.SKIPPED,
        ]
        assert run.results[0].name == "formats names"
        assert run.results[0].file == "specs/format.spec.ts"
        assert run.results[0].line == 3
        assert run.results[0].duration_ms == 850
        assert run.results[1].duration_ms == 1200

    def test_list_output_error_goes_to_failures_only(self, parser: ResultParser) -> None:
        """Test that the extracted error is attached to failing results only."""
        run = parser.parse_report(LIST_OUTPUT)

        assert run.results[0].error is None
        error = run.results[1].error
        assert error is not None
        assert error.category == ErrorCategory.SERVER_ERROR
        assert error.message.startswith("page.goto: net::ERR_CONNECTION_REFUSED")

    def test_strips_ansi_codes(self, parser: ResultParser) -> None:
        """Test that terminal colour codes do not break list parsing."""
        colored = "  \x1b[32m✓\x1b[39m  1 [chromium] › a.spec.ts:1:1 › passes (5ms)\n"
        run = parser.parse_report(colored)
        assert run.results[0].status == TestStatus.PASSED

    def test_empty_output_raises(self, parser: ResultParser) -> None:
        """Test that empty output is rejected."""
        with pytest.raises(ResultParseError, match="Empty"):
            parser.parse_report("   \n")

    def test_unrecognised_output_raises(self, parser: ResultParser) -> None:
        """Test that output without results is rejected."""
        with pytest.raises(ResultParseError, match="No test results"):
            parser.parse_report("Error: Cannot find module '@playwright/test'")

    def test_json_without_suites_raises(self, parser: ResultParser) -> None:
        """Test that a JSON document without suites is rejected."""
        with pytest.raises(ResultParseError, match="suites"):
            parser.parse_json_report({"errors": []})


class TestExtractError:
    """Tests for extract_error and categorize."""

    @pytest.mark.parametrize(
        ("text", "category"),
        [
            ("module.createRequire is not a function", ErrorCategory.BROWSER_COMPAT),
            ("waiting for locator('#submit')", ErrorCategory.ELEMENT_NOT_FOUND),
            ("Test timeout of 30000ms exceeded.", ErrorCategory.TIMEOUT),
            ("Failed to load resource: status of 500", ErrorCategory.SERVER_ERROR),
            ("net::ERR_NAME_NOT_RESOLVED", ErrorCategory.NETWORK),
            ("expect(received).toBe(expected)", ErrorCategory.ASSERTION),
            ("something odd happened", ErrorCategory.UNKNOWN),
        ],
    )
    def test_categorize(self, parser: ResultParser, text: str, category: ErrorCategory) -> None:
        """Test that the first matching rule decides the category."""
        assert parser.categorize(text) == category

    def test_repository_message(self, parser: ResultParser) -> None:
        """Test that repository construction gets a descriptive message."""
        error = parser.extract_error("TypeError: x\n    at new UserRepository (src/a.ts:1:2)")
        assert error.message == "Repository instantiated in browser: UserRepository"
        assert error.category == ErrorCategory.BROWSER_COMPAT

    def test_timeout_message(self, parser: ResultParser) -> None:
        """Test that action timeouts keep the timeout value."""
        error = parser.extract_error("locator.click: Timeout 5000ms exceeded.")
        assert error.message == "Timeout after 5000ms"

    def test_falls_back_to_first_line(self, parser: ResultParser) -> None:
        """Test that text without an Error: prefix uses its first line."""
        error = parser.extract_error("something odd happened\nmore detail")
        assert error.message == "something odd happened"
        assert error.category == ErrorCategory.UNKNOWN
        assert error.file is None


class TestParseStack:
    """Tests for parse_stack."""

    def test_named_and_anonymous_frames(self, parser: ResultParser) -> None:
        """Test that both frame shapes are recognised."""
        frames = parser.parse_stack(
            "Error: boom\n"
            "    at loadUser (src/services/UserService.ts:12:5)\n"
            "    at src/pages/Dashboard.tsx:4:3\n"
        )

        assert len(frames) == 2
        assert frames[0].function_name == "loadUser"
        assert frames[0].file_path == "src/services/UserService.ts"
        assert frames[0].line_number == 12
        assert frames[0].column_number == 5
        assert frames[1].function_name == ""
        assert frames[1].basename == "Dashboard.tsx"

    def test_empty_stack(self, parser: ResultParser) -> None:
        """Test that missing stack text yields no frames."""
        assert parser.parse_stack(None) == ()
        assert parser.parse_stack("no frames here") == ()


class TestParseDuration:
    """Tests for parse_duration."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [("850ms", 850.0), ("1.2s", 1200.0), ("2m", 120_000.0), ("", 0.0)],
    )
    def test_units(self, parser: ResultParser, text: str, expected: float) -> None:
        """Test millisecond conversion of every unit."""
        assert parser.parse_duration(text) == pytest.approx(expected)


class TestErrorContext:
    """Tests for error-context attachments."""

    def test_parse_error_context(self, parser: ResultParser, tmp_path: Path) -> None:
        """Test that the snapshot and snippet blocks are extracted."""
        path = tmp_path / "error-context.md"
        path.write_text(ERROR_CONTEXT)

        context = parser.parse_error_context(path)

        assert "System Error" in context["dom_snapshot"]
        assert "page.goto" in context["snippet"]

    def test_missing_file(self, parser: ResultParser, tmp_path: Path) -> None:
        """Test that a missing attachment yields an empty mapping."""
        assert parser.parse_error_context(tmp_path / "missing.md") == {}

    def test_attach_error_context(
        self,
        parser: ResultParser,
        tmp_path: Path,
        playwright_report: dict[str, Any],
        make_run: Callable[..., TestRun],
    ) -> None:
        """Test that attachments are merged into the matching failure."""
        attachment = tmp_path / "dashboard-shows-the-dashboard-chromium"
        attachment.mkdir()
        (attachment / "error-context.md").write_text(ERROR_CONTEXT)
        results = parser.parse_json_report(playwright_report)

        run = parser.attach_error_context(make_run(results), tmp_path)

        error = run.failures[0].error
        assert error is not None
        assert error.dom_snapshot is not None
        assert "System Error" in error.dom_snapshot
        assert error.category == ErrorCategory.BROWSER_COMPAT

    def test_attach_without_results_dir(
        self,
        parser: ResultParser,
        tmp_path: Path,
        playwright_report: dict[str, Any],
        make_run: Callable[..., TestRun],
    ) -> None:
        """Test that a missing results directory leaves the run unchanged."""
        run = make_run(parser.parse_json_report(playwright_report))
        assert parser.attach_error_context(run, tmp_path / "nope") is run

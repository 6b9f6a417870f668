"""Parser for test harness output and JavaScript stack traces.

This module implements the ResultParser class that turns harness output into
structured results. It supports:
- Playwright JSON reports (nested suites, specs and per-project tests)
- Playwright list reporter text
- JavaScript stack traces (named and anonymous frames)
- error-context.md attachments (DOM snapshot and code snippet)
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from failure_triage.core.errors import ResultParseError
from failure_triage.models.test_result import (
    ErrorCategory,
    RunSummary,
    StackFrame,
    TestError,
    TestResult,
    TestRun,
    TestStatus,
)

log = structlog.get_logger()

Extractor = Callable[[re.Match[str]], str]


class ResultParser:
    """Parser for harness results and error text.

    Responsibilities:
    - Convert a JSON or list report into TestResult objects
    - Extract message, category and stack frames from error text
    - Enrich failures with harness error-context attachments

    Example:
        parser = ResultParser()
        run = parser.parse_report(report_text)
        for failure in run.failures:
            print(failure.error.category)
    """

    FRAME_PATTERN = re.compile(r"^\s*at\s+(?:(.+?)\s+\()?(\S+?):(\d+):(\d+)\)?\s*$", re.MULTILINE)
    LIST_LINE_PATTERN = re.compile(
        r"^\s*(✓|✘|⊘|-)\s+(?:\d+\s+)?\[(.+?)\]\s+›\s+(.+?)\s+›\s+(.+?)(?:\s+\((.+?)\))?$",
        re.MULTILINE,
    )
    MESSAGE_PATTERN = re.compile(r"Error: (.+?)(?:\n|$)")
    DURATION_PATTERN = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m)")
    ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")
    YAML_BLOCK_PATTERN = re.compile(r"```yaml\n(.+?)```", re.DOTALL)
    SNIPPET_PATTERN = re.compile(r"```(?:typescript|javascript|ts|js)\n(.+?)```", re.DOTALL)
    FILE_LOCATION_PATTERN = re.compile(r"^(.+?):(\d+)(?::\d+)?$")

    # Ordered: the first matching entry decides the category.
    CATEGORY_PATTERNS: tuple[tuple[re.Pattern[str], ErrorCategory, Extractor | None], ...] = (
        (
            re.compile(r"AppDataSource\.\w+ cannot be used in the browser", re.IGNORECASE),
            ErrorCategory.BROWSER_COMPAT,
            lambda m: m.group(0),
        ),
        (
            re.compile(r"at new (\w+Repository)"),
            ErrorCategory.BROWSER_COMPAT,
            lambda m: f"Repository instantiated in browser: {m.group(1)}",
        ),
        (
            re.compile(r"module\.createRequire is not a function", re.IGNORECASE),
            ErrorCategory.BROWSER_COMPAT,
            lambda m: "Node.js API used in browser context: module.createRequire",
        ),
        (
            re.compile(r"Cannot use import statement outside a module", re.IGNORECASE),
            ErrorCategory.BROWSER_COMPAT,
            None,
        ),
        (
            re.compile(r"getRepository.*cannot be called", re.IGNORECASE),
            ErrorCategory.BROWSER_COMPAT,
            None,
        ),
        (
            re.compile(r"Locator: (.+)\nExpected: visible", re.DOTALL),
            ErrorCategory.ELEMENT_NOT_FOUND,
            lambda m: f"Element not found: {m.group(1)}",
        ),
        (
            re.compile(r"waiting for locator\('([^']+)'\)"),
            ErrorCategory.ELEMENT_NOT_FOUND,
            lambda m: f"Element not found: {m.group(1)}",
        ),
        (
            re.compile(r"locator\.click: Target closed", re.IGNORECASE),
            ErrorCategory.ELEMENT_NOT_FOUND,
            None,
        ),
        (
            re.compile(r"Timeout (\d+)ms exceeded"),
            ErrorCategory.TIMEOUT,
            lambda m: f"Timeout after {m.group(1)}ms",
        ),
        (re.compile(r"Test timeout of \d+ms exceeded"), ErrorCategory.TIMEOUT, None),
        (re.compile(r"status of 500"), ErrorCategory.SERVER_ERROR, None),
        (re.compile(r"Internal Server Error", re.IGNORECASE), ErrorCategory.SERVER_ERROR, None),
        (re.compile(r"ERR_CONNECTION_REFUSED"), ErrorCategory.SERVER_ERROR, None),
        (re.compile(r"net::ERR_"), ErrorCategory.NETWORK, None),
        (re.compile(r"NetworkError", re.IGNORECASE), ErrorCategory.NETWORK, None),
        (re.compile(r"fetch failed", re.IGNORECASE), ErrorCategory.NETWORK, None),
        (re.compile(r"expect\(.*\)\.toBe"), ErrorCategory.ASSERTION, None),
        (re.compile(r"Expected:.*Received:", re.DOTALL), ErrorCategory.ASSERTION, None),
        (re.compile(r"AssertionError"), ErrorCategory.ASSERTION, None),
    )

    FAILED_STATUSES = frozenset({"failed", "unexpected", "timedOut", "interrupted"})
    PASSED_STATUSES = frozenset({"passed", "expected", "flaky"})

    def parse_report(self, text: str) -> TestRun:
        """Parse harness output, JSON first, then list reporter format.

        Args:
            text: Raw harness output

        Returns:
            TestRun with every parsed result

        Raises:
            ResultParseError: If no results can be recognised
        """
        if not text or not text.strip():
            raise ResultParseError("Empty harness output")

        stripped = self.ANSI_PATTERN.sub("", text)
        data = self._load_json(stripped)
        if data is not None:
            results = self.parse_json_report(data)
        else:
            results = self.parse_list_output(stripped)

        if not results:
            raise ResultParseError("No test results found in harness output")

        log.info(
            "report_parsed",
            total=len(results),
            failed=sum(1 for r in results if r.failed),
            format="json" if data is not None else "list",
        )
        return TestRun(
            timestamp=datetime.now(UTC).isoformat(),
            results=tuple(results),
            summary=RunSummary.from_results(results),
        )

    def parse_json_report(self, data: dict[str, Any]) -> list[TestResult]:
        """Walk a Playwright JSON report.

        Args:
            data: Decoded JSON report

        Returns:
            Results in report order
        """
        if not isinstance(data, dict) or not isinstance(data.get("suites"), list):
            raise ResultParseError("JSON report has no 'suites' list")

        results: list[TestResult] = []
        for suite in data["suites"]:
            self._walk_suite(suite, "", results)
        return results

    def parse_list_output(self, text: str) -> list[TestResult]:
        """Parse list reporter lines: ``✘ [project] › file › name (1.2s)``."""
        results: list[TestResult] = []
        for match in self.LIST_LINE_PATTERN.finditer(text):
            marker, project, location, name, duration = match.groups()
            status = {
                "✓": TestStatus.PASSED,
                "✘": TestStatus.FAILED,
            }.get(marker, TestStatus.SKIPPED)
            file_path, line = self._split_location(location.strip())
            results.append(
                TestResult(
                    name=name.strip(),
                    file=file_path,
                    line=line,
                    status=status,
                    duration_ms=self.parse_duration(duration or "0s"),
                    project=project.strip(),
                )
            )

        if results and any(r.failed for r in results):
            error = self.extract_error(text)
            results = [
                TestResult(
                    name=r.name,
                    file=r.file,
                    line=r.line,
                    status=r.status,
                    duration_ms=r.duration_ms,
                    project=r.project,
                    error=error if r.failed else None,
                )
                for r in results
            ]
        return results

    def parse_stack(self, text: str | None) -> tuple[StackFrame, ...]:
        """Extract ``at fn (file:line:col)`` and ``at file:line:col`` frames."""
        if not text:
            return ()
        return tuple(
            StackFrame(
                function_name=(match.group(1) or "").strip(),
                file_path=match.group(2),
                line_number=int(match.group(3)),
                column_number=int(match.group(4)),
            )
            for match in self.FRAME_PATTERN.finditer(text)
        )

    def categorize(self, text: str) -> ErrorCategory:
        """Coarse category from the first matching error pattern."""
        for pattern, category, _ in self.CATEGORY_PATTERNS:
            if pattern.search(text):
                return category
        return ErrorCategory.UNKNOWN

    def extract_error(self, text: str) -> TestError:
        """Build a TestError from raw error text.

        Args:
            text: Error message and stack as printed by the harness

        Returns:
            TestError with message, category and location filled in
        """
        text = self.ANSI_PATTERN.sub("", text or "")
        category = ErrorCategory.UNKNOWN
        message: str | None = None
        for pattern, pattern_category, extractor in self.CATEGORY_PATTERNS:
            match = pattern.search(text)
            if match:
                category = pattern_category
                if extractor is not None:
                    message = extractor(match)
                break

        if message is None:
            message_match = self.MESSAGE_PATTERN.search(text)
            message = message_match.group(1) if message_match else text.split("\n", 1)[0]

        frames = self.parse_stack(text)
        first = frames[0] if frames else None
        return TestError(
            message=message.strip(),
            stack=frames,
            raw_stack=text or None,
            file=first.file_path if first else None,
            line=first.line_number if first else None,
            column=first.column_number if first else None,
            category=category,
        )

    def parse_error_context(self, path: Path) -> dict[str, str]:
        """Read snapshot and snippet blocks from a harness error-context file.

        Returns an empty mapping when the file is missing or unreadable.
        """
        try:
            content = path.read_text(encoding="utf-8")
        except OSError:
            return {}

        context: dict[str, str] = {}
        yaml_match = self.YAML_BLOCK_PATTERN.search(content)
        if yaml_match:
            context["dom_snapshot"] = yaml_match.group(1)
        snippet_match = self.SNIPPET_PATTERN.search(content)
        if snippet_match:
            context["snippet"] = snippet_match.group(1)
        return context

    def attach_error_context(self, run: TestRun, results_dir: Path) -> TestRun:
        """Merge error-context.md attachments into matching failures.

        Attachment directories are matched by a slug of the test name.
        """
        if not results_dir.is_dir():
            return run

        contexts = {
            entry.name: entry / "error-context.md"
            for entry in sorted(results_dir.iterdir())
            if entry.is_dir() and (entry / "error-context.md").is_file()
        }
        if not contexts:
            return run

        enriched: list[TestResult] = []
        for result in run.results:
            if result.failed and result.error is not None:
                slug = re.sub(r"\s+", "-", result.name.lower())[:50]
                for dir_name, context_path in contexts.items():
                    if slug in dir_name or dir_name[:20] in slug:
                        context = self.parse_error_context(context_path)
                        result = TestResult(
                            name=result.name,
                            file=result.file,
                            status=result.status,
                            duration_ms=result.duration_ms,
                            line=result.line,
                            project=result.project,
                            error=TestError(
                                message=result.error.message,
                                stack=result.error.stack,
                                raw_stack=result.error.raw_stack,
                                file=result.error.file,
                                line=result.error.line,
                                column=result.error.column,
                                category=result.error.category,
                                snippet=context.get("snippet", result.error.snippet),
                                dom_snapshot=context.get(
                                    "dom_snapshot", result.error.dom_snapshot
                                ),
                            ),
                        )
                        break
            enriched.append(result)

        return TestRun(timestamp=run.timestamp, results=tuple(enriched), summary=run.summary)

    def parse_duration(self, duration: str) -> float:
        """Convert ``850ms``, ``1.2s`` or ``2m`` to milliseconds."""
        match = self.DURATION_PATTERN.search(duration)
        if not match:
            return 0.0
        value = float(match.group(1))
        return value * {"ms": 1, "s": 1000, "m": 60_000}[match.group(2)]

    def _load_json(self, text: str) -> dict[str, Any] | None:
        """Decode the JSON object embedded in harness output, if any."""
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start or '"suites"' not in text:
            return None
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            log.debug("json_report_decode_failed")
            return None
        return data if isinstance(data, dict) else None

    def _walk_suite(self, suite: dict[str, Any], file: str, results: list[TestResult]) -> None:
        suite_file = suite.get("file") or file
        for spec in suite.get("specs") or ():
            results.extend(self._spec_results(spec, suite_file))
        for child in suite.get("suites") or ():
            self._walk_suite(child, suite_file, results)

    def _spec_results(self, spec: dict[str, Any], file: str) -> list[TestResult]:
        """One result per project run of a spec (or one for flattened specs)."""
        title = spec.get("title", "")
        spec_file = spec.get("file") or file
        line = int(spec.get("line") or 0)
        tests = spec.get("tests")

        if not tests:
            return [
                self._build_result(
                    title,
                    spec_file,
                    line,
                    spec.get("status", ""),
                    float(spec.get("duration") or 0),
                    spec.get("projectName") or "default",
                    spec.get("errors") or (),
                )
            ]

        results: list[TestResult] = []
        for test in tests:
            runs = test.get("results") or [{}]
            last = runs[-1]
            status = test.get("status") or last.get("status", "")
            errors = last.get("errors") or ([last["error"]] if last.get("error") else [])
            results.append(
                self._build_result(
                    title,
                    spec_file,
                    line,
                    status,
                    float(last.get("duration") or 0),
                    test.get("projectName") or "default",
                    errors,
                )
            )
        return results

    def _build_result(
        self,
        name: str,
        file: str,
        line: int,
        raw_status: str,
        duration: float,
        project: str,
        errors: Any,
    ) -> TestResult:
        if raw_status in self.FAILED_STATUSES:
            status = TestStatus.FAILED
        elif raw_status in self.PASSED_STATUSES:
            status = TestStatus.PASSED
        else:
            status = TestStatus.SKIPPED

        error = None
        if status == TestStatus.FAILED:
            text = "\n".join(
                "\n".join(part for part in (e.get("message"), e.get("stack")) if part)
                for e in errors
                if isinstance(e, dict)
            )
            error = self.extract_error(text or "Test failed")

        return TestResult(
            name=name,
            file=file,
            status=status,
            duration_ms=duration,
            line=line,
            project=project,
            error=error,
        )

    def _split_location(self, location: str) -> tuple[str, int]:
        match = self.FILE_LOCATION_PATTERN.match(location)
        if match:
            return match.group(1), int(match.group(2))
        return location, 0

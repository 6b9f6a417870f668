"""Static scan for Node-only APIs in code that ships to the browser."""

from __future__ import annotations

import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import structlog

from failure_triage.config.schema import AnalysisConfig, PathsConfig
from failure_triage.models.analysis import CompatIssue, CompatResult, CompatRule
from failure_triage.models.pattern import Severity
from failure_triage.utils.fs import iter_source_files, line_and_column, read_text, to_relative

log = structlog.get_logger()


def _node_module(name: str) -> str:
    return rf"""(?:require\(['"]{name}['"]\)|from ['"]{name}['"]|from ['"]node:{name}['"])"""


DEFAULT_RULES: tuple[CompatRule, ...] = (
    CompatRule(
        name="TypeORM DataSource",
        pattern=r"AppDataSource\.(?:getRepository|manager|query|initialize)",
        severity=Severity.CRITICAL,
        reason="TypeORM uses Node.js APIs (fs, path, etc.) not available in browser",
        fix="Use the browser-safe DB client from @/db/client",
    ),
    CompatRule(
        name="Node.js createRequire",
        pattern=r"module\.createRequire|createRequire\(",
        severity=Severity.CRITICAL,
        reason="createRequire is a Node.js-only API",
        fix="Use dynamic import() or a browser-safe alternative",
    ),
    CompatRule(
        name="Node.js fs module",
        pattern=_node_module("fs"),
        severity=Severity.CRITICAL,
        reason="File system APIs are not available in browser",
        fix="Use fetch or browser storage instead",
    ),
    CompatRule(
        name="Node.js path module",
        pattern=_node_module("path"),
        severity=Severity.HIGH,
        reason="The path module is Node.js-only",
        fix="Use the URL API or string manipulation for paths",
    ),
    CompatRule(
        name="Node.js Buffer",
        pattern=r"Buffer\.(?:from|alloc|allocUnsafe)",
        severity=Severity.MEDIUM,
        reason="Buffer is Node.js-only (a polyfill may work)",
        fix="Use Uint8Array or TextEncoder/TextDecoder",
    ),
    CompatRule(
        name="Singleton Service Export",
        pattern=r"export\s+const\s+\w+Service\s*=\s*new\s+\w+Service",
        severity=Severity.CRITICAL,
        reason="Singleton instantiation at module load executes in browser",
        fix="Use lazy initialization: export function get...Service() { ... }",
    ),
    CompatRule(
        name="Direct Repository Construction",
        pattern=r"new\s+\w+Repository\(\)",
        severity=Severity.HIGH,
        reason="Repository construction may trigger TypeORM initialization",
        fix="Inject the repository or use lazy initialization",
    ),
    CompatRule(
        name="Process environment in browser",
        pattern=r"process\.env\.(?!VITE_|NEXT_PUBLIC_)",
        severity=Severity.MEDIUM,
        reason="Server-only environment variables are not available in browser",
        fix="Use the VITE_ prefix for client-exposed variables",
    ),
    CompatRule(
        name="Node.js crypto module",
        pattern=_node_module("crypto"),
        severity=Severity.HIGH,
        reason="The Node.js crypto module is not available in browser",
        fix="Use the Web Crypto API (crypto.subtle)",
    ),
    CompatRule(
        name="TypeORM Repository Import",
        pattern=r"""from ['"]typeorm['"]""",
        severity=Severity.HIGH,
        reason="TypeORM imports trigger Node.js-only code paths",
        fix="Move TypeORM usage to server-only files",
    ),
    CompatRule(
        name="Direct DataSource Import",
        pattern=r"""import.*from ['"].*data-source['"]""",
        severity=Severity.CRITICAL,
        reason="Importing the data source triggers TypeORM initialization",
        fix="Use lazy imports or server-only modules",
    ),
    CompatRule(
        name="Node.js child_process",
        pattern=r"""(?:require\(['"]child_process['"]\)|from ['"]child_process['"])""",
        severity=Severity.CRITICAL,
        reason="child_process is not available in browser",
        fix="Move this functionality to the server",
    ),
    CompatRule(
        name="Node.js os module",
        pattern=_node_module("os"),
        severity=Severity.HIGH,
        reason="The os module is Node.js-only",
        fix="Remove OS-specific code or use feature detection",
    ),
)


class CompatAnalyzer:
    """Finds browser-incompatible API usage in source files.

    Server-only files (API routes, scripts, migrations, tests and files with
    a ``'use server'`` directive) are exempt.

    Example:
        analyzer = CompatAnalyzer(config.paths)
        results = analyzer.analyze_directory("src")
        print(analyzer.format_summary(results))
    """

    SERVER_ONLY_PATHS = (
        "/api/",
        "/server/",
        "/scripts/",
        "/cli/",
        "/db/migrations/",
        "/db/seeders/",
        ".server.",
        ".api.",
    )
    TEST_FILE_PATTERN = re.compile(r"\.(test|spec)\.[cm]?[jt]sx?$")
    USE_SERVER_PATTERN = re.compile(r"""^\s*['"]use server['"]""")

    def __init__(
        self,
        paths: PathsConfig,
        analysis: AnalysisConfig | None = None,
        rules: Sequence[CompatRule] = DEFAULT_RULES,
    ) -> None:
        analysis = analysis or AnalysisConfig()
        self._root = paths.root
        self._extensions = tuple(analysis.extensions)
        self._workers = analysis.scan_workers
        self._rules: list[CompatRule] = []
        self._compiled: dict[str, re.Pattern[str]] = {}
        for rule in rules:
            self.add_rule(rule)

    @property
    def rules(self) -> tuple[CompatRule, ...]:
        return tuple(self._rules)

    def add_rule(self, rule: CompatRule) -> None:
        """Register a rule; an invalid regex is matched literally."""
        try:
            compiled = re.compile(rule.pattern)
        except re.error:
            log.warning("compat_rule_compile_failed", rule=rule.name, pattern=rule.pattern)
            compiled = re.compile(re.escape(rule.pattern))
        self._rules.append(rule)
        self._compiled[rule.name] = compiled

    def is_server_only(self, file: str, content: str) -> bool:
        path = "/" + file
        if any(marker in path for marker in self.SERVER_ONLY_PATHS):
            return True
        if self.USE_SERVER_PATTERN.match(content):
            return True
        return bool(self.TEST_FILE_PATTERN.search(file))

    def analyze_file(self, path: str | Path) -> CompatResult:
        """Scan one file.

        Args:
            path: Repo-relative or absolute path

        Returns:
            CompatResult; unreadable files yield an empty result
        """
        file = to_relative(path, self._root)
        content = read_text(self._root / file)
        if content is None:
            return CompatResult(file=file)

        if self.is_server_only(file, content):
            return CompatResult(file=file, is_server_only=True)

        lines = content.split("\n")
        issues = []
        for rule in self._rules:
            for match in self._compiled[rule.name].finditer(content):
                line, column = line_and_column(content, match.start())
                issues.append(
                    CompatIssue(
                        rule=rule.name,
                        pattern=rule.pattern,
                        severity=rule.severity,
                        reason=rule.reason,
                        fix=rule.fix,
                        file=file,
                        line=line,
                        column=column,
                        matched_text=match.group(0),
                        line_content=lines[line - 1].strip(),
                    )
                )

        return CompatResult(file=file, issues=tuple(issues))

    def analyze_files(self, paths: Iterable[str | Path]) -> list[CompatResult]:
        return [self.analyze_file(path) for path in paths]

    def analyze_directory(self, directory: str) -> list[CompatResult]:
        """Scan a directory in parallel.

        Returns:
            Results for files with at least one issue, in path order
        """
        files = list(iter_source_files(self._root, [directory], self._extensions))
        with ThreadPoolExecutor(max_workers=self._workers) as pool:
            results = list(pool.map(self.analyze_file, files))

        flagged = [result for result in results if result.issues]
        log.info(
            "compat_scan_complete",
            directory=directory,
            files_scanned=len(files),
            files_flagged=len(flagged),
        )
        return flagged

    @staticmethod
    def group_by_severity(results: Iterable[CompatResult]) -> dict[Severity, list[CompatIssue]]:
        grouped: dict[Severity, list[CompatIssue]] = {severity: [] for severity in Severity}
        for result in results:
            for issue in result.issues:
                grouped[issue.severity].append(issue)
        return grouped

    @staticmethod
    def group_by_file(results: Iterable[CompatResult]) -> dict[str, list[CompatIssue]]:
        grouped: dict[str, list[CompatIssue]] = defaultdict(list)
        for result in results:
            grouped[result.file].extend(result.issues)
        return {file: issues for file, issues in grouped.items() if issues}

    @staticmethod
    def format_summary(results: Iterable[CompatResult]) -> str:
        """``BC:OK`` or ``BC:{total}|C:{critical}|H:{high}``."""
        issues = [issue for result in results for issue in result.issues]
        if not issues:
            return "BC:OK"
        critical = sum(1 for issue in issues if issue.severity == Severity.CRITICAL)
        high = sum(1 for issue in issues if issue.severity == Severity.HIGH)
        return f"BC:{len(issues)}|C:{critical}|H:{high}"

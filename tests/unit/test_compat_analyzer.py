"""Tests for CompatAnalyzer."""

from pathlib import Path

import pytest

from failure_triage.config.schema import PathsConfig
from failure_triage.core.compat_analyzer import DEFAULT_RULES, CompatAnalyzer
from failure_triage.models.analysis import CompatRule
from failure_triage.models.pattern import Severity


@pytest.fixture
def analyzer(paths_config: PathsConfig) -> CompatAnalyzer:
    """Create a CompatAnalyzer for the sample project."""
    return CompatAnalyzer(paths_config)


class TestAnalyzeFile:
    """Tests for analyze_file."""

    def test_flags_service(self, analyzer: CompatAnalyzer) -> None:
        """Test that every critical rule hit is reported with its location."""
        result = analyzer.analyze_file("src/services/UserService.ts")

        assert result.has_critical_issues
        assert result.total_issues == 3
        by_rule = {issue.rule: issue for issue in result.issues}
        assert set(by_rule) == {
            "TypeORM DataSource",
            "Direct DataSource Import",
            "Singleton Service Export",
        }
        repo = by_rule["TypeORM DataSource"]
        assert repo.line == 5
        assert repo.column == 10
        assert repo.matched_text == "AppDataSource.getRepository"
        assert repo.line_content == "repo = AppDataSource.getRepository(User);"
        assert by_rule["Singleton Service Export"].line == 8

    def test_server_only_path(self, analyzer: CompatAnalyzer) -> None:
        """Test that API routes are exempt."""
        result = analyzer.analyze_file("src/api/files.ts")

        assert result.is_server_only
        assert result.issues == ()

    def test_use_server_directive(self, analyzer: CompatAnalyzer, project_root: Path) -> None:
        """Test that a 'use server' module is exempt."""
        (project_root / "src/actions.ts").write_text("'use server';\nimport fs from 'fs';\n")
        assert analyzer.analyze_file("src/actions.ts").is_server_only

    def test_spec_files_exempt(self, analyzer: CompatAnalyzer) -> None:
        """Test that test files are exempt."""
        assert analyzer.analyze_file("tests/e2e/specs/format.spec.ts").is_server_only

    def test_process_env(self, analyzer: CompatAnalyzer, project_root: Path) -> None:
        """Test that client-exposed variables are allowed."""
        (project_root / "src/env.ts").write_text(
            "export const a = process.env.VITE_API;\nexport const b = process.env.SECRET;\n"
        )
        result = analyzer.analyze_file("src/env.ts")

        assert [issue.line for issue in result.issues] == [2]
        assert result.issues[0].severity == Severity.MEDIUM

    def test_unreadable_file(self, analyzer: CompatAnalyzer) -> None:
        """Test that a missing file yields an empty result."""
        result = analyzer.analyze_file("src/missing.ts")
        assert result.total_issues == 0
        assert not result.is_server_only

    def test_custom_rule(self, paths_config: PathsConfig) -> None:
        """Test that an invalid expression is matched literally."""
        analyzer = CompatAnalyzer(
            paths_config,
            rules=[CompatRule("Odd", "trim(", Severity.LOW, "reason", "fix")],
        )
        assert analyzer.analyze_file("src/utils/format.ts").total_issues == 1


class TestAnalyzeDirectory:
    """Tests for analyze_directory and the summaries."""

    def test_only_flagged_files(self, analyzer: CompatAnalyzer) -> None:
        """Test that clean and server-only files are left out."""
        results = analyzer.analyze_directory("src")
        assert [r.file for r in results] == ["src/db/data-source.ts", "src/services/UserService.ts"]

    def test_format_summary(self, analyzer: CompatAnalyzer) -> None:
        """Test the compact severity summary."""
        results = analyzer.analyze_directory("src")

        assert CompatAnalyzer.format_summary(results) == "BC:4|C:3|H:1"
        assert CompatAnalyzer.format_summary([]) == "BC:OK"

    def test_grouping(self, analyzer: CompatAnalyzer) -> None:
        """Test grouping by severity and file."""
        results = analyzer.analyze_directory("src")

        by_severity = CompatAnalyzer.group_by_severity(results)
        assert len(by_severity[Severity.CRITICAL]) == 3
        assert by_severity[Severity.LOW] == []
        by_file = CompatAnalyzer.group_by_file(results)
        assert [i.rule for i in by_file["src/db/data-source.ts"]] == ["TypeORM Repository Import"]

    def test_default_rules(self) -> None:
        """Test that the rule set covers each runtime hazard once."""
        names = [rule.name for rule in DEFAULT_RULES]
        assert len(names) == len(set(names)) == 13

"""Tests for ChangeDetector."""

import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from failure_triage.config.schema import PathsConfig
from failure_triage.core.change_detector import ChangeDetector
from failure_triage.core.import_graph import ImportGraph


@pytest.fixture
def detector(paths_config: PathsConfig) -> ChangeDetector:
    """Create a ChangeDetector over the sample project."""
    return ChangeDetector(paths_config, ImportGraph(paths_config))


@pytest.fixture
def git_diff(monkeypatch: pytest.MonkeyPatch) -> Callable[..., list[list[str]]]:
    """Replace git with a canned diff; returns the recorded commands."""

    def install(stdout: str = "", returncode: int = 0, stderr: str = "") -> list[list[str]]:
        calls: list[list[str]] = []

        def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            calls.append(cmd)
            assert kwargs["shell"] is False
            return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

        monkeypatch.setattr("failure_triage.core.change_detector.subprocess.run", fake_run)
        return calls

    return install


class TestChangedFiles:
    """Tests for changed_files."""

    def test_lists_diff(
        self, detector: ChangeDetector, git_diff: Callable[..., list[list[str]]]
    ) -> None:
        """Test that git output is split into paths."""
        calls = git_diff("src/a.ts\n\n  src/b.ts \n")

        assert detector.changed_files("origin/main") == ["src/a.ts", "src/b.ts"]
        assert calls == [["git", "diff", "--name-only", "origin/main"]]

    @pytest.mark.parametrize("ref", ["", "--output=/tmp/x", "-p"])
    def test_rejects_option_like_refs(self, detector: ChangeDetector, ref: str) -> None:
        """Test that refs are never passed through as options."""
        with pytest.raises(ValueError, match="Invalid git ref"):
            detector.changed_files(ref)

    def test_git_error(
        self, detector: ChangeDetector, git_diff: Callable[..., list[list[str]]]
    ) -> None:
        """Test that a failing git command yields no changes."""
        git_diff(returncode=128, stderr="fatal: not a git repository")
        assert detector.changed_files() == []

    def test_git_missing(self, detector: ChangeDetector, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a missing git binary yields no changes."""

        def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            raise FileNotFoundError("git")

        monkeypatch.setattr("failure_triage.core.change_detector.subprocess.run", fake_run)
        assert detector.changed_files() == []


class TestAnalyze:
    """Tests for analyze."""

    def test_no_changes(
        self, detector: ChangeDetector, git_diff: Callable[..., list[list[str]]]
    ) -> None:
        """Test the empty diff."""
        git_diff("")

        changes = detector.analyze()

        assert changes.skip_reason == "no_changes"
        assert ChangeDetector.format_compact(changes) == "SKIP:no_changes"

    def test_source_change(
        self, detector: ChangeDetector, git_diff: Callable[..., list[list[str]]]
    ) -> None:
        """Test that the import graph selects the specs reaching a source file."""
        git_diff("src/db/data-source.ts\n")

        changes = detector.analyze()

        assert changes.affected_tests == ("tests/e2e/specs/dashboard.spec.ts",)
        assert changes.source_changes == 1
        assert changes.skip_reason is None
        assert ChangeDetector.format_compact(changes) == "CHANGED:1|TESTS:1"

    def test_config_change_selects_everything(
        self, detector: ChangeDetector, git_diff: Callable[..., list[list[str]]]
    ) -> None:
        """Test that a harness config change runs every spec."""
        git_diff("playwright.config.ts\n")

        changes = detector.analyze()

        assert changes.config_changes == 1
        assert changes.affected_tests == (
            "tests/e2e/specs/dashboard.spec.ts",
            "tests/e2e/specs/format.spec.ts",
        )

    def test_unrelated_change(
        self, detector: ChangeDetector, git_diff: Callable[..., list[list[str]]]
    ) -> None:
        """Test that documentation-only changes are skipped."""
        git_diff("README.md\ndocs/guide.md\n")

        changes = detector.analyze()

        assert changes.skip_reason == "no_test_changes"
        assert changes.changed_files == ("README.md", "docs/guide.md")

    def test_all_specs(self, detector: ChangeDetector, project_root: Path) -> None:
        """Test spec discovery below the test directory."""
        (project_root / "tests/e2e/helpers.ts").write_text("export {};\n")

        assert detector.all_specs() == [
            "tests/e2e/specs/dashboard.spec.ts",
            "tests/e2e/specs/format.spec.ts",
        ]

"""Tests for HarnessRunner."""

import os
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from failure_triage.config.schema import HarnessConfig, PathsConfig
from failure_triage.core.errors import HarnessError, HarnessTimeoutError
from failure_triage.core.runner import HarnessRunner

Outcome = Callable[[list[str], dict[str, Any]], subprocess.CompletedProcess[str]]


def _harness(**overrides: Any) -> HarnessConfig:
    settings: dict[str, Any] = {
        "command": ["npx", "playwright", "test", "--reporter=json"],
        "max_attempts": 3,
        "initial_delay": 0.0,
        "max_delay": 0.0,
    }
    settings.update(overrides)
    return HarnessConfig(**settings)


@pytest.fixture
def fake_harness(monkeypatch: pytest.MonkeyPatch) -> Callable[..., list[list[str]]]:
    """Replace subprocess.run with a sequence of outcomes; returns the recorded commands."""

    def install(*outcomes: Outcome) -> list[list[str]]:
        calls: list[list[str]] = []

        def fake_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
            calls.append(cmd)
            outcome = outcomes[min(len(calls), len(outcomes)) - 1]
            return outcome(cmd, kwargs)

        monkeypatch.setattr("failure_triage.core.runner.subprocess.run", fake_run)
        return calls

    return install


def _prints(stdout: str, returncode: int = 1) -> Outcome:
    def outcome(cmd: list[str], kwargs: dict[str, Any]) -> subprocess.CompletedProcess[str]:
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="boom")

    return outcome


def _raises(exc: Exception) -> Outcome:
    def outcome(cmd: list[str], kwargs: dict[str, Any]) -> subprocess.CompletedProcess[str]:
        raise exc

    return outcome


class TestBuildCommand:
    """Tests for build_command."""

    def test_spec_and_grep(self, paths_config: PathsConfig) -> None:
        """Test that filters are appended as separate arguments."""
        runner = HarnessRunner(_harness(), paths_config)

        assert runner.build_command("tests/e2e/specs/a.spec.ts", "shows the dashboard") == [
            "npx",
            "playwright",
            "test",
            "--reporter=json",
            "tests/e2e/specs/a.spec.ts",
            "--grep",
            "shows the dashboard",
        ]
        assert runner.build_command() == ["npx", "playwright", "test", "--reporter=json"]


class TestRun:
    """Tests for run."""

    @pytest.mark.asyncio
    async def test_parses_stdout(
        self,
        paths_config: PathsConfig,
        fake_harness: Callable[..., list[list[str]]],
        playwright_report_text: str,
    ) -> None:
        """Test that failing tests are a normal outcome."""
        calls = fake_harness(_prints(playwright_report_text, returncode=1))

        run = await HarnessRunner(_harness(), paths_config).run(spec="specs/dashboard.spec.ts")

        assert run.summary.failed == 1
        assert calls[0][-1] == "specs/dashboard.spec.ts"

    @pytest.mark.asyncio
    async def test_reads_report_file(
        self,
        paths_config: PathsConfig,
        project_root: Path,
        fake_harness: Callable[..., list[list[str]]],
        playwright_report_text: str,
    ) -> None:
        """Test that a configured report file is preferred over stdout."""

        def writes_report(
            cmd: list[str], kwargs: dict[str, Any]
        ) -> subprocess.CompletedProcess[str]:
            Path(kwargs["env"]["PLAYWRIGHT_JSON_OUTPUT_NAME"]).write_text(playwright_report_text)
            assert kwargs["cwd"] == project_root.resolve()
            return subprocess.CompletedProcess(cmd, 1, stdout="list output", stderr="")

        fake_harness(writes_report)
        runner = HarnessRunner(_harness(report_file="results.json"), paths_config)

        run = await runner.run()

        assert run.summary.failed == 1
        assert (project_root / "results.json").is_file()
        assert "PLAYWRIGHT_JSON_OUTPUT_NAME" not in os.environ

    @pytest.mark.asyncio
    async def test_retries_missing_report(
        self,
        paths_config: PathsConfig,
        fake_harness: Callable[..., list[list[str]]],
        playwright_report_text: str,
    ) -> None:
        """Test that a run without a report is retried."""
        calls = fake_harness(_prints(""), _prints(playwright_report_text))

        run = await HarnessRunner(_harness(), paths_config).run()

        assert len(calls) == 2
        assert run.summary.total > 0

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(
        self, paths_config: PathsConfig, fake_harness: Callable[..., list[list[str]]]
    ) -> None:
        """Test that the last harness error is raised."""
        calls = fake_harness(_prints("nothing useful"))

        with pytest.raises(HarnessError, match="without a report: boom"):
            await HarnessRunner(_harness(), paths_config).run()
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(
        self, paths_config: PathsConfig, fake_harness: Callable[..., list[list[str]]]
    ) -> None:
        """Test that a timeout fails immediately."""
        calls = fake_harness(_raises(subprocess.TimeoutExpired(["npx"], 10)))

        with pytest.raises(HarnessTimeoutError, match="timed out"):
            await HarnessRunner(_harness(timeout=10), paths_config).run()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_missing_executable(
        self, paths_config: PathsConfig, fake_harness: Callable[..., list[list[str]]]
    ) -> None:
        """Test that a harness that cannot start is reported."""
        fake_harness(_raises(FileNotFoundError("npx")))

        with pytest.raises(HarnessError, match="Could not start harness npx"):
            await HarnessRunner(_harness(max_attempts=1), paths_config).run()

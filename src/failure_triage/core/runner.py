"""Launches the external test harness and parses its report.

The harness is the only subprocess the pipeline starts. It is always run
with an argument list (never through a shell) and under a timeout. A harness
exiting non-zero because tests failed is normal; only a missing or
unparseable report counts as a harness failure, and that is retried.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
from pathlib import Path

import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from failure_triage.config.schema import HarnessConfig, PathsConfig
from failure_triage.core.errors import HarnessError, HarnessTimeoutError, ResultParseError
from failure_triage.core.result_parser import ResultParser
from failure_triage.models.test_result import TestRun

log = structlog.get_logger()


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts for debugging."""
    if retry_state.outcome is None:
        return

    exception = retry_state.outcome.exception()
    if exception:
        log.warning(
            "retrying_harness_run",
            attempt=retry_state.attempt_number,
            exception_type=type(exception).__name__,
            exception_message=str(exception),
            wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
        )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, HarnessError) and not isinstance(exc, HarnessTimeoutError)


class HarnessRunner:
    """Default TestHarness: runs the configured command.

    Example:
        runner = HarnessRunner(config.harness, config.paths)
        run = await runner.run(spec="tests/e2e/specs/login.spec.ts")
        print(run.summary.failed)
    """

    def __init__(
        self,
        config: HarnessConfig,
        paths: PathsConfig,
        parser: ResultParser | None = None,
    ) -> None:
        self._config = config
        self._paths = paths
        self._parser = parser or ResultParser()

    def build_command(self, spec: str | None = None, grep: str | None = None) -> list[str]:
        """Argument list for one harness invocation."""
        cmd = list(self._config.command)
        if spec:
            cmd.append(spec)
        if grep:
            cmd.extend(["--grep", grep])
        return cmd

    async def run(self, spec: str | None = None, grep: str | None = None) -> TestRun:
        """Run the harness, retrying when it produces no usable report.

        Raises:
            HarnessError: If every attempt failed to produce a report
            HarnessTimeoutError: If an attempt exceeded the timeout
        """
        attempt = retry(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self._config.initial_delay,
                max=self._config.max_delay,
            ),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        )(self._run_once)
        return await attempt(spec, grep)

    async def _run_once(self, spec: str | None, grep: str | None) -> TestRun:
        cmd = self.build_command(spec, grep)
        timeout = self._config.timeout
        env = dict(os.environ)
        report_path = self._report_path()
        if report_path is not None:
            report_path.unlink(missing_ok=True)
            env["PLAYWRIGHT_JSON_OUTPUT_NAME"] = str(report_path)

        log.info("harness_started", command=cmd, timeout=timeout)

        def run_sync() -> subprocess.CompletedProcess[str]:
            return subprocess.run(
                cmd,
                cwd=self._paths.root,
                env=env,
                capture_output=True,
                text=True,
                timeout=timeout,
                shell=False,
            )

        try:
            proc = await asyncio.to_thread(run_sync)
        except subprocess.TimeoutExpired as e:
            log.error("harness_timeout", command=cmd, timeout=timeout)
            raise HarnessTimeoutError(f"Harness timed out after {timeout}s: {cmd}") from e
        except OSError as e:
            raise HarnessError(f"Could not start harness {cmd[0]}: {e}") from e

        output = proc.stdout
        if report_path is not None:
            try:
                output = report_path.read_text(encoding="utf-8")
            except OSError as e:
                raise HarnessError(f"Harness report {report_path} was not written: {e}") from e

        try:
            run = self._parser.parse_report(output)
        except ResultParseError as e:
            detail = proc.stderr.strip()[-500:] or str(e)
            msg = f"Harness exited {proc.returncode} without a report: {detail}"
            raise HarnessError(msg) from e

        run = self._parser.attach_error_context(
            run, self._paths.root / self._paths.test_results_dir
        )
        log.info(
            "harness_finished",
            exit_code=proc.returncode,
            total=run.summary.total,
            failed=run.summary.failed,
        )
        return run

    def _report_path(self) -> Path | None:
        if not self._config.report_file:
            return None
        path = Path(self._config.report_file)
        return path if path.is_absolute() else self._paths.root / path

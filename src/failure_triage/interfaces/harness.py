"""Interface for the external end-to-end test harness."""

from typing import Protocol

from ..models.test_result import TestRun


class TestHarness(Protocol):
    """Runs the end-to-end suite and returns structured results.

    The default implementation launches the configured command and parses
    its JSON report (see core/runner.py).
    """

    __test__ = False

    async def run(self, spec: str | None = None, grep: str | None = None) -> TestRun:
        """
        Run the suite, or a subset of it.

        Args:
            spec: Spec file or directory to restrict the run to
            grep: Only run tests whose title matches this pattern

        Returns:
            Parsed results of the run

        Raises:
            HarnessError: If the harness produced no usable report
            HarnessTimeoutError: If the harness exceeded its timeout
        """
        ...

"""Interface for analyzers of DOM snapshots captured at failure time."""

from typing import Protocol

from ..models.analysis import DOMAnalysis
from ..models.test_result import TestError


class DOMSnapshotAnalyzer(Protocol):
    """Reads the page state a harness captured for a failing test.

    Implementations typically parse the accessibility-tree snapshot the
    harness writes next to each failure and report visible error states.
    """

    def analyze(self, error: TestError, test_name: str | None = None) -> list[DOMAnalysis]:
        """
        Analyze the snapshots relevant to one failure.

        Args:
            error: The failing test's error, including any inline snapshot
            test_name: Title of the failing test, if known

        Returns:
            Zero or more analyses, most relevant first
        """
        ...

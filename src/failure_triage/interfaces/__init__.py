"""Protocol definitions for pluggable collaborators."""

from .dom import DOMSnapshotAnalyzer
from .harness import TestHarness

__all__ = ["DOMSnapshotAnalyzer", "TestHarness"]

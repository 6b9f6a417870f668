"""Core analysis components.

This module exports the analysis components. The pipeline that wires them
together lives in failure_triage.core.pipeline (it also depends on the
reporting package, so it is not imported here).

- ResultParser: Parses harness reports and JavaScript stacks
- Fingerprinter: Deduplicates failures by normalized signature
- PatternMatcher: Matches failures against the signature library
- RootCauseSynthesizer: Fuses traces, compatibility scans and DOM state
- FixGenerator / FixApplier: Template-based fixes, applied with backups
"""

from failure_triage.core.category_aggregator import CategoryAggregator
from failure_triage.core.change_detector import ChangeDetector
from failure_triage.core.compat_analyzer import CompatAnalyzer
from failure_triage.core.fingerprint import Fingerprinter
from failure_triage.core.fix_applier import FixApplier
from failure_triage.core.fix_generator import FixGenerator
from failure_triage.core.import_graph import ImportGraph
from failure_triage.core.import_tracer import ImportTracer
from failure_triage.core.pattern_matcher import PatternMatcher
from failure_triage.core.result_parser import ResultParser
from failure_triage.core.root_cause import RootCauseSynthesizer
from failure_triage.core.runner import HarnessRunner
from failure_triage.core.watcher import Watcher

__all__ = [
    "CategoryAggregator",
    "ChangeDetector",
    "CompatAnalyzer",
    "FixApplier",
    "FixGenerator",
    "Fingerprinter",
    "HarnessRunner",
    "ImportGraph",
    "ImportTracer",
    "PatternMatcher",
    "ResultParser",
    "RootCauseSynthesizer",
    "Watcher",
]

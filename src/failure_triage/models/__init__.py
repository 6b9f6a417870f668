"""Data models and transfer objects."""

from .analysis import (
    ActionItem,
    ActionType,
    AggregatedCategories,
    CategorySummary,
    CompatIssue,
    CompatResult,
    CompatRule,
    DOMAnalysis,
    FixKind,
    RootCauseAnalysis,
    SuggestedFix,
)
from .fix import (
    ApplyResult,
    BackupEntry,
    ChangeType,
    CodeChange,
    FixTemplate,
    GeneratedFix,
    ReplacementRule,
    TransactionResult,
)
from .graph import ChainNode, GraphNode, GraphStats, ImportChain
from .pattern import (
    DeduplicationResult,
    ErrorGroup,
    ErrorPattern,
    Fingerprint,
    PatternMatch,
    PatternMatchResult,
    Severity,
)
from .report import (
    ActionCode,
    CategoryCode,
    CategoryDelta,
    ChangeAnalysis,
    CompressedReport,
    DiffReport,
    FixCode,
    HealthScore,
    SessionAwareReport,
    SessionContext,
    Snapshot,
    StatusCode,
)
from .test_result import (
    ErrorCategory,
    RunSummary,
    StackFrame,
    TestError,
    TestResult,
    TestRun,
    TestStatus,
)

__all__ = [
    # Test results
    "ErrorCategory",
    "RunSummary",
    "StackFrame",
    "TestError",
    "TestResult",
    "TestRun",
    "TestStatus",
    # Patterns
    "DeduplicationResult",
    "ErrorGroup",
    "ErrorPattern",
    "Fingerprint",
    "PatternMatch",
    "PatternMatchResult",
    "Severity",
    # Graph
    "ChainNode",
    "GraphNode",
    "GraphStats",
    "ImportChain",
    # Analysis
    "ActionItem",
    "ActionType",
    "AggregatedCategories",
    "CategorySummary",
    "CompatIssue",
    "CompatResult",
    "CompatRule",
    "DOMAnalysis",
    "FixKind",
    "RootCauseAnalysis",
    "SuggestedFix",
    # Fixes
    "ApplyResult",
    "BackupEntry",
    "ChangeType",
    "CodeChange",
    "FixTemplate",
    "GeneratedFix",
    "ReplacementRule",
    "TransactionResult",
    # Reports
    "ActionCode",
    "CategoryCode",
    "CategoryDelta",
    "ChangeAnalysis",
    "CompressedReport",
    "DiffReport",
    "FixCode",
    "HealthScore",
    "SessionAwareReport",
    "SessionContext",
    "Snapshot",
    "StatusCode",
]

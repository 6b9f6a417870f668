"""Data models for compatibility findings and root-cause analysis."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .graph import ImportChain
from .pattern import PatternMatchResult, Severity
from .test_result import ErrorCategory, TestError


@dataclass(frozen=True)
class CompatRule:
    """A named runtime-incompatibility rule."""

    name: str
    pattern: str
    severity: Severity
    reason: str
    fix: str


@dataclass(frozen=True)
class CompatIssue:
    """One rule match at one source location."""

    rule: str
    pattern: str
    severity: Severity
    reason: str
    fix: str
    file: str
    line: int
    column: int
    matched_text: str
    line_content: str

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL


@dataclass(frozen=True)
class CompatResult:
    """Compatibility scan of a single file."""

    file: str
    issues: tuple[CompatIssue, ...] = ()
    is_server_only: bool = False

    @property
    def has_critical_issues(self) -> bool:
        return any(issue.is_critical for issue in self.issues)

    @property
    def total_issues(self) -> int:
        return len(self.issues)


@dataclass(frozen=True)
class DOMAnalysis:
    """What an external DOM-snapshot analyzer saw for a failing test."""

    issues: tuple[str, ...] = ()
    has_error_state: bool = False
    visible_text: str = ""
    file: str | None = None


class FixKind(StrEnum):
    """How a suggested fix is carried out."""

    AUTO = "auto"
    MANUAL = "manual"
    SUGGESTION = "suggestion"


@dataclass(frozen=True)
class SuggestedFix:
    """A ranked remediation suggestion."""

    type: FixKind
    description: str
    confidence: float
    command: str | None = None
    file: str | None = None
    line: int | None = None


@dataclass(frozen=True)
class RootCauseAnalysis:
    """Fused verdict for one error."""

    error: TestError
    pattern_match: PatternMatchResult
    confidence: float
    root_cause: str
    evidence: tuple[str, ...] = ()
    import_chain: ImportChain | None = None
    compat_results: tuple[CompatResult, ...] = ()
    dom_analysis: DOMAnalysis | None = None
    suggested_fixes: tuple[SuggestedFix, ...] = ()
    analysis_time_ms: float = 0.0

    @property
    def category(self) -> ErrorCategory:
        return self.pattern_match.category

    @property
    def has_auto_fix(self) -> bool:
        return any(fix.type == FixKind.AUTO for fix in self.suggested_fixes)


@dataclass(frozen=True)
class CategorySummary:
    """Errors of one category rolled up."""

    category: ErrorCategory
    semantic_code: str
    count: int
    fixable_count: int
    primary_root_cause: str
    affected_files: tuple[str, ...]
    severity: Severity
    avg_confidence: float
    suggestions: tuple[str, ...] = ()


@dataclass(frozen=True)
class AggregatedCategories:
    """Every category summary plus totals."""

    total_errors: int
    fixable_errors: int
    categories: tuple[CategorySummary, ...]
    by_severity: dict[str, int]

    @property
    def total_categories(self) -> int:
        return len(self.categories)

    @property
    def unfixable_errors(self) -> int:
        return self.total_errors - self.fixable_errors


class ActionType(StrEnum):
    """Kind of follow-up an action item asks for."""

    AUTO_FIX = "auto_fix"
    MANUAL_FIX = "manual_fix"
    INVESTIGATE = "investigate"


@dataclass(frozen=True)
class ActionItem:
    """A prioritized next step derived from category analysis."""

    priority: float
    type: ActionType
    category: ErrorCategory
    semantic_code: str
    description: str
    estimated_impact: int
    command: str | None = None
    root_cause: str | None = None
    affected_files: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()

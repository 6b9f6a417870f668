"""Data models for failure signatures, pattern matches and fingerprints."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from .test_result import ErrorCategory, TestError


class Severity(StrEnum):
    """Severity of a failure signature or compatibility finding."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key, lower is more severe."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class ErrorPattern(BaseModel):
    """One entry of the failure signature library."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: str
    severity: Severity = Severity.MEDIUM
    patterns: list[str] = Field(min_length=1)
    root_cause: str
    import_trace_required: bool = False
    fix_available: bool = False
    fix_template: str | None = None
    suggestions: list[str] = []
    semantic_code: str | None = None
    documentation: str | None = None


@dataclass(frozen=True)
class PatternMatch:
    """A single signature that matched an error."""

    pattern_id: str
    pattern_name: str
    category: ErrorCategory
    severity: Severity
    confidence: float
    root_cause: str
    fix_available: bool
    requires_import_trace: bool
    fix_template: str | None = None
    suggestions: tuple[str, ...] = ()
    semantic_code: str | None = None


@dataclass(frozen=True)
class PatternMatchResult:
    """All signature matches for an error, best first."""

    error: TestError
    matches: tuple[PatternMatch, ...]
    best_match: PatternMatch | None
    category: ErrorCategory
    confidence: float

    @property
    def matched(self) -> bool:
        return self.best_match is not None

    @property
    def fixable(self) -> bool:
        return self.best_match is not None and self.best_match.fix_available


@dataclass(frozen=True)
class Fingerprint:
    """Stable identity of a normalized error."""

    hash: str
    short_hash: str
    features: tuple[str, ...]
    category: ErrorCategory
    normalized_message: str
    file: str | None = None


@dataclass(frozen=True)
class ErrorGroup:
    """Errors that share one fingerprint."""

    fingerprint: Fingerprint
    errors: tuple[TestError, ...]
    test_names: tuple[str, ...]

    @property
    def count(self) -> int:
        return len(self.errors)

    @property
    def representative(self) -> TestError:
        """First occurrence in input order."""
        return self.errors[0]


@dataclass(frozen=True)
class DeduplicationResult:
    """Outcome of collapsing duplicate failures."""

    unique: tuple[TestError, ...]
    groups: tuple[ErrorGroup, ...]
    total_count: int
    unique_count: int
    duplicate_count: int
    deduplication_ratio: float

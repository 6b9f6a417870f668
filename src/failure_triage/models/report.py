"""Data models for compressed status, run diffs and session state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .test_result import ErrorCategory


class StatusCode(StrEnum):
    """Overall run status."""

    PASS = "P"
    FAIL = "F"
    FIXABLE = "X"
    BLOCKED = "B"


class CategoryCode(StrEnum):
    """Two-letter category codes."""

    BROWSER_COMPAT = "BC"
    TIMEOUT = "TO"
    NOT_FOUND = "NF"
    NETWORK = "NE"
    SERVER_ERROR = "SE"
    ASSERTION = "AE"
    PERMISSION = "PE"
    DATABASE = "DE"
    UNKNOWN = "UN"


class FixCode(StrEnum):
    """Two-letter fix strategy codes."""

    LAZY_INIT = "LI"
    DYNAMIC_IMPORT = "DI"
    BROWSER_GUARD = "BG"
    DATA_SOURCE = "DC"
    WAIT_TIMEOUT = "WT"
    RETRY_LOGIC = "RL"


class ActionCode(StrEnum):
    """Two-letter next-action codes."""

    AUTO_FIX = "AF"
    RE_ANALYZE = "RA"
    RE_TEST = "RT"
    DEEP_ANALYZE = "DA"
    MANUAL_FIX = "MF"
    CHECK_INFRA = "CI"


CATEGORY_CODES: dict[ErrorCategory, CategoryCode] = {
    ErrorCategory.BROWSER_COMPAT: CategoryCode.BROWSER_COMPAT,
    ErrorCategory.TIMEOUT: CategoryCode.TIMEOUT,
    ErrorCategory.ELEMENT_NOT_FOUND: CategoryCode.NOT_FOUND,
    ErrorCategory.NETWORK: CategoryCode.NETWORK,
    ErrorCategory.SERVER_ERROR: CategoryCode.SERVER_ERROR,
    ErrorCategory.ASSERTION: CategoryCode.ASSERTION,
    ErrorCategory.PERMISSION_ERROR: CategoryCode.PERMISSION,
    ErrorCategory.DATABASE_ERROR: CategoryCode.DATABASE,
    ErrorCategory.UNKNOWN: CategoryCode.UNKNOWN,
}

# Categories without an entry fall back to lazy initialization.
CATEGORY_FIXES: dict[CategoryCode, FixCode] = {
    CategoryCode.BROWSER_COMPAT: FixCode.LAZY_INIT,
    CategoryCode.TIMEOUT: FixCode.WAIT_TIMEOUT,
    CategoryCode.NOT_FOUND: FixCode.WAIT_TIMEOUT,
    CategoryCode.NETWORK: FixCode.RETRY_LOGIC,
    CategoryCode.SERVER_ERROR: FixCode.RETRY_LOGIC,
}

STATUS_ACTIONS: dict[StatusCode, ActionCode] = {
    StatusCode.PASS: ActionCode.RE_TEST,
    StatusCode.FIXABLE: ActionCode.AUTO_FIX,
    StatusCode.FAIL: ActionCode.DEEP_ANALYZE,
    StatusCode.BLOCKED: ActionCode.CHECK_INFRA,
}


def category_code(category: ErrorCategory | str) -> CategoryCode:
    """Two-letter code for a category, UN when it is not recognised."""
    return CATEGORY_CODES.get(ErrorCategory.parse(str(category)), CategoryCode.UNKNOWN)


@dataclass(frozen=True)
class CompressedReport:
    """Parsed form of a compressed status line."""

    raw: str
    status: StatusCode
    failed: int
    total: int
    action: ActionCode
    category: CategoryCode | None = None
    category_count: int | None = None
    fix: FixCode | None = None


@dataclass(frozen=True)
class Snapshot:
    """Hashed summary of one run, persisted for change detection."""

    hash: str
    timestamp: str
    status: StatusCode
    summary: dict[str, int]
    failed_tests: tuple[str, ...]
    categories: dict[str, int]
    fixable_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "timestamp": self.timestamp,
            "status": str(self.status),
            "summary": dict(self.summary),
            "failed_tests": list(self.failed_tests),
            "categories": dict(self.categories),
            "fixable_count": self.fixable_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        return cls(
            hash=data["hash"],
            timestamp=data.get("timestamp", ""),
            status=StatusCode(data.get("status", StatusCode.BLOCKED)),
            summary={k: int(v) for k, v in data.get("summary", {}).items()},
            failed_tests=tuple(data.get("failed_tests", ())),
            categories={k: int(v) for k, v in data.get("categories", {}).items()},
            fixable_count=int(data.get("fixable_count", 0)),
        )


@dataclass(frozen=True)
class CategoryDelta:
    """Change in failure count for one category."""

    category: str
    delta: int


@dataclass(frozen=True)
class DiffReport:
    """Field-by-field delta between two snapshots."""

    unchanged: bool
    status_change: str | None = None
    new_failures: tuple[str, ...] = ()
    fixed_tests: tuple[str, ...] = ()
    changed_categories: tuple[CategoryDelta, ...] = ()
    pass_rate_delta: float | None = None
    failed_delta: int | None = None
    action: str | None = None
    command: str | None = None


@dataclass
class SessionContext:
    """What has already been communicated to one consumer session."""

    session_id: str
    created: str
    last_updated: str
    communicated: dict[str, set[str]] = field(
        default_factory=lambda: {
            "patterns": set(),
            "files": set(),
            "root_causes": set(),
            "fixes": set(),
            "errors": set(),
        }
    )
    report_hashes: list[str] = field(default_factory=list)
    last_report_hash: str = ""
    total_reports: int = 0
    tokens_estimated: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": 1,
            "session_id": self.session_id,
            "created": self.created,
            "last_updated": self.last_updated,
            "communicated": {k: sorted(v) for k, v in self.communicated.items()},
            "report_hashes": list(self.report_hashes),
            "last_report_hash": self.last_report_hash,
            "metadata": {
                "total_reports": self.total_reports,
                "tokens_estimated": self.tokens_estimated,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionContext:
        context = cls(
            session_id=data["session_id"],
            created=data.get("created", ""),
            last_updated=data.get("last_updated", ""),
            report_hashes=list(data.get("report_hashes", ())),
            last_report_hash=data.get("last_report_hash", ""),
            total_reports=int(data.get("metadata", {}).get("total_reports", 0)),
            tokens_estimated=int(data.get("metadata", {}).get("tokens_estimated", 0)),
        )
        for key, values in data.get("communicated", {}).items():
            context.communicated[key] = set(values)
        return context


@dataclass(frozen=True)
class SessionAwareReport:
    """A report filtered down to what the session has not seen."""

    is_new: bool
    new_only: bool
    new_patterns: tuple[str, ...] = ()
    new_files: tuple[str, ...] = ()
    new_root_causes: tuple[str, ...] = ()
    new_fixes: tuple[str, ...] = ()
    new_errors: tuple[str, ...] = ()
    already_known: dict[str, tuple[str, ...]] = field(default_factory=dict)
    skip_patterns: bool = False
    skip_root_causes: bool = False
    skip_fixes: bool = False


@dataclass(frozen=True)
class HealthScore:
    """Overall suite health."""

    score: int
    grade: str
    factors: tuple[str, ...]


@dataclass(frozen=True)
class ChangeAnalysis:
    """Which tests a set of changed files can affect."""

    changed_files: tuple[str, ...]
    affected_tests: tuple[str, ...]
    source_changes: int = 0
    test_changes: int = 0
    config_changes: int = 0
    skip_reason: str | None = None

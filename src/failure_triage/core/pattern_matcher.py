"""Matching of test errors against the failure signature library.

The library is a YAML document of signatures (see data/error_patterns.yaml).
Each signature carries several regular expressions; confidence grows with the
share of expressions that matched and the length of the matched text.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Sequence
from importlib import resources
from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError

from failure_triage.core.errors import PatternLibraryError
from failure_triage.models.pattern import ErrorPattern, PatternMatch, PatternMatchResult, Severity
from failure_triage.models.test_result import ErrorCategory, TestError

log = structlog.get_logger()

# Library categories that are not ErrorCategory members map onto one here.
CATEGORY_ALIASES: dict[str, ErrorCategory] = {
    "infrastructure": ErrorCategory.NETWORK,
    "runtime_error": ErrorCategory.SERVER_ERROR,
}


def to_category(name: str | None) -> ErrorCategory:
    """Map a library category onto ErrorCategory with an UNKNOWN fallback."""
    if name in CATEGORY_ALIASES:
        return CATEGORY_ALIASES[name]
    return ErrorCategory.parse(name)


def load_pattern_library(path: Path | None = None) -> list[ErrorPattern]:
    """Load and validate a signature library.

    Args:
        path: YAML file; the packaged library when None

    Returns:
        Validated patterns in file order

    Raises:
        PatternLibraryError: If the file is missing or invalid
    """
    try:
        if path is None:
            text = (resources.files("failure_triage") / "data" / "error_patterns.yaml").read_text(
                encoding="utf-8"
            )
        else:
            text = path.read_text(encoding="utf-8")
        data = yaml.safe_load(text)
    except (OSError, yaml.YAMLError) as e:
        raise PatternLibraryError(f"Could not load pattern library {path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("patterns"), list):
        raise PatternLibraryError("Pattern library must contain a 'patterns' list")

    try:
        patterns = [ErrorPattern.model_validate(entry) for entry in data["patterns"]]
    except ValidationError as e:
        raise PatternLibraryError(f"Invalid pattern definition: {e}") from e

    ids = Counter(p.id for p in patterns)
    duplicates = sorted(pid for pid, count in ids.items() if count > 1)
    if duplicates:
        raise PatternLibraryError(f"Duplicate pattern ids: {', '.join(duplicates)}")

    return patterns


class PatternMatcher:
    """Scores errors against known failure signatures.

    Responsibilities:
    - Compile every signature once
    - Score each signature against an error's text
    - Pick the best match and map it onto a closed category

    Example:
        matcher = PatternMatcher()
        result = matcher.match(error)
        if result.best_match and result.best_match.requires_import_trace:
            ...
    """

    MIN_CONFIDENCE = 0.3
    RATIO_WEIGHT = 0.7
    MAX_STRENGTH = 0.3
    MULTI_MATCH_BOOST = 1.2
    CRITICAL_BOOST = 1.1

    def __init__(
        self,
        patterns: Sequence[ErrorPattern] | None = None,
        library_path: Path | None = None,
    ) -> None:
        """Initialize the matcher.

        Args:
            patterns: Signatures to use directly
            library_path: YAML library to load when ``patterns`` is None
        """
        self._library_path = library_path
        self._patterns: list[ErrorPattern] = []
        self._compiled: dict[str, list[re.Pattern[str]]] = {}
        for pattern in patterns if patterns is not None else load_pattern_library(library_path):
            self.add_pattern(pattern)

        log.debug("pattern_library_loaded", patterns=len(self._patterns))

    @property
    def pattern_count(self) -> int:
        return len(self._patterns)

    @property
    def patterns(self) -> tuple[ErrorPattern, ...]:
        return tuple(self._patterns)

    def add_pattern(self, pattern: ErrorPattern) -> None:
        """Register a signature, compiling its expressions."""
        self._patterns.append(pattern)
        self._compiled[pattern.id] = [self._compile(expr) for expr in pattern.patterns]

    def reload(self) -> None:
        """Re-read the library file."""
        self._patterns.clear()
        self._compiled.clear()
        for pattern in load_pattern_library(self._library_path):
            self.add_pattern(pattern)
        log.info("pattern_library_reloaded", patterns=len(self._patterns))

    def match(self, error: TestError) -> PatternMatchResult:
        """Match one error against every signature.

        No match is a valid outcome: confidence 0 and category UNKNOWN.

        Args:
            error: Error to classify

        Returns:
            PatternMatchResult with matches sorted by confidence
        """
        text = self._build_text(error)
        matches: list[PatternMatch] = []

        for pattern in self._patterns:
            confidence = self._confidence(text, pattern)
            if confidence > self.MIN_CONFIDENCE:
                matches.append(
                    PatternMatch(
                        pattern_id=pattern.id,
                        pattern_name=pattern.name,
                        category=to_category(pattern.category),
                        severity=pattern.severity,
                        confidence=confidence,
                        root_cause=pattern.root_cause,
                        fix_available=pattern.fix_available,
                        requires_import_trace=pattern.import_trace_required,
                        fix_template=pattern.fix_template,
                        suggestions=tuple(pattern.suggestions),
                        semantic_code=pattern.semantic_code,
                    )
                )

        matches.sort(key=lambda m: m.confidence, reverse=True)
        best = matches[0] if matches else None

        if best is None:
            log.debug("pattern_no_match", message=error.message[:120])

        return PatternMatchResult(
            error=error,
            matches=tuple(matches),
            best_match=best,
            category=best.category if best else ErrorCategory.UNKNOWN,
            confidence=best.confidence if best else 0.0,
        )

    def match_all(self, errors: Sequence[TestError]) -> list[PatternMatchResult]:
        return [self.match(error) for error in errors]

    def get_pattern(self, pattern_id: str) -> ErrorPattern | None:
        return next((p for p in self._patterns if p.id == pattern_id), None)

    def get_patterns_by_category(self, category: ErrorCategory | str) -> list[ErrorPattern]:
        wanted = to_category(str(category))
        return [p for p in self._patterns if to_category(p.category) == wanted]

    def get_patterns_by_severity(self, severity: Severity) -> list[ErrorPattern]:
        return [p for p in self._patterns if p.severity == severity]

    def get_fixable_patterns(self) -> list[ErrorPattern]:
        return [p for p in self._patterns if p.fix_available]

    def category_counts(self) -> dict[str, int]:
        """Number of signatures per library category."""
        return dict(Counter(p.category for p in self._patterns))

    def format_match(self, result: PatternMatchResult) -> str:
        """Compact form: ``BC:87%`` or ``UN:0``."""
        if result.best_match is None:
            return "UN:0"
        code = result.best_match.semantic_code or "UN"
        return f"{code}:{round(result.confidence * 100)}%"

    def _confidence(self, text: str, pattern: ErrorPattern) -> float:
        regexes = self._compiled.get(pattern.id) or []
        if not regexes or not text:
            return 0.0

        matched = 0
        strength = 0.0
        for regex in regexes:
            found = regex.search(text)
            if found:
                matched += 1
                strength += len(found.group(0)) / len(text)

        if matched == 0:
            return 0.0

        ratio = matched / len(regexes)
        confidence = ratio * self.RATIO_WEIGHT + min(strength, self.MAX_STRENGTH)

        if matched > 1:
            confidence = min(confidence * self.MULTI_MATCH_BOOST, 1.0)
        if pattern.severity == Severity.CRITICAL:
            confidence = min(confidence * self.CRITICAL_BOOST, 1.0)

        return round(confidence, 2)

    @staticmethod
    def _build_text(error: TestError) -> str:
        parts = [error.message, error.raw_stack, error.snippet, error.dom_snapshot]
        return "\n".join(part for part in parts if part)

    @staticmethod
    def _compile(expression: str) -> re.Pattern[str]:
        try:
            return re.compile(expression, re.IGNORECASE)
        except re.error:
            log.warning("pattern_compile_failed", expression=expression)
            return re.compile(re.escape(expression), re.IGNORECASE)

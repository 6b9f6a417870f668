"""Tests for error fingerprinting and deduplication."""

import pytest

from failure_triage.core.fingerprint import Fingerprinter
from failure_triage.models.test_result import ErrorCategory, StackFrame, TestError


@pytest.fixture
def fingerprinter() -> Fingerprinter:
    """Create a Fingerprinter instance."""
    return Fingerprinter()


def _error(message: str, file: str | None = "src/pages/Dashboard.tsx") -> TestError:
    return TestError(
        message=message,
        file=file,
        stack=(StackFrame("render", "src/pages/Dashboard.tsx", 10, 4),),
        category=ErrorCategory.TIMEOUT,
    )


class TestNormalizeMessage:
    """Tests for normalize_message."""

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("at file.ts:12:5", "at file.ts:X:X"),
            ("user 3f2b8c1e-1111-2222-3333-444455556666 missing", "user UUID missing"),
            ("at 2024-05-01T10:00:00.123Z", "at TIMESTAMP"),
            ("Timeout 5000ms exceeded", "Timeout Xms exceeded"),
            ("GET http://localhost:5173/api", "GET http://localhost:PORT/api"),
            ("record id=42 not found", "record id=N not found"),
            ("object at 0x7ffe12ab", "object at ADDR"),
            ("  many   spaces\n here ", "many spaces here"),
        ],
    )
    def test_strips_volatile_parts(
        self, fingerprinter: Fingerprinter, message: str, expected: str
    ) -> None:
        """Test that run-to-run noise is replaced with placeholders."""
        assert fingerprinter.normalize_message(message) == expected


class TestFingerprint:
    """Tests for fingerprint."""

    def test_stable_across_volatile_values(self, fingerprinter: Fingerprinter) -> None:
        """Test that errors differing only in noise share a hash."""
        first = fingerprinter.fingerprint(_error("Timeout 5000ms exceeded at localhost:3000"))
        second = fingerprinter.fingerprint(_error("Timeout 7500ms exceeded at localhost:4000"))

        assert first.hash == second.hash
        assert first.short_hash == first.hash[:8]

    def test_file_changes_hash(self, fingerprinter: Fingerprinter) -> None:
        """Test that the same message in another file is a different error."""
        first = fingerprinter.fingerprint(_error("boom", file="src/a.ts"))
        second = fingerprinter.fingerprint(_error("boom", file="src/b.ts"))
        assert first.hash != second.hash

    def test_features(self, fingerprinter: Fingerprinter) -> None:
        """Test the ordered feature list."""
        features = fingerprinter.features(_error("boom"))
        assert features == ["timeout", "boom", "Dashboard.tsx", "render@Dashboard.tsx"]

    def test_anonymous_frames(self, fingerprinter: Fingerprinter) -> None:
        """Test that frames without a function name are labelled anonymous."""
        error = TestError(message="boom", stack=(StackFrame("", "src/a.ts", 1, 1),))
        assert fingerprinter.features(error)[-1] == "anonymous@a.ts"


class TestDeduplicate:
    """Tests for deduplicate."""

    def test_collapses_duplicates(self, fingerprinter: Fingerprinter) -> None:
        """Test that duplicates collapse to their first occurrence."""
        errors = [_error("boom"), _error("other"), _error("boom"), _error("boom")]

        result = fingerprinter.deduplicate(errors, ["t1", "t2", "t3", "t4"])

        assert result.total_count == 4
        assert result.unique_count == 2
        assert result.duplicate_count == 2
        assert result.deduplication_ratio == 0.5
        assert result.unique[0].message == "boom"
        assert result.groups[0].count == 3
        assert result.groups[0].test_names == ("t1", "t3", "t4")

    def test_deduplicating_twice_is_stable(self, fingerprinter: Fingerprinter) -> None:
        """Test that deduplicating the unique errors again changes nothing."""
        errors = [
            _error("Timeout 5000ms exceeded at 12:00:01"),
            _error("Timeout 5000ms exceeded at 12:00:07"),
            _error("other", file="src/utils/format.ts"),
            _error("boom"),
            _error("boom"),
        ]

        first = fingerprinter.deduplicate(errors)
        second = fingerprinter.deduplicate(first.unique)

        assert second.unique_count == first.unique_count == 3
        assert second.duplicate_count == 0
        assert [fingerprinter.fingerprint(e).hash for e in second.unique] == [
            fingerprinter.fingerprint(e).hash for e in first.unique
        ]

    def test_missing_test_names(self, fingerprinter: Fingerprinter) -> None:
        """Test that tests without a name get a positional placeholder."""
        result = fingerprinter.deduplicate([_error("boom")])
        assert result.groups[0].test_names == ("test-0",)

    def test_empty(self, fingerprinter: Fingerprinter) -> None:
        """Test that no errors yields an empty result."""
        result = fingerprinter.deduplicate([])
        assert result.unique_count == 0
        assert result.deduplication_ratio == 0.0


class TestSimilarity:
    """Tests for similarity and clustering."""

    def test_identical_errors(self, fingerprinter: Fingerprinter) -> None:
        """Test that equal fingerprints are fully similar."""
        assert fingerprinter.are_similar(_error("boom"), _error("boom"))
        assert fingerprinter.similarity(_error("boom"), _error("boom")) == 1.0

    def test_partial_overlap(self, fingerprinter: Fingerprinter) -> None:
        """Test Jaccard similarity when only the message differs."""
        # 3 shared features out of 5 distinct ones
        assert fingerprinter.similarity(_error("boom"), _error("bang")) == pytest.approx(0.6)

    def test_find_clusters(self, fingerprinter: Fingerprinter) -> None:
        """Test that similar errors cluster together, largest first."""
        unrelated = TestError(message="net down", category=ErrorCategory.NETWORK)
        clusters = fingerprinter.find_clusters(
            [unrelated, _error("boom"), _error("bang")], threshold=0.5
        )

        assert [len(c) for c in clusters] == [2, 1]
        assert clusters[1][0] is unrelated


class TestFormatSummary:
    """Tests for format_dedup_summary."""

    def test_formats(self, fingerprinter: Fingerprinter) -> None:
        """Test each summary form."""
        assert fingerprinter.format_dedup_summary(fingerprinter.deduplicate([])) == "NO_ERRORS"
        assert fingerprinter.format_dedup_summary(fingerprinter.deduplicate([_error("a")])) == (
            "1_UNIQUE"
        )
        result = fingerprinter.deduplicate([_error("a")] * 4)
        assert fingerprinter.format_dedup_summary(result) == "1U/4T|75%DUP"

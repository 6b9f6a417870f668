"""Error fingerprinting and deduplication.

Errors are reduced to a feature list (category, normalized message, file
name, leading stack frames) and hashed. Volatile substrings such as
timestamps, ports, object addresses and line/column numbers are stripped
first, so the same underlying bug collapses to one fingerprint across runs.
"""

from __future__ import annotations

import hashlib
import posixpath
import re
from collections.abc import Sequence

import structlog

from failure_triage.models.pattern import DeduplicationResult, ErrorGroup, Fingerprint
from failure_triage.models.test_result import TestError

log = structlog.get_logger()


class Fingerprinter:
    """Computes stable fingerprints for test errors.

    Example:
        fingerprinter = Fingerprinter()
        result = fingerprinter.deduplicate(errors, test_names)
        print(fingerprinter.format_dedup_summary(result))
    """

    STACK_FRAMES = 3
    SHORT_HASH_LENGTH = 8

    # Applied in order. Timestamps precede line:column, which would also match hh:mm:ss.
    NORMALIZERS: tuple[tuple[re.Pattern[str], str], ...] = (
        (
            re.compile(
                r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}",
                re.IGNORECASE,
            ),
            "UUID",
        ),
        (re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?Z?"), "TIMESTAMP"),
        (re.compile(r":\d+:\d+"), ":X:X"),
        (re.compile(r"\d+ms"), "Xms"),
        (re.compile(r"localhost:\d+"), "localhost:PORT"),
        (re.compile(r"\bid[=:]\s*\d+", re.IGNORECASE), "id=N"),
        (re.compile(r"0x[a-f0-9]+", re.IGNORECASE), "ADDR"),
        (re.compile(r"\s+"), " "),
    )

    def normalize_message(self, message: str) -> str:
        """Strip run-to-run noise from an error message."""
        for pattern, replacement in self.NORMALIZERS:
            message = pattern.sub(replacement, message)
        return message.strip()

    def features(self, error: TestError, normalized_message: str | None = None) -> list[str]:
        """Ordered feature list that identifies an error."""
        if normalized_message is None:
            normalized_message = self.normalize_message(error.message)

        features = [str(error.category), normalized_message]
        if error.file:
            features.append(posixpath.basename(error.file) or error.file)
        for frame in error.stack[: self.STACK_FRAMES]:
            features.append(f"{frame.function_name or 'anonymous'}@{frame.basename or 'unknown'}")
        return features

    def fingerprint(self, error: TestError) -> Fingerprint:
        """Hash the error's features.

        Args:
            error: Error to fingerprint

        Returns:
            Fingerprint whose ``hash`` is the deduplication key
        """
        normalized = self.normalize_message(error.message)
        features = self.features(error, normalized)
        digest = hashlib.sha256("|".join(features).encode("utf-8")).hexdigest()
        return Fingerprint(
            hash=digest,
            short_hash=digest[: self.SHORT_HASH_LENGTH],
            features=tuple(features),
            category=error.category,
            normalized_message=normalized,
            file=error.file,
        )

    def group(
        self,
        errors: Sequence[TestError],
        test_names: Sequence[str] | None = None,
    ) -> list[ErrorGroup]:
        """Group errors by fingerprint, preserving first-seen order."""
        buckets: dict[str, tuple[Fingerprint, list[TestError], list[str]]] = {}
        for index, error in enumerate(errors):
            fp = self.fingerprint(error)
            name = (
                test_names[index]
                if test_names is not None and index < len(test_names)
                else f"test-{index}"
            )
            if fp.hash in buckets:
                buckets[fp.hash][1].append(error)
                buckets[fp.hash][2].append(name)
            else:
                buckets[fp.hash] = (fp, [error], [name])

        return [
            ErrorGroup(fingerprint=fp, errors=tuple(errs), test_names=tuple(names))
            for fp, errs, names in buckets.values()
        ]

    def deduplicate(
        self,
        errors: Sequence[TestError],
        test_names: Sequence[str] | None = None,
    ) -> DeduplicationResult:
        """Collapse duplicates, keeping the first occurrence of each.

        Args:
            errors: Errors in harness order
            test_names: Test name for each error (same order)

        Returns:
            DeduplicationResult with groups sorted by size
        """
        groups = self.group(errors, test_names)
        unique = tuple(group.representative for group in groups)
        ordered = tuple(sorted(groups, key=lambda g: g.count, reverse=True))

        total = len(errors)
        unique_count = len(unique)
        duplicates = total - unique_count
        ratio = round(duplicates / total, 2) if total else 0.0

        log.debug(
            "errors_deduplicated",
            total=total,
            unique=unique_count,
            duplicates=duplicates,
        )
        return DeduplicationResult(
            unique=unique,
            groups=ordered,
            total_count=total,
            unique_count=unique_count,
            duplicate_count=duplicates,
            deduplication_ratio=ratio,
        )

    def are_similar(self, first: TestError, second: TestError) -> bool:
        """True when both errors share a fingerprint."""
        return self.fingerprint(first).hash == self.fingerprint(second).hash

    def similarity(self, first: TestError, second: TestError) -> float:
        """Jaccard similarity of the two feature sets (1.0 for equal hashes)."""
        fp1 = self.fingerprint(first)
        fp2 = self.fingerprint(second)
        if fp1.hash == fp2.hash:
            return 1.0
        set1, set2 = set(fp1.features), set(fp2.features)
        union = set1 | set2
        return len(set1 & set2) / len(union) if union else 0.0

    def find_clusters(
        self,
        errors: Sequence[TestError],
        threshold: float = 0.7,
    ) -> list[list[TestError]]:
        """Greedy single-pass clustering around each unassigned error."""
        clusters: list[list[TestError]] = []
        assigned: set[int] = set()

        for i, anchor in enumerate(errors):
            if i in assigned:
                continue
            cluster = [anchor]
            assigned.add(i)
            for j in range(i + 1, len(errors)):
                if j in assigned:
                    continue
                if self.similarity(anchor, errors[j]) >= threshold:
                    cluster.append(errors[j])
                    assigned.add(j)
            clusters.append(cluster)

        clusters.sort(key=len, reverse=True)
        return clusters

    def format_dedup_summary(self, result: DeduplicationResult) -> str:
        """Compact form: ``NO_ERRORS``, ``3_UNIQUE`` or ``3U/10T|70%DUP``."""
        if result.total_count == 0:
            return "NO_ERRORS"
        if result.duplicate_count == 0:
            return f"{result.unique_count}_UNIQUE"
        percent = round(result.deduplication_ratio * 100)
        return f"{result.unique_count}U/{result.total_count}T|{percent}%DUP"

"""Selection of the specs affected by a git diff."""

from __future__ import annotations

import subprocess

import structlog

from failure_triage.config.schema import AnalysisConfig, PathsConfig
from failure_triage.core.import_graph import ImportGraph
from failure_triage.models.report import ChangeAnalysis
from failure_triage.utils.fs import iter_source_files, to_relative

log = structlog.get_logger()

CONFIG_MARKERS = ("playwright.config", "vite.config", "tsconfig")
GIT_TIMEOUT = 30


class ChangeDetector:
    """Maps changed files to the specs that can observe them.

    Config changes select every spec; otherwise the import graph decides.

    Example:
        detector = ChangeDetector(config.paths, graph)
        changes = detector.analyze("origin/main")
        if changes.skip_reason is None:
            run(changes.affected_tests)
    """

    def __init__(
        self,
        paths: PathsConfig,
        graph: ImportGraph,
        analysis: AnalysisConfig | None = None,
    ) -> None:
        self._paths = paths
        self._root = paths.root
        self._graph = graph
        self._extensions = tuple((analysis or AnalysisConfig()).extensions)

    def changed_files(self, base_ref: str = "HEAD~1") -> list[str]:
        """Files changed relative to ``base_ref``; empty when git fails.

        Raises:
            ValueError: If ``base_ref`` looks like a command-line option
        """
        if not base_ref or base_ref.startswith("-"):
            raise ValueError(f"Invalid git ref: {base_ref!r}")

        cmd = ["git", "diff", "--name-only", base_ref]
        try:
            proc = subprocess.run(
                cmd,
                cwd=self._root,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT,
                shell=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            log.warning("git_diff_failed", base_ref=base_ref, error=str(e))
            return []

        if proc.returncode != 0:
            log.warning("git_diff_failed", base_ref=base_ref, error=proc.stderr.strip())
            return []
        return [line.strip() for line in proc.stdout.splitlines() if line.strip()]

    def analyze(self, base_ref: str = "HEAD~1") -> ChangeAnalysis:
        """Classify the diff and pick the affected specs."""
        changed = self.changed_files(base_ref)
        if not changed:
            return ChangeAnalysis(changed_files=(), affected_tests=(), skip_reason="no_changes")

        src = self._paths.src_dir.rstrip("/") + "/"
        tests = self._paths.test_dir.rstrip("/") + "/"
        source_changes = [f for f in changed if f.startswith(src) and ".test." not in f]
        test_changes = [f for f in changed if f.startswith(tests) or ".test." in f]
        config_changes = [
            f for f in changed if any(m in f for m in CONFIG_MARKERS) or f == "package.json"
        ]

        if config_changes:
            affected = self.all_specs()
        else:
            self._graph.ensure_built()
            affected = self._graph.get_affected_tests(changed)

        skip_reason = None
        if not affected and not source_changes and not test_changes:
            skip_reason = "no_test_changes"

        log.info(
            "changes_analyzed",
            base_ref=base_ref,
            changed=len(changed),
            affected_tests=len(affected),
            skip_reason=skip_reason,
        )
        return ChangeAnalysis(
            changed_files=tuple(changed),
            affected_tests=tuple(affected),
            source_changes=len(source_changes),
            test_changes=len(test_changes),
            config_changes=len(config_changes),
            skip_reason=skip_reason,
        )

    def all_specs(self) -> list[str]:
        return sorted(
            to_relative(path, self._root)
            for path in iter_source_files(self._root, [self._paths.test_dir], self._extensions)
            if ImportGraph.SPEC_PATTERN.search(path.name)
        )

    @staticmethod
    def format_compact(changes: ChangeAnalysis) -> str:
        """``SKIP:reason`` or ``CHANGED:n|TESTS:n``."""
        if changes.skip_reason:
            return f"SKIP:{changes.skip_reason}"
        return f"CHANGED:{len(changes.changed_files)}|TESTS:{len(changes.affected_tests)}"

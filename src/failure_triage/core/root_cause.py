"""Root-cause synthesis.

Fuses the pattern match with import tracing, compatibility findings and DOM
state into one verdict per error. Each corroborating signal adds a fixed boost
to the pattern confidence, so confidence only ever grows as evidence is added
and is capped at 1.0.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from pathlib import PurePosixPath
from typing import Any

import structlog

from failure_triage.core.compat_analyzer import CompatAnalyzer
from failure_triage.core.import_tracer import ImportTracer
from failure_triage.interfaces.dom import DOMSnapshotAnalyzer
from failure_triage.models.analysis import (
    CompatResult,
    DOMAnalysis,
    FixKind,
    RootCauseAnalysis,
    SuggestedFix,
)
from failure_triage.models.graph import ImportChain
from failure_triage.models.pattern import PatternMatchResult, Severity
from failure_triage.models.test_result import ErrorCategory, TestError

log = structlog.get_logger()

UNKNOWN_ROOT_CAUSE = "Unknown - requires investigation"
ERROR_BOUNDARY_ROOT_CAUSE = "React Error Boundary triggered - check browser console"

DOM_CATEGORIES = frozenset({ErrorCategory.ELEMENT_NOT_FOUND, ErrorCategory.ASSERTION})


class RootCauseSynthesizer:
    """Combines every analyzer into a confidence-scored root cause.

    Example:
        synthesizer = RootCauseSynthesizer(tracer, compat)
        analysis = synthesizer.analyze(error, matcher.match(error))
        print(synthesizer.format_compact(analysis))
    """

    IMPORT_CHAIN_BOOST = 0.2
    CRITICAL_COMPAT_BOOST = 0.15
    DOM_BOOST = 0.1

    AUTO_FIX_COMMAND = "failure-triage fix --template={template}"

    def __init__(
        self,
        tracer: ImportTracer,
        compat: CompatAnalyzer,
        dom_analyzer: DOMSnapshotAnalyzer | None = None,
    ) -> None:
        """Initialize the synthesizer.

        Args:
            tracer: Import tracer used for stack-driven traces
            compat: Compatibility analyzer for implicated files
            dom_analyzer: Optional analyzer of captured DOM snapshots
        """
        self._tracer = tracer
        self._compat = compat
        self._dom = dom_analyzer

    def analyze(
        self,
        error: TestError,
        pattern_match: PatternMatchResult,
        test_name: str | None = None,
    ) -> RootCauseAnalysis:
        """Produce a root-cause verdict for one error.

        Args:
            error: The failing test's error
            pattern_match: Result of matching ``error`` against the library
            test_name: Test title, passed to the DOM analyzer

        Returns:
            RootCauseAnalysis with evidence and ranked fix suggestions
        """
        start = time.monotonic()
        best = pattern_match.best_match
        confidence = pattern_match.confidence
        root_cause = best.root_cause if best else UNKNOWN_ROOT_CAUSE
        evidence: list[str] = []

        chain: ImportChain | None = None
        if best is not None and best.requires_import_trace and error.stack:
            chain = self._tracer.trace_from_stack(error.stack)
            if chain.found:
                evidence.append(f"Import chain traced from {chain.start_file}")
                node = chain.root
                if node is not None and node.problematic_exports:
                    name = PurePosixPath(node.file).name
                    root_cause = (
                        f"{name} contains browser-incompatible code: {node.problematic_exports[0]}"
                    )
                    confidence = self._boost(confidence, self.IMPORT_CHAIN_BOOST)

        compat_results: list[CompatResult] = []
        for file in self._implicated_files(error, chain):
            result = self._compat.analyze_file(file)
            if result.issues:
                compat_results.append(result)
                evidence.append(
                    f"Found {result.total_issues} browser compatibility issue(s) "
                    f"in {PurePosixPath(file).name}"
                )
            if result.has_critical_issues:
                confidence = self._boost(confidence, self.CRITICAL_COMPAT_BOOST)

        dom: DOMAnalysis | None = None
        if self._dom is not None and (
            pattern_match.category in DOM_CATEGORIES or "error" in error.message.lower()
        ):
            dom = next(
                (d for d in self._dom.analyze(error, test_name) if d.has_error_state),
                None,
            )
            if dom is not None:
                evidence.append(f"DOM snapshot shows: {', '.join(dom.issues) or 'error state'}")
                confidence = self._boost(confidence, self.DOM_BOOST)
                if "system error" in dom.visible_text.lower():
                    root_cause = ERROR_BOUNDARY_ROOT_CAUSE

        fixes = self._suggest(pattern_match, compat_results, chain)
        elapsed_ms = (time.monotonic() - start) * 1000

        log.debug(
            "root_cause_synthesized",
            category=pattern_match.category.value,
            confidence=confidence,
            evidence=len(evidence),
            fixes=len(fixes),
        )
        return RootCauseAnalysis(
            error=error,
            pattern_match=pattern_match,
            confidence=confidence,
            root_cause=root_cause,
            evidence=tuple(evidence),
            import_chain=chain,
            compat_results=tuple(compat_results),
            dom_analysis=dom,
            suggested_fixes=tuple(fixes),
            analysis_time_ms=round(elapsed_ms, 2),
        )

    def analyze_all(
        self, pairs: Iterable[tuple[TestError, PatternMatchResult]]
    ) -> list[RootCauseAnalysis]:
        return [self.analyze(error, match) for error, match in pairs]

    @staticmethod
    def format_compact(analysis: RootCauseAnalysis) -> str:
        """``C:{pct}%`` followed by ``BC``, ``IMP``, ``DOM`` and ``FIX:n`` markers."""
        parts = [f"C:{round(analysis.confidence * 100)}%"]
        if analysis.compat_results:
            parts.append("BC")
        if analysis.import_chain is not None and analysis.import_chain.found:
            parts.append("IMP")
        if analysis.dom_analysis is not None and analysis.dom_analysis.has_error_state:
            parts.append("DOM")
        auto = sum(1 for fix in analysis.suggested_fixes if fix.type == FixKind.AUTO)
        if auto:
            parts.append(f"FIX:{auto}")
        return "|".join(parts)

    @staticmethod
    def summarize(analysis: RootCauseAnalysis) -> dict[str, Any]:
        """Root cause, confidence and the top suggested action."""
        top = analysis.suggested_fixes[0] if analysis.suggested_fixes else None
        return {
            "root_cause": analysis.root_cause,
            "confidence": analysis.confidence,
            "action": top.description if top else "Manual investigation required",
            "command": top.command if top else None,
        }

    @staticmethod
    def _boost(confidence: float, amount: float) -> float:
        return round(min(confidence + amount, 1.0), 2)

    def _implicated_files(self, error: TestError, chain: ImportChain | None) -> list[str]:
        files: dict[str, None] = {}
        if error.file:
            files[error.file] = None
        for frame in error.stack:
            path = self._tracer.repo_path(frame)
            if path is not None:
                files[path] = None
        if chain is not None:
            for file in chain.files:
                files[file] = None
        return list(files)

    def _suggest(
        self,
        pattern_match: PatternMatchResult,
        compat_results: list[CompatResult],
        chain: ImportChain | None,
    ) -> list[SuggestedFix]:
        best = pattern_match.best_match
        fixes: list[SuggestedFix] = []

        if best is not None and best.fix_available:
            template = best.fix_template or "lazy-initialization"
            fixes.append(
                SuggestedFix(
                    type=FixKind.AUTO,
                    description=f"Apply {template} fix template",
                    confidence=pattern_match.confidence,
                    command=self.AUTO_FIX_COMMAND.format(template=template),
                )
            )

        for result in compat_results:
            for issue in result.issues:
                fixes.append(
                    SuggestedFix(
                        type=FixKind.MANUAL,
                        description=issue.fix,
                        confidence=0.95 if issue.severity == Severity.CRITICAL else 0.8,
                        file=issue.file,
                        line=issue.line,
                    )
                )

        root = chain.root if chain is not None else None
        if root is not None and root.problematic_exports:
            fixes.append(
                SuggestedFix(
                    type=FixKind.MANUAL,
                    description=(
                        "Convert eager singleton to lazy initialization in "
                        f"{PurePosixPath(root.file).name}"
                    ),
                    confidence=0.9,
                    file=root.file,
                )
            )

        if best is not None:
            fixes.extend(
                SuggestedFix(type=FixKind.SUGGESTION, description=text, confidence=0.5)
                for text in best.suggestions
            )

        # auto fixes lead, then by confidence; sort is stable for ties
        fixes.sort(key=lambda fix: (fix.type != FixKind.AUTO, -fix.confidence))
        return fixes

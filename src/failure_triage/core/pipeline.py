"""Pipeline that wires the analyzers together and owns the cache directory.

Every stage reads its input from and writes its output to the cache
directory, so stages can run in separate invocations:

    run      -> last-run.json, analysis.json, actions.json, history/<ts>.json
    analyze  -> analysis.json, actions.json
    deep     -> deep-analysis.json
    fix      -> suggested-fixes.json (and source edits with apply)
    report   -> report.json, dashboard.html
    ai       -> every run and analysis file above, plus ai-summary.json
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from failure_triage.config.schema import TriageConfig
from failure_triage.core.category_aggregator import CategoryAggregator
from failure_triage.core.change_detector import ChangeDetector
from failure_triage.core.compat_analyzer import CompatAnalyzer
from failure_triage.core.errors import MissingRunDataError
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
from failure_triage.interfaces.dom import DOMSnapshotAnalyzer
from failure_triage.interfaces.harness import TestHarness
from failure_triage.models.analysis import (
    ActionItem,
    ActionType,
    AggregatedCategories,
    CompatResult,
    FixKind,
    RootCauseAnalysis,
)
from failure_triage.models.fix import ApplyResult, GeneratedFix, TransactionResult
from failure_triage.models.pattern import DeduplicationResult, PatternMatchResult
from failure_triage.models.report import ChangeAnalysis, CompressedReport, DiffReport, StatusCode
from failure_triage.models.test_result import ErrorCategory, TestError, TestRun
from failure_triage.reporting.actions import ActionPlanner, ActionSet
from failure_triage.reporting.compression import compress
from failure_triage.reporting.dashboard import DASHBOARD_FILE, DashboardRenderer
from failure_triage.reporting.diff import DiffReporter
from failure_triage.reporting.json_report import (
    JSONReporter,
    aggregated_to_dict,
    summary_to_dict,
)
from failure_triage.reporting.session import ReportItems, SessionManager
from failure_triage.reporting.summary import ConsumerSummary, SummaryReporter
from failure_triage.utils.fs import write_text
from failure_triage.utils.logging import bind_context

log = structlog.get_logger()

SCHEMA_VERSION = 1
LAST_RUN_FILE = "last-run.json"
ANALYSIS_FILE = "analysis.json"
DEEP_ANALYSIS_FILE = "deep-analysis.json"
SUGGESTED_FIXES_FILE = "suggested-fixes.json"
REPORT_FILE = "report.json"
AI_SUMMARY_FILE = "ai-summary.json"
MAX_NEXT_STEPS = 5
ERROR_PREVIEW_LENGTH = 100

CATEGORY_HINTS = {
    ErrorCategory.BROWSER_COMPAT: "Browser compat: check for server-only imports in browser code",
    ErrorCategory.SERVER_ERROR: "Server errors: check backend logs for 500 responses",
    ErrorCategory.ELEMENT_NOT_FOUND: (
        "Element errors: review DOM snapshots in test-results/*/error-context.md"
    ),
}


@dataclass(frozen=True)
class RunAnalysis:
    """Pattern analysis of one run: deduplicated, matched and aggregated."""

    run: TestRun
    dedup: DeduplicationResult
    matches: tuple[PatternMatchResult, ...]
    test_names: tuple[str, ...]
    aggregated: AggregatedCategories
    action_items: tuple[ActionItem, ...]
    next_steps: tuple[str, ...]

    @property
    def failed_tests(self) -> tuple[str, ...]:
        return tuple(result.name for result in self.run.failures)

    @property
    def compressed(self) -> CompressedReport:
        return compress(self.run.summary, self.aggregated)


@dataclass(frozen=True)
class DeepAnalysis:
    """Root-cause analyses of the matches that cleared the threshold."""

    analyses: tuple[RootCauseAnalysis, ...]
    test_names: tuple[str, ...]
    skipped: int

    @property
    def compat_results(self) -> tuple[CompatResult, ...]:
        return tuple(result for analysis in self.analyses for result in analysis.compat_results)


@dataclass(frozen=True)
class PlannedFix:
    """A generated fix and the confidence of the analysis behind it."""

    fix: GeneratedFix
    confidence: float


@dataclass(frozen=True)
class FixPlan:
    fixes: tuple[PlannedFix, ...]
    manual_steps: tuple[str, ...]
    analyses: int = 0

    @property
    def total_changes(self) -> int:
        return sum(len(planned.fix.changes) for planned in self.fixes)


def next_steps(aggregated: AggregatedCategories, items: Sequence[ActionItem]) -> list[str]:
    """Up to five plain-language next steps."""
    if aggregated.total_errors == 0:
        return ["All tests passing"]

    steps: list[str] = []
    auto = next((item for item in items if item.type == ActionType.AUTO_FIX), None)
    if auto is not None and auto.command:
        steps.append(f"Run: {auto.command}")
    investigate = next((item for item in items if item.type == ActionType.INVESTIGATE), None)
    if investigate is not None:
        steps.append(f"Investigate: {investigate.description}")
    present = {summary.category for summary in aggregated.categories if summary.count}
    steps.extend(hint for category, hint in CATEGORY_HINTS.items() if category in present)
    steps.append("Run: failure-triage run to re-test")
    return steps[:MAX_NEXT_STEPS]


class TriagePipeline:
    """Runs, analyzes, fixes and reports on end-to-end test failures.

    Components share one configuration and live as long as the pipeline, so
    caches (import graph, tracer LRU, compiled rules) are reused between
    stages of one invocation.

    Example:
        pipeline = TriagePipeline(load_config())
        analysis = await pipeline.run()
        deep = pipeline.deep(analysis)
        plan = pipeline.plan_fixes(deep)
        pipeline.apply_fixes(plan, dry_run=True)
    """

    def __init__(
        self,
        config: TriageConfig,
        harness: TestHarness | None = None,
        dom_analyzer: DOMSnapshotAnalyzer | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Full configuration
            harness: Test harness; defaults to launching the configured command
            dom_analyzer: Optional analyzer of captured DOM snapshots
        """
        self._config = config
        paths = config.paths
        analysis = config.analysis

        self._parser = ResultParser()
        self._harness = harness or HarnessRunner(config.harness, paths, self._parser)
        self._fingerprinter = Fingerprinter()
        self._matcher = PatternMatcher(library_path=analysis.patterns_file)
        self._aggregator = CategoryAggregator()
        self._graph = ImportGraph(paths, analysis)
        self._tracer = ImportTracer(paths, analysis, resolver=self._graph.resolver)
        self._compat = CompatAnalyzer(paths, analysis)
        self._synthesizer = RootCauseSynthesizer(self._tracer, self._compat, dom_analyzer)
        self._generator = FixGenerator(
            paths, templates_file=config.fixes.templates_file, analysis=analysis
        )
        self._applier = FixApplier(paths, keep_backups=config.fixes.keep_backups)
        self._changes = ChangeDetector(paths, self._graph, analysis)
        self._sessions = SessionManager(
            paths.cache_path,
            ttl_hours=config.session.ttl_hours,
            env_var=config.session.env_var,
        )
        self._diff = DiffReporter(paths.cache_path)
        self._reporter = JSONReporter(paths.history_path)
        self._actions = ActionPlanner(paths.cache_path)

    @property
    def config(self) -> TriageConfig:
        return self._config

    @property
    def cache_dir(self) -> Path:
        return self._config.paths.cache_path

    @property
    def graph(self) -> ImportGraph:
        return self._graph

    @property
    def tracer(self) -> ImportTracer:
        return self._tracer

    @property
    def compat(self) -> CompatAnalyzer:
        return self._compat

    @property
    def generator(self) -> FixGenerator:
        return self._generator

    @property
    def applier(self) -> FixApplier:
        return self._applier

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def diff_reporter(self) -> DiffReporter:
        return self._diff

    @property
    def actions(self) -> ActionPlanner:
        return self._actions

    # Run

    async def run(self, spec: str | None = None, grep: str | None = None) -> RunAnalysis:
        """Run the harness, persist the run and analyze it.

        Raises:
            HarnessError: If the harness produced no usable report
        """
        test_run = await self._harness.run(spec=spec, grep=grep)
        bind_context(run_id=test_run.timestamp)
        self.save_run(test_run)
        analysis = self.analyze(test_run)
        self.record_history(analysis)
        return analysis

    def save_run(self, test_run: TestRun) -> Path:
        path = self.cache_dir / LAST_RUN_FILE
        self._write_json(path, test_run.to_dict())
        log.info(
            "run_saved",
            path=str(path),
            total=test_run.summary.total,
            failed=test_run.summary.failed,
        )
        return path

    def load_last_run(self) -> TestRun:
        """The persisted run.

        Raises:
            MissingRunDataError: If no run was saved or the file is unusable
        """
        path = self.cache_dir / LAST_RUN_FILE
        if not path.is_file():
            raise MissingRunDataError(
                "No test results found", path=str(path), hint="failure-triage run"
            )
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return TestRun.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise MissingRunDataError(
                f"Invalid run data: {e}", path=str(path), hint="failure-triage run"
            ) from e

    def record_history(self, analysis: RunAnalysis) -> Path:
        """Append the run to ``history/`` for trends and health scoring."""
        stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
        path = self._config.paths.history_path / f"{stamp}.json"
        summary = analysis.run.summary
        self._write_json(
            path,
            {
                "timestamp": analysis.run.timestamp,
                "summary": summary_to_dict(summary),
                "failed_tests": list(analysis.failed_tests),
                "fixable_count": analysis.aggregated.fixable_errors,
            },
        )
        return path

    # Analysis

    def analyze(self, test_run: TestRun | None = None) -> RunAnalysis:
        """Deduplicate, match and aggregate the failures of a run.

        Args:
            test_run: Run to analyze; the persisted run when None

        Raises:
            MissingRunDataError: If ``test_run`` is None and no run was saved
        """
        test_run = test_run if test_run is not None else self.load_last_run()
        errors, names = self._errors_of(test_run)

        dedup = self._fingerprinter.deduplicate(errors, names)
        representatives = [group.representative for group in dedup.groups]
        group_names = tuple(group.test_names[0] for group in dedup.groups)
        matches = tuple(self._matcher.match_all(representatives))
        aggregated = self._aggregator.aggregate(matches, group_names)
        items = tuple(self._aggregator.action_items(aggregated))

        result = RunAnalysis(
            run=test_run,
            dedup=dedup,
            matches=matches,
            test_names=group_names,
            aggregated=aggregated,
            action_items=items,
            next_steps=tuple(next_steps(aggregated, items)),
        )
        self._write_json(
            self.cache_dir / ANALYSIS_FILE,
            {
                "timestamp": test_run.timestamp,
                "summary": summary_to_dict(test_run.summary),
                "deduplication": {
                    "total": dedup.total_count,
                    "unique": dedup.unique_count,
                    "duplicates": dedup.duplicate_count,
                    "ratio": dedup.deduplication_ratio,
                },
                "analysis": aggregated_to_dict(aggregated),
                "action_items": [asdict(item) for item in items],
                "next_steps": list(result.next_steps),
                "compressed": result.compressed.raw,
            },
        )
        self._actions.save(self.action_set(result), test_run.summary)
        log.info(
            "analysis_completed",
            failed=test_run.summary.failed,
            unique=dedup.unique_count,
            matched=sum(1 for m in matches if m.matched),
            fixable=aggregated.fixable_errors,
        )
        return result

    def deep(self, analysis: RunAnalysis | None = None) -> DeepAnalysis:
        """Root-cause analysis for every match above the confidence threshold."""
        analysis = analysis if analysis is not None else self.analyze()
        threshold = self._config.analysis.confidence_threshold

        analyses: list[RootCauseAnalysis] = []
        names: list[str] = []
        skipped = 0
        for match, name in zip(analysis.matches, analysis.test_names, strict=True):
            if match.confidence <= threshold:
                skipped += 1
                log.debug("deep_analysis_skipped", test=name, confidence=match.confidence)
                continue
            analyses.append(self._synthesizer.analyze(match.error, match, test_name=name))
            names.append(name)

        deep = DeepAnalysis(analyses=tuple(analyses), test_names=tuple(names), skipped=skipped)
        self._write_json(
            self.cache_dir / DEEP_ANALYSIS_FILE,
            {
                "timestamp": analysis.run.timestamp,
                "summary": summary_to_dict(analysis.run.summary),
                "analyzed": len(analyses),
                "skipped": skipped,
                "analyses": [asdict(a) for a in analyses],
                "root_causes": self.root_cause_summaries(deep),
                "browser_compat_summary": self._compat.format_summary(deep.compat_results),
                "import_trace_summary": [
                    self._tracer.format_chain(a.import_chain)
                    for a in analyses
                    if a.import_chain is not None
                ],
            },
        )
        log.info("deep_analysis_completed", analyzed=len(analyses), skipped=skipped)
        return deep

    def root_cause_summaries(self, deep: DeepAnalysis) -> list[dict[str, Any]]:
        return [
            {
                "test": name,
                "error": a.error.message[:ERROR_PREVIEW_LENGTH],
                "fixable": a.has_auto_fix,
                **self._synthesizer.summarize(a),
            }
            for a, name in zip(deep.analyses, deep.test_names, strict=True)
        ]

    # Fixes

    def plan_fixes(
        self,
        deep: DeepAnalysis | None = None,
        category: str | None = None,
        file: str | None = None,
        template: str | None = None,
    ) -> FixPlan:
        """Generate fixes and persist them to ``suggested-fixes.json``.

        With ``template`` every source file the template matches is fixed,
        independent of the last run. Otherwise fixes come from the root-cause
        analyses, optionally narrowed to one category or one file.

        Raises:
            TemplateError: If ``template`` is not registered
            MissingRunDataError: If analyses are needed and no run was saved
        """
        planned: dict[tuple[str, str], PlannedFix] = {}
        manual: dict[str, None] = {}
        count = 0

        if template is not None:
            for path, _ in self._generator.scan_for_fixable_files(template_id=template):
                if file is not None and file not in path:
                    continue
                fix = self._generator.generate_fix_by_template(path, template)
                if fix is not None:
                    planned[(fix.file, fix.template_id)] = PlannedFix(fix=fix, confidence=1.0)
                    manual.update(dict.fromkeys(fix.manual_steps))
        else:
            deep = deep if deep is not None else self.deep()
            wanted = ErrorCategory.parse(category) if category else None
            for analysis in deep.analyses:
                if wanted is not None and analysis.category != wanted:
                    continue
                count += 1
                for fix in self._generator.generate_fixes(analysis):
                    if file is not None and file not in fix.file:
                        continue
                    key = (fix.file, fix.template_id)
                    known = planned.get(key)
                    if known is None or known.confidence < analysis.confidence:
                        planned[key] = PlannedFix(fix=fix, confidence=analysis.confidence)
                    manual.update(dict.fromkeys(fix.manual_steps))
                manual.update(
                    dict.fromkeys(
                        s.description for s in analysis.suggested_fixes if s.type == FixKind.MANUAL
                    )
                )

        plan = FixPlan(
            fixes=tuple(sorted(planned.values(), key=lambda p: (-p.confidence, p.fix.file))),
            manual_steps=tuple(manual),
            analyses=count,
        )
        self._write_json(
            self.cache_dir / SUGGESTED_FIXES_FILE,
            {
                "timestamp": datetime.now(UTC).isoformat(),
                "stats": {
                    "analyses": plan.analyses,
                    "fixes": len(plan.fixes),
                    "changes": plan.total_changes,
                },
                "fixes": [
                    {"confidence": p.confidence, "fix": p.fix.to_dict()} for p in plan.fixes
                ],
                "manual_steps": list(plan.manual_steps),
                "next_actions": (
                    ["failure-triage fix --apply", "failure-triage run"]
                    if plan.fixes
                    else ["failure-triage deep"]
                ),
            },
        )
        log.info("fixes_planned", fixes=len(plan.fixes), changes=plan.total_changes)
        return plan

    def select_fixes(self, plan: FixPlan, force: bool = False) -> list[GeneratedFix]:
        """Fixes confident enough to apply automatically (all with ``force``)."""
        minimum = self._config.fixes.auto_apply_confidence
        return [p.fix for p in plan.fixes if force or p.confidence >= minimum]

    def apply_fixes(
        self, plan: FixPlan, dry_run: bool = False, force: bool = False
    ) -> list[ApplyResult]:
        """Apply the selected fixes independently of each other."""
        results = self._applier.apply_all(
            self.select_fixes(plan, force),
            dry_run=dry_run,
            backup=self._config.fixes.backup_by_default,
        )
        if not dry_run:
            self._applier.clean_old_backups()
        log.info("fixes_applied", summary=self._applier.format_results(results))
        return results

    def apply_fixes_transaction(self, plan: FixPlan, force: bool = False) -> TransactionResult:
        """Apply the selected fixes all-or-nothing."""
        result = self._applier.apply_transaction(self.select_fixes(plan, force))
        self._applier.clean_old_backups()
        return result

    def restore(self, file: str | None = None) -> list[str]:
        return self._applier.restore_latest(file)

    # Reports

    def status(self) -> CompressedReport:
        analysis = self.analyze()
        return analysis.compressed

    def quick_status(self) -> StatusCode:
        """Status of the persisted run; BLOCKED when there is none."""
        try:
            return self.analyze().compressed.status
        except MissingRunDataError as e:
            log.info("quick_status_blocked", path=e.path)
            return StatusCode.BLOCKED

    def action_set(self, analysis: RunAnalysis) -> ActionSet:
        return self._actions.generate(
            analysis.run.summary,
            analysis.aggregated,
            [result.file for result in analysis.run.failures],
            analysis.action_items,
            analysis.next_steps,
        )

    def cached_actions(self) -> ActionSet:
        """Fresh persisted directives, regenerated from the last run when stale."""
        actions = self._actions.load()
        if actions is None:
            actions = self.action_set(self.analyze())
        return actions

    async def ai(
        self,
        skip_run: bool = False,
        deep: bool = True,
        spec: str | None = None,
        grep: str | None = None,
    ) -> ConsumerSummary:
        """Run, analyze and summarize in one step, caching ``ai-summary.json``.

        Args:
            skip_run: Summarize the persisted run instead of running the harness
            deep: Include root-cause analysis in the summary
            spec: Spec file or directory to run
            grep: Only run tests whose title matches

        Raises:
            HarnessError: If the harness produced no usable report
            MissingRunDataError: If ``skip_run`` is set and no run was saved
        """
        analysis = self.analyze() if skip_run else await self.run(spec=spec, grep=grep)
        deep_result = self.deep(analysis) if deep else None
        summary = self.summary(analysis, deep_result)
        self._write_json(
            self.cache_dir / AI_SUMMARY_FILE,
            {"timestamp": analysis.run.timestamp, **asdict(summary)},
        )
        log.info(
            "ai_summary_written",
            status=summary.status,
            failed=summary.metrics["failed"],
            fixable=summary.metrics["fixable"],
            deep=deep,
        )
        return summary

    def diff(self, analysis: RunAnalysis | None = None) -> DiffReport:
        analysis = analysis if analysis is not None else self.analyze()
        return self._diff.generate(
            analysis.run.summary, analysis.aggregated, analysis.failed_tests
        )

    def summary(
        self, analysis: RunAnalysis | None = None, deep: DeepAnalysis | None = None
    ) -> ConsumerSummary:
        analysis = analysis if analysis is not None else self.analyze()
        return SummaryReporter().generate(
            analysis.run.summary,
            analysis.aggregated,
            analysis.dedup,
            deep.analyses if deep is not None else (),
        )

    def build_report(
        self, analysis: RunAnalysis | None = None, deep: DeepAnalysis | None = None
    ) -> dict[str, Any]:
        """Full JSON report; runs without saved data get an empty current section."""
        if analysis is None:
            try:
                analysis = self.analyze()
            except MissingRunDataError:
                return self._reporter.generate(None, None)
        root_causes = self.root_cause_summaries(deep) if deep is not None else []
        return self._reporter.generate(analysis.run, analysis.aggregated, root_causes)

    def save_report(self, report: dict[str, Any], html: bool = False) -> Path:
        if html:
            return DashboardRenderer().save(report, self.cache_dir / DASHBOARD_FILE)
        return self._reporter.save(report, self.cache_dir / REPORT_FILE)

    def report_items(
        self, analysis: RunAnalysis, deep: DeepAnalysis | None = None
    ) -> ReportItems:
        """The identifiable pieces of a report, for session filtering."""
        patterns = sorted(
            {m.best_match.pattern_id for m in analysis.matches if m.best_match is not None}
        )
        files = sorted(
            {f for summary in analysis.aggregated.categories for f in summary.affected_files}
        )
        root_causes = {summary.primary_root_cause for summary in analysis.aggregated.categories}
        fixes = {
            m.best_match.fix_template
            for m in analysis.matches
            if m.best_match is not None and m.best_match.fix_template
        }
        if deep is not None:
            root_causes.update(a.root_cause for a in deep.analyses)
        errors = sorted(group.fingerprint.short_hash for group in analysis.dedup.groups)

        canonical = json.dumps(
            {
                "compressed": analysis.compressed.raw,
                "patterns": patterns,
                "root_causes": sorted(root_causes),
                "errors": errors,
            },
            sort_keys=True,
        )
        return ReportItems(
            report_hash=hashlib.md5(canonical.encode("utf-8")).hexdigest()[:8],
            patterns=tuple(patterns),
            files=tuple(files),
            root_causes=tuple(sorted(root_causes)),
            fixes=tuple(sorted(fixes)),
            errors=tuple(errors),
        )

    # Source tree

    def changes(self, base_ref: str = "HEAD~1") -> ChangeAnalysis:
        self._graph.ensure_built()
        return self._changes.analyze(base_ref)

    def scan_compat(self, directory: str | None = None) -> list[CompatResult]:
        return self._compat.analyze_directory(directory or self._config.paths.src_dir)

    async def watch(self, stop: asyncio.Event) -> int:
        """Re-run affected specs whenever watched files change.

        Returns:
            Number of runs triggered
        """

        async def on_change(files: list[str]) -> None:
            await asyncio.to_thread(self._graph.build, force_rebuild=True)
            affected = self._graph.get_affected_tests(files)
            spec = affected[0] if len(affected) == 1 else None
            log.info("watch_rerun", changed=len(files), affected=len(affected), spec=spec)
            analysis = await self.run(spec=spec)
            log.info("watch_status", status=analysis.compressed.raw)

        watcher = Watcher(self._config.watch, self._config.paths.root, on_change)
        await watcher.run(stop)
        return watcher.runs

    # Helpers

    @staticmethod
    def _errors_of(test_run: TestRun) -> tuple[list[TestError], list[str]]:
        errors: list[TestError] = []
        names: list[str] = []
        for result in test_run.failures:
            if result.error is not None:
                errors.append(result.error)
                names.append(result.name)
        return errors, names

    @staticmethod
    def _write_json(path: Path, document: dict[str, Any]) -> None:
        payload = {"schema_version": SCHEMA_VERSION, **document}
        write_text(path, json.dumps(payload, indent=2, ensure_ascii=False, default=str))

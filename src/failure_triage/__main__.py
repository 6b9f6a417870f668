"""Entry point for the failure-triage command line.

Subcommands map one-to-one onto pipeline stages. Results go to stdout,
logs go to stderr. Exit codes: 0 success, 1 failure (including missing run
data, which prints the command to run first), 130 on interrupt. ``ai`` and
``status --exit-code`` instead exit 0 pass, 1 fail, 2 fixable, 3 blocked.
"""

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from failure_triage._version import __version__
from failure_triage.core.errors import MissingRunDataError, TriageError

if TYPE_CHECKING:
    from failure_triage.core.pipeline import TriagePipeline

log = structlog.get_logger()


def setup_logging(debug: bool = False, log_format: str = "console") -> None:
    """Configure structured logging before the configuration is loaded.

    Args:
        debug: Enable debug logging if True
        log_format: Output format ("json" or "console")
    """
    from failure_triage.utils.logging import LogFormat, LogLevel, configure_logging

    level = LogLevel.DEBUG if debug else LogLevel.WARNING
    configure_logging(level=level, log_format=LogFormat(log_format.lower()))


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with every subcommand."""
    # accepted both before and after the subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--format",
        choices=["text", "json"],
        default=argparse.SUPPRESS,
        help="Output format for command results (default: text)",
    )

    parser = argparse.ArgumentParser(
        prog="failure-triage",
        description="Root-cause analysis and auto-remediation for end-to-end test failures",
        parents=[common],
    )
    parser.set_defaults(format="text")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: triage.yaml in the project root)",
    )
    parser.add_argument(
        "-r",
        "--root",
        type=Path,
        default=None,
        help="Project root to analyze (default: current directory)",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    run = sub.add_parser("run", parents=[common], help="Run the harness and analyze the result")
    run.add_argument("--spec", help="Spec file or directory to run")
    run.add_argument("--grep", help="Only run tests whose title matches")

    sub.add_parser("analyze", parents=[common], help="Pattern analysis of the last run")
    sub.add_parser("deep", parents=[common], help="Root-cause analysis of the last run")

    fix = sub.add_parser("fix", parents=[common], help="Generate and apply fixes")
    fix.add_argument("--category", help="Only fix errors of this category")
    fix.add_argument("--file", help="Only fix this file")
    fix.add_argument("--template", help="Apply one template to every matching file")
    fix.add_argument("--apply", action="store_true", help="Write fixes to the source tree")
    fix.add_argument("--dry-run", action="store_true", help="Show diffs without writing")
    fix.add_argument(
        "--transaction", action="store_true", help="Apply all fixes or none of them"
    )
    fix.add_argument(
        "--force", action="store_true", help="Apply fixes below the auto-apply confidence"
    )
    fix.add_argument("--list-templates", action="store_true", help="List fix templates")

    restore = sub.add_parser("restore", parents=[common], help="Restore the latest backup")
    restore.add_argument("--file", help="Restore only this file")
    restore.add_argument("--list", action="store_true", help="List backups instead")

    status = sub.add_parser("status", parents=[common], help="Compressed status line")
    status.add_argument("--minimal", action="store_true", help="Status code only")
    status.add_argument(
        "--session", action="store_true", help="Only report what this session has not seen"
    )
    status.add_argument(
        "--exit-code",
        action="store_true",
        help="Exit 0 pass, 1 fail, 2 fixable, 3 blocked (no run data)",
    )

    diff = sub.add_parser("diff", parents=[common], help="Changes since the previous run")
    diff.add_argument(
        "--view", choices=["compact", "json", "summary"], default="compact", help="Diff format"
    )

    report = sub.add_parser("report", parents=[common], help="Write report.json / dashboard")
    report.add_argument("--output", choices=["json", "html", "both"], default="both")
    report.add_argument("--deep", action="store_true", help="Include root-cause summaries")

    summary = sub.add_parser("summary", parents=[common], help="Consumer summary")
    summary.add_argument("--one-line", action="store_true", help="Single line")
    summary.add_argument("--deep", action="store_true", help="Include root-cause analysis")

    graph = sub.add_parser("graph", parents=[common], help="Import graph queries")
    graph.add_argument("action", choices=["build", "affected", "dependents", "dependencies"])
    graph.add_argument("files", nargs="*", help="Files for affected/dependents/dependencies")
    graph.add_argument("--force", action="store_true", help="Ignore the cached graph")

    compat = sub.add_parser("compat", parents=[common], help="Scan for browser-unsafe code")
    compat.add_argument("directory", nargs="?", help="Directory to scan (default: src dir)")

    changes = sub.add_parser("changes", parents=[common], help="Specs affected by changes")
    changes.add_argument("--base", default="HEAD~1", help="Git ref to diff against")

    session = sub.add_parser("session", parents=[common], help="Manage consumer sessions")
    session.add_argument("action", choices=["new", "show", "clear", "cleanup", "list"])
    session.add_argument("--id", dest="session_id", help="Session id (default: current)")
    session.add_argument("--max-age", type=int, help="Hours for cleanup (default: TTL)")

    ai = sub.add_parser("ai", parents=[common], help="Run, analyze and summarize in one step")
    ai.add_argument("--skip-run", action="store_true", help="Summarize the last run")
    ai.add_argument("--shallow", action="store_true", help="Skip root-cause analysis")
    ai.add_argument("--one-line", action="store_true", help="Single line")
    ai.add_argument("--spec", help="Spec file or directory to run")
    ai.add_argument("--grep", help="Only run tests whose title matches")

    sub.add_parser("actions", parents=[common], help="Precomputed next actions")

    sub.add_parser("watch", parents=[common], help="Re-run affected specs on change")
    sub.add_parser("codes", parents=[common], help="Explain the compressed status codes")

    return parser


def emit(data: Any, as_json: bool) -> None:
    """Print a command result."""
    if as_json:
        print(json.dumps(data, indent=2, ensure_ascii=False, default=str))
    else:
        print(data)


async def cmd_run(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    analysis = await pipeline.run(spec=args.spec, grep=args.grep)
    summary = pipeline.summary(analysis)
    if args.format == "json":
        emit(asdict(summary), True)
    else:
        from failure_triage.reporting.summary import SummaryReporter

        emit(SummaryReporter().format_for_cli(summary), False)
    return 1 if analysis.run.summary.failed else 0


def cmd_analyze(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.core.category_aggregator import CategoryAggregator
    from failure_triage.reporting.json_report import aggregated_to_dict

    analysis = pipeline.analyze()
    if args.format == "json":
        emit(
            {
                "compressed": analysis.compressed.raw,
                "unique": analysis.dedup.unique_count,
                "analysis": aggregated_to_dict(analysis.aggregated),
                "next_steps": list(analysis.next_steps),
            },
            True,
        )
        return 0

    lines = [
        analysis.compressed.raw,
        CategoryAggregator.format_compact(analysis.aggregated),
        "",
    ]
    for item in analysis.action_items:
        lines.append(f"[{item.type}] {item.description}")
        if item.command:
            lines.append(f"   $ {item.command}")
    lines.extend(f"- {step}" for step in analysis.next_steps)
    emit("\n".join(lines), False)
    return 0


def cmd_deep(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.core.root_cause import RootCauseSynthesizer

    deep = pipeline.deep()
    if args.format == "json":
        emit(pipeline.root_cause_summaries(deep), True)
        return 0

    lines = [f"ANALYZED:{len(deep.analyses)}|SKIPPED:{deep.skipped}"]
    for analysis, name in zip(deep.analyses, deep.test_names, strict=True):
        lines.append(f"{name}: {RootCauseSynthesizer.format_compact(analysis)}")
        lines.append(f"   {analysis.root_cause}")
        if analysis.import_chain is not None:
            lines.append(f"   {pipeline.tracer.format_chain(analysis.import_chain)}")
    emit("\n".join(lines), False)
    return 0


def cmd_fix(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.core.fix_applier import FixApplier

    if args.list_templates:
        templates = pipeline.generator.list_templates()
        if args.format == "json":
            emit([t.model_dump() for t in templates], True)
        else:
            emit("\n".join(f"{t.id}: {t.description or t.name}" for t in templates), False)
        return 0

    plan = pipeline.plan_fixes(category=args.category, file=args.file, template=args.template)

    if args.apply and args.transaction and not args.dry_run:
        result = pipeline.apply_fixes_transaction(plan, force=args.force)
        if args.format == "json":
            emit(asdict(result), True)
        else:
            status = "COMMITTED" if result.success else "ROLLED_BACK"
            emit(f"{status}|{FixApplier.format_results(result.results)}", False)
        return 0 if result.success else 1

    if args.apply or args.dry_run:
        results = pipeline.apply_fixes(plan, dry_run=args.dry_run, force=args.force)
        if args.format == "json":
            emit([asdict(r) for r in results], True)
        else:
            lines = [FixApplier.format_results(results)]
            for r in results:
                if r.preview:
                    lines.append(r.preview)
                elif not r.success:
                    lines.append(f"FAILED {r.file}: {r.error}")
            emit("\n".join(lines), False)
        return 0 if all(r.success for r in results) else 1

    if args.format == "json":
        emit(
            {
                "fixes": [
                    {"file": p.fix.file, "template": p.fix.template_id, "confidence": p.confidence}
                    for p in plan.fixes
                ],
                "manual_steps": list(plan.manual_steps),
            },
            True,
        )
        return 0

    lines = [f"FIXES:{len(plan.fixes)}|CHANGES:{plan.total_changes}"]
    for planned in plan.fixes:
        lines.append(
            f"  [{round(planned.confidence * 100)}%] {planned.fix.file} ({planned.fix.template_id})"
        )
    lines.extend(f"  manual: {step}" for step in plan.manual_steps)
    if plan.fixes:
        lines.append("$ failure-triage fix --apply")
    emit("\n".join(lines), False)
    return 0


def cmd_restore(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    if args.list:
        backups = pipeline.applier.list_backups()
        if args.format == "json":
            emit([asdict(b) for b in backups], True)
        else:
            emit("\n".join(f"{b.timestamp} ({len(b.files)} files)" for b in backups), False)
        return 0

    restored = pipeline.restore(args.file)
    emit(restored if args.format == "json" else f"RESTORED:{len(restored)}", args.format == "json")
    return 0 if restored else 1


def cmd_status(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.reporting.compression import minimal_status
    from failure_triage.reporting.session import format_session_output
    from failure_triage.utils.logging import bind_context

    if args.exit_code:
        from failure_triage.reporting.compression import exit_code

        status = pipeline.quick_status()
        code = exit_code(status)
        if args.format == "json":
            emit({"status": str(status), "code": code}, True)
        else:
            emit(str(status), False)
        return code

    analysis = pipeline.analyze()
    if args.session:
        items = pipeline.report_items(analysis)
        session_id = pipeline.sessions.current_session_id()
        bind_context(session_id=session_id)
        pipeline.sessions.get_or_create_session(session_id)
        report = pipeline.sessions.filter_for_session(session_id, items)
        output = format_session_output(session_id, report)
        pipeline.sessions.record_communicated(session_id, items, tokens=len(output) // 4)
        print(output)
        return 0

    compressed = analysis.compressed
    if args.format == "json":
        emit(asdict(compressed), True)
    elif args.minimal:
        emit(minimal_status(analysis.run.summary, analysis.aggregated.fixable_errors), False)
    else:
        emit(compressed.raw, False)
    return 0


def cmd_diff(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    report = pipeline.diff()
    view = "json" if args.format == "json" else args.view
    if view == "json":
        print(pipeline.diff_reporter.format_json(report))
    elif view == "summary":
        print(pipeline.diff_reporter.format_summary(report))
    else:
        print(pipeline.diff_reporter.format_compact(report))
    return 0


def cmd_report(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.reporting.json_report import JSONReporter

    analysis = None
    deep = None
    if args.deep:
        analysis = pipeline.analyze()
        deep = pipeline.deep(analysis)
    report = pipeline.build_report(analysis, deep)

    written = []
    if args.output in ("json", "both"):
        written.append(str(pipeline.save_report(report)))
    if args.output in ("html", "both"):
        written.append(str(pipeline.save_report(report, html=True)))

    if args.format == "json":
        emit({"written": written, "health": report["health"]}, True)
    else:
        emit(JSONReporter.format_compact_summary(report), False)
        emit("\n".join(f"wrote {path}" for path in written), False)
    return 0


def cmd_summary(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.reporting.summary import SummaryReporter

    analysis = pipeline.analyze()
    deep = pipeline.deep(analysis) if args.deep else None
    summary = pipeline.summary(analysis, deep)
    reporter = SummaryReporter()
    if args.format == "json":
        print(reporter.format_json(summary))
    elif args.one_line:
        print(reporter.format_one_liner(summary))
    else:
        print(reporter.format_for_cli(summary))
    return 0


def cmd_graph(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    graph = pipeline.graph
    graph.build(force_rebuild=args.force)
    if args.action == "build":
        emit(graph.format_compact(), False)
        return 0
    if not args.files:
        print(f"error: graph {args.action} needs at least one file", file=sys.stderr)
        return 1

    if args.action == "affected":
        result: Any = graph.get_affected_tests(args.files)
    elif args.action == "dependents":
        result = {file: graph.get_dependents(file) for file in args.files}
    else:
        result = {file: graph.get_dependencies(file) for file in args.files}

    if args.format == "json":
        emit(result, True)
    elif isinstance(result, list):
        emit("\n".join(result), False)
    else:
        emit("\n".join(f"{k}:\n  " + "\n  ".join(v) for k, v in result.items()), False)
    return 0


def cmd_compat(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.core.compat_analyzer import CompatAnalyzer

    results = pipeline.scan_compat(args.directory)
    if args.format == "json":
        emit([asdict(r) for r in results], True)
    else:
        lines = [CompatAnalyzer.format_summary(results)]
        for result in results:
            for issue in result.issues:
                lines.append(
                    f"{issue.file}:{issue.line}:{issue.column} [{issue.severity}] "
                    f"{issue.rule}: {issue.reason}"
                )
        emit("\n".join(lines), False)
    return 1 if any(r.has_critical_issues for r in results) else 0


def cmd_changes(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.core.change_detector import ChangeDetector

    changes = pipeline.changes(args.base)
    if args.format == "json":
        emit(asdict(changes), True)
    else:
        lines = [ChangeDetector.format_compact(changes), *changes.affected_tests]
        emit("\n".join(lines), False)
    return 0


def cmd_session(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    sessions = pipeline.sessions
    if args.action == "new":
        session_id = sessions.create_session()
        sessions.set_current_session(session_id)
        emit(session_id, False)
    elif args.action == "list":
        emit("\n".join(sessions.list_sessions()), False)
    elif args.action == "cleanup":
        emit(f"REMOVED:{sessions.cleanup_old_sessions(args.max_age)}", False)
    else:
        session_id = args.session_id or sessions.current_session_id()
        if args.action == "clear":
            cleared = sessions.clear_session(session_id)
            emit(f"CLEARED:{session_id}" if cleared else f"NOT_FOUND:{session_id}", False)
            return 0 if cleared else 1
        summary = sessions.get_session_summary(session_id)
        if summary is None:
            print(f"error: no active session {session_id}", file=sys.stderr)
            return 1
        emit(summary, False)
    return 0


async def cmd_ai(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.models.report import StatusCode
    from failure_triage.reporting.compression import exit_code
    from failure_triage.reporting.summary import SummaryReporter

    summary = await pipeline.ai(
        skip_run=args.skip_run, deep=not args.shallow, spec=args.spec, grep=args.grep
    )
    reporter = SummaryReporter()
    if args.format == "json":
        print(reporter.format_json(summary))
    elif args.one_line:
        print(reporter.format_one_liner(summary))
    else:
        print(reporter.format_for_cli(summary))
    # summary status words are the StatusCode member names
    return exit_code(StatusCode[summary.status])


def cmd_actions(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.reporting.actions import ActionPlanner

    actions = pipeline.cached_actions()
    if args.format == "json":
        print(ActionPlanner.format_json(actions))
        return 0

    lines = [ActionPlanner.format_compact(actions)]
    lines.extend(f"$ {command}" for command in actions.commands)
    for action in actions.alternatives:
        lines.append(f"  alt [{action.code}] {action.description}: {action.command}")
    emit("\n".join(lines), False)
    return 0


async def cmd_watch(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # not available on every platform
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    runs = await pipeline.watch(stop)
    emit(f"WATCH_RUNS:{runs}", False)
    return 0


def cmd_codes(pipeline: "TriagePipeline", args: argparse.Namespace) -> int:
    from failure_triage.reporting.compression import format_codes_reference

    emit(format_codes_reference(), False)
    return 0


COMMANDS = {
    "analyze": cmd_analyze,
    "deep": cmd_deep,
    "fix": cmd_fix,
    "restore": cmd_restore,
    "status": cmd_status,
    "diff": cmd_diff,
    "report": cmd_report,
    "summary": cmd_summary,
    "graph": cmd_graph,
    "compat": cmd_compat,
    "changes": cmd_changes,
    "session": cmd_session,
    "codes": cmd_codes,
    "actions": cmd_actions,
}

ASYNC_COMMANDS = {
    "run": cmd_run,
    "ai": cmd_ai,
    "watch": cmd_watch,
}


def run_command(args: argparse.Namespace) -> int:
    """Load configuration, build the pipeline and dispatch one command.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    from failure_triage.config.loader import load_config
    from failure_triage.core.pipeline import TriagePipeline
    from failure_triage.utils.logging import bind_context, clear_context, configure_logging

    try:
        config = load_config(args.config, project_root=args.root)
    except FileNotFoundError as e:
        log.error("configuration_file_not_found", path=str(args.config), error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        log.error("configuration_invalid", error=str(e))
        print(f"error: invalid configuration: {e}", file=sys.stderr)
        return 1

    log_file = config.logging.file.path
    if not log_file.is_absolute():
        log_file = config.paths.root / log_file
    configure_logging(
        level="DEBUG" if args.debug else config.logging.level,
        log_format=config.logging.format,
        file_path=log_file if config.logging.file.enabled else None,
        file_enabled=config.logging.file.enabled,
        max_value_length=config.logging.max_value_length,
    )
    bind_context(command=args.command)

    pipeline = TriagePipeline(config)
    try:
        if args.command in ASYNC_COMMANDS:
            return asyncio.run(ASYNC_COMMANDS[args.command](pipeline, args))
        return COMMANDS[args.command](pipeline, args)
    except MissingRunDataError as e:
        log.warning("run_data_missing", path=e.path, hint=e.hint)
        print(f"error: {e}", file=sys.stderr)
        return 1
    except TriageError as e:
        log.error("command_failed", command=args.command, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        clear_context()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug)

    try:
        return run_command(args)
    except KeyboardInterrupt:
        log.info("interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())

"""Precomputed action directives: the next commands, ready to run.

Every analysis leaves an ``actions.json`` in the cache directory holding a
primary action, alternatives, a step sequence when fixes are available, and
the analysis' own action items and next steps. A consumer can read the next
command from it without running anything. Directives older than the
configured age are treated as missing.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from failure_triage.models.analysis import ActionItem, ActionType, AggregatedCategories
from failure_triage.models.report import ActionCode, StatusCode
from failure_triage.models.test_result import RunSummary
from failure_triage.reporting.compression import ACTION_COMMANDS, action_code, status_code
from failure_triage.utils.fs import write_text

log = structlog.get_logger()

ACTIONS_FILE = "actions.json"
ACTIONS_SCHEMA_VERSION = 1
DEFAULT_MAX_AGE = 300
MAX_TARGET_FILES = 10
MAX_FAILED_TARGETS = 5
COMPACT_FILE_LIMIT = 3

# priority, name, description
ACTION_DETAILS: dict[ActionCode, tuple[str, str, str]] = {
    ActionCode.AUTO_FIX: ("critical", "Auto-Fix", "Apply the generated fixes"),
    ActionCode.RE_ANALYZE: (
        "high",
        "Re-Analyze",
        "Re-run the analysis to update error categories",
    ),
    ActionCode.RE_TEST: ("medium", "Re-Test", "Re-run the tests to verify the current state"),
    ActionCode.DEEP_ANALYZE: ("high", "Deep Analysis", "Run root-cause analysis"),
    ActionCode.MANUAL_FIX: (
        "medium",
        "Manual Fix",
        "Review the error details and fix by hand",
    ),
    ActionCode.CHECK_INFRA: (
        "critical",
        "Check Infrastructure",
        "Verify the harness and the services it needs are running",
    ),
}

ITEM_CODES: dict[ActionType, ActionCode] = {
    ActionType.AUTO_FIX: ActionCode.AUTO_FIX,
    ActionType.MANUAL_FIX: ActionCode.MANUAL_FIX,
    ActionType.INVESTIGATE: ActionCode.DEEP_ANALYZE,
}


@dataclass(frozen=True)
class Action:
    """One ready-to-run directive."""

    code: ActionCode
    priority: str
    name: str
    description: str
    command: str
    target_files: tuple[str, ...] = ()
    tests_affected: int = 0
    fixable_errors: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Action:
        return cls(
            code=ActionCode(data["code"]),
            priority=data.get("priority", "medium"),
            name=data.get("name", data["code"]),
            description=data.get("description", ""),
            command=data["command"],
            target_files=tuple(data.get("target_files", ())),
            tests_affected=int(data.get("tests_affected", 0)),
            fixable_errors=int(data.get("fixable_errors", 0)),
        )


@dataclass(frozen=True)
class ActionSet:
    """Directives for the current state of the suite."""

    status: StatusCode
    primary: Action
    alternatives: tuple[Action, ...] = ()
    sequence: tuple[Action, ...] = ()
    items: tuple[Action, ...] = ()
    next_steps: tuple[str, ...] = ()

    @property
    def commands(self) -> tuple[str, ...]:
        """Commands to run in order: the sequence when there is one, else the primary."""
        if self.sequence:
            return tuple(action.command for action in self.sequence)
        return (self.primary.command,)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": str(self.status),
            "primary": asdict(self.primary),
            "alternatives": [asdict(a) for a in self.alternatives],
            "sequence": [asdict(a) for a in self.sequence],
            "items": [asdict(a) for a in self.items],
            "next_steps": list(self.next_steps),
            "commands": list(self.commands),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionSet:
        return cls(
            status=StatusCode(data["status"]),
            primary=Action.from_dict(data["primary"]),
            alternatives=tuple(Action.from_dict(a) for a in data.get("alternatives", ())),
            sequence=tuple(Action.from_dict(a) for a in data.get("sequence", ())),
            items=tuple(Action.from_dict(a) for a in data.get("items", ())),
            next_steps=tuple(data.get("next_steps", ())),
        )


class ActionPlanner:
    """Builds, persists and reloads :class:`ActionSet` directives.

    Example:
        planner = ActionPlanner(config.paths.cache_path)
        actions = planner.generate(run.summary, aggregated, failed_files, items, steps)
        planner.save(actions, run.summary)
        print(planner.format_compact(actions))
    """

    def __init__(self, cache_dir: Path, max_age: int = DEFAULT_MAX_AGE) -> None:
        self._path = cache_dir / ACTIONS_FILE
        self._max_age = max_age

    @property
    def path(self) -> Path:
        return self._path

    def generate(
        self,
        summary: RunSummary | None,
        aggregated: AggregatedCategories | None = None,
        failed_files: Sequence[str] = (),
        items: Sequence[ActionItem] = (),
        next_steps: Sequence[str] = (),
    ) -> ActionSet:
        """Directives for a run.

        Args:
            summary: Run counts; None means the harness produced nothing
            aggregated: Category roll-up of the run
            failed_files: Spec file of every failed test, in harness order
            items: Action items from the category analysis
            next_steps: Plain-language next steps from the analysis

        Returns:
            ActionSet whose primary action follows the status code
        """
        fixable = aggregated.fixable_errors if aggregated is not None else 0
        status = status_code(summary, fixable)
        has_categories = aggregated is not None and bool(aggregated.categories)
        primary = self._action(
            action_code(status, has_categories), summary, aggregated, failed_files
        )

        alternatives: dict[ActionCode, Action] = {}
        wanted = [ActionCode.MANUAL_FIX]
        if status != StatusCode.FAIL:
            wanted.append(ActionCode.RE_ANALYZE)
        if status != StatusCode.PASS:
            wanted.append(ActionCode.CHECK_INFRA)
        for code in wanted:
            if code != primary.code:
                alternatives[code] = self._action(code, summary, aggregated, failed_files)

        return ActionSet(
            status=status,
            primary=primary,
            alternatives=tuple(alternatives.values()),
            sequence=self._sequence(status, summary, fixable),
            items=tuple(self._from_item(item) for item in items),
            next_steps=tuple(next_steps),
        )

    def save(self, actions: ActionSet, summary: RunSummary | None = None) -> Path:
        document = {
            "schema_version": ACTIONS_SCHEMA_VERSION,
            "generated": datetime.now(UTC).isoformat(),
            "hash": self.state_hash(summary),
            **actions.to_dict(),
        }
        write_text(self._path, json.dumps(document, indent=2, ensure_ascii=False))
        log.debug("actions_saved", path=str(self._path), primary=str(actions.primary.code))
        return self._path

    def load(self) -> ActionSet | None:
        """The persisted directives, or None when absent, unreadable or stale."""
        if not self._path.is_file():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            generated = datetime.fromisoformat(data["generated"])
            actions = ActionSet.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("actions_unreadable", path=str(self._path), error=str(e))
            return None

        age = (datetime.now(UTC) - generated).total_seconds()
        if age > self._max_age:
            log.debug("actions_stale", age_seconds=round(age), max_age=self._max_age)
            return None
        return actions

    @staticmethod
    def state_hash(summary: RunSummary | None) -> str:
        """Short hash of the run counts the directives were built from."""
        canonical = json.dumps(
            {
                "failed": summary.failed if summary is not None else 0,
                "passed": summary.passed if summary is not None else 0,
                "total": summary.total if summary is not None else 0,
            },
            sort_keys=True,
        )
        return hashlib.md5(canonical.encode("utf-8")).hexdigest()[:8]

    @staticmethod
    def format_compact(actions: ActionSet) -> str:
        """``{status}->{action}`` plus ``FIX:n`` and ``SEQ:n`` when present."""
        parts = [f"{actions.status}->{actions.primary.code}"]
        if actions.primary.fixable_errors:
            parts.append(f"FIX:{actions.primary.fixable_errors}")
        if actions.sequence:
            parts.append(f"SEQ:{len(actions.sequence)}")
        return "|".join(parts)

    @staticmethod
    def format_json(actions: ActionSet) -> str:
        """Single-line directive: status, action, command and up to three files."""
        primary = actions.primary
        output: dict[str, Any] = {
            "status": str(actions.status),
            "action": str(primary.code),
            "cmd": primary.command,
        }
        if primary.fixable_errors:
            output["fixable"] = primary.fixable_errors
        files = list(primary.target_files)
        if files:
            extra = len(files) - COMPACT_FILE_LIMIT
            output["files"] = files[:COMPACT_FILE_LIMIT] + ([f"+{extra}"] if extra > 0 else [])
        if actions.sequence:
            output["sequence"] = [str(step.code) for step in actions.sequence]
        return json.dumps(output)

    @staticmethod
    def _action(
        code: ActionCode,
        summary: RunSummary | None,
        aggregated: AggregatedCategories | None,
        failed_files: Sequence[str],
    ) -> Action:
        priority, name, description = ACTION_DETAILS[code]
        fixable = aggregated.fixable_errors if aggregated is not None else 0
        if code == ActionCode.AUTO_FIX and aggregated is not None:
            files = [
                file
                for category in aggregated.categories
                if category.fixable_count > 0
                for file in category.affected_files
            ]
            targets = tuple(dict.fromkeys(files))[:MAX_TARGET_FILES]
        else:
            targets = tuple(dict.fromkeys(failed_files))[:MAX_FAILED_TARGETS]
        return Action(
            code=code,
            priority=priority,
            name=name,
            description=description,
            command=ACTION_COMMANDS[code],
            target_files=targets,
            tests_affected=summary.failed if summary is not None else 0,
            fixable_errors=fixable,
        )

    @staticmethod
    def _sequence(
        status: StatusCode, summary: RunSummary | None, fixable: int
    ) -> tuple[Action, ...]:
        if status != StatusCode.FIXABLE:
            return ()
        failed = summary.failed if summary is not None else 0
        return (
            Action(
                code=ActionCode.AUTO_FIX,
                priority="critical",
                name="Step 1: Apply fixes",
                description="Apply the generated fixes",
                command=ACTION_COMMANDS[ActionCode.AUTO_FIX],
                tests_affected=failed,
                fixable_errors=fixable,
            ),
            Action(
                code=ActionCode.RE_TEST,
                priority="high",
                name="Step 2: Verify fixes",
                description="Re-run the tests to verify the fixes",
                command=ACTION_COMMANDS[ActionCode.RE_TEST],
                tests_affected=failed,
            ),
            Action(
                code=ActionCode.RE_ANALYZE,
                priority="medium",
                name="Step 3: Re-analyze if needed",
                description="Re-analyze when tests still fail",
                command=ACTION_COMMANDS[ActionCode.RE_ANALYZE],
            ),
        )

    @staticmethod
    def _from_item(item: ActionItem) -> Action:
        code = ITEM_CODES[item.type]
        return Action(
            code=code,
            priority="high" if item.type == ActionType.AUTO_FIX else "medium",
            name=f"{item.semantic_code} {item.type}",
            description=item.description,
            command=item.command or ACTION_COMMANDS[code],
            target_files=item.affected_files,
            tests_affected=item.estimated_impact,
        )

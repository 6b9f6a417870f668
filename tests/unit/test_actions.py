"""Tests for the precomputed action directives."""

import json
from pathlib import Path

import pytest

from failure_triage.models.analysis import (
    ActionItem,
    ActionType,
    AggregatedCategories,
    CategorySummary,
)
from failure_triage.models.pattern import Severity
from failure_triage.models.report import ActionCode, StatusCode
from failure_triage.models.test_result import ErrorCategory, RunSummary
from failure_triage.reporting.actions import ACTIONS_FILE, ActionPlanner


@pytest.fixture
def planner(tmp_path: Path) -> ActionPlanner:
    """Create an ActionPlanner writing into a temporary cache."""
    return ActionPlanner(tmp_path / ".e2e-cache")


def _aggregated(fixable: int) -> AggregatedCategories:
    category = CategorySummary(
        category=ErrorCategory.BROWSER_COMPAT,
        semantic_code="BC",
        count=3,
        fixable_count=fixable,
        primary_root_cause="Database code reached the browser bundle",
        affected_files=("src/services/UserService.ts", "src/pages/Dashboard.tsx"),
        severity=Severity.CRITICAL,
        avg_confidence=0.9,
    )
    return AggregatedCategories(
        total_errors=3,
        fixable_errors=fixable,
        categories=(category,),
        by_severity={"critical": 3},
    )


class TestGenerate:
    """Tests for generate."""

    def test_fixable_run(self, planner: ActionPlanner) -> None:
        """Test that fixable failures lead with auto-fix and a three-step sequence."""
        item = ActionItem(
            priority=1.0,
            type=ActionType.INVESTIGATE,
            category=ErrorCategory.TIMEOUT,
            semantic_code="TO",
            description="Review slow selectors",
            estimated_impact=1,
        )
        actions = planner.generate(
            RunSummary(total=4, passed=1, failed=3),
            _aggregated(fixable=2),
            failed_files=["tests/e2e/specs/dashboard.spec.ts"] * 2,
            items=[item],
            next_steps=["Run: failure-triage fix --apply"],
        )

        assert actions.status == StatusCode.FIXABLE
        assert actions.primary.code == ActionCode.AUTO_FIX
        assert actions.primary.target_files == (
            "src/services/UserService.ts",
            "src/pages/Dashboard.tsx",
        )
        assert [a.code for a in actions.alternatives] == [
            ActionCode.MANUAL_FIX,
            ActionCode.RE_ANALYZE,
            ActionCode.CHECK_INFRA,
        ]
        assert [s.code for s in actions.sequence] == ["AF", "RT", "RA"]
        assert actions.items[0].code == ActionCode.DEEP_ANALYZE
        assert actions.items[0].command == "failure-triage deep"
        assert planner.format_compact(actions) == "X->AF|FIX:2|SEQ:3"

    def test_plain_failure_without_categories(self, planner: ActionPlanner) -> None:
        """Test that an unclassified failure asks for re-analysis and targets failed specs."""
        actions = planner.generate(
            RunSummary(total=2, passed=1, failed=1),
            failed_files=["tests/e2e/specs/a.spec.ts"],
        )

        assert actions.status == StatusCode.FAIL
        assert actions.primary.code == ActionCode.RE_ANALYZE
        assert actions.primary.target_files == ("tests/e2e/specs/a.spec.ts",)
        assert [a.code for a in actions.alternatives] == [
            ActionCode.MANUAL_FIX,
            ActionCode.CHECK_INFRA,
        ]
        assert actions.sequence == ()
        assert actions.commands == ("failure-triage analyze",)

    def test_blocked(self, planner: ActionPlanner) -> None:
        """Test that a missing run points at the infrastructure."""
        actions = planner.generate(None)

        assert actions.status == StatusCode.BLOCKED
        assert actions.primary.code == ActionCode.CHECK_INFRA
        assert ActionCode.CHECK_INFRA not in [a.code for a in actions.alternatives]
        assert planner.format_compact(actions) == "B->CI"


class TestPersistence:
    """Tests for save, load and format_json."""

    def test_save_and_load(self, planner: ActionPlanner) -> None:
        """Test that saved directives reload while fresh."""
        summary = RunSummary(total=4, passed=1, failed=3)
        actions = planner.generate(summary, _aggregated(fixable=2))

        path = planner.save(actions, summary)

        document = json.loads(path.read_text())
        assert path.name == ACTIONS_FILE
        assert document["schema_version"] == 1
        assert document["hash"] == ActionPlanner.state_hash(summary)
        assert document["commands"] == list(actions.commands)
        assert planner.load() == actions

    def test_stale_directives_are_ignored(self, tmp_path: Path) -> None:
        """Test that directives older than the maximum age are treated as missing."""
        planner = ActionPlanner(tmp_path, max_age=-1)
        planner.save(planner.generate(None))

        assert planner.load() is None

    def test_unreadable_file(self, planner: ActionPlanner) -> None:
        """Test that a corrupt file is treated as missing."""
        planner.path.parent.mkdir(parents=True)
        planner.path.write_text("{not json")

        assert planner.load() is None

    def test_format_json_truncates_files(self, planner: ActionPlanner) -> None:
        """Test that at most three target files are listed."""
        actions = planner.generate(
            RunSummary(total=5, passed=0, failed=5),
            failed_files=[f"tests/e2e/specs/{n}.spec.ts" for n in "abcde"],
        )

        data = json.loads(planner.format_json(actions))

        assert data["status"] == "F"
        assert data["action"] == "RA"
        assert data["files"] == [
            "tests/e2e/specs/a.spec.ts",
            "tests/e2e/specs/b.spec.ts",
            "tests/e2e/specs/c.spec.ts",
            "+2",
        ]
        assert "sequence" not in data

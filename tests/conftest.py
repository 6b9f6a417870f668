"""Shared test fixtures for failure-triage."""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from failure_triage.config.schema import PathsConfig, TriageConfig
from failure_triage.models.test_result import (
    ErrorCategory,
    RunSummary,
    StackFrame,
    TestError,
    TestResult,
    TestRun,
    TestStatus,
)

# A small Vite/React project with one server-only module leaking into the browser:
# dashboard.spec -> Dashboard.tsx -> UserService.ts -> db/data-source.ts
PROJECT_FILES: dict[str, str] = {
    "src/db/data-source.ts": (
        'import { DataSource } from "typeorm";\n'
        "\n"
        "export const AppDataSource = new DataSource({});\n"
    ),
    "src/entities/User.ts": "export class User {}\n",
    "src/services/UserService.ts": (
        'import { AppDataSource } from "../db/data-source";\n'
        'import { User } from "@/entities/User";\n'
        "\n"
        "export class UserService {\n"
        "  repo = AppDataSource.getRepository(User);\n"
        "}\n"
        "\n"
        "export const userService = new UserService();\n"
    ),
    "src/pages/Dashboard.tsx": (
        'import { userService } from "@/services/UserService";\n'
        "\n"
        "export function Dashboard() {\n"
        "  return userService;\n"
        "}\n"
    ),
    "src/utils/format.ts": "export const format = (value: string) => value.trim();\n",
    "src/api/files.ts": 'import fs from "fs";\n\nexport const read = () => fs.readFileSync("x");\n',
    "tests/e2e/specs/dashboard.spec.ts": (
        'import { test } from "@playwright/test";\n'
        'import { Dashboard } from "../../../src/pages/Dashboard";\n'
    ),
    "tests/e2e/specs/format.spec.ts": (
        'import { test } from "@playwright/test";\n'
        'import { format } from "../../../src/utils/format";\n'
    ),
}

BROWSER_COMPAT_MESSAGE = "AppDataSource.getRepository cannot be used in the browser"

BROWSER_COMPAT_STACK = """Error: AppDataSource.getRepository cannot be used in the browser
    at new UserService (http://localhost:5173/src/services/UserService.ts:5:10)
    at http://localhost:5173/src/pages/Dashboard.tsx:4:3
    at renderWithHooks (http://localhost:5173/node_modules/.vite/deps/react-dom.js:1:100)
"""


def write_project(root: Path, files: dict[str, str] = PROJECT_FILES) -> Path:
    """Write ``files`` below ``root`` and return ``root``."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Create the sample project tree in a temporary directory."""
    return write_project(tmp_path / "project")


@pytest.fixture
def paths_config(project_root: Path) -> PathsConfig:
    """Return paths for the sample project."""
    return PathsConfig(project_root=project_root)


@pytest.fixture
def triage_config(project_root: Path) -> TriageConfig:
    """Return a full configuration rooted at the sample project."""
    return TriageConfig(paths=PathsConfig(project_root=project_root))


@pytest.fixture
def browser_error() -> TestError:
    """Return a browser-compat error with a dev-server stack."""
    return TestError(
        message=BROWSER_COMPAT_MESSAGE,
        stack=(
            StackFrame(
                "new UserService",
                "http://localhost:5173/src/services/UserService.ts",
                5,
                10,
            ),
            StackFrame("", "http://localhost:5173/src/pages/Dashboard.tsx", 4, 3),
        ),
        raw_stack=BROWSER_COMPAT_STACK,
        file="http://localhost:5173/src/services/UserService.ts",
        line=5,
        column=10,
        category=ErrorCategory.BROWSER_COMPAT,
    )


@pytest.fixture
def timeout_error() -> TestError:
    """Return a locator timeout error."""
    return TestError(
        message="Timeout 5000ms exceeded",
        raw_stack="TimeoutError: locator.click: Timeout 5000ms exceeded.",
        file="tests/e2e/specs/format.spec.ts",
        line=12,
        category=ErrorCategory.TIMEOUT,
    )


def build_run(
    results: list[TestResult] | tuple[TestResult, ...],
    timestamp: str = "2024-05-01T10:00:00+00:00",
) -> TestRun:
    """Build a TestRun with a summary computed from ``results``."""
    return TestRun(
        timestamp=timestamp,
        results=tuple(results),
        summary=RunSummary.from_results(results),
    )


@pytest.fixture
def make_run() -> Callable[..., TestRun]:
    """Return a factory that builds runs from results."""
    return build_run


@pytest.fixture
def sample_run(browser_error: TestError, timeout_error: TestError) -> TestRun:
    """Return a run with two duplicate browser errors, one timeout and one pass."""
    return build_run(
        [
            TestResult(
                name="shows the dashboard",
                file="tests/e2e/specs/dashboard.spec.ts",
                status=TestStatus.FAILED,
                duration_ms=1200,
                error=browser_error,
            ),
            TestResult(
                name="lists users",
                file="tests/e2e/specs/dashboard.spec.ts",
                status=TestStatus.FAILED,
                duration_ms=900,
                error=browser_error,
            ),
            TestResult(
                name="formats names",
                file="tests/e2e/specs/format.spec.ts",
                status=TestStatus.FAILED,
                duration_ms=5100,
                error=timeout_error,
            ),
            TestResult(
                name="renders the header",
                file="tests/e2e/specs/format.spec.ts",
                status=TestStatus.PASSED,
                duration_ms=300,
            ),
        ]
    )


@pytest.fixture
def green_run() -> TestRun:
    """Return a run where every test passed."""
    return build_run(
        [
            TestResult(name="shows the dashboard", file="a.spec.ts", status=TestStatus.PASSED),
            TestResult(name="formats names", file="b.spec.ts", status=TestStatus.PASSED),
        ]
    )


@pytest.fixture
def playwright_report() -> dict[str, Any]:
    """Return a Playwright JSON report with nested suites and two projects."""
    return {
        "config": {"rootDir": "/app/tests/e2e"},
        "suites": [
            {
                "title": "dashboard.spec.ts",
                "file": "specs/dashboard.spec.ts",
                "specs": [],
                "suites": [
                    {
                        "title": "Dashboard",
                        "specs": [
                            {
                                "title": "shows the dashboard",
                                "line": 8,
                                "tests": [
                                    {
                                        "projectName": "chromium",
                                        "status": "unexpected",
                                        "results": [
                                            {
                                                "status": "failed",
                                                "duration": 1234,
                                                "errors": [
                                                    {
                                                        "message": BROWSER_COMPAT_MESSAGE,
                                                        "stack": BROWSER_COMPAT_STACK,
                                                    }
                                                ],
                                            }
                                        ],
                                    },
                                    {
                                        "projectName": "firefox",
                                        "status": "expected",
                                        "results": [{"status": "passed", "duration": 800}],
                                    },
                                ],
                            }
                        ],
                    }
                ],
            },
            {
                "title": "format.spec.ts",
                "file": "specs/format.spec.ts",
                "specs": [
                    {
                        "title": "formats names",
                        "line": 3,
                        "tests": [
                            {
                                "projectName": "chromium",
                                "status": "skipped",
                                "results": [{"status": "skipped", "duration": 0}],
                            }
                        ],
                    }
                ],
            },
        ],
    }


@pytest.fixture
def playwright_report_text(playwright_report: dict[str, Any]) -> str:
    """Return the JSON report as printed by the harness."""
    return json.dumps(playwright_report, indent=2)

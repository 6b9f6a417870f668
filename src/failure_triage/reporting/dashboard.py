"""Self-contained HTML dashboard rendered from the JSON report.

The page has no external assets: styles are inline and the pass-rate trend
is drawn as plain table bars. Every value taken from the report is escaped.
"""

from __future__ import annotations

from html import escape
from pathlib import Path
from typing import Any

import structlog

from failure_triage.utils.fs import write_text

log = structlog.get_logger()

STYLE = """
* { margin: 0; padding: 0; box-sizing: border-box; }
body { font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; background: #f5f5f5;
       color: #333; padding: 20px; }
.dashboard { max-width: 1100px; margin: 0 auto; }
.card { background: #fff; border-radius: 8px; padding: 20px; margin-bottom: 20px;
        box-shadow: 0 2px 4px rgba(0,0,0,0.1); }
h1 { font-size: 22px; margin-bottom: 6px; }
h2 { font-size: 16px; margin-bottom: 12px; border-bottom: 1px solid #eee; padding-bottom: 8px; }
.muted { color: #666; font-size: 13px; }
.grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(160px, 1fr)); gap: 16px; }
.metric { font-size: 36px; font-weight: bold; }
.metric.pass { color: #22c55e; } .metric.fail { color: #ef4444; } .metric.warn { color: #f59e0b; }
.grade { display: inline-block; width: 72px; height: 72px; line-height: 72px; border-radius: 50%;
         text-align: center; font-size: 40px; font-weight: bold; color: #fff; }
.grade.A { background: #22c55e; } .grade.B { background: #84cc16; }
.grade.C { background: #f59e0b; }
.grade.D { background: #f97316; } .grade.F { background: #ef4444; }
table { width: 100%; border-collapse: collapse; font-size: 14px; }
th, td { padding: 8px; text-align: left; border-bottom: 1px solid #eee; }
th { background: #f9fafb; }
.bar { background: #22c55e; height: 10px; border-radius: 3px; }
.badge { padding: 2px 8px; border-radius: 4px; font-size: 12px; background: #e5e7eb; }
.badge.critical { background: #fee2e2; color: #b91c1c; }
.badge.high { background: #ffedd5; color: #c2410c; }
"""

DASHBOARD_FILE = "dashboard.html"
MAX_TREND_ROWS = 15


class DashboardRenderer:
    """Turns a report document into one HTML page.

    Example:
        html = DashboardRenderer().render(report)
    """

    def render(self, report: dict[str, Any]) -> str:
        current = report.get("current") or {}
        summary = current.get("summary")
        analysis = current.get("analysis")
        sections = [
            self._header(report),
            self._metrics(summary, analysis),
            self._categories(analysis),
            self._root_causes(report.get("root_causes") or []),
            self._trends(report.get("trends") or {}),
        ]
        body = "\n".join(section for section in sections if section)
        return (
            "<!DOCTYPE html>\n"
            '<html lang="en">\n<head>\n<meta charset="UTF-8">\n'
            "<title>Test Failure Dashboard</title>\n"
            f"<style>{STYLE}</style>\n</head>\n"
            f'<body>\n<div class="dashboard">\n{body}\n</div>\n</body>\n</html>\n'
        )

    def save(self, report: dict[str, Any], path: Path) -> Path:
        write_text(path, self.render(report))
        log.info("dashboard_saved", path=str(path))
        return path

    def _header(self, report: dict[str, Any]) -> str:
        health = report.get("health") or {"score": 0, "grade": "F", "factors": []}
        grade = health["grade"] if health["grade"] in "ABCDF" else "F"
        factors = "".join(f"<li>{escape(str(f))}</li>" for f in health.get("factors", ()))
        return (
            '<div class="card">'
            f'<span class="grade {grade}">{escape(grade)}</span>'
            f"<h1>Health score {int(health['score'])}/100</h1>"
            f'<p class="muted">Generated {escape(str(report.get("generated", "")))}</p>'
            f"<ul>{factors}</ul>"
            "</div>"
        )

    def _metrics(self, summary: dict[str, Any] | None, analysis: dict[str, Any] | None) -> str:
        if not summary:
            return '<div class="card"><p>No test run recorded.</p></div>'
        fixable = analysis["fixable_errors"] if analysis else 0
        cells = [
            ("pass", summary["passed"], "Passed"),
            ("fail" if summary["failed"] else "pass", summary["failed"], "Failed"),
            ("", summary["total"], "Total"),
            ("warn" if fixable else "", fixable, "Auto-fixable"),
            ("", f"{summary.get('pass_rate', 0)}%", "Pass rate"),
        ]
        items = "".join(
            f'<div><div class="metric {css}">{escape(str(value))}</div>'
            f'<div class="muted">{label}</div></div>'
            for css, value, label in cells
        )
        return f'<div class="card"><h2>Current run</h2><div class="grid">{items}</div></div>'

    def _categories(self, analysis: dict[str, Any] | None) -> str:
        if not analysis or not analysis.get("categories"):
            return ""
        rows = "".join(
            "<tr>"
            f"<td>{escape(c['code'])}</td>"
            f"<td>{escape(c['category'])}</td>"
            f"<td>{int(c['count'])}</td>"
            f"<td>{int(c['fixable'])}</td>"
            f'<td><span class="badge {escape(c["severity"])}">{escape(c["severity"])}</span></td>'
            f"<td>{escape(c['root_cause'])}</td>"
            "</tr>"
            for c in analysis["categories"]
        )
        return (
            '<div class="card"><h2>Failures by category</h2><table>'
            "<tr><th>Code</th><th>Category</th><th>Count</th><th>Fixable</th>"
            "<th>Severity</th><th>Root cause</th></tr>"
            f"{rows}</table></div>"
        )

    def _root_causes(self, root_causes: list[dict[str, Any]]) -> str:
        if not root_causes:
            return ""
        rows = "".join(
            "<tr>"
            f"<td>{escape(str(rc.get('error', '')))}</td>"
            f"<td>{escape(str(rc.get('root_cause', '')))}</td>"
            f"<td>{round(float(rc.get('confidence', 0)) * 100)}%</td>"
            f"<td>{'yes' if rc.get('fixable') else 'no'}</td>"
            "</tr>"
            for rc in root_causes
        )
        return (
            '<div class="card"><h2>Root causes</h2><table>'
            "<tr><th>Error</th><th>Root cause</th><th>Confidence</th><th>Auto-fix</th></tr>"
            f"{rows}</table></div>"
        )

    def _trends(self, trends: dict[str, list[dict[str, Any]]]) -> str:
        pass_rate = trends.get("pass_rate") or []
        if not pass_rate:
            return ""
        failures = {p["date"]: p["value"] for p in trends.get("failure_count") or []}
        rows = "".join(
            "<tr>"
            f"<td>{escape(str(point['date']))}</td>"
            f"<td>{point['value']}%</td>"
            f'<td><div class="bar" style="width:{max(0.0, min(float(point["value"]), 100.0))}%">'
            "</div></td>"
            f"<td>{escape(str(failures.get(point['date'], '')))}</td>"
            "</tr>"
            for point in pass_rate[-MAX_TREND_ROWS:]
        )
        return (
            '<div class="card"><h2>Trend</h2><table>'
            "<tr><th>Run</th><th>Pass rate</th><th></th><th>Failures</th></tr>"
            f"{rows}</table></div>"
        )

"""
Report generation.

Builds the summary and per-test detail for a session and writes it as an
HTML page (jinja2) and a JSON document under the reports directory.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

from ..core.config import settings
from ..core.models import (
    AnalysisResult,
    ApplicationMap,
    ExecutionResults,
    GeneratedTest,
    MultiPanelTestReport,
    RegistrationResult,
    Report,
)

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"


def coverage_percent(pages: int, endpoints: int, total_tests: int) -> float:
    """Discovered surface relative to tests run, capped at 100."""
    return round(min((pages + endpoints) / max(total_tests, 1) * 100, 100), 2)


class ReportGenerator:
    """Writes session reports as HTML and JSON."""

    def __init__(self, reports_dir: Optional[str] = None):
        self.reports_dir = Path(reports_dir or settings.REPORTS_DIR)
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=True,
        )

    def build_summary(self, app_map: ApplicationMap, execution: ExecutionResults,
                      analyses: List[AnalysisResult]) -> Dict[str, Any]:
        total = execution.total
        passed, failed, healed = len(execution.passed), len(execution.failed), len(execution.healed)
        return {
            "total": total,
            "passed": passed,
            "failed": failed,
            "healed": healed,
            "pass_rate": round((passed + healed) / total * 100, 2) if total else 0.0,
            "duration": round(execution.total_duration, 2),
            "coverage": coverage_percent(app_map.page_count, app_map.endpoint_count, total),
            "analyzed": len(analyses),
        }

    def generate(self, session_id: str, app_map: ApplicationMap, tests: List[GeneratedTest],
                 execution: ExecutionResults, analyses: List[AnalysisResult],
                 registration: Optional[RegistrationResult] = None,
                 config: Optional[Dict[str, Any]] = None) -> Report:
        """Assemble the report and write its files."""
        website = app_map.website
        details = {
            "config": config or {},
            "discovery": {
                "pages": app_map.page_count,
                "endpoints": app_map.endpoint_count,
                "user_flows": len(website.user_flows) if website else 0,
                "interactions": len(website.interactions) if website else 0,
                "page_urls": [p.url for p in website.pages] if website else [],
                "api_auth": app_map.api.auth_type if app_map.api else None,
            },
            "generated_tests": len(tests),
            "test_categories": self._categories(tests),
            "tests": [r.to_dict() for r in execution.results],
            "analyses": [a.to_dict() for a in analyses],
            "registration": registration.to_dict() if registration else None,
        }
        report = Report(
            session_id=session_id,
            summary=self.build_summary(app_map, execution, analyses),
            details=details,
        )
        report.files = self.write(
            session_id,
            "report",
            self.jinja_env.get_template("report.html").render(
                session_id=session_id,
                generated_at=report.generated_at.strftime("%Y-%m-%d %H:%M:%S"),
                summary=report.summary,
                details=details,
            ),
            report.to_dict(),
        )
        logger.info(f"Report for session {session_id} written to {self.reports_dir}")
        return report

    def generate_multi_panel(self, report: MultiPanelTestReport) -> Dict[str, str]:
        data = report.to_dict()
        html = self.jinja_env.get_template("multi_panel_report.html").render(report=data)
        files = self.write(report.session_id, "multi_panel_report", html, data)
        logger.info(f"Multi-panel report for session {report.session_id} written to {self.reports_dir}")
        return files

    def write(self, session_id: str, name: str, html: str, data: Dict[str, Any]) -> Dict[str, str]:
        """Write ``<name>.html`` and ``<name>.json`` into the session directory."""
        directory = self.reports_dir / session_id
        directory.mkdir(parents=True, exist_ok=True)

        html_path = directory / f"{name}.html"
        json_path = directory / f"{name}.json"
        html_path.write_text(html, encoding="utf-8")
        data = dict(data)
        data["files"] = {"html": str(html_path), "json": str(json_path)}
        json_path.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
        return {"html": str(html_path), "json": str(json_path)}

    @staticmethod
    def _categories(tests: List[GeneratedTest]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for test in tests:
            counts[test.category.value] = counts.get(test.category.value, 0) + 1
        return counts

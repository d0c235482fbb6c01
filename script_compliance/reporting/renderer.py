"""HTML rendering of an aggregated report summary."""

from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

SEVERITY_LABELS = {
    "low": "Low",
    "medium": "Medium",
    "high": "High",
    "critical": "Critical",
}

STATUS_LABELS = {
    "ok": "Compliant",
    "warning": "Warning",
    "fail": "Violation",
}


class ReportRenderer:
    """Renders ``summary_json`` into the stored human-readable report."""

    def __init__(self, template_dir: Optional[Path] = None):
        self.template_dir = template_dir or Path(__file__).parent / "templates"
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml", "html.j2"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.jinja_env.filters["severity_label"] = lambda s: SEVERITY_LABELS.get(s, s)
        self.jinja_env.filters["status_label"] = lambda s: STATUS_LABELS.get(s, s)

    def render(self, summary: Dict[str, Any]) -> str:
        template = self.jinja_env.get_template("report.html.j2")
        flagged = [
            item
            for item in summary.get("checklist_articles", [])
            if sum(item["counts"].values()) > 0
        ]
        return template.render(summary=summary, flagged_articles=flagged)

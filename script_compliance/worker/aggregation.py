"""
Job aggregation: all findings of a settled job folded into one report.

Runs after every chunk outcome and does nothing until no chunk of the job is
pending or judging. Racing triggers are harmless: the report is keyed by job
id and a second trigger that finds a report only marks the job completed.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db.audit_service import ANALYSIS_COMPLETED, AuditSink
from ..db.services import FindingService, JobService, ReportService
from ..hashing import sha256_text
from ..policy import Taxonomy, atom_numeric
from ..reporting import ReportRenderer
from .evidence import severity_rank

logger = structlog.get_logger()

SEVERITIES = ("low", "medium", "high", "critical")

AggregationStatus = Literal["pending", "completed", "already_reported", "missing"]


def _empty_counts() -> Dict[str, int]:
    return {s: 0 for s in SEVERITIES}


def _dedup_key(finding: Dict[str, Any], norm_atom: Optional[str]) -> str:
    start = finding.get("start_offset_global") or 0
    end = finding.get("end_offset_global")
    end = start if end is None else end
    snippet_hash = sha256_text(finding.get("evidence_snippet") or "")
    source = finding.get("source") or "ai"
    return f"{source}|{finding['article_id']}|{norm_atom or ''}|{start}-{end}|{snippet_hash}"


def dedupe_findings(findings: Iterable[Dict[str, Any]], taxonomy: Taxonomy) -> List[Dict[str, Any]]:
    """One finding per (source, article, atom, span, snippet), highest severity wins."""
    by_key: Dict[str, Dict[str, Any]] = {}
    for f in findings:
        key = _dedup_key(f, taxonomy.normalize_atom_id(f.get("atom_id"), f["article_id"]))
        existing = by_key.get(key)
        if existing is None or severity_rank(f["severity"]) > severity_rank(existing["severity"]):
            by_key[key] = f
    return list(by_key.values())


def _top_finding(f: Dict[str, Any], taxonomy: Taxonomy) -> Dict[str, Any]:
    norm_atom = taxonomy.normalize_atom_id(f.get("atom_id"), f["article_id"])
    return {
        "atom_id": norm_atom,
        "title": taxonomy.atom_title(f["article_id"], norm_atom) or f.get("title") or "",
        "source": f.get("source") or "ai",
        "severity": f["severity"],
        "confidence": f.get("confidence") or 0,
        "is_interpretive": bool(f.get("is_interpretive")),
        "description": f.get("description") or "",
        "evidence_snippet": f.get("evidence_snippet") or "",
        "location": f.get("location") or {},
        "start_offset_global": f.get("start_offset_global"),
        "end_offset_global": f.get("end_offset_global"),
        "start_line_chunk": f.get("start_line_chunk"),
        "end_line_chunk": f.get("end_line_chunk"),
    }


def build_summary(
    job_id: str,
    script_id: str,
    findings: Iterable[Dict[str, Any]],
    taxonomy: Taxonomy,
    top_n: int = 10,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build the structured report summary from stored findings.

    Args:
        job_id: Job being reported
        script_id: Script the job analyzed
        findings: Finding dicts as produced by ``FindingModel.to_dict``
        taxonomy: Article/atom catalog
        top_n: Findings listed per article
        generated_at: Timestamp recorded in the summary (defaults to now)

    Returns:
        Dict with totals, checklist_articles and findings_by_article
    """
    excluded = taxonomy.out_of_scope_ids
    deduped = dedupe_findings(
        (f for f in findings if f["article_id"] not in excluded), taxonomy
    )

    severity_counts = _empty_counts()
    for f in deduped:
        if f["severity"] in severity_counts:
            severity_counts[f["severity"]] += 1

    by_article: Dict[int, Dict[str, Any]] = {
        art.article_id: {"findings": [], "counts": _empty_counts(), "atoms": []}
        for art in taxonomy.articles
        if art.article_id not in excluded
    }
    for f in deduped:
        entry = by_article.get(f["article_id"])
        if entry is None:
            continue
        entry["findings"].append(f)
        if f["severity"] in entry["counts"]:
            entry["counts"][f["severity"]] += 1
        norm_atom = taxonomy.normalize_atom_id(f.get("atom_id"), f["article_id"])
        if norm_atom and norm_atom not in entry["atoms"]:
            entry["atoms"].append(norm_atom)

    checklist = []
    for art in taxonomy.scannable_articles():
        entry = by_article[art.article_id]
        counts = entry["counts"]
        if not entry["findings"]:
            status = "ok"
        elif counts["high"] or counts["critical"]:
            status = "fail"
        else:
            status = "warning"
        checklist.append(
            {
                "article_id": art.article_id,
                "title": art.title,
                "status": status,
                "counts": counts,
                "triggered_atoms": list(entry["atoms"]),
            }
        )

    findings_by_article = []
    for art in taxonomy.articles:
        entry = by_article.get(art.article_id)
        if entry is None or not entry["findings"]:
            continue
        ordered = sorted(
            entry["findings"],
            key=lambda f: (
                atom_numeric(taxonomy.normalize_atom_id(f.get("atom_id"), f["article_id"])),
                f.get("start_offset_global") or 0,
                -severity_rank(f["severity"]),
                -(f.get("confidence") or 0),
            ),
        )
        findings_by_article.append(
            {
                "article_id": art.article_id,
                "title": art.title,
                "counts": entry["counts"],
                "triggered_atoms": list(entry["atoms"]),
                "top_findings": [_top_finding(f, taxonomy) for f in ordered[:top_n]],
            }
        )

    return {
        "job_id": job_id,
        "script_id": script_id,
        "generated_at": (generated_at or datetime.now(timezone.utc)).isoformat(),
        "taxonomy_version": taxonomy.version,
        "totals": {"findings_count": len(deduped), "severity_counts": severity_counts},
        "checklist_articles": checklist,
        "findings_by_article": findings_by_article,
    }


class Aggregator:
    """Builds and stores the report once a job has no active chunks."""

    def __init__(
        self,
        db: Session,
        taxonomy: Taxonomy,
        audit: Optional[AuditSink] = None,
        renderer: Optional[ReportRenderer] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.taxonomy = taxonomy
        self.audit = audit
        self.renderer = renderer or ReportRenderer()
        self.settings = settings or get_settings()
        self.jobs = JobService(db, audit)
        self.reports = ReportService(db)

    def run(self, job_id: str) -> AggregationStatus:
        log = logger.bind(job_id=job_id)
        if self.jobs.job_has_active_chunks(job_id):
            return "pending"

        job = self.jobs.get_job(job_id)
        if job is None:
            log.warning("aggregation_job_missing")
            return "missing"

        if self.reports.get_for_job(job_id) is not None:
            self.jobs.mark_job_completed(job_id)
            log.info("aggregation_already_reported")
            return "already_reported"

        findings = [f.to_dict() for f in FindingService(self.db).list_for_job(job_id)]
        summary = build_summary(
            job.id,
            job.script_id,
            findings,
            self.taxonomy,
            top_n=self.settings.top_findings_per_article,
        )
        self.reports.upsert(job, summary, self.renderer.render(summary))

        # The aggregation step holds the last progress unit
        self.jobs.increment_job_progress(job_id)
        self.jobs.mark_job_completed(job_id, pin_progress=True)
        if self.audit is not None:
            self.audit.emit(ANALYSIS_COMPLETED, "task", job_id, target_label=job.script_id)

        log.info(
            "aggregation_done",
            findings_loaded=len(findings),
            findings_count=summary["totals"]["findings_count"],
            severity_counts=summary["totals"]["severity_counts"],
        )
        return "completed"

"""Tests for report aggregation."""

from datetime import datetime, timezone

from script_compliance.db.audit_service import ANALYSIS_COMPLETED, AuditService
from script_compliance.db.models import ChunkModel, ReportModel
from script_compliance.db.services import FindingService
from script_compliance.hashing import sha256_text
from script_compliance.policy import Article, Atom, Taxonomy
from script_compliance.reporting import ReportRenderer
from script_compliance.worker.aggregation import Aggregator, build_summary, dedupe_findings


def finding(article_id, atom_id=None, severity="medium", start=0, snippet="text", **extra):
    data = {
        "source": "ai",
        "article_id": article_id,
        "atom_id": atom_id,
        "severity": severity,
        "confidence": 0.8,
        "is_interpretive": False,
        "title": "Model title",
        "description": "",
        "evidence_snippet": snippet,
        "start_offset_global": start,
        "end_offset_global": start + len(snippet),
        "location": {},
    }
    data.update(extra)
    return data


def summarize(findings, taxonomy, top_n=10):
    return build_summary(
        "job-1",
        "script-1",
        findings,
        taxonomy,
        top_n=top_n,
        generated_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


class TestBuildSummary:
    """Structure and ordering of the report summary."""

    def test_articles_in_taxonomy_order(self, taxonomy):
        summary = summarize([finding(8, "8-1"), finding(5, "5-1", start=10)], taxonomy)
        assert [a["article_id"] for a in summary["findings_by_article"]] == [5, 8]

    def test_articles_sorted_for_unordered_catalog(self):
        catalog = Taxonomy(
            [
                Article(article_id=9, title="Nine", atoms=(Atom(atom_id="9-1", title="x"),)),
                Article(article_id=4, title="Four", atoms=(Atom(atom_id="4-1", title="y"),)),
            ]
        )
        summary = summarize([finding(9, "9-1"), finding(4, "4-1", start=10)], catalog)

        assert [a["article_id"] for a in summary["findings_by_article"]] == [4, 9]
        assert [c["article_id"] for c in summary["checklist_articles"]] == [4, 9]

    def test_duplicates_keep_highest_severity(self, taxonomy):
        summary = summarize(
            [finding(5, "5-1", "low"), finding(5, "5.1", "high")], taxonomy
        )
        assert summary["totals"]["findings_count"] == 1
        assert summary["totals"]["severity_counts"] == {
            "low": 0,
            "medium": 0,
            "high": 1,
            "critical": 0,
        }

    def test_out_of_scope_article_excluded(self, taxonomy):
        summary = summarize([finding(26), finding(5, "5-1")], taxonomy)
        assert summary["totals"]["findings_count"] == 1
        assert [a["article_id"] for a in summary["findings_by_article"]] == [5]

    def test_checklist_status(self, taxonomy):
        summary = summarize(
            [
                finding(5, "5-1", "high"),
                finding(8, "8-1", "medium"),
                finding(9, "9-1", "low", start=5),
                finding(9, "9-2", "critical", start=50),
            ],
            taxonomy,
        )
        statuses = {c["article_id"]: c["status"] for c in summary["checklist_articles"]}
        assert len(statuses) == 24
        assert statuses[4] == "ok"
        assert statuses[5] == "fail"
        assert statuses[8] == "warning"
        assert statuses[9] == "fail"
        assert 25 not in statuses and 26 not in statuses

    def test_admin_article_findings_listed_but_not_in_checklist(self, taxonomy):
        summary = summarize([finding(25)], taxonomy)
        assert [a["article_id"] for a in summary["findings_by_article"]] == [25]
        assert all(c["article_id"] != 25 for c in summary["checklist_articles"])

    def test_top_findings_order(self, taxonomy):
        summary = summarize(
            [
                finding(5, "5-2", "critical", start=10, snippet="a"),
                finding(5, "5-1", "low", start=50, snippet="b"),
                finding(5, "5-1", "low", start=20, snippet="c"),
                finding(5, "5-1", "high", start=20, snippet="d"),
            ],
            taxonomy,
        )
        (article,) = summary["findings_by_article"]
        ordered = [(f["atom_id"], f["evidence_snippet"]) for f in article["top_findings"]]
        assert ordered == [("5-1", "d"), ("5-1", "c"), ("5-1", "b"), ("5-2", "a")]
        assert article["triggered_atoms"] == ["5-2", "5-1"]

    def test_top_findings_capped_and_titled_from_atom(self, taxonomy):
        findings = [finding(5, "5-1", start=i * 10, snippet=f"s{i}") for i in range(5)]
        summary = summarize(findings, taxonomy, top_n=2)

        (article,) = summary["findings_by_article"]
        assert len(article["top_findings"]) == 2
        assert article["counts"]["medium"] == 5
        assert article["top_findings"][0]["title"] == "Direct insult or degrading language"

    def test_title_falls_back_to_finding_title(self, taxonomy):
        summary = summarize([finding(3, None, title="Producer responsibility")], taxonomy)
        top = summary["findings_by_article"][0]["top_findings"][0]
        assert top["title"] == "Producer responsibility"

    def test_summary_metadata(self, taxonomy):
        summary = summarize([], taxonomy)
        assert summary["job_id"] == "job-1"
        assert summary["script_id"] == "script-1"
        assert summary["generated_at"] == "2025-01-01T00:00:00+00:00"
        assert summary["taxonomy_version"] == taxonomy.version
        assert summary["findings_by_article"] == []
        assert summary["totals"]["findings_count"] == 0

    def test_dedupe_key_separates_sources(self, taxonomy):
        ai = finding(17, "17-1", snippet="damn")
        lexicon = {**ai, "source": "lexicon_mandatory"}
        assert len(dedupe_findings([ai, lexicon], taxonomy)) == 2


class TestReportRenderer:
    def test_renders_escaped_evidence(self, taxonomy):
        summary = summarize([finding(5, "5-1", "high", snippet="<b>you fool</b>")], taxonomy)

        html = ReportRenderer().render(summary)

        assert "script-1" in html
        assert "&lt;b&gt;you fool&lt;/b&gt;" in html
        assert "<b>you fool</b>" not in html


def _settle_chunks(db, job, status="done"):
    for chunk in db.query(ChunkModel).filter_by(job_id=job.id):
        chunk.status = status
    db.commit()


def _store(db, job, findings):
    rows = []
    for f in findings:
        rows.append(
            {
                **f,
                "job_id": job.id,
                "script_id": job.script_id,
                "version_id": job.version_id,
                "evidence_hash": sha256_text(f"{f['article_id']}|{f['evidence_snippet']}|{f['severity']}"),
            }
        )
    FindingService(db).insert_ignore_duplicates(rows)


class TestAggregator:
    """Report storage and job completion."""

    def test_waits_for_active_chunks(self, db_session, make_job, taxonomy, settings):
        job = make_job()
        status = Aggregator(db_session, taxonomy, settings=settings).run(job.id)

        assert status == "pending"
        assert db_session.query(ReportModel).count() == 0

    def test_missing_job(self, db_session, taxonomy, settings):
        assert Aggregator(db_session, taxonomy, settings=settings).run("nope") == "missing"

    def test_completes_job_with_report(self, db_session, make_job, taxonomy, settings):
        job = make_job(texts=("a", "b"))
        _settle_chunks(db_session, job)
        _store(
            db_session,
            job,
            [finding(8, "8-1", "medium"), finding(5, "5-1", "low"), finding(5, "5-1", "high")],
        )

        status = Aggregator(
            db_session, taxonomy, audit=AuditService(db_session), settings=settings
        ).run(job.id)

        assert status == "completed"
        db_session.refresh(job)
        assert job.status == "completed"
        assert job.completed_at is not None
        assert job.progress_percent == 100
        assert job.progress_done == job.progress_total

        report = db_session.query(ReportModel).filter_by(job_id=job.id).one()
        assert report.findings_count == 2
        assert report.severity_counts["high"] == 1
        assert [a["article_id"] for a in report.summary_json["findings_by_article"]] == [5, 8]
        assert "Content Compliance Report" in report.report_html

        events = AuditService(db_session).query_by_event_type(ANALYSIS_COMPLETED)
        assert [(e.target_id, e.target_label) for e in events] == [(job.id, "script-1")]

    def test_second_trigger_does_not_duplicate(self, db_session, make_job, taxonomy, settings):
        job = make_job()
        _settle_chunks(db_session, job, status="failed")
        aggregator = Aggregator(
            db_session, taxonomy, audit=AuditService(db_session), settings=settings
        )

        assert aggregator.run(job.id) == "completed"
        assert aggregator.run(job.id) == "already_reported"

        assert db_session.query(ReportModel).filter_by(job_id=job.id).count() == 1
        db_session.refresh(job)
        assert job.status == "completed"
        assert len(AuditService(db_session).query_by_event_type(ANALYSIS_COMPLETED)) == 1

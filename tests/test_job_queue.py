"""Tests for job/chunk services and the chunk queue."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from script_compliance.db.audit_service import ANALYSIS_STARTED, AuditService
from script_compliance.db.models import ChunkModel, ChunkRunModel, FindingModel, ReportModel
from script_compliance.db.services import (
    ChunkRunService,
    FindingService,
    JobService,
    ReportService,
)
from script_compliance.exceptions import ConfigurationError
from script_compliance.worker.queue import ChunkQueue


def _chunks(db, job_id):
    return (
        db.query(ChunkModel)
        .filter(ChunkModel.job_id == job_id)
        .order_by(ChunkModel.chunk_index)
        .all()
    )


class RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, event_type, target_type, target_id, target_label=None, **kwargs):
        self.events.append((event_type, target_type, target_id, target_label))


class TestJobSelection:
    """fetch_next_job / fetch_next_pending_chunk."""

    def test_oldest_job_with_pending_chunk(self, db_session, make_job):
        now = datetime.now(timezone.utc)
        newer = make_job(script_id="newer", created_at=now)
        older = make_job(script_id="older", created_at=now - timedelta(minutes=5))

        job = JobService(db_session).fetch_next_job()

        assert job.id == older.id
        assert job.id != newer.id

    def test_completed_and_drained_jobs_are_skipped(self, db_session, make_job):
        now = datetime.now(timezone.utc)
        make_job(script_id="done", status="completed", created_at=now - timedelta(minutes=9))
        drained = make_job(script_id="drained", created_at=now - timedelta(minutes=8))
        for chunk in _chunks(db_session, drained.id):
            chunk.status = "done"
        db_session.commit()
        waiting = make_job(script_id="waiting", created_at=now)

        assert JobService(db_session).fetch_next_job().id == waiting.id

    def test_no_work(self, db_session):
        assert JobService(db_session).fetch_next_job() is None

    def test_earliest_pending_chunk(self, db_session, make_job):
        job = make_job(texts=("a", "b", "c"))
        first = _chunks(db_session, job.id)[0]
        first.status = "done"
        db_session.commit()

        chunk = JobService(db_session).fetch_next_pending_chunk(job.id)
        assert chunk.chunk_index == 1


class TestClaimChunk:
    """Conditional pending -> judging claims."""

    def test_claim_is_exclusive_across_sessions(self, session_factory, db_session, make_job):
        job = make_job()
        chunk_id = _chunks(db_session, job.id)[0].id

        first, second = session_factory(), session_factory()
        try:
            won = JobService(first).claim_chunk(chunk_id)
            lost = JobService(second).claim_chunk(chunk_id)
            won_status = won.status if won is not None else None
        finally:
            first.close()
            second.close()

        assert won_status == "judging"
        assert lost is None

    def test_first_claim_starts_job_once(self, db_session, make_job):
        job = make_job(texts=("a", "b"))
        sink = RecordingSink()
        jobs = JobService(db_session, sink)

        for chunk in _chunks(db_session, job.id):
            assert jobs.claim_chunk(chunk.id) is not None

        db_session.refresh(job)
        assert job.status == "running"
        assert job.started_at is not None
        assert sink.events == [(ANALYSIS_STARTED, "task", job.id, "script-1")]

    def test_started_event_written_to_audit_table(self, db_session, make_job):
        job = make_job()
        chunk = _chunks(db_session, job.id)[0]

        JobService(db_session, AuditService(db_session)).claim_chunk(chunk.id)

        events = AuditService(db_session).query_by_target("task", job.id)
        assert [e.event_type for e in events] == [ANALYSIS_STARTED]
        assert events[0].actor_kind == "system"
        assert events[0].target_label == "script-1"

    def test_completed_job_is_not_restarted(self, db_session, make_job):
        job = make_job(status="completed")
        assert JobService(db_session).mark_job_started(job.id) is False


class TestProgress:
    """Atomic, capped progress accounting."""

    def test_increment_recomputes_percent(self, db_session, make_job):
        job = make_job(texts=("a", "b"))  # total 3
        JobService(db_session).increment_job_progress(job.id)

        db_session.refresh(job)
        assert job.progress_done == 1
        assert job.progress_percent == 33

    def test_increment_is_capped(self, db_session, make_job):
        job = make_job(texts=("a", "b"))
        jobs = JobService(db_session)
        for _ in range(5):
            jobs.increment_job_progress(job.id)

        db_session.refresh(job)
        assert job.progress_done == 3
        assert job.progress_percent == 100

    def test_mark_completed_pins_progress_and_keeps_first_timestamp(self, db_session, make_job):
        job = make_job()
        jobs = JobService(db_session)
        jobs.mark_job_completed(job.id, pin_progress=True)
        db_session.refresh(job)
        first_completed = job.completed_at

        jobs.mark_job_completed(job.id)
        db_session.refresh(job)

        assert job.status == "completed"
        assert job.progress_done == job.progress_total
        assert job.progress_percent == 100
        assert job.completed_at == first_completed


class TestChunkQueue:
    """lease / complete / fail."""

    def test_lease_complete_advances_progress_once(self, db_session, make_job):
        job = make_job(texts=("a", "b"))
        queue = ChunkQueue(JobService(db_session))

        chunk = queue.lease(job.id)
        queue.complete(chunk.id, job.id)
        queue.complete(chunk.id, job.id)

        db_session.refresh(job)
        db_session.refresh(chunk)
        assert chunk.status == "done"
        assert job.progress_done == 1

    def test_fail_records_error_and_advances_progress(self, db_session, make_job):
        job = make_job()
        jobs = JobService(db_session)
        queue = ChunkQueue(jobs)

        chunk = queue.lease(job.id)
        queue.fail(chunk.id, job.id, "judge exploded " + "x" * 5000)

        db_session.refresh(chunk)
        db_session.refresh(job)
        assert chunk.status == "failed"
        assert chunk.last_error.startswith("judge exploded")
        assert len(chunk.last_error) == 4000
        assert job.progress_done == 1
        assert not jobs.job_has_active_chunks(job.id)

    def test_pending_chunk_cannot_be_settled(self, db_session, make_job):
        job = make_job()
        chunk = _chunks(db_session, job.id)[0]
        assert JobService(db_session).set_chunk_done(chunk.id) is False

    def test_lease_on_drained_job(self, db_session, make_job):
        job = make_job()
        queue = ChunkQueue(JobService(db_session))
        queue.lease(job.id)
        assert queue.lease(job.id) is None

    def test_active_chunks(self, db_session, make_job):
        job = make_job()
        jobs = JobService(db_session)
        assert jobs.job_has_active_chunks(job.id)
        chunk = ChunkQueue(jobs).lease(job.id)
        assert jobs.job_has_active_chunks(job.id)
        jobs.set_chunk_done(chunk.id)
        assert not jobs.job_has_active_chunks(job.id)

    def test_normalized_text(self, db_session, make_job):
        job = make_job(texts=("abc",))
        empty = make_job(normalized_text="")
        jobs = JobService(db_session)
        assert jobs.fetch_job_normalized_text(job.id) == "abc"
        assert jobs.fetch_job_normalized_text(empty.id) is None


def _finding_row(job, evidence_hash="h1", **overrides):
    row = {
        "job_id": job.id,
        "script_id": job.script_id,
        "version_id": job.version_id,
        "source": "ai",
        "article_id": 5,
        "atom_id": "5-1",
        "severity": "high",
        "confidence": 0.9,
        "title": "Insult",
        "description": "",
        "evidence_snippet": "you fool",
        "start_offset_global": 0,
        "end_offset_global": 8,
        "evidence_hash": evidence_hash,
    }
    row.update(overrides)
    return row


class TestFindingStore:
    def test_duplicate_hash_is_ignored(self, db_session, make_job):
        job = make_job()
        findings = FindingService(db_session)

        assert findings.insert_ignore_duplicates([_finding_row(job)]) == 1
        assert findings.insert_ignore_duplicates([_finding_row(job, severity="low")]) == 0

        rows = db_session.query(FindingModel).filter_by(job_id=job.id).all()
        assert len(rows) == 1
        assert rows[0].severity == "high"

    def test_same_hash_allowed_in_other_job(self, db_session, make_job):
        first, second = make_job(), make_job(script_id="script-2")
        findings = FindingService(db_session)
        findings.insert_ignore_duplicates([_finding_row(first)])
        assert findings.insert_ignore_duplicates([_finding_row(second)]) == 1

    def test_unsupported_dialect_rejected(self):
        db = MagicMock()
        db.get_bind.return_value.dialect.name = "mysql"

        with pytest.raises(ConfigurationError):
            FindingService(db).insert_ignore_duplicates([{"job_id": "job-1"}])
        db.commit.assert_not_called()


class TestRunCache:
    def test_run_is_written_once(self, db_session, make_job):
        job = make_job()
        runs = ChunkRunService(db_session)

        assert runs.put("key-1", job.id, ai_findings=[{"a": 1}], degraded_calls=1) is True
        assert runs.put("key-1", job.id, ai_findings=[]) is False

        stored = runs.get("key-1")
        assert stored.ai_findings == [{"a": 1}]
        assert stored.degraded_calls == 1
        assert db_session.query(ChunkRunModel).count() == 1


class TestReportStore:
    def test_upsert_keeps_one_row_per_job(self, db_session, make_job):
        job = make_job()
        reports = ReportService(db_session)
        summary = {"totals": {"findings_count": 1, "severity_counts": {"high": 1}}}

        reports.upsert(job, summary, "<html>1</html>")
        reports.upsert(
            job,
            {"totals": {"findings_count": 2, "severity_counts": {"high": 2}}},
            "<html>2</html>",
        )
        db_session.expire_all()

        rows = db_session.query(ReportModel).filter_by(job_id=job.id).all()
        assert len(rows) == 1
        assert rows[0].findings_count == 2
        assert rows[0].report_html == "<html>2</html>"

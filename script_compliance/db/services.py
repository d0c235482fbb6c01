"""
Database services for the compliance worker.

Every write that can race with another worker process is expressed as a
single conditional UPDATE or an ``INSERT ... ON CONFLICT DO NOTHING`` so that
correctness does not depend on in-process locks.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import DateTime, bindparam, exists, select, text, update
from sqlalchemy.orm import Session

from ..exceptions import ConfigurationError
from .audit_service import ANALYSIS_STARTED, AuditSink
from .models import (
    ChunkModel,
    ChunkRunModel,
    FindingModel,
    JobModel,
    LexiconTermModel,
    ReportModel,
)

logger = logging.getLogger(__name__)

ACTIVE_JOB_STATUSES = ("queued", "running")
ACTIVE_CHUNK_STATUSES = ("pending", "judging")
MAX_ERROR_LENGTH = 4000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dialect_insert(db: Session, model):
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ConfigurationError(f"Unsupported database dialect for upserts: {dialect}")
    return insert(model)


class JobService:
    """Job lifecycle, chunk claiming and progress accounting."""

    def __init__(self, db: Session, audit: Optional[AuditSink] = None):
        self.db = db
        self.audit = audit

    def get_job(self, job_id: str) -> Optional[JobModel]:
        return self.db.get(JobModel, job_id)

    def fetch_next_job(self) -> Optional[JobModel]:
        """Oldest queued/running job that still has a pending chunk."""
        has_pending = exists().where(
            ChunkModel.job_id == JobModel.id, ChunkModel.status == "pending"
        )
        return self.db.execute(
            select(JobModel)
            .where(JobModel.status.in_(ACTIVE_JOB_STATUSES), has_pending)
            .order_by(JobModel.created_at.asc(), JobModel.id.asc())
            .limit(1)
        ).scalar_one_or_none()

    def fetch_next_pending_chunk(self, job_id: str) -> Optional[ChunkModel]:
        """Earliest pending chunk of a job by chunk_index."""
        return self.db.execute(
            select(ChunkModel)
            .where(ChunkModel.job_id == job_id, ChunkModel.status == "pending")
            .order_by(ChunkModel.chunk_index.asc())
            .limit(1)
        ).scalar_one_or_none()

    def claim_chunk(self, chunk_id: str) -> Optional[ChunkModel]:
        """Atomically move a chunk from pending to judging.

        Uses optimistic locking via status check in UPDATE. Returns the
        claimed chunk, or None when another worker got there first.
        """
        result = self.db.execute(
            text("""
                UPDATE analysis_chunks
                SET status = 'judging',
                    updated_at = :now
                WHERE id = :chunk_id AND status = 'pending'
            """).bindparams(bindparam("now", type_=DateTime(timezone=True))),
            {"chunk_id": chunk_id, "now": _utcnow()},
        )
        self.db.commit()

        if result.rowcount == 0:
            logger.debug(f"Chunk {chunk_id} claimed by another worker")
            return None

        chunk = self.db.get(ChunkModel, chunk_id)
        self.db.refresh(chunk)
        self.mark_job_started(chunk.job_id)
        return chunk

    def mark_job_started(self, job_id: str) -> bool:
        """Set a job running on its first claimed chunk.

        Conditional on ``started_at IS NULL`` so exactly one process wins and
        emits ANALYSIS_STARTED; losing the race is harmless.
        """
        result = self.db.execute(
            update(JobModel)
            .where(
                JobModel.id == job_id,
                JobModel.started_at.is_(None),
                JobModel.status != "completed",
            )
            .values(status="running", started_at=_utcnow())
        )
        self.db.commit()
        if result.rowcount == 0:
            return False

        logger.info(f"Job {job_id} started")
        if self.audit is not None:
            job = self.get_job(job_id)
            label = job.script_id if job is not None else None
            self.audit.emit(ANALYSIS_STARTED, "task", job_id, target_label=label)
        return True

    def increment_job_progress(self, job_id: str) -> None:
        """progress_done += 1 (capped at total), percent recomputed in the same UPDATE."""
        self.db.execute(
            update(JobModel)
            .where(JobModel.id == job_id, JobModel.progress_done < JobModel.progress_total)
            .values(
                progress_done=JobModel.progress_done + 1,
                progress_percent=(100 * (JobModel.progress_done + 1)) // JobModel.progress_total,
            )
        )
        self.db.commit()

    def set_chunk_done(self, chunk_id: str) -> bool:
        return self._finish_chunk(chunk_id, status="done", last_error=None)

    def set_chunk_failed(self, chunk_id: str, last_error: str) -> bool:
        return self._finish_chunk(
            chunk_id, status="failed", last_error=(last_error or "")[:MAX_ERROR_LENGTH]
        )

    def _finish_chunk(self, chunk_id: str, status: str, last_error: Optional[str]) -> bool:
        values: Dict[str, Any] = {"status": status, "updated_at": _utcnow()}
        if last_error is not None:
            values["last_error"] = last_error
        result = self.db.execute(
            update(ChunkModel)
            .where(ChunkModel.id == chunk_id, ChunkModel.status == "judging")
            .values(**values)
        )
        self.db.commit()
        return result.rowcount > 0

    def job_has_active_chunks(self, job_id: str) -> bool:
        """True while any chunk of the job is pending or judging."""
        return bool(
            self.db.execute(
                select(
                    exists().where(
                        ChunkModel.job_id == job_id,
                        ChunkModel.status.in_(ACTIVE_CHUNK_STATUSES),
                    )
                )
            ).scalar()
        )

    def fetch_job_normalized_text(self, job_id: str) -> Optional[str]:
        """Canonical full text of the job, or None when absent or empty."""
        value = self.db.execute(
            select(JobModel.normalized_text).where(JobModel.id == job_id)
        ).scalar_one_or_none()
        return value if value else None

    def mark_job_completed(self, job_id: str, pin_progress: bool = False) -> None:
        """Set status completed; keeps the first completed_at on repeats."""
        now = _utcnow()
        job = self.get_job(job_id)
        if job is None:
            return
        job.status = "completed"
        if job.completed_at is None:
            job.completed_at = now
        if pin_progress:
            job.progress_done = job.progress_total
            job.progress_percent = 100
        self.db.commit()


class FindingService:
    """Finding storage with idempotent (job_id, evidence_hash) inserts."""

    def __init__(self, db: Session):
        self.db = db

    def insert_ignore_duplicates(self, rows: Iterable[Dict[str, Any]]) -> int:
        """Insert findings, silently skipping hashes already stored for the job.

        Returns:
            Number of rows actually inserted
        """
        inserted = 0
        for row in rows:
            stmt = (
                _dialect_insert(self.db, FindingModel)
                .values(**row)
                .on_conflict_do_nothing(index_elements=["job_id", "evidence_hash"])
            )
            inserted += max(self.db.execute(stmt).rowcount, 0)
        self.db.commit()
        return inserted

    def list_for_job(self, job_id: str) -> List[FindingModel]:
        return list(
            self.db.execute(
                select(FindingModel)
                .where(FindingModel.job_id == job_id)
                .order_by(FindingModel.created_at.asc(), FindingModel.id.asc())
            ).scalars()
        )


class ChunkRunService:
    """Run cache keyed by run_key; entries are immutable once written."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, run_key: str) -> Optional[ChunkRunModel]:
        return self.db.get(ChunkRunModel, run_key)

    def put(
        self,
        run_key: str,
        job_id: Optional[str],
        ai_findings: List[Dict[str, Any]],
        router_candidates: Optional[Dict[str, Any]] = None,
        degraded_calls: int = 0,
    ) -> bool:
        """Store a run unless the key already exists. Returns True if stored."""
        stmt = (
            _dialect_insert(self.db, ChunkRunModel)
            .values(
                run_key=run_key,
                job_id=job_id,
                router_candidates=router_candidates,
                ai_findings=ai_findings,
                degraded_calls=degraded_calls,
                created_at=_utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["run_key"])
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount > 0


class ReportService:
    """One aggregated report per job."""

    def __init__(self, db: Session):
        self.db = db

    def get_for_job(self, job_id: str) -> Optional[ReportModel]:
        return self.db.execute(
            select(ReportModel).where(ReportModel.job_id == job_id)
        ).scalar_one_or_none()

    def upsert(
        self,
        job: JobModel,
        summary: Dict[str, Any],
        report_html: str,
    ) -> None:
        """Insert the report, or overwrite it if one exists for the job."""
        totals = summary["totals"]
        values = {
            "script_id": job.script_id,
            "version_id": job.version_id,
            "summary_json": summary,
            "report_html": report_html,
            "findings_count": totals["findings_count"],
            "severity_counts": totals["severity_counts"],
        }
        now = _utcnow()
        stmt = (
            _dialect_insert(self.db, ReportModel)
            .values(id=str(uuid.uuid4()), job_id=job.id, created_at=now, **values)
            .on_conflict_do_update(
                index_elements=["job_id"], set_={**values, "updated_at": now}
            )
        )
        self.db.execute(stmt)
        self.db.commit()


class LexiconTermService:
    """Read access to the lexicon term store."""

    def __init__(self, db: Session):
        self.db = db

    def list_active(self) -> List[LexiconTermModel]:
        return list(
            self.db.execute(
                select(LexiconTermModel)
                .where(LexiconTermModel.is_active.is_(True))
                .order_by(LexiconTermModel.term.asc())
            ).scalars()
        )

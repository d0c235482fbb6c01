"""
SQLAlchemy models for analysis jobs, chunks, findings, run cache and reports.
"""

import uuid
from typing import Any, Dict

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from .base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


SEVERITIES = ("low", "medium", "high", "critical")

job_status_enum = Enum("queued", "running", "completed", name="analysis_job_status")
chunk_status_enum = Enum("pending", "judging", "done", "failed", name="analysis_chunk_status")
finding_source_enum = Enum("ai", "manual", "lexicon_mandatory", name="finding_source")
severity_enum = Enum(*SEVERITIES, name="finding_severity")
severity_floor_enum = Enum(*SEVERITIES, name="lexicon_severity_floor")
term_type_enum = Enum("word", "phrase", "regex", name="lexicon_term_type")
enforcement_mode_enum = Enum(
    "soft_signal", "mandatory_finding", name="lexicon_enforcement_mode"
)


class JobModel(Base):
    """One analysis run over a specific script version.

    Created by the job intake service; this worker only moves it forward
    (queued -> running -> completed) and updates progress.
    """

    __tablename__ = "analysis_jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    script_id = Column(String(64), nullable=False, index=True)
    version_id = Column(String(64), nullable=False, index=True)

    status = Column(job_status_enum, nullable=False, default="queued", index=True)

    # Progress: one unit per chunk plus one for aggregation
    progress_total = Column(Integer, nullable=False, default=0)
    progress_done = Column(Integer, nullable=False, default=0)
    progress_percent = Column(Integer, nullable=False, default=0)

    # Canonical full text used to derive exact evidence excerpts
    normalized_text = Column(Text, nullable=True)
    # Model/prompt configuration captured when the job was created
    config_snapshot = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_analysis_jobs_status_created", "status", "created_at"),)


class ChunkModel(Base):
    """A contiguous slice of a job's text; the unit of claimed work."""

    __tablename__ = "analysis_chunks"

    id = Column(String(36), primary_key=True, default=_new_id)
    job_id = Column(String(36), ForeignKey("analysis_jobs.id"), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    text = Column(Text, nullable=False, default="")

    # Global character offsets and line numbers within the canonical text
    start_offset = Column(Integer, nullable=False, default=0)
    end_offset = Column(Integer, nullable=False, default=0)
    start_line = Column(Integer, nullable=False, default=1)
    end_line = Column(Integer, nullable=False, default=1)

    status = Column(chunk_status_enum, nullable=False, default="pending")
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("job_id", "chunk_index", name="uq_analysis_chunks_job_index"),
        Index("ix_analysis_chunks_job_status", "job_id", "status"),
    )


class FindingModel(Base):
    """One taxonomy violation, identified per job by its evidence hash."""

    __tablename__ = "analysis_findings"

    id = Column(String(36), primary_key=True, default=_new_id)
    job_id = Column(String(36), ForeignKey("analysis_jobs.id"), nullable=False, index=True)
    script_id = Column(String(64), nullable=False)
    version_id = Column(String(64), nullable=False)

    source = Column(finding_source_enum, nullable=False, default="ai")
    article_id = Column(Integer, nullable=False, index=True)
    atom_id = Column(String(16), nullable=True)
    severity = Column(severity_enum, nullable=False)
    confidence = Column(Float, nullable=True)
    is_interpretive = Column(Boolean, nullable=False, default=False)

    title = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    evidence_snippet = Column(Text, nullable=False, default="")

    start_offset_global = Column(Integer, nullable=True)
    end_offset_global = Column(Integer, nullable=True)
    start_line_chunk = Column(Integer, nullable=True)
    end_line_chunk = Column(Integer, nullable=True)
    location = Column(JSON, nullable=True)

    evidence_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    __table_args__ = (
        UniqueConstraint("job_id", "evidence_hash", name="uq_analysis_findings_job_hash"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "script_id": self.script_id,
            "version_id": self.version_id,
            "source": self.source,
            "article_id": self.article_id,
            "atom_id": self.atom_id,
            "severity": self.severity,
            "confidence": self.confidence,
            "is_interpretive": self.is_interpretive,
            "title": self.title,
            "description": self.description,
            "evidence_snippet": self.evidence_snippet,
            "start_offset_global": self.start_offset_global,
            "end_offset_global": self.end_offset_global,
            "start_line_chunk": self.start_line_chunk,
            "end_line_chunk": self.end_line_chunk,
            "location": self.location or {},
            "evidence_hash": self.evidence_hash,
        }


class ChunkRunModel(Base):
    """Cached AI output for one (chunk text, configuration) run key.

    Rows are written once and never updated; the run key is global so an
    identical chunk in a later job reuses the same entry.
    """

    __tablename__ = "analysis_chunk_runs"

    run_key = Column(String(64), primary_key=True)
    job_id = Column(String(36), nullable=True, index=True)
    router_candidates = Column(JSON, nullable=True)
    ai_findings = Column(JSON, nullable=False, default=list)
    # Judge calls that produced nothing because of transport or schema failure
    degraded_calls = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())


class ReportModel(Base):
    """Aggregated report, one per job."""

    __tablename__ = "analysis_reports"

    id = Column(String(36), primary_key=True, default=_new_id)
    job_id = Column(String(36), ForeignKey("analysis_jobs.id"), nullable=False, unique=True)
    script_id = Column(String(64), nullable=False)
    version_id = Column(String(64), nullable=False)
    summary_json = Column(JSON, nullable=False)
    report_html = Column(Text, nullable=False)
    findings_count = Column(Integer, nullable=False, default=0)
    severity_counts = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())


class LexiconTermModel(Base):
    """Deterministic term mapped to a taxonomy article."""

    __tablename__ = "lexicon_terms"

    id = Column(String(36), primary_key=True, default=_new_id)
    term = Column(Text, nullable=False)
    term_type = Column(term_type_enum, nullable=False, default="word")
    severity_floor = Column(severity_floor_enum, nullable=False, default="medium")
    enforcement_mode = Column(enforcement_mode_enum, nullable=False, default="soft_signal")
    article_id = Column(Integer, nullable=False)
    atom_id = Column(String(16), nullable=True)
    article_title = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

"""Create analysis tables

Revision ID: a0c1d2e3f4b5
Revises:
Create Date: 2026-10-19

Jobs, chunks, findings, run cache, reports, lexicon terms and the
audit event log used by the compliance worker.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "a0c1d2e3f4b5"
down_revision = None
branch_labels = None
depends_on = None

SEVERITIES = ("low", "medium", "high", "critical")


def upgrade() -> None:
    op.create_table(
        "analysis_jobs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("script_id", sa.String(length=64), nullable=False),
        sa.Column("version_id", sa.String(length=64), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "queued", "running", "completed",
                name="analysis_job_status",
                create_constraint=True,
            ),
            nullable=False,
            server_default="queued",
        ),
        sa.Column("progress_total", sa.Integer, nullable=False, server_default="0"),
        sa.Column("progress_done", sa.Integer, nullable=False, server_default="0"),
        sa.Column("progress_percent", sa.Integer, nullable=False, server_default="0"),
        sa.Column("normalized_text", sa.Text, nullable=True),
        sa.Column("config_snapshot", sa.JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_analysis_jobs_script_id", "analysis_jobs", ["script_id"])
    op.create_index("ix_analysis_jobs_version_id", "analysis_jobs", ["version_id"])
    op.create_index("ix_analysis_jobs_status", "analysis_jobs", ["status"])
    op.create_index(
        "ix_analysis_jobs_status_created", "analysis_jobs", ["status", "created_at"]
    )

    op.create_table(
        "analysis_chunks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "job_id",
            sa.String(length=36),
            sa.ForeignKey("analysis_jobs.id"),
            nullable=False,
        ),
        sa.Column("chunk_index", sa.Integer, nullable=False),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column("start_offset", sa.Integer, nullable=False, server_default="0"),
        sa.Column("end_offset", sa.Integer, nullable=False, server_default="0"),
        sa.Column("start_line", sa.Integer, nullable=False, server_default="1"),
        sa.Column("end_line", sa.Integer, nullable=False, server_default="1"),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "judging", "done", "failed",
                name="analysis_chunk_status",
                create_constraint=True,
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("job_id", "chunk_index", name="uq_analysis_chunks_job_index"),
    )
    op.create_index(
        "ix_analysis_chunks_job_status", "analysis_chunks", ["job_id", "status"]
    )

    op.create_table(
        "analysis_findings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "job_id",
            sa.String(length=36),
            sa.ForeignKey("analysis_jobs.id"),
            nullable=False,
        ),
        sa.Column("script_id", sa.String(length=64), nullable=False),
        sa.Column("version_id", sa.String(length=64), nullable=False),
        sa.Column(
            "source",
            sa.Enum(
                "ai", "manual", "lexicon_mandatory",
                name="finding_source",
                create_constraint=True,
            ),
            nullable=False,
            server_default="ai",
        ),
        sa.Column("article_id", sa.Integer, nullable=False),
        sa.Column("atom_id", sa.String(length=16), nullable=True),
        sa.Column(
            "severity",
            sa.Enum(*SEVERITIES, name="finding_severity", create_constraint=True),
            nullable=False,
        ),
        sa.Column("confidence", sa.Float, nullable=True),
        sa.Column("is_interpretive", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("evidence_snippet", sa.Text, nullable=False),
        sa.Column("start_offset_global", sa.Integer, nullable=True),
        sa.Column("end_offset_global", sa.Integer, nullable=True),
        sa.Column("start_line_chunk", sa.Integer, nullable=True),
        sa.Column("end_line_chunk", sa.Integer, nullable=True),
        sa.Column("location", sa.JSON, nullable=True),
        sa.Column("evidence_hash", sa.String(length=64), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "job_id", "evidence_hash", name="uq_analysis_findings_job_hash"
        ),
    )
    op.create_index("ix_analysis_findings_job_id", "analysis_findings", ["job_id"])
    op.create_index("ix_analysis_findings_article_id", "analysis_findings", ["article_id"])

    op.create_table(
        "analysis_chunk_runs",
        sa.Column("run_key", sa.String(length=64), primary_key=True),
        sa.Column("job_id", sa.String(length=36), nullable=True),
        sa.Column("router_candidates", sa.JSON, nullable=True),
        sa.Column("ai_findings", sa.JSON, nullable=False),
        sa.Column("degraded_calls", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_analysis_chunk_runs_job_id", "analysis_chunk_runs", ["job_id"])

    op.create_table(
        "analysis_reports",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "job_id",
            sa.String(length=36),
            sa.ForeignKey("analysis_jobs.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("script_id", sa.String(length=64), nullable=False),
        sa.Column("version_id", sa.String(length=64), nullable=False),
        sa.Column("summary_json", sa.JSON, nullable=False),
        sa.Column("report_html", sa.Text, nullable=False),
        sa.Column("findings_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("severity_counts", sa.JSON, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "lexicon_terms",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("term", sa.Text, nullable=False),
        sa.Column(
            "term_type",
            sa.Enum("word", "phrase", "regex", name="lexicon_term_type", create_constraint=True),
            nullable=False,
            server_default="word",
        ),
        sa.Column(
            "severity_floor",
            sa.Enum(*SEVERITIES, name="lexicon_severity_floor", create_constraint=True),
            nullable=False,
            server_default="medium",
        ),
        sa.Column(
            "enforcement_mode",
            sa.Enum(
                "soft_signal", "mandatory_finding",
                name="lexicon_enforcement_mode",
                create_constraint=True,
            ),
            nullable=False,
            server_default="soft_signal",
        ),
        sa.Column("article_id", sa.Integer, nullable=False),
        sa.Column("atom_id", sa.String(length=16), nullable=True),
        sa.Column("article_title", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_lexicon_terms_is_active", "lexicon_terms", ["is_active"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column(
            "actor_kind",
            sa.Enum(
                "human", "agent", "system",
                name="audit_actor_kind",
                create_constraint=True,
            ),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(length=128), nullable=True),
        sa.Column(
            "occurred_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("target_type", sa.String(length=50), nullable=False),
        sa.Column("target_id", sa.String(length=128), nullable=False),
        sa.Column("target_label", sa.Text, nullable=True),
        sa.Column(
            "result_status",
            sa.Enum("success", "failure", name="audit_result_status", create_constraint=True),
            nullable=False,
        ),
        sa.Column("result_message", sa.Text, nullable=True),
    )
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
    op.create_index("ix_audit_events_target", "audit_events", ["target_type", "target_id"])
    op.create_index("ix_audit_events_type_ts", "audit_events", ["event_type", "occurred_at"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("lexicon_terms")
    op.drop_table("analysis_reports")
    op.drop_table("analysis_chunk_runs")
    op.drop_table("analysis_findings")
    op.drop_table("analysis_chunks")
    op.drop_table("analysis_jobs")

    # Drop PostgreSQL enum types (no-op for SQLite)
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name in (
            "audit_result_status",
            "audit_actor_kind",
            "lexicon_enforcement_mode",
            "lexicon_term_type",
            "lexicon_severity_floor",
            "finding_severity",
            "finding_source",
            "analysis_chunk_status",
            "analysis_job_status",
        ):
            op.execute(f"DROP TYPE IF EXISTS {name}")

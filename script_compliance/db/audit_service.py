"""
Audit event service.

Audit logging is best-effort: a failed write is rolled back and logged, and
never raised into the caller. Callers commit their own work before emitting
so a rollback here only discards the audit row.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from ulid import ULID

from .audit_models import AuditEventModel

logger = logging.getLogger(__name__)

ANALYSIS_STARTED = "ANALYSIS_STARTED"
ANALYSIS_COMPLETED = "ANALYSIS_COMPLETED"


def generate_ulid() -> str:
    """Generate a ULID for audit entries."""
    return str(ULID())


class AuditSink(Protocol):
    """Anything that can record an audit event."""

    def emit(
        self,
        event_type: str,
        target_type: str,
        target_id: str,
        target_label: Optional[str] = None,
        result_status: str = "success",
        result_message: Optional[str] = None,
    ) -> Optional[AuditEventModel]:
        ...


class AuditService:
    """Writes audit events to the ``audit_events`` table.

    Usage:
        audit = AuditService(db_session)
        audit.emit("ANALYSIS_STARTED", "task", job.id, target_label=job.script_id)
    """

    def __init__(self, db: Session):
        self.db = db

    def emit(
        self,
        event_type: str,
        target_type: str,
        target_id: str,
        target_label: Optional[str] = None,
        result_status: str = "success",
        result_message: Optional[str] = None,
    ) -> Optional[AuditEventModel]:
        """Append one event with actor fixed to ``system``.

        Returns:
            The stored AuditEventModel, or None if the write failed
        """
        entry = AuditEventModel(
            id=generate_ulid(),
            event_type=event_type,
            actor_kind="system",
            actor_id=None,
            occurred_at=datetime.now(timezone.utc),
            target_type=target_type,
            target_id=target_id,
            target_label=target_label,
            result_status=result_status,
            result_message=result_message,
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(
                f"Audit write failed for {event_type} {target_type}:{target_id}: {e}"
            )
            return None
        return entry

    # Query methods

    def query_by_target(
        self,
        target_type: str,
        target_id: str,
        limit: int = 100,
    ) -> List[AuditEventModel]:
        """Audit history for one target, newest first."""
        return (
            self.db.query(AuditEventModel)
            .filter(
                AuditEventModel.target_type == target_type,
                AuditEventModel.target_id == target_id,
            )
            .order_by(desc(AuditEventModel.occurred_at), desc(AuditEventModel.id))
            .limit(limit)
            .all()
        )

    def query_by_event_type(self, event_type: str, limit: int = 100) -> List[AuditEventModel]:
        """All events of one type, newest first."""
        return (
            self.db.query(AuditEventModel)
            .filter(AuditEventModel.event_type == event_type)
            .order_by(desc(AuditEventModel.occurred_at), desc(AuditEventModel.id))
            .limit(limit)
            .all()
        )

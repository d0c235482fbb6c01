"""
Audit event database model.

Append-only record of lifecycle milestones (analysis started/completed).
Rows are never updated or deleted.
"""

from typing import Any, Dict

from sqlalchemy import Column, DateTime, Enum, Index, String, Text
from sqlalchemy.sql import func

from .base import Base


audit_actor_kind_enum = Enum(
    "human",
    "agent",
    "system",
    name="audit_actor_kind",
)

audit_result_status_enum = Enum(
    "success",
    "failure",
    name="audit_result_status",
)


class AuditEventModel(Base):
    """One audit event."""

    __tablename__ = "audit_events"

    # ULID for sortability and uniqueness
    id = Column(String(36), primary_key=True)

    event_type = Column(String(64), nullable=False, index=True)

    # This worker always writes actor_kind=system with no actor id
    actor_kind = Column(audit_actor_kind_enum, nullable=False, default="system")
    actor_id = Column(String(128), nullable=True)

    occurred_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        index=True,
    )

    target_type = Column(String(50), nullable=False)
    target_id = Column(String(128), nullable=False)
    target_label = Column(Text, nullable=True)

    result_status = Column(audit_result_status_enum, nullable=False, default="success")
    result_message = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_audit_events_target", "target_type", "target_id"),
        Index("ix_audit_events_type_ts", "event_type", "occurred_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "event_type": self.event_type,
            "actor_kind": self.actor_kind,
            "actor_id": self.actor_id,
            "occurred_at": self.occurred_at.isoformat() if self.occurred_at else None,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "target_label": self.target_label,
            "result_status": self.result_status,
            "result_message": self.result_message,
        }

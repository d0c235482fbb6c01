"""
Database package for the compliance worker.
"""

from .audit_models import AuditEventModel
from .audit_service import ANALYSIS_COMPLETED, ANALYSIS_STARTED, AuditService
from .base import Base, create_db_engine, get_engine, get_session_local, init_database
from .models import (
    ChunkModel,
    ChunkRunModel,
    FindingModel,
    JobModel,
    LexiconTermModel,
    ReportModel,
)
from .services import (
    ChunkRunService,
    FindingService,
    JobService,
    LexiconTermService,
    ReportService,
)

__all__ = [
    "Base",
    "get_engine",
    "get_session_local",
    "create_db_engine",
    "init_database",
    "JobModel",
    "ChunkModel",
    "FindingModel",
    "ChunkRunModel",
    "ReportModel",
    "LexiconTermModel",
    "AuditEventModel",
    "AuditService",
    "ANALYSIS_STARTED",
    "ANALYSIS_COMPLETED",
    "JobService",
    "FindingService",
    "ChunkRunService",
    "ReportService",
    "LexiconTermService",
]

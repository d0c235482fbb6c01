"""
Exception types raised by the compliance worker.
"""

from typing import Optional


class ComplianceWorkerError(Exception):
    """Base class for worker errors."""


class ConfigurationError(ComplianceWorkerError):
    """Settings, the database backend or a job configuration snapshot is unusable."""


class TaxonomyError(ComplianceWorkerError):
    """The taxonomy reference file is missing or malformed."""


class GatewayError(ComplianceWorkerError):
    """A call to the classification service failed or timed out."""

    def __init__(self, role: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{role} call failed: {message}")
        self.role = role
        self.cause = cause


class ModelOutputError(ComplianceWorkerError):
    """Model output was not valid JSON or did not match its schema."""

"""
Script Compliance Worker

Analyzes script text against the content charter taxonomy with lexicon
matching and a router/judge model pipeline, and aggregates per-job reports.
"""

import importlib.metadata

__version__ = importlib.metadata.version("script-compliance-worker")

from .exceptions import (
    ComplianceWorkerError,
    ConfigurationError,
    GatewayError,
    ModelOutputError,
    TaxonomyError,
)

__all__ = [
    "ComplianceWorkerError",
    "ConfigurationError",
    "GatewayError",
    "ModelOutputError",
    "TaxonomyError",
]

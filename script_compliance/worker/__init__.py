"""
Compliance worker - judges analysis chunks and aggregates job reports.

Usage:
    python -m script_compliance.worker

Components:
    - loop: poll, lease, process, settle, aggregate
    - queue: chunk lease/complete/fail over the chunks table
    - pipeline: per-chunk lexicon and model stages
    - evidence: verbatim guard, micro-windows, dedup and overlap collapse
    - aggregation: report summary and job completion
"""

from .aggregation import Aggregator, build_summary
from .evidence import FindingWithGlobal, is_verbatim
from .loop import WorkerLoop, run_worker
from .pipeline import ChunkPipeline, ChunkResult
from .queue import ChunkQueue

__all__ = [
    "WorkerLoop",
    "run_worker",
    "ChunkQueue",
    "ChunkPipeline",
    "ChunkResult",
    "Aggregator",
    "build_summary",
    "FindingWithGlobal",
    "is_verbatim",
]

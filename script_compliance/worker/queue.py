"""
Chunk work queue over the relational store.

There is no broker: a chunk row's status column is the queue. ``lease`` is
a conditional ``pending -> judging`` update, so several worker processes can
poll the same tables and each chunk is handed to exactly one of them.
"""

import logging
from typing import Optional

from ..db.models import ChunkModel, JobModel
from ..db.services import JobService

logger = logging.getLogger(__name__)


class ChunkQueue:
    """lease / complete / fail over ``analysis_chunks``."""

    def __init__(self, jobs: JobService):
        self.jobs = jobs

    def next_job(self) -> Optional[JobModel]:
        return self.jobs.fetch_next_job()

    def lease(self, job_id: str) -> Optional[ChunkModel]:
        """Claim the job's earliest pending chunk.

        Returns None when the job has nothing pending or another worker won
        the claim; neither case is an error.
        """
        chunk = self.jobs.fetch_next_pending_chunk(job_id)
        if chunk is None:
            return None
        claimed = self.jobs.claim_chunk(chunk.id)
        if claimed is None:
            logger.info(f"Lost claim on chunk {chunk.id} of job {job_id}")
        return claimed

    def complete(self, chunk_id: str, job_id: str) -> None:
        """Mark the chunk done and advance job progress by one."""
        if self.jobs.set_chunk_done(chunk_id):
            self.jobs.increment_job_progress(job_id)

    def fail(self, chunk_id: str, job_id: str, error: str) -> None:
        """Mark the chunk failed; progress still advances so aggregation is not blocked."""
        if self.jobs.set_chunk_failed(chunk_id, error):
            self.jobs.increment_job_progress(job_id)
        logger.warning(f"Chunk {chunk_id} of job {job_id} failed: {error}")

"""
Compliance worker loop.

Flow per poll cycle:
1. Poll: oldest queued/running job that still has a pending chunk
2. Lease: conditional pending -> judging update on its earliest chunk
3. Process: lexicon, router, judge, reconciliation, storage
4. Settle: chunk done (or failed with the error) and progress + 1
5. Aggregate: build the report once no chunk is pending or judging

Several processes may run this loop against the same database.
"""
from __future__ import annotations

import logging
import signal
import time
import uuid
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db.audit_service import AuditService
from ..db.base import get_session_local
from ..db.models import ChunkModel, JobModel
from ..db.services import JobService
from ..lexicon import LexiconCache, db_term_loader
from ..llm import LLMGateway
from ..log_config import bind_context, clear_context, configure_logging
from ..policy import Taxonomy, get_taxonomy
from ..reporting import ReportRenderer
from .aggregation import Aggregator
from .pipeline import ChunkPipeline
from .queue import ChunkQueue

logger = logging.getLogger(__name__)


class WorkerLoop:
    """Main worker loop for processing analysis chunks."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        pipeline: Optional[ChunkPipeline] = None,
        taxonomy: Optional[Taxonomy] = None,
        lexicon: Optional[LexiconCache] = None,
        poll_interval: Optional[float] = None,
        high_recall: Optional[bool] = None,
        deterministic: Optional[bool] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize worker loop.

        Args:
            session_factory: Callable returning a new Session (default: get_session_local())
            pipeline: Chunk pipeline (default: built from the other arguments)
            taxonomy: Article catalog (default: bundled or configured file)
            lexicon: Lexicon cache (default: backed by the lexicon_terms table)
            poll_interval: Seconds between empty polls (default from config)
            high_recall: Bypass the router (default from config)
            deterministic: Force deterministic model settings (default from config)
            settings: Settings override
        """
        self.settings = settings or get_settings()
        gateway = None
        if pipeline is None:
            gateway = LLMGateway(settings=self.settings)
            gateway.ensure_configured()
        self.session_factory = session_factory or get_session_local()
        self.taxonomy = taxonomy or get_taxonomy(self.settings.taxonomy_path)
        self.lexicon = lexicon or LexiconCache(
            db_term_loader(self.session_factory),
            refresh_interval=self.settings.lexicon_refresh_seconds,
        )
        self.pipeline = pipeline or ChunkPipeline(
            gateway,
            self.lexicon,
            self.taxonomy,
            settings=self.settings,
            high_recall=high_recall,
            deterministic=deterministic,
        )
        self.renderer = ReportRenderer()
        self.poll_interval = poll_interval or self.settings.worker_poll_interval
        self.running = False
        self.worker_id = f"worker-{uuid.uuid4().hex[:8]}"

        logger.info(
            f"Worker initialized: id={self.worker_id}, "
            f"poll_interval={self.poll_interval}s, "
            f"high_recall={self.pipeline.high_recall}, "
            f"deterministic={self.pipeline.deterministic}"
        )

    def start(self) -> None:
        """Start the worker loop. Runs until stopped."""
        self.running = True
        logger.info(f"Worker {self.worker_id} starting...")
        bind_context(worker_id=self.worker_id)

        # Set up signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.lexicon.refresh()
        self.lexicon.start_auto_refresh()
        try:
            while self.running:
                try:
                    processed = self._poll_and_process()
                    if processed == 0:
                        # No work found, sleep before next poll
                        time.sleep(self.poll_interval)
                except Exception as e:
                    logger.exception(f"Error in worker loop: {e}")
                    # Sleep on error to avoid tight loop
                    time.sleep(self.poll_interval)
        finally:
            self.lexicon.stop_auto_refresh()
            clear_context()
            logger.info(f"Worker {self.worker_id} stopped")

    def run_once(self, job_id: str) -> int:
        """Drain one job's pending chunks, aggregate, and return.

        Returns:
            Number of chunks this process handled
        """
        bind_context(worker_id=self.worker_id)
        self.lexicon.refresh()
        processed = 0
        try:
            while self._has_pending(job_id):
                processed += self._poll_and_process(job_id)

            # Covers jobs whose chunks were all settled before this call
            db = self.session_factory()
            try:
                self._aggregate(db, job_id)
            finally:
                db.close()
        finally:
            clear_context()
        logger.info(f"Job {job_id} drained: {processed} chunk(s) processed by {self.worker_id}")
        return processed

    def stop(self) -> None:
        """Signal the worker to stop after the current chunk."""
        logger.info(f"Worker {self.worker_id} stopping...")
        self.running = False

    def _signal_handler(self, signum, frame) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, shutting down...")
        self.stop()

    def _has_pending(self, job_id: str) -> bool:
        db = self.session_factory()
        try:
            return JobService(db).fetch_next_pending_chunk(job_id) is not None
        finally:
            db.close()

    def _poll_and_process(self, job_id: Optional[str] = None) -> int:
        """Lease and process one chunk.

        Args:
            job_id: Restrict to this job; otherwise the oldest eligible job

        Returns:
            Number of chunks processed (0 or 1)
        """
        db = self.session_factory()
        try:
            queue = ChunkQueue(JobService(db, AuditService(db)))
            if job_id is None:
                job = queue.next_job()
            else:
                job = queue.jobs.get_job(job_id)
            if job is None:
                return 0

            chunk = queue.lease(job.id)
            if chunk is None:
                return 0

            logger.info(f"Claimed chunk {chunk.chunk_index} ({chunk.id}) of job {job.id}")
            job_key = job.id
            self._process_chunk(db, queue, job, chunk)
            self._aggregate(db, job_key)
            return 1
        finally:
            db.close()

    def _process_chunk(
        self, db: Session, queue: ChunkQueue, job: JobModel, chunk: ChunkModel
    ) -> None:
        """Run the pipeline; on any error mark the chunk failed and move on."""
        chunk_id, job_id = chunk.id, job.id
        bind_context(job_id=job_id, chunk_id=chunk_id)
        try:
            normalized_text = queue.jobs.fetch_job_normalized_text(job_id)
            self.pipeline.process(db, job, chunk, normalized_text)
            queue.complete(chunk_id, job_id)
        except Exception as e:
            db.rollback()
            logger.exception(f"Chunk {chunk_id} failed: {e}")
            queue.fail(chunk_id, job_id, str(e) or e.__class__.__name__)
        finally:
            clear_context("job_id", "chunk_id")

    def _aggregate(self, db: Session, job_id: str) -> str:
        status = Aggregator(
            db,
            self.taxonomy,
            audit=AuditService(db),
            renderer=self.renderer,
            settings=self.settings,
        ).run(job_id)
        if status == "completed":
            logger.info(f"Job {job_id} completed")
        return status


def run_worker(
    poll_interval: Optional[float] = None,
    high_recall: Optional[bool] = None,
    deterministic: Optional[bool] = None,
    once_job_id: Optional[str] = None,
) -> int:
    """Run the worker loop, or drain a single job when ``once_job_id`` is set.

    Returns:
        Number of chunks processed in run-once mode, 0 otherwise
    """
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    worker = WorkerLoop(
        poll_interval=poll_interval,
        high_recall=high_recall,
        deterministic=deterministic,
        settings=settings,
    )
    if once_job_id:
        return worker.run_once(once_job_id)
    worker.start()
    return 0

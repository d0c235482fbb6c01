"""
Chunk pipeline: one claimed chunk in, persisted findings out.

Order of work for a chunk:

1. blank text short-circuits with no findings
2. mandatory lexicon matches are stored as findings
3. the run key is computed and the run cache consulted
4. on a miss: route, judge the whole chunk, judge micro-windows for long
   chunks, dedupe and collapse overlaps, then store the run
5. AI findings are stored with hashes taken over the canonical excerpt

Re-processing the same chunk is harmless: findings are keyed by evidence
hash per job and the run cache short-circuits model calls.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db.models import ChunkModel, JobModel
from ..db.services import ChunkRunService, FindingService
from ..exceptions import GatewayError, ModelOutputError
from ..hashing import chunk_run_key, evidence_hash, lexicon_evidence_hash
from ..lexicon import LexiconCache, analyze_lexicon_matches
from ..llm.gateway import LLMGateway
from ..policy import ALWAYS_CHECK_ARTICLES, Article, Taxonomy
from ..schemas.job_config import JobConfig
from .evidence import (
    FindingWithGlobal,
    build_micro_windows,
    dedupe_by_hash,
    judge_findings_to_global,
    overlap_collapse,
    shift_findings,
)

logger = structlog.get_logger()

LEXICON_CONTEXT_CHARS = 20


@dataclass
class ChunkResult:
    """What processing one chunk produced."""

    run_key: Optional[str] = None
    cache_hit: bool = False
    skipped: bool = False
    lexicon_findings: int = 0
    ai_findings: int = 0
    inserted: int = 0
    degraded_calls: int = 0


class ChunkPipeline:
    """Turns a claimed chunk into stored findings.

    Long-lived: holds the gateway, lexicon cache and taxonomy. Store access
    goes through the session passed to ``process``.
    """

    def __init__(
        self,
        gateway: LLMGateway,
        lexicon: LexiconCache,
        taxonomy: Taxonomy,
        settings: Optional[Settings] = None,
        high_recall: Optional[bool] = None,
        deterministic: Optional[bool] = None,
    ):
        self.gateway = gateway
        self.lexicon = lexicon
        self.taxonomy = taxonomy
        self.settings = settings or get_settings()
        self.high_recall = self.settings.high_recall if high_recall is None else high_recall
        self.deterministic = (
            self.settings.deterministic_mode if deterministic is None else deterministic
        )

    def process(
        self,
        db: Session,
        job: JobModel,
        chunk: ChunkModel,
        normalized_text: Optional[str] = None,
    ) -> ChunkResult:
        """Run the chunk through lexicon and model stages and store findings.

        Args:
            db: Database session
            job: The chunk's job
            chunk: A chunk this worker has claimed
            normalized_text: Canonical full text of the job, if available

        Returns:
            ChunkResult summarizing the work done
        """
        text = chunk.text or ""
        if not text.strip():
            logger.info("chunk_empty")
            return ChunkResult(skipped=True)

        findings_store = FindingService(db)
        result = ChunkResult()
        result.lexicon_findings = self._lexicon_pass(findings_store, job, chunk, normalized_text)

        config = JobConfig.resolve(job.config_snapshot, self.settings, self.deterministic)
        run_key = chunk_run_key(
            text,
            router_model=config.router_model,
            judge_model=config.judge_model,
            temperature=config.temperature,
            seed=config.seed,
            router_prompt_hash=config.router_prompt_hash,
            judge_prompt_hash=config.judge_prompt_hash,
            logic_version=self.settings.pipeline_logic_version,
        )
        result.run_key = run_key

        # Cached runs hold offsets relative to the chunk start; the same text
        # can sit anywhere in another job or repeat within this one
        runs = ChunkRunService(db)
        cached = runs.get(run_key)
        if cached is not None:
            findings = shift_findings(
                [FindingWithGlobal.model_validate(f) for f in cached.ai_findings or []],
                chunk.start_offset,
            )
            result.cache_hit = True
            logger.info("run_cache_hit", run_key=run_key, findings=len(findings))
        else:
            logger.info("run_cache_miss", run_key=run_key)
            findings, router_candidates, degraded = self._run_models(text, chunk, config)
            result.degraded_calls = degraded
            runs.put(
                run_key,
                job.id,
                ai_findings=[
                    f.model_dump(mode="json")
                    for f in shift_findings(findings, -chunk.start_offset)
                ],
                router_candidates=router_candidates,
                degraded_calls=degraded,
            )
            if degraded:
                logger.warning("judge_calls_degraded", run_key=run_key, degraded_calls=degraded)

        result.ai_findings = len(findings)
        result.inserted = self._store_ai_findings(
            findings_store, job, findings, normalized_text, run_key
        )
        logger.info(
            "chunk_processed",
            run_key=run_key,
            lexicon_findings=result.lexicon_findings,
            ai_findings=result.ai_findings,
            inserted=result.inserted,
        )
        return result

    # Lexicon

    def _lexicon_pass(
        self,
        store: FindingService,
        job: JobModel,
        chunk: ChunkModel,
        normalized_text: Optional[str],
    ) -> int:
        analysis = analyze_lexicon_matches(chunk.text, self.lexicon)
        if analysis.soft_signals:
            logger.info("lexicon_soft_signals", count=len(analysis.soft_signals))

        rows = []
        for m in analysis.mandatory_findings:
            start = chunk.start_offset + m.match.start_index
            end = chunk.start_offset + m.match.end_index
            location: Dict[str, Any] = {"column": m.match.column}
            if normalized_text is not None and 0 <= start and end <= len(normalized_text):
                evidence = normalized_text[start:end]
                location["context_before"] = normalized_text[
                    max(0, start - LEXICON_CONTEXT_CHARS) : start
                ]
                location["context_after"] = normalized_text[end : end + LEXICON_CONTEXT_CHARS]
            else:
                evidence = m.evidence_snippet

            atom_id = self.taxonomy.normalize_atom_id(m.atom_id, m.article_id)
            if not self.taxonomy.is_valid_atom(m.article_id, atom_id):
                logger.warning(
                    "invalid_atom_cleared", article_id=m.article_id, atom_id=m.atom_id
                )
                atom_id = None

            # Hash on the job-wide line so equal chunk-local lines in
            # different chunks stay distinct
            global_line = (chunk.start_line or 1) + m.line_start - 1
            rows.append(
                {
                    "job_id": job.id,
                    "script_id": job.script_id,
                    "version_id": job.version_id,
                    "source": "lexicon_mandatory",
                    "article_id": m.article_id,
                    "atom_id": atom_id,
                    "severity": m.severity,
                    "confidence": 1.0,
                    "is_interpretive": False,
                    "title": f"Lexicon term violation: {m.term.term}",
                    "description": evidence,
                    "evidence_snippet": evidence,
                    "start_offset_global": start,
                    "end_offset_global": end,
                    "start_line_chunk": m.line_start,
                    "end_line_chunk": m.line_end,
                    "location": location,
                    "evidence_hash": lexicon_evidence_hash(
                        job.id, m.article_id, m.term.term, global_line
                    ),
                }
            )

        if not rows:
            return 0
        inserted = store.insert_ignore_duplicates(rows)
        logger.info("lexicon_findings_stored", attempted=len(rows), inserted=inserted)
        return len(rows)

    # Models

    def _select_articles(
        self, text: str, config: JobConfig
    ) -> Tuple[List[Article], Optional[Dict[str, Any]]]:
        router_candidates = None
        if self.high_recall:
            ids = self.taxonomy.scannable_article_ids()
            logger.info("router_bypassed", articles=len(ids))
        else:
            try:
                routed = self.gateway.route(text, self.taxonomy.scannable_articles(), config)
            except (GatewayError, ModelOutputError) as e:
                logger.warning("router_fallback", error=str(e))
                ids = list(ALWAYS_CHECK_ARTICLES)
            else:
                router_candidates = routed.model_dump(mode="json")
                ids = list(dict.fromkeys([*ALWAYS_CHECK_ARTICLES, *routed.article_ids()]))

        articles = []
        for article_id in ids:
            article = self.taxonomy.article(article_id)
            if article is not None and article.scannable:
                articles.append(article)
        articles = articles[: self.settings.max_judge_articles]
        logger.info("articles_selected", ids=[a.article_id for a in articles])
        return articles, router_candidates

    def _judge_span(
        self,
        text: str,
        articles: Sequence[Article],
        global_start: int,
        global_end: int,
        config: JobConfig,
    ) -> Tuple[List[FindingWithGlobal], bool]:
        outcome = self.gateway.judge(text, articles, global_start, global_end, config)
        kept, dropped = judge_findings_to_global(
            outcome.findings, text, global_start, self.taxonomy
        )
        if dropped:
            logger.info(
                "verbatim_guard_dropped",
                global_start=global_start,
                dropped=dropped,
                kept=len(kept),
            )
        return kept, outcome.degraded

    def _run_models(
        self, text: str, chunk: ChunkModel, config: JobConfig
    ) -> Tuple[List[FindingWithGlobal], Optional[Dict[str, Any]], int]:
        articles, router_candidates = self._select_articles(text, config)

        degraded = 0
        findings, failed = self._judge_span(
            text, articles, chunk.start_offset, chunk.end_offset, config
        )
        degraded += int(failed)

        windows = build_micro_windows(
            text,
            chunk.start_offset,
            threshold=self.settings.chunk_window_threshold,
            size=self.settings.micro_window_size,
            overlap=self.settings.micro_window_overlap,
        )
        for window in windows:
            window_findings, failed = self._judge_span(
                window.text, articles, window.global_start, window.global_end, config
            )
            findings.extend(window_findings)
            degraded += int(failed)

        before = len(findings)
        findings = dedupe_by_hash(findings)
        after_dedupe = len(findings)
        findings = overlap_collapse(findings, self.settings.overlap_collapse_ratio)
        logger.info(
            "findings_reconciled",
            windows=len(windows),
            before=before,
            dedupe_dropped=before - after_dedupe,
            overlap_dropped=after_dedupe - len(findings),
            final=len(findings),
        )
        return findings, router_candidates, degraded

    def _store_ai_findings(
        self,
        store: FindingService,
        job: JobModel,
        findings: Sequence[FindingWithGlobal],
        normalized_text: Optional[str],
        run_key: str,
    ) -> int:
        if not findings:
            return 0
        rows = []
        for f in findings:
            start, end = f.start_offset_global, f.end_offset_global
            if normalized_text is not None and 0 <= start < end <= len(normalized_text):
                excerpt = normalized_text[start:end]
            else:
                excerpt = f.evidence_snippet
            rows.append(
                {
                    "job_id": job.id,
                    "script_id": job.script_id,
                    "version_id": job.version_id,
                    "source": "ai",
                    "article_id": f.article_id,
                    "atom_id": f.atom_id,
                    "severity": f.severity,
                    "confidence": f.confidence,
                    "is_interpretive": f.is_interpretive,
                    "title": f.title,
                    "description": f.description,
                    "evidence_snippet": excerpt,
                    "start_offset_global": start,
                    "end_offset_global": end,
                    "start_line_chunk": f.location.start_line,
                    "end_line_chunk": f.location.end_line,
                    "location": {**f.location.model_dump(), "run_key": run_key},
                    "evidence_hash": evidence_hash(f.article_id, f.atom_id, start, end, excerpt),
                }
            )
        inserted = store.insert_ignore_duplicates(rows)
        logger.info("ai_findings_stored", attempted=len(rows), inserted=inserted)
        return inserted

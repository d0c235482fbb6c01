"""
Evidence guards and finding reconciliation for judge output.

All functions here are pure: they take findings and return new lists without
touching the store.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple

import structlog

from ..hashing import evidence_hash
from ..policy import Taxonomy
from ..schemas.model_output import JudgeFinding

logger = structlog.get_logger()

SEVERITY_RANK: Dict[str, int] = {"low": 1, "medium": 2, "high": 3, "critical": 4}

_WHITESPACE = re.compile(r"\s+")
_PUNCTUATION = re.compile(r"[^\w\s]|_")


class FindingWithGlobal(JudgeFinding):
    """A judge finding with offsets translated into the job's full text."""

    start_offset_global: int
    end_offset_global: int


@dataclass(frozen=True)
class MicroWindow:
    text: str
    global_start: int
    global_end: int


def severity_rank(severity: str) -> int:
    return SEVERITY_RANK.get(severity, 0)


def normalize_for_match(s: str) -> str:
    """NFC + collapse whitespace."""
    return _WHITESPACE.sub(" ", unicodedata.normalize("NFC", s)).strip()


def relaxed_normalize(s: str) -> str:
    """Like normalize_for_match, with punctuation removed."""
    stripped = _PUNCTUATION.sub("", unicodedata.normalize("NFC", s))
    return _WHITESPACE.sub(" ", stripped).strip()


def is_verbatim(source_text: str, snippet: str) -> bool:
    """Whether ``snippet`` occurs in ``source_text``.

    Tried first with whitespace-normalized text, then with punctuation also
    stripped. A snippet with nothing left after normalization never matches.
    """
    if not snippet or not snippet.strip():
        return False
    if normalize_for_match(snippet) in normalize_for_match(source_text):
        return True
    relaxed = relaxed_normalize(snippet)
    if not relaxed:
        return False
    return relaxed in relaxed_normalize(source_text)


def build_micro_windows(
    chunk_text: str,
    chunk_start_offset: int,
    threshold: int,
    size: int,
    overlap: int,
) -> List[MicroWindow]:
    """Overlapping windows over a long chunk; empty when the chunk is short."""
    if len(chunk_text) <= threshold:
        return []
    windows = []
    for i in range(0, len(chunk_text), size - overlap):
        end = min(i + size, len(chunk_text))
        windows.append(
            MicroWindow(
                text=chunk_text[i:end],
                global_start=chunk_start_offset + i,
                global_end=chunk_start_offset + end,
            )
        )
        if end == len(chunk_text):
            break
    return windows


def enforce_atom_ids(findings: Iterable[JudgeFinding], taxonomy: Taxonomy) -> List[JudgeFinding]:
    """Normalize atom ids and clear the ones that do not belong to the article."""
    result = []
    for f in findings:
        if not f.atom_id:
            result.append(f)
            continue
        norm = taxonomy.normalize_atom_id(f.atom_id, f.article_id)
        if taxonomy.is_valid_atom(f.article_id, norm):
            result.append(f if norm == f.atom_id else f.model_copy(update={"atom_id": norm}))
            continue
        logger.warning(
            "invalid_atom_cleared",
            article_id=f.article_id,
            atom_id=f.atom_id,
            normalized=norm,
        )
        result.append(f.model_copy(update={"atom_id": None}))
    return result


def to_global(finding: JudgeFinding, offset: int) -> FindingWithGlobal:
    return FindingWithGlobal(
        **finding.model_dump(),
        start_offset_global=offset + finding.location.start_offset,
        end_offset_global=offset + finding.location.end_offset,
    )


def shift_findings(findings: Iterable[FindingWithGlobal], delta: int) -> List[FindingWithGlobal]:
    """Move every finding's global span by ``delta`` characters."""
    return [
        f.model_copy(
            update={
                "start_offset_global": f.start_offset_global + delta,
                "end_offset_global": f.end_offset_global + delta,
            }
        )
        for f in findings
    ]


def judge_findings_to_global(
    findings: Iterable[JudgeFinding],
    source_text: str,
    offset: int,
    taxonomy: Taxonomy,
) -> Tuple[List[FindingWithGlobal], int]:
    """Atom enforcement, global offsets and the verbatim guard in one pass.

    Returns:
        (surviving findings, number dropped by the verbatim guard)
    """
    enforced = [to_global(f, offset) for f in enforce_atom_ids(findings, taxonomy)]
    kept = [f for f in enforced if is_verbatim(source_text, f.evidence_snippet)]
    return kept, len(enforced) - len(kept)


def _stronger(candidate: FindingWithGlobal, existing: FindingWithGlobal) -> bool:
    cand_rank, cur_rank = severity_rank(candidate.severity), severity_rank(existing.severity)
    if cand_rank != cur_rank:
        return cand_rank > cur_rank
    if candidate.confidence != existing.confidence:
        return candidate.confidence > existing.confidence
    return existing.is_interpretive and not candidate.is_interpretive


def dedupe_by_hash(findings: Iterable[FindingWithGlobal]) -> List[FindingWithGlobal]:
    """Keep one finding per evidence hash, preferring the stronger one."""
    by_hash: Dict[str, FindingWithGlobal] = {}
    for f in findings:
        h = evidence_hash(
            f.article_id, f.atom_id, f.start_offset_global, f.end_offset_global, f.evidence_snippet
        )
        existing = by_hash.get(h)
        if existing is None or _stronger(f, existing):
            by_hash[h] = f
    return list(by_hash.values())


def _overlap_ratio(kept: FindingWithGlobal, candidate: FindingWithGlobal) -> float:
    start = max(kept.start_offset_global, candidate.start_offset_global)
    end = min(kept.end_offset_global, candidate.end_offset_global)
    length = candidate.end_offset_global - candidate.start_offset_global
    if length <= 0:
        return 0.0
    return max(0, end - start) / length


def overlap_collapse(findings: Iterable[FindingWithGlobal], ratio: float) -> List[FindingWithGlobal]:
    """Drop findings mostly covered by a stronger one for the same article and atom.

    Within each (article_id, atom_id) group, findings are visited strongest
    first; a finding is kept unless more than ``ratio`` of its span lies
    inside an already-kept finding.
    """
    groups: Dict[Tuple[int, str], List[FindingWithGlobal]] = {}
    for f in findings:
        groups.setdefault((f.article_id, f.atom_id or ""), []).append(f)

    result: List[FindingWithGlobal] = []
    for group in groups.values():
        group.sort(key=lambda f: (-severity_rank(f.severity), -f.confidence, f.is_interpretive))
        kept: List[FindingWithGlobal] = []
        for f in group:
            if not any(_overlap_ratio(k, f) > ratio for k in kept):
                kept.append(f)
        result.extend(kept)
    return result

"""Split lexicon matches into mandatory findings and soft signals."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .cache import LexiconCache, LexiconMatch, LexiconTerm


@dataclass(frozen=True)
class LexiconFinding:
    """A mandatory-term match that must become a finding."""

    term: LexiconTerm
    match: LexiconMatch
    article_id: int
    atom_id: Optional[str]
    article_title: Optional[str]
    severity: str
    evidence_snippet: str
    line_start: int
    line_end: int


@dataclass(frozen=True)
class LexiconSignal:
    """An advisory match; surfaced in logs only."""

    term: LexiconTerm
    match: LexiconMatch
    suggested_severity: str


@dataclass
class LexiconAnalysis:
    mandatory_findings: List[LexiconFinding] = field(default_factory=list)
    soft_signals: List[LexiconSignal] = field(default_factory=list)


def analyze_lexicon_matches(text: str, cache: LexiconCache) -> LexiconAnalysis:
    analysis = LexiconAnalysis()
    for match in cache.find_matches(text):
        term = match.term
        if term.mandatory:
            analysis.mandatory_findings.append(
                LexiconFinding(
                    term=term,
                    match=match,
                    article_id=term.article_id,
                    atom_id=term.atom_id,
                    article_title=term.article_title,
                    severity=term.severity_floor,
                    evidence_snippet=match.matched_text,
                    line_start=match.line,
                    line_end=match.line + match.matched_text.count("\n"),
                )
            )
        else:
            analysis.soft_signals.append(
                LexiconSignal(term=term, match=match, suggested_severity=term.severity_floor)
            )
    return analysis

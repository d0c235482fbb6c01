"""Deterministic lexicon matching."""

from .cache import LexiconCache, LexiconMatch, LexiconTerm, db_term_loader
from .matcher import LexiconAnalysis, LexiconFinding, LexiconSignal, analyze_lexicon_matches

__all__ = [
    "LexiconCache",
    "LexiconMatch",
    "LexiconTerm",
    "db_term_loader",
    "LexiconAnalysis",
    "LexiconFinding",
    "LexiconSignal",
    "analyze_lexicon_matches",
]

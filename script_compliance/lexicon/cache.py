"""
In-memory lexicon of deterministic terms.

Readers always work against one immutable ``LexiconSnapshot``; ``refresh``
builds a new snapshot off to the side and publishes it with a single
attribute assignment, so a reader never sees a half-loaded term list.
Concurrent refreshes are coalesced: a call made while another refresh is
running returns immediately instead of queueing.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Pattern, Tuple

import structlog
from sqlalchemy.orm import Session, sessionmaker

logger = structlog.get_logger()


@dataclass(frozen=True)
class LexiconTerm:
    """One active lexicon term mapped to a taxonomy article."""

    id: str
    term: str
    term_type: str  # word | phrase | regex
    severity_floor: str
    enforcement_mode: str  # soft_signal | mandatory_finding
    article_id: int
    atom_id: Optional[str] = None
    article_title: Optional[str] = None

    @property
    def mandatory(self) -> bool:
        return self.enforcement_mode == "mandatory_finding"


@dataclass(frozen=True)
class LexiconMatch:
    """A term occurrence; line and column are 1-based within the scanned text."""

    term: LexiconTerm
    matched_text: str
    start_index: int
    end_index: int
    line: int
    column: int


@dataclass(frozen=True)
class LexiconSnapshot:
    terms: Tuple[Tuple[LexiconTerm, Pattern[str]], ...] = ()
    loaded_at: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self.terms)


def compile_term(term: LexiconTerm) -> Pattern[str]:
    """Compile a term into a case-insensitive pattern.

    Words match only when not flanked by letters, phrases match as plain
    substrings, regex terms are used as given.

    Raises:
        re.error: if a regex term is not a valid pattern
    """
    if term.term_type == "word":
        return re.compile(
            rf"(?<![^\W\d_]){re.escape(term.term)}(?![^\W\d_])", re.IGNORECASE
        )
    if term.term_type == "phrase":
        return re.compile(re.escape(term.term), re.IGNORECASE)
    return re.compile(term.term, re.IGNORECASE)


def line_and_column(text: str, index: int) -> Tuple[int, int]:
    line = text.count("\n", 0, index) + 1
    column = index - (text.rfind("\n", 0, index) + 1) + 1
    return line, column


def build_snapshot(terms: Iterable[LexiconTerm]) -> LexiconSnapshot:
    compiled = []
    for term in terms:
        if not term.term:
            continue
        try:
            compiled.append((term, compile_term(term)))
        except re.error as e:
            logger.warning("lexicon_term_invalid", term_id=term.id, term=term.term, error=str(e))
    return LexiconSnapshot(terms=tuple(compiled), loaded_at=datetime.now(timezone.utc))


class LexiconCache:
    """Swappable snapshot of active terms with optional background refresh."""

    def __init__(
        self,
        loader: Callable[[], Iterable[LexiconTerm]],
        refresh_interval: float = 120.0,
    ):
        self._loader = loader
        self.refresh_interval = refresh_interval
        self._snapshot = LexiconSnapshot()
        self._refresh_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def snapshot(self) -> LexiconSnapshot:
        return self._snapshot

    def refresh(self) -> bool:
        """Reload active terms.

        Returns:
            True if a new snapshot was published, False if the call was
            coalesced into a running refresh or the load failed (the previous
            snapshot stays in place).
        """
        if not self._refresh_lock.acquire(blocking=False):
            logger.debug("lexicon_refresh_coalesced")
            return False
        try:
            try:
                terms = list(self._loader())
            except Exception as e:
                logger.warning("lexicon_refresh_failed", error=str(e), kept=len(self._snapshot))
                return False
            self._snapshot = build_snapshot(terms)
            logger.info("lexicon_refreshed", count=len(self._snapshot))
            return True
        finally:
            self._refresh_lock.release()

    def find_matches(self, text: str) -> List[LexiconMatch]:
        """All occurrences of every term in ``text``, grouped by term order."""
        snapshot = self._snapshot
        results: List[LexiconMatch] = []
        if not text:
            return results
        for term, pattern in snapshot.terms:
            for m in pattern.finditer(text):
                if m.end() == m.start():
                    continue
                line, column = line_and_column(text, m.start())
                results.append(
                    LexiconMatch(
                        term=term,
                        matched_text=m.group(0),
                        start_index=m.start(),
                        end_index=m.end(),
                        line=line,
                        column=column,
                    )
                )
        return results

    def start_auto_refresh(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._refresh_forever, name="lexicon-refresh", daemon=True
        )
        self._thread.start()
        logger.info("lexicon_auto_refresh_started", interval_seconds=self.refresh_interval)

    def stop_auto_refresh(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _refresh_forever(self) -> None:
        while not self._stop.wait(self.refresh_interval):
            self.refresh()


def db_term_loader(session_factory: sessionmaker) -> Callable[[], List[LexiconTerm]]:
    """Loader reading active terms through a fresh session per call."""
    from ..db.services import LexiconTermService

    def load() -> List[LexiconTerm]:
        db: Session = session_factory()
        try:
            return [
                LexiconTerm(
                    id=row.id,
                    term=row.term,
                    term_type=row.term_type,
                    severity_floor=row.severity_floor,
                    enforcement_mode=row.enforcement_mode,
                    article_id=row.article_id,
                    atom_id=row.atom_id,
                    article_title=row.article_title,
                )
                for row in LexiconTermService(db).list_active()
            ]
        finally:
            db.close()

    return load

"""
Taxonomy reference: the fixed catalog of charter articles and their atoms.

The catalog is loaded once per process from a JSON document (bundled with the
package unless ``taxonomy_path`` is configured) and never mutated afterwards.
Atom identifiers use the canonical ``"<article>-<atom>"`` form; legacy
``"<article>.<atom>"`` and bare numbers are normalized on the way in.
"""
from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..exceptions import TaxonomyError

logger = logging.getLogger(__name__)

# Articles the judge always sees, whatever the router picks.
ALWAYS_CHECK_ARTICLES: Tuple[int, ...] = (4, 5, 6, 7, 8, 9, 10, 11, 16, 17, 23, 24)

_CANONICAL_ATOM = re.compile(r"^\d+-\d+$")
_ATOM_SUFFIX = re.compile(r"-(\d+)$")


class Atom(BaseModel):
    """A sub-rule of an article."""

    model_config = ConfigDict(frozen=True)

    atom_id: str
    title: str


class Article(BaseModel):
    """A charter article with its ordered atoms."""

    model_config = ConfigDict(frozen=True)

    article_id: int = Field(ge=1)
    title: str
    atoms: Tuple[Atom, ...] = ()
    admin_only: bool = False
    out_of_scope: bool = False

    @property
    def atom_ids(self) -> Tuple[str, ...]:
        return tuple(a.atom_id for a in self.atoms)

    @property
    def scannable(self) -> bool:
        return not (self.admin_only or self.out_of_scope)


class TaxonomyDocument(BaseModel):
    version: Optional[str] = None
    articles: List[Article]


def normalize_atom_id(
    raw: Union[str, int, None], article_id: Optional[int] = None
) -> Optional[str]:
    """Normalize an atom id to ``"N-M"``.

    Accepts canonical ``"5-2"``, legacy ``"5.2"`` and bare numbers (``2`` or
    ``"2"``), using ``article_id`` as the prefix when the raw value has none.
    Returns None for empty input and the stripped input when nothing numeric
    can be recovered.
    """
    if raw is None:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if _CANONICAL_ATOM.match(s):
        return s

    if "." in s:
        head, _, tail = s.partition(".")
        head_digits = re.sub(r"\D", "", head)
        tail_digits = re.sub(r"\D", "", tail)
        if tail_digits:
            prefix = int(head_digits) if head_digits else article_id
            if prefix is not None:
                return f"{prefix}-{int(tail_digits)}"

    digits = re.sub(r"\D", "", s)
    if not digits:
        return s
    if article_id is not None:
        return f"{article_id}-{int(digits)}"
    return s


def atom_numeric(atom_id: Optional[str]) -> int:
    """Numeric suffix of an atom id, for ordering ("12-5" -> 5; None -> 0)."""
    if not atom_id:
        return 0
    match = _ATOM_SUFFIX.search(str(atom_id))
    return int(match.group(1)) if match else 0


class Taxonomy:
    """Immutable, indexed view of the article/atom catalog."""

    def __init__(self, articles: Sequence[Article], version: Optional[str] = None):
        self.version = version
        self._articles: Tuple[Article, ...] = tuple(sorted(articles, key=lambda a: a.article_id))
        self._by_id: Dict[int, Article] = {}
        for art in self._articles:
            if art.article_id in self._by_id:
                raise TaxonomyError(f"Duplicate article id {art.article_id}")
            for atom in art.atoms:
                if not _CANONICAL_ATOM.match(atom.atom_id) or not atom.atom_id.startswith(
                    f"{art.article_id}-"
                ):
                    raise TaxonomyError(
                        f"Atom {atom.atom_id!r} does not belong to article {art.article_id}"
                    )
            self._by_id[art.article_id] = art

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "Taxonomy":
        """Load the catalog from ``path`` or from the bundled data file."""
        try:
            if path is not None:
                raw = Path(path).read_text(encoding="utf-8")
            else:
                raw = (
                    resources.files("script_compliance.policy")
                    .joinpath("data/taxonomy.json")
                    .read_text(encoding="utf-8")
                )
            document = TaxonomyDocument.model_validate(json.loads(raw))
        except (OSError, ValueError, ValidationError) as e:
            raise TaxonomyError(f"Cannot load taxonomy: {e}") from e

        taxonomy = cls(document.articles, version=document.version)
        logger.info(
            f"Taxonomy loaded: version={taxonomy.version}, "
            f"articles={len(taxonomy.articles)}"
        )
        return taxonomy

    @property
    def articles(self) -> Tuple[Article, ...]:
        """All articles ordered by id."""
        return self._articles

    def article(self, article_id: int) -> Optional[Article]:
        return self._by_id.get(article_id)

    def scannable_article_ids(self) -> List[int]:
        """Article ids that may receive AI or lexicon findings, ascending."""
        return [a.article_id for a in self._articles if a.scannable]

    def scannable_articles(self) -> List[Article]:
        return [a for a in self._articles if a.scannable]

    @property
    def out_of_scope_ids(self) -> frozenset:
        return frozenset(a.article_id for a in self._articles if a.out_of_scope)

    def normalize_atom_id(
        self, raw: Union[str, int, None], article_id: Optional[int] = None
    ) -> Optional[str]:
        return normalize_atom_id(raw, article_id)

    def is_valid_atom(self, article_id: int, atom_id: Union[str, int, None]) -> bool:
        """True if the atom may be attached to the article.

        Empty atom ids are always valid, as is any atom for an article that
        defines no atoms.
        """
        norm = normalize_atom_id(atom_id, article_id)
        if norm is None:
            return True
        art = self.article(article_id)
        if art is None or not art.atoms:
            return True
        return norm in art.atom_ids

    def atom_title(self, article_id: int, atom_id: Optional[str]) -> Optional[str]:
        norm = normalize_atom_id(atom_id, article_id)
        art = self.article(article_id)
        if norm is None or art is None:
            return None
        for atom in art.atoms:
            if atom.atom_id == norm:
                return atom.title
        return None


@lru_cache(maxsize=4)
def get_taxonomy(path: Optional[str] = None) -> Taxonomy:
    """Process-wide taxonomy instance (one per source path)."""
    return Taxonomy.load(path)

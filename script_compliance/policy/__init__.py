"""
Charter taxonomy reference data.
"""

from .taxonomy import (
    ALWAYS_CHECK_ARTICLES,
    Article,
    Atom,
    Taxonomy,
    atom_numeric,
    get_taxonomy,
    normalize_atom_id,
)

__all__ = [
    "ALWAYS_CHECK_ARTICLES",
    "Article",
    "Atom",
    "Taxonomy",
    "atom_numeric",
    "get_taxonomy",
    "normalize_atom_id",
]

"""Tests for the taxonomy reference."""

import json

import pytest

from script_compliance.exceptions import TaxonomyError
from script_compliance.policy import (
    ALWAYS_CHECK_ARTICLES,
    Article,
    Atom,
    Taxonomy,
    atom_numeric,
    normalize_atom_id,
)


class TestBundledTaxonomy:
    """The catalog shipped with the package."""

    def test_loads_every_article_in_order(self, taxonomy):
        ids = [a.article_id for a in taxonomy.articles]
        assert ids == list(range(1, 27))
        assert taxonomy.version

    def test_scannable_excludes_admin_and_out_of_scope(self, taxonomy):
        ids = taxonomy.scannable_article_ids()
        assert 25 not in ids
        assert 26 not in ids
        assert ids == list(range(1, 25))

    def test_out_of_scope_ids(self, taxonomy):
        assert taxonomy.out_of_scope_ids == frozenset({26})

    def test_always_check_articles_are_scannable(self, taxonomy):
        scannable = set(taxonomy.scannable_article_ids())
        assert set(ALWAYS_CHECK_ARTICLES) <= scannable

    def test_atom_title(self, taxonomy):
        assert taxonomy.atom_title(5, "5-1") == "Direct insult or degrading language"
        assert taxonomy.atom_title(5, "5.2") == "Humiliation based on appearance or disability"
        assert taxonomy.atom_title(5, "5-9") is None
        assert taxonomy.atom_title(99, "99-1") is None


class TestNormalizeAtomId:
    """Atom id normalization to the N-M form."""

    @pytest.mark.parametrize(
        "raw,article_id,expected",
        [
            ("5-2", None, "5-2"),
            ("5.2", None, "5-2"),
            (" 5.2 ", 5, "5-2"),
            ("2", 5, "5-2"),
            (2, 5, "5-2"),
            (".3", 4, "4-3"),
            (None, 5, None),
            ("", 5, None),
            ("   ", 5, None),
            ("abc", 5, "abc"),
        ],
    )
    def test_normalization(self, raw, article_id, expected):
        assert normalize_atom_id(raw, article_id) == expected

    def test_dotted_id_keeps_its_own_prefix(self):
        assert normalize_atom_id("99.1", 5) == "99-1"

    def test_bare_number_without_article_is_returned_as_is(self):
        assert normalize_atom_id("7") == "7"

    def test_atom_numeric(self):
        assert atom_numeric("12-5") == 5
        assert atom_numeric("5-10") == 10
        assert atom_numeric(None) == 0
        assert atom_numeric("abc") == 0


class TestAtomValidation:
    """is_valid_atom against article definitions."""

    def test_known_atom_is_valid(self, taxonomy):
        assert taxonomy.is_valid_atom(5, "5-2")
        assert taxonomy.is_valid_atom(5, "5.2")

    def test_foreign_atom_is_invalid(self, taxonomy):
        assert not taxonomy.is_valid_atom(5, "99-1")
        assert not taxonomy.is_valid_atom(5, "9-1")
        assert not taxonomy.is_valid_atom(5, "5-9")

    def test_empty_atom_is_always_valid(self, taxonomy):
        assert taxonomy.is_valid_atom(5, None)
        assert taxonomy.is_valid_atom(5, "")

    def test_article_without_atoms_accepts_anything(self, taxonomy):
        assert taxonomy.article(1).atoms == ()
        assert taxonomy.is_valid_atom(1, None)
        assert taxonomy.is_valid_atom(1, "1-7")


class TestTaxonomyConstruction:
    """Loading and validating custom catalogs."""

    def test_duplicate_article_rejected(self):
        with pytest.raises(TaxonomyError):
            Taxonomy([Article(article_id=1, title="a"), Article(article_id=1, title="b")])

    def test_articles_ordered_by_id(self):
        taxonomy = Taxonomy(
            [Article(article_id=7, title="b"), Article(article_id=2, title="a")]
        )
        assert [a.article_id for a in taxonomy.articles] == [2, 7]
        assert taxonomy.scannable_article_ids() == [2, 7]

    def test_atom_must_belong_to_article(self):
        with pytest.raises(TaxonomyError):
            Taxonomy(
                [Article(article_id=2, title="a", atoms=(Atom(atom_id="3-1", title="x"),))]
            )

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "taxonomy.json"
        path.write_text(
            json.dumps(
                {
                    "version": "test",
                    "articles": [
                        {"article_id": 1, "title": "One", "atoms": [{"atom_id": "1-1", "title": "x"}]},
                        {"article_id": 2, "title": "Two", "out_of_scope": True},
                    ],
                }
            ),
            encoding="utf-8",
        )
        taxonomy = Taxonomy.load(path)
        assert taxonomy.version == "test"
        assert taxonomy.scannable_article_ids() == [1]
        assert taxonomy.out_of_scope_ids == frozenset({2})

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(TaxonomyError):
            Taxonomy.load(tmp_path / "missing.json")

    def test_malformed_file_raises(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(TaxonomyError):
            Taxonomy.load(path)

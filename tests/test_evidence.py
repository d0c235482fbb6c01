"""Tests for evidence guards and finding reconciliation."""

import pytest

from script_compliance.worker.evidence import (
    build_micro_windows,
    dedupe_by_hash,
    enforce_atom_ids,
    is_verbatim,
    judge_findings_to_global,
    overlap_collapse,
    to_global,
)

from factories import make_finding


def _global(snippet, start, **kwargs):
    return to_global(make_finding(snippet, start, **kwargs), 0)


class TestVerbatimGuard:
    """Evidence must occur in the text it was judged against."""

    def test_whitespace_differences_tolerated(self):
        assert is_verbatim("He said:  you \n  fool!", "you fool")

    def test_punctuation_differences_tolerated(self):
        assert is_verbatim("you, fool", "you fool")

    def test_unicode_composition_tolerated(self):
        assert is_verbatim("Meet me at the caf\u00e9", "cafe\u0301")

    def test_hallucinated_snippet_rejected(self):
        assert not is_verbatim("A quiet scene in the kitchen.", "you fool")

    @pytest.mark.parametrize("snippet", ["", "   ", "!!", "--"])
    def test_blank_or_punctuation_only_snippet_rejected(self, snippet):
        assert not is_verbatim("hello there.", snippet)


class TestMicroWindows:
    def test_short_chunk_has_no_windows(self):
        assert build_micro_windows("x" * 100, 0, threshold=100, size=60, overlap=10) == []

    def test_window_geometry(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(150))
        windows = build_micro_windows(text, 1000, threshold=100, size=60, overlap=10)

        assert [(w.global_start, w.global_end) for w in windows] == [
            (1000, 1060),
            (1050, 1110),
            (1100, 1150),
        ]
        assert windows[1].text == text[50:110]
        assert windows[-1].text == text[100:]

    def test_last_window_reaches_end_once(self):
        windows = build_micro_windows("x" * 15000, 0, threshold=10000, size=8000, overlap=800)
        assert [(w.global_start, w.global_end) for w in windows] == [(0, 8000), (7200, 15000)]


class TestAtomEnforcement:
    def test_legacy_atom_normalized(self, taxonomy):
        (f,) = enforce_atom_ids([make_finding("x", 0, atom_id="5.2")], taxonomy)
        assert f.atom_id == "5-2"

    def test_foreign_atom_cleared(self, taxonomy):
        (f,) = enforce_atom_ids([make_finding("x", 0, atom_id="99-1")], taxonomy)
        assert f.atom_id is None
        assert f.article_id == 5

    def test_missing_atom_untouched(self, taxonomy):
        (f,) = enforce_atom_ids([make_finding("x", 0, atom_id=None)], taxonomy)
        assert f.atom_id is None

    def test_globalize_and_guard(self, taxonomy):
        text = "Hey you fool, go home."
        findings = [
            make_finding("you fool", 4),
            make_finding("hallucinated insult", 0),
        ]

        kept, dropped = judge_findings_to_global(findings, text, 500, taxonomy)

        assert dropped == 1
        assert len(kept) == 1
        assert kept[0].start_offset_global == 504
        assert kept[0].end_offset_global == 512


class TestDedupe:
    def test_identical_hash_keeps_stronger(self):
        weak = _global("you fool", 4, severity="medium")
        strong = _global("you fool", 4, severity="critical")

        result = dedupe_by_hash([weak, strong])

        assert len(result) == 1
        assert result[0].severity == "critical"

    def test_confidence_breaks_severity_tie(self):
        low = _global("you fool", 4, confidence=0.4)
        high = _global("you fool", 4, confidence=0.95)
        assert dedupe_by_hash([low, high])[0].confidence == 0.95

    def test_different_spans_both_kept(self):
        assert len(dedupe_by_hash([_global("you fool", 4), _global("you fool", 40)])) == 2


class TestOverlapCollapse:
    def test_mostly_covered_weaker_finding_dropped(self):
        outer = _global("x" * 100, 0, severity="high")
        inner = _global("x" * 90, 10, severity="medium")

        result = overlap_collapse([inner, outer], ratio=0.7)

        assert result == [outer]

    def test_exact_ratio_is_kept(self):
        strong = _global("x" * 70, 0, severity="high")
        weak = _global("x" * 100, 0, severity="low")

        assert len(overlap_collapse([strong, weak], ratio=0.7)) == 2

    def test_other_atom_is_independent(self):
        a = _global("x" * 100, 0, atom_id="5-1")
        b = _global("x" * 100, 0, atom_id="5-2")
        assert len(overlap_collapse([a, b], ratio=0.7)) == 2

    def test_disjoint_spans_kept(self):
        a = _global("x" * 10, 0)
        b = _global("x" * 10, 50)
        assert len(overlap_collapse([a, b], ratio=0.7)) == 2

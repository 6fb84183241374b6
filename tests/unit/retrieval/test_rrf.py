"""Unit tests for Reciprocal Rank Fusion and its helpers."""

from __future__ import annotations

import pytest

from planmind.retrieval.rrf import (
    fusion_stats,
    group_by_metadata,
    rrf_merge,
)
from tests.fakes import make_doc, make_fused

pytestmark = pytest.mark.unit


def _ids(fused):
    return [d.id for d in fused]


class TestRrfMerge:
    """Score formula, boost and ordering."""

    def test_consensus_beats_single_top_hit(self):
        """A doc at ranks 1, 2, 1 outranks a doc at rank 1 in one list."""
        a, b, x = make_doc("A"), make_doc("B"), make_doc("X")
        lists = [
            ("q1", [a, x]),
            ("q2", [x, a]),
            ("q3", [a]),
            ("q4", [b]),
        ]
        for boost in (True, False):
            fused = rrf_merge(lists, 60, multi_query_boost=boost)
            scores = {d.id: d.rrf_score for d in fused}
            assert scores["A"] > scores["B"]
            assert fused[0].id == "A"

    def test_score_formula_without_boost(self):
        lists = [("q1", [make_doc("A"), make_doc("B")]), ("q2", [make_doc("B")])]
        fused = rrf_merge(lists, 60, multi_query_boost=False)
        scores = {d.id: d.rrf_score for d in fused}
        assert scores["A"] == pytest.approx(1 / 61)
        assert scores["B"] == pytest.approx(1 / 62 + 1 / 61)

    def test_multi_query_boost_is_multiplicative(self):
        lists = [("q1", [make_doc("A")]), ("q2", [make_doc("A")])]
        fused = rrf_merge(lists, 60, boost_factor=0.1)
        assert fused[0].appearances == 2
        assert fused[0].rrf_score == pytest.approx((2 / 61) * 1.1)

    def test_adding_a_list_never_lowers_a_score(self):
        base = [("q1", [make_doc("A"), make_doc("B")])]
        extended = [*base, ("q2", [make_doc("C"), make_doc("A")])]
        before = {d.id: d.rrf_score for d in rrf_merge(base)}
        after = {d.id: d.rrf_score for d in rrf_merge(extended)}
        assert after["A"] > before["A"]
        assert after["B"] == pytest.approx(before["B"])

    def test_ties_keep_first_seen_order(self):
        lists = [("q1", [make_doc("A")]), ("q2", [make_doc("B")])]
        assert _ids(rrf_merge(lists)) == ["A", "B"]
        assert _ids(rrf_merge(lists)) == _ids(rrf_merge(lists))

    def test_duplicate_within_one_list_counts_once(self):
        lists = [("q1", [make_doc("A"), make_doc("A"), make_doc("B")])]
        fused = rrf_merge(lists)
        assert _ids(fused) == ["A", "B"]
        assert fused[0].appearances == 1
        assert fused[0].rrf_score == pytest.approx(1 / 61)

    def test_single_list_keeps_rank_order(self):
        docs = [make_doc(f"d{i}") for i in range(5)]
        fused = rrf_merge([("q1", docs)])
        assert _ids(fused) == [d.id for d in docs]
        assert [d.rrf_score for d in fused] == pytest.approx(
            [1 / (60 + r) for r in range(1, 6)]
        )

    def test_query_ids_and_metadata_come_from_first_sighting(self):
        first = make_doc("A", operator="First")
        second = make_doc("A", operator="Second")
        fused = rrf_merge([("q2", [first]), ("q1", [second])])
        assert fused[0].query_ids == ("q2", "q1")
        assert fused[0].metadata["operator"] == "First"

    def test_top_k_truncates(self):
        docs = [make_doc(f"d{i}") for i in range(20)]
        assert len(rrf_merge([("q1", docs)], top_k=15)) == 15

    def test_empty_input(self):
        assert rrf_merge([]) == []
        assert rrf_merge([("q1", []), ("q2", [])]) == []

    def test_invalid_parameters(self):
        with pytest.raises(ValueError, match="k_constant"):
            rrf_merge([], -1)
        with pytest.raises(ValueError, match="boost_factor"):
            rrf_merge([], boost_factor=0.0)
        # a zero boost factor is fine once boosting is off
        assert rrf_merge([], boost_factor=0.0, multi_query_boost=False) == []


class TestHelpers:
    """Stats, filtering and grouping."""

    def test_fusion_stats(self):
        lists = [
            ("q1", [make_doc("A"), make_doc("B")]),
            ("q2", [make_doc("A")]),
        ]
        fused = rrf_merge(lists)
        stats = fusion_stats(lists, fused)
        assert stats.total_queries == 2
        assert stats.total_documents == 3
        assert stats.unique_documents == 2
        assert stats.max_appearances == 2
        assert stats.avg_appearances == pytest.approx(1.5)
        assert stats.top_doc_id == "A"

    def test_fusion_stats_empty(self):
        stats = fusion_stats([("q1", [])], [])
        assert stats.total_queries == 1
        assert stats.unique_documents == 0
        assert stats.top_doc_id is None

    def test_group_by_metadata(self):
        docs = [
            make_fused("a", operator="North"),
            make_fused("b", operator="South"),
            make_fused("c", operator="North"),
            make_fused("d", operator=""),
        ]
        groups = group_by_metadata(docs, "operator")
        assert list(groups) == ["North", "South", "unknown"]
        assert _ids(groups["North"]) == ["a", "c"]

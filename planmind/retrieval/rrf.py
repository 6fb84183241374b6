"""Reciprocal Rank Fusion over per-query ranked lists."""

from __future__ import annotations

from collections.abc import Sequence

from planmind.retrieval.models import FusedDocument, FusionStats, RetrievedDocument

RankedList = tuple[str, Sequence[RetrievedDocument]]


def rrf_merge(
    lists: Sequence[RankedList],
    k_constant: int = 60,
    *,
    top_k: int = 15,
    multi_query_boost: bool = True,
    boost_factor: float = 0.1,
) -> list[FusedDocument]:
    """Rank-level Reciprocal Rank Fusion over multiple ranked lists.

    ``score(doc) = sum(1 / (k_constant + rank))`` over every list containing
    the document, with 1-based ranks. With ``multi_query_boost`` the score of a
    document found by ``n`` queries is multiplied by
    ``1 + boost_factor * (n - 1)``. Ties keep first-seen order.

    Args:
        lists: ``(query_id, ranked documents)`` pairs.
        k_constant: RRF k-constant for score calculation.
        top_k: Maximum number of fused documents returned.
        multi_query_boost: Reward documents returned by several queries.
        boost_factor: Boost per extra appearance; must be positive.

    Returns:
        list[FusedDocument]: Fused list sorted by descending RRF score.
    """
    if k_constant < 0:
        raise ValueError("k_constant must be >= 0")
    if multi_query_boost and boost_factor <= 0:
        raise ValueError("boost_factor must be positive when boosting")

    scores: dict[str, float] = {}
    query_ids: dict[str, list[str]] = {}
    first_seen: dict[str, RetrievedDocument] = {}
    for query_id, ranked in lists:
        seen_in_list: set[str] = set()
        for rank, doc in enumerate(ranked, start=1):
            if doc.id in seen_in_list:
                continue
            seen_in_list.add(doc.id)
            inc = 1.0 / (k_constant + rank)
            if doc.id not in scores:
                scores[doc.id] = inc
                query_ids[doc.id] = [query_id]
                first_seen[doc.id] = doc
            else:
                scores[doc.id] += inc
                if query_id not in query_ids[doc.id]:
                    query_ids[doc.id].append(query_id)

    fused: list[FusedDocument] = []
    for doc_id, score in scores.items():
        appearances = len(query_ids[doc_id])
        if multi_query_boost and appearances > 1:
            score *= 1.0 + boost_factor * (appearances - 1)
        doc = first_seen[doc_id]
        fused.append(
            FusedDocument(
                id=doc_id,
                content=doc.content,
                rrf_score=score,
                appearances=appearances,
                query_ids=tuple(query_ids[doc_id]),
                metadata=dict(doc.metadata),
            )
        )
    # sort is stable: equal scores keep insertion order
    fused.sort(key=lambda d: -d.rrf_score)
    return fused[:top_k]


def fusion_stats(
    lists: Sequence[RankedList], fused: Sequence[FusedDocument]
) -> FusionStats:
    """Summarize a fusion pass for logging."""
    total = sum(len(ranked) for _, ranked in lists)
    if not fused:
        return FusionStats(total_queries=len(lists), total_documents=total)
    appearances = [d.appearances for d in fused]
    return FusionStats(
        total_queries=len(lists),
        total_documents=total,
        unique_documents=len(fused),
        avg_appearances=sum(appearances) / len(appearances),
        max_appearances=max(appearances),
        top_doc_id=fused[0].id,
        top_doc_score=fused[0].rrf_score,
    )


def group_by_metadata(
    docs: Sequence[FusedDocument], key: str, default: str = "unknown"
) -> dict[str, list[FusedDocument]]:
    """Group documents by a metadata value, preserving fused order per group."""
    groups: dict[str, list[FusedDocument]] = {}
    for doc in docs:
        groups.setdefault(str(doc.metadata.get(key) or default), []).append(doc)
    return groups


__all__ = ["fusion_stats", "group_by_metadata", "rrf_merge"]

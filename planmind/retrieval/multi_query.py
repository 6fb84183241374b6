"""Multi-query retrieval with per-query failure isolation."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from typing import Any

from loguru import logger

from planmind.interfaces.protocols import EmbeddingService, VectorStore
from planmind.retrieval.models import Query, RetrievedDocument
from planmind.retrieval.rrf import RankedList
from planmind.utils.monitoring import log_error_with_context
from planmind.utils.retry import RetryPolicy, call_with_retry


class MultiQueryRetriever:
    """Fans each query out to the vector store and collects ranked lists.

    Queries run concurrently and independently. A query whose embedding or
    search fails (after retries) contributes an empty list; it never aborts
    its siblings.
    """

    def __init__(
        self,
        embedding: EmbeddingService,
        vector_store: VectorStore,
        *,
        top_k: int = 10,
        policy: RetryPolicy | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> None:
        if top_k < 1:
            raise ValueError("top_k must be >= 1")
        self._embedding = embedding
        self._vector_store = vector_store
        self._top_k = top_k
        self._policy = policy or RetryPolicy()
        self._filters = dict(filters) if filters else None

    async def _retrieve_one(self, query: Query) -> list[RetrievedDocument]:
        try:
            vector = await call_with_retry(
                lambda: self._embedding.embed(query.text),
                self._policy,
                service="embedding",
            )
            docs = await call_with_retry(
                lambda: self._vector_store.search(vector, self._top_k, self._filters),
                self._policy,
                service="vector_store",
            )
        except Exception as exc:
            log_error_with_context(exc, "retrieve_query", query_id=query.id)
            return []
        return list(docs)[: self._top_k]

    async def retrieve(self, queries: Sequence[Query]) -> list[RankedList]:
        """Search every query concurrently.

        Args:
            queries: Queries to search.

        Returns:
            list[RankedList]: ``(query_id, documents)`` pairs in query order.
        """
        start = time.perf_counter()
        results = await asyncio.gather(*(self._retrieve_one(q) for q in queries))
        elapsed_ms = (time.perf_counter() - start) * 1000
        failed = sum(1 for docs in results if not docs)
        logger.info(
            "Retrieved {} documents for {} queries ({} empty) in {:.1f}ms",
            sum(len(docs) for docs in results),
            len(queries),
            failed,
            elapsed_ms,
        )
        return [(q.id, docs) for q, docs in zip(queries, results, strict=True)]


__all__ = ["MultiQueryRetriever"]

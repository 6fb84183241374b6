"""Adaptive search loop: retrieve, fuse, grade, and rewrite when short.

Flow::

    generate queries -> [retrieve -> fuse -> grade] -> enough relevant? -> done
                              ^                            |
                              +------ rewrite (bounded) ---+

The loop runs at most ``max_rewrite_attempts + 1`` retrieval passes. Running
out of attempts never fails the search; it returns whatever relevant
documents exist with ``limited_results`` set.
"""

from __future__ import annotations

import time

from loguru import logger

from planmind.config.settings import PlanMindSettings
from planmind.interfaces.protocols import (
    ChatCompletionService,
    EmbeddingService,
    VectorStore,
)
from planmind.retrieval.grading import RelevanceGrader
from planmind.retrieval.models import (
    Diagnosis,
    FusedDocument,
    GradingResult,
    Query,
    SearchMetadata,
    SearchOutcome,
)
from planmind.retrieval.multi_query import MultiQueryRetriever
from planmind.retrieval.query_generation import QueryGenerator
from planmind.retrieval.rewrite import (
    LOW_DIVERSITY_THRESHOLD,
    MAX_REWRITE_ATTEMPTS,
    MIN_RELEVANT_DOCS,
    QueryRewriter,
    diagnose,
    diversity_score,
    should_rewrite,
)
from planmind.retrieval.rrf import fusion_stats, rrf_merge
from planmind.state.models import ClientInfo
from planmind.utils.retry import RetryPolicy


class SearchLoop:
    """Bounded retrieve -> fuse -> grade -> rewrite loop."""

    def __init__(
        self,
        generator: QueryGenerator,
        retriever: MultiQueryRetriever,
        grader: RelevanceGrader,
        rewriter: QueryRewriter,
        *,
        fusion_k: int = 60,
        fused_top_k: int = 15,
        multi_query_boost: bool = True,
        boost_factor: float = 0.1,
        min_relevant_docs: int = MIN_RELEVANT_DOCS,
        max_rewrite_attempts: int = MAX_REWRITE_ATTEMPTS,
        low_diversity_threshold: float = LOW_DIVERSITY_THRESHOLD,
    ) -> None:
        if max_rewrite_attempts < 0:
            raise ValueError("max_rewrite_attempts must be >= 0")
        self._generator = generator
        self._retriever = retriever
        self._grader = grader
        self._rewriter = rewriter
        self.fusion_k = fusion_k
        self.fused_top_k = fused_top_k
        self.multi_query_boost = multi_query_boost
        self.boost_factor = boost_factor
        self.min_relevant_docs = min_relevant_docs
        self.max_rewrite_attempts = max_rewrite_attempts
        self.low_diversity_threshold = low_diversity_threshold

    @classmethod
    def from_settings(
        cls,
        cfg: PlanMindSettings,
        *,
        completion: ChatCompletionService,
        embedding: EmbeddingService,
        vector_store: VectorStore,
    ) -> SearchLoop:
        """Wire the loop and its stages from settings."""
        rc = cfg.retrieval
        return cls(
            QueryGenerator(
                completion,
                min_queries=rc.min_queries,
                max_queries=rc.max_queries,
            ),
            MultiQueryRetriever(
                embedding,
                vector_store,
                top_k=rc.top_k_per_query,
                policy=RetryPolicy.for_retrieval(cfg),
            ),
            RelevanceGrader(completion, batch_size=rc.grading_batch_size),
            QueryRewriter(completion),
            fusion_k=rc.fusion_k,
            fused_top_k=rc.fused_top_k,
            multi_query_boost=rc.multi_query_boost,
            boost_factor=rc.boost_factor,
            min_relevant_docs=rc.min_relevant_docs,
            max_rewrite_attempts=rc.max_rewrite_attempts,
            low_diversity_threshold=rc.low_diversity_threshold,
        )

    async def _search_pass(
        self, queries: list[Query], client_info: ClientInfo
    ) -> tuple[list[FusedDocument], GradingResult]:
        ranked = await self._retriever.retrieve(queries)
        fused = rrf_merge(
            ranked,
            self.fusion_k,
            top_k=self.fused_top_k,
            multi_query_boost=self.multi_query_boost,
            boost_factor=self.boost_factor,
        )
        stats = fusion_stats(ranked, fused)
        logger.debug("Fusion stats {}", stats.model_dump())
        graded = await self._grader.grade(fused, client_info)
        return fused, graded

    async def run(self, client_info: ClientInfo) -> SearchOutcome:
        """Search plans for ``client_info``.

        Returns:
            SearchOutcome: Relevant and partially relevant documents of the
            final pass in fused order, the active queries and loop metadata.
        """
        start = time.perf_counter()
        queries = await self._generator.generate(client_info)
        rewrite_count = 0
        diagnoses: list[Diagnosis] = []

        fused, graded = await self._search_pass(queries, client_info)
        while should_rewrite(
            graded.relevant_count,
            rewrite_count,
            min_relevant_docs=self.min_relevant_docs,
            max_attempts=self.max_rewrite_attempts,
        ):
            diagnosis = diagnose(
                len(fused),
                graded.relevant_count,
                diversity_score(fused),
                low_diversity_threshold=self.low_diversity_threshold,
            )
            diagnoses.append(diagnosis)
            rewrite_count += 1
            base = next(
                (q for q in reversed(queries) if q.id.startswith("rw")), queries[0]
            )
            rewritten = await self._rewriter.rewrite(
                base, diagnosis, client_info, attempt=rewrite_count
            )
            queries = [*queries, rewritten]
            fused, graded = await self._search_pass(queries, client_info)

        relevant = graded.relevant_documents
        metadata = SearchMetadata(
            query_count=len(queries),
            rewrite_count=rewrite_count,
            relevant_docs_count=len(relevant),
            total_docs_found=len(fused),
            limited_results=len(relevant) < self.min_relevant_docs,
            execution_time_ms=round((time.perf_counter() - start) * 1000, 1),
            passes=rewrite_count + 1,
            diagnoses=tuple(diagnoses),
        )
        logger.info(
            "Search finished: {} relevant of {} fused, {} rewrites, limited={}",
            metadata.relevant_docs_count,
            metadata.total_docs_found,
            metadata.rewrite_count,
            metadata.limited_results,
        )
        return SearchOutcome(documents=relevant, queries=queries, metadata=metadata)


__all__ = ["SearchLoop"]

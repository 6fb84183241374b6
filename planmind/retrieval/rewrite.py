"""Failure diagnosis and query rewriting for the adaptive search loop."""

from __future__ import annotations

import re
from collections.abc import Sequence

from loguru import logger
from pydantic import BaseModel, Field

from planmind.interfaces.protocols import ChatCompletionService
from planmind.prompts import REWRITE_QUERY_PROMPT, describe_client_info
from planmind.retrieval.models import Diagnosis, FusedDocument, Query
from planmind.retrieval.rrf import group_by_metadata
from planmind.state.models import ClientInfo
from planmind.utils.exceptions import DEGRADABLE_EXCEPTIONS
from planmind.utils.monitoring import log_error_with_context

MAX_REWRITE_ATTEMPTS = 2
MIN_RELEVANT_DOCS = 3
LOW_DIVERSITY_THRESHOLD = 0.3

_STOP_WORDS = frozenset(
    {
        "best",
        "ideal",
        "perfect",
        "excellent",
        "specific",
        "special",
        "unique",
        "exclusive",
        "complete",
        "full",
        "total",
    }
)
_PLAN_CODE_RE = re.compile(r"\b(?:ANS|code|cod\.?)\s*[\d\-.]+|\b[A-Z]\d{3,}\b", re.I)
_SYNONYMS = {
    "health plan": "medical insurance",
    "coverage": "benefits",
    "hospital": "hospitalization",
    "consultation": "doctor visits",
    "cheap": "affordable",
    "expensive": "premium",
}


class RewriteResponse(BaseModel):
    """Structured output schema for a query rewrite."""

    rewritten_query: str = Field(min_length=10, max_length=500)
    changes: str | None = None


def diversity_score(docs: Sequence[FusedDocument], key: str = "operator") -> float:
    """Distinct ``metadata[key]`` values divided by the number of documents."""
    if not docs:
        return 0.0
    return len(group_by_metadata(docs, key)) / len(docs)


def diagnose(
    total_docs: int,
    relevant_count: int,
    diversity: float,
    *,
    low_diversity_threshold: float = LOW_DIVERSITY_THRESHOLD,
) -> Diagnosis:
    """Classify why a search pass came back short."""
    if total_docs == 0:
        return "no_results"
    if relevant_count == 0:
        return "off_topic"
    if diversity < low_diversity_threshold:
        return "low_diversity"
    return "too_few_results"


def should_rewrite(
    relevant_count: int,
    rewrite_count: int,
    *,
    min_relevant_docs: int = MIN_RELEVANT_DOCS,
    max_attempts: int = MAX_REWRITE_ATTEMPTS,
) -> bool:
    return relevant_count < min_relevant_docs and rewrite_count < max_attempts


def simplify_query(query: str) -> str:
    words = [w for w in query.split() if w.lower() not in _STOP_WORDS]
    return " ".join(words) if len(words) >= 3 else query


def remove_specific_terms(query: str) -> str:
    simplified = re.sub(r"\s+", " ", _PLAN_CODE_RE.sub("", query)).strip()
    return simplified if len(simplified) >= 15 else query


def add_client_context(query: str, client_info: ClientInfo) -> str:
    additions: list[str] = []
    if client_info.city or client_info.state:
        additions.append(client_info.city or client_info.state or "")
    if client_info.age is not None:
        if client_info.age < 30:
            additions.append("young adult")
        elif client_info.age >= 60:
            additions.append("senior")
    if client_info.dependents:
        additions.append("family")
    return f"{query} {' '.join(additions)}" if additions else query


def add_synonyms(query: str) -> str:
    lowered = query.lower()
    for term, synonym in _SYNONYMS.items():
        if term in lowered:
            # one synonym only; more drifts the embedding
            return f"{query} {synonym}"
    return query


def simple_rewrite(query: str, diagnosis: Diagnosis, client_info: ClientInfo) -> str:
    """Deterministic rewrite used when the model cannot rewrite."""
    if diagnosis == "no_results":
        return simplify_query(query)
    if diagnosis == "off_topic":
        return add_client_context(query, client_info)
    if diagnosis == "low_diversity":
        return f"{add_synonyms(query)} from different operators"
    return f"{remove_specific_terms(query)} and similar alternatives"


class QueryRewriter:
    """Produces exactly one rewritten query per diagnosed failure."""

    def __init__(self, completion: ChatCompletionService | None = None) -> None:
        self._completion = completion

    async def rewrite(
        self,
        query: Query,
        diagnosis: Diagnosis,
        client_info: ClientInfo,
        *,
        attempt: int,
    ) -> Query:
        """Rewrite ``query`` to address ``diagnosis``.

        Args:
            query: Query to rewrite.
            diagnosis: Failure mode detected by :func:`diagnose`.
            client_info: Profile used to anchor the rewrite.
            attempt: 1-based rewrite attempt, used for the new query id.

        Returns:
            Query: The rewritten query, focus ``general`` and priority 1.
        """
        text: str | None = None
        if self._completion is not None:
            prompt = REWRITE_QUERY_PROMPT.format(
                problem=diagnosis,
                query=query.text,
                client_info=describe_client_info(client_info),
            )
            try:
                result = await self._completion.complete(prompt, RewriteResponse)
                text = result.rewritten_query
            except DEGRADABLE_EXCEPTIONS as exc:
                log_error_with_context(exc, "rewrite_query", attempt=attempt)
        if text is None:
            text = simple_rewrite(query.text, diagnosis, client_info)
        if text == query.text:
            logger.warning("Rewrite attempt {} left the query unchanged", attempt)
        logger.info("Rewrote query (attempt {}, problem={})", attempt, diagnosis)
        return Query(id=f"rw{attempt}", text=text, focus="general", priority=1)


__all__ = [
    "LOW_DIVERSITY_THRESHOLD",
    "MAX_REWRITE_ATTEMPTS",
    "MIN_RELEVANT_DOCS",
    "QueryRewriter",
    "RewriteResponse",
    "diagnose",
    "diversity_score",
    "should_rewrite",
    "simple_rewrite",
]

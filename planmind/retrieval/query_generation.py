"""Query generation: a client profile becomes 3-5 diversified search queries."""

from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, Field

from planmind.interfaces.protocols import ChatCompletionService
from planmind.prompts import GENERATE_QUERIES_PROMPT, describe_client_info
from planmind.retrieval.models import Query, QueryFocus
from planmind.state.models import ClientInfo
from planmind.utils.exceptions import DEGRADABLE_EXCEPTIONS
from planmind.utils.monitoring import log_error_with_context

MIN_QUERIES = 3
MAX_QUERIES = 5

GENERIC_QUERIES = (
    "best health plans with broad coverage and a wide provider network",
    "health plans with a large hospital and laboratory network",
    "health plans with short waiting periods and national coverage",
)

GENERIC_PRICE_QUERY = "affordable health plans with the best cost-benefit per month"


class GeneratedQuery(BaseModel):
    """One query as produced by the model."""

    query: str = Field(min_length=10, max_length=500)
    focus: QueryFocus
    priority: int = Field(ge=1, le=5)


class GeneratedQueries(BaseModel):
    """Structured output schema for query generation."""

    queries: list[GeneratedQuery] = Field(
        min_length=MIN_QUERIES, max_length=MAX_QUERIES
    )


def _to_queries(
    items: list[tuple[str, QueryFocus, int]], limit: int = MAX_QUERIES
) -> list[Query]:
    queries = [
        Query(id=f"q{i}", text=text, focus=focus, priority=priority)
        for i, (text, focus, priority) in enumerate(items[:limit], start=1)
    ]
    # stable: equal priorities keep generation order
    return sorted(queries, key=lambda q: q.priority)


def _check_bounds(min_queries: int, max_queries: int) -> None:
    if not MIN_QUERIES <= min_queries <= max_queries <= MAX_QUERIES:
        raise ValueError(
            f"query bounds must satisfy {MIN_QUERIES} <= min <= max <= {MAX_QUERIES}"
        )


def fallback_queries(
    client_info: ClientInfo,
    *,
    min_queries: int = MIN_QUERIES,
    max_queries: int = MAX_QUERIES,
) -> list[Query]:
    """Deterministic queries used when the model is unavailable.

    Returns between ``min_queries`` and ``max_queries`` queries. An empty
    profile yields a generic set covering profile, coverage and price.
    """
    _check_bounds(min_queries, max_queries)
    items: list[tuple[str, QueryFocus, int]] = []

    profile = ["health plan"]
    if client_info.age is not None:
        profile.append(f"for a {client_info.age} year old")
    if client_info.city:
        profile.append(f"in {client_info.city}")
    elif client_info.state:
        profile.append(f"in {client_info.state}")
    items.append((" ".join(profile), "profile", 1))

    items.append(
        (
            "health plan coverage for consultations, exams and hospitalization",
            "coverage",
            2,
        )
    )

    if client_info.budget is not None:
        items.append(
            (
                f"health plan up to {client_info.budget:.0f} per month best value",
                "price",
                3,
            )
        )
    else:
        items.append((GENERIC_PRICE_QUERY, "price", 4))

    if client_info.dependents:
        has_children = any(
            dep.age is not None and dep.age < 18 for dep in client_info.dependents
        )
        items.append(
            (
                "family health plan with pediatric coverage for children"
                if has_children
                else "family health plan for couples with full coverage",
                "dependents",
                3,
            )
        )

    if client_info.health_conditions:
        conditions = " ".join(client_info.health_conditions)
        items.append(
            (f"health plan covering treatment for {conditions}", "coverage", 2)
        )

    for filler in GENERIC_QUERIES[: max(0, min_queries - len(items))]:
        items.append((filler, "general", 5))

    return _to_queries(items, max_queries)


class QueryGenerator:
    """Generates search queries with the completion service, or falls back."""

    def __init__(
        self,
        completion: ChatCompletionService | None = None,
        *,
        min_queries: int = MIN_QUERIES,
        max_queries: int = MAX_QUERIES,
    ) -> None:
        _check_bounds(min_queries, max_queries)
        self._completion = completion
        self.min_queries = min_queries
        self.max_queries = max_queries

    def _fallback(self, client_info: ClientInfo) -> list[Query]:
        return fallback_queries(
            client_info, min_queries=self.min_queries, max_queries=self.max_queries
        )

    async def generate(self, client_info: ClientInfo) -> list[Query]:
        """Return the configured number of queries sorted by priority (1 = highest).

        Model failures (after the completion service's own retries) degrade to
        :func:`fallback_queries` instead of failing the search.
        """
        if self._completion is None:
            return self._fallback(client_info)
        prompt = GENERATE_QUERIES_PROMPT.format(
            client_info=describe_client_info(client_info)
        )
        try:
            result = await self._completion.complete(prompt, GeneratedQueries)
        except DEGRADABLE_EXCEPTIONS as exc:
            log_error_with_context(exc, "generate_queries")
            logger.warning("Query generation failed; using fallback queries")
            return self._fallback(client_info)

        if len(result.queries) < self.min_queries:
            logger.warning(
                "Model returned {} queries (< {}); using fallback queries",
                len(result.queries),
                self.min_queries,
            )
            return self._fallback(client_info)
        queries = _to_queries(
            [(q.query, q.focus, q.priority) for q in result.queries],
            self.max_queries,
        )
        logger.info("Generated {} queries", len(queries))
        return queries


__all__ = [
    "GeneratedQueries",
    "GeneratedQuery",
    "QueryGenerator",
    "fallback_queries",
]

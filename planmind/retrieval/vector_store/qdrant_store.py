"""Qdrant-backed ``VectorStore`` adapter.

Plan chunks are stored as points with a dense vector and a payload holding
``text`` plus descriptive fields (``operator``, ``plan_id``, ``doc_type``,
...). Equality filters are translated to a Qdrant ``Filter`` of
``FieldCondition``/``MatchValue`` clauses.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from loguru import logger
from qdrant_client import AsyncQdrantClient
from qdrant_client import models as qmodels
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from planmind.config.settings import PlanMindSettings
from planmind.retrieval.models import RetrievedDocument
from planmind.utils.exceptions import TransientServiceError

QDRANT_TRANSPORT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ResponseHandlingException,
    UnexpectedResponse,
)

TEXT_KEY = "text"


def build_filter(filters: Mapping[str, Any] | None) -> qmodels.Filter | None:
    """Translate ``{key: value}`` equality filters into a Qdrant filter."""
    if not filters:
        return None
    conditions: list[qmodels.Condition] = []
    for key, value in filters.items():
        if isinstance(value, list | tuple | set):
            match: Any = qmodels.MatchAny(any=list(value))
        else:
            match = qmodels.MatchValue(value=value)
        conditions.append(qmodels.FieldCondition(key=key, match=match))
    return qmodels.Filter(must=conditions)


class QdrantVectorStore:
    """Dense similarity search over a single Qdrant collection."""

    def __init__(self, client: AsyncQdrantClient, collection: str) -> None:
        self._client = client
        self._collection = collection

    @classmethod
    def from_settings(cls, cfg: PlanMindSettings) -> QdrantVectorStore:
        vs = cfg.vector_store
        client = AsyncQdrantClient(
            url=vs.qdrant_url,
            api_key=vs.qdrant_api_key.get_secret_value() if vs.qdrant_api_key else None,
            timeout=vs.timeout_seconds,
        )
        return cls(client, vs.collection)

    async def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        filters: Mapping[str, Any] | None = None,
    ) -> list[RetrievedDocument]:
        try:
            result = await self._client.query_points(
                collection_name=self._collection,
                query=list(query_vector),
                limit=top_k,
                query_filter=build_filter(filters),
                with_payload=True,
            )
        except QDRANT_TRANSPORT_EXCEPTIONS as exc:
            raise TransientServiceError(str(exc), service="vector_store") from exc

        docs = []
        for point in result.points:
            payload = dict(point.payload or {})
            text = str(payload.pop(TEXT_KEY, "") or "")
            docs.append(
                RetrievedDocument(
                    id=str(point.id),
                    content=text,
                    score=float(point.score),
                    metadata=payload,
                )
            )
        logger.debug("Qdrant returned {} points from {}", len(docs), self._collection)
        return docs

    async def close(self) -> None:
        await self._client.close()


__all__ = ["QdrantVectorStore", "build_filter"]

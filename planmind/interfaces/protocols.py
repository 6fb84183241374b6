"""Runtime-checked protocols for the external collaborators of the engine.

Wire formats belong to the adapters; the engine only relies on these
signatures. Implementations raise ``TransientServiceError`` (or a plain
``TimeoutError``/``ConnectionError``) for retryable failures,
``ProviderError`` for rejected requests and
``SchemaViolationError`` when structured output does not validate.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel

from planmind.retrieval.models import RetrievedDocument
from planmind.state.models import ClientInfo, ConversationState, PriceQuote

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@runtime_checkable
class EmbeddingService(Protocol):
    """Turns text into a dense vector."""

    async def embed(self, text: str) -> list[float]:
        """Return the embedding of ``text``."""
        raise NotImplementedError


@runtime_checkable
class ChatCompletionService(Protocol):
    """Structured chat completion validated against a pydantic schema."""

    async def complete(self, prompt: str, schema: type[SchemaT]) -> SchemaT:
        """Return the model answer parsed as ``schema``.

        Raises:
            SchemaViolationError: If the answer does not validate.
        """
        raise NotImplementedError


@runtime_checkable
class VectorStore(Protocol):
    """Similarity search over plan documents."""

    async def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        filters: Mapping[str, Any] | None = None,
    ) -> list[RetrievedDocument]:
        """Return up to ``top_k`` documents in descending similarity order."""
        raise NotImplementedError


@runtime_checkable
class ConversationStore(Protocol):
    """Snapshot storage for conversation state, keyed by thread id."""

    async def load(self, thread_id: str) -> ConversationState | None:
        """Return the latest snapshot or ``None`` when the thread is unknown."""
        raise NotImplementedError

    async def save(self, thread_id: str, state: ConversationState) -> None:
        """Persist ``state`` as the newest snapshot of ``thread_id``."""
        raise NotImplementedError

    async def archive(self, thread_id: str) -> None:
        """Move a finished conversation out of the active namespace."""
        raise NotImplementedError


@runtime_checkable
class PriceService(Protocol):
    """ERP-backed price lookup. Price math lives outside the engine."""

    async def fetch_prices(
        self, plan_ids: Sequence[str], client_info: ClientInfo
    ) -> PriceQuote:
        """Return prices for ``plan_ids`` given the client profile."""
        raise NotImplementedError


__all__ = [
    "ChatCompletionService",
    "ConversationStore",
    "EmbeddingService",
    "PriceService",
    "SchemaT",
    "VectorStore",
]

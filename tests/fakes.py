"""Fake collaborators shared by the unit tests.

The fakes implement the runtime protocols from ``planmind.interfaces`` with
scripted behavior so retrieval and orchestration can be tested without a
model, an embedding service or a vector database.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel

from planmind.retrieval.models import FusedDocument, RetrievedDocument
from planmind.state.models import ClientInfo, PlanPrice, PriceQuote
from planmind.utils.exceptions import SchemaViolationError


def make_doc(
    doc_id: str,
    *,
    operator: str = "Acme Health",
    plan_id: str | None = None,
    content: str | None = None,
    score: float = 0.9,
) -> RetrievedDocument:
    """Build a retrieved plan document with the usual payload fields."""
    return RetrievedDocument(
        id=doc_id,
        content=content or f"Plan document {doc_id}",
        score=score,
        metadata={"operator": operator, "plan_id": plan_id or doc_id},
    )


def make_fused(
    doc_id: str,
    *,
    operator: str = "Acme Health",
    rrf_score: float = 0.016,
    plan_id: str | None = None,
) -> FusedDocument:
    """Build a fused document without a grade."""
    return FusedDocument(
        id=doc_id,
        content=f"Plan document {doc_id}",
        rrf_score=rrf_score,
        appearances=1,
        query_ids=("q1",),
        metadata={"operator": operator, "plan_id": plan_id or doc_id},
    )


class FakeCompletion:
    """Scripted ``ChatCompletionService``.

    ``responses`` maps a schema class to one of:

    - a model instance, returned on every call;
    - an exception instance, raised on every call;
    - a callable ``(prompt) -> model``;
    - a list of the above, consumed in order (the last entry repeats).

    A schema without a scripted response raises ``SchemaViolationError``.
    """

    def __init__(self, responses: Mapping[type[BaseModel], Any] | None = None):
        """Store the scripted responses and start an empty call log."""
        self.responses: dict[type[BaseModel], Any] = dict(responses or {})
        self.calls: list[tuple[str, type[BaseModel]]] = []

    def calls_for(self, schema: type[BaseModel]) -> list[str]:
        """Return the prompts sent for ``schema``."""
        return [prompt for prompt, s in self.calls if s is schema]

    async def complete(self, prompt: str, schema: type[Any]) -> Any:
        """Return or raise the next scripted value for ``schema``."""
        self.calls.append((prompt, schema))
        if schema not in self.responses:
            raise SchemaViolationError(f"no scripted response for {schema.__name__}")
        value = self.responses[schema]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, BaseException):
            raise value
        if callable(value) and not isinstance(value, BaseModel):
            value = value(prompt)
        return value


class FakeSearchBackend:
    """Embedding service and vector store in one object.

    ``embed`` registers the text and returns a one-dimensional vector holding
    its index; ``search`` maps the vector back to the text and asks
    ``results_for`` for the ranked documents. Texts containing a string from
    ``fail_on`` make ``search`` raise ``ConnectionError``.
    """

    def __init__(
        self,
        results_for: Callable[[str], Sequence[RetrievedDocument]] | None = None,
        *,
        fail_on: Sequence[str] = (),
    ) -> None:
        """Configure the result function and the failing query markers."""
        self._results_for = results_for or (lambda text: [])
        self._fail_on = tuple(fail_on)
        self.texts: list[str] = []
        self.searched: list[str] = []
        self.filters: list[Mapping[str, Any] | None] = []

    async def embed(self, text: str) -> list[float]:
        """Register ``text`` and return its index as the vector."""
        self.texts.append(text)
        return [float(len(self.texts) - 1)]

    async def search(
        self,
        query_vector: Sequence[float],
        top_k: int,
        filters: Mapping[str, Any] | None = None,
    ) -> list[RetrievedDocument]:
        """Return scripted documents for the text behind ``query_vector``."""
        text = self.texts[int(query_vector[0])]
        self.searched.append(text)
        self.filters.append(filters)
        if any(marker in text for marker in self._fail_on):
            raise ConnectionError("vector store unreachable")
        return list(self._results_for(text))[:top_k]


class FakePriceService:
    """``PriceService`` returning a fixed price per plan, or raising."""

    def __init__(self, *, price: float = 250.0, error: Exception | None = None):
        """Configure the quoted price or the error to raise."""
        self._price = price
        self._error = error
        self.calls: list[tuple[list[str], ClientInfo]] = []

    async def fetch_prices(
        self, plan_ids: Sequence[str], client_info: ClientInfo
    ) -> PriceQuote:
        """Quote every plan at the configured price."""
        self.calls.append((list(plan_ids), client_info))
        if self._error is not None:
            raise self._error
        return PriceQuote(
            prices=[
                PlanPrice(plan_id=pid, base_price=self._price, final_price=self._price)
                for pid in plan_ids
            ],
            source="mock",
        )

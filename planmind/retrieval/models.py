"""Retrieval data models shared by query generation, fusion and grading."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

QueryFocus = Literal["profile", "coverage", "price", "dependents", "general"]
GradeLabel = Literal["relevant", "partially_relevant", "irrelevant"]
Diagnosis = Literal["no_results", "too_few_results", "low_diversity", "off_topic"]


class Query(BaseModel):
    """A generated search query with its focus tag and priority (1 = highest)."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str = Field(min_length=1)
    focus: QueryFocus = "general"
    priority: int = Field(default=3, ge=1, le=5)


class RetrievedDocument(BaseModel):
    """One hit from a vector store search, in store rank order."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)


class DocumentGrade(BaseModel):
    """Relevance verdict for a fused document."""

    model_config = ConfigDict(frozen=True)

    label: GradeLabel
    reason: str = ""


class FusedDocument(BaseModel):
    """A document after Reciprocal Rank Fusion.

    ``query_ids`` lists the queries that returned the document, in the order
    they were first seen. ``metadata`` is taken from the first list the
    document appeared in.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    rrf_score: float
    appearances: int = Field(ge=1)
    query_ids: tuple[str, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)
    grade: DocumentGrade | None = None

    @property
    def is_relevant(self) -> bool:
        """True for documents graded relevant or partially relevant."""
        return self.grade is not None and self.grade.label != "irrelevant"


class FusionStats(BaseModel):
    """Summary of one fusion pass, used for logging."""

    total_queries: int = 0
    total_documents: int = 0
    unique_documents: int = 0
    avg_appearances: float = 0.0
    max_appearances: int = 0
    top_doc_id: str | None = None
    top_doc_score: float = 0.0


class GradingResult(BaseModel):
    """Outcome of a grading pass over fused documents."""

    documents: list[FusedDocument] = Field(default_factory=list)
    relevant: int = 0
    partially_relevant: int = 0
    irrelevant: int = 0
    failed: int = 0

    @property
    def relevant_documents(self) -> list[FusedDocument]:
        """Relevant and partially relevant documents in fused order."""
        return [doc for doc in self.documents if doc.is_relevant]

    @property
    def relevant_count(self) -> int:
        return self.relevant + self.partially_relevant


class SearchMetadata(BaseModel):
    """Metadata describing a completed search loop."""

    model_config = ConfigDict(frozen=True)

    query_count: int = 0
    rewrite_count: int = 0
    relevant_docs_count: int = 0
    total_docs_found: int = 0
    limited_results: bool = False
    execution_time_ms: float = 0.0
    passes: int = 0
    diagnoses: tuple[Diagnosis, ...] = ()


class SearchOutcome(BaseModel):
    """Relevant documents plus metadata returned by the search loop."""

    documents: list[FusedDocument] = Field(default_factory=list)
    queries: list[Query] = Field(default_factory=list)
    metadata: SearchMetadata = Field(default_factory=SearchMetadata)


__all__ = [
    "Diagnosis",
    "DocumentGrade",
    "FusedDocument",
    "FusionStats",
    "GradeLabel",
    "GradingResult",
    "Query",
    "QueryFocus",
    "RetrievedDocument",
    "SearchMetadata",
    "SearchOutcome",
]

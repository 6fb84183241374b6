"""Batched relevance grading of fused documents against the client profile."""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger
from pydantic import BaseModel, Field

from planmind.interfaces.protocols import ChatCompletionService
from planmind.prompts import GRADE_DOCUMENTS_PROMPT, describe_client_info
from planmind.retrieval.models import (
    DocumentGrade,
    FusedDocument,
    GradeLabel,
    GradingResult,
)
from planmind.state.models import ClientInfo
from planmind.utils.exceptions import DEGRADABLE_EXCEPTIONS
from planmind.utils.monitoring import log_error_with_context

# Content sent per document is capped to bound the request payload.
MAX_CONTENT_CHARS = 1200

MISSING_REASON = "missing_from_response"


class GradedItem(BaseModel):
    """Model verdict for one document."""

    document_id: str
    grade: GradeLabel
    reason: str = ""


class GradingResponse(BaseModel):
    """Structured output schema for a grading batch."""

    results: list[GradedItem] = Field(default_factory=list)


def _format_documents(batch: Sequence[FusedDocument]) -> str:
    blocks = []
    for doc in batch:
        operator = doc.metadata.get("operator", "unknown")
        blocks.append(
            f"[id={doc.id}] operator={operator}\n{doc.content[:MAX_CONTENT_CHARS]}"
        )
    return "\n\n".join(blocks)


def _chunk(docs: Sequence[FusedDocument], size: int) -> list[list[FusedDocument]]:
    return [list(docs[i : i + size]) for i in range(0, len(docs), size)]


class RelevanceGrader:
    """Grades fused documents in fixed-size batches.

    A batch whose request fails (after retries) or whose output does not
    validate marks all of its documents ``irrelevant`` with an error reason;
    the remaining batches are still graded.
    """

    def __init__(self, completion: ChatCompletionService, *, batch_size: int = 5):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._completion = completion
        self._batch_size = batch_size

    async def _grade_batch(
        self, batch: list[FusedDocument], profile: str
    ) -> list[FusedDocument]:
        prompt = GRADE_DOCUMENTS_PROMPT.format(
            client_info=profile, documents=_format_documents(batch)
        )
        response = await self._completion.complete(prompt, GradingResponse)
        verdicts = {item.document_id: item for item in response.results}
        graded = []
        for doc in batch:
            item = verdicts.get(doc.id)
            grade = (
                DocumentGrade(label=item.grade, reason=item.reason)
                if item is not None
                else DocumentGrade(label="irrelevant", reason=MISSING_REASON)
            )
            graded.append(doc.model_copy(update={"grade": grade}))
        return graded

    async def grade(
        self, documents: Sequence[FusedDocument], client_info: ClientInfo
    ) -> GradingResult:
        """Grade ``documents`` and return counts plus graded documents.

        Args:
            documents: Fused documents in fused order.
            client_info: Profile the documents are graded against.

        Returns:
            GradingResult: Every document with its grade, in fused order.
        """
        if not documents:
            return GradingResult()

        profile = describe_client_info(client_info)
        batches = _chunk(documents, self._batch_size)
        graded: list[FusedDocument] = []
        failed = 0
        for index, batch in enumerate(batches, start=1):
            try:
                graded.extend(await self._grade_batch(batch, profile))
            except DEGRADABLE_EXCEPTIONS as exc:
                log_error_with_context(exc, "grade_batch", batch=index)
                failed += len(batch)
                grade = DocumentGrade(
                    label="irrelevant", reason=f"grading_error:{type(exc).__name__}"
                )
                graded.extend(doc.model_copy(update={"grade": grade}) for doc in batch)

        counts: dict[str, int] = {
            "relevant": 0,
            "partially_relevant": 0,
            "irrelevant": 0,
        }
        for doc in graded:
            if doc.grade is not None:
                counts[doc.grade.label] += 1
        result = GradingResult(documents=graded, failed=failed, **counts)
        logger.info(
            "Graded {} documents in {} batches: {} relevant, {} partial, "
            "{} irrelevant ({} failed)",
            len(graded),
            len(batches),
            result.relevant,
            result.partially_relevant,
            result.irrelevant,
            failed,
        )
        return result


__all__ = ["GradedItem", "GradingResponse", "RelevanceGrader"]

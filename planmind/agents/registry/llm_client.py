"""Retry-aware completion and embedding clients.

``RetryingCompletionService`` wraps any ``ChatCompletionService`` with the
transient-failure policy (timeout plus jittered exponential backoff) and one
corrective re-prompt when the structured output does not validate. The
LangChain adapters bridge ``ChatOpenAI``/``OpenAIEmbeddings`` runnables into
the engine's protocols.
"""

from __future__ import annotations

import json
import re
from typing import Any

import openai
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from loguru import logger
from pydantic import ValidationError

from planmind.interfaces.protocols import ChatCompletionService, SchemaT
from planmind.utils.exceptions import (
    ProviderError,
    SchemaViolationError,
    TransientServiceError,
)
from planmind.utils.retry import RetryPolicy, call_with_retry

# OpenAI client failures that are worth retrying.
OPENAI_TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)

# Rejected requests (bad request, auth, context window); retrying cannot help.
PROVIDER_EXCEPTIONS: tuple[type[BaseException], ...] = (openai.APIError, ValueError)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

JSON_SYSTEM_PROMPT = (
    "Answer ONLY with a JSON object that validates against this JSON schema. "
    "Do not add prose or code fences.\n{schema}"
)

CORRECTIVE_PROMPT = (
    "{prompt}\n\nYour previous answer was rejected because it did not match "
    "the required JSON schema ({error}). Answer again with valid JSON only."
)


def parse_structured_output(text: str, schema: type[SchemaT]) -> SchemaT:
    """Validate raw model text as ``schema``.

    Raises:
        SchemaViolationError: If the text is not valid JSON for ``schema``.
    """
    cleaned = _FENCE_RE.sub("", text.strip())
    try:
        return schema.model_validate_json(cleaned)
    except ValidationError as exc:
        raise SchemaViolationError(
            f"{schema.__name__}: {exc.error_count()} validation error(s)",
            raw_output=text,
        ) from exc


class LangChainCompletionService:
    """``ChatCompletionService`` backed by a LangChain chat model."""

    def __init__(self, llm: BaseChatModel) -> None:
        self._llm = llm

    async def complete(self, prompt: str, schema: type[SchemaT]) -> SchemaT:
        schema_json = json.dumps(schema.model_json_schema())
        messages = [
            SystemMessage(content=JSON_SYSTEM_PROMPT.format(schema=schema_json)),
            HumanMessage(content=prompt),
        ]
        try:
            response = await self._llm.ainvoke(messages)
        except OPENAI_TRANSIENT_EXCEPTIONS as exc:
            raise TransientServiceError(str(exc), service="llm") from exc
        except PROVIDER_EXCEPTIONS as exc:
            raise ProviderError(
                f"llm rejected the request ({type(exc).__name__})", service="llm"
            ) from exc
        content: Any = response.content
        if not isinstance(content, str):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part)
                for part in content
            )
        return parse_structured_output(content, schema)


class LangChainEmbeddingService:
    """``EmbeddingService`` backed by LangChain ``Embeddings``."""

    def __init__(self, embeddings: Embeddings) -> None:
        self._embeddings = embeddings

    async def embed(self, text: str) -> list[float]:
        try:
            vector = await self._embeddings.aembed_query(text)
        except OPENAI_TRANSIENT_EXCEPTIONS as exc:
            raise TransientServiceError(str(exc), service="embedding") from exc
        except PROVIDER_EXCEPTIONS as exc:
            raise ProviderError(
                f"embedding rejected the request ({type(exc).__name__})",
                service="embedding",
            ) from exc
        return [float(x) for x in vector]


class RetryingCompletionService:
    """Thin retry wrapper around a ``ChatCompletionService``.

    Transient failures (timeouts, rate limits, connection errors) are retried
    under ``policy``. A ``SchemaViolationError`` triggers up to
    ``corrective_reprompts`` re-prompts that quote the validation failure; if
    the output still does not validate the error propagates so the caller can
    fall back to a static response.
    """

    def __init__(
        self,
        inner: ChatCompletionService,
        *,
        policy: RetryPolicy | None = None,
        corrective_reprompts: int = 1,
    ) -> None:
        """Instantiate the wrapper.

        Args:
            inner: Underlying completion service.
            policy: Timeout and backoff policy; defaults to ``RetryPolicy()``.
            corrective_reprompts: Re-prompts allowed after a schema violation.
        """
        if corrective_reprompts < 0:
            raise ValueError("corrective_reprompts must be >= 0")
        self._inner = inner
        self._policy = policy or RetryPolicy()
        self._corrective_reprompts = corrective_reprompts

    @property
    def inner(self) -> ChatCompletionService:
        """Return the wrapped service."""
        return self._inner

    async def complete(self, prompt: str, schema: type[SchemaT]) -> SchemaT:
        current = prompt
        for attempt in range(self._corrective_reprompts + 1):
            try:
                return await call_with_retry(
                    lambda p=current: self._inner.complete(p, schema),
                    self._policy,
                    service="llm",
                )
            except SchemaViolationError as exc:
                if attempt >= self._corrective_reprompts:
                    raise
                logger.warning(
                    "Schema violation for {} (attempt {}); re-prompting",
                    schema.__name__,
                    attempt + 1,
                )
                current = CORRECTIVE_PROMPT.format(prompt=prompt, error=exc)
        raise RuntimeError("Corrective re-prompt loop failed to return a result")


__all__ = [
    "PROVIDER_EXCEPTIONS",
    "LangChainCompletionService",
    "LangChainEmbeddingService",
    "RetryingCompletionService",
    "parse_structured_output",
]

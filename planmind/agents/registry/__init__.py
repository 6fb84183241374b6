"""Shared service clients used by the agents."""

from .llm_client import (
    LangChainCompletionService,
    LangChainEmbeddingService,
    RetryingCompletionService,
)

__all__ = [
    "LangChainCompletionService",
    "LangChainEmbeddingService",
    "RetryingCompletionService",
]

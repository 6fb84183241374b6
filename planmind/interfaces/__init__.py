"""Abstract contracts for the engine's external collaborators."""

from .protocols import (
    ChatCompletionService,
    ConversationStore,
    EmbeddingService,
    PriceService,
    VectorStore,
)

__all__ = [
    "ChatCompletionService",
    "ConversationStore",
    "EmbeddingService",
    "PriceService",
    "VectorStore",
]

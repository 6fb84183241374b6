"""Vector store adapters."""

from .qdrant_store import QdrantVectorStore

__all__ = ["QdrantVectorStore"]

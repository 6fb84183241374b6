"""Multi-query retrieval: generation, fan-out search, fusion, grading, rewrite."""

from .models import FusedDocument, Query, RetrievedDocument, SearchMetadata

__all__ = ["FusedDocument", "Query", "RetrievedDocument", "SearchMetadata"]

"""Read side of the knowledge base: scoped similarity search."""

from knowledge_ingest.services.retrieval.query_helpers import (
    extract_retrieval_query,
    is_likely_question,
)
from knowledge_ingest.services.retrieval.retrieval_service import RetrievalService

__all__ = ["RetrievalService", "extract_retrieval_query", "is_likely_question"]

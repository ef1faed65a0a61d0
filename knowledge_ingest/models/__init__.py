"""knowledge-ingest domain models — re-exports all public model classes.

    - document.py — uploaded documents, their lifecycle and the queue payload
    - rag.py      — chunks, retrieval results, scanner and ingestion outcomes
"""

from __future__ import annotations

from knowledge_ingest.models.document import (
    DocumentFormat,
    DocumentStatus,
    IngestionJob,
    KnowledgeDocument,
)
from knowledge_ingest.models.rag import (
    CorpusStats,
    IngestionResult,
    KnowledgeChunk,
    RetrievedChunk,
    TextChunk,
    ValidationResult,
)

__all__ = [
    "CorpusStats",
    "DocumentFormat",
    "DocumentStatus",
    "IngestionJob",
    "IngestionResult",
    "KnowledgeChunk",
    "KnowledgeDocument",
    "RetrievedChunk",
    "TextChunk",
    "ValidationResult",
]

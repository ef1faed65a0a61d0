"""RAG data models: chunks, retrieval results, validation and ingestion outcomes.

All models are frozen Pydantic v2 models.

RAG overview:
    1. INGESTION: an uploaded document is extracted to text and split into
       token-bounded chunks (:class:`TextChunk`).
    2. EMBEDDING: every chunk text of a document is embedded in one call.
    3. STORAGE: chunks plus vectors replace the document's previous chunk set
       (:class:`KnowledgeChunk` rows in the chunk store).
    4. RETRIEVAL: a query is embedded and the closest chunks inside the same
       tenant and collection come back as :class:`RetrievedChunk` objects.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from knowledge_ingest.models.document import DocumentStatus


# ---------------------------------------------------------------------------
# TextChunk — chunker output, before persistence.
# ---------------------------------------------------------------------------
class TextChunk(BaseModel):
    """One token-bounded span of document text produced by the chunker."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0, description="Position of the chunk in source order.")
    content: str = Field(description="The chunk's textual content.")
    token_count: int = Field(ge=0, description="Estimated tokens, ceil(len(content) / 4).")


# ---------------------------------------------------------------------------
# KnowledgeChunk — a persisted chunk row (the vector lives in the store).
# ---------------------------------------------------------------------------
class KnowledgeChunk(BaseModel):
    """A chunk as stored for retrieval.

    Every chunk belongs to exactly one document and one tenant; ``position``
    is the chunk's index in the sequence produced for that document.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str = Field(description="Unique identifier for this chunk.")
    document_id: str = Field(description="Owning document.")
    tenant_id: str = Field(description="Owning tenant.")
    collection_id: str = Field(description="Owning collection.")
    position: int = Field(ge=0, description="Index in the document's chunk sequence.")
    content: str = Field(description="The chunk's textual content.")
    token_count: int = Field(default=0, ge=0)
    created_at: datetime | None = Field(default=None)


class RetrievedChunk(BaseModel):
    """A chunk returned from a similarity query, with its score."""

    model_config = ConfigDict(frozen=True)

    chunk: KnowledgeChunk
    # Cosine similarity mapped into [0, 1]; higher is closer.
    similarity_score: float = Field(ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Scanner and pipeline outcomes
# ---------------------------------------------------------------------------
class ValidationResult(BaseModel):
    """Outcome of a content-scanner call."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


class IngestionResult(BaseModel):
    """Summary of one successful document ingestion."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    status: DocumentStatus
    chunks_created: int = Field(ge=0)
    total_tokens: int = Field(ge=0)
    ingestion_time: float = Field(ge=0.0, description="Wall-clock seconds.")
    warnings: list[str] = Field(default_factory=list)


class CorpusStats(BaseModel):
    """Chunk and document counts for one tenant/collection scope."""

    model_config = ConfigDict(frozen=True)

    total_chunks: int = Field(default=0, ge=0)
    total_documents: int = Field(default=0, ge=0)

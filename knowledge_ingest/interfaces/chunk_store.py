"""Abstract base class for chunk-and-embedding stores.

The chunk store is the write target of ingestion and the read side of
retrieval.  Its one hard invariant is that a document's chunk set is replaced
atomically: concurrent readers see either the complete previous set or the
complete new one, never a mix and never a partial set.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from knowledge_ingest.models.document import KnowledgeDocument
from knowledge_ingest.models.rag import CorpusStats, RetrievedChunk, TextChunk


# Concrete implementations (knowledge_ingest/providers/chunk_store/):
#   SQLiteChunkStore    — one transaction per replace, numpy cosine ranking
#   ChromaDBChunkStore  — generation-tagged writes behind a per-document pointer
class IChunkStore(ABC):
    """Contract for persisting and searching embedded chunks."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables/collections if they do not exist yet."""

    @abstractmethod
    async def replace_document_chunks(
        self,
        document: KnowledgeDocument,
        chunks: list[TextChunk],
        embeddings: list[list[float]],
        lease_check: Callable[[], Awaitable[None]] | None = None,
    ) -> int:
        """Atomically replace every stored chunk of *document*.

        Parameters
        ----------
        document:
            The owning document; supplies the document, tenant and
            collection ids stamped on every row.
        chunks:
            The new chunk sequence in source order.
        embeddings:
            One vector per chunk, positionally aligned with *chunks*.
        lease_check:
            Awaited inside the write, before the new set becomes visible.
            If it raises, nothing is written and the exception propagates.

        Returns
        -------
        int
            Number of chunks now stored for the document.

        Raises
        ------
        ValueError
            If *chunks* and *embeddings* differ in length.
        knowledge_ingest.utils.errors.StorageError
            If the write fails.  The previous chunk set stays visible.
        knowledge_ingest.utils.errors.LeaseLostError
            Propagated from *lease_check*.  The previous chunk set stays
            visible.
        """

    @abstractmethod
    async def delete_document_chunks(self, document_id: str) -> int:
        """Delete every chunk of a document and return how many were removed."""

    @abstractmethod
    async def search(
        self,
        query_embedding: list[float],
        tenant_id: str,
        collection_id: str,
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[RetrievedChunk]:
        """Return the *top_k* chunks most similar to *query_embedding*.

        Only chunks whose tenant and collection both match are considered.
        Results are ordered by descending similarity.
        """

    @abstractmethod
    async def count_document_chunks(self, document_id: str) -> int:
        """Return the number of chunks currently visible for a document."""

    @abstractmethod
    async def get_stats(self, tenant_id: str, collection_id: str) -> CorpusStats:
        """Return chunk and document counts for a tenant/collection scope."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the store is reachable."""

"""Tenant-scoped semantic retrieval over the ingested chunks.

The query is embedded with the same :class:`IEmbeddingProvider` used at
ingestion time (vectors from different models are not comparable), then the
chunk store is searched strictly inside one (tenant, collection) pair.

Reads never take a lock.  The chunk store's atomic replace guarantees that a
document being re-ingested is seen either with its old chunk set or its new
one.
"""

from __future__ import annotations

import structlog

from knowledge_ingest.interfaces.chunk_store import IChunkStore
from knowledge_ingest.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_ingest.models.rag import RetrievedChunk
from knowledge_ingest.services.retrieval.query_helpers import (
    extract_retrieval_query,
    is_likely_question,
)
from knowledge_ingest.utils.errors import EmbeddingServiceError, KnowledgeIngestError
from knowledge_ingest.utils.logging import get_logger

logger: structlog.BoundLogger = get_logger(__name__)

_DEFAULT_TOP_K = 5


class RetrievalService:
    """Answers "which chunks are closest to this text" for one tenant scope.

    Parameters
    ----------
    embedding_provider:
        The ingestion-time embedder.
    chunk_store:
        Store searched for nearest chunks.
    default_top_k:
        Result count when a caller does not pass one.
    min_similarity:
        Hits scoring below this are dropped.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        chunk_store: IChunkStore,
        default_top_k: int = _DEFAULT_TOP_K,
        min_similarity: float = 0.0,
    ) -> None:
        if default_top_k < 1:
            raise ValueError(f"default_top_k must be >= 1, got {default_top_k}")
        self._embedding_provider = embedding_provider
        self._chunk_store = chunk_store
        self._default_top_k = default_top_k
        self._min_similarity = min_similarity

    async def retrieve(
        self,
        query: str,
        tenant_id: str,
        collection_id: str,
        top_k: int | None = None,
    ) -> list[RetrievedChunk]:
        """Return up to *top_k* chunks of the scope, most similar first.

        Raises
        ------
        ValueError
            If *top_k* is less than 1.
        EmbeddingServiceError
            If the query cannot be embedded.
        StorageError
            If the chunk store search fails.
        """
        k = self._default_top_k if top_k is None else top_k
        if k < 1:
            raise ValueError(f"top_k must be >= 1, got {k}")
        if not query.strip():
            return []

        try:
            query_embedding = await self._embedding_provider.embed_single(query)
        except KnowledgeIngestError:
            raise
        except Exception as exc:
            raise EmbeddingServiceError(
                message=f"Query embedding failed: {exc}",
                provider_name=self._embedding_provider.get_provider_name(),
            ) from exc

        results = await self._chunk_store.search(
            query_embedding,
            tenant_id=tenant_id,
            collection_id=collection_id,
            top_k=k,
            min_similarity=self._min_similarity,
        )
        results = sorted(results, key=lambda rc: rc.similarity_score, reverse=True)[:k]

        logger.info(
            "retrieval_complete",
            tenant_id=tenant_id,
            collection_id=collection_id,
            query_length=len(query),
            top_k=k,
            results_count=len(results),
            top_score=results[0].similarity_score if results else 0.0,
        )
        return results

    async def retrieve_for_message(
        self,
        message: str,
        tenant_id: str,
        collection_id: str,
        top_k: int | None = None,
    ) -> list[RetrievedChunk]:
        """Retrieve for a conversational turn, skipping turns that ask nothing."""
        if not is_likely_question(message):
            logger.debug("retrieval_skipped_not_question", tenant_id=tenant_id)
            return []
        return await self.retrieve(
            extract_retrieval_query(message),
            tenant_id=tenant_id,
            collection_id=collection_id,
            top_k=top_k,
        )

"""ChromaDB chunk store adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IChunkStore`, using
cosine distance for similarity search.

ChromaDB has no multi-statement transactions, so replacement is built from
generations.  Every write of a document's chunks carries a fresh
``generation`` id.  A companion collection holds one pointer record per
document naming its current generation::

    1. upsert chunks of generation G'      (invisible: pointer still says G)
    2. await the caller's lease check      (on failure discard G' and stop)
    3. upsert pointer document -> G'       (single-record flip)
    4. delete chunks of every generation != G'

Search drops hits whose generation is not the document's current pointer, so
a reader sees either the complete G set or the complete G' set.

The chromadb client is synchronous; every call runs in a worker thread via
``asyncio.to_thread`` so searches and writes never stall the event loop.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

# Disable ChromaDB telemetry before importing chromadb.  A version mismatch
# between ChromaDB's bundled PostHog client and the installed one raises
# "capture() takes 1 positional argument but 3 were given".
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog

from knowledge_ingest.interfaces.chunk_store import IChunkStore
from knowledge_ingest.models.document import KnowledgeDocument
from knowledge_ingest.models.rag import CorpusStats, KnowledgeChunk, RetrievedChunk, TextChunk
from knowledge_ingest.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_POINTER_SUFFIX = "__generations"
# Pointer records need a vector; all of them share this one.
_POINTER_EMBEDDING = [1.0]
_UPSERT_BATCH = 500
_OVERFETCH = 4


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Embedding function that is never called.

    Vectors always arrive pre-computed from an :class:`IEmbeddingProvider`.
    Passing this stops ChromaDB from loading its default ONNX model when a
    collection is opened.
    """

    def __init__(self) -> None:
        pass

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "Chunks are stored with pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    @staticmethod
    def name() -> str:
        return "noop_precomputed"


class ChromaDBChunkStore(IChunkStore):
    """Chunk store backed by ChromaDB with local persistence.

    Parameters
    ----------
    persist_directory:
        Directory of the ChromaDB on-disk store.
    collection_name:
        Name of the chunk collection.  The pointer collection is named
        ``<collection_name>__generations``.
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "knowledge_chunks",
    ) -> None:
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._client = chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._collection = self._open_collection(collection_name)
        self._pointers = self._open_collection(collection_name + _POINTER_SUFFIX)

    def _open_collection(self, name: str) -> Any:
        # Newer ChromaDB versions reject an embedding function that differs
        # from the one persisted with the collection; reopen without one.
        try:
            return self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            return self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
            )

    async def initialize(self) -> None:
        try:
            chunk_count, document_count = await asyncio.to_thread(self._counts_sync)
        except Exception as exc:
            raise StorageError(
                message=f"ChromaDB initialisation failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info(
            "chromadb_chunk_store_ready",
            path=self._persist_directory,
            collection=self._collection_name,
            chunks=chunk_count,
            documents=document_count,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def replace_document_chunks(
        self,
        document: KnowledgeDocument,
        chunks: list[TextChunk],
        embeddings: list[list[float]],
        lease_check: Callable[[], Awaitable[None]] | None = None,
    ) -> int:
        """Write a new generation, flip the pointer, then drop old generations.

        *lease_check* runs between staging and the flip.  If it raises, the
        staged generation is discarded and the pointer is left alone.
        """
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"chunks and embeddings length mismatch: {len(chunks)} != {len(embeddings)}"
            )

        doc_id = document.document_id
        generation = uuid.uuid4().hex

        try:
            await asyncio.to_thread(
                self._stage_generation_sync, document, chunks, embeddings, generation
            )
        except Exception as exc:
            await asyncio.to_thread(self._discard_generation, doc_id, generation)
            raise StorageError(
                message=f"ChromaDB write of document {doc_id} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if lease_check is not None:
            try:
                await lease_check()
            except BaseException:
                await asyncio.to_thread(self._discard_generation, doc_id, generation)
                raise

        try:
            await asyncio.to_thread(self._flip_pointer_sync, document, generation, len(chunks))
        except Exception as exc:
            await asyncio.to_thread(self._discard_generation, doc_id, generation)
            raise StorageError(
                message=f"ChromaDB pointer flip for document {doc_id} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        # The new generation is live; leftovers are invisible to search
        # even if this cleanup fails.
        try:
            await asyncio.to_thread(self._drop_superseded_sync, doc_id, generation)
        except Exception as exc:
            logger.warning(
                "chromadb_old_generation_cleanup_failed",
                document_id=doc_id,
                error=str(exc),
            )

        logger.info(
            "document_chunks_replaced",
            document_id=doc_id,
            tenant_id=document.tenant_id,
            chunk_count=len(chunks),
            generation=generation,
        )
        return len(chunks)

    async def delete_document_chunks(self, document_id: str) -> int:
        try:
            count = await asyncio.to_thread(self._delete_document_sync, document_id)
        except Exception as exc:
            raise StorageError(
                message=f"ChromaDB delete of document {document_id} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("document_chunks_deleted", document_id=document_id, deleted_count=count)
        return count

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def search(
        self,
        query_embedding: list[float],
        tenant_id: str,
        collection_id: str,
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> list[RetrievedChunk]:
        """Cosine search inside one tenant/collection, current generations only.

        ChromaDB is asked for ``4 * top_k`` raw hits; if dropping superseded
        generations leaves fewer than *top_k*, the window is widened until it
        covers the whole collection.
        """
        if top_k < 1:
            return []
        try:
            retrieved, raw_count = await asyncio.to_thread(
                self._search_sync, query_embedding, tenant_id, collection_id, top_k, min_similarity
            )
        except Exception as exc:
            raise StorageError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        retrieved.sort(key=lambda rc: rc.similarity_score, reverse=True)
        retrieved = retrieved[:top_k]
        logger.info(
            "chromadb_chunk_search",
            tenant_id=tenant_id,
            collection_id=collection_id,
            raw_results=raw_count,
            results_count=len(retrieved),
            top_score=retrieved[0].similarity_score if retrieved else 0.0,
        )
        return retrieved

    async def count_document_chunks(self, document_id: str) -> int:
        try:
            return await asyncio.to_thread(self._count_document_sync, document_id)
        except Exception as exc:
            raise StorageError(
                message=f"ChromaDB count failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def get_stats(self, tenant_id: str, collection_id: str) -> CorpusStats:
        """Aggregate the pointer records of the scope.

        Pointers carry each document's live chunk count, so superseded
        generations are never counted.
        """
        try:
            page = await asyncio.to_thread(
                self._pointers.get,
                where={"$and": [{"tenant_id": tenant_id}, {"collection_id": collection_id}]},
                include=["metadatas"],
            )
        except Exception as exc:
            raise StorageError(
                message=f"ChromaDB get_stats failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        counts = [int((m or {}).get("chunk_count", 0)) for m in page["metadatas"] or []]
        return CorpusStats(
            total_chunks=sum(counts),
            total_documents=sum(1 for c in counts if c > 0),
        )

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        """Return ``True`` if the ChromaDB collections are accessible."""
        try:
            self._counts_sync()
            return True
        except Exception:
            return False

    # -- Sync helpers (executed via asyncio.to_thread) -------------------------

    def _counts_sync(self) -> tuple[int, int]:
        return self._collection.count(), self._pointers.count()

    def _stage_generation_sync(
        self,
        document: KnowledgeDocument,
        chunks: list[TextChunk],
        embeddings: list[list[float]],
        generation: str,
    ) -> None:
        """Upsert the chunks of *generation*; invisible until the pointer flips."""
        doc_id = document.document_id
        created_at = datetime.now(timezone.utc).isoformat()
        for start in range(0, len(chunks), _UPSERT_BATCH):
            batch = chunks[start : start + _UPSERT_BATCH]
            self._collection.upsert(
                ids=[f"{doc_id}:{generation}:{c.index}" for c in batch],
                embeddings=embeddings[start : start + _UPSERT_BATCH],
                documents=[c.content for c in batch],
                metadatas=[
                    {
                        "document_id": doc_id,
                        "tenant_id": document.tenant_id,
                        "collection_id": document.collection_id,
                        "position": c.index,
                        "token_count": c.token_count,
                        "generation": generation,
                        "created_at": created_at,
                    }
                    for c in batch
                ],
            )

    def _flip_pointer_sync(
        self, document: KnowledgeDocument, generation: str, chunk_count: int
    ) -> None:
        self._pointers.upsert(
            ids=[document.document_id],
            embeddings=[_POINTER_EMBEDDING],
            metadatas=[
                {
                    "generation": generation,
                    "tenant_id": document.tenant_id,
                    "collection_id": document.collection_id,
                    "chunk_count": chunk_count,
                }
            ],
        )

    def _drop_superseded_sync(self, document_id: str, generation: str) -> None:
        self._collection.delete(
            where={"$and": [{"document_id": document_id}, {"generation": {"$ne": generation}}]}
        )

    def _delete_document_sync(self, document_id: str) -> int:
        count = self._count_document_sync(document_id)
        # Pointer first: from here on search ignores the document.
        self._pointers.delete(ids=[document_id])
        self._collection.delete(where={"document_id": document_id})
        return count

    def _count_document_sync(self, document_id: str) -> int:
        generation = self._current_generations([document_id]).get(document_id)
        if generation is None:
            return 0
        return len(self._generation_ids(document_id, generation))

    def _search_sync(
        self,
        query_embedding: list[float],
        tenant_id: str,
        collection_id: str,
        top_k: int,
        min_similarity: float,
    ) -> tuple[list[RetrievedChunk], int]:
        total = self._collection.count()
        if total == 0:
            return [], 0

        where = {"$and": [{"tenant_id": tenant_id}, {"collection_id": collection_id}]}
        fetch_k = min(top_k * _OVERFETCH, total)
        while True:
            results = self._collection.query(
                query_embeddings=[query_embedding],
                n_results=fetch_k,
                where=where,
                include=["documents", "metadatas", "distances"],
            )
            retrieved, raw_count = self._current_hits(results, min_similarity)
            if len(retrieved) >= top_k or raw_count < fetch_k or fetch_k >= total:
                return retrieved, raw_count
            fetch_k = min(fetch_k * 2, total)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _current_hits(
        self, results: dict[str, Any], min_similarity: float
    ) -> tuple[list[RetrievedChunk], int]:
        """Convert a raw query result, keeping only current-generation hits."""
        if not results["ids"] or not results["ids"][0]:
            return [], 0

        ids = results["ids"][0]
        documents = results["documents"][0] if results["documents"] else [""] * len(ids)
        metadatas = results["metadatas"][0] if results["metadatas"] else [{}] * len(ids)
        distances = results["distances"][0] if results["distances"] else [0.0] * len(ids)

        live = self._current_generations({m.get("document_id", "") for m in metadatas})

        retrieved: list[RetrievedChunk] = []
        for chunk_id, text, meta, distance in zip(
            ids, documents, metadatas, distances, strict=True
        ):
            if live.get(meta.get("document_id", "")) != meta.get("generation"):
                continue
            similarity = max(0.0, min(1.0, 1.0 - distance))
            if similarity < min_similarity:
                continue
            retrieved.append(
                RetrievedChunk(
                    chunk=self._metadata_to_chunk(chunk_id, meta, text or ""),
                    similarity_score=similarity,
                )
            )
        return retrieved, len(ids)

    def _current_generations(self, document_ids: Any) -> dict[str, str]:
        ids = sorted(d for d in document_ids if d)
        if not ids:
            return {}
        page = self._pointers.get(ids=ids, include=["metadatas"])
        return {
            doc_id: str(meta.get("generation"))
            for doc_id, meta in zip(page["ids"], page["metadatas"] or [], strict=True)
            if meta
        }

    def _generation_ids(self, document_id: str, generation: str) -> list[str]:
        page = self._collection.get(
            where={"$and": [{"document_id": document_id}, {"generation": generation}]},
            include=["metadatas"],
        )
        return list(page["ids"] or [])

    def _discard_generation(self, document_id: str, generation: str) -> None:
        """Best-effort removal of a generation that never went live."""
        try:
            self._collection.delete(
                where={"$and": [{"document_id": document_id}, {"generation": generation}]}
            )
        except Exception as exc:
            logger.warning(
                "chromadb_generation_discard_failed",
                document_id=document_id,
                generation=generation,
                error=str(exc),
            )

    @staticmethod
    def _metadata_to_chunk(chunk_id: str, meta: dict[str, Any], text: str) -> KnowledgeChunk:
        created_raw = meta.get("created_at")
        return KnowledgeChunk(
            chunk_id=chunk_id,
            document_id=str(meta.get("document_id", "")),
            tenant_id=str(meta.get("tenant_id", "")),
            collection_id=str(meta.get("collection_id", "")),
            position=int(meta.get("position", 0)),
            content=text,
            token_count=int(meta.get("token_count", 0)),
            created_at=datetime.fromisoformat(created_raw) if created_raw else None,
        )

"""SQLite chunk store with in-process cosine ranking.

Chunks live next to the document records in the same SQLite file by default.
Each vector is stored as a little-endian float32 blob; search loads the
vectors of one tenant/collection scope and ranks them with numpy.

Replacing a document's chunks is a ``DELETE`` followed by a bulk ``INSERT``
inside one ``BEGIN IMMEDIATE`` transaction.  Readers on other connections
keep seeing the committed set until the commit lands (WAL mode), so a
document's chunks are never observed half-written.

The optional lease check runs after the lock is taken and before the
``DELETE``, so a worker whose lease was revoked leaves the table untouched.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

import aiosqlite
import numpy as np
import structlog

from knowledge_ingest.interfaces.chunk_store import IChunkStore
from knowledge_ingest.models.document import KnowledgeDocument
from knowledge_ingest.models.rag import CorpusStats, KnowledgeChunk, RetrievedChunk, TextChunk
from knowledge_ingest.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS chunks (
    chunk_id      TEXT    PRIMARY KEY,
    document_id   TEXT    NOT NULL,
    tenant_id     TEXT    NOT NULL,
    collection_id TEXT    NOT NULL,
    position      INTEGER NOT NULL,
    content       TEXT    NOT NULL,
    token_count   INTEGER NOT NULL DEFAULT 0,
    embedding     BLOB    NOT NULL,
    dimension     INTEGER NOT NULL,
    created_at    TEXT    NOT NULL,
    UNIQUE (document_id, position)
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_chunks_scope ON chunks(tenant_id, collection_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id);",
]

_INSERT_SQL = """\
INSERT INTO chunks (
    chunk_id, document_id, tenant_id, collection_id, position,
    content, token_count, embedding, dimension, created_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_SCOPE_SQL = """\
SELECT chunk_id, document_id, tenant_id, collection_id, position,
       content, token_count, embedding, dimension, created_at
FROM chunks
WHERE tenant_id = ? AND collection_id = ?;
"""


def _encode_vector(vector: list[float]) -> bytes:
    return np.asarray(vector, dtype="<f4").tobytes()


def _decode_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype="<f4")


class SQLiteChunkStore(IChunkStore):
    """Chunk store backed by a single SQLite table.

    Parameters
    ----------
    db_path:
        Path of the SQLite database file.  May be shared with
        :class:`SQLiteDocumentRepository`.
    """

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute("PRAGMA journal_mode=WAL;")
                await db.execute(_CREATE_TABLE_SQL)
                for idx_sql in _CREATE_INDICES_SQL:
                    await db.execute(idx_sql)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Could not initialise chunk store: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chunk_db_initialized", path=str(self._db_path))

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
        """Swap the document's chunk set in a single write transaction."""
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"chunks and embeddings length mismatch: {len(chunks)} != {len(embeddings)}"
            )

        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (
                str(uuid.uuid4()),
                document.document_id,
                document.tenant_id,
                document.collection_id,
                chunk.index,
                chunk.content,
                chunk.token_count,
                _encode_vector(vector),
                len(vector),
                now,
            )
            for chunk, vector in zip(chunks, embeddings, strict=True)
        ]

        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                # Take the write lock up front; no other writer can interleave.
                await db.execute("BEGIN IMMEDIATE;")
                try:
                    # Checked under the write lock so a release cannot slip in
                    # before the commit when the documents table shares this file.
                    if lease_check is not None:
                        await lease_check()
                    cursor = await db.execute(
                        "DELETE FROM chunks WHERE document_id = ?",
                        (document.document_id,),
                    )
                    replaced = cursor.rowcount
                    if rows:
                        await db.executemany(_INSERT_SQL, rows)
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Could not replace chunks of document {document.document_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info(
            "document_chunks_replaced",
            document_id=document.document_id,
            tenant_id=document.tenant_id,
            chunk_count=len(rows),
            replaced=replaced,
        )
        return len(rows)

    async def delete_document_chunks(self, document_id: str) -> int:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(
                    "DELETE FROM chunks WHERE document_id = ?", (document_id,)
                )
                await db.commit()
                deleted = cursor.rowcount
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Could not delete chunks of document {document_id}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("document_chunks_deleted", document_id=document_id, deleted_count=deleted)
        return deleted

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
        """Rank the scope's chunks by cosine similarity to *query_embedding*."""
        rows = await self._fetch(_SELECT_SCOPE_SQL, (tenant_id, collection_id))
        if not rows or top_k < 1:
            return []

        query = np.asarray(query_embedding, dtype=np.float32)
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []

        candidates = [r for r in rows if r["dimension"] == query.shape[0]]
        if len(candidates) != len(rows):
            logger.warning(
                "chunk_dimension_mismatch",
                tenant_id=tenant_id,
                collection_id=collection_id,
                expected_dim=int(query.shape[0]),
                skipped=len(rows) - len(candidates),
            )
        if not candidates:
            return []

        matrix = np.vstack([_decode_vector(r["embedding"]) for r in candidates])
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0.0] = 1.0
        scores = np.clip((matrix @ query) / (norms * query_norm), 0.0, 1.0)

        order = np.argsort(-scores, kind="stable")
        results: list[RetrievedChunk] = []
        for idx in order:
            score = float(scores[idx])
            if score < min_similarity:
                break
            results.append(
                RetrievedChunk(chunk=self._row_to_chunk(candidates[idx]), similarity_score=score)
            )
            if len(results) >= top_k:
                break

        logger.info(
            "sqlite_chunk_search",
            tenant_id=tenant_id,
            collection_id=collection_id,
            candidates=len(candidates),
            results_count=len(results),
            top_score=results[0].similarity_score if results else 0.0,
        )
        return results

    async def count_document_chunks(self, document_id: str) -> int:
        rows = await self._fetch(
            "SELECT COUNT(*) AS n FROM chunks WHERE document_id = ?", (document_id,)
        )
        return int(rows[0]["n"]) if rows else 0

    async def get_stats(self, tenant_id: str, collection_id: str) -> CorpusStats:
        rows = await self._fetch(
            "SELECT COUNT(*) AS chunks, COUNT(DISTINCT document_id) AS documents "
            "FROM chunks WHERE tenant_id = ? AND collection_id = ?",
            (tenant_id, collection_id),
        )
        if not rows:
            return CorpusStats()
        return CorpusStats(
            total_chunks=int(rows[0]["chunks"]),
            total_documents=int(rows[0]["documents"]),
        )

    def get_provider_name(self) -> str:
        return "sqlite_chunks"

    def is_available(self) -> bool:
        return self._db_path.parent.exists()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _fetch(self, sql: str, params: tuple[Any, ...]) -> list[aiosqlite.Row]:
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(sql, params)
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise StorageError(
                message=f"Chunk store read failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    @staticmethod
    def _row_to_chunk(row: aiosqlite.Row) -> KnowledgeChunk:
        return KnowledgeChunk(
            chunk_id=row["chunk_id"],
            document_id=row["document_id"],
            tenant_id=row["tenant_id"],
            collection_id=row["collection_id"],
            position=row["position"],
            content=row["content"],
            token_count=row["token_count"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

"""Unit tests for SQLiteChunkStore — atomic replace and scoped cosine search."""

from __future__ import annotations

from pathlib import Path

import pytest

from knowledge_ingest.models.rag import TextChunk
from knowledge_ingest.providers.chunk_store.sqlite_chunk_store import SQLiteChunkStore
from knowledge_ingest.utils.errors import LeaseLostError, StorageError
from tests.conftest import make_document

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _chunks(*texts: str) -> list[TextChunk]:
    return [TextChunk(index=i, content=t, token_count=len(t) // 4 + 1) for i, t in enumerate(texts)]


_X = [1.0, 0.0, 0.0]
_Y = [0.0, 1.0, 0.0]
_XY = [0.7071, 0.7071, 0.0]
_NEG_X = [-1.0, 0.0, 0.0]


async def _search(store: SQLiteChunkStore, vector, **kwargs):
    kwargs.setdefault("tenant_id", "tenant-a")
    kwargs.setdefault("collection_id", "onboarding")
    return await store.search(vector, **kwargs)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestReplace:
    @pytest.mark.asyncio
    async def test_replace_stores_chunks(self, sqlite_chunk_store: SQLiteChunkStore) -> None:
        stored = await sqlite_chunk_store.replace_document_chunks(
            make_document(), _chunks("alpha", "beta"), [_X, _Y]
        )

        assert stored == 2
        assert await sqlite_chunk_store.count_document_chunks("doc-1") == 2

    @pytest.mark.asyncio
    async def test_replace_swaps_previous_set(self, sqlite_chunk_store: SQLiteChunkStore) -> None:
        document = make_document()
        await sqlite_chunk_store.replace_document_chunks(
            document, _chunks("old one", "old two", "old three"), [_X, _Y, _XY]
        )

        await sqlite_chunk_store.replace_document_chunks(document, _chunks("new"), [_X])

        results = await _search(sqlite_chunk_store, _X, top_k=10)
        assert [r.chunk.content for r in results] == ["new"]
        assert await sqlite_chunk_store.count_document_chunks("doc-1") == 1

    @pytest.mark.asyncio
    async def test_failed_replace_keeps_previous_set(
        self, sqlite_chunk_store: SQLiteChunkStore
    ) -> None:
        document = make_document()
        await sqlite_chunk_store.replace_document_chunks(document, _chunks("kept"), [_X])
        duplicate_positions = [
            TextChunk(index=0, content="first", token_count=2),
            TextChunk(index=0, content="clash", token_count=2),
        ]

        with pytest.raises(StorageError):
            await sqlite_chunk_store.replace_document_chunks(
                document, duplicate_positions, [_X, _Y]
            )

        results = await _search(sqlite_chunk_store, _X)
        assert [r.chunk.content for r in results] == ["kept"]

    @pytest.mark.asyncio
    async def test_failed_lease_check_writes_nothing(
        self, sqlite_chunk_store: SQLiteChunkStore
    ) -> None:
        document = make_document()
        await sqlite_chunk_store.replace_document_chunks(document, _chunks("kept"), [_X])

        async def revoked() -> None:
            raise LeaseLostError("lease released")

        with pytest.raises(LeaseLostError):
            await sqlite_chunk_store.replace_document_chunks(
                document, _chunks("stale a", "stale b"), [_X, _Y], lease_check=revoked
            )

        results = await _search(sqlite_chunk_store, _X, top_k=10)
        assert [r.chunk.content for r in results] == ["kept"]
        assert await sqlite_chunk_store.count_document_chunks("doc-1") == 1

    @pytest.mark.asyncio
    async def test_superseded_worker_cannot_overwrite_successor(
        self, sqlite_chunk_store: SQLiteChunkStore, sqlite_repository
    ) -> None:
        document = make_document()
        await sqlite_repository.register_document(
            "tenant-a", "onboarding", "handbook.txt", "txt", "file:///uploads/handbook.txt",
            document_id="doc-1",
        )
        stale_token = await sqlite_repository.claim("doc-1")
        await sqlite_repository.release_stale("doc-1", stale_token)
        fresh_token = await sqlite_repository.claim("doc-1")
        await sqlite_chunk_store.replace_document_chunks(
            document,
            _chunks("successor"),
            [_X],
            lease_check=lambda: sqlite_repository.verify_lease("doc-1", fresh_token),
        )

        with pytest.raises(LeaseLostError):
            await sqlite_chunk_store.replace_document_chunks(
                document,
                _chunks("stale"),
                [_Y],
                lease_check=lambda: sqlite_repository.verify_lease("doc-1", stale_token),
            )

        results = await _search(sqlite_chunk_store, _X, top_k=10)
        assert [r.chunk.content for r in results] == ["successor"]

    @pytest.mark.asyncio
    async def test_length_mismatch(self, sqlite_chunk_store: SQLiteChunkStore) -> None:
        with pytest.raises(ValueError, match="mismatch"):
            await sqlite_chunk_store.replace_document_chunks(
                make_document(), _chunks("a", "b"), [_X]
            )

    @pytest.mark.asyncio
    async def test_delete_document_chunks(self, sqlite_chunk_store: SQLiteChunkStore) -> None:
        await sqlite_chunk_store.replace_document_chunks(
            make_document(), _chunks("a", "b"), [_X, _Y]
        )

        assert await sqlite_chunk_store.delete_document_chunks("doc-1") == 2
        assert await sqlite_chunk_store.delete_document_chunks("doc-1") == 0
        assert await _search(sqlite_chunk_store, _X) == []


class TestSearch:
    @pytest.mark.asyncio
    async def test_ranked_by_similarity(self, sqlite_chunk_store: SQLiteChunkStore) -> None:
        await sqlite_chunk_store.replace_document_chunks(
            make_document(), _chunks("x", "y", "xy"), [_X, _Y, _XY]
        )

        results = await _search(sqlite_chunk_store, _X, top_k=3)

        assert [r.chunk.content for r in results] == ["x", "xy", "y"]
        assert results[0].similarity_score == pytest.approx(1.0)
        assert results[1].similarity_score == pytest.approx(0.7071, abs=1e-3)
        assert results[2].similarity_score == pytest.approx(0.0)
        assert results[0].chunk.position == 0
        assert results[0].chunk.tenant_id == "tenant-a"

    @pytest.mark.asyncio
    async def test_top_k_and_min_similarity(self, sqlite_chunk_store: SQLiteChunkStore) -> None:
        await sqlite_chunk_store.replace_document_chunks(
            make_document(), _chunks("x", "y", "xy", "neg"), [_X, _Y, _XY, _NEG_X]
        )

        assert len(await _search(sqlite_chunk_store, _X, top_k=1)) == 1
        filtered = await _search(sqlite_chunk_store, _X, top_k=10, min_similarity=0.5)
        assert [r.chunk.content for r in filtered] == ["x", "xy"]

    @pytest.mark.asyncio
    async def test_opposite_vector_clamped_to_zero(
        self, sqlite_chunk_store: SQLiteChunkStore
    ) -> None:
        await sqlite_chunk_store.replace_document_chunks(make_document(), _chunks("neg"), [_NEG_X])

        results = await _search(sqlite_chunk_store, _X)

        assert results[0].similarity_score == 0.0

    @pytest.mark.asyncio
    async def test_scoped_to_tenant_and_collection(
        self, sqlite_chunk_store: SQLiteChunkStore
    ) -> None:
        await sqlite_chunk_store.replace_document_chunks(make_document(), _chunks("mine"), [_X])
        await sqlite_chunk_store.replace_document_chunks(
            make_document(document_id="doc-2", tenant_id="tenant-b"), _chunks("theirs"), [_X]
        )
        await sqlite_chunk_store.replace_document_chunks(
            make_document(document_id="doc-3", collection_id="benefits"), _chunks("elsewhere"), [_X]
        )

        results = await _search(sqlite_chunk_store, _X, top_k=10)

        assert [r.chunk.content for r in results] == ["mine"]

    @pytest.mark.asyncio
    async def test_empty_scope_and_degenerate_queries(
        self, sqlite_chunk_store: SQLiteChunkStore
    ) -> None:
        assert await _search(sqlite_chunk_store, _X) == []
        await sqlite_chunk_store.replace_document_chunks(make_document(), _chunks("x"), [_X])

        assert await _search(sqlite_chunk_store, [0.0, 0.0, 0.0]) == []
        assert await _search(sqlite_chunk_store, _X, top_k=0) == []

    @pytest.mark.asyncio
    async def test_dimension_mismatch_skipped(self, sqlite_chunk_store: SQLiteChunkStore) -> None:
        await sqlite_chunk_store.replace_document_chunks(make_document(), _chunks("3d"), [_X])
        await sqlite_chunk_store.replace_document_chunks(
            make_document(document_id="doc-2"), _chunks("2d"), [[1.0, 0.0]]
        )

        results = await _search(sqlite_chunk_store, _X, top_k=10)

        assert [r.chunk.content for r in results] == ["3d"]


class TestStats:
    @pytest.mark.asyncio
    async def test_get_stats(self, sqlite_chunk_store: SQLiteChunkStore) -> None:
        await sqlite_chunk_store.replace_document_chunks(
            make_document(), _chunks("a", "b"), [_X, _Y]
        )
        await sqlite_chunk_store.replace_document_chunks(
            make_document(document_id="doc-2"), _chunks("c"), [_XY]
        )

        stats = await sqlite_chunk_store.get_stats("tenant-a", "onboarding")
        empty = await sqlite_chunk_store.get_stats("tenant-b", "onboarding")

        assert (stats.total_chunks, stats.total_documents) == (3, 2)
        assert (empty.total_chunks, empty.total_documents) == (0, 0)

    def test_provider_metadata(self, tmp_path: Path) -> None:
        store = SQLiteChunkStore(db_path=tmp_path / "chunks.db")
        assert store.get_provider_name() == "sqlite_chunks"
        assert store.is_available() is True
        assert SQLiteChunkStore(db_path=tmp_path / "missing" / "c.db").is_available() is False

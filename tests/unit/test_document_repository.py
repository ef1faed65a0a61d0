"""Unit tests for SQLiteDocumentRepository — records and the claim/lease state machine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from knowledge_ingest.models.document import DocumentStatus
from knowledge_ingest.providers.document_store import SQLiteDocumentRepository
from knowledge_ingest.utils.errors import DocumentNotFoundError, LeaseLostError, StorageError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> _FakeClock:
    return _FakeClock()


@pytest_asyncio.fixture
async def repo(tmp_path: Path, clock: _FakeClock) -> SQLiteDocumentRepository:
    repository = SQLiteDocumentRepository(db_path=tmp_path / "nested" / "docs.db", clock=clock)
    await repository.initialize()
    return repository


async def _register(repo: SQLiteDocumentRepository, document_id: str = "doc-1", **kwargs):
    fields = {
        "tenant_id": "tenant-a",
        "collection_id": "onboarding",
        "filename": "handbook.txt",
        "format": "txt",
        "source_location": "file:///uploads/handbook.txt",
    }
    fields.update(kwargs)
    return await repo.register_document(document_id=document_id, **fields)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class TestRecords:
    @pytest.mark.asyncio
    async def test_register_creates_pending_document(self, repo: SQLiteDocumentRepository) -> None:
        document = await _register(repo)

        assert document.document_id == "doc-1"
        assert document.status == DocumentStatus.PENDING
        assert document.chunk_count == 0
        assert document.lease_token is None
        assert document.created_at == datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_register_generates_id(self, repo: SQLiteDocumentRepository) -> None:
        document = await repo.register_document(
            tenant_id="t", collection_id="c", filename="a.md", format="md", source_location="/a.md"
        )
        assert len(document.document_id) == 36

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, repo: SQLiteDocumentRepository) -> None:
        await _register(repo)
        with pytest.raises(StorageError, match="already exists"):
            await _register(repo)

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, repo: SQLiteDocumentRepository) -> None:
        assert await repo.get_document("nope") is None

    @pytest.mark.asyncio
    async def test_list_newest_first_and_scoped(
        self, repo: SQLiteDocumentRepository, clock: _FakeClock
    ) -> None:
        await _register(repo, "old")
        clock.advance(10)
        await _register(repo, "new")
        await _register(repo, "other-collection", collection_id="benefits")
        await _register(repo, "other-tenant", tenant_id="tenant-b")

        everything = await repo.list_documents("tenant-a")
        onboarding = await repo.list_documents("tenant-a", "onboarding")

        assert [d.document_id for d in everything] == ["new", "other-collection", "old"]
        assert [d.document_id for d in onboarding] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_delete(self, repo: SQLiteDocumentRepository) -> None:
        await _register(repo)
        assert await repo.delete_document("doc-1") is True
        assert await repo.delete_document("doc-1") is False
        assert await repo.get_document("doc-1") is None


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_moves_to_processing(self, repo: SQLiteDocumentRepository) -> None:
        await _register(repo)

        token = await repo.claim("doc-1")

        document = await repo.get_document("doc-1")
        assert token is not None
        assert document.status == DocumentStatus.PROCESSING
        assert document.lease_token == token
        assert document.lease_acquired_at is not None

    @pytest.mark.asyncio
    async def test_second_claim_refused(self, repo: SQLiteDocumentRepository) -> None:
        await _register(repo)
        first = await repo.claim("doc-1")

        assert await repo.claim("doc-1") is None
        assert (await repo.get_document("doc-1")).lease_token == first

    @pytest.mark.asyncio
    async def test_claim_missing_document(self, repo: SQLiteDocumentRepository) -> None:
        with pytest.raises(DocumentNotFoundError):
            await repo.claim("ghost")

    @pytest.mark.asyncio
    async def test_ready_and_error_documents_can_be_reclaimed(
        self, repo: SQLiteDocumentRepository
    ) -> None:
        await _register(repo)
        token = await repo.claim("doc-1")
        await repo.mark_error("doc-1", token, "boom")

        again = await repo.claim("doc-1")

        document = await repo.get_document("doc-1")
        assert again is not None and again != token
        assert document.status == DocumentStatus.PROCESSING
        assert document.error_message is None


class TestTerminalStatus:
    @pytest.mark.asyncio
    async def test_mark_ready(self, repo: SQLiteDocumentRepository) -> None:
        await _register(repo)
        token = await repo.claim("doc-1")

        await repo.mark_ready("doc-1", token, 7)

        document = await repo.get_document("doc-1")
        assert document.status == DocumentStatus.READY
        assert document.chunk_count == 7
        assert document.lease_token is None

    @pytest.mark.asyncio
    async def test_mark_error_records_cause(self, repo: SQLiteDocumentRepository) -> None:
        await _register(repo)
        token = await repo.claim("doc-1")

        await repo.mark_error("doc-1", token, "x" * 5000)

        document = await repo.get_document("doc-1")
        assert document.status == DocumentStatus.ERROR
        assert len(document.error_message) == 2000

    @pytest.mark.asyncio
    async def test_wrong_lease_is_rejected(self, repo: SQLiteDocumentRepository) -> None:
        await _register(repo)
        await repo.claim("doc-1")

        with pytest.raises(LeaseLostError):
            await repo.mark_ready("doc-1", "not-the-token", 3)
        with pytest.raises(LeaseLostError):
            await repo.mark_error("doc-1", "not-the-token", "boom")
        assert (await repo.get_document("doc-1")).status == DocumentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_verify_lease(self, repo: SQLiteDocumentRepository) -> None:
        await _register(repo)
        token = await repo.claim("doc-1")

        await repo.verify_lease("doc-1", token)
        with pytest.raises(LeaseLostError, match="before its chunks were written"):
            await repo.verify_lease("doc-1", "not-the-token")

        await repo.mark_ready("doc-1", token, 1)
        with pytest.raises(LeaseLostError):
            await repo.verify_lease("doc-1", token)


class TestStaleLeases:
    @pytest.mark.asyncio
    async def test_find_stale_respects_cutoff(
        self, repo: SQLiteDocumentRepository, clock: _FakeClock
    ) -> None:
        await _register(repo, "early")
        await _register(repo, "late")
        await repo.claim("early")
        clock.advance(600)
        await repo.claim("late")
        clock.advance(400)

        stale = await repo.find_stale_processing(900)

        assert [d.document_id for d in stale] == ["early"]

    @pytest.mark.asyncio
    async def test_release_returns_to_pending_and_invalidates_lease(
        self, repo: SQLiteDocumentRepository, clock: _FakeClock
    ) -> None:
        await _register(repo)
        token = await repo.claim("doc-1")
        clock.advance(1000)

        assert await repo.release_stale("doc-1", token) is True

        document = await repo.get_document("doc-1")
        assert document.status == DocumentStatus.PENDING
        assert document.lease_token is None
        with pytest.raises(LeaseLostError):
            await repo.mark_ready("doc-1", token, 1)

    @pytest.mark.asyncio
    async def test_release_after_reclaim_is_noop(self, repo: SQLiteDocumentRepository) -> None:
        await _register(repo)
        token = await repo.claim("doc-1")
        await repo.release_stale("doc-1", token)
        await repo.claim("doc-1")

        assert await repo.release_stale("doc-1", token) is False

    @pytest.mark.asyncio
    async def test_released_lease_fails_verification(self, repo: SQLiteDocumentRepository) -> None:
        await _register(repo)
        stale_token = await repo.claim("doc-1")
        await repo.release_stale("doc-1", stale_token)
        fresh_token = await repo.claim("doc-1")

        with pytest.raises(LeaseLostError):
            await repo.verify_lease("doc-1", stale_token)
        await repo.verify_lease("doc-1", fresh_token)

    def test_provider_name(self) -> None:
        assert SQLiteDocumentRepository().get_provider_name() == "sqlite_documents"

"""Unit tests for StaleDocumentSweeper."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from knowledge_ingest.models.document import DocumentStatus, IngestionJob
from knowledge_ingest.providers.document_store import SQLiteDocumentRepository
from knowledge_ingest.services.ingestion import StaleDocumentSweeper
from knowledge_ingest.utils.errors import StorageError
from tests.conftest import make_document


class TestSweepOnceWithMocks:
    @pytest.mark.asyncio
    async def test_releases_and_resubmits(self, mock_repository) -> None:
        mock_repository.find_stale_processing.return_value = [
            make_document(status=DocumentStatus.PROCESSING, lease_token="old-lease"),
        ]
        resubmitted: list[IngestionJob] = []
        sweeper = StaleDocumentSweeper(mock_repository, resubmitted.append, timeout_seconds=300)

        requeued = await sweeper.sweep_once()

        assert requeued == ["doc-1"]
        mock_repository.find_stale_processing.assert_awaited_once_with(300)
        mock_repository.release_stale.assert_awaited_once_with("doc-1", "old-lease")
        assert [j.document_id for j in resubmitted] == ["doc-1"]
        assert resubmitted[0].source_location == "file:///uploads/handbook.txt"

    @pytest.mark.asyncio
    async def test_lost_race_is_not_resubmitted(self, mock_repository) -> None:
        mock_repository.find_stale_processing.return_value = [
            make_document(status=DocumentStatus.PROCESSING, lease_token="old-lease"),
        ]
        mock_repository.release_stale.return_value = False
        resubmit = AsyncMock()

        requeued = await StaleDocumentSweeper(mock_repository, resubmit).sweep_once()

        assert requeued == []
        resubmit.assert_not_called()

    @pytest.mark.asyncio
    async def test_document_without_lease_skipped(self, mock_repository) -> None:
        mock_repository.find_stale_processing.return_value = [
            make_document(status=DocumentStatus.PROCESSING, lease_token=None),
        ]
        resubmit = AsyncMock()

        assert await StaleDocumentSweeper(mock_repository, resubmit).sweep_once() == []
        mock_repository.release_stale.assert_not_called()

    @pytest.mark.asyncio
    async def test_async_resubmit_awaited(self, mock_repository) -> None:
        mock_repository.find_stale_processing.return_value = [
            make_document(document_id="a", status=DocumentStatus.PROCESSING, lease_token="x"),
            make_document(document_id="b", status=DocumentStatus.PROCESSING, lease_token="y"),
        ]
        resubmit = AsyncMock()

        assert await StaleDocumentSweeper(mock_repository, resubmit).sweep_once() == ["a", "b"]
        assert resubmit.await_count == 2

    def test_rejects_non_positive_timeout(self, mock_repository) -> None:
        with pytest.raises(ValueError):
            StaleDocumentSweeper(mock_repository, AsyncMock(), timeout_seconds=0)


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_storage_errors_do_not_stop_the_loop(self, mock_repository) -> None:
        calls = {"n": 0}

        async def _find(older_than_seconds: float):
            calls["n"] += 1
            if calls["n"] == 1:
                raise StorageError("database locked")
            return []

        mock_repository.find_stale_processing.side_effect = _find
        sweeper = StaleDocumentSweeper(mock_repository, AsyncMock())

        task = asyncio.create_task(sweeper.run(interval_seconds=0.001))
        for _ in range(200):
            if mock_repository.find_stale_processing.await_count >= 3:
                break
            await asyncio.sleep(0.001)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert mock_repository.find_stale_processing.await_count >= 3


class TestSweepWithRepository:
    @pytest.mark.asyncio
    async def test_abandoned_lease_recovered_and_old_worker_fenced(self, tmp_path: Path) -> None:
        now = {"t": datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)}
        repo = SQLiteDocumentRepository(tmp_path / "docs.db", clock=lambda: now["t"])
        await repo.initialize()
        await repo.register_document(
            "tenant-a", "onboarding", "a.txt", "txt", "/uploads/a.txt", document_id="doc-1"
        )
        crashed_lease = await repo.claim("doc-1")
        now["t"] += timedelta(minutes=20)
        resubmitted: list[IngestionJob] = []

        requeued = await StaleDocumentSweeper(repo, resubmitted.append).sweep_once()

        assert requeued == ["doc-1"]
        assert (await repo.get_document("doc-1")).status == DocumentStatus.PENDING
        new_lease = await repo.claim(resubmitted[0].document_id)
        assert new_lease is not None
        with pytest.raises(StorageError):
            await repo.mark_ready("doc-1", crashed_lease, 3)
        await repo.mark_ready("doc-1", new_lease, 3)
        assert (await repo.get_document("doc-1")).status == DocumentStatus.READY

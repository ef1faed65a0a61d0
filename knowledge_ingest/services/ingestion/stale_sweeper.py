"""Reconciliation of documents stuck in ``processing``.

A worker that crashes mid-job leaves its document in ``processing`` with a
lease nobody will release.  :class:`StaleDocumentSweeper` finds leases older
than a timeout, moves those documents back to ``pending`` (compare-and-set on
the lease token, so a worker that is merely slow and finishes first wins)
and re-submits an ingestion job for each.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Callable

import structlog

from knowledge_ingest.utils.errors import StorageError

if TYPE_CHECKING:
    from knowledge_ingest.interfaces.document_repository import IDocumentRepository
    from knowledge_ingest.models.document import IngestionJob

logger = structlog.get_logger(logger_name=__name__)

ResubmitCallback = Callable[["IngestionJob"], Any]

_DEFAULT_TIMEOUT_SECONDS = 900.0


class StaleDocumentSweeper:
    """Periodically releases expired processing leases and re-enqueues the work.

    Parameters
    ----------
    repository:
        Source of stale documents and the release compare-and-set.
    resubmit:
        Sync or async callable taking an :class:`IngestionJob`; usually
        :meth:`IngestionWorkerPool.submit` or the external queue's enqueue.
    timeout_seconds:
        Age after which a ``processing`` lease counts as abandoned.
    """

    def __init__(
        self,
        repository: IDocumentRepository,
        resubmit: ResubmitCallback,
        timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {timeout_seconds}")
        self._repository = repository
        self._resubmit = resubmit
        self._timeout_seconds = timeout_seconds

    async def sweep_once(self) -> list[str]:
        """Run one sweep and return the ids of the documents re-enqueued."""
        stale = await self._repository.find_stale_processing(self._timeout_seconds)
        requeued: list[str] = []
        for document in stale:
            if document.lease_token is None:
                continue
            released = await self._repository.release_stale(
                document.document_id, document.lease_token
            )
            if not released:
                # The worker finished (or another sweeper got there) first.
                continue
            outcome = self._resubmit(document.to_job())
            if inspect.isawaitable(outcome):
                await outcome
            requeued.append(document.document_id)

        if stale:
            logger.info(
                "stale_sweep_complete",
                stale=len(stale),
                requeued=len(requeued),
                timeout_seconds=self._timeout_seconds,
            )
        return requeued

    async def run(self, interval_seconds: float = 60.0) -> None:
        """Sweep every *interval_seconds* until cancelled.

        Storage errors are logged and the loop carries on with the next
        sweep; anything else propagates.
        """
        logger.info(
            "stale_sweeper_started",
            interval_seconds=interval_seconds,
            timeout_seconds=self._timeout_seconds,
        )
        while True:
            try:
                await self.sweep_once()
            except StorageError as exc:
                logger.error("stale_sweep_failed", error=str(exc))
            await asyncio.sleep(interval_seconds)

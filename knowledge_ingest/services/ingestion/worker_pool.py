"""Bounded pool of ingestion workers.

Two ways to drive the pipeline:

* **Queue consumer** -- :meth:`IngestionWorkerPool.start` spawns N worker
  tasks that pull jobs submitted with :meth:`submit` until :meth:`stop`.
* **Finite batch** -- :meth:`IngestionWorkerPool.run_batch` runs a list of
  jobs through :func:`throttled_gather` with the same bound and returns one
  outcome per job.

Each worker handles one job at a time, start to finish.  A failing job is
logged and reported through ``on_failure`` (the queue's retry hook); it never
takes its worker down.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Callable

import structlog

from knowledge_ingest.models.rag import IngestionResult
from knowledge_ingest.utils.concurrency import throttled_gather

if TYPE_CHECKING:
    from knowledge_ingest.models.document import IngestionJob
    from knowledge_ingest.services.ingestion.pipeline import IngestionPipeline

logger = structlog.get_logger(logger_name=__name__)

FailureCallback = Callable[["IngestionJob", BaseException], Any]

_DEFAULT_WORKERS = 2


class IngestionWorkerPool:
    """Runs ingestion jobs on a fixed number of concurrent workers.

    Parameters
    ----------
    pipeline:
        The pipeline every job is run through.
    workers:
        Maximum number of documents processed at the same time.
    on_failure:
        Optional callback (sync or async) invoked with ``(job, exc)`` for
        every failed job.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        workers: int = _DEFAULT_WORKERS,
        on_failure: FailureCallback | None = None,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self._pipeline = pipeline
        self._workers = workers
        self._on_failure = on_failure
        self._queue: asyncio.Queue[IngestionJob] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def workers(self) -> int:
        return self._workers

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        """Jobs submitted but not yet picked up by a worker."""
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Queue consumer
    # ------------------------------------------------------------------

    async def submit(self, job: IngestionJob) -> None:
        await self._queue.put(job)
        logger.debug("ingestion_job_submitted", document_id=job.document_id)

    def start(self) -> None:
        """Spawn the worker tasks.  Idempotent while running."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"ingestion-worker-{i}")
            for i in range(self._workers)
        ]
        logger.info("worker_pool_started", workers=self._workers)

    async def join(self) -> None:
        """Wait until every submitted job has been processed."""
        await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """Stop the workers.

        With *drain* the pool first waits for queued jobs to finish;
        otherwise in-flight jobs are cancelled and queued ones are left.
        """
        if not self._tasks:
            return
        if drain:
            await self._queue.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("worker_pool_stopped", remaining=self._queue.qsize())

    async def _worker(self, worker_id: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run_job(job, worker_id)
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Finite batch
    # ------------------------------------------------------------------

    async def run_batch(
        self, jobs: list[IngestionJob]
    ) -> list[IngestionResult | BaseException]:
        """Process *jobs* with at most ``workers`` in flight.

        Returns
        -------
        list[IngestionResult | BaseException]
            One entry per job, in input order: the result, or the exception
            the job failed with.
        """
        semaphore = asyncio.Semaphore(self._workers)
        outcomes = await throttled_gather(
            [self._run_job_capturing(job) for job in jobs],
            semaphore=semaphore,
        )
        succeeded = sum(1 for o in outcomes if isinstance(o, IngestionResult))
        logger.info(
            "ingestion_batch_complete",
            jobs=len(jobs),
            succeeded=succeeded,
            failed=len(jobs) - succeeded,
        )
        return outcomes

    async def _run_job_capturing(self, job: IngestionJob) -> IngestionResult:
        result = await self._run_job(job, worker_id=None)
        if isinstance(result, BaseException):
            raise result
        return result

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    async def _run_job(
        self, job: IngestionJob, worker_id: int | None
    ) -> IngestionResult | Exception:
        try:
            return await self._pipeline.run(job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "ingestion_job_failed",
                document_id=job.document_id,
                worker=worker_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            await self._notify_failure(job, exc)
            return exc

    async def _notify_failure(self, job: IngestionJob, exc: BaseException) -> None:
        if self._on_failure is None:
            return
        try:
            outcome = self._on_failure(job, exc)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as callback_exc:
            logger.error(
                "ingestion_failure_callback_error",
                document_id=job.document_id,
                error=str(callback_exc),
            )

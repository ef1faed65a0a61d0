"""Orchestrator for one document ingestion job.

Pipeline stages: **claim -> fetch -> validate -> extract -> scan -> chunk ->
embed -> store -> ready**.

:class:`IngestionPipeline` coordinates its collaborators without any of them
knowing about each other.  Every dependency is injected through the
constructor, so the embedder, stores and scanner can be swapped (or mocked)
without touching this class.

Failure policy: the first failing stage marks the document ``error`` with the
cause, logs ``ingestion_failed`` and re-raises for the owning job queue to
retry.  There are no internal retries.  Because the chunk store replaces a
document's chunks atomically, a failed run never leaves a partial chunk set.
The lease is re-verified inside that write, so a worker whose lease was
released by the sweeper cannot overwrite its successor's chunks.
"""

from __future__ import annotations

import functools
import time
from typing import TYPE_CHECKING

import structlog

from knowledge_ingest.models.document import (
    DocumentFormat,
    DocumentStatus,
    IngestionJob,
    KnowledgeDocument,
)
from knowledge_ingest.models.rag import IngestionResult, TextChunk
from knowledge_ingest.utils.errors import (
    ContentScanError,
    DocumentLeaseError,
    DocumentNotFoundError,
    EmbeddingServiceError,
    EmptyDocumentError,
    ExtractionError,
    FileValidationError,
    KnowledgeIngestError,
    LeaseLostError,
    StorageError,
    UnsupportedFormatError,
)

if TYPE_CHECKING:
    from knowledge_ingest.interfaces.blob_fetcher import IBlobFetcher
    from knowledge_ingest.interfaces.chunk_store import IChunkStore
    from knowledge_ingest.interfaces.content_scanner import IContentScanner
    from knowledge_ingest.interfaces.document_repository import IDocumentRepository
    from knowledge_ingest.interfaces.embedding_provider import IEmbeddingProvider
    from knowledge_ingest.services.ingestion.chunker import TextChunker
    from knowledge_ingest.services.ingestion.text_extractor import TextExtractor

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MAX_UPLOAD_MB = 50


def _normalised_format(declared: str) -> str:
    """Map MIME types and aliases to the short format name; unknown values pass through."""
    try:
        return DocumentFormat.parse(declared).value
    except UnsupportedFormatError:
        return declared


class IngestionPipeline:
    """Runs a single :class:`IngestionJob` from raw bytes to a ready chunk set.

    Parameters
    ----------
    repository:
        Document records and the claim/lease state machine.
    blob_fetcher:
        Resolves ``job.source_location`` to bytes.
    scanner:
        File validation before extraction and text scan after it.
    extractor:
        Format dispatch from bytes to text.
    chunker:
        Splits text into token-bounded chunks.
    embedding_provider:
        Called exactly once per document with every chunk text.
    chunk_store:
        Atomic per-document chunk replacement.
    max_upload_mb:
        Size cap handed to the scanner's file validation.
    """

    def __init__(
        self,
        repository: IDocumentRepository,
        blob_fetcher: IBlobFetcher,
        scanner: IContentScanner,
        extractor: TextExtractor,
        chunker: TextChunker,
        embedding_provider: IEmbeddingProvider,
        chunk_store: IChunkStore,
        max_upload_mb: float = _DEFAULT_MAX_UPLOAD_MB,
    ) -> None:
        self._repository = repository
        self._blob_fetcher = blob_fetcher
        self._scanner = scanner
        self._extractor = extractor
        self._chunker = chunker
        self._embedding_provider = embedding_provider
        self._chunk_store = chunk_store
        self._max_upload_mb = max_upload_mb

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, job: IngestionJob) -> IngestionResult:
        """Ingest the document named by *job*.

        Returns
        -------
        IngestionResult
            Chunk and token totals of the new ready chunk set.

        Raises
        ------
        DocumentLeaseError
            If another worker holds the document's lease.  Status is left
            untouched.
        KnowledgeIngestError
            Any stage failure, after the document has been marked ``error``.
        """
        start = time.monotonic()
        log = logger.bind(
            document_id=job.document_id,
            tenant_id=job.tenant_id,
            collection_id=job.collection_id,
        )

        lease_token = await self._repository.claim(job.document_id)
        if lease_token is None:
            raise DocumentLeaseError(
                message=f"Document {job.document_id} is already being processed",
            )
        log.info("ingestion_started", format=job.format)

        try:
            chunks, warnings = await self._process(job, lease_token, log)
            total_tokens = sum(c.token_count for c in chunks)
            await self._repository.mark_ready(job.document_id, lease_token, len(chunks))
        except LeaseLostError:
            # Another worker owns the document now; its status is not ours to set.
            log.warning("ingestion_lease_lost", elapsed=round(time.monotonic() - start, 3))
            raise
        except Exception as exc:
            await self._fail(job, lease_token, exc, log)
            raise

        elapsed = time.monotonic() - start
        log.info(
            "ingestion_complete",
            chunk_count=len(chunks),
            total_tokens=total_tokens,
            elapsed=round(elapsed, 3),
        )
        return IngestionResult(
            document_id=job.document_id,
            status=DocumentStatus.READY,
            chunks_created=len(chunks),
            total_tokens=total_tokens,
            ingestion_time=elapsed,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _process(
        self, job: IngestionJob, lease_token: str, log: structlog.stdlib.BoundLogger
    ) -> tuple[list[TextChunk], list[str]]:
        """Stages 2-6; returns the stored chunks and accumulated scanner warnings."""
        data = await self._fetch(job)
        # Checked ahead of validation, which would reject it as malformed.
        if not data.strip():
            raise EmptyDocumentError(
                message=f"Document {job.document_id} is empty ({len(data)} bytes)",
            )

        validation = self._scanner.validate_file(
            data, job.effective_filename, _normalised_format(job.format), self._max_upload_mb
        )
        if not validation.valid:
            raise FileValidationError(
                message=validation.error or "File validation failed",
                provider_name=self._scanner.get_provider_name(),
            )
        warnings = list(validation.warnings)

        text = self._extract(data, job.format)

        scan = self._scanner.scan_text_content(text)
        if not scan.valid:
            raise ContentScanError(
                message=scan.error or "Content scan rejected the document text",
                provider_name=self._scanner.get_provider_name(),
            )
        warnings.extend(w for w in scan.warnings if w not in warnings)
        if warnings:
            log.warning("content_scan_warnings", warnings=warnings)

        chunks = self._chunker.chunk(text)
        if not chunks:
            raise EmptyDocumentError(
                message=f"Document {job.document_id} produced no chunks "
                f"({len(text.strip())} characters of text)",
            )

        embeddings = await self._embed(chunks)

        document = self._job_document(job)
        await self._chunk_store.replace_document_chunks(
            document,
            chunks,
            embeddings,
            lease_check=functools.partial(
                self._repository.verify_lease, job.document_id, lease_token
            ),
        )
        return chunks, warnings

    async def _fetch(self, job: IngestionJob) -> bytes:
        try:
            return await self._blob_fetcher.fetch_bytes(job.source_location)
        except KnowledgeIngestError:
            raise
        except Exception as exc:
            raise StorageError(
                message=f"Could not fetch {job.source_location}: {exc}",
                provider_name=self._blob_fetcher.get_provider_name(),
            ) from exc

    def _extract(self, data: bytes, fmt: str) -> str:
        try:
            return self._extractor.extract(data, fmt)
        except KnowledgeIngestError:
            raise
        except Exception as exc:
            raise ExtractionError(message=f"Text extraction failed: {exc}") from exc

    async def _embed(self, chunks: list[TextChunk]) -> list[list[float]]:
        """One embedding call for the whole document, then shape checks."""
        provider = self._embedding_provider.get_provider_name()
        try:
            embeddings = await self._embedding_provider.embed([c.content for c in chunks])
        except KnowledgeIngestError:
            raise
        except Exception as exc:
            raise EmbeddingServiceError(
                message=f"Embedding call failed: {exc}",
                provider_name=provider,
            ) from exc

        if len(embeddings) != len(chunks):
            raise EmbeddingServiceError(
                message=f"Embedding count mismatch: {len(embeddings)} vectors "
                f"for {len(chunks)} chunks",
                provider_name=provider,
            )
        dimensions = {len(v) for v in embeddings}
        if len(dimensions) != 1 or 0 in dimensions:
            raise EmbeddingServiceError(
                message=f"Inconsistent embedding dimensions: {sorted(dimensions)}",
                provider_name=provider,
            )
        return embeddings

    async def _fail(
        self,
        job: IngestionJob,
        lease_token: str,
        exc: Exception,
        log: structlog.stdlib.BoundLogger,
    ) -> None:
        log.error(
            "ingestion_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )
        try:
            await self._repository.mark_error(job.document_id, lease_token, str(exc))
        except (LeaseLostError, DocumentNotFoundError):
            log.warning("ingestion_error_status_skipped", reason="lease_lost")
        except StorageError as status_exc:
            # The original failure is what the job queue needs to see.
            log.error("ingestion_error_status_failed", error=str(status_exc))

    @staticmethod
    def _job_document(job: IngestionJob) -> KnowledgeDocument:
        return KnowledgeDocument(
            document_id=job.document_id,
            tenant_id=job.tenant_id,
            collection_id=job.collection_id,
            filename=job.effective_filename,
            format=job.format,
            source_location=job.source_location,
            status=DocumentStatus.PROCESSING,
        )

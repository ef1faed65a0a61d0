"""Owner-facing knowledge base operations.

The upload side of the system: a template owner registers a document, which
lands as ``pending`` and is handed to the ingestion queue; later the owner
lists documents with their live chunk counts, re-ingests them or deletes
them.  Deleting removes the chunks before the record, so retrieval never
returns chunks of a document that no longer exists.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable

import structlog

from knowledge_ingest.interfaces.chunk_store import IChunkStore
from knowledge_ingest.interfaces.document_repository import IDocumentRepository
from knowledge_ingest.models.document import (
    DocumentFormat,
    DocumentStatus,
    IngestionJob,
    KnowledgeDocument,
)
from knowledge_ingest.utils.errors import DocumentLeaseError, DocumentNotFoundError

logger = structlog.get_logger(logger_name=__name__)

EnqueueCallback = Callable[[IngestionJob], Any]


class KnowledgeBaseService:
    """Registers, lists, re-ingests and deletes knowledge base documents.

    Parameters
    ----------
    repository:
        Document records.
    chunk_store:
        Chunk storage, for live counts and cascading deletes.
    enqueue:
        Sync or async callable that hands an :class:`IngestionJob` to the
        ingestion queue (e.g. :meth:`IngestionWorkerPool.submit`).  When
        ``None``, documents are only registered.
    """

    def __init__(
        self,
        repository: IDocumentRepository,
        chunk_store: IChunkStore,
        enqueue: EnqueueCallback | None = None,
    ) -> None:
        self._repository = repository
        self._chunk_store = chunk_store
        self._enqueue = enqueue

    async def register_upload(
        self,
        tenant_id: str,
        collection_id: str,
        filename: str,
        source_location: str,
        format: str | None = None,
        document_id: str | None = None,
    ) -> KnowledgeDocument:
        """Record an uploaded file as ``pending`` and enqueue its ingestion.

        *format* defaults to the filename's extension.

        Raises
        ------
        UnsupportedFormatError
            If the format is not one of pdf, docx, txt, md.
        """
        if format is None:
            format = filename.rsplit(".", 1)[-1] if "." in filename else ""
        fmt = DocumentFormat.parse(format)
        document = await self._repository.register_document(
            tenant_id=tenant_id,
            collection_id=collection_id,
            filename=filename,
            format=fmt.value,
            source_location=source_location,
            document_id=document_id,
        )
        await self._dispatch(document.to_job())
        return document

    async def reingest(self, document_id: str) -> KnowledgeDocument:
        """Enqueue a fresh ingestion of an existing ``ready`` or ``error`` document.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist.
        DocumentLeaseError
            If the document is being processed right now.
        """
        document = await self._require(document_id)
        if document.status == DocumentStatus.PROCESSING:
            raise DocumentLeaseError(
                message=f"Document {document_id} is already being processed",
            )
        await self._dispatch(document.to_job())
        logger.info("document_reingest_requested", document_id=document_id)
        return document

    async def get_document(self, document_id: str) -> KnowledgeDocument | None:
        """Return the document with ``chunk_count`` read from the chunk store."""
        document = await self._repository.get_document(document_id)
        if document is None:
            return None
        return await self._with_live_count(document)

    async def list_documents(
        self,
        tenant_id: str,
        collection_id: str | None = None,
    ) -> list[KnowledgeDocument]:
        documents = await self._repository.list_documents(tenant_id, collection_id)
        return [await self._with_live_count(d) for d in documents]

    async def delete_document(self, document_id: str) -> int:
        """Delete a document and its chunks; return the number of chunks removed.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist.
        """
        await self._require(document_id)
        removed = await self._chunk_store.delete_document_chunks(document_id)
        await self._repository.delete_document(document_id)
        logger.info("knowledge_document_deleted", document_id=document_id, chunks_removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _require(self, document_id: str) -> KnowledgeDocument:
        document = await self._repository.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(message=f"Document {document_id} does not exist")
        return document

    async def _with_live_count(self, document: KnowledgeDocument) -> KnowledgeDocument:
        count = await self._chunk_store.count_document_chunks(document.document_id)
        if count == document.chunk_count:
            return document
        return document.model_copy(update={"chunk_count": count})

    async def _dispatch(self, job: IngestionJob) -> None:
        if self._enqueue is None:
            return
        outcome = self._enqueue(job)
        if inspect.isawaitable(outcome):
            await outcome
        logger.info(
            "ingestion_job_enqueued",
            document_id=job.document_id,
            tenant_id=job.tenant_id,
        )

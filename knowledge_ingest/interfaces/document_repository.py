"""Abstract base class for the document status store.

The repository owns each document's lifecycle status and the processing
lease.  Claims are compare-and-set operations, so two workers that pick up
duplicate jobs for the same document cannot both proceed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from knowledge_ingest.models.document import KnowledgeDocument


class IDocumentRepository(ABC):
    """Contract for document records and their ingestion state machine."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create the backing schema if it does not exist yet."""

    @abstractmethod
    async def register_document(
        self,
        tenant_id: str,
        collection_id: str,
        filename: str,
        format: str,
        source_location: str,
        document_id: str | None = None,
    ) -> KnowledgeDocument:
        """Create a document record in ``pending`` status and return it."""

    @abstractmethod
    async def get_document(self, document_id: str) -> KnowledgeDocument | None:
        """Return the document or ``None`` when it does not exist."""

    @abstractmethod
    async def list_documents(
        self,
        tenant_id: str,
        collection_id: str | None = None,
    ) -> list[KnowledgeDocument]:
        """Return a tenant's documents, newest first, optionally per collection."""

    @abstractmethod
    async def claim(self, document_id: str) -> str | None:
        """Move a document to ``processing`` and return a fresh lease token.

        The transition is allowed from ``pending``, ``ready`` and ``error``
        only.  Returns ``None`` if the document is already ``processing``
        under another lease.

        Raises
        ------
        knowledge_ingest.utils.errors.DocumentNotFoundError
            If the document does not exist.
        """

    @abstractmethod
    async def mark_ready(self, document_id: str, lease_token: str, chunk_count: int) -> None:
        """Transition ``processing -> ready`` for the holder of *lease_token*.

        Raises
        ------
        knowledge_ingest.utils.errors.LeaseLostError
            If the lease is no longer held by *lease_token*.
        """

    @abstractmethod
    async def mark_error(self, document_id: str, lease_token: str, message: str) -> None:
        """Transition ``processing -> error`` for the holder of *lease_token*.

        Raises
        ------
        knowledge_ingest.utils.errors.LeaseLostError
            If the lease is no longer held by *lease_token*.
        """

    @abstractmethod
    async def verify_lease(self, document_id: str, lease_token: str) -> None:
        """Confirm *lease_token* is still the document's current processing lease.

        Raises
        ------
        knowledge_ingest.utils.errors.LeaseLostError
            If the document is no longer ``processing`` under *lease_token*.
        """

    @abstractmethod
    async def find_stale_processing(self, older_than_seconds: float) -> list[KnowledgeDocument]:
        """Return ``processing`` documents whose lease is older than the threshold."""

    @abstractmethod
    async def release_stale(self, document_id: str, lease_token: str) -> bool:
        """Move a stale ``processing`` document back to ``pending``.

        Only succeeds while *lease_token* is still the current lease.
        """

    @abstractmethod
    async def delete_document(self, document_id: str) -> bool:
        """Delete a document record.  Returns ``False`` if it did not exist."""

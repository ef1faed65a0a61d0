"""Document repository implementations."""

from knowledge_ingest.providers.document_store.sqlite_document_repository import (
    SQLiteDocumentRepository,
)

__all__ = ["SQLiteDocumentRepository"]

"""Utility modules for knowledge-ingest.

- **errors** -- Domain exception hierarchy rooted at KnowledgeIngestError;
  each pipeline stage raises its own subclass so the worker can mark the
  document ``error`` and the job queue can decide on retries.
- **concurrency** -- semaphore-bounded gather used by the worker pool.
- **logging** -- structlog setup with console output in development and
  JSON in production.
"""

# -- Domain exception hierarchy --------------------------------------------
from knowledge_ingest.utils.errors import (
    ConfigurationError,
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

# -- Async concurrency helpers ---------------------------------------------
from knowledge_ingest.utils.concurrency import throttled_gather

# -- Structured logging setup ----------------------------------------------
from knowledge_ingest.utils.logging import configure_logging, get_logger

__all__ = [
    "ConfigurationError",
    "ContentScanError",
    "DocumentLeaseError",
    "DocumentNotFoundError",
    "EmbeddingServiceError",
    "EmptyDocumentError",
    "ExtractionError",
    "FileValidationError",
    "KnowledgeIngestError",
    "LeaseLostError",
    "StorageError",
    "UnsupportedFormatError",
    "configure_logging",
    "get_logger",
    "throttled_gather",
]

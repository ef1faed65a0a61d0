"""Custom exception hierarchy for knowledge-ingest.

All application exceptions inherit from :class:`KnowledgeIngestError`, which
carries an optional ``provider_name`` so error handlers can identify which
backend (e.g. "openai", "sqlite_chunks", "chromadb") caused the failure.

The hierarchy is organized by pipeline stage:

    KnowledgeIngestError  (base -- catch-all for any ingestion error)
    +-- UnsupportedFormatError   (declared format outside pdf/docx/txt/md)
    +-- ExtractionError          (bytes -> text conversion failed)
    +-- FileValidationError      (raw-byte validation rejected the file)
    +-- ContentScanError         (extracted text rejected by the scanner)
    +-- EmptyDocumentError       (no chunk survived chunking)
    +-- EmbeddingServiceError    (embedding call failed or returned garbage)
    +-- StorageError             (blob fetch, chunk store or status store)
    |   +-- DocumentNotFoundError
    |   +-- LeaseLostError       (status write after the lease moved on)
    +-- DocumentLeaseError       (another worker holds the document)
    +-- ConfigurationError       (startup / missing config)

Every stage failure marks the document ``error`` and is re-raised to the job
queue, which owns retry and dead-lettering.  ``DocumentLeaseError`` is the
exception: the document belongs to another worker, so its status is left
alone.
"""


class KnowledgeIngestError(Exception):
    """Base exception for all knowledge-ingest errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which backend triggered the error.  The
    ``__str__`` method prefixes the provider name in brackets for structured
    log output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Extraction and validation errors
# ---------------------------------------------------------------------------

class UnsupportedFormatError(KnowledgeIngestError):
    """Raised when a document's declared format is not pdf, docx, txt or md."""

    def __init__(
        self,
        message: str = "Unsupported document format",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ExtractionError(KnowledgeIngestError):
    """Raised when a format library fails to turn bytes into text."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class FileValidationError(KnowledgeIngestError):
    """Raised when the raw file fails size, type or filename validation."""

    def __init__(
        self,
        message: str = "File validation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ContentScanError(KnowledgeIngestError):
    """Raised when extracted text is rejected by the content scanner."""

    def __init__(
        self,
        message: str = "Content scan rejected the document text",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmptyDocumentError(KnowledgeIngestError):
    """Raised when a document produces zero chunks.

    Covers both empty/whitespace-only text and text too short to survive the
    final-flush threshold.  Never treated as a silent success.
    """

    def __init__(
        self,
        message: str = "Document produced no chunks",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# External service errors
# ---------------------------------------------------------------------------

class EmbeddingServiceError(KnowledgeIngestError):
    """Raised when the embedding call fails or returns a malformed batch."""

    def __init__(
        self,
        message: str = "Embedding service call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class StorageError(KnowledgeIngestError):
    """Raised when blob fetch, chunk persistence or status persistence fails."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DocumentNotFoundError(StorageError):
    """Raised when a document id has no record in the document repository."""

    def __init__(
        self,
        message: str = "Document not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LeaseLostError(StorageError):
    """Raised when a worker writes a terminal status without holding the lease.

    Happens when the stale-processing sweep has reclaimed the document and
    another worker now owns it.
    """

    def __init__(
        self,
        message: str = "Processing lease is no longer held",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class DocumentLeaseError(KnowledgeIngestError):
    """Raised when a job cannot claim its document because another worker holds it."""

    def __init__(
        self,
        message: str = "Document is already being processed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(KnowledgeIngestError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)

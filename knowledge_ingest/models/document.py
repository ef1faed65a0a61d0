"""Document lifecycle models for the knowledge base.

A :class:`KnowledgeDocument` is created when a user uploads a file and is
mutated only by the ingestion worker as it moves through the lifecycle::

    pending ──claim──▶ processing ──▶ ready
       ▲                   │    └───▶ error
       │                   │
       └── stale sweep ────┘        (ready/error ──re-enqueue──▶ processing)

An :class:`IngestionJob` is the ephemeral queue payload that points a worker
at one document.  The queue owns it; this package only reads it.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from knowledge_ingest.utils.errors import UnsupportedFormatError


class DocumentStatus(str, Enum):
    """Lifecycle state of an uploaded document."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


_FORMAT_ALIASES: dict[str, str] = {
    "pdf": "pdf",
    "application/pdf": "pdf",
    "docx": "docx",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "txt": "txt",
    "text": "txt",
    "plain": "txt",
    "text/plain": "txt",
    "md": "md",
    "markdown": "md",
    "text/markdown": "md",
    "text/x-markdown": "md",
}


class DocumentFormat(str, Enum):
    """The closed set of formats the text extractor understands."""

    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    MD = "md"

    @classmethod
    def parse(cls, value: str | DocumentFormat) -> DocumentFormat:
        """Normalise a declared format, extension or MIME type.

        Raises
        ------
        UnsupportedFormatError
            If *value* does not name one of the four supported formats.
        """
        if isinstance(value, DocumentFormat):
            return value
        key = str(value or "").strip().lower().lstrip(".")
        try:
            return cls(_FORMAT_ALIASES[key])
        except KeyError:
            raise UnsupportedFormatError(
                message=f"Unsupported document format: {value!r}"
            ) from None

    @property
    def is_text(self) -> bool:
        return self in (DocumentFormat.TXT, DocumentFormat.MD)


# ---------------------------------------------------------------------------
# KnowledgeDocument — one uploaded file and its ingestion state.
# ---------------------------------------------------------------------------
class KnowledgeDocument(BaseModel):
    """An uploaded reference document as tracked by the document repository."""

    model_config = ConfigDict(frozen=True)

    document_id: str = Field(description="Unique identifier of the document.")
    tenant_id: str = Field(description="Owning tenant (user or organisation).")
    collection_id: str = Field(description="Collection/template the document belongs to.")
    filename: str = Field(description="Original filename as uploaded.")
    # Kept as the declared string; the extractor decides whether it is supported.
    format: str = Field(description="Declared document format (pdf, docx, txt, md).")
    source_location: str = Field(description="Where the raw bytes can be fetched from.")
    status: DocumentStatus = Field(default=DocumentStatus.PENDING)
    chunk_count: int = Field(default=0, ge=0, description="Chunks in the current ready set.")
    error_message: str | None = Field(default=None, description="Cause of the last failure.")
    lease_token: str | None = Field(
        default=None, description="Token of the worker currently processing the document."
    )
    lease_acquired_at: datetime | None = Field(default=None)
    created_at: datetime | None = Field(default=None)
    updated_at: datetime | None = Field(default=None)

    def to_job(self) -> IngestionJob:
        """Build the queue payload that re-ingests this document."""
        return IngestionJob(
            document_id=self.document_id,
            source_location=self.source_location,
            format=self.format,
            tenant_id=self.tenant_id,
            collection_id=self.collection_id,
            filename=self.filename,
        )


# ---------------------------------------------------------------------------
# IngestionJob — the queue payload consumed by a worker.
# ---------------------------------------------------------------------------
class IngestionJob(BaseModel):
    """Inbound job payload.

    Accepts both the queue's camelCase keys (``documentId``,
    ``sourceLocation``, ``tenantId``, ``collectionId``) and snake_case names.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    document_id: str = Field(alias="documentId")
    source_location: str = Field(alias="sourceLocation")
    format: str
    tenant_id: str = Field(alias="tenantId")
    collection_id: str = Field(alias="collectionId")
    filename: str | None = Field(
        default=None, description="Filename for validation; derived from the location if absent."
    )

    @property
    def effective_filename(self) -> str:
        """Return the filename, falling back to the last path segment of the location."""
        if self.filename:
            return self.filename
        tail = self.source_location.rstrip("/").rsplit("/", 1)[-1]
        return tail.split("?", 1)[0] or self.document_id

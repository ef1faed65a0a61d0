"""Abstract base class for content scanners.

The scanner runs twice per document: once on the raw bytes before extraction
and once on the extracted text before chunking.  An invalid result aborts the
pipeline before any chunk is produced; warnings are logged and never fatal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from knowledge_ingest.models.rag import ValidationResult


class IContentScanner(ABC):
    """Contract for file and text safety checks."""

    @abstractmethod
    def validate_file(
        self,
        data: bytes,
        filename: str,
        format: str,
        max_size_mb: float,
    ) -> ValidationResult:
        """Check raw bytes for size, type and filename problems.

        Parameters
        ----------
        data:
            The raw document bytes.
        filename:
            The uploaded filename.
        format:
            The declared document format.
        max_size_mb:
            Upper bound on the file size in megabytes.
        """

    @abstractmethod
    def scan_text_content(self, text: str) -> ValidationResult:
        """Check extracted text for disallowed content."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this scanner."""

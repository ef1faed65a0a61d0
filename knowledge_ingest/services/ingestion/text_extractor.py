"""Format dispatch from raw document bytes to plain text.

Pattern: Strategy (format → processor dispatch).  The extractor knows which
processor handles which :class:`DocumentFormat` and normalises failures:
an unknown format is an :class:`UnsupportedFormatError`, anything a format
library throws is an :class:`ExtractionError`.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from knowledge_ingest.models.document import DocumentFormat
from knowledge_ingest.services.ingestion.source_processors import (
    DocxProcessor,
    PDFProcessor,
    PlainTextProcessor,
)
from knowledge_ingest.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)


class _Processor(Protocol):
    def process(self, data: bytes) -> str: ...


class TextExtractor:
    """Converts document bytes of a declared format into UTF-8 text."""

    def __init__(self, processors: dict[DocumentFormat, _Processor] | None = None) -> None:
        if processors is None:
            text_processor = PlainTextProcessor()
            processors = {
                DocumentFormat.PDF: PDFProcessor(),
                DocumentFormat.DOCX: DocxProcessor(),
                DocumentFormat.TXT: text_processor,
                DocumentFormat.MD: text_processor,
            }
        self._processors = processors

    def extract(self, data: bytes, fmt: str | DocumentFormat) -> str:
        """Extract plain text from *data*.

        Parameters
        ----------
        data:
            Raw document bytes.
        fmt:
            Declared format; anything :meth:`DocumentFormat.parse` accepts.

        Raises
        ------
        UnsupportedFormatError
            If *fmt* is not one of pdf, docx, txt, md.
        ExtractionError
            If the format library fails.
        """
        doc_format = DocumentFormat.parse(fmt)
        processor = self._processors.get(doc_format)
        if processor is None:
            raise ExtractionError(message=f"No processor registered for {doc_format.value}")

        try:
            text = processor.process(data)
        except ExtractionError:
            raise
        except Exception as exc:
            raise ExtractionError(
                message=f"{doc_format.value} extraction failed: {exc}",
            ) from exc

        logger.info("text_extracted", format=doc_format.value, characters=len(text))
        return text

"""Source processor for PDF documents.

Reads PDF bytes with PyMuPDF (fitz) and extracts text page by page.  Pages
are joined with a blank line so page boundaries become paragraph boundaries
for the chunker.  Scanned PDFs without a text layer produce empty text,
which the pipeline reports as an empty document.
"""

from __future__ import annotations

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from knowledge_ingest.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)


class PDFProcessor:
    """Converts PDF bytes into plain text."""

    def process(self, data: bytes) -> str:
        """Return the text of every page, separated by blank lines.

        Raises
        ------
        ExtractionError
            If PyMuPDF cannot open or read the document.
        """
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ExtractionError(
                message=f"Could not open PDF: {exc}",
                provider_name="pymupdf",
            ) from exc

        pages: list[str] = []
        try:
            for page_num in range(len(doc)):
                text = doc[page_num].get_text("text").strip()
                if text:
                    pages.append(text)
            page_count = len(doc)
        except Exception as exc:
            raise ExtractionError(
                message=f"Could not read PDF page text: {exc}",
                provider_name="pymupdf",
            ) from exc
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", page_count=page_count)

        logger.info("pdf_processed", page_count=page_count, text_pages=len(pages))
        return "\n\n".join(pages)

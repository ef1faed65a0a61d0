"""Source processors for the ingestion pipeline.

Each processor converts the raw bytes of one format into plain UTF-8 text.
No chunking or validation happens here.

- **PDFProcessor**        -- PDF via PyMuPDF page extraction
- **DocxProcessor**       -- Word documents via python-docx
- **PlainTextProcessor**  -- ``txt`` and ``md`` via UTF-8 decoding
"""

from knowledge_ingest.services.ingestion.source_processors.docx_processor import DocxProcessor
from knowledge_ingest.services.ingestion.source_processors.pdf_processor import PDFProcessor
from knowledge_ingest.services.ingestion.source_processors.text_processor import (
    PlainTextProcessor,
)

__all__ = [
    "DocxProcessor",
    "PDFProcessor",
    "PlainTextProcessor",
]

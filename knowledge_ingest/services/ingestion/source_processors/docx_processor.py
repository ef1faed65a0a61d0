"""Source processor for Word (.docx) documents.

python-docx reads the XML inside the DOCX zip archive.  Formatting is
stripped; each non-blank paragraph becomes a paragraph of the output, and
table rows are appended as ``cell | cell`` lines after the body text.
"""

from __future__ import annotations

import io

import structlog
from docx import Document

from knowledge_ingest.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)


class DocxProcessor:
    """Converts DOCX bytes into plain text."""

    def process(self, data: bytes) -> str:
        """Return non-blank paragraphs (and table rows) joined by blank lines.

        Raises
        ------
        ExtractionError
            If python-docx cannot parse the archive.
        """
        try:
            doc = Document(io.BytesIO(data))
        except Exception as exc:
            raise ExtractionError(
                message=f"Could not open DOCX: {exc}",
                provider_name="python-docx",
            ) from exc

        blocks = [para.text.strip() for para in doc.paragraphs if para.text.strip()]

        for table in doc.tables:
            rows = []
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                if any(cells):
                    rows.append(" | ".join(cells))
            if rows:
                blocks.append("\n".join(rows))

        logger.info(
            "docx_processed",
            paragraphs=len(doc.paragraphs),
            tables=len(doc.tables),
            blocks=len(blocks),
        )
        return "\n\n".join(blocks)

"""Source processor for plain-text and Markdown documents.

Both formats are decoded as UTF-8.  A leading byte-order mark is dropped and
undecodable bytes become U+FFFD rather than failing the document.  Markdown
is kept verbatim: headings and lists survive as text, and blank lines still
separate paragraphs for the chunker.
"""

from __future__ import annotations

import structlog

logger = structlog.get_logger(logger_name=__name__)


class PlainTextProcessor:
    """Decodes ``txt`` and ``md`` bytes."""

    def process(self, data: bytes) -> str:
        text = data.decode("utf-8-sig", errors="replace")
        # Normalise Windows and old-Mac line endings so blank-line
        # detection sees "\n\n".
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        logger.debug("text_processed", characters=len(text))
        return text

"""Document ingestion pipeline for the knowledge base.

Pipeline stages: **fetch -> validate -> extract -> scan -> chunk -> embed -> store**.

1. **Extract** (text_extractor.py / source_processors/) -- format-specific
   readers turn PDF, DOCX, TXT and Markdown bytes into plain text.

2. **Chunk** (chunker.py / TextChunker) -- splits text into 300-600 token
   chunks on paragraph and sentence boundaries, with overlap between
   paragraph-level chunks.

3. **Embed + Store** (pipeline.py / IngestionPipeline) -- one embedding call
   per document, then an atomic replace of the document's chunk set.

IngestionWorkerPool runs pipeline jobs on a bounded number of workers and
StaleDocumentSweeper hands abandoned ``processing`` documents back to it.
"""

from knowledge_ingest.services.ingestion.chunker import TextChunker
from knowledge_ingest.services.ingestion.pipeline import IngestionPipeline
from knowledge_ingest.services.ingestion.stale_sweeper import StaleDocumentSweeper
from knowledge_ingest.services.ingestion.text_extractor import TextExtractor
from knowledge_ingest.services.ingestion.worker_pool import IngestionWorkerPool

__all__ = [
    "IngestionPipeline",
    "IngestionWorkerPool",
    "StaleDocumentSweeper",
    "TextChunker",
    "TextExtractor",
]

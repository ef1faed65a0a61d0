"""Chunk store implementations.

Two implementations of IChunkStore:
    1. SQLiteChunkStore   — vectors as float32 blobs beside the document
       records; replace is one transaction.  The default backend.
    2. ChromaDBChunkStore — persistent ChromaDB collections (cosine space);
       replace is a generation pointer flip.
"""

from knowledge_ingest.providers.chunk_store.chromadb_chunk_store import ChromaDBChunkStore
from knowledge_ingest.providers.chunk_store.sqlite_chunk_store import SQLiteChunkStore

__all__ = ["SQLiteChunkStore", "ChromaDBChunkStore"]

"""Public interface definitions for every external collaborator.

Business logic talks to embedding services, stores, scanners and blob
storage only through the abstract base classes in this package.  Concrete
adapters live in ``knowledge_ingest/providers/`` and are chosen at startup by
the CLI factories, so tests can inject mocks without real API calls.

CONCRETE PROVIDER MAP:
    Interface             →  Concrete implementations
    ─────────────────────────────────────────────────────────────────────
    IEmbeddingProvider    →  OpenAIEmbeddingProvider, NomicEmbeddingProvider,
                             FastEmbedEmbeddingProvider
    IChunkStore           →  SQLiteChunkStore, ChromaDBChunkStore
    IDocumentRepository   →  SQLiteDocumentRepository
    IContentScanner       →  PatternContentScanner
    IBlobFetcher          →  HttpBlobFetcher, LocalBlobFetcher,
                             CompositeBlobFetcher
"""

from knowledge_ingest.interfaces.blob_fetcher import IBlobFetcher
from knowledge_ingest.interfaces.chunk_store import IChunkStore
from knowledge_ingest.interfaces.content_scanner import IContentScanner
from knowledge_ingest.interfaces.document_repository import IDocumentRepository
from knowledge_ingest.interfaces.embedding_provider import IEmbeddingProvider

__all__ = [
    "IBlobFetcher",
    "IChunkStore",
    "IContentScanner",
    "IDocumentRepository",
    "IEmbeddingProvider",
]

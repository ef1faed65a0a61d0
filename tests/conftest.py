"""Shared pytest fixtures for the knowledge-ingest test suite."""

from __future__ import annotations

import hashlib
import math
import re
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from knowledge_ingest.interfaces.blob_fetcher import IBlobFetcher
from knowledge_ingest.interfaces.chunk_store import IChunkStore
from knowledge_ingest.interfaces.document_repository import IDocumentRepository
from knowledge_ingest.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_ingest.models.document import DocumentStatus, IngestionJob, KnowledgeDocument
from knowledge_ingest.models.rag import CorpusStats

# ---------------------------------------------------------------------------
# Deterministic embedder
# ---------------------------------------------------------------------------

_EMBEDDING_DIM = 64
_WORD_RE = re.compile(r"[a-z0-9]+")


def hash_to_vector(text: str, dim: int = _EMBEDDING_DIM) -> list[float]:
    """Bag-of-words feature hashing, normalised to unit length.

    Each lower-cased word adds +1/-1 to one bucket chosen by its SHA-256
    digest.  Deterministic across processes, and texts sharing words get a
    positive cosine similarity, so identical texts score exactly 1.0.
    """
    vector = [0.0] * dim
    for word in _WORD_RE.findall(text.lower()):
        digest = hashlib.sha256(word.encode("utf-8")).digest()
        bucket = int.from_bytes(digest[:4], "little") % dim
        vector[bucket] += 1.0 if digest[4] & 1 else -1.0
    magnitude = math.sqrt(sum(v * v for v in vector))
    if magnitude == 0.0:
        vector[0] = 1.0
        return vector
    return [v / magnitude for v in vector]


class HashingEmbeddingProvider(IEmbeddingProvider):
    """In-memory deterministic embedding provider that records its calls."""

    def __init__(self, dim: int = _EMBEDDING_DIM) -> None:
        self._dim = dim
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [hash_to_vector(t, self._dim) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return hash_to_vector(text, self._dim)

    def get_dimension(self) -> int:
        return self._dim

    def get_provider_name(self) -> str:
        return "hashing-embedding"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Sample text
# ---------------------------------------------------------------------------


def make_paragraph(tag: str, words: int, word_len: int = 6) -> str:
    """Build a paragraph of *words* distinct tokens like ``p0w000``.

    Each token is *word_len* characters and tokens are space-separated, so the
    paragraph is ``words * (word_len + 1) - 1`` characters long.
    """
    return " ".join(f"{tag}w{i:0{word_len - len(tag) - 1}d}" for i in range(words))


@pytest.fixture
def handbook_text() -> str:
    """Six policy paragraphs of roughly 230 estimated tokens each."""
    topics = [
        ("Vacation", "New hires accrue twenty vacation days per year, credited monthly."),
        ("Expenses", "Expense reports are filed within thirty days with itemised receipts."),
        ("Security", "Laptops must use full-disk encryption and lock after five minutes."),
        ("Onboarding", "Every new hire is paired with a buddy for their first six weeks."),
        ("Remote work", "Employees may work remotely three days a week with manager approval."),
        ("Equipment", "The company provides a laptop, a monitor and a headset on day one."),
    ]
    paragraphs = []
    for title, sentence in topics:
        filler = " ".join(
            f"The {title.lower()} policy clause {i} applies to all staff in every office."
            for i in range(12)
        )
        paragraphs.append(f"{title}. {sentence} {filler}")
    return "\n\n".join(paragraphs)


# ---------------------------------------------------------------------------
# Mock collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def hashing_embedder() -> HashingEmbeddingProvider:
    return HashingEmbeddingProvider()


@pytest.fixture
def mock_repository() -> IDocumentRepository:
    """Repository mock whose claim succeeds with lease ``lease-1``."""
    mock = MagicMock(spec=IDocumentRepository)
    mock.initialize = AsyncMock()
    mock.register_document = AsyncMock()
    mock.get_document = AsyncMock(return_value=None)
    mock.list_documents = AsyncMock(return_value=[])
    mock.claim = AsyncMock(return_value="lease-1")
    mock.mark_ready = AsyncMock()
    mock.mark_error = AsyncMock()
    mock.verify_lease = AsyncMock()
    mock.find_stale_processing = AsyncMock(return_value=[])
    mock.release_stale = AsyncMock(return_value=True)
    mock.delete_document = AsyncMock(return_value=True)
    return mock


async def _replace_chunks(document, chunks, embeddings, lease_check=None) -> int:  # noqa: ANN001
    if lease_check is not None:
        await lease_check()
    return len(chunks)


@pytest.fixture
def mock_chunk_store() -> IChunkStore:
    """Chunk store mock that honours the lease check like the real stores."""
    mock = MagicMock(spec=IChunkStore)
    mock.initialize = AsyncMock()
    mock.replace_document_chunks = AsyncMock(side_effect=_replace_chunks)
    mock.delete_document_chunks = AsyncMock(return_value=0)
    mock.search = AsyncMock(return_value=[])
    mock.count_document_chunks = AsyncMock(return_value=0)
    mock.get_stats = AsyncMock(return_value=CorpusStats())
    mock.get_provider_name.return_value = "mock-store"
    mock.is_available.return_value = True
    return mock


@pytest.fixture
def mock_blob_fetcher() -> IBlobFetcher:
    mock = MagicMock(spec=IBlobFetcher)
    mock.fetch_bytes = AsyncMock(return_value=b"")
    mock.supports.return_value = True
    mock.get_provider_name.return_value = "mock-blob"
    return mock


def make_document(**overrides) -> KnowledgeDocument:
    defaults = {
        "document_id": "doc-1",
        "tenant_id": "tenant-a",
        "collection_id": "onboarding",
        "filename": "handbook.txt",
        "format": "txt",
        "source_location": "file:///uploads/handbook.txt",
        "status": DocumentStatus.PENDING,
    }
    defaults.update(overrides)
    return KnowledgeDocument(**defaults)


def make_job(**overrides) -> IngestionJob:
    defaults = {
        "document_id": "doc-1",
        "source_location": "file:///uploads/handbook.txt",
        "format": "txt",
        "tenant_id": "tenant-a",
        "collection_id": "onboarding",
        "filename": "handbook.txt",
    }
    defaults.update(overrides)
    return IngestionJob(**defaults)


# ---------------------------------------------------------------------------
# Real SQLite stores on a temp path
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "knowledge.db"


@pytest_asyncio.fixture
async def sqlite_repository(db_path: Path):
    from knowledge_ingest.providers.document_store import SQLiteDocumentRepository

    repository = SQLiteDocumentRepository(db_path=db_path)
    await repository.initialize()
    return repository


@pytest_asyncio.fixture
async def sqlite_chunk_store(db_path: Path):
    from knowledge_ingest.providers.chunk_store.sqlite_chunk_store import SQLiteChunkStore

    store = SQLiteChunkStore(db_path=db_path)
    await store.initialize()
    return store

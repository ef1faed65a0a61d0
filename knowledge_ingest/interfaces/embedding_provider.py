"""Abstract base class for text-embedding service providers.

Defines the contract for turning chunk texts and queries into fixed-dimension
vectors.  Implementations may wrap OpenAI ``text-embedding-3-small``, Nomic
``nomic-embed-text`` (local via Ollama), a local ONNX model, or any other
backend.  The same provider instance must serve ingestion and retrieval so
query vectors live in the same space as stored chunk vectors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations (knowledge_ingest/providers/embedding/):
#   OpenAIEmbeddingProvider     — text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider      — nomic-embed-text via Ollama (local)
#   FastEmbedEmbeddingProvider  — local ONNX, no API key
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by ingestion and retrieval."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for an ordered batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.  Implementations handle
            batching internally if the underlying API has a per-call limit;
            callers pass the whole batch in one call.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        knowledge_ingest.utils.errors.EmbeddingServiceError
            If the embedding API call fails.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string (e.g. a query)."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Example values: ``1536`` (OpenAI ``text-embedding-3-small``),
        ``768`` (Nomic ``nomic-embed-text``).
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable.

        Implementations should verify that credentials (if any) are present
        without generating an actual embedding.
        """

"""Embedding provider implementations.

Three implementations of IEmbeddingProvider:
    1. OpenAIEmbeddingProvider    — text-embedding-3-small (1536 dims).
       Requires an API key; also serves OpenAI-compatible hosts.
    2. NomicEmbeddingProvider     — nomic-embed-text via Ollama (768 dims).
       Free and local, but requires a running Ollama server.
    3. FastEmbedEmbeddingProvider — local ONNX model (384 dims by default).
       Needs the optional ``fastembed`` extra, so it is imported directly
       where needed instead of re-exported here.

Switching provider changes the vector dimension: re-ingest every document
after a switch.
"""

from knowledge_ingest.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from knowledge_ingest.providers.embedding.openai_embedding_provider import (
    OpenAIEmbeddingProvider,
)

__all__ = ["OpenAIEmbeddingProvider", "NomicEmbeddingProvider"]

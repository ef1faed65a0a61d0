"""Local ``nomic-embed-text`` embeddings served by Ollama.

Ollama exposes an OpenAI-compatible ``/v1`` endpoint, so requests go through
the shared OpenAI-style loop; only availability is checked on Ollama's native
``/api/tags`` route.  No API key is involved.
"""

from __future__ import annotations

import httpx
import openai

from knowledge_ingest.config.settings import Settings
from knowledge_ingest.providers.embedding.openai_compatible import (
    OpenAICompatibleEmbeddingProvider,
)

_NOMIC_MODEL = "nomic-embed-text"
_NOMIC_DIMENSION = 768
_OLLAMA_BATCH_LIMIT = 512


class NomicEmbeddingProvider(OpenAICompatibleEmbeddingProvider):
    """768-dimensional chunk embeddings from a local Ollama server."""

    def __init__(self, settings: Settings) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        super().__init__(
            client=openai.AsyncOpenAI(
                base_url=f"{self._base_url}/v1",
                api_key="ollama",  # required by the SDK, ignored by Ollama
            ),
            model=_NOMIC_MODEL,
            dimension=_NOMIC_DIMENSION,
            batch_limit=_OLLAMA_BATCH_LIMIT,
            error_label="Nomic/Ollama embedding",
        )

    def get_provider_name(self) -> str:
        return "nomic_embedding"

    def is_available(self) -> bool:
        """Return ``True`` if the Ollama server answers on ``/api/tags``."""
        if not self._base_url:
            return False
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=3.0)
        except (httpx.ConnectError, httpx.TimeoutException):
            return False
        return response.status_code == 200

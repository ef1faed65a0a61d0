"""Embedding provider for OpenAI and OpenAI-compatible hosts.

``OPENAI_BASE_URL`` points the client at TogetherAI, Fireworks or an Azure
gateway instead of api.openai.com; ``OPENAI_EMBEDDING_MODEL`` picks the model
and, through the table below, the vector dimension.
"""

from __future__ import annotations

import openai

from knowledge_ingest.config.settings import Settings
from knowledge_ingest.providers.embedding.openai_compatible import (
    OpenAICompatibleEmbeddingProvider,
)

_DEFAULT_MODEL = "text-embedding-3-small"

# Inputs per request accepted by the embeddings endpoint.
_OPENAI_BATCH_LIMIT = 2048

_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
    "intfloat/multilingual-e5-large-instruct": 1024,
}


class OpenAIEmbeddingProvider(OpenAICompatibleEmbeddingProvider):
    """Chunk embeddings from ``text-embedding-3-small`` or a configured model.

    Unknown models on compatible hosts are assumed to produce 1536-dim
    vectors; the pipeline's dimension check catches a wrong guess.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

        client_kwargs: dict = {"api_key": self._api_key or "unset"}
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url
        model = settings.openai_embedding_model or _DEFAULT_MODEL

        super().__init__(
            client=openai.AsyncOpenAI(**client_kwargs),
            model=model,
            dimension=_MODEL_DIMENSIONS.get(model, 1536),
            batch_limit=_OPENAI_BATCH_LIMIT,
            error_label=self._provider_label,
        )

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

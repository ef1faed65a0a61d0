"""Shared request loop for embedding hosts that speak the OpenAI API.

The embeddings endpoint answers with one item per input, each tagged with the
``index`` of the input it embeds.  Vectors are reassembled by that index, not
by arrival order, and a response that is short, long or has duplicate indices
fails the call instead of misaligning chunks and vectors.
"""

from __future__ import annotations

from typing import Any

import openai
import structlog

from knowledge_ingest.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_ingest.utils.errors import EmbeddingServiceError

logger = structlog.get_logger(logger_name=__name__)


class OpenAICompatibleEmbeddingProvider(IEmbeddingProvider):
    """Batching ``embeddings.create`` caller for OpenAI-style hosts.

    Subclasses construct the ``openai.AsyncOpenAI`` client for their host and
    pass it in together with the model, its dimension and the host's
    per-request input limit.
    """

    def __init__(
        self,
        client: openai.AsyncOpenAI,
        model: str,
        dimension: int,
        batch_limit: int,
        error_label: str,
    ) -> None:
        self._client = client
        self._model = model
        self._dimension = dimension
        self._batch_limit = batch_limit
        self._error_label = error_label

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, one request per ``batch_limit`` inputs, in input order."""
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_limit):
            batch = texts[start : start + self._batch_limit]
            try:
                response = await self._client.embeddings.create(input=batch, model=self._model)
            except openai.APIError as exc:
                raise EmbeddingServiceError(
                    message=f"{self._error_label} API error: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            vectors.extend(self._in_input_order(response.data, len(batch)))
            logger.info(
                "embedding_batch",
                provider=self.get_provider_name(),
                model=self._model,
                batch_start=start,
                batch_size=len(batch),
                tokens=response.usage.total_tokens if response.usage else None,
            )
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        result = await self.embed([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def _in_input_order(self, items: list[Any], expected: int) -> list[list[float]]:
        if len(items) != expected:
            raise EmbeddingServiceError(
                message=(
                    f"{self._error_label} returned {len(items)} embeddings "
                    f"for {expected} inputs"
                ),
                provider_name=self.get_provider_name(),
            )
        ordered = sorted(items, key=lambda item: item.index)
        if [item.index for item in ordered] != list(range(expected)):
            raise EmbeddingServiceError(
                message=f"{self._error_label} returned duplicate or out-of-range embedding indices",
                provider_name=self.get_provider_name(),
            )
        return [list(item.embedding) for item in ordered]

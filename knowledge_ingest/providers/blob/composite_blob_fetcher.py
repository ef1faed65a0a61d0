"""Dispatch ``fetch_bytes`` to the first fetcher that supports a location."""

from __future__ import annotations

from knowledge_ingest.interfaces.blob_fetcher import IBlobFetcher
from knowledge_ingest.utils.errors import StorageError


class CompositeBlobFetcher(IBlobFetcher):
    """Try each wrapped fetcher in order, by :meth:`IBlobFetcher.supports`."""

    def __init__(self, fetchers: list[IBlobFetcher]) -> None:
        self._fetchers = list(fetchers)

    async def fetch_bytes(self, source_location: str) -> bytes:
        for fetcher in self._fetchers:
            if fetcher.supports(source_location):
                return await fetcher.fetch_bytes(source_location)
        raise StorageError(
            message=f"No blob fetcher handles {source_location!r}",
            provider_name=self.get_provider_name(),
        )

    def supports(self, source_location: str) -> bool:
        return any(f.supports(source_location) for f in self._fetchers)

    def get_provider_name(self) -> str:
        return "composite_blob"

"""Abstract base class for fetching uploaded document bytes."""

from __future__ import annotations

from abc import ABC, abstractmethod


class IBlobFetcher(ABC):
    """Contract for resolving a job's ``source_location`` to raw bytes."""

    @abstractmethod
    async def fetch_bytes(self, source_location: str) -> bytes:
        """Download the document stored at *source_location*.

        Raises
        ------
        knowledge_ingest.utils.errors.StorageError
            If the blob cannot be retrieved.
        """

    @abstractmethod
    def supports(self, source_location: str) -> bool:
        """Return ``True`` if this fetcher can resolve *source_location*."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this fetcher."""

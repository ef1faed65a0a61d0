"""HTTP(S) blob fetcher backed by httpx.

Resolves ``http://`` and ``https://`` source locations, typically pre-signed
object-storage URLs handed over by the upload endpoint.
"""

from __future__ import annotations

import httpx
import structlog

from knowledge_ingest.interfaces.blob_fetcher import IBlobFetcher
from knowledge_ingest.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_TIMEOUT = 30.0
_DEFAULT_HEADERS = {
    "User-Agent": "knowledge-ingest/0.1",
    "Accept": "*/*",
}


class HttpBlobFetcher(IBlobFetcher):
    """Download document bytes over HTTP.

    An ``httpx.AsyncClient`` may be injected; otherwise
    the fetcher creates and owns one, and :meth:`close` releases it.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers=_DEFAULT_HEADERS,
            follow_redirects=True,
        )

    async def fetch_bytes(self, source_location: str) -> bytes:
        try:
            response = await self._client.get(source_location)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise StorageError(
                message=f"Timeout fetching {source_location}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise StorageError(
                message=f"HTTP {exc.response.status_code} for {source_location}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPError as exc:
            raise StorageError(
                message=f"HTTP error fetching {source_location}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        data = response.content
        logger.info("blob_fetched", source=source_location, size_bytes=len(data))
        return data

    def supports(self, source_location: str) -> bool:
        return source_location.lower().startswith(("http://", "https://"))

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def get_provider_name(self) -> str:
        return "http_blob"

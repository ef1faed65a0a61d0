"""Filesystem blob fetcher for ``file://`` URLs and plain paths."""

from __future__ import annotations

import asyncio
from pathlib import Path
from urllib.parse import unquote, urlparse

import structlog

from knowledge_ingest.interfaces.blob_fetcher import IBlobFetcher
from knowledge_ingest.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)


class LocalBlobFetcher(IBlobFetcher):
    """Read document bytes from local disk.

    Parameters
    ----------
    root:
        When set, every resolved path must lie inside this directory;
        anything else (``..`` escapes, absolute paths elsewhere) is refused.
        Relative locations are resolved against it.
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root).resolve() if root else None

    async def fetch_bytes(self, source_location: str) -> bytes:
        path = self._resolve(source_location)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageError(
                message=f"Could not read {path}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("blob_fetched", source=str(path), size_bytes=len(data))
        return data

    def supports(self, source_location: str) -> bool:
        scheme = urlparse(source_location).scheme.lower()
        # Single letters are Windows drive prefixes, not schemes.
        return scheme in ("", "file") or len(scheme) == 1

    def get_provider_name(self) -> str:
        return "local_blob"

    def _resolve(self, source_location: str) -> Path:
        parsed = urlparse(source_location)
        raw = unquote(parsed.path) if parsed.scheme.lower() == "file" else source_location
        path = Path(raw).expanduser()
        if self._root is not None and not path.is_absolute():
            path = self._root / path
        path = path.resolve()

        if self._root is not None and not path.is_relative_to(self._root):
            raise StorageError(
                message=f"{source_location} is outside the blob root {self._root}",
                provider_name=self.get_provider_name(),
            )
        return path

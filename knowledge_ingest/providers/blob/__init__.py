"""Blob fetcher implementations."""

from knowledge_ingest.providers.blob.composite_blob_fetcher import CompositeBlobFetcher
from knowledge_ingest.providers.blob.http_blob_fetcher import HttpBlobFetcher
from knowledge_ingest.providers.blob.local_blob_fetcher import LocalBlobFetcher

__all__ = ["CompositeBlobFetcher", "HttpBlobFetcher", "LocalBlobFetcher"]

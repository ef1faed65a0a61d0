"""Content scanner implementations."""

from knowledge_ingest.providers.scanner.pattern_scanner import (
    PatternContentScanner,
    sanitize_filename,
)

__all__ = ["PatternContentScanner", "sanitize_filename"]

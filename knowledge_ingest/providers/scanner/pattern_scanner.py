"""Pattern-based content scanner.

Implements :class:`IContentScanner` with cheap, deterministic checks:

* filename   -- path traversal, null bytes, length, dangerous extensions
* size       -- empty files and per-format size caps
* type       -- magic-byte signatures for binary formats, null bytes for text
* text       -- a fixed list of injection patterns (script tags, SQL, shell,
                PHP, server-side includes); each hit is a warning and more
                than ``_MAX_WARNINGS`` hits rejects the text

Binary malware scanning is out of scope and assumed to run before upload.
"""

from __future__ import annotations

import re

import structlog

from knowledge_ingest.interfaces.content_scanner import IContentScanner
from knowledge_ingest.models.rag import ValidationResult

logger = structlog.get_logger(logger_name=__name__)

_MB = 1024 * 1024

# Leading bytes every file of the format starts with.  DOCX is a ZIP archive.
_FILE_SIGNATURES: dict[str, list[bytes]] = {
    "pdf": [b"%PDF"],
    "docx": [b"PK\x03\x04"],
}

_MAX_FILE_SIZES: dict[str, int] = {
    "pdf": 50 * _MB,
    "docx": 25 * _MB,
    "txt": 5 * _MB,
    "md": 5 * _MB,
}
_DEFAULT_MAX_FILE_SIZE = 10 * _MB

_TEXT_FORMATS = frozenset({"txt", "md"})

_DANGEROUS_EXTENSIONS = frozenset({"exe", "bat", "cmd", "sh", "php", "jsp", "asp", "cgi"})

_MAX_FILENAME_LENGTH = 255

_DANGEROUS_PATTERNS: list[re.Pattern[str]] = [
    # JavaScript injection
    re.compile(r"<script[\s>]", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    # SQL injection
    re.compile(r";\s*drop\s+table", re.IGNORECASE),
    re.compile(r";\s*delete\s+from", re.IGNORECASE),
    re.compile(r"union\s+select", re.IGNORECASE),
    # Shell injection
    re.compile(r";\s*rm\s+-rf", re.IGNORECASE),
    re.compile(r";\s*wget\s+", re.IGNORECASE),
    re.compile(r";\s*curl\s+", re.IGNORECASE),
    # PHP
    re.compile(r"<\?php", re.IGNORECASE),
    # Server-side includes
    re.compile(r"<!--#exec", re.IGNORECASE),
    re.compile(r"<!--#include", re.IGNORECASE),
]

_MAX_WARNINGS = 10


def sanitize_filename(filename: str) -> str:
    """Make *filename* safe to use as a storage key."""
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)
    cleaned = re.sub(r"\.{2,}", ".", cleaned)
    cleaned = cleaned.strip(".")
    return cleaned[:200]


class PatternContentScanner(IContentScanner):
    """Content scanner built from magic bytes, size caps and regex heuristics."""

    def validate_file(
        self,
        data: bytes,
        filename: str,
        format: str,
        max_size_mb: float | None = None,
    ) -> ValidationResult:
        """Run filename, size, type and (for text) content checks in order.

        The first failing check decides the result.  For ``txt`` and ``md``
        the decoded text is also scanned and its warnings are returned.
        """
        fmt = (format or "").strip().lower().lstrip(".")

        for check in (
            lambda: self.validate_filename(filename),
            lambda: self.validate_file_size(len(data), fmt, max_size_mb),
            lambda: self.validate_file_type(data, fmt),
        ):
            result = check()
            if not result.valid:
                logger.info("file_validation_failed", filename=filename, error=result.error)
                return result

        if fmt in _TEXT_FORMATS:
            return self.scan_text_content(data.decode("utf-8", errors="replace"))

        return ValidationResult(valid=True)

    def scan_text_content(self, text: str) -> ValidationResult:
        """Flag suspicious patterns; reject text that trips too many of them."""
        warnings = [
            f"Suspicious pattern detected: {pattern.pattern}"
            for pattern in _DANGEROUS_PATTERNS
            if pattern.search(text)
        ]

        if len(warnings) > _MAX_WARNINGS:
            return ValidationResult(
                valid=False,
                error="File contains multiple suspicious patterns and may be malicious",
                warnings=warnings,
            )
        return ValidationResult(valid=True, warnings=warnings)

    def get_provider_name(self) -> str:
        return "pattern_scanner"

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    @staticmethod
    def validate_filename(filename: str) -> ValidationResult:
        if not filename:
            return ValidationResult(valid=False, error="Filename is empty")
        if ".." in filename or "/" in filename or "\\" in filename:
            return ValidationResult(valid=False, error="Invalid filename - path traversal detected")
        if "\0" in filename:
            return ValidationResult(valid=False, error="Invalid filename - null byte detected")
        if len(filename) > _MAX_FILENAME_LENGTH:
            return ValidationResult(valid=False, error="Filename too long")

        # Every extension counts, so "report.php.pdf" is rejected too.
        for ext in filename.split(".")[1:]:
            if ext.lower() in _DANGEROUS_EXTENSIONS:
                return ValidationResult(
                    valid=False, error=f"Dangerous file extension detected: .{ext}"
                )
        return ValidationResult(valid=True)

    @staticmethod
    def validate_file_size(
        size_bytes: int,
        fmt: str,
        max_size_mb: float | None = None,
    ) -> ValidationResult:
        if max_size_mb:
            max_bytes = int(max_size_mb * _MB)
        else:
            max_bytes = _MAX_FILE_SIZES.get(fmt, _DEFAULT_MAX_FILE_SIZE)

        if size_bytes > max_bytes:
            return ValidationResult(
                valid=False,
                error=f"File exceeds maximum size of {round(max_bytes / _MB)}MB",
            )
        if size_bytes == 0:
            return ValidationResult(valid=False, error="File is empty")
        return ValidationResult(valid=True)

    @staticmethod
    def validate_file_type(data: bytes, fmt: str) -> ValidationResult:
        if fmt in _TEXT_FORMATS:
            if b"\0" in data:
                return ValidationResult(valid=False, error="File contains binary data")
            return ValidationResult(valid=True)

        signatures = _FILE_SIGNATURES.get(fmt)
        if signatures is None:
            # Unknown formats are rejected later by the extractor.
            return ValidationResult(valid=True)

        if any(data.startswith(sig) for sig in signatures):
            return ValidationResult(valid=True)
        return ValidationResult(
            valid=False,
            error=f"File does not match expected {fmt.upper()} format",
        )

"""DealScope error taxonomy.

Only ``ConfigurationError``, ``ValidationError`` and
``AllDocumentsFailedError`` ever reach a caller of the pipeline. The
extraction errors are raised by capability adapters and converted into
per-document outcomes by the gateway.
"""

from __future__ import annotations

from typing import Any


class DealScopeError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(DealScopeError):
    """The submitted batch is malformed (empty, missing payloads, too large)."""


class ConfigurationError(DealScopeError):
    """Weights or decision bands are malformed beyond auto-normalization."""


class ConfigurationWarning(UserWarning):
    """Configuration was accepted after an automatic correction."""


class OversizedDocumentError(DealScopeError):
    """A document is still over the size limit after compression."""

    def __init__(self, filename: str, size: int, limit: int) -> None:
        self.filename = filename
        self.size = size
        self.limit = limit
        super().__init__(
            f"{filename} is {size} bytes after compression (limit {limit})"
        )


class TransientExtractionError(DealScopeError):
    """Retryable failure of the external extraction capability.

    ``kind`` is one of ``timeout``, ``quota_exceeded``, ``unavailable``.
    """

    def __init__(self, message: str, kind: str = "unavailable") -> None:
        self.kind = kind
        super().__init__(message)


class PermanentExtractionError(DealScopeError):
    """Non-retryable failure: unsupported format or irrecoverable response."""

    def __init__(self, message: str, kind: str = "unsupported_format") -> None:
        self.kind = kind
        super().__init__(message)


class AllDocumentsFailedError(DealScopeError):
    """No document in the batch produced a usable extraction."""

    def __init__(self, failures: list[dict[str, Any]]) -> None:
        self.failures = failures
        summary = "; ".join(
            f"{f.get('filename')}: {f.get('error')}" for f in failures
        )
        super().__init__(
            f"All {len(failures)} documents failed extraction"
            + (f" ({summary})" if summary else "")
        )

"""DealScope Agent Contracts — models passed between pipeline stages.

  Compression Guard  -> Gateway:       CompressionResult
  Capability         -> Gateway:       CapabilityResponse
  Validator          -> Gateway:       ValidationOutcome
  Scorer             -> Orchestrator:  ScoreCard
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field

from dealscope.modules.analysis.schemas import Decision, DimensionScore, ExtractionPayload


class ErrorKind(str, Enum):
    """Classification of one failed extraction attempt."""

    TIMEOUT = "timeout"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNAVAILABLE = "unavailable"
    MALFORMED = "malformed"
    UNPARSEABLE = "unparseable"
    UNSUPPORTED_FORMAT = "unsupported_format"
    OVERSIZED = "oversized"
    BUDGET_EXCEEDED = "budget_exceeded"
    UNEXPECTED = "unexpected"

    @property
    def is_transient(self) -> bool:
        return self in _TRANSIENT_KINDS


_TRANSIENT_KINDS = {
    ErrorKind.TIMEOUT,
    ErrorKind.QUOTA_EXCEEDED,
    ErrorKind.UNAVAILABLE,
    ErrorKind.BUDGET_EXCEEDED,
}


# ---------------------------------------------------------------------------
# Compression Guard output
# ---------------------------------------------------------------------------


class CompressionResult(BaseModel):
    data: bytes
    method: str = Field(..., description="none, image-jpeg-q75-1600, pdf-rewrite, pdf-raster-110dpi-q60, ...")
    original_size: int
    compressed_size: int
    ratio: float = Field(..., description="original_size / compressed_size")
    mime_type: str = Field(..., description="Mime type of data; image/jpeg after an image re-encode")
    exceeded: bool = False


# ---------------------------------------------------------------------------
# External extraction capability contract
# ---------------------------------------------------------------------------


class CapabilityResponse(BaseModel):
    """Raw answer of the extraction capability plus call metadata."""

    content: dict[str, Any] | str
    provider: str = ""
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    characters: int = Field(0, description="Characters of document text the capability read")


class ExtractionCapability(Protocol):
    """Anything that can turn one document into structured fields.

    Implementations raise ``TransientExtractionError`` or
    ``PermanentExtractionError`` for failed calls.
    """

    async def extract(
        self,
        data: bytes,
        mime_type: str,
        schema: dict[str, Any],
        *,
        strict: bool = False,
    ) -> CapabilityResponse: ...


# ---------------------------------------------------------------------------
# Validator output
# ---------------------------------------------------------------------------


class ValidationOutcome(BaseModel):
    """Result of validating one raw capability response."""

    payload: ExtractionPayload | None = None
    confidence: float = 0.0
    missing_sections: list[str] = []
    error_kind: ErrorKind | None = None
    error: str | None = None
    warnings: list[str] = []

    @property
    def ok(self) -> bool:
        return self.error_kind is None and self.payload is not None


# ---------------------------------------------------------------------------
# Scorer output
# ---------------------------------------------------------------------------


class ScoreCard(BaseModel):
    dimension_scores: list[DimensionScore]
    overall: int = Field(..., ge=0, le=100)
    decision: Decision
    low_data: bool = False
    warnings: list[str] = []

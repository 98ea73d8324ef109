"""DealScope Extraction Gateway — one document in, one ExtractionResult out.

Retry policy (driven by the ErrorKind of each attempt, never by exceptions):
  timeout / quota_exceeded / unavailable -> retry up to max_retries, backoff 0.5s, 1s, ...
  malformed (parseable, wrong shape)     -> one strict re-ask
  unparseable / unsupported_format       -> fail this document only
  any other exception (unexpected)       -> fail this document only, logged with traceback

The gateway holds no per-document state; everything it learns ends up in
the returned ExtractionResult.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

from dealscope.core.config import PipelineConfig
from dealscope.core.exceptions import (
    OversizedDocumentError,
    PermanentExtractionError,
    TransientExtractionError,
)
from dealscope.modules.analysis.agent_schemas import (
    CapabilityResponse,
    CompressionResult,
    ErrorKind,
    ExtractionCapability,
    ValidationOutcome,
)
from dealscope.modules.analysis.agents.validator import ResultValidator, classify_outcome
from dealscope.modules.analysis.schemas import (
    AttemptRecord,
    Document,
    ExtractionError,
    ExtractionPayload,
    ExtractionResult,
)

logger = structlog.get_logger()

EXTRACTION_SCHEMA = ExtractionPayload.model_json_schema()

_TRANSIENT_KINDS = {ErrorKind.TIMEOUT, ErrorKind.QUOTA_EXCEEDED, ErrorKind.UNAVAILABLE}
_PERMANENT_KINDS = {
    ErrorKind.UNSUPPORTED_FORMAT,
    ErrorKind.UNPARSEABLE,
    ErrorKind.OVERSIZED,
    ErrorKind.UNEXPECTED,
}


def _coerce_kind(value: str, allowed: set[ErrorKind], default: ErrorKind) -> ErrorKind:
    try:
        kind = ErrorKind(value)
    except ValueError:
        return default
    return kind if kind in allowed else default


def _truncate_utf8(data: bytes, limit: int) -> bytes:
    """Cut to at most ``limit`` bytes without splitting a UTF-8 sequence."""
    if len(data) <= limit:
        return data
    end = limit
    while end > 0 and (data[end] & 0xC0) == 0x80:
        end -= 1
    return data[:end]


class ExtractionGateway:
    """Submits compressed documents to the extraction capability."""

    agent_name = "Gateway"

    def __init__(
        self,
        capability: ExtractionCapability,
        config: PipelineConfig,
        validator: ResultValidator | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.capability = capability
        self.config = config
        self.validator = validator or ResultValidator(config.missing_section_penalty)
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(self, document: Document, compression: CompressionResult) -> ExtractionResult:
        try:
            data, policy, warnings = self._apply_size_policy(document, compression)
        except OversizedDocumentError as e:
            logger.warning("Gateway: document rejected", file=document.filename, error=str(e))
            return self._failure(
                document,
                ErrorKind.OVERSIZED,
                str(e),
                attempts=[],
                oversized_policy="reject",
            )

        attempts: list[AttemptRecord] = []
        transient_retries = 0
        strict = False

        while True:
            attempt_no = len(attempts) + 1
            kind, message, response = await self._call(data, compression.mime_type, strict)

            validation: ValidationOutcome | None = None
            if response is not None:
                validation = self.validator.validate(
                    response.content,
                    characters=response.characters,
                    raw_size=document.raw_size,
                )
                if not validation.ok:
                    kind, message = validation.error_kind, validation.error

            attempts.append(self._record(attempt_no, strict, kind, message, response))

            if kind is None and validation is not None:
                logger.info(
                    "Gateway: document extracted",
                    file=document.filename,
                    attempts=attempt_no,
                    confidence=validation.confidence,
                    missing=validation.missing_sections,
                )
                return self._success(
                    document, validation, response, attempts, policy, warnings,
                )

            logger.info(
                "Gateway: attempt failed",
                file=document.filename,
                attempt=attempt_no,
                strict=strict,
                kind=kind.value,
                error=message,
            )

            if kind.is_transient and transient_retries < self.config.max_retries:
                delay = (self.config.backoff_base_ms / 1000) * (2 ** transient_retries)
                transient_retries += 1
                await self._sleep(delay)
                continue

            if kind is ErrorKind.MALFORMED and not strict:
                strict = True
                continue

            return self._failure(
                document,
                kind,
                message or kind.value,
                attempts=attempts,
                oversized_policy=policy,
                warnings=warnings,
            )

    # ------------------------------------------------------------------
    # One call to the capability
    # ------------------------------------------------------------------

    async def _call(
        self,
        data: bytes,
        mime_type: str,
        strict: bool,
    ) -> tuple[ErrorKind | None, str | None, CapabilityResponse | None]:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self.capability.extract(data, mime_type, EXTRACTION_SCHEMA, strict=strict),
                timeout=self.config.timeout_s,
            )
        except asyncio.TimeoutError:
            return ErrorKind.TIMEOUT, f"No response within {self.config.timeout_s}s", None
        except TransientExtractionError as e:
            return _coerce_kind(e.kind, _TRANSIENT_KINDS, ErrorKind.UNAVAILABLE), str(e), None
        except PermanentExtractionError as e:
            return _coerce_kind(e.kind, _PERMANENT_KINDS, ErrorKind.UNSUPPORTED_FORMAT), str(e), None
        except Exception as e:
            logger.exception("Gateway: capability raised unexpectedly", mime_type=mime_type, strict=strict)
            return ErrorKind.UNEXPECTED, f"{type(e).__name__}: {e}", None

        if not response.duration_ms:
            response = response.model_copy(
                update={"duration_ms": int((time.monotonic() - start) * 1000)}
            )
        return None, None, response

    # ------------------------------------------------------------------
    # Size contract
    # ------------------------------------------------------------------

    def _apply_size_policy(
        self,
        document: Document,
        compression: CompressionResult,
    ) -> tuple[bytes, str | None, list[str]]:
        """Return (payload, applied policy, warnings) or raise OversizedDocumentError."""
        if not compression.exceeded:
            return compression.data, None, []

        limit = self.config.size_limit_bytes
        policy = self.config.oversized_policy
        size = compression.compressed_size

        if policy == "truncate" and document.mime_type.lower().startswith("text/"):
            data = _truncate_utf8(compression.data, limit)
            return data, "truncate", [
                f"truncated from {size} to {len(data)} bytes to fit the size limit"
            ]

        if policy == "submit":
            return compression.data, "submit", [
                f"submitted at {size} bytes, over the {limit} byte limit"
            ]

        raise OversizedDocumentError(document.filename, size, limit)

    # ------------------------------------------------------------------
    # Result builders
    # ------------------------------------------------------------------

    @staticmethod
    def _record(
        attempt_no: int,
        strict: bool,
        kind: ErrorKind | None,
        message: str | None,
        response: CapabilityResponse | None,
    ) -> AttemptRecord:
        record = AttemptRecord(
            attempt=attempt_no,
            strict=strict,
            kind=kind.value if kind else None,
            message=message,
        )
        if response is not None:
            record = record.model_copy(update={
                "duration_ms": response.duration_ms,
                "provider": response.provider,
                "model": response.model,
                "input_tokens": response.input_tokens,
                "output_tokens": response.output_tokens,
            })
        return record

    @staticmethod
    def _success(
        document: Document,
        validation: ValidationOutcome,
        response: CapabilityResponse,
        attempts: list[AttemptRecord],
        policy: str | None,
        warnings: list[str],
    ) -> ExtractionResult:
        payload = validation.payload
        return ExtractionResult(
            document_id=document.id,
            document_index=document.index,
            filename=document.filename,
            company=payload.company,
            financial=payload.financial,
            team=payload.team,
            market=payload.market,
            risks=payload.risks or [],
            product=payload.product,
            traction=payload.traction,
            confidence=validation.confidence,
            outcome="success",
            attempts=attempts,
            characters_extracted=response.characters,
            missing_sections=validation.missing_sections,
            oversized_policy=policy,
            warnings=warnings + validation.warnings,
        )

    @staticmethod
    def _failure(
        document: Document,
        kind: ErrorKind,
        message: str,
        *,
        attempts: list[AttemptRecord],
        oversized_policy: str | None = None,
        warnings: list[str] | None = None,
    ) -> ExtractionResult:
        return ExtractionResult(
            document_id=document.id,
            document_index=document.index,
            filename=document.filename,
            outcome=classify_outcome(kind),
            error=ExtractionError(kind=kind.value, message=message),
            attempts=attempts,
            oversized_policy=oversized_policy,
            warnings=warnings or [],
        )

"""DealScope Pipeline Orchestrator.

Pure Python controller, no LLM calls of its own. Routes a batch of
documents through the pipeline:

  For each document (at most K at a time):
    bytes -> Compression Guard -> Extraction Gateway -> ExtractionResult
  Barrier (all documents settled)
    results -> Consolidation Engine -> ConsolidatedProfile
            -> Scoring Engine       -> ScoreCard
            -> InvestmentReport

At least one successful document yields a report; otherwise the batch fails
with AllDocumentsFailedError. Cancelling the batch cancels every in-flight
document and never returns a partial report.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

import structlog

from dealscope.core.config import PipelineConfig
from dealscope.core.exceptions import AllDocumentsFailedError, ValidationError
from dealscope.modules.analysis.agent_schemas import (
    CompressionResult,
    ErrorKind,
    ExtractionCapability,
)
from dealscope.modules.analysis.agents.compressor import CompressionGuard
from dealscope.modules.analysis.agents.consolidator import ConsolidationEngine
from dealscope.modules.analysis.agents.gateway import ExtractionGateway
from dealscope.modules.analysis.agents.scorer import ScoringEngine, resolve_bands, resolve_weights
from dealscope.modules.analysis.agents.validator import classify_outcome
from dealscope.modules.analysis.schemas import (
    Document,
    DocumentFailure,
    DocumentInput,
    ExtractionError,
    ExtractionResult,
    InvestmentReport,
    ProcessingMetadata,
)
from dealscope.modules.analysis.usage import summarize

logger = structlog.get_logger()


def coverage_label(succeeded: int, attempted: int) -> str:
    return f"{succeeded} of {attempted} documents processed"


class PipelineOrchestrator:
    """Batch controller: fan-out, barrier, consolidation, scoring."""

    agent_name = "Orchestrator"

    def __init__(
        self,
        capability: ExtractionCapability,
        config: PipelineConfig | None = None,
        *,
        compressor: CompressionGuard | None = None,
        gateway: ExtractionGateway | None = None,
        consolidator: ConsolidationEngine | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.compressor = compressor or CompressionGuard()
        self.gateway = gateway or ExtractionGateway(capability, self.config)
        self.consolidator = consolidator or ConsolidationEngine()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def analyze(
        self,
        inputs: Sequence[DocumentInput],
        weights: Mapping[str, Any] | None = None,
    ) -> InvestmentReport:
        """Run the full pipeline for one batch.

        Raises:
            ValidationError: the batch itself is malformed.
            ConfigurationError: weights or decision bands are malformed.
            AllDocumentsFailedError: no document extracted successfully.
        """
        self._validate_batch(inputs)

        # Configuration fails fast, before any external call
        resolved_weights, weight_warnings = resolve_weights(
            weights if weights is not None else self.config.weights
        )
        scorer = ScoringEngine(
            bands=resolve_bands(self.config.decision_bands),
            low_data_threshold=self.config.low_data_threshold,
        )

        analysis_id = f"analysis_{uuid.uuid4().hex}"
        start = time.monotonic()
        documents = [
            Document(
                id=f"doc_{index + 1}",
                index=index,
                filename=item.filename,
                mime_type=item.mime_type,
                raw_size=len(item.data),
            )
            for index, item in enumerate(inputs)
        ]

        logger.info(
            "Orchestrator: batch started",
            analysis_id=analysis_id,
            documents=len(documents),
            max_concurrency=self.config.max_concurrency,
        )

        results, documents = await self._run_batch(inputs, documents)

        # --- Barrier passed: results are ordered by document index ---
        failures = [self._failure_of(r) for r in results if not r.succeeded]
        succeeded = len(results) - len(failures)
        if succeeded == 0:
            logger.error(
                "Orchestrator: all documents failed",
                analysis_id=analysis_id,
                failures=[f.model_dump() for f in failures],
            )
            raise AllDocumentsFailedError([f.model_dump() for f in failures])

        profile = self.consolidator.consolidate(results)
        card = scorer.score(profile, resolved_weights)

        warnings = list(weight_warnings)
        if failures:
            warnings.append(
                f"Partial coverage: {coverage_label(succeeded, len(results))}; "
                f"failed: {', '.join(f.filename for f in failures)}"
            )
        for result in results:
            warnings.extend(f"{result.filename}: {w}" for w in result.warnings)
        warnings.extend(card.warnings)

        elapsed_ms = int((time.monotonic() - start) * 1000)
        report = InvestmentReport(
            overall_score=card.overall,
            decision=card.decision,
            dimension_scores=card.dimension_scores,
            profile=profile,
            metadata=ProcessingMetadata(
                analysis_id=analysis_id,
                timestamp=datetime.now(timezone.utc),
                elapsed_ms=elapsed_ms,
                documents_attempted=len(results),
                documents_succeeded=succeeded,
                documents_failed=failures,
                characters_extracted=sum(r.characters_extracted for r in results),
                coverage=coverage_label(succeeded, len(results)),
                usage=summarize(a for r in results for a in r.attempts),
            ),
            documents=documents,
            low_data=card.low_data,
            warnings=warnings,
        )

        logger.info(
            "Orchestrator: batch complete",
            analysis_id=analysis_id,
            coverage=report.metadata.coverage,
            overall=report.overall_score,
            decision=report.decision,
            low_data=report.low_data,
            elapsed_ms=elapsed_ms,
        )
        return report

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_batch(self, inputs: Sequence[DocumentInput]) -> None:
        if not inputs:
            raise ValidationError("No documents submitted")
        if len(inputs) > self.config.max_documents:
            raise ValidationError(
                f"Too many documents: {len(inputs)} (max {self.config.max_documents})"
            )
        for index, item in enumerate(inputs):
            if not item.filename or not item.filename.strip():
                raise ValidationError(f"Document {index + 1} has no filename")
            if not item.mime_type or not item.mime_type.strip():
                raise ValidationError(f"{item.filename}: missing mime type")
            if not item.data:
                raise ValidationError(f"{item.filename}: empty payload")

    # ------------------------------------------------------------------
    # Fan-out + barrier
    # ------------------------------------------------------------------

    async def _run_batch(
        self,
        inputs: Sequence[DocumentInput],
        documents: list[Document],
    ) -> tuple[list[ExtractionResult], list[Document]]:
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        tasks = [
            asyncio.create_task(self._process_document(semaphore, item, document))
            for item, document in zip(inputs, documents)
        ]

        try:
            gathered = asyncio.gather(*tasks)
            if self.config.batch_timeout_s is not None:
                settled = await asyncio.wait_for(gathered, timeout=self.config.batch_timeout_s)
            else:
                settled = await gathered
        except BaseException:
            # Cancellation or batch timeout: no partial report
            logger.warning("Orchestrator: batch aborted", in_flight=sum(not t.done() for t in tasks))
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        ordered = sorted(settled, key=lambda pair: pair[1].index)
        return [r for r, _ in ordered], [d for _, d in ordered]

    async def _process_document(
        self,
        semaphore: asyncio.Semaphore,
        item: DocumentInput,
        document: Document,
    ) -> tuple[ExtractionResult, Document]:
        async with semaphore:
            compression = await asyncio.to_thread(
                self.compressor.compress,
                item.data,
                item.mime_type,
                self.config.size_limit_bytes,
            )
            document = document.model_copy(update={
                "compressed_size": compression.compressed_size,
                "compression_method": compression.method,
                "submitted_mime_type": compression.mime_type,
                "exceeded_limit": compression.exceeded,
                "status": "submitted",
            })

            # The per-document budget starts once the slot is held
            try:
                result = await asyncio.wait_for(
                    self.gateway.submit(document, compression),
                    timeout=self.config.document_budget_s,
                )
            except asyncio.TimeoutError:
                result = self._budget_exceeded(document, compression)

        status = "succeeded" if result.succeeded else "failed"
        if result.error is not None and result.error.kind == ErrorKind.OVERSIZED.value:
            status = "rejected"
        document = document.model_copy(update={
            "status": status,
            "oversized_policy": result.oversized_policy,
        })

        logger.info(
            "Orchestrator: document settled",
            file=document.filename,
            document_id=document.id,
            status=status,
            compression=compression.method,
            attempts=len(result.attempts),
            confidence=result.confidence,
        )
        return result, document

    def _budget_exceeded(self, document: Document, compression: CompressionResult) -> ExtractionResult:
        message = f"Extraction did not settle within {self.config.document_budget_s:.1f}s"
        logger.warning("Orchestrator: document budget exceeded", file=document.filename)
        return ExtractionResult(
            document_id=document.id,
            document_index=document.index,
            filename=document.filename,
            outcome=classify_outcome(ErrorKind.BUDGET_EXCEEDED),
            error=ExtractionError(kind=ErrorKind.BUDGET_EXCEEDED.value, message=message),
            oversized_policy=self.config.oversized_policy if compression.exceeded else None,
        )

    @staticmethod
    def _failure_of(result: ExtractionResult) -> DocumentFailure:
        return DocumentFailure(
            document_id=result.document_id,
            filename=result.filename,
            outcome=result.outcome,
            error_kind=result.error.kind if result.error else None,
            error=result.error.message if result.error else None,
        )

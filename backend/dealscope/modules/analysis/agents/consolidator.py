"""DealScope Consolidation Engine — merges per-document results into one profile.

Purely programmatic, no LLM calls.

Merge strategy:
  - Scalar fields: value from the highest-confidence successful document that
    supplies one; ties go to the earliest document index. Disagreeing values
    are kept as FieldConflict entries.
  - List fields: union across documents, deduplicated with normalize_key,
    first-seen order preserved.
  - Risk flags: deduplicated by (type, description); a duplicate keeps the
    higher severity, then the higher confidence.
  - Every field path gets a provenance entry, populated or not.
"""

from __future__ import annotations

from typing import Any, Callable

import structlog
from pydantic import BaseModel

from dealscope.modules.analysis.agents.dedup import (
    founder_key,
    milestone_key,
    normalize_key,
    risk_key,
)
from dealscope.modules.analysis.schemas import (
    SEVERITY_RANK,
    CompanyData,
    ConsolidatedProfile,
    ExtractionResult,
    FieldConflict,
    FieldProvenance,
    FinancialData,
    MarketData,
    ProductData,
    RiskFlag,
    TeamData,
    TractionData,
)

logger = structlog.get_logger()

SECTION_MODELS: dict[str, type[BaseModel]] = {
    "company": CompanyData,
    "financial": FinancialData,
    "team": TeamData,
    "market": MarketData,
    "product": ProductData,
    "traction": TractionData,
}

# List fields of structured items, keyed by their identity; all other list
# fields hold plain strings keyed by normalize_key.
_ITEM_KEYS: dict[str, Callable[[Any], Any]] = {
    "team.founders": founder_key,
    "traction.milestones": milestone_key,
}


def _same_value(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return normalize_key(a) == normalize_key(b)
    return a == b


class _ListEntry:
    """Accumulator for one deduplicated list item."""

    __slots__ = ("value", "confidence", "document_ids", "severity")

    def __init__(self, value: Any, confidence: float, document_id: str, severity: int = 0) -> None:
        self.value = value
        self.confidence = confidence
        self.document_ids = [document_id]
        self.severity = severity

    def add_source(self, document_id: str) -> None:
        if document_id not in self.document_ids:
            self.document_ids.append(document_id)


class ConsolidationEngine:
    """Deterministic merge of successful ExtractionResults."""

    agent_name = "Consolidator"

    def consolidate(self, results: list[ExtractionResult]) -> ConsolidatedProfile:
        """Merge results into a ConsolidatedProfile.

        ``results`` may include failed documents; they count towards the
        coverage ratio but never supply values. Input order is irrelevant,
        results are processed by document index.
        """
        ordered = sorted(results, key=lambda r: r.document_index)
        successful = [r for r in ordered if r.succeeded]

        if not successful:
            logger.warning("Consolidator: no successful documents", attempted=len(results))
            return ConsolidatedProfile(documents_considered=len(results))

        provenance: dict[str, FieldProvenance] = {}
        conflicts: list[FieldConflict] = []
        contributors: set[str] = set()
        sections: dict[str, dict[str, Any]] = {}

        for section, model in SECTION_MODELS.items():
            merged: dict[str, Any] = {}
            for field_name in model.model_fields:
                path = f"{section}.{field_name}"
                values = [
                    (r, getattr(getattr(r, section), field_name))
                    for r in successful
                    if getattr(r, section) is not None
                ]
                if isinstance(model.model_fields[field_name].default, list) or path in _ITEM_KEYS:
                    merged[field_name], provenance[path] = self._merge_list(path, values)
                else:
                    merged[field_name], provenance[path], found = self._merge_scalar(path, values)
                    conflicts.extend(found)
                contributors.update(provenance[path].document_ids)
            sections[section] = merged

        risks, provenance["risks"] = self._merge_risks(successful)
        contributors.update(provenance["risks"].document_ids)

        contributing = [r for r in successful if r.document_id in contributors]
        confidence = self._aggregate_confidence(contributing, len(successful), len(results))
        missing = sorted(path for path, p in provenance.items() if not p.document_ids)

        profile = ConsolidatedProfile(
            company=CompanyData(**sections["company"]),
            financial=FinancialData(**sections["financial"]),
            team=TeamData(**sections["team"]),
            market=MarketData(**sections["market"]),
            product=ProductData(**sections["product"]),
            traction=TractionData(**sections["traction"]),
            risks=risks,
            provenance=provenance,
            confidence=confidence,
            contributing_documents=[r.document_id for r in contributing],
            documents_considered=len(results),
            documents_succeeded=len(successful),
            missing_fields=missing,
            conflicts=conflicts,
        )

        logger.info(
            "Consolidator: profile built",
            documents=len(results),
            succeeded=len(successful),
            contributing=len(contributing),
            confidence=round(confidence, 1),
            conflicts=len(conflicts),
            risks=len(risks),
            missing=len(missing),
        )
        return profile

    # ------------------------------------------------------------------
    # Scalars
    # ------------------------------------------------------------------

    @staticmethod
    def _merge_scalar(
        path: str,
        values: list[tuple[ExtractionResult, Any]],
    ) -> tuple[Any, FieldProvenance, list[FieldConflict]]:
        candidates = [(r, v) for r, v in values if v is not None]
        if not candidates:
            return None, FieldProvenance(), []

        # Highest confidence wins; earliest index breaks ties
        chosen_result, chosen = min(
            candidates, key=lambda c: (-c[0].confidence, c[0].document_index)
        )

        agreeing = [r.document_id for r, v in candidates if _same_value(v, chosen)]
        conflicts = [
            FieldConflict(
                field=path,
                kept_value=str(chosen),
                kept_from=chosen_result.document_id,
                discarded_value=str(v),
                discarded_from=r.document_id,
            )
            for r, v in candidates
            if not _same_value(v, chosen)
        ]
        if conflicts:
            logger.debug(
                "Consolidator: conflicting values",
                field=path,
                kept=str(chosen),
                kept_from=chosen_result.document_id,
                discarded=[c.discarded_from for c in conflicts],
            )

        return chosen, FieldProvenance(
            source_document_id=chosen_result.document_id,
            document_ids=agreeing,
            confidence=chosen_result.confidence,
        ), conflicts

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    @staticmethod
    def _merge_list(
        path: str,
        values: list[tuple[ExtractionResult, list[Any]]],
    ) -> tuple[list[Any], FieldProvenance]:
        key_fn = _ITEM_KEYS.get(path, normalize_key)
        entries: dict[Any, _ListEntry] = {}

        for result, items in values:
            for item in items or []:
                key = key_fn(item)
                if not key:
                    continue
                entry = entries.get(key)
                if entry is None:
                    entries[key] = _ListEntry(item, result.confidence, result.document_id)
                    continue
                entry.add_source(result.document_id)
                if result.confidence > entry.confidence:
                    entry.value = item
                    entry.confidence = result.confidence

        return ConsolidationEngine._list_provenance(list(entries.values()))

    @staticmethod
    def _merge_risks(successful: list[ExtractionResult]) -> tuple[list[RiskFlag], FieldProvenance]:
        entries: dict[tuple[str, str], _ListEntry] = {}

        for result in successful:
            for risk in result.risks:
                key = risk_key(risk)
                severity = SEVERITY_RANK.get(risk.severity, 0)
                entry = entries.get(key)
                if entry is None:
                    entries[key] = _ListEntry(risk, result.confidence, result.document_id, severity)
                    continue
                entry.add_source(result.document_id)
                if (severity, result.confidence) > (entry.severity, entry.confidence):
                    entry.value = risk
                    entry.severity = severity
                    entry.confidence = result.confidence

        merged_entries = list(entries.values())
        risks = [
            e.value.model_copy(update={
                "confidence": e.confidence,
                "source_document_ids": list(e.document_ids),
            })
            for e in merged_entries
        ]
        _, provenance = ConsolidationEngine._list_provenance(merged_entries)
        return risks, provenance

    @staticmethod
    def _list_provenance(entries: list[_ListEntry]) -> tuple[list[Any], FieldProvenance]:
        document_ids: list[str] = []
        for entry in entries:
            for doc_id in entry.document_ids:
                if doc_id not in document_ids:
                    document_ids.append(doc_id)
        return [e.value for e in entries], FieldProvenance(
            document_ids=document_ids,
            confidence=max((e.confidence for e in entries), default=0.0),
        )

    # ------------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------------

    @staticmethod
    def _aggregate_confidence(
        contributing: list[ExtractionResult],
        succeeded: int,
        attempted: int,
    ) -> float:
        """Confidence-weighted mean of contributing documents times coverage."""
        total = sum(r.confidence for r in contributing)
        if total <= 0 or attempted == 0:
            return 0.0
        weighted = sum(r.confidence * r.confidence for r in contributing) / total
        coverage = succeeded / attempted
        return max(0.0, min(100.0, weighted * coverage))

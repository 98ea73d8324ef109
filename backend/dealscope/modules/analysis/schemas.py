"""DealScope Analysis — Pydantic schemas for extracted data, profile and report."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Outcome = Literal["success", "permanent_failure", "transient_exhausted"]
Dimension = Literal["team", "market", "product", "traction", "financials"]
Decision = Literal["strong-invest", "invest", "hold", "pass", "strong-pass"]
Severity = Literal["low", "medium", "high", "critical"]
DocumentStatus = Literal["pending", "submitted", "succeeded", "failed", "rejected"]

SEVERITY_RANK: dict[str, int] = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}


class _Section(BaseModel):
    """Extracted sections drop any field the schema does not declare."""

    model_config = ConfigDict(extra="ignore")


# ---------------------------------------------------------------------------
# Group 1: Company overview
# ---------------------------------------------------------------------------


class CompanyData(_Section):
    """Company identity and positioning."""

    name: str | None = None
    industry: str | None = None
    stage: str | None = Field(None, description="pre-seed, seed, series A, ...")
    location: str | None = None
    description: str | None = None
    website: str | None = None
    founded_year: int | None = None
    business_model: str | None = Field(None, description="B2B SaaS, marketplace, ...")


# ---------------------------------------------------------------------------
# Group 2: Financials
# ---------------------------------------------------------------------------


class FinancialData(_Section):
    """Reported financial metrics. Currency amounts in USD, rates in percent."""

    current_revenue: float | None = None
    projected_revenue: float | None = None
    revenue_growth_rate: float | None = Field(None, description="Year-over-year, percent")
    gross_margin: float | None = Field(None, description="Percent")
    burn_rate: float | None = Field(None, description="Monthly net burn")
    runway_months: float | None = None
    cash_raised: float | None = None
    valuation: float | None = None
    funding_sought: float | None = None
    funding_round: str | None = None
    employees: int | None = None
    arr: float | None = None
    mrr: float | None = None
    ltv_cac_ratio: float | None = None


# ---------------------------------------------------------------------------
# Group 3: Team
# ---------------------------------------------------------------------------


class Founder(_Section):
    name: str
    role: str | None = None
    background: str | None = None
    education: str | None = None
    years_experience: float | None = None
    previous_companies: list[str] = []


class TeamData(_Section):
    """Founders, advisors and key hires."""

    founders: list[Founder] = []
    advisors: list[str] = []
    key_hires: list[str] = []
    total_employees: int | None = None


# ---------------------------------------------------------------------------
# Group 4: Market
# ---------------------------------------------------------------------------


class MarketData(_Section):
    """Market sizing and competitive landscape."""

    tam: float | None = Field(None, description="Total addressable market, USD")
    sam: float | None = Field(None, description="Serviceable addressable market, USD")
    som: float | None = Field(None, description="Serviceable obtainable market, USD")
    growth_rate: float | None = Field(None, description="Annual market growth, percent")
    target_market: str | None = None
    competitors: list[str] = []
    trends: list[str] = []


# ---------------------------------------------------------------------------
# Group 5: Product
# ---------------------------------------------------------------------------


class ProductData(_Section):
    description: str | None = None
    stage: str | None = Field(None, description="idea, mvp, beta, launched, scaling")
    features: list[str] = []
    technology: list[str] = []
    differentiators: list[str] = []


# ---------------------------------------------------------------------------
# Group 6: Traction
# ---------------------------------------------------------------------------


class Milestone(_Section):
    description: str
    date: str | None = None
    achieved: bool = False


class TractionData(_Section):
    customers: int | None = None
    users: int | None = None
    revenue: float | None = None
    partnerships: list[str] = []
    milestones: list[Milestone] = []


# ---------------------------------------------------------------------------
# Risk flags
# ---------------------------------------------------------------------------


class RiskFlag(_Section):
    """A single risk raised by a document.

    ``confidence`` and ``source_document_ids`` are filled in during
    consolidation, never by the extraction capability.
    """

    type: str = Field("other", description="financial, market, team, operational, competitive, regulatory")
    severity: Severity = "medium"
    description: str
    title: str | None = None
    mitigation: str | None = None
    confidence: float = Field(0.0, ge=0.0, le=100.0)
    source_document_ids: list[str] = []


# ---------------------------------------------------------------------------
# Extraction payload: the shape requested from the extraction capability
# ---------------------------------------------------------------------------


class ExtractionPayload(_Section):
    """Structured fields requested from the extraction capability."""

    company: CompanyData | None = None
    financial: FinancialData | None = None
    team: TeamData | None = None
    market: MarketData | None = None
    risks: list[RiskFlag] | None = None
    product: ProductData | None = None
    traction: TractionData | None = None


REQUIRED_SECTIONS: tuple[str, ...] = ("company", "financial", "team", "market", "risks")
OPTIONAL_SECTIONS: tuple[str, ...] = ("product", "traction")


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class DocumentInput(BaseModel):
    """One uploaded document as handed to the pipeline."""

    filename: str
    mime_type: str
    data: bytes


class Document(BaseModel):
    """Per-batch bookkeeping for one submitted document."""

    id: str
    index: int
    filename: str
    mime_type: str
    raw_size: int
    compressed_size: int | None = None
    compression_method: str | None = None
    submitted_mime_type: str | None = Field(
        None, description="Mime type sent to the capability; image/jpeg when an image was re-encoded"
    )
    status: DocumentStatus = "pending"
    exceeded_limit: bool = False
    oversized_policy: str | None = Field(
        None, description="Policy applied when the document stayed over the size limit"
    )


# ---------------------------------------------------------------------------
# Per-document extraction result
# ---------------------------------------------------------------------------


class ExtractionError(BaseModel):
    kind: str
    message: str


class AttemptRecord(BaseModel):
    """One call to the extraction capability."""

    attempt: int
    strict: bool = False
    kind: str | None = Field(None, description="Error kind, None when the call succeeded")
    message: str | None = None
    duration_ms: int = 0
    provider: str = ""
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0


class ExtractionResult(BaseModel):
    """Validated output for one document after all retries settled."""

    document_id: str
    document_index: int
    filename: str = ""
    company: CompanyData | None = None
    financial: FinancialData | None = None
    team: TeamData | None = None
    market: MarketData | None = None
    risks: list[RiskFlag] = []
    product: ProductData | None = None
    traction: TractionData | None = None
    confidence: float = Field(0.0, ge=0.0, le=100.0)
    outcome: Outcome
    error: ExtractionError | None = None
    attempts: list[AttemptRecord] = []
    characters_extracted: int = 0
    missing_sections: list[str] = []
    oversized_policy: str | None = None
    warnings: list[str] = []

    @property
    def succeeded(self) -> bool:
        return self.outcome == "success"


# ---------------------------------------------------------------------------
# Consolidated profile
# ---------------------------------------------------------------------------


class FieldProvenance(BaseModel):
    """Where a consolidated field's value came from."""

    source_document_id: str | None = Field(
        None, description="Document whose value was chosen (scalars only)"
    )
    document_ids: list[str] = Field(
        default_factory=list,
        description="Every document that supplied the chosen value or a list item",
    )
    confidence: float = 0.0


class FieldConflict(BaseModel):
    """Two documents disagreed on a scalar field."""

    field: str
    kept_value: str
    kept_from: str
    discarded_value: str
    discarded_from: str


class ConsolidatedProfile(BaseModel):
    """Merged, deduplicated, provenance-tracked company profile."""

    model_config = ConfigDict(frozen=True)

    company: CompanyData = Field(default_factory=CompanyData)
    financial: FinancialData = Field(default_factory=FinancialData)
    team: TeamData = Field(default_factory=TeamData)
    market: MarketData = Field(default_factory=MarketData)
    product: ProductData = Field(default_factory=ProductData)
    traction: TractionData = Field(default_factory=TractionData)
    risks: list[RiskFlag] = []
    provenance: dict[str, FieldProvenance] = {}
    confidence: float = Field(0.0, ge=0.0, le=100.0)
    contributing_documents: list[str] = []
    documents_considered: int = 0
    documents_succeeded: int = 0
    missing_fields: list[str] = []
    conflicts: list[FieldConflict] = []

    @property
    def is_empty(self) -> bool:
        return self.documents_succeeded == 0


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class ScoringFactor(BaseModel):
    name: str
    points_achieved: float
    max_points: float
    achieved: bool
    description: str = ""


class DimensionScore(BaseModel):
    category: Dimension
    raw_score: float = Field(..., ge=0.0, le=100.0)
    weight: float = Field(..., ge=0.0, le=100.0, description="Percent of the overall score")
    factors: list[ScoringFactor] = []
    rubric_version: str = ""


# ---------------------------------------------------------------------------
# Final report
# ---------------------------------------------------------------------------


class DocumentFailure(BaseModel):
    document_id: str
    filename: str
    outcome: Outcome
    error_kind: str | None = None
    error: str | None = None


class ProcessingMetadata(BaseModel):
    analysis_id: str
    timestamp: datetime
    elapsed_ms: int
    documents_attempted: int
    documents_succeeded: int
    documents_failed: list[DocumentFailure] = []
    characters_extracted: int = 0
    coverage: str = Field(..., description="e.g. '2 of 3 documents processed'")
    usage: dict = {}


class InvestmentReport(BaseModel):
    """Immutable result of one analysis run."""

    model_config = ConfigDict(frozen=True)

    overall_score: int = Field(..., ge=0, le=100)
    decision: Decision
    dimension_scores: list[DimensionScore]
    profile: ConsolidatedProfile
    metadata: ProcessingMetadata
    documents: list[Document] = []
    low_data: bool = False
    warnings: list[str] = []

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic_settings import BaseSettings

OversizedPolicy = Literal["reject", "truncate", "submit"]


class Settings(BaseSettings):
    # LLM extraction (provider: google | anthropic)
    extraction_provider: str = "google"
    extraction_model: str = ""  # auto-defaults per provider if empty
    google_ai_api_key: str = ""
    anthropic_api_key: str = ""

    # Vertex AI: Anthropic Claude via Google Cloud
    vertex_project_id: str = ""
    vertex_location: str = "europe-west1"
    vertex_credentials_path: str = ""

    # Extraction Gateway
    extraction_size_limit_bytes: int = 4 * 1024 * 1024  # Vision inline limit minus margin
    extraction_timeout_s: float = 120.0
    extraction_max_retries: int = 2
    extraction_backoff_base_ms: int = 500
    extraction_max_concurrency: int = 4
    oversized_policy: OversizedPolicy = "reject"

    # Batch
    max_documents: int = 20

    # Validation + scoring
    missing_section_penalty: int = 15
    low_data_threshold: float = 40.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "DEALSCOPE_"}


@dataclass(frozen=True)
class PipelineConfig:
    """Frozen per-orchestrator configuration.

    Built once from ``Settings`` (or by hand in tests) and passed explicitly
    into the pipeline components.
    """

    size_limit_bytes: int = 4 * 1024 * 1024
    timeout_s: float = 120.0
    max_retries: int = 2
    backoff_base_ms: int = 500
    max_concurrency: int = 4
    max_documents: int = 20
    oversized_policy: OversizedPolicy = "reject"
    missing_section_penalty: int = 15
    low_data_threshold: float = 40.0
    weights: dict[str, float] | None = None
    decision_bands: tuple[tuple[int, str], ...] | None = None
    batch_timeout_s: float | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PipelineConfig:
        settings = settings or Settings()
        return cls(
            size_limit_bytes=settings.extraction_size_limit_bytes,
            timeout_s=settings.extraction_timeout_s,
            max_retries=settings.extraction_max_retries,
            backoff_base_ms=settings.extraction_backoff_base_ms,
            max_concurrency=settings.extraction_max_concurrency,
            max_documents=settings.max_documents,
            oversized_policy=settings.oversized_policy,
            missing_section_penalty=settings.missing_section_penalty,
            low_data_threshold=settings.low_data_threshold,
        )

    @property
    def backoff_budget_s(self) -> float:
        """Total sleep time spent across all transient retries."""
        base = self.backoff_base_ms / 1000
        return sum(base * (2 ** attempt) for attempt in range(self.max_retries))

    @property
    def document_budget_s(self) -> float:
        """Upper bound for one document's extraction once it holds a slot.

        Covers the first call, every transient retry, the single strict
        re-ask, and the backoff sleeps in between.
        """
        calls = 1 + self.max_retries + 1
        return self.timeout_s * calls + self.backoff_budget_s

"""Shared test fixtures for the DealScope test suite."""

from __future__ import annotations

import asyncio
import copy
from typing import Any

import pytest

from dealscope.core.config import PipelineConfig
from dealscope.modules.analysis.agent_schemas import CapabilityResponse, CompressionResult
from dealscope.modules.analysis.schemas import Document, DocumentInput

# ---------------------------------------------------------------------------
# Sample extraction payloads (shape returned by the extraction capability)
# ---------------------------------------------------------------------------

DECK_PAYLOAD: dict[str, Any] = {
    "fields": {
        "company": {
            "name": "Acme Robotics",
            "industry": "Industrial automation",
            "stage": "Series A",
            "founded_year": 2019,
        },
        "financial": {"current_revenue": 1_200_000, "funding_sought": 8_000_000},
        "team": {
            "founders": [
                {"name": "Jane Doe", "role": "CEO", "background": "Ex-Tesla robotics lead", "years_experience": 12},
                {"name": "Raj Patel", "role": "CTO", "education": "PhD, MIT"},
            ],
            "advisors": ["Sam Lee"],
        },
        "market": {
            "tam": 45_000_000_000,
            "growth_rate": 14,
            "competitors": ["Fanuc", "ABB Robotics"],
            "trends": ["Labor shortage"],
        },
        "product": {
            "description": "Autonomous palletizing robot",
            "stage": "Launched",
            "features": ["Vision picking"],
            "differentiators": ["No-code setup"],
        },
        "risks": [
            {"type": "competitive", "severity": "medium", "description": "Incumbents with deep pockets"},
        ],
    },
    "confidence": 80,
}

FINANCIALS_PAYLOAD: dict[str, Any] = {
    "fields": {
        "company": {"name": "Acme Robotics Inc.", "location": "Austin, TX"},
        "financial": {
            "current_revenue": 1_500_000,
            "revenue_growth_rate": 120,
            "gross_margin": 62,
            "burn_rate": 250_000,
            "runway_months": 18,
            "cash_raised": 4_000_000,
        },
        "team": {"key_hires": ["VP Sales"]},
        "market": {"competitors": ["fanuc", "Boston Dynamics"]},
        "traction": {
            "customers": 140,
            "partnerships": ["Siemens"],
            "milestones": [{"description": "First 100 customers", "achieved": True}],
        },
        "risks": [
            {"type": "competitive", "severity": "high", "description": "incumbents with  deep pockets"},
            {"type": "financial", "severity": "medium", "description": "Hardware margins under pressure"},
        ],
    },
    "confidence": 90,
}

BIO_PAYLOAD: dict[str, Any] = {
    "fields": {
        "company": {"name": "Acme Robotics"},
        "financial": {},
        "team": {
            "founders": [
                {"name": "jane doe", "previous_companies": ["Tesla", "Kiva Systems"]},
            ],
        },
        "market": {},
        "risks": [],
    },
    "confidence": 60,
}


def payload(base: dict[str, Any], **overrides: Any) -> dict[str, Any]:
    """Deep copy of a sample payload with top-level overrides."""
    data = copy.deepcopy(base)
    data.update(overrides)
    return data


# ---------------------------------------------------------------------------
# Fake extraction capability
# ---------------------------------------------------------------------------


class FakeCapability:
    """Scripted ExtractionCapability keyed by the submitted bytes.

    Each script is a list of steps; a step that is an exception instance is
    raised, anything else is returned as the response content. The last
    step repeats once the script is exhausted.
    ``fallback`` answers payloads with no script of their own, such as
    bytes the Compression Guard re-encoded.
    """

    def __init__(
        self,
        scripts: dict[bytes, list[Any]] | None = None,
        delays: dict[bytes, float] | None = None,
        default_delay: float = 0.0,
        fallback: list[Any] | None = None,
    ) -> None:
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.delays = delays or {}
        self.default_delay = default_delay
        self.fallback = list(fallback or [])
        self.calls: list[tuple[bytes, str, bool]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.cancelled = 0
        self.started = asyncio.Event()

    async def extract(
        self,
        data: bytes,
        mime_type: str,
        schema: dict[str, Any],
        *,
        strict: bool = False,
    ) -> CapabilityResponse:
        self.calls.append((data, mime_type, strict))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            await asyncio.sleep(self.delays.get(data, self.default_delay))
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.in_flight -= 1

        steps = self.scripts.get(data, self.fallback)
        if not steps:
            raise AssertionError(f"No script for payload {data[:30]!r}")
        step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, Exception):
            raise step
        return CapabilityResponse(
            content=copy.deepcopy(step),
            provider="fake",
            model="fake-model",
            input_tokens=1000,
            output_tokens=200,
            duration_ms=5,
            characters=len(data),
        )

    def calls_for(self, data: bytes) -> list[tuple[bytes, str, bool]]:
        return [c for c in self.calls if c[0] == data]


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def make_document(
    filename: str = "deck.txt",
    mime_type: str = "text/plain",
    raw_size: int = 100,
    index: int = 0,
) -> Document:
    return Document(
        id=f"doc_{index + 1}",
        index=index,
        filename=filename,
        mime_type=mime_type,
        raw_size=raw_size,
    )


def passthrough(data: bytes, *, exceeded: bool = False, mime_type: str = "text/plain") -> CompressionResult:
    return CompressionResult(
        data=data,
        method="none",
        mime_type=mime_type,
        original_size=len(data),
        compressed_size=len(data),
        ratio=1.0,
        exceeded=exceeded,
    )


def text_input(name: str, body: bytes) -> DocumentInput:
    return DocumentInput(filename=name, mime_type="text/plain", data=body)


@pytest.fixture
def fast_config() -> PipelineConfig:
    """Pipeline config with millisecond backoff so retry tests stay fast."""
    return PipelineConfig(
        timeout_s=1.0,
        backoff_base_ms=1,
        max_concurrency=4,
        size_limit_bytes=64 * 1024,
    )


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep

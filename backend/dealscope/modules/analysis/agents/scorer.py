"""DealScope Scoring Engine — rubric scores, weighted overall, decision band.

  raw[d]   = points of the RUBRIC_V1 factors that pass for dimension d (0-100)
  overall  = round_half_up(sum(raw[d] * weight[d]) / 100)
  decision = first band whose threshold <= overall, unless the profile
             confidence is below the low-data threshold (then "hold")
"""

from __future__ import annotations

import math
import warnings
from collections.abc import Mapping, Sequence
from typing import Any, get_args

import structlog

from dealscope.core.exceptions import ConfigurationError, ConfigurationWarning
from dealscope.modules.analysis.agent_schemas import ScoreCard
from dealscope.modules.analysis.agents.rubric import RUBRIC_V1, Rubric
from dealscope.modules.analysis.schemas import (
    ConsolidatedProfile,
    Decision,
    DimensionScore,
    ScoringFactor,
)

logger = structlog.get_logger()

DEFAULT_WEIGHTS: dict[str, float] = {
    "team": 25,
    "market": 25,
    "product": 20,
    "traction": 20,
    "financials": 10,
}

DEFAULT_BANDS: tuple[tuple[int, str], ...] = (
    (80, "strong-invest"),
    (65, "invest"),
    (50, "hold"),
    (35, "pass"),
    (0, "strong-pass"),
)

# Best decision first
DECISION_ORDER: tuple[str, ...] = get_args(Decision)

LOW_DATA_DECISION = "hold"


# ---------------------------------------------------------------------------
# Configuration resolution
# ---------------------------------------------------------------------------


def resolve_weights(overrides: Mapping[str, Any] | None = None) -> tuple[dict[str, float], list[str]]:
    """Merge overrides onto DEFAULT_WEIGHTS and normalize them to sum to 100.

    Returns (weights, warnings). Normalization is announced with a
    ConfigurationWarning; weights that cannot be normalized raise
    ConfigurationError.
    """
    merged = dict(DEFAULT_WEIGHTS)
    for dimension, value in (overrides or {}).items():
        if dimension not in DEFAULT_WEIGHTS:
            raise ConfigurationError(
                f"Unknown scoring dimension '{dimension}' (expected one of {', '.join(DEFAULT_WEIGHTS)})"
            )
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ConfigurationError(f"Weight for '{dimension}' must be a number, got {value!r}")
        if value < 0:
            raise ConfigurationError(f"Weight for '{dimension}' must not be negative, got {value}")
        merged[dimension] = float(value)

    total = sum(merged.values())
    if total <= 0:
        raise ConfigurationError("Dimension weights must not all be zero")

    if math.isclose(total, 100.0):
        return {d: float(w) for d, w in merged.items()}, []

    normalized = {d: w * 100.0 / total for d, w in merged.items()}
    message = f"Dimension weights summed to {total:g}; normalized proportionally to 100"
    warnings.warn(message, ConfigurationWarning, stacklevel=2)
    logger.warning("Scorer: weights normalized", total=total, weights=normalized)
    return normalized, [message]


def resolve_bands(bands: Sequence[tuple[int, str]] | None = None) -> tuple[tuple[int, str], ...]:
    """Validate decision bands: contiguous over [0, 100] and monotonic."""
    if bands is None:
        return DEFAULT_BANDS
    try:
        pairs = [(threshold, decision) for threshold, decision in bands]
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Decision bands must be (threshold, decision) pairs: {e}") from e
    if not pairs:
        raise ConfigurationError("At least one decision band is required")

    for threshold, decision in pairs:
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)):
            raise ConfigurationError(f"Band threshold must be a number, got {threshold!r}")
        if not 0 <= threshold <= 100:
            raise ConfigurationError(f"Band threshold {threshold} is outside [0, 100]")
        if decision not in DECISION_ORDER:
            raise ConfigurationError(f"Unknown decision '{decision}'")

    ordered = sorted(pairs, key=lambda b: b[0], reverse=True)
    if ordered[-1][0] != 0:
        raise ConfigurationError("Decision bands must cover scores down to 0")

    for (hi_threshold, hi_decision), (lo_threshold, lo_decision) in zip(ordered, ordered[1:]):
        if hi_threshold == lo_threshold:
            raise ConfigurationError(f"Duplicate band threshold {hi_threshold}")
        if DECISION_ORDER.index(hi_decision) >= DECISION_ORDER.index(lo_decision):
            raise ConfigurationError(
                f"Bands are not monotonic: '{hi_decision}' at {hi_threshold} "
                f"is not better than '{lo_decision}' at {lo_threshold}"
            )

    return tuple(ordered)


# ---------------------------------------------------------------------------
# Pure scoring functions
# ---------------------------------------------------------------------------


def compute_overall(raw_scores: Mapping[str, float], weights: Mapping[str, float]) -> int:
    """Weighted overall score with half-up rounding, clamped to [0, 100]."""
    weighted = sum(raw_scores[d] * weights[d] for d in weights) / 100.0
    return max(0, min(100, math.floor(weighted + 0.5)))


def band_for(overall: int, bands: Sequence[tuple[int, str]] = DEFAULT_BANDS) -> str:
    for threshold, decision in bands:
        if overall >= threshold:
            return decision
    return bands[-1][1]


def decide(
    overall: int,
    confidence: float,
    bands: Sequence[tuple[int, str]] = DEFAULT_BANDS,
    low_data_threshold: float = 40.0,
) -> tuple[str, bool]:
    """Return (decision, low_data)."""
    if confidence < low_data_threshold:
        return LOW_DATA_DECISION, True
    return band_for(overall, bands), False


def score_dimension(profile: ConsolidatedProfile, dimension: str, rubric: Rubric = RUBRIC_V1) -> tuple[float, list[ScoringFactor]]:
    factors: list[ScoringFactor] = []
    for factor in rubric.dimensions[dimension]:
        achieved = bool(factor.check(profile))
        factors.append(ScoringFactor(
            name=factor.name,
            points_achieved=factor.points if achieved else 0.0,
            max_points=factor.points,
            achieved=achieved,
            description=factor.description,
        ))
    max_points = rubric.max_points(dimension)
    earned = sum(f.points_achieved for f in factors)
    raw = earned * 100.0 / max_points if max_points else 0.0
    return max(0.0, min(100.0, raw)), factors


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ScoringEngine:
    """Scores a consolidated profile against a versioned rubric."""

    agent_name = "Scorer"

    def __init__(
        self,
        rubric: Rubric = RUBRIC_V1,
        bands: Sequence[tuple[int, str]] | None = None,
        low_data_threshold: float = 40.0,
    ) -> None:
        self.rubric = rubric
        self.bands = resolve_bands(bands)
        self.low_data_threshold = low_data_threshold

    def score(
        self,
        profile: ConsolidatedProfile,
        weights: Mapping[str, Any] | None = None,
    ) -> ScoreCard:
        resolved, card_warnings = resolve_weights(weights)

        dimension_scores: list[DimensionScore] = []
        raw_scores: dict[str, float] = {}
        for dimension in DEFAULT_WEIGHTS:
            raw, factors = score_dimension(profile, dimension, self.rubric)
            raw_scores[dimension] = raw
            dimension_scores.append(DimensionScore(
                category=dimension,
                raw_score=raw,
                weight=resolved[dimension],
                factors=factors,
                rubric_version=self.rubric.version,
            ))

        overall = compute_overall(raw_scores, resolved)
        decision, low_data = decide(overall, profile.confidence, self.bands, self.low_data_threshold)
        if low_data:
            card_warnings.append(
                f"Low data: profile confidence {profile.confidence:.0f} is below "
                f"{self.low_data_threshold:g}; decision held at '{decision}'"
            )

        logger.info(
            "Scorer: profile scored",
            rubric=self.rubric.version,
            raw=raw_scores,
            overall=overall,
            decision=decision,
            low_data=low_data,
        )

        return ScoreCard(
            dimension_scores=dimension_scores,
            overall=overall,
            decision=decision,
            low_data=low_data,
            warnings=card_warnings,
        )

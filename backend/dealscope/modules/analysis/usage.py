"""DealScope Usage Summary — token counting & cost estimation per LLM provider.

Built from the per-attempt records of every ExtractionResult, so documents
processed concurrently never share a mutable tracker.

Usage:
    summary = summarize(attempt for r in results for attempt in r.attempts)
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from dealscope.modules.analysis.schemas import AttemptRecord

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Pricing per 1M tokens (USD): (input, output)
# ---------------------------------------------------------------------------

_PRICING: dict[str, tuple[float, float]] = {
    "gemini-2.5-flash": (0.30, 2.50),
    "gemini-2.5-flash-lite": (0.10, 0.40),
    "gemini-2.0-flash": (0.10, 0.40),
    "gemini-2.5-pro": (1.25, 10.00),
    "claude-sonnet-4@20250514": (3.00, 15.00),
    "claude-sonnet-4-20250514": (3.00, 15.00),
    "claude-opus-4@20250514": (15.00, 75.00),
    "claude-3-5-haiku@20241022": (0.80, 4.00),
}

# Fallback pricing for unknown models (conservative estimate)
_FALLBACK_PRICING = (3.00, 15.00)


def _get_pricing(model: str) -> tuple[float, float]:
    """Look up pricing for a model, with fuzzy matching."""
    if model in _PRICING:
        return _PRICING[model]
    # Longest key first so "gemini-2.5-flash-lite-001" is not priced as flash
    for key in sorted(_PRICING, key=len, reverse=True):
        if key in model:
            return _PRICING[key]
    logger.warning("Unknown model pricing, using fallback", model=model)
    return _FALLBACK_PRICING


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    input_price, output_price = _get_pricing(model)
    return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price


def summarize(attempts: Iterable[AttemptRecord]) -> dict[str, Any]:
    """Aggregate attempt records into a per provider/model usage summary."""
    providers: dict[str, dict[str, Any]] = {}
    calls = 0
    failed_calls = 0

    for rec in attempts:
        calls += 1
        if rec.kind is not None:
            failed_calls += 1
        if not rec.model:
            continue

        key = f"{rec.provider}/{rec.model}"
        stats = providers.setdefault(key, {
            "calls": 0,
            "input_tokens": 0,
            "output_tokens": 0,
            "cost_usd": 0.0,
            "total_duration_ms": 0,
        })
        stats["calls"] += 1
        stats["input_tokens"] += rec.input_tokens
        stats["output_tokens"] += rec.output_tokens
        stats["cost_usd"] += estimate_cost(rec.model, rec.input_tokens, rec.output_tokens)
        stats["total_duration_ms"] += rec.duration_ms

    for stats in providers.values():
        stats["avg_duration_ms"] = round(stats.pop("total_duration_ms") / max(stats["calls"], 1))
        stats["cost_usd"] = round(stats["cost_usd"], 4)

    return {
        "calls": calls,
        "failed_calls": failed_calls,
        "input_tokens": sum(s["input_tokens"] for s in providers.values()),
        "output_tokens": sum(s["output_tokens"] for s in providers.values()),
        "total_cost_usd": round(sum(s["cost_usd"] for s in providers.values()), 4),
        "providers": providers,
    }

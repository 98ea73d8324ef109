"""Unit tests for the sanitizer and the Result Validator.

No capability involved: raw responses are fed to the validator directly.
"""

from __future__ import annotations

import json

import pytest

from dealscope.modules.analysis.agent_schemas import ErrorKind
from dealscope.modules.analysis.agents.sanitizer import (
    parse_number,
    sanitize_extraction_json,
    strip_code_fences,
)
from dealscope.modules.analysis.agents.validator import (
    ResultValidator,
    classify_outcome,
    estimate_confidence,
)

from conftest import DECK_PAYLOAD, payload


@pytest.fixture
def validator() -> ResultValidator:
    return ResultValidator(missing_section_penalty=15)


# ---------------------------------------------------------------------------
# Sanitizer
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("$2.5M", 2_500_000),
        ("45%", 45),
        ("1,200", 1200),
        ("1,200 customers", 1200),
        ("$127B", 127_000_000_000),
        ("3.2x", 3.2),
        ("18 months", 18),
        ("2.5 million", 2_500_000),
        ({"value": "750k"}, 750_000),
        (12, 12),
        ("unknown", None),
        (None, None),
        (True, None),
    ],
)
def test_parse_number(raw, expected) -> None:
    assert parse_number(raw) == expected


def test_strip_code_fences() -> None:
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_sanitize_fixes_common_llm_mistakes() -> None:
    raw = {
        "companyOverview": {
            "name": {"value": "Acme"},
            "foundedYear": "Founded in 2019",
            "industry": "N/A",
        },
        "financials": {"currentRevenue": "$1.2M", "burnRate": 0, "runway": "14 months"},
        "teamInfo": {"founders": ["Jane Doe", {"name": None}], "advisors": None},
        "marketInfo": {"competitors": [{"name": "Fanuc"}, "ABB"], "marketTrends": "Automation"},
        "riskFlags": [{"category": "Market", "severity": "Severe", "description": "Crowded"}],
    }

    fixed = sanitize_extraction_json(raw)

    assert fixed["company"] == {"name": "Acme", "founded_year": 2019, "industry": None}
    assert fixed["financial"] == {"current_revenue": 1_200_000, "burn_rate": 0, "runway_months": 14}
    assert fixed["team"]["founders"] == [{"name": "Jane Doe"}]
    assert fixed["team"]["advisors"] == []
    assert fixed["market"] == {"competitors": ["Fanuc", "ABB"], "trends": ["Automation"]}
    assert fixed["risks"] == [{"type": "market", "severity": "high", "description": "Crowded"}]


def test_sanitize_zero_is_kept_where_it_is_a_real_value() -> None:
    raw = {
        "financial": {"burnRate": 0, "revenueGrowthRate": 0, "valuation": 0, "currentRevenue": "0"},
        "market": {"tam": 0, "growthRate": 0},
    }

    fixed = sanitize_extraction_json(raw)

    assert fixed["financial"]["burn_rate"] == 0
    assert fixed["financial"]["revenue_growth_rate"] == 0
    assert fixed["financial"]["current_revenue"] == 0
    assert fixed["financial"]["valuation"] is None
    assert fixed["market"]["tam"] is None
    assert fixed["market"]["growth_rate"] == 0


def test_sanitize_single_risk_object_becomes_list() -> None:
    fixed = sanitize_extraction_json({"risks": {"description": "Key person dependency", "severity": "weird"}})
    assert fixed["risks"] == [{"description": "Key person dependency", "severity": "medium", "type": "other"}]


def test_sanitize_strips_consolidation_only_risk_fields() -> None:
    fixed = sanitize_extraction_json({
        "risks": [{"description": "X", "confidence": 99, "source_document_ids": ["doc_9"]}],
    })
    assert "confidence" not in fixed["risks"][0]
    assert "source_document_ids" not in fixed["risks"][0]


# ---------------------------------------------------------------------------
# Validator: accepted responses
# ---------------------------------------------------------------------------


def test_complete_response_keeps_reported_confidence(validator: ResultValidator) -> None:
    outcome = validator.validate(DECK_PAYLOAD)

    assert outcome.ok
    assert outcome.confidence == 80
    assert outcome.missing_sections == []
    assert outcome.payload.company.name == "Acme Robotics"
    assert len(outcome.payload.team.founders) == 2


def test_missing_sections_are_penalized(validator: ResultValidator) -> None:
    raw = payload(DECK_PAYLOAD)
    del raw["fields"]["team"]
    del raw["fields"]["risks"]

    outcome = validator.validate(raw)

    assert outcome.ok
    assert outcome.missing_sections == ["team", "risks"]
    assert outcome.confidence == 80 - 2 * 15
    assert outcome.warnings == ["Missing sections: team, risks"]


def test_null_section_counts_as_missing(validator: ResultValidator) -> None:
    raw = payload(DECK_PAYLOAD)
    raw["fields"]["market"] = None

    outcome = validator.validate(raw)

    assert outcome.ok
    assert outcome.missing_sections == ["market"]


def test_confidence_is_floored_at_zero(validator: ResultValidator) -> None:
    outcome = validator.validate({"fields": {"company": {"name": "Tiny"}}, "confidence": 20})

    assert outcome.ok
    assert outcome.confidence == 0


def test_confidence_is_clamped_to_100(validator: ResultValidator) -> None:
    raw = payload(DECK_PAYLOAD, confidence="250")
    assert validator.validate(raw).confidence == 100


def test_code_fenced_json_text_is_parsed(validator: ResultValidator) -> None:
    text = "```json\n" + json.dumps(DECK_PAYLOAD) + "\n```"
    outcome = validator.validate(text)

    assert outcome.ok
    assert outcome.payload.market.tam == 45_000_000_000


def test_bare_sections_without_envelope(validator: ResultValidator) -> None:
    outcome = validator.validate({**DECK_PAYLOAD["fields"], "confidence": 70})

    assert outcome.ok
    assert outcome.confidence == 70


def test_unknown_fields_are_dropped(validator: ResultValidator) -> None:
    raw = payload(DECK_PAYLOAD)
    raw["fields"]["company"]["ceo_shoe_size"] = 44
    raw["fields"]["executive_summary"] = "Great company"

    outcome = validator.validate(raw)

    assert outcome.ok
    assert "ceo_shoe_size" not in outcome.payload.company.model_dump()
    assert "executive_summary" not in outcome.payload.model_dump()


def test_missing_confidence_is_estimated(validator: ResultValidator) -> None:
    raw = {"fields": DECK_PAYLOAD["fields"]}
    outcome = validator.validate(raw, characters=6000, raw_size=100_000)

    assert outcome.confidence == estimate_confidence(6000, 100_000) == 95


def test_estimate_confidence_for_scanned_document() -> None:
    # Little text from a large payload reads like a scan
    assert estimate_confidence(150, 2_000_000) == 50


# ---------------------------------------------------------------------------
# Validator: rejected responses
# ---------------------------------------------------------------------------


def test_unparseable_text_is_permanent(validator: ResultValidator) -> None:
    outcome = validator.validate("Sorry, I cannot help with that.")

    assert not outcome.ok
    assert outcome.error_kind is ErrorKind.UNPARSEABLE
    assert not outcome.error_kind.is_transient


@pytest.mark.parametrize(
    "raw",
    [
        "[1, 2, 3]",
        {"foo": 1},
        {"fields": {"company": "Acme"}},
        {"fields": {"risks": "none"}},
        {"fields": {"team": ["Jane Doe"]}},
        {"fields": ["company"]},
    ],
)
def test_wrong_shape_is_malformed(validator: ResultValidator, raw) -> None:
    outcome = validator.validate(raw)

    assert not outcome.ok
    assert outcome.error_kind is ErrorKind.MALFORMED


# ---------------------------------------------------------------------------
# Outcome classification
# ---------------------------------------------------------------------------


def test_classify_outcome() -> None:
    assert classify_outcome(None) == "success"
    assert classify_outcome(ErrorKind.QUOTA_EXCEEDED) == "transient_exhausted"
    assert classify_outcome(ErrorKind.TIMEOUT) == "transient_exhausted"
    assert classify_outcome(ErrorKind.BUDGET_EXCEEDED) == "transient_exhausted"
    assert classify_outcome(ErrorKind.MALFORMED) == "permanent_failure"
    assert classify_outcome(ErrorKind.UNSUPPORTED_FORMAT) == "permanent_failure"
    assert classify_outcome(ErrorKind.OVERSIZED) == "permanent_failure"

"""DealScope Sanitizer — Post-processing of raw extraction output.

Fixes common LLM output errors before Pydantic validation:
  1. camelCase keys and legacy section names (companyOverview, financials, riskFlags)
  2. Scalar fields wrapped in {"value": ...} dicts or lists
  3. Numbers given as strings ("$2.5M", "45%", "1,200 customers")
  4. Zero placeholders where 0 is implausible (tam, valuation, ...)
  5. List fields returned as null, or as lists of dicts
  6. Founders / milestones given as plain strings
  7. Risk flags given as a single object, with "category" instead of "type"
"""

from __future__ import annotations

import re
from typing import Any

# ---------------------------------------------------------------------------
# Field-type constants (define which fields expect which shape)
# ---------------------------------------------------------------------------

# Numeric fields
NUMERIC_FIELDS = {
    # financial
    "current_revenue", "projected_revenue", "revenue_growth_rate", "gross_margin",
    "burn_rate", "runway_months", "cash_raised", "valuation", "funding_sought",
    "arr", "mrr", "ltv_cac_ratio",
    # market
    "tam", "sam", "som", "growth_rate",
    # traction
    "revenue",
    # team
    "years_experience",
}

INTEGER_FIELDS = {"employees", "total_employees", "customers", "users"}

# A literal 0 here means "not found"; elsewhere (burn_rate, revenue, ...) it is a real value
ZERO_PLACEHOLDER_FIELDS = {
    "projected_revenue", "valuation", "funding_sought", "ltv_cac_ratio",
    "tam", "sam", "som",
    "years_experience", "employees", "total_employees",
}

YEAR_FIELDS = {"founded_year"}

PLAIN_STRING_FIELDS = {
    # company
    "name", "industry", "stage", "location", "description", "website",
    "business_model",
    # financial
    "funding_round",
    # market
    "target_market",
    # team / risks / milestones
    "role", "background", "education", "type", "title", "mitigation", "date",
}

PLAIN_STRING_LIST_FIELDS = {
    "advisors", "key_hires", "previous_companies",
    "competitors", "trends",
    "features", "technology", "differentiators",
    "partnerships",
}

# Legacy / camelCase names -> schema names (applied after snake-casing)
KEY_ALIASES = {
    "company_overview": "company",
    "company_info": "company",
    "financials": "financial",
    "financial_metrics": "financial",
    "team_info": "team",
    "market_info": "market",
    "product_info": "product",
    "traction_info": "traction",
    "risk_flags": "risks",
    "runway": "runway_months",
    "market_trends": "trends",
    "market_growth_rate": "growth_rate",
    "seeking": "funding_sought",
    "customers_count": "customers",
    "founded": "founded_year",
}

_PLACEHOLDER_STRINGS = {"", "n/a", "na", "none", "null", "unknown", "not mentioned", "not available", "-"}

_SEVERITY_MAP = {
    "low": "low",
    "minor": "low",
    "medium": "medium",
    "moderate": "medium",
    "high": "high",
    "severe": "high",
    "major": "high",
    "critical": "critical",
}

_MULTIPLIERS = {
    "k": 1e3, "thousand": 1e3,
    "m": 1e6, "mm": 1e6, "million": 1e6,
    "b": 1e9, "bn": 1e9, "billion": 1e9,
    "t": 1e12, "trillion": 1e12,
}

_NUMBER_RE = re.compile(
    r"(-?\d[\d,]*(?:\.\d+)?|-?\.\d+)(?:\s*(k|thousand|mm|m|million|bn|b|billion|t|trillion)\b)?",
    re.IGNORECASE,
)
_YEAR_RE = re.compile(r"\b(1[89]\d{2}|20\d{2})\b")
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def strip_code_fences(raw_text: str) -> str:
    """Strip markdown code fences (```json ... ```) from LLM response."""
    text = raw_text.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1:] if first_newline != -1 else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def to_snake_case(key: str) -> str:
    snake = _CAMEL_RE.sub("_", key).replace("-", "_").replace(" ", "_").lower()
    return KEY_ALIASES.get(snake, snake)


def parse_number(value: Any) -> float | None:
    """Parse "$2.5M", "45%", "1,200" or 3.2 into a float; None if absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, dict) and "value" in value:
        return parse_number(value["value"])
    if not isinstance(value, str):
        return None
    match = _NUMBER_RE.search(value.replace("$", "").replace("€", "").replace("£", ""))
    if not match:
        return None
    number = float(match.group(1).replace(",", ""))
    suffix = (match.group(2) or "").lower()
    return number * _MULTIPLIERS.get(suffix, 1.0)


def _unwrap_value(obj: Any) -> Any:
    if isinstance(obj, dict) and "value" in obj:
        return obj["value"]
    return obj


def _clean_string(value: Any) -> str | None:
    value = _unwrap_value(value)
    if value is None:
        return None
    if isinstance(value, list):
        parts = [p for p in (_clean_string(v) for v in value) if p]
        return "; ".join(parts) if parts else None
    text = str(value).strip()
    if text.lower() in _PLACEHOLDER_STRINGS:
        return None
    return text


def _clean_string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    cleaned: list[str] = []
    for item in value:
        if isinstance(item, dict):
            if "value" in item:
                item = item["value"]
            elif "name" in item:
                item = item["name"]
            elif "description" in item:
                item = item["description"]
            else:
                item = "; ".join(f"{k}: {v}" for k, v in item.items() if v is not None)
        text = _clean_string(item)
        if text:
            cleaned.append(text)
    return cleaned


def _clean_number(value: Any, key: str = "") -> float | None:
    number = parse_number(value)
    if number == 0 and key in ZERO_PLACEHOLDER_FIELDS:
        return None
    return number


def _clean_integer(value: Any, key: str = "") -> int | None:
    number = _clean_number(value, key)
    return int(round(number)) if number is not None else None


def _clean_year(value: Any) -> int | None:
    value = _unwrap_value(value)
    if isinstance(value, int) and not isinstance(value, bool):
        return value if value > 0 else None
    if value is None:
        return None
    match = _YEAR_RE.search(str(value))
    return int(match.group(1)) if match else None


# ---------------------------------------------------------------------------
# Nested shapes
# ---------------------------------------------------------------------------


def _fix_founders(value: Any) -> list[dict]:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    founders = []
    for item in value if isinstance(value, list) else []:
        if isinstance(item, str):
            name = _clean_string(item)
            if name:
                founders.append({"name": name})
        elif isinstance(item, dict):
            fixed = _fix_record(item)
            if fixed.get("name"):
                founders.append(fixed)
    return founders


def _fix_milestones(value: Any) -> list[dict]:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    milestones = []
    for item in value if isinstance(value, list) else []:
        if isinstance(item, str):
            text = _clean_string(item)
            if text:
                milestones.append({"description": text})
        elif isinstance(item, dict):
            fixed = _fix_record(item)
            if fixed.get("description"):
                fixed["achieved"] = bool(fixed.get("achieved", False))
                milestones.append(fixed)
    return milestones


def _fix_risks(value: Any) -> list[dict] | None:
    if value is None:
        return None
    if isinstance(value, dict):
        # {"riskFlags": [...]} or a single flag object
        inner = value.get("risk_flags") or value.get("riskFlags") or value.get("risks")
        value = inner if isinstance(inner, list) else [value]
    if not isinstance(value, list):
        return None
    risks = []
    for item in value:
        if isinstance(item, str):
            text = _clean_string(item)
            if text:
                risks.append({"description": text})
            continue
        if not isinstance(item, dict):
            continue
        item = dict(item)
        if "category" in item and "type" not in item:
            item["type"] = item.pop("category")
        fixed = _fix_record(item)
        if not fixed.get("description"):
            fixed["description"] = fixed.get("title")
        if not fixed.get("description"):
            continue
        severity = str(fixed.get("severity") or "medium").strip().lower()
        fixed["severity"] = _SEVERITY_MAP.get(severity, "medium")
        fixed["type"] = (fixed.get("type") or "other").lower()
        # Provenance fields are assigned during consolidation only
        fixed.pop("confidence", None)
        fixed.pop("source_document_ids", None)
        risks.append(fixed)
    return risks


def _fix_record(record: dict) -> dict:
    """Fix one flat object (a section, a founder, a milestone, a risk)."""
    result: dict[str, Any] = {}
    for raw_key, val in record.items():
        key = to_snake_case(str(raw_key))
        if key in NUMERIC_FIELDS:
            result[key] = _clean_number(val, key)
        elif key in INTEGER_FIELDS:
            result[key] = _clean_integer(val, key)
        elif key in YEAR_FIELDS:
            result[key] = _clean_year(val)
        elif key in PLAIN_STRING_LIST_FIELDS:
            result[key] = _clean_string_list(val)
        elif key in PLAIN_STRING_FIELDS:
            result[key] = _clean_string(val)
        elif key == "founders":
            result[key] = _fix_founders(val)
        elif key == "milestones":
            result[key] = _fix_milestones(val)
        else:
            result[key] = val
    return result


# ---------------------------------------------------------------------------
# Core sanitizer
# ---------------------------------------------------------------------------


def sanitize_extraction_json(data: dict) -> dict:
    """Normalize a raw extraction response before Pydantic validation.

    Accepts both ``{"fields": {...}, "confidence": 80}`` envelopes and bare
    section dicts. Returns a dict with snake_case section keys; sections
    that are not dicts (or lists, for ``risks``) are passed through untouched
    so the validator can reject them.
    """
    result: dict[str, Any] = {}
    for raw_key, val in data.items():
        key = to_snake_case(str(raw_key))
        if key == "risks":
            fixed_risks = _fix_risks(val)
            result[key] = fixed_risks if fixed_risks is not None else val
        elif isinstance(val, dict):
            result[key] = _fix_record(val)
        else:
            result[key] = val
    return result

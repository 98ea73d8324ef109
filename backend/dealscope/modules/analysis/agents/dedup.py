from __future__ import annotations

import re

from dealscope.modules.analysis.schemas import Founder, Milestone, RiskFlag

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_key(value: str | None) -> str:
    """Trim, lowercase and collapse internal whitespace.

    The only equality used for list dedup: "Acme  Corp " == "acme corp".
    """
    if value is None:
        return ""
    return _WHITESPACE_RE.sub(" ", value.strip()).lower()


def founder_key(founder: Founder) -> str:
    return normalize_key(founder.name)


def milestone_key(milestone: Milestone) -> str:
    return normalize_key(milestone.description)


def risk_key(risk: RiskFlag) -> tuple[str, str]:
    """Risk flags are the same risk when type and description match."""
    return normalize_key(risk.type), normalize_key(risk.description)

"""DealScope scoring rubric — versioned table of boolean factors per dimension.

Each dimension's factors are worth 100 points in total; a factor scores its
full points when its check passes against the consolidated profile, zero
otherwise. Changing any factor means a new rubric version.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from dealscope.modules.analysis.schemas import ConsolidatedProfile

_LIVE_STAGES = ("launched", "live", "scaling", "growth", "general availability", "ga")


@dataclass(frozen=True)
class Factor:
    name: str
    points: float
    description: str
    check: Callable[[ConsolidatedProfile], bool]


@dataclass(frozen=True)
class Rubric:
    version: str
    dimensions: dict[str, tuple[Factor, ...]]

    def max_points(self, dimension: str) -> float:
        return sum(f.points for f in self.dimensions[dimension])


def _at_least(value: float | None, threshold: float) -> bool:
    return value is not None and value >= threshold


def _product_is_live(p: ConsolidatedProfile) -> bool:
    stage = (p.product.stage or "").lower()
    return any(s in stage for s in _LIVE_STAGES)


def _has_revenue(p: ConsolidatedProfile) -> bool:
    return any(
        v is not None and v > 0
        for v in (p.traction.revenue, p.financial.current_revenue, p.financial.arr, p.financial.mrr)
    )


# ---------------------------------------------------------------------------
# RUBRIC_V1
# ---------------------------------------------------------------------------

_TEAM = (
    Factor("founders_identified", 15, "At least one founder is named",
           lambda p: len(p.team.founders) >= 1),
    Factor("founding_team", 15, "Two or more founders",
           lambda p: len(p.team.founders) >= 2),
    Factor("founder_track_record", 20, "A founder has a described background or prior companies",
           lambda p: any(f.background or f.previous_companies for f in p.team.founders)),
    Factor("founder_experience", 15, "A founder has 5+ years of experience",
           lambda p: any(_at_least(f.years_experience, 5) for f in p.team.founders)),
    Factor("founder_education", 10, "Founder education is documented",
           lambda p: any(f.education for f in p.team.founders)),
    Factor("advisors", 10, "Advisors or board members are named",
           lambda p: bool(p.team.advisors)),
    Factor("key_hires", 15, "Key hires beyond the founders",
           lambda p: bool(p.team.key_hires)),
)

_MARKET = (
    Factor("tam_known", 15, "Total addressable market is sized",
           lambda p: _at_least(p.market.tam, 0.01)),
    Factor("large_market", 20, "TAM of at least $1B",
           lambda p: _at_least(p.market.tam, 1e9)),
    Factor("serviceable_market", 15, "SAM or SOM is sized",
           lambda p: _at_least(p.market.sam, 0.01) or _at_least(p.market.som, 0.01)),
    Factor("market_growth", 20, "Market grows at least 10% per year",
           lambda p: _at_least(p.market.growth_rate, 10)),
    Factor("competition_mapped", 15, "Competitors are identified",
           lambda p: bool(p.market.competitors)),
    Factor("market_trends", 15, "Supporting market trends are identified",
           lambda p: bool(p.market.trends)),
)

_PRODUCT = (
    Factor("product_described", 20, "Product is described",
           lambda p: bool(p.product.description)),
    Factor("product_live", 25, "Product is launched or scaling",
           _product_is_live),
    Factor("differentiation", 20, "Differentiators are stated",
           lambda p: bool(p.product.differentiators)),
    Factor("technology", 15, "Technology stack or IP is described",
           lambda p: bool(p.product.technology)),
    Factor("feature_set", 20, "Key features are listed",
           lambda p: bool(p.product.features)),
)

_TRACTION = (
    Factor("paying_customers", 20, "Has customers",
           lambda p: _at_least(p.traction.customers, 1)),
    Factor("customer_base", 15, "At least 100 customers",
           lambda p: _at_least(p.traction.customers, 100)),
    Factor("revenue", 20, "Generates revenue",
           _has_revenue),
    Factor("revenue_growth", 15, "Revenue grows at least 50% year over year",
           lambda p: _at_least(p.financial.revenue_growth_rate, 50)),
    Factor("partnerships", 15, "Strategic partnerships are in place",
           lambda p: bool(p.traction.partnerships)),
    Factor("milestones_achieved", 15, "At least one milestone achieved",
           lambda p: any(m.achieved for m in p.traction.milestones)),
)

_FINANCIALS = (
    Factor("revenue_reported", 15, "Current revenue, ARR or MRR is reported",
           lambda p: any(v is not None for v in (p.financial.current_revenue, p.financial.arr, p.financial.mrr))),
    Factor("gross_margin", 20, "Gross margin of at least 50%",
           lambda p: _at_least(p.financial.gross_margin, 50)),
    Factor("runway", 20, "At least 12 months of runway",
           lambda p: _at_least(p.financial.runway_months, 12)),
    Factor("burn_known", 10, "Monthly burn is disclosed",
           lambda p: p.financial.burn_rate is not None),
    Factor("capital_raised", 15, "Has raised capital",
           lambda p: _at_least(p.financial.cash_raised, 0.01)),
    Factor("unit_economics", 20, "LTV:CAC of at least 3",
           lambda p: _at_least(p.financial.ltv_cac_ratio, 3)),
)

RUBRIC_V1 = Rubric(
    version="v1",
    dimensions={
        "team": _TEAM,
        "market": _MARKET,
        "product": _PRODUCT,
        "traction": _TRACTION,
        "financials": _FINANCIALS,
    },
)

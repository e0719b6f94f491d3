"""Model-free forecast synthesis.

Everything here is a pure function of the request: the same request always
yields the same numbers and drivers. The draw order in ``synthesize`` is part
of that contract.
"""
from __future__ import annotations

import time
from typing import Any, Callable

from ecoforecast.core.drivers import synthesize_drivers
from ecoforecast.core.prng import Mulberry32, seed_from_string
from ecoforecast.core.schemas import (
    ForecastRequest,
    ForecastResult,
    Driver,
    Meta,
    Narrative,
    NARRATIVE_SECTIONS,
)
from ecoforecast.core.utils import (
    canonicalize_geo,
    canonicalize_naics,
    clamp01,
    round1,
    round_half_up,
)


def draw_shifts(draw: Callable[[], float], multiplier: float) -> tuple[float, float, int]:
    demand_pct = round1((draw() - 0.55) * 8 * multiplier)
    cost_pct = round1((draw() - 0.45) * 5 * multiplier)
    margin_bps = round_half_up((-(demand_pct * 8) + (cost_pct * 12)) * (0.6 + draw() * 0.5))
    return demand_pct, cost_pct, margin_bps


def build_meta(request: ForecastRequest, source: str, started: float | None = None) -> Meta:
    latency_ms = 0
    if started is not None:
        latency_ms = max(0, int((time.perf_counter() - started) * 1000))
    return Meta(
        plan=request.plan,
        geo_canonical=canonicalize_geo(request.geo),
        naics_canonical=canonicalize_naics(request.naics),
        horizon_months=request.horizon_months,
        source=source,
        latency_ms=latency_ms,
    )


def synthesize(
    request: ForecastRequest,
    seed: int | None = None,
    started: float | None = None,
) -> ForecastResult:
    rng = Mulberry32(seed_from_string(request.seed_text()) if seed is None else seed)
    demand_pct, cost_pct, margin_bps = draw_shifts(rng, request.scenario_multiplier)
    drivers = synthesize_drivers(request.driver_text(), rng)
    confidence = clamp01(0.55 + (rng() - 0.5) * 0.25)
    return ForecastResult(
        demand_pct=demand_pct,
        cost_pct=cost_pct,
        margin_bps=margin_bps,
        drivers=drivers,
        confidence=confidence,
        meta=build_meta(request, "demo", started),
    )


DEFAULT_OUTLINE: dict[str, list[str]] = {
    "assumptions": [
        "No complete shutdown of key logistics nodes",
        "Energy prices elevated but do not spike >15% MoM",
        "No restrictive local mandate on operating hours",
    ],
    "risks": [
        "Lead times extend to 4-6 weeks",
        "Insurance and risk premia outpace budgets",
        "Confidence shock reduces visit frequency",
    ],
    "local_signals": [
        "Foot traffic trend vs. 2019 baseline",
        "Reservations and table turn",
        "Card-spend mix: Grocery vs. Dining",
    ],
    "time_path": [
        "0-3m: demand dip; costs elevated; margin defense required",
        "4-9m: demand stabilizes; selective easing on logistics",
        "10-12m: gradual margin repair as inputs normalize",
    ],
    "actions": [
        "Hedge/forward-buy shelf-stable inputs",
        "Engineer the product mix for higher contribution margin",
        "Consolidate deliveries; renegotiate fuel surcharges",
    ],
    "data_anchors": [
        "WTI/Brent weekly, Baltic Dry Index",
        "CPI (FAFH), PPI (food inputs & packaging)",
        "Local payrolls, card-spend trends",
    ],
}

SECTION_TITLES = {
    "assumptions": "Assumptions",
    "risks": "Risks",
    "local_signals": "Local signals to watch",
    "time_path": "Time path",
    "actions": "Actions",
    "data_anchors": "Data anchors",
}


def _direction(value: float, up: str, down: str, flat: str) -> str:
    if value > 0:
        return up
    if value < 0:
        return down
    return flat


def synthesize_narrative(
    request: ForecastRequest,
    result: ForecastResult,
    outline: dict[str, Any] | None = None,
) -> Narrative:
    outline = outline if isinstance(outline, dict) else {}
    sections = {}
    for name in NARRATIVE_SECTIONS:
        items = outline.get(name)
        sections[name] = items if isinstance(items, list) and items else list(DEFAULT_OUTLINE[name])

    geo = canonicalize_geo(request.geo)
    naics = canonicalize_naics(request.naics)
    demand = _direction(result.demand_pct, "firmer", "softer", "flat")
    cost = _direction(result.cost_pct, "rising", "easing", "stable")
    summary = (
        f"Over the next {request.horizon_months} months in {geo}, NAICS {naics} faces {demand} demand "
        f"({result.demand_pct:+.1f}%) and {cost} input costs ({result.cost_pct:+.1f}%), "
        f"for a net margin impact of {result.margin_bps:+d} bps under the {request.scenario} scenario."
    )
    narrative = Narrative(summary=summary, **sections)
    paragraphs = [summary]
    for name in NARRATIVE_SECTIONS:
        paragraphs.append(f"{SECTION_TITLES[name]}: " + "; ".join(narrative.section(name)) + ".")
    narrative.full = "\n\n".join(paragraphs)
    return narrative


def mock_result(request: ForecastRequest, started: float | None = None) -> ForecastResult:
    result = ForecastResult(
        demand_pct=-2.1,
        cost_pct=1.3,
        margin_bps=-140,
        drivers=[
            Driver(text="Households defer discretionary purchases in the near term.", tone="warn"),
            Driver(text="Freight, insurance, and energy lift input costs.", tone="bad"),
            Driver(text="Operators defend margins via mix, staffing, and pricing.", tone="good"),
        ],
        confidence=0.83,
        meta=build_meta(request, "mock", started),
    )
    result.narrative = synthesize_narrative(request, result)
    return result

from __future__ import annotations

import math
import re
from typing import Callable

from ecoforecast.core.schemas import MAX_DRIVERS, MIN_DRIVERS, TONES, Driver


# Evaluated in order; every matching rule contributes one driver.
DRIVER_RULES: list[tuple[re.Pattern[str], str, str]] = [
    (
        re.compile(r"\b(?:war|conflict|invasion|mobilization|sanction|blockade)"),
        "Geopolitical risk elevating supply chain fragility",
        "bad",
    ),
    (
        re.compile(r"\b(?:tariff|quota|export ban|embargo)"),
        "Trade barriers raising input costs",
        "bad",
    ),
    (
        re.compile(r"\b(?:subsidy|credit|rebate|stimulus|grant)"),
        "Fiscal support boosting demand in targeted sectors",
        "good",
    ),
    (
        re.compile(r"\b(?:hurricane|flood|wildfire|heat wave|el niño|la niña)"),
        "Weather disruption affecting logistics and insurance premiums",
        "warn",
    ),
    (
        re.compile(r"\b(?:party|majority|house|senate|white house|regime change|coup)"),
        "Political control shift altering policy trajectory",
        "warn",
    ),
    (
        re.compile(r"\b(?:fed|rate hike|rate cut|yields|quantitative)"),
        "Interest-rate path impacting capital costs and demand",
        "warn",
    ),
]

FALLBACK_POOL = [
    "Energy futures volatility spilling into transport costs",
    "Labor market tightness pressuring wages",
    "FX moves altering import prices",
    "Commodity basis widening for key inputs",
    "Port congestion risk elevating lead times",
]


def _pick(draw: Callable[[], float], size: int) -> int:
    return min(size - 1, int(math.floor(draw() * size)))


def match_rules(text: str) -> list[Driver]:
    lowered = (text or "").lower()
    return [Driver(text=message, tone=tone) for pattern, message, tone in DRIVER_RULES if pattern.search(lowered)]


def pad_drivers(drivers: list[Driver], draw: Callable[[], float], minimum: int = MIN_DRIVERS) -> list[Driver]:
    padded = list(drivers)
    while len(padded) < minimum:
        item = FALLBACK_POOL[_pick(draw, len(FALLBACK_POOL))]
        tone = TONES[_pick(draw, len(TONES))]
        padded.append(Driver(text=item, tone=tone))
    return padded


def synthesize_drivers(text: str, draw: Callable[[], float]) -> list[Driver]:
    drivers = pad_drivers(match_rules(text), draw)
    return drivers[:MAX_DRIVERS]

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from ecoforecast.core.errors import ValidationError
from ecoforecast.core.utils import clamp01, finite_float, round1, round_half_up


JsonDict = dict[str, Any]

HORIZON_MONTHS = {"short": 3, "medium": 12, "long": 24}
DEFAULT_HORIZON = "medium"
DEFAULT_SCENARIO = "Base"
PLANS = ("business", "pro", "enterprise")
DEFAULT_PLAN = "business"
TONES = ("good", "bad", "warn")
SOURCES = (
    "demo",
    "openrouter",
    "openrouter_2stage",
    "openrouter_fallback",
    "fallback-demo",
    "mock",
)
NARRATIVE_SECTIONS = (
    "assumptions",
    "risks",
    "local_signals",
    "time_path",
    "actions",
    "data_anchors",
)

MAX_DRIVER_CHARS = 350
MIN_DRIVERS = 3
MAX_DRIVERS = 6
MAX_SECTION_ITEMS = 5
DEFAULT_CONFIDENCE = 0.65


def normalize_horizon(value: Any) -> str:
    key = str(value or "").strip().lower()
    return key if key in HORIZON_MONTHS else DEFAULT_HORIZON


def normalize_plan(value: Any) -> str:
    key = str(value or "").strip().lower()
    return key if key in PLANS else DEFAULT_PLAN


def scenario_multiplier(scenario: str | None) -> float:
    scen = (scenario or DEFAULT_SCENARIO).lower()
    if "severe" in scen:
        return 1.8
    if "best" in scen:
        return 0.6
    return 1.0


@dataclass(frozen=True)
class ForecastRequest:
    event: str
    geo: str
    naics: str
    horizon: str = DEFAULT_HORIZON
    scenario: str = DEFAULT_SCENARIO
    extra_factors: str = ""
    plan: str = DEFAULT_PLAN

    @property
    def horizon_months(self) -> int:
        return HORIZON_MONTHS.get(self.horizon, HORIZON_MONTHS[DEFAULT_HORIZON])

    @property
    def scenario_multiplier(self) -> float:
        return scenario_multiplier(self.scenario)

    def seed_text(self) -> str:
        return "|".join(
            [self.event, self.geo, self.naics, self.horizon, self.scenario, self.extra_factors]
        )

    def driver_text(self) -> str:
        return f"{self.event} {self.extra_factors}"

    def to_record(self) -> JsonDict:
        return {
            "event": self.event,
            "geo": self.geo,
            "naics": self.naics,
            "horizon": self.horizon,
            "scenario": self.scenario,
            "extra_factors": self.extra_factors,
            "plan": self.plan,
        }

    @staticmethod
    def from_payload(payload: JsonDict | None) -> "ForecastRequest":
        payload = payload or {}
        values = {key: str(payload.get(key) or "").strip() for key in ("event", "geo", "naics")}
        missing = [key for key, value in values.items() if not value]
        if missing:
            raise ValidationError(missing)
        return ForecastRequest(
            event=values["event"],
            geo=values["geo"],
            naics=values["naics"],
            horizon=normalize_horizon(payload.get("horizon")),
            scenario=str(payload.get("scenario") or "").strip() or DEFAULT_SCENARIO,
            extra_factors=str(payload.get("extra_factors") or "").strip(),
            plan=normalize_plan(payload.get("plan")),
        )


@dataclass
class Driver:
    text: str
    tone: str

    def __post_init__(self) -> None:
        self.text = str(self.text or "")[:MAX_DRIVER_CHARS]
        if self.tone not in TONES:
            self.tone = "warn"

    def to_record(self) -> JsonDict:
        return {"text": self.text, "tone": self.tone}

    @staticmethod
    def from_record(record: Any) -> "Driver | None":
        if isinstance(record, str):
            text, tone = record, "warn"
        elif isinstance(record, dict):
            text = record.get("text") or ""
            tone = str(record.get("tone") or "warn").strip().lower()
        else:
            return None
        text = str(text).strip()
        if not text:
            return None
        return Driver(text=text, tone=tone)


def _clean_items(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    items = [str(item).strip() for item in value if item is not None and str(item).strip()]
    return items[:MAX_SECTION_ITEMS]


@dataclass
class Narrative:
    summary: str = ""
    full: str = ""
    assumptions: list[str] = field(default_factory=list)
    risks: list[str] = field(default_factory=list)
    local_signals: list[str] = field(default_factory=list)
    time_path: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    data_anchors: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        for name in NARRATIVE_SECTIONS:
            setattr(self, name, _clean_items(getattr(self, name)))

    def section(self, name: str) -> list[str]:
        return list(getattr(self, name))

    def to_record(self) -> JsonDict:
        record: JsonDict = {"summary": self.summary, "full": self.full}
        for name in NARRATIVE_SECTIONS:
            record[name] = list(getattr(self, name))
        return record

    @staticmethod
    def from_record(record: Any, backfill: JsonDict | None = None) -> "Narrative":
        """Build a narrative from model output.

        Sections missing from ``record`` are taken from ``backfill`` (the
        stage-1 outline) when it has them.
        """
        record = record if isinstance(record, dict) else {}
        backfill = backfill if isinstance(backfill, dict) else {}
        sections = {}
        for name in NARRATIVE_SECTIONS:
            value = record.get(name)
            if not isinstance(value, list) or not value:
                value = backfill.get(name)
            sections[name] = _clean_items(value)
        return Narrative(
            summary=str(record.get("summary") or "").strip(),
            full=str(record.get("full") or "").strip(),
            **sections,
        )


@dataclass
class Meta:
    plan: str
    geo_canonical: str
    naics_canonical: str
    horizon_months: int
    source: str
    latency_ms: int = 0
    error: str | None = None

    def to_record(self) -> JsonDict:
        record: JsonDict = {
            "plan": self.plan,
            "geo_canonical": self.geo_canonical,
            "naics_canonical": self.naics_canonical,
            "horizon_months": self.horizon_months,
            "latency_ms": self.latency_ms,
            "source": self.source,
        }
        if self.error:
            record["error"] = self.error
        return record


@dataclass
class ForecastNumbers:
    """Numeric fields of a forecast as parsed from stage-1 model output."""

    demand_pct: float
    cost_pct: float
    margin_bps: int
    confidence: float
    drivers: list[Driver]

    @staticmethod
    def from_record(record: JsonDict) -> "ForecastNumbers":
        drivers = []
        raw_drivers = record.get("drivers")
        if isinstance(raw_drivers, list):
            for item in raw_drivers:
                driver = Driver.from_record(item)
                if driver is not None:
                    drivers.append(driver)
        margin = finite_float(record.get("margin_bps"), 0.0)
        return ForecastNumbers(
            demand_pct=round1(finite_float(record.get("demand_pct"), 0.0)),
            cost_pct=round1(finite_float(record.get("cost_pct"), 0.0)),
            margin_bps=round_half_up(margin),
            confidence=clamp01(finite_float(record.get("confidence"), DEFAULT_CONFIDENCE)),
            drivers=drivers[:MAX_DRIVERS],
        )


@dataclass
class ForecastResult:
    demand_pct: float
    cost_pct: float
    margin_bps: int
    drivers: list[Driver]
    confidence: float
    meta: Meta
    narrative: Narrative | None = None

    def numbers(self) -> tuple[float, float, int, float]:
        return (self.demand_pct, self.cost_pct, self.margin_bps, self.confidence)

    def is_finite(self) -> bool:
        return all(math.isfinite(float(v)) for v in self.numbers())

    def to_record(self) -> JsonDict:
        record: JsonDict = {
            "demand_pct": self.demand_pct,
            "cost_pct": self.cost_pct,
            "margin_bps": self.margin_bps,
            "drivers": [driver.to_record() for driver in self.drivers],
            "confidence": self.confidence,
        }
        if self.narrative is not None:
            record["narrative"] = self.narrative.to_record()
        record["meta"] = self.meta.to_record()
        return record


@dataclass
class UsageCounter:
    user_id: str
    period_key: str
    count: int
    cap: int

    def to_record(self) -> JsonDict:
        return {
            "user_id": self.user_id,
            "period_key": self.period_key,
            "count": self.count,
            "cap": self.cap,
        }


@dataclass(frozen=True)
class QuotaStatus:
    count: int
    cap: int

    @property
    def remaining(self) -> int:
        return max(0, self.cap - self.count)

    def to_record(self) -> JsonDict:
        return {"count": self.count, "cap": self.cap, "remaining": self.remaining}

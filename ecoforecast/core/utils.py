from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def period_key(now: datetime | None = None) -> str:
    now = now or utc_now()
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return f"{now.year:04d}-{now.month:02d}"


def round_half_up(value: float, default: int = 0) -> int:
    # Math.round semantics: .5 always goes towards +inf.
    shifted = value + 0.5
    if not math.isfinite(shifted):
        return default
    return int(math.floor(shifted))


def round1(value: float, default: float = 0.0) -> float:
    scaled = value * 10
    if not math.isfinite(scaled):
        return default
    return round_half_up(scaled) / 10


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def canonicalize_geo(geo: str | None) -> str:
    return re.sub(r"\s+", " ", (geo or "").strip())


def canonicalize_naics(naics: str | None) -> str:
    return (naics or "").strip().upper()


def word_count(text: str | None) -> int:
    return len((text or "").split())


def finite_float(value: Any, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(number):
        return default
    return number

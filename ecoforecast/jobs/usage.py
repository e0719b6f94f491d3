from __future__ import annotations

from typing import Any

from ecoforecast import SERVICE_NAME, __version__
from ecoforecast.core.config import load_config
from ecoforecast.core.quota import current_period_key
from ecoforecast.core.utils import to_iso, utc_now
from ecoforecast.jobs.common import bootstrap, build_ledger


def run_usage(user_id: str, config_path: str = "ecoforecast.toml", period_key: str | None = None) -> dict[str, Any]:
    config, storage = bootstrap(config_path)
    try:
        period = period_key or current_period_key()
        status = build_ledger(config, storage).read(user_id, period)
        return {"user_id": user_id, "period_key": period, **status.to_record()}
    finally:
        storage.close()


def run_history(user_id: str, config_path: str = "ecoforecast.toml", limit: int = 25) -> dict[str, Any]:
    _, storage = bootstrap(config_path)
    try:
        rows = storage.list_recent_forecasts(user_id, limit=limit)
        return {"user_id": user_id, "count": len(rows), "forecasts": rows}
    finally:
        storage.close()


def run_health(config_path: str = "ecoforecast.toml") -> dict[str, Any]:
    config = load_config(config_path)
    return {
        "ok": True,
        "service": SERVICE_NAME,
        "version": __version__,
        "timestamp": to_iso(utc_now()),
        "model": config.model.model,
        "has_api_key": config.model.configured,
        "mock_mode": config.mock_mode,
    }

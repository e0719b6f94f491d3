from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from ecoforecast.core.errors import StoreError
from ecoforecast.core.forecast_runner import ModelClient, run_forecast
from ecoforecast.core.plans import StaticPlanResolver
from ecoforecast.core.schemas import NARRATIVE_SECTIONS, ForecastRequest, ForecastResult
from ecoforecast.core.synthesizer import SECTION_TITLES
from ecoforecast.core.utils import to_iso, utc_now
from ecoforecast.jobs.common import bootstrap, build_ledger

logger = logging.getLogger(__name__)


def _safe_name(value: str, max_len: int = 60) -> str:
    clean = "".join(ch if ch.isalnum() or ch in ("-", "_") else "_" for ch in value)
    clean = clean.strip("_")
    if not clean:
        clean = "forecast"
    return clean[:max_len]


def write_forecast_markdown(
    report_dir: str,
    made_at_iso: str,
    request: ForecastRequest,
    result: ForecastResult,
) -> str:
    out_dir = Path(report_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    stamp = made_at_iso.replace(":", "").replace("-", "")
    path = out_dir / f"{stamp}_{_safe_name(request.event)}.md"
    meta = result.meta
    lines = [
        "# Economic Impact Forecast",
        "",
        f"- Made At: `{made_at_iso}`",
        f"- Event: {request.event}",
        f"- Geo: `{meta.geo_canonical}`",
        f"- NAICS: `{meta.naics_canonical}`",
        f"- Horizon: `{meta.horizon_months} months`",
        f"- Scenario: `{request.scenario}`",
        f"- Plan: `{meta.plan}`",
        f"- Source: `{meta.source}`",
        "",
        "## Impact",
        f"- Demand: `{result.demand_pct:+.1f}%`",
        f"- Cost: `{result.cost_pct:+.1f}%`",
        f"- Margin: `{result.margin_bps:+d} bps`",
        f"- Confidence: `{result.confidence:.2f}`",
        "",
        "## Drivers",
    ]
    for driver in result.drivers:
        lines.append(f"- [{driver.tone}] {driver.text}")
    if meta.error:
        lines.extend(["", f"> Generated without a live narrative: `{meta.error}`"])
    narrative = result.narrative
    if narrative is not None:
        lines.extend(["", "## Summary", "", narrative.summary or "No summary provided."])
        for name in NARRATIVE_SECTIONS:
            items = narrative.section(name)
            if not items:
                continue
            lines.extend(["", f"## {SECTION_TITLES[name]}"])
            lines.extend(f"- {item}" for item in items)
        if narrative.full:
            lines.extend(["", "## Full Report", "", narrative.full])
    lines.append("")
    path.write_text("\n".join(lines), encoding="utf-8")
    return str(path.as_posix())


def run_forecast_job(
    payload: dict[str, Any],
    config_path: str = "ecoforecast.toml",
    user_id: str | None = None,
    client: ModelClient | None = None,
) -> dict[str, Any]:
    """Validate ``payload``, run the pipeline and return the result record.

    With a ``user_id`` the run is charged against that user's monthly quota
    and saved to the local forecast history.
    """
    config, storage = bootstrap(config_path)
    try:
        payload = dict(payload)
        if not payload.get("plan"):
            payload["plan"] = StaticPlanResolver(config.default_plan).resolve(user_id)
        request = ForecastRequest.from_payload(payload)
        ledger = build_ledger(config, storage) if user_id else None
        run = run_forecast(request, config, user_id=user_id, ledger=ledger, client=client)
        record = run.result.to_record()
        if run.quota is not None:
            record["usage"] = run.quota.to_record()
        if user_id:
            try:
                storage.insert_forecast(user_id, request, run.result)
            except StoreError as exc:
                logger.warning(f"Forecast for {user_id} served but not saved to history: {exc}")
                record["history_saved"] = False
        if config.report.write_markdown:
            record["report_path"] = write_forecast_markdown(
                report_dir=config.report.report_dir,
                made_at_iso=to_iso(utc_now()) or "",
                request=request,
                result=run.result,
            )
        logger.info(f"Forecast served from {run.result.meta.source} in {run.result.meta.latency_ms}ms")
        return record
    finally:
        storage.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate one economic impact forecast.")
    parser.add_argument("--config", default="ecoforecast.toml")
    parser.add_argument("--user", default=None)
    parser.add_argument("payload", help="JSON request body")
    args = parser.parse_args()
    print(json.dumps(run_forecast_job(json.loads(args.payload), config_path=args.config, user_id=args.user), indent=2))


if __name__ == "__main__":
    main()

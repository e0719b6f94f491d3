from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

import dotenv

from ecoforecast.core.errors import QuotaExceeded, StoreUnavailable, ValidationError
from ecoforecast.core.presets import PRESETS, get_preset, list_presets
from ecoforecast.jobs.forecast import run_forecast_job
from ecoforecast.jobs.usage import run_health, run_history, run_usage

dotenv.load_dotenv()

logger = logging.getLogger(__name__)

EXIT_VALIDATION = 2
EXIT_QUOTA = 3
EXIT_STORE = 4


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


class PayloadError(ValueError):
    """Raised when --payload is not a JSON object."""


def _build_payload(args: argparse.Namespace) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    if args.payload:
        try:
            body = json.loads(args.payload)
        except json.JSONDecodeError as exc:
            raise PayloadError(f"--payload is not valid JSON: {exc.msg}") from exc
        if not isinstance(body, dict):
            raise PayloadError("--payload must be a JSON object")
        payload.update(body)
    if args.preset:
        payload["event"] = get_preset(args.preset).template
    for key in ("event", "geo", "naics", "horizon", "scenario", "extra_factors", "plan"):
        value = getattr(args, key)
        if value:
            payload[key] = value
    return payload


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="EcoForecast economic impact forecasts")
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_forecast = sub.add_parser("forecast")
    p_forecast.add_argument("--config", default="ecoforecast.toml")
    p_forecast.add_argument("--user", default=None)
    p_forecast.add_argument("--payload", default=None, help="JSON request body")
    p_forecast.add_argument("--preset", default=None, choices=sorted(PRESETS))
    p_forecast.add_argument("--event", default=None)
    p_forecast.add_argument("--geo", default=None)
    p_forecast.add_argument("--naics", default=None)
    p_forecast.add_argument("--horizon", default=None, choices=["short", "medium", "long"])
    p_forecast.add_argument("--scenario", default=None)
    p_forecast.add_argument("--extra-factors", dest="extra_factors", default=None)
    p_forecast.add_argument("--plan", default=None)

    p_usage = sub.add_parser("usage")
    p_usage.add_argument("--config", default="ecoforecast.toml")
    p_usage.add_argument("--user", required=True)
    p_usage.add_argument("--period", default=None)

    p_history = sub.add_parser("history")
    p_history.add_argument("--config", default="ecoforecast.toml")
    p_history.add_argument("--user", required=True)
    p_history.add_argument("--limit", type=int, default=25)

    sub.add_parser("presets")

    p_health = sub.add_parser("health")
    p_health.add_argument("--config", default="ecoforecast.toml")

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))

    try:
        if args.cmd == "forecast":
            _print(run_forecast_job(_build_payload(args), config_path=args.config, user_id=args.user))
        elif args.cmd == "usage":
            _print(run_usage(args.user, config_path=args.config, period_key=args.period))
        elif args.cmd == "history":
            _print(run_history(args.user, config_path=args.config, limit=args.limit))
        elif args.cmd == "presets":
            _print([preset.to_record() for preset in list_presets()])
        elif args.cmd == "health":
            _print(run_health(config_path=args.config))
    except ValidationError as exc:
        _print({"error": "validation", "missing": exc.missing})
        return EXIT_VALIDATION
    except PayloadError as exc:
        _print({"error": "validation", "detail": str(exc)})
        return EXIT_VALIDATION
    except QuotaExceeded as exc:
        _print(exc.to_record())
        return EXIT_QUOTA
    except StoreUnavailable as exc:
        logger.error(f"Counter store unavailable: {exc}")
        _print({"error": "store_unavailable", "attempts": exc.attempts})
        return EXIT_STORE
    return 0


if __name__ == "__main__":
    sys.exit(main())

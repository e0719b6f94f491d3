from __future__ import annotations

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import patch

from ecoforecast.core.errors import QuotaExceeded, StoreError
from ecoforecast.core.sqlite_storage import SQLiteCounterStore
from ecoforecast.jobs.cli import main
from ecoforecast.jobs.forecast import run_forecast_job
from ecoforecast.jobs.usage import run_health, run_history, run_usage

OFFLINE_ENV = {"OPENROUTER_API_KEY": "", "ECOFORECAST_MOCK": "0", "PLAN_DEFAULT": ""}

PAYLOAD = {"event": "10% steel tariff", "geo": "Phoenix, AZ", "naics": "3313", "horizon": "short"}


def _write_config(tmp_path: Path, business_cap: int = 10) -> Path:
    cfg = tmp_path / "ecoforecast.toml"
    db_path = tmp_path / "ecoforecast.sqlite3"
    report_dir = tmp_path / "reports"
    cfg.write_text(
        f"""
[quota]
db_path = "{db_path.as_posix()}"
[report]
write_markdown = true
report_dir = "{report_dir.as_posix()}"
[plans.business]
cap = {business_cap}
""",
        encoding="utf-8",
    )
    return cfg


class IntegrationJobTests(unittest.TestCase):
    def test_forecast_usage_history(self) -> None:
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, OFFLINE_ENV):
            cfg = str(_write_config(Path(tmp)))

            record = run_forecast_job(PAYLOAD, config_path=cfg, user_id="u1")
            self.assertEqual(record["meta"]["source"], "demo")
            self.assertEqual(record["meta"]["horizon_months"], 3)
            self.assertEqual(record["usage"], {"count": 1, "cap": 10, "remaining": 9})

            report = Path(record["report_path"])
            self.assertTrue(report.exists())
            text = report.read_text(encoding="utf-8")
            self.assertIn("# Economic Impact Forecast", text)
            self.assertIn("Trade barriers raising input costs", text)

            usage = run_usage("u1", config_path=cfg)
            self.assertEqual((usage["count"], usage["cap"]), (1, 10))

            run_forecast_job(dict(PAYLOAD, event="hurricane landfall"), config_path=cfg, user_id="u1")
            history = run_history("u1", config_path=cfg)
            self.assertEqual(history["count"], 2)
            self.assertEqual(history["forecasts"][0]["request"]["event"], "hurricane landfall")
            self.assertEqual(history["forecasts"][1]["result"]["meta"]["source"], "demo")
            self.assertEqual(run_history("someone-else", config_path=cfg)["count"], 0)

    def test_anonymous_forecast_is_not_metered(self) -> None:
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, OFFLINE_ENV):
            cfg = str(_write_config(Path(tmp)))
            record = run_forecast_job(PAYLOAD, config_path=cfg)
            self.assertNotIn("usage", record)

    def test_quota_exhaustion(self) -> None:
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, OFFLINE_ENV):
            cfg = str(_write_config(Path(tmp), business_cap=2))
            run_forecast_job(PAYLOAD, config_path=cfg, user_id="u1")
            run_forecast_job(PAYLOAD, config_path=cfg, user_id="u1")
            with self.assertRaises(QuotaExceeded) as ctx:
                run_forecast_job(PAYLOAD, config_path=cfg, user_id="u1")
            self.assertEqual((ctx.exception.count, ctx.exception.cap), (2, 2))
            self.assertEqual(run_history("u1", config_path=cfg)["count"], 2)

    def test_history_write_failure_still_returns_forecast(self) -> None:
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, OFFLINE_ENV):
            cfg = str(_write_config(Path(tmp)))
            with patch.object(SQLiteCounterStore, "insert_forecast", side_effect=StoreError("database is locked")):
                record = run_forecast_job(PAYLOAD, config_path=cfg, user_id="u1")
            self.assertEqual(record["meta"]["source"], "demo")
            self.assertFalse(record["history_saved"])
            self.assertEqual(record["usage"]["count"], 1)
            self.assertEqual(run_history("u1", config_path=cfg)["count"], 0)

    def test_health_hides_key(self) -> None:
        with patch.dict(os.environ, dict(OFFLINE_ENV, OPENROUTER_API_KEY="sk-secret")):
            health = run_health(config_path="does-not-exist.toml")
        self.assertTrue(health["has_api_key"])
        self.assertEqual(health["service"], "EcoForecast AI")
        self.assertNotIn("sk-secret", json.dumps(health))


class CliTests(unittest.TestCase):
    def _main(self, argv: list[str]) -> tuple[int, str]:
        out = io.StringIO()
        with redirect_stdout(out):
            code = main(argv)
        return code, out.getvalue()

    def test_presets(self) -> None:
        code, out = self._main(["presets"])
        self.assertEqual(code, 0)
        self.assertEqual(len(json.loads(out)), 5)

    def test_forecast_with_preset(self) -> None:
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, OFFLINE_ENV):
            cfg = str(_write_config(Path(tmp)))
            code, out = self._main(
                ["forecast", "--config", cfg, "--preset", "tariff_steel", "--geo", "Phoenix, AZ", "--naics", "3313"]
            )
        self.assertEqual(code, 0)
        record = json.loads(out)
        self.assertIn("Trade barriers raising input costs", [d["text"] for d in record["drivers"]])

    def test_validation_exit_code(self) -> None:
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, OFFLINE_ENV):
            cfg = str(_write_config(Path(tmp)))
            code, out = self._main(["forecast", "--config", cfg, "--geo", "Phoenix, AZ"])
        self.assertEqual(code, 2)
        self.assertEqual(json.loads(out)["missing"], ["event", "naics"])

    def test_quota_exit_code(self) -> None:
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, OFFLINE_ENV):
            cfg = str(_write_config(Path(tmp), business_cap=1))
            argv = ["forecast", "--config", cfg, "--user", "u1", "--payload", json.dumps(PAYLOAD)]
            self.assertEqual(self._main(argv)[0], 0)
            code, out = self._main(argv)
        self.assertEqual(code, 3)
        self.assertEqual(json.loads(out)["status"], 402)

    def test_malformed_payload_exit_code(self) -> None:
        with tempfile.TemporaryDirectory() as tmp, patch.dict(os.environ, OFFLINE_ENV):
            cfg = str(_write_config(Path(tmp)))
            code, out = self._main(["forecast", "--config", cfg, "--payload", "{not json"])
            self.assertEqual(code, 2)
            self.assertEqual(json.loads(out)["error"], "validation")
            code, out = self._main(["forecast", "--config", cfg, "--payload", "[1, 2]"])
        self.assertEqual(code, 2)
        self.assertIn("JSON object", json.loads(out)["detail"])

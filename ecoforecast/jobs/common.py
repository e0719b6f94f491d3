from __future__ import annotations

from ecoforecast.core.config import EcoForecastConfig, load_config
from ecoforecast.core.quota import QuotaLedger
from ecoforecast.core.sqlite_storage import SQLiteCounterStore


def bootstrap(config_path: str) -> tuple[EcoForecastConfig, SQLiteCounterStore]:
    config = load_config(config_path)
    storage = SQLiteCounterStore(config.quota.db_path)
    storage.init()
    return config, storage


def build_ledger(config: EcoForecastConfig, storage: SQLiteCounterStore) -> QuotaLedger:
    return QuotaLedger(
        storage,
        default_cap=config.quota.default_cap,
        max_attempts=config.quota.max_attempts,
    )

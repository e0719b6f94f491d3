from __future__ import annotations

import json
import sqlite3
import threading
from typing import Any

from ecoforecast.core.errors import StoreError
from ecoforecast.core.schemas import ForecastRequest, ForecastResult, UsageCounter
from ecoforecast.core.storage import CounterStore
from ecoforecast.core.utils import to_iso, utc_now


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS usage_counters (
    user_id TEXT NOT NULL,
    period_key TEXT NOT NULL,
    count INTEGER NOT NULL CHECK (count >= 0),
    cap INTEGER NOT NULL CHECK (cap > 0),
    updated_at TEXT NOT NULL,
    PRIMARY KEY (user_id, period_key)
);

CREATE TABLE IF NOT EXISTS forecasts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    source TEXT NOT NULL,
    request_json TEXT NOT NULL,
    result_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_forecasts_user ON forecasts(user_id, id);
"""


class SQLiteCounterStore(CounterStore):
    def __init__(self, db_path: str, timeout_seconds: float = 5.0) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self.conn = sqlite3.connect(self.db_path, timeout=timeout_seconds, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    def init(self) -> None:
        with self._lock:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    def _json(self, value: Any) -> str:
        return json.dumps(value, ensure_ascii=False, sort_keys=True)

    def read_counter(self, user_id: str, period_key: str) -> UsageCounter | None:
        try:
            with self._lock:
                row = self.conn.execute(
                    "SELECT * FROM usage_counters WHERE user_id = ? AND period_key = ?",
                    (user_id, period_key),
                ).fetchone()
        except sqlite3.OperationalError as exc:
            raise StoreError(str(exc)) from exc
        if row is None:
            return None
        return UsageCounter(
            user_id=row["user_id"],
            period_key=row["period_key"],
            count=int(row["count"]),
            cap=int(row["cap"]),
        )

    def compare_and_set(
        self,
        user_id: str,
        period_key: str,
        expected_count: int | None,
        counter: UsageCounter,
    ) -> bool:
        now_iso = to_iso(utc_now())
        try:
            with self._lock, self.conn:
                if expected_count is None:
                    cursor = self.conn.execute(
                        """
                        INSERT OR IGNORE INTO usage_counters (user_id, period_key, count, cap, updated_at)
                        VALUES (?, ?, ?, ?, ?)
                        """,
                        (user_id, period_key, counter.count, counter.cap, now_iso),
                    )
                else:
                    cursor = self.conn.execute(
                        """
                        UPDATE usage_counters
                        SET count = ?, cap = ?, updated_at = ?
                        WHERE user_id = ? AND period_key = ? AND count = ?
                        """,
                        (counter.count, counter.cap, now_iso, user_id, period_key, expected_count),
                    )
                return cursor.rowcount == 1
        except sqlite3.OperationalError as exc:
            raise StoreError(str(exc)) from exc

    def insert_forecast(self, user_id: str, request: ForecastRequest, result: ForecastResult) -> int:
        try:
            with self._lock, self.conn:
                cursor = self.conn.execute(
                    """
                    INSERT INTO forecasts (user_id, created_at, source, request_json, result_json)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        to_iso(utc_now()),
                        result.meta.source,
                        self._json(request.to_record()),
                        self._json(result.to_record()),
                    ),
                )
        except sqlite3.OperationalError as exc:
            raise StoreError(str(exc)) from exc
        return int(cursor.lastrowid)

    def list_recent_forecasts(self, user_id: str, limit: int = 25) -> list[dict[str, Any]]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM forecasts WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, int(limit)),
            ).fetchall()
        return [
            {
                "id": row["id"],
                "created_at": row["created_at"],
                "source": row["source"],
                "request": json.loads(row["request_json"]),
                "result": json.loads(row["result_json"]),
            }
            for row in rows
        ]

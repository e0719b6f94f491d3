from __future__ import annotations

import tempfile
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from ecoforecast.core.errors import QuotaExceeded, StoreError, StoreUnavailable
from ecoforecast.core.memory_storage import InMemoryCounterStore
from ecoforecast.core.quota import QuotaLedger, current_period_key
from ecoforecast.core.schemas import ForecastRequest, UsageCounter
from ecoforecast.core.sqlite_storage import SQLiteCounterStore
from ecoforecast.core.storage import CounterStore
from ecoforecast.core.synthesizer import synthesize

PERIOD = "2026-10"


class _FlakyStore(CounterStore):
    """Raises StoreError on the first ``failures`` reads."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.inner = InMemoryCounterStore()

    def read_counter(self, user_id: str, period_key: str) -> UsageCounter | None:
        if self.failures > 0:
            self.failures -= 1
            raise StoreError("database is locked")
        return self.inner.read_counter(user_id, period_key)

    def compare_and_set(self, user_id, period_key, expected_count, counter) -> bool:
        return self.inner.compare_and_set(user_id, period_key, expected_count, counter)


def _hammer(ledger: QuotaLedger, workers: int = 50) -> tuple[list[int], list[Exception]]:
    def one(_: int):
        try:
            return ledger.increment("u1", period_key=PERIOD, cap=10)
        except QuotaExceeded as exc:
            return exc

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(one, range(workers)))
    admitted = sorted(o.count for o in outcomes if not isinstance(o, Exception))
    rejected = [o for o in outcomes if isinstance(o, QuotaExceeded)]
    return admitted, rejected


class QuotaLedgerTests(unittest.TestCase):
    def test_concurrent_increments_respect_cap(self) -> None:
        ledger = QuotaLedger(InMemoryCounterStore(), backoff_seconds=0)
        admitted, rejected = _hammer(ledger)
        self.assertEqual(admitted, list(range(1, 11)))
        self.assertEqual(len(rejected), 40)
        self.assertEqual(ledger.read("u1", PERIOD).count, 10)

    def test_sqlite_concurrent_increments_respect_cap(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = SQLiteCounterStore(str(Path(tmp) / "quota.sqlite3"))
            store.init()
            try:
                ledger = QuotaLedger(store, backoff_seconds=0)
                admitted, rejected = _hammer(ledger)
                self.assertEqual(admitted, list(range(1, 11)))
                self.assertEqual(len(rejected), 40)
                self.assertEqual(store.read_counter("u1", PERIOD).count, 10)
            finally:
                store.close()

    def test_exceeded_payload(self) -> None:
        ledger = QuotaLedger(InMemoryCounterStore(), backoff_seconds=0)
        ledger.increment("u1", PERIOD, cap=1)
        with self.assertRaises(QuotaExceeded) as ctx:
            ledger.increment("u1", PERIOD, cap=1)
        self.assertEqual(
            ctx.exception.to_record(),
            {"error": "Monthly forecast quota exceeded", "count": 1, "cap": 1, "status": 402},
        )

    def test_read_absent_counter(self) -> None:
        ledger = QuotaLedger(InMemoryCounterStore(), default_cap=7)
        status = ledger.read("nobody", PERIOD)
        self.assertEqual((status.count, status.cap, status.remaining), (0, 7, 7))

    def test_cap_fixed_when_counter_created(self) -> None:
        ledger = QuotaLedger(InMemoryCounterStore(), backoff_seconds=0)
        self.assertEqual(ledger.increment("u1", PERIOD, cap=999999).cap, 999999)
        self.assertEqual(ledger.increment("u1", PERIOD, cap=5).cap, 999999)

    def test_default_cap_when_none_given(self) -> None:
        ledger = QuotaLedger(InMemoryCounterStore(), default_cap=3, backoff_seconds=0)
        self.assertEqual(ledger.increment("u1", PERIOD).cap, 3)

    def test_periods_are_independent(self) -> None:
        ledger = QuotaLedger(InMemoryCounterStore(), backoff_seconds=0)
        ledger.increment("u1", "2026-09", cap=1)
        self.assertEqual(ledger.increment("u1", "2026-10", cap=1).count, 1)

    def test_transient_store_errors_are_retried(self) -> None:
        ledger = QuotaLedger(_FlakyStore(failures=2), max_attempts=5, backoff_seconds=0)
        self.assertEqual(ledger.increment("u1", PERIOD).count, 1)

    def test_store_unavailable_after_budget(self) -> None:
        ledger = QuotaLedger(_FlakyStore(failures=100), max_attempts=3, backoff_seconds=0)
        with self.assertRaises(StoreUnavailable) as ctx:
            ledger.increment("u1", PERIOD)
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertIsInstance(ctx.exception.last_error, StoreError)

    def test_rejects_non_positive_default_cap(self) -> None:
        with self.assertRaises(ValueError):
            QuotaLedger(InMemoryCounterStore(), default_cap=0)


def test_period_key_uses_utc() -> None:
    local = datetime(2026, 3, 31, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    assert current_period_key(local) == "2026-04"
    assert current_period_key(datetime(2026, 12, 1, tzinfo=timezone.utc)) == "2026-12"


def test_sqlite_compare_and_set_semantics() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        store = SQLiteCounterStore(str(Path(tmp) / "cas.sqlite3"))
        store.init()
        try:
            first = UsageCounter("u1", PERIOD, 1, 10)
            assert store.compare_and_set("u1", PERIOD, None, first) is True
            assert store.compare_and_set("u1", PERIOD, None, first) is False
            assert store.compare_and_set("u1", PERIOD, 0, UsageCounter("u1", PERIOD, 2, 10)) is False
            assert store.compare_and_set("u1", PERIOD, 1, UsageCounter("u1", PERIOD, 2, 10)) is True
            assert store.read_counter("u1", PERIOD).count == 2
            assert store.read_counter("u2", PERIOD) is None
        finally:
            store.close()


def test_sqlite_history_write_failure_maps_to_store_error() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        store = SQLiteCounterStore(str(Path(tmp) / "history.sqlite3"))
        store.init()
        try:
            store.conn.execute("DROP TABLE forecasts")
            request = ForecastRequest(event="flood", geo="Miami, FL", naics="722")
            with pytest.raises(StoreError):
                store.insert_forecast("u1", request, synthesize(request))
        finally:
            store.close()

from __future__ import annotations

import threading

from ecoforecast.core.schemas import UsageCounter
from ecoforecast.core.storage import CounterStore


class InMemoryCounterStore(CounterStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[tuple[str, str], UsageCounter] = {}

    def read_counter(self, user_id: str, period_key: str) -> UsageCounter | None:
        with self._lock:
            current = self._counters.get((user_id, period_key))
            if current is None:
                return None
            return UsageCounter(**current.to_record())

    def compare_and_set(
        self,
        user_id: str,
        period_key: str,
        expected_count: int | None,
        counter: UsageCounter,
    ) -> bool:
        key = (user_id, period_key)
        with self._lock:
            current = self._counters.get(key)
            current_count = current.count if current is not None else None
            if current_count != expected_count:
                return False
            self._counters[key] = UsageCounter(**counter.to_record())
            return True

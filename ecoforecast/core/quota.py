from __future__ import annotations

import logging
import time
from datetime import datetime

from ecoforecast.core.errors import QuotaExceeded, StoreError, StoreUnavailable
from ecoforecast.core.schemas import QuotaStatus, UsageCounter
from ecoforecast.core.storage import CounterStore
from ecoforecast.core.utils import period_key as make_period_key

logger = logging.getLogger(__name__)

DEFAULT_CAP = 10


def current_period_key(now: datetime | None = None) -> str:
    return make_period_key(now)


class QuotaLedger:
    """Per-user, per-month usage counter with a hard cap.

    ``increment`` is an optimistic read-modify-write: read the counter, check
    the cap, then ``compare_and_set``. A lost race re-reads and tries again,
    so concurrent increments never lose updates or admit past the cap.
    """

    def __init__(
        self,
        store: CounterStore,
        default_cap: int = DEFAULT_CAP,
        max_attempts: int = 25,
        backoff_seconds: float = 0.005,
    ) -> None:
        if default_cap <= 0:
            raise ValueError("default_cap must be positive")
        self.store = store
        self.default_cap = default_cap
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    def increment(
        self,
        user_id: str,
        period_key: str | None = None,
        cap: int | None = None,
    ) -> QuotaStatus:
        period = period_key or current_period_key()
        new_cap = cap if cap and cap > 0 else self.default_cap
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                current = self.store.read_counter(user_id, period)
                expected = current.count if current is not None else None
                count = current.count if current is not None else 0
                effective_cap = current.cap if current is not None else new_cap
                if count + 1 > effective_cap:
                    raise QuotaExceeded(count=count, cap=effective_cap)
                updated = UsageCounter(user_id=user_id, period_key=period, count=count + 1, cap=effective_cap)
                if self.store.compare_and_set(user_id, period, expected, updated):
                    return QuotaStatus(count=updated.count, cap=updated.cap)
                logger.debug(f"Quota increment race for {user_id}/{period}, attempt {attempt}")
            except StoreError as exc:
                last_error = exc
                logger.warning(f"Counter store error for {user_id}/{period} (attempt {attempt}): {exc}")
            if self.backoff_seconds > 0:
                time.sleep(self.backoff_seconds * attempt)
        logger.error(f"Quota increment for {user_id}/{period} gave up after {self.max_attempts} attempts")
        raise StoreUnavailable(self.max_attempts, last_error)

    def read(self, user_id: str, period_key: str | None = None) -> QuotaStatus:
        period = period_key or current_period_key()
        try:
            current = self.store.read_counter(user_id, period)
        except StoreError as exc:
            raise StoreUnavailable(1, exc) from exc
        if current is None:
            return QuotaStatus(count=0, cap=self.default_cap)
        return QuotaStatus(count=current.count, cap=current.cap)

from __future__ import annotations

from abc import ABC, abstractmethod

from ecoforecast.core.schemas import UsageCounter


class CounterStore(ABC):
    """Backing store for usage counters keyed by (user_id, period_key).

    Writes happen only through ``compare_and_set``: the write lands when the
    stored count still equals ``expected_count`` (``None`` meaning "no counter
    stored yet") and the method reports whether it did. Transient backend
    failures raise ``StoreError``.
    """

    @abstractmethod
    def read_counter(self, user_id: str, period_key: str) -> UsageCounter | None:
        raise NotImplementedError

    @abstractmethod
    def compare_and_set(
        self,
        user_id: str,
        period_key: str,
        expected_count: int | None,
        counter: UsageCounter,
    ) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        return None

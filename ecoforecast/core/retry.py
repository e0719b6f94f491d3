from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, TypeVar

from ecoforecast.core.errors import ModelError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class AttemptOutcome(Generic[T]):
    value: T | None
    attempts: int
    reasons: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None

    @property
    def last_reason(self) -> str | None:
        return self.reasons[-1] if self.reasons else None


@dataclass
class RetryPolicy:
    """Bounded retry with a pass/fail predicate.

    ``check`` returns ``None`` for an accepted value, or a short reason string
    for a rejected one. ``ModelError`` raised by the operation counts as a
    failed attempt; any other exception propagates.
    """

    max_attempts: int = 2

    async def run(
        self,
        operation: Callable[[], Awaitable[T | None]],
        check: Callable[[T], str | None],
        label: str = "operation",
    ) -> AttemptOutcome[T]:
        reasons: list[str] = []
        for attempt in range(1, self.max_attempts + 1):
            try:
                value = await operation()
            except ModelError as exc:
                reason = error_reason(exc)
                logger.warning(f"{label} attempt {attempt}/{self.max_attempts} failed: {exc}")
                reasons.append(reason)
                continue
            if value is None:
                logger.warning(f"{label} attempt {attempt}/{self.max_attempts} returned no usable JSON")
                reasons.append("bad_json")
                continue
            rejection = check(value)
            if rejection is None:
                return AttemptOutcome(value=value, attempts=attempt, reasons=reasons)
            logger.warning(f"{label} attempt {attempt}/{self.max_attempts} rejected: {rejection}")
            reasons.append(rejection)
        return AttemptOutcome(value=None, attempts=self.max_attempts, reasons=reasons)


def error_reason(exc: ModelError) -> str:
    status = getattr(exc, "status", None)
    if status is not None:
        return f"http_{status}"
    return exc.reason

from __future__ import annotations

from typing import Any, Iterable


class EcoForecastError(Exception):
    """Base exception for the forecast pipeline."""


class ValidationError(EcoForecastError):
    """Raised when a forecast request is missing required fields."""

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Missing required fields: {', '.join(self.missing)}")


class ModelError(EcoForecastError):
    """Base for failures talking to the text-generation model."""

    reason = "model_error"


class ModelHttpError(ModelError):
    reason = "http"

    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(f"Model endpoint returned status={status}: {body[:300]}")


class ModelTimeout(ModelError):
    reason = "timeout"

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Model call exceeded {timeout_seconds:.1f}s")


class ModelParseError(ModelError):
    reason = "bad_json"


class QuotaExceeded(EcoForecastError):
    """Raised when an increment would push a usage counter past its cap."""

    status_code = 402

    def __init__(self, count: int, cap: int) -> None:
        self.count = count
        self.cap = cap
        super().__init__(f"Monthly forecast quota exceeded ({count}/{cap})")

    def to_record(self) -> dict[str, Any]:
        return {
            "error": "Monthly forecast quota exceeded",
            "count": self.count,
            "cap": self.cap,
            "status": self.status_code,
        }


class StoreError(EcoForecastError):
    """Transient failure of the counter store; the ledger retries these."""


class StoreUnavailable(EcoForecastError):
    """Raised when the ledger cannot complete a transaction within its retry budget."""

    def __init__(self, attempts: int, last_error: Exception | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Counter store unavailable after {attempts} attempts{detail}")

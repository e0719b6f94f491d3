from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from ecoforecast.agent.prompts import (
    SYSTEM_PROMPT,
    build_context,
    build_stage1_prompt,
    build_stage2_prompt,
)
from ecoforecast.agent.utils import OpenRouterClient
from ecoforecast.core.config import EcoForecastConfig, PlanConfig
from ecoforecast.core.errors import ModelError
from ecoforecast.core.quota import QuotaLedger
from ecoforecast.core.retry import RetryPolicy, error_reason
from ecoforecast.core.schemas import (
    MAX_DRIVERS,
    MIN_DRIVERS,
    Driver,
    ForecastNumbers,
    ForecastRequest,
    ForecastResult,
    Narrative,
    QuotaStatus,
)
from ecoforecast.core.synthesizer import build_meta, mock_result, synthesize, synthesize_narrative
from ecoforecast.core.utils import word_count

logger = logging.getLogger(__name__)


class ModelClient(Protocol):
    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float = 0.2,
    ) -> dict[str, Any] | None:
        ...


class ForecastState(str, Enum):
    QUOTA_CHECK = "QUOTA_CHECK"
    STAGE1 = "STAGE1"
    STAGE2 = "STAGE2"
    MERGE = "MERGE"
    FALLBACK = "FALLBACK"
    DONE = "DONE"


@dataclass
class StageOneOutput:
    numbers: ForecastNumbers
    outline: dict[str, Any]


@dataclass
class ForecastRun:
    result: ForecastResult | None = None
    states: list[ForecastState] = field(default_factory=list)
    quota: QuotaStatus | None = None
    stage2_attempts: int = 0


def complete_drivers(drivers: list[Driver], request: ForecastRequest) -> list[Driver]:
    """Clamp model drivers to 3..6, padding from the deterministic drivers."""
    completed = list(drivers[:MAX_DRIVERS])
    if len(completed) >= MIN_DRIVERS:
        return completed
    seen = {driver.text for driver in completed}
    for candidate in synthesize(request).drivers:
        if len(completed) >= MIN_DRIVERS:
            break
        if candidate.text not in seen:
            completed.append(candidate)
            seen.add(candidate.text)
    while len(completed) < MIN_DRIVERS:
        completed.append(Driver(text="Demand sensitivity to local conditions remains uncertain", tone="warn"))
    return completed


class ForecastOrchestrator:
    def __init__(
        self,
        config: EcoForecastConfig,
        client: ModelClient | None = None,
        ledger: QuotaLedger | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.config = config
        if client is None and config.model.configured:
            client = OpenRouterClient(config.model)
        self.client = client
        self.ledger = ledger
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=2)
        self.clock = clock

    async def generate(self, request: ForecastRequest, user_id: str | None = None) -> ForecastResult:
        run = await self.execute(request, user_id=user_id)
        return run.result

    async def execute(self, request: ForecastRequest, user_id: str | None = None) -> ForecastRun:
        started = self.clock()
        plan = self.config.plans.for_plan(request.plan)
        run = ForecastRun(states=[ForecastState.QUOTA_CHECK])

        if self.ledger is not None and user_id:
            # QuotaExceeded / StoreUnavailable propagate: admission is never faked.
            run.quota = await asyncio.to_thread(self.ledger.increment, user_id, cap=plan.cap)
            logger.info(f"Quota admitted {user_id}: {run.quota.count}/{run.quota.cap}")

        if self.config.mock_mode:
            run.result = mock_result(request)
            return self._finish(run, started)

        if self.client is None:
            logger.info("No model configured; serving deterministic forecast")
            run.states.append(ForecastState.FALLBACK)
            run.result = synthesize(request)
            return self._finish(run, started)

        context = build_context(request)

        run.states.append(ForecastState.STAGE1)
        try:
            raw1 = await self.client.call(
                SYSTEM_PROMPT,
                build_stage1_prompt(context),
                plan.stage1_max_tokens,
                self.config.model.stage1_temperature,
            )
        except ModelError as exc:
            logger.warning(f"Stage 1 failed: {exc}")
            return self._fallback(run, request, started, f"stage1_{error_reason(exc)}")
        if raw1 is None:
            logger.warning("Stage 1 returned no usable JSON")
            return self._fallback(run, request, started, "stage1_bad_json")

        outline = raw1.get("outline") if isinstance(raw1.get("outline"), dict) else {}
        stage1 = StageOneOutput(numbers=ForecastNumbers.from_record(raw1), outline=outline)

        if not self.config.model.two_stage:
            run.states.append(ForecastState.MERGE)
            run.result = self._merge(request, stage1, Narrative.from_record({}, backfill=stage1.outline), "openrouter")
            return self._finish(run, started)

        run.states.append(ForecastState.STAGE2)
        outcome = await self.retry_policy.run(
            lambda: self._call_stage2(context, stage1.outline, plan),
            lambda payload: self._check_stage2(payload, plan),
            label="stage2",
        )
        run.stage2_attempts = outcome.attempts
        if not outcome.ok:
            return self._fallback(
                run, request, started, f"stage2_failed:{outcome.last_reason or 'unknown'}", stage1=stage1
            )

        run.states.append(ForecastState.MERGE)
        narrative = Narrative.from_record(outcome.value.get("narrative"), backfill=stage1.outline)
        run.result = self._merge(request, stage1, narrative, "openrouter_2stage")
        return self._finish(run, started)

    async def _call_stage2(self, context: str, outline: dict[str, Any], plan: PlanConfig) -> dict[str, Any] | None:
        return await self.client.call(
            SYSTEM_PROMPT,
            build_stage2_prompt(context, outline, plan.words),
            plan.max_tokens,
            self.config.model.stage2_temperature,
        )

    @staticmethod
    def _check_stage2(payload: dict[str, Any], plan: PlanConfig) -> str | None:
        narrative = payload.get("narrative")
        if not isinstance(narrative, dict):
            return "missing_narrative"
        full = narrative.get("full")
        if not isinstance(full, str):
            return "bad_full"
        words = word_count(full)
        if words < plan.min_words:
            return f"too_short_{words}<{plan.min_words}"
        return None

    def _merge(
        self,
        request: ForecastRequest,
        stage1: StageOneOutput,
        narrative: Narrative,
        source: str,
    ) -> ForecastResult:
        numbers = stage1.numbers
        return ForecastResult(
            demand_pct=numbers.demand_pct,
            cost_pct=numbers.cost_pct,
            margin_bps=numbers.margin_bps,
            drivers=complete_drivers(numbers.drivers, request),
            confidence=numbers.confidence,
            narrative=narrative,
            meta=build_meta(request, source),
        )

    def _fallback(
        self,
        run: ForecastRun,
        request: ForecastRequest,
        started: float,
        error: str,
        stage1: StageOneOutput | None = None,
    ) -> ForecastRun:
        run.states.append(ForecastState.FALLBACK)
        result = synthesize(request)
        if stage1 is not None:
            numbers = stage1.numbers
            result.demand_pct = numbers.demand_pct
            result.cost_pct = numbers.cost_pct
            result.margin_bps = numbers.margin_bps
            result.confidence = numbers.confidence
            result.drivers = complete_drivers(numbers.drivers, request)
            result.narrative = synthesize_narrative(request, result, stage1.outline)
            result.meta.source = "openrouter_fallback"
        else:
            result.meta.source = "fallback-demo"
        result.meta.error = error
        logger.warning(f"Serving {result.meta.source} forecast ({error})")
        run.result = result
        return self._finish(run, started)

    def _finish(self, run: ForecastRun, started: float) -> ForecastRun:
        run.result.meta.latency_ms = max(0, int((self.clock() - started) * 1000))
        run.states.append(ForecastState.DONE)
        return run


def run_forecast(
    request: ForecastRequest,
    config: EcoForecastConfig,
    user_id: str | None = None,
    ledger: QuotaLedger | None = None,
    client: ModelClient | None = None,
) -> ForecastRun:
    orchestrator = ForecastOrchestrator(config, client=client, ledger=ledger)
    return asyncio.run(orchestrator.execute(request, user_id=user_id))

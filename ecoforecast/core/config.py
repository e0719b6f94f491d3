from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
import tomllib

from ecoforecast.core.schemas import DEFAULT_PLAN, normalize_plan


MIN_TIMEOUT_SECONDS = 8.0
MAX_TIMEOUT_SECONDS = 25.0


@dataclass
class PlanConfig:
    words: int
    max_tokens: int
    cap: int

    @property
    def stage1_max_tokens(self) -> int:
        return max(700, int(self.max_tokens * 0.35))

    @property
    def min_words(self) -> int:
        return int(self.words * 0.8)


def _default_plans() -> dict[str, PlanConfig]:
    return {
        "business": PlanConfig(words=700, max_tokens=1600, cap=10),
        "pro": PlanConfig(words=1600, max_tokens=3000, cap=999999),
        "enterprise": PlanConfig(words=2300, max_tokens=4000, cap=999999),
    }


@dataclass
class PlanTable:
    plans: dict[str, PlanConfig] = field(default_factory=_default_plans)

    def for_plan(self, plan: str | None) -> PlanConfig:
        key = str(plan or "").strip().lower()
        if key in self.plans:
            return self.plans[key]
        return self.plans[DEFAULT_PLAN]


@dataclass
class ModelConfig:
    base_url: str = "https://openrouter.ai/api/v1/chat/completions"
    model: str = "openai/gpt-4o"
    api_key: str | None = None
    timeout_seconds: float = 20.0
    stage1_temperature: float = 0.2
    stage2_temperature: float = 0.25
    two_stage: bool = True
    site_url: str = "https://eco-forecast-ai.vercel.app"
    site_name: str = "EcoForecast AI"

    def __post_init__(self) -> None:
        self.timeout_seconds = min(
            MAX_TIMEOUT_SECONDS, max(MIN_TIMEOUT_SECONDS, float(self.timeout_seconds))
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class QuotaConfig:
    db_path: str = "ecoforecast.sqlite3"
    default_cap: int = 10
    max_attempts: int = 25


@dataclass
class ReportConfig:
    write_markdown: bool = False
    report_dir: str = "reports"


@dataclass
class EcoForecastConfig:
    model: ModelConfig = field(default_factory=ModelConfig)
    plans: PlanTable = field(default_factory=PlanTable)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    mock_mode: bool = False
    default_plan: str = DEFAULT_PLAN


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        return {}
    return value


def _truthy(value: str | None) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def _load_plans(raw: dict[str, Any]) -> PlanTable:
    plans = _default_plans()
    for name, values in _section(raw, "plans").items():
        if not isinstance(values, dict):
            continue
        base = plans.get(name, plans[DEFAULT_PLAN])
        plans[name] = PlanConfig(
            words=int(values.get("words", base.words)),
            max_tokens=int(values.get("max_tokens", base.max_tokens)),
            cap=int(values.get("cap", base.cap)),
        )
    return PlanTable(plans=plans)


def apply_env_overrides(config: EcoForecastConfig, env: Mapping[str, str]) -> EcoForecastConfig:
    if env.get("OPENROUTER_API_KEY"):
        config.model.api_key = env["OPENROUTER_API_KEY"]
    if env.get("OPENROUTER_MODEL"):
        config.model.model = env["OPENROUTER_MODEL"]
    if env.get("OPENROUTER_BASE_URL"):
        config.model.base_url = env["OPENROUTER_BASE_URL"]
    for plan in ("business", "pro", "enterprise"):
        override = env.get(f"REPORT_WORDS_{plan.upper()}")
        if override and override.strip().isdigit():
            config.plans.for_plan(plan).words = int(override)
    if env.get("PLAN_DEFAULT"):
        config.default_plan = normalize_plan(env["PLAN_DEFAULT"])
    if "ECOFORECAST_MOCK" in env:
        config.mock_mode = _truthy(env["ECOFORECAST_MOCK"])
    return config


def load_config(
    path: str = "ecoforecast.toml",
    env: Mapping[str, str] | None = None,
) -> EcoForecastConfig:
    env = os.environ if env is None else env
    cfg_path = Path(path)
    if not cfg_path.exists():
        return apply_env_overrides(EcoForecastConfig(), env)

    with cfg_path.open("rb") as f:
        raw = tomllib.load(f)

    config = EcoForecastConfig(
        model=ModelConfig(**_section(raw, "model")),
        plans=_load_plans(raw),
        quota=QuotaConfig(**_section(raw, "quota")),
        report=ReportConfig(**_section(raw, "report")),
        mock_mode=bool(raw.get("mock_mode", False)),
        default_plan=normalize_plan(raw.get("default_plan", DEFAULT_PLAN)),
    )
    return apply_env_overrides(config, env)

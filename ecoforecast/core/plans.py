from __future__ import annotations

from typing import Protocol

from ecoforecast.core.schemas import DEFAULT_PLAN, normalize_plan


class PlanResolver(Protocol):
    def resolve(self, user_id: str | None) -> str:
        ...


class StaticPlanResolver:
    """Resolves every user to one configured plan tier."""

    def __init__(self, plan: str = DEFAULT_PLAN) -> None:
        self.plan = normalize_plan(plan)

    def resolve(self, user_id: str | None) -> str:
        return self.plan

"""
Forecast prompts for the two-stage generation.

Stage 1 asks for numbers and a structured outline only; stage 2 expands the
outline into a long-form narrative sized by plan. Both stages demand a bare
JSON object so the response can be parsed without a schema-aware client.
"""
from __future__ import annotations

import json
from typing import Any

from ecoforecast.agent.utils import clean_indents
from ecoforecast.core.schemas import ForecastRequest

# =============================================================================
# SYSTEM PROMPT
# =============================================================================

SYSTEM_PROMPT = "You are EcoForecast AI. Output strictly valid JSON."

# =============================================================================
# CONTEXT BLOCK
# =============================================================================

CONTEXT_TEMPLATE = """
Event: {event}
Geo: {geo}
Industry/NAICS: {naics}
Horizon: {horizon} ({months} months)
Scenario: {scenario}
Extra factors: {extra_factors}
Audience: operator/executive; business decisions.
Plan: {plan} (long narrative expected).
"""


def build_context(request: ForecastRequest) -> str:
    return clean_indents(
        CONTEXT_TEMPLATE.format(
            event=request.event,
            geo=request.geo,
            naics=request.naics,
            horizon=request.horizon,
            months=request.horizon_months,
            scenario=request.scenario,
            extra_factors=request.extra_factors or "none",
            plan=request.plan,
        )
    )

# =============================================================================
# STAGE 1: NUMBERS + OUTLINE
# =============================================================================

STAGE1_PROMPT = """
Return ONLY a JSON object with this shape:

{{
  "demand_pct": number,       // e.g., -3.2 (percent)
  "cost_pct": number,         // e.g., 1.4  (percent)
  "margin_bps": integer,      // e.g., -120 (basis points)
  "drivers": [{{"text": string, "tone": "good"|"bad"|"warn"}}],
  "confidence": number,       // 0..1
  "outline": {{
    "assumptions": string[],
    "risks": string[],
    "local_signals": string[],
    "time_path": string[],
    "actions": string[],
    "data_anchors": string[]
  }}
}}

Give 3 to 6 drivers and at most 5 items per outline list.
No code fences. Valid JSON only.

Context:
{context}
"""


def build_stage1_prompt(context: str) -> str:
    return clean_indents(STAGE1_PROMPT.format(context=context))

# =============================================================================
# STAGE 2: LONG-FORM NARRATIVE
# =============================================================================

STAGE2_PROMPT = """
Using the *outline* below, write a detailed, decision-grade forecast narrative.

Requirements:
- Target length: ~{word_target} words (do not go under {min_words} words).
- Executive summary first (1-3 paragraphs).
- Then labeled sections: Assumptions, Risks, Local Signals, Time Path, Suggested Actions, Data Anchors.
- Localize to the city/region and NAICS where relevant.
- Keep numeric claims plausible; no sensationalism.
- Do not produce markdown code fences.

Return ONLY a JSON object:
{{
  "narrative": {{
    "summary": string,
    "full": string,
    "assumptions": string[],
    "risks": string[],
    "local_signals": string[],
    "time_path": string[],
    "actions": string[],
    "data_anchors": string[]
  }}
}}

Context:
{context}

Outline:
{outline}
"""


def build_stage2_prompt(context: str, outline: Any, word_target: int) -> str:
    safe_outline = json.dumps(outline if isinstance(outline, dict) else {}, indent=2, ensure_ascii=False)
    return clean_indents(
        STAGE2_PROMPT.format(
            context=context,
            outline=safe_outline,
            word_target=word_target,
            min_words=int(word_target * 0.8),
        )
    )

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ScenarioPreset:
    key: str
    label: str
    template: str

    def to_record(self) -> dict[str, str]:
        return {"key": self.key, "label": self.label, "template": self.template}


PRESETS: dict[str, ScenarioPreset] = {
    preset.key: preset
    for preset in (
        ScenarioPreset(
            key="war_escalation",
            label="War Escalation",
            template=(
                "A regional conflict escalates with partial blockade of a key shipping lane; "
                "insurance premia rise; export controls expand."
            ),
        ),
        ScenarioPreset(
            key="tariff_steel",
            label="10% Steel Tariff (US)",
            template=(
                "U.S. imposes a 10% tariff on steel imports effective in 60 days; exemptions "
                "uncertain; domestic mills signal capacity strain."
            ),
        ),
        ScenarioPreset(
            key="hurricane_landfall",
            label="Major Hurricane Landfall",
            template=(
                "Category-4 hurricane landfall near major Gulf port; refinery throughput reduced; "
                "logistics reroutes extend lead times by 2-4 weeks."
            ),
        ),
        ScenarioPreset(
            key="regime_change",
            label="Regime Change",
            template=(
                "Sudden regime change triggers capital controls and export permit reviews; "
                "FX volatility spikes; counterparties reassess risk."
            ),
        ),
        ScenarioPreset(
            key="party_shift_us",
            label="US Party Control Shift",
            template=(
                "One party gains unified control of White House and Congress; agenda prioritizes "
                "tax, energy, and labor policy changes within 12 months."
            ),
        ),
    )
}


def list_presets() -> list[ScenarioPreset]:
    return list(PRESETS.values())


def get_preset(key: str) -> ScenarioPreset:
    try:
        return PRESETS[key]
    except KeyError:
        raise KeyError(f"Unknown scenario preset: {key}") from None

"""Dispatch flag metadata, scoring issue messages and insight helpers."""

from __future__ import annotations

from typing import Dict, List

FLAG_DEFINITIONS: Dict[str, Dict[str, str]] = {
    "shortage_hours": {
        "label": "Shortage hours",
        "meaning": "Hours when generation plus battery discharge could not cover load.",
        "knobs": "Add firm biomass capacity, enlarge the battery or raise wind/solar capacity.",
        "insight": (
            "Persistent shortages usually mean the battery empties during multi-day low-resource"
            " spells; firm biomass output or longer storage duration closes the gap faster than"
            " more variable capacity."
        ),
    },
    "soc_floor_hits": {
        "label": "SOC floor hits",
        "meaning": "Battery reached its minimum state of charge.",
        "knobs": "Increase battery energy, lower the floor or add surplus generation to recharge.",
        "insight": (
            "Frequent floor hits indicate the battery is undersized for overnight or windless"
            " deficits; compare against shortage hours before adding storage."
        ),
    },
    "soc_ceiling_hits": {
        "label": "SOC ceiling hits",
        "meaning": "Battery was full and surplus generation was curtailed.",
        "knobs": "Reduce oversized wind/solar capacity or add storage to absorb midday peaks.",
        "insight": (
            "Ceiling hits mean surplus energy is being spilled; trimming variable capacity often"
            " lowers cost without hurting reliability."
        ),
    },
}

ISSUE_MESSAGES: Dict[str, str] = {
    "low_reliability": "Reliability {value:.2f}% is below {threshold:.1f}%.",
    "high_curtailment": "Curtailment rate {value:.1f}% exceeds {threshold:.0f}%.",
    "high_cost": "Cost is {value:.2f}x the best known configuration.",
    "cut_in_mismatch": "Turbine cut-in speed {cut_in:.1f} m/s exceeds the regional average wind {avg:.1f} m/s.",
    "inverter_ratio": "Inverter DC/AC ratio {value:.2f} is outside [{low:.2f}, {high:.2f}].",
    "battery_duration": "Battery duration {value:.1f} h is outside the {low:.0f}-{high:.0f} h band.",
    "biomass_route": "Biomass route '{route}' is a weak fit for the regional feedstock.",
    "biomass_chain": "No complete equipment chain for biomass route '{route}'.",
    "reserve_margin": "Reserve margin {value:.0f}% is outside the {low:.0f}-{high:.0f}% band.",
}


def format_issue(key: str, **values: object) -> str:
    """Render one scoring issue; unknown keys raise KeyError."""

    return ISSUE_MESSAGES[key].format(**values)


def build_flag_insights(flag_totals: Dict[str, int]) -> List[str]:
    """Turn the dispatch flag counters into readable hints, most frequent first."""

    counted = [(key, flag_totals.get(key, 0)) for key in FLAG_DEFINITIONS if flag_totals.get(key, 0) > 0]
    counted.sort(key=lambda item: item[1], reverse=True)
    insights = [
        f"{FLAG_DEFINITIONS[key]['label']} occurred {count:,} times. {FLAG_DEFINITIONS[key]['insight']}"
        for key, count in counted
    ]

    shortages = flag_totals.get("shortage_hours", 0)
    floor_hits = flag_totals.get("soc_floor_hits", 0)
    if shortages and floor_hits >= shortages:
        insights.append(
            "SOC floor hits match or outnumber shortage hours; stored energy rather than"
            " converter power limits supply."
        )
    if floor_hits and flag_totals.get("soc_ceiling_hits", 0):
        insights.append(
            "The battery swung between empty and full; a mix with more firm biomass output"
            " smooths cycling extremes."
        )

    return insights or ["No flags were triggered across the simulated year."]

"""Capacity bounds and step sizes for the exhaustive candidate search."""
from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Dict, List

from services.dispatch_simulation import CapacityCandidate
from utils.regions import Region, max_biomass_power_mw

WIND_SOLAR_MARGIN = 1.5
BIOMASS_MARGIN = 1.2
BATTERY_MIN_HOURS = 2.0
BATTERY_MAX_HOURS = 12.0
BATTERY_RECOMMENDED_HOURS = 6.0


@dataclass(frozen=True)
class CapacityRange:
    """Inclusive axis ``min..max`` walked in ``step`` increments."""

    min: float
    max: float
    step: float
    recommended: float

    def values(self) -> List[float]:
        if self.max < self.min:
            return []
        if self.step <= 0 or self.max == self.min:
            return [float(self.min)]
        count = int(math.floor((self.max - self.min) / self.step + 1e-9)) + 1
        return [round(self.min + idx * self.step, 6) for idx in range(count)]

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CapacityRange":
        return cls(
            min=float(payload["min"]),
            max=float(payload["max"]),
            step=float(payload["step"]),
            recommended=float(payload.get("recommended", payload["min"])),
        )


@dataclass(frozen=True)
class SearchRanges:
    wind: CapacityRange
    solar: CapacityRange
    biomass: CapacityRange
    battery: CapacityRange

    @property
    def candidate_count(self) -> int:
        return (
            len(self.wind.values())
            * len(self.solar.values())
            * len(self.biomass.values())
            * len(self.battery.values())
        )

    def recommended_candidate(self) -> CapacityCandidate:
        return CapacityCandidate(
            wind_mw=max(0.0, self.wind.recommended),
            solar_mw=max(0.0, self.solar.recommended),
            biomass_mw=max(0.0, self.biomass.recommended),
            battery_mwh=max(0.0, self.battery.recommended),
        )


def _wind_solar_step(axis_max: float) -> float:
    if axis_max < 10:
        return 1.0
    if axis_max < 30:
        return 2.0
    return 5.0


def _renewable_range(annual_load_mwh: float, equivalent_hours: float, recommended_share: float) -> CapacityRange:
    if equivalent_hours <= 0 or annual_load_mwh <= 0:
        return CapacityRange(0.0, 0.0, 1.0, 0.0)
    mw_for_full = annual_load_mwh / equivalent_hours
    axis_max = max(5.0, float(math.ceil(mw_for_full * WIND_SOLAR_MARGIN)))
    return CapacityRange(0.0, axis_max, _wind_solar_step(axis_max), float(round(mw_for_full * recommended_share)))


def estimate_search_ranges(region: Region, biomass_route: str = "direct") -> SearchRanges:
    """Derive per-technology bounds from annual load and the region's resource class.

    Wind and solar reach 1.5x the capacity that would cover annual load at
    the region's equivalent full-load hours; biomass reaches 1.2x the
    fuel-limited output; storage spans 2-12 hours of peak load.
    """

    wind = _renewable_range(region.annual_load_mwh, region.wind_hours, 0.6)
    solar = _renewable_range(region.annual_load_mwh, region.solar_hours, 0.5)

    fuel_limited = max_biomass_power_mw(region, biomass_route)
    if fuel_limited > 0:
        biomass_max = max(1.0, fuel_limited * BIOMASS_MARGIN)
        if biomass_max < 3:
            biomass_step = 0.5
        elif biomass_max < 10:
            biomass_step = 1.0
        else:
            biomass_step = 2.0
        biomass = CapacityRange(0.0, round(biomass_max, 1), biomass_step, round(biomass_max * 0.8, 1))
    else:
        biomass = CapacityRange(0.0, 0.0, 0.5, 0.0)

    peak = max(0.0, region.peak_load_mw)
    if peak < 10:
        battery_step = 2.0
    elif peak < 30:
        battery_step = 5.0
    else:
        battery_step = 20.0
    battery = CapacityRange(
        min=max(10.0, peak * BATTERY_MIN_HOURS),
        max=max(100.0, peak * BATTERY_MAX_HOURS),
        step=battery_step,
        recommended=float(round(peak * BATTERY_RECOMMENDED_HOURS)),
    )
    return SearchRanges(wind=wind, solar=solar, biomass=biomass, battery=battery)

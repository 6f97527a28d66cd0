"""Economic helpers for hybrid plant sizing.

Investment figures are in 10k CNY (万元) to match catalog prices; LCOE is
reported in CNY/kWh.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from utils.catalog import BatterySpec, EquipmentCatalog, SolarPanelSpec, WindTurbineSpec
from utils.regions import ROUTE_FUEL_DEMAND_PER_MW

HOURS_PER_YEAR = 8760.0
BIOMASS_RUN_HOURS = 7000.0


@dataclass
class EconomicInputs:
    """Annualization assumptions.

    ``crf`` is the capital recovery factor applied to the up-front
    investment; ``om_rate`` is annual O&M as a fraction of investment.
    """

    crf: float = 0.08
    om_rate: float = 0.02


@dataclass(frozen=True)
class UnitCostRates:
    """Continuous cost rates used to price a candidate before equipment selection.

    Units: 10k CNY per kW (wind, solar DC, inverter AC, PCS), per kWh
    (battery) and per MW of biomass electrical capacity.
    """

    wind_per_kw: float
    solar_per_kw: float
    inverter_per_kw: float
    battery_per_kwh: float
    pcs_per_kw: float
    biomass_per_mw: float


def _ensure_non_negative_finite(value: float, name: str) -> None:
    """Raise ValueError when a numeric value is negative or non-finite."""

    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")


def capital_recovery_factor(discount_rate: float, years: int) -> float:
    """Annuity factor r(1+r)^n / ((1+r)^n - 1); 1/n when the rate is zero."""

    _ensure_non_negative_finite(discount_rate, "discount_rate")
    if years <= 0:
        raise ValueError("years must be positive")
    if discount_rate == 0:
        return 1.0 / years
    growth = (1.0 + discount_rate) ** years
    return discount_rate * growth / (growth - 1.0)


def low_wind_derate(avg_wind_speed: float) -> float:
    if avg_wind_speed < 5.0:
        return 0.6
    if avg_wind_speed < 7.0:
        return 0.8
    return 1.0


def estimate_wind_annual_mwh(turbine: WindTurbineSpec, avg_wind_speed: float) -> float:
    """Annual yield of one turbine from its rated capacity factor and the site wind class."""

    return (
        turbine.rated_power_kw
        * HOURS_PER_YEAR
        * turbine.capacity_factor_pct
        / 100.0
        * low_wind_derate(avg_wind_speed)
        / 1000.0
    )


def equivalent_hours_mwh(capacity_mw: float, equivalent_hours: float) -> float:
    """Annual energy of wind or solar capacity from the site's equivalent full-load hours."""

    return max(0.0, capacity_mw) * max(0.0, equivalent_hours)


def estimate_biomass_annual_mwh(capacity_mw: float, run_hours: float = BIOMASS_RUN_HOURS) -> float:
    return max(0.0, capacity_mw) * max(0.0, run_hours)


def levelized_cost_of_energy(
    investment: float,
    annual_generation_mwh: float,
    inputs: EconomicInputs | None = None,
) -> float:
    """Return LCOE in CNY/kWh; zero generation yields 0.0 rather than inf."""

    inputs = inputs or EconomicInputs()
    _ensure_non_negative_finite(investment, "investment")
    _ensure_non_negative_finite(annual_generation_mwh, "annual_generation_mwh")
    _ensure_non_negative_finite(inputs.crf, "crf")
    _ensure_non_negative_finite(inputs.om_rate, "om_rate")
    if annual_generation_mwh <= 0:
        return 0.0
    annual_cost_cny = investment * 10000.0 * (inputs.crf + inputs.om_rate)
    return annual_cost_cny / (annual_generation_mwh * 1000.0)


def _largest(items: Sequence, attr: str):
    return max(items, key=lambda item: (getattr(item, attr), item.id)) if items else None


def _rate(price: float, capacity: float) -> float:
    return price / capacity if capacity > 0 else 0.0


def unit_cost_rates(
    catalog: EquipmentCatalog,
    turbine: WindTurbineSpec,
    panel: SolarPanelSpec,
    preferred_batteries: Sequence[BatterySpec],
    biomass_route: str = "direct",
) -> UnitCostRates:
    """Derive per-unit rates from the largest model of each catalog section.

    The greedy selector fills most of any target with the largest unit, so
    its rate is a close proxy for the realized line-item cost.
    """

    inverter = _largest(catalog.inverters, "rated_power_kw")
    battery = _largest(list(preferred_batteries), "energy_capacity_kwh")
    pcs = _largest(catalog.pcs_units, "rated_power_kw")

    demand = ROUTE_FUEL_DEMAND_PER_MW.get(biomass_route, 0.0)
    if biomass_route == "direct":
        primary = _largest(catalog.boilers, "steam_capacity_tph")
        mover = _largest(catalog.steam_turbines, "rated_power_mw")
        primary_rate = _rate(primary.price, primary.steam_capacity_tph) if primary else 0.0
        mover_rate = _rate(mover.price, mover.rated_power_mw) if mover else 0.0
    elif biomass_route == "gasification":
        primary = _largest(catalog.gasifiers, "gas_output_nm3_per_h")
        mover = _largest([e for e in catalog.gas_engines if e.fuel_type == "syngas"], "rated_power_kw")
        primary_rate = _rate(primary.price, primary.gas_output_nm3_per_h) if primary else 0.0
        mover_rate = _rate(mover.price, mover.rated_power_kw) * 1000.0 if mover else 0.0
    else:
        primary = _largest(catalog.digesters, "daily_gas_output_nm3")
        mover = _largest([e for e in catalog.gas_engines if e.fuel_type == "biogas"], "rated_power_kw")
        primary_rate = _rate(primary.price, primary.daily_gas_output_nm3) if primary else 0.0
        mover_rate = _rate(mover.price, mover.rated_power_kw) * 1000.0 if mover else 0.0

    return UnitCostRates(
        wind_per_kw=turbine.price_per_kw,
        solar_per_kw=panel.price_per_watt * 1000.0 / 10000.0,
        inverter_per_kw=_rate(inverter.price, inverter.rated_power_kw) if inverter else 0.0,
        battery_per_kwh=battery.price_per_kwh if battery else 0.0,
        pcs_per_kw=_rate(pcs.price, pcs.rated_power_kw) if pcs else 0.0,
        biomass_per_mw=primary_rate * demand + mover_rate,
    )


def estimate_candidate_cost(
    wind_mw: float,
    solar_mw: float,
    biomass_mw: float,
    battery_mwh: float,
    rates: UnitCostRates,
    inverter_load_ratio: float = 1.1,
    pcs_discharge_hours: float = 3.0,
) -> float:
    """Approximate investment (10k CNY) of a continuous capacity tuple."""

    for name, value in (
        ("wind_mw", wind_mw),
        ("solar_mw", solar_mw),
        ("biomass_mw", biomass_mw),
        ("battery_mwh", battery_mwh),
    ):
        _ensure_non_negative_finite(value, name)
    if inverter_load_ratio <= 0 or pcs_discharge_hours <= 0:
        raise ValueError("inverter_load_ratio and pcs_discharge_hours must be positive")

    return (
        wind_mw * 1000.0 * rates.wind_per_kw
        + solar_mw * 1000.0 * rates.solar_per_kw
        + solar_mw * 1000.0 / inverter_load_ratio * rates.inverter_per_kw
        + battery_mwh * 1000.0 * rates.battery_per_kwh
        + battery_mwh * 1000.0 / pcs_discharge_hours * rates.pcs_per_kw
        + biomass_mw * rates.biomass_per_mw
    )

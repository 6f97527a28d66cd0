"""Per-unit output models for wind, solar and biomass capacity.

All curve functions accept scalars or numpy arrays and return numpy arrays so
the dispatch loop can precompute a full year of generation in one pass.
"""
from __future__ import annotations

import math
from typing import Union

import numpy as np

from utils.catalog import WindTurbineSpec
from utils.regions import fuel_limited_power_mw

ArrayLike = Union[float, np.ndarray]

AIR_DENSITY = 1.225  # kg/m³
ETA_DRIVETRAIN = 0.92
ETA_GENERATOR = 0.95
ETA_CONVERTER = 0.95
BETZ_LIMIT = 0.593
DESIGN_TIP_SPEED_RATIO = 8.1

# Power coefficient by wind speed (m/s); clamped outside 3-17 m/s.
CP_TABLE_SPEEDS = np.arange(3.0, 18.0)
CP_TABLE_VALUES = np.array(
    [0.147, 0.202, 0.235, 0.257, 0.273, 0.285, 0.298, 0.301, 0.307, 0.312, 0.316, 0.320, 0.323, 0.326, 0.329]
)

CP_COEFFICIENTS = (0.5176, 116.0, 0.4, 5.0, 21.0, 0.0068)

WIND_CURVE_MODES = ("cubic", "cp_table", "cp_analytic", "cp_simple")


def cp_from_table(wind_speed: ArrayLike) -> np.ndarray:
    """Linearly interpolated power coefficient; np.interp clamps at both ends."""

    return np.interp(np.asarray(wind_speed, dtype=float), CP_TABLE_SPEEDS, CP_TABLE_VALUES)


def cp_analytic(tip_speed_ratio: ArrayLike, pitch_deg: float = 0.0) -> np.ndarray:
    """Empirical Cp(λ, β) curve clamped to [0, Betz limit]."""

    c1, c2, c3, c4, c5, c6 = CP_COEFFICIENTS
    lam = np.asarray(tip_speed_ratio, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_lambda_i = 1.0 / (lam + 0.08 * pitch_deg) - 0.035 / (pitch_deg ** 3 + 1.0)
        lambda_i = 1.0 / inv_lambda_i
        cp = c1 * (c2 / lambda_i - c3 * pitch_deg - c4) * np.exp(-c5 / lambda_i) + c6 * lam
    cp = np.where((lam > 0) & np.isfinite(cp) & (lambda_i > 0), cp, 0.0)
    return np.clip(cp, 0.0, BETZ_LIMIT)


def cp_simple(tip_speed_ratio: float = DESIGN_TIP_SPEED_RATIO) -> float:
    return min(tip_speed_ratio / 44.0, 0.48)


def design_rotor_speed_rps(turbine: WindTurbineSpec) -> float:
    """Fixed rotor speed that puts the design tip-speed ratio at rated wind speed."""

    if turbine.rotor_diameter_m <= 0:
        return 0.0
    return DESIGN_TIP_SPEED_RATIO * turbine.rated_speed / (math.pi * turbine.rotor_diameter_m)


def tip_speed_ratio(rotor_diameter_m: float, rotor_speed_rps: float, wind_speed: ArrayLike) -> np.ndarray:
    """λ = ωR/v; zero where the wind speed is not positive."""

    v = np.asarray(wind_speed, dtype=float)
    omega = 2.0 * math.pi * rotor_speed_rps
    with np.errstate(divide="ignore", invalid="ignore"):
        lam = omega * (rotor_diameter_m / 2.0) / v
    return np.where(v > 0, lam, 0.0)


def aerodynamic_power_kw(cp: ArrayLike, rotor_diameter_m: float, wind_speed: ArrayLike) -> np.ndarray:
    """P = (1/8)·Cp·η1·η2·η3·ρ·π·D²·v³, in kW."""

    v = np.asarray(wind_speed, dtype=float)
    eta = ETA_DRIVETRAIN * ETA_GENERATOR * ETA_CONVERTER
    watts = 0.125 * np.asarray(cp, dtype=float) * eta * AIR_DENSITY * math.pi * rotor_diameter_m ** 2 * v ** 3
    return watts / 1000.0


def wind_power_kw(turbine: WindTurbineSpec, wind_speed: ArrayLike, mode: str = "cubic") -> np.ndarray:
    """Electrical output of one turbine for each wind sample.

    Below cut-in and above cut-out the output is zero; between rated and
    cut-out it is rated power. ``mode`` selects the ramp between cut-in and
    rated: a cubic fraction of rated, the tabulated Cp curve, the analytic
    Cp(λ) of a fixed-speed rotor, or the simplified Cp at the design
    tip-speed ratio.
    """

    if mode not in WIND_CURVE_MODES:
        raise ValueError(f"Unsupported wind curve mode: {mode}")
    v = np.asarray(wind_speed, dtype=float)
    rated = float(turbine.rated_power_kw)
    cut_in = float(turbine.cut_in_speed)
    rated_speed = float(turbine.rated_speed)

    if mode == "cubic":
        span = max(1e-9, rated_speed - cut_in)
        ramp = rated * np.clip((v - cut_in) / span, 0.0, 1.0) ** 3
    elif mode == "cp_table":
        ramp = np.minimum(aerodynamic_power_kw(cp_from_table(v), turbine.rotor_diameter_m, v), rated)
    elif mode == "cp_analytic":
        lam = tip_speed_ratio(turbine.rotor_diameter_m, design_rotor_speed_rps(turbine), v)
        ramp = np.minimum(aerodynamic_power_kw(cp_analytic(lam), turbine.rotor_diameter_m, v), rated)
    else:
        ramp = np.minimum(aerodynamic_power_kw(cp_simple(), turbine.rotor_diameter_m, v), rated)

    power = np.where(v <= cut_in, 0.0, np.where(v < rated_speed, ramp, rated))
    power = np.where(v > turbine.cut_out_speed, 0.0, power)
    return np.asarray(power, dtype=float)


def wind_output_per_mw(turbine: WindTurbineSpec, wind_speed: ArrayLike, mode: str = "cubic") -> np.ndarray:
    """Per-unit output (MW per installed MW) for a fleet of ``turbine``."""

    if turbine.rated_power_kw <= 0:
        return np.zeros_like(np.asarray(wind_speed, dtype=float))
    return wind_power_kw(turbine, wind_speed, mode) / float(turbine.rated_power_kw)


def solar_power_mw(
    capacity_mw: float,
    irradiance: ArrayLike,
    temperature: ArrayLike = 25.0,
    temp_coeff_pmax_pct: float = -0.35,
    inverter_efficiency: float = 0.97,
    loss_factor: float = 0.90,
) -> np.ndarray:
    """AC output of a PV array.

    ``irradiance`` is normalized to STC. The panel efficiency term is the
    temperature-corrected efficiency relative to STC, ``1 + α(T - 25)``.
    """

    g = np.asarray(irradiance, dtype=float)
    t = np.asarray(temperature, dtype=float)
    panel_efficiency = 1.0 + (temp_coeff_pmax_pct / 100.0) * (t - 25.0)
    power = capacity_mw * g * panel_efficiency * inverter_efficiency * loss_factor
    return np.maximum(power, 0.0)


def biomass_operating_mask(n_hours: int, run_hours: float) -> np.ndarray:
    """Boolean mask with ``run_hours`` operating hours spread evenly over ``n_hours``."""

    if n_hours <= 0:
        return np.zeros(0, dtype=bool)
    run = min(max(float(run_hours), 0.0), float(n_hours))
    idx = np.arange(n_hours, dtype=float)
    return np.floor((idx + 1.0) * run / n_hours) > np.floor(idx * run / n_hours)


def sustained_biomass_mw(biomass_flow_tph: ArrayLike, heat_value_mj_per_kg: float, route: str) -> float:
    """Fuel-limited electrical MW from the mean feedstock flow of the series."""

    flow = np.asarray(biomass_flow_tph, dtype=float)
    if flow.size == 0:
        return 0.0
    daily_t = float(flow.mean()) * 24.0
    return fuel_limited_power_mw(daily_t, heat_value_mj_per_kg, route)


def biomass_power_mw(capacity_mw: float, sustained_mw: float, operating_mask: np.ndarray) -> np.ndarray:
    """Flat dispatchable output: min(installed, sustained) in operating hours."""

    level = max(0.0, min(float(capacity_mw), float(sustained_mw)))
    return np.where(operating_mask, level, 0.0)

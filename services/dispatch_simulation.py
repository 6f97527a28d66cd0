from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np

from services.power_curves import (
    WIND_CURVE_MODES,
    biomass_operating_mask,
    biomass_power_mw,
    solar_power_mw,
    wind_output_per_mw,
)
from utils.catalog import SolarPanelSpec, WindTurbineSpec
from utils.resources import HourlySeries


@dataclass(frozen=True)
class CapacityCandidate:
    """One point of the search grid.

    Units:
    - ``wind_mw`` / ``solar_mw`` / ``biomass_mw``: installed MW (solar is DC).
    - ``battery_mwh``: nameplate storage energy.
    """

    wind_mw: float
    solar_mw: float
    biomass_mw: float
    battery_mwh: float

    def __post_init__(self) -> None:
        for name in ("wind_mw", "solar_mw", "biomass_mw", "battery_mwh"):
            value = getattr(self, name)
            if not np.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be a non-negative finite number; got {value}.")

    def to_dict(self) -> Dict[str, float]:
        return {
            "wind_mw": self.wind_mw,
            "solar_mw": self.solar_mw,
            "biomass_mw": self.biomass_mw,
            "battery_mwh": self.battery_mwh,
        }


@dataclass
class DispatchConfig:
    charge_efficiency: float = 0.95
    discharge_efficiency: float = 0.95
    c_rate: float = 1.0 / 3.0  # max charge/discharge MW per MWh of capacity
    soc_floor: float = 0.0  # fraction of capacity
    soc_ceiling: float = 1.0
    initial_soc: float = 0.5
    feasibility_threshold: float = 0.98  # energy-based reliability (0..1)
    shortage_tolerance_mwh: float = 0.001
    inverter_efficiency: float = 0.97
    loss_factor: float = 0.90
    biomass_run_hours: float = 7000.0
    wind_curve: str = "cubic"  # one of WIND_CURVE_MODES

    def __post_init__(self) -> None:
        if not np.isfinite(self.c_rate) or self.c_rate < 0:
            raise ValueError(f"c_rate must be a non-negative finite number; got {self.c_rate}.")
        if not 0.0 <= self.soc_floor < self.soc_ceiling <= 1.0:
            raise ValueError("SOC band must satisfy 0 <= soc_floor < soc_ceiling <= 1.")
        for name in ("initial_soc", "feasibility_threshold", "inverter_efficiency", "loss_factor"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1]; got {value}.")
        if self.shortage_tolerance_mwh < 0:
            raise ValueError("shortage_tolerance_mwh must be non-negative.")
        if not 0.0 <= self.biomass_run_hours <= 8760.0:
            raise ValueError("biomass_run_hours must be within [0, 8760].")
        if self.wind_curve not in WIND_CURVE_MODES:
            raise ValueError(f"Unsupported wind curve mode: {self.wind_curve}")


@dataclass(frozen=True)
class EnergyRatio:
    """Generation-to-load ratios; ``total`` is always the sum of the three."""

    wind: float
    solar: float
    bio: float
    total: float = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "total", self.wind + self.solar + self.bio)


@dataclass
class HourlyLog:
    wind_mw: np.ndarray
    solar_mw: np.ndarray
    biomass_mw: np.ndarray
    load_mw: np.ndarray
    charge_mw: np.ndarray
    discharge_mw: np.ndarray
    shortage_mw: np.ndarray
    curtailed_mw: np.ndarray
    soc_mwh: np.ndarray


@dataclass
class SimulationResult:
    reliability: float  # 1 - unmet/load, 0..1
    curtailment_rate: float  # curtailed/generation, 0..1
    total_generation_mwh: float
    total_load_mwh: float
    wind_generation_mwh: float
    solar_generation_mwh: float
    biomass_generation_mwh: float
    energy_ratio: EnergyRatio
    shortage_hours: int
    unmet_load_mwh: float
    curtailed_mwh: float
    battery_charge_mwh: float
    battery_discharge_mwh: float
    battery_capacity_mwh: float
    min_soc_mwh: float
    max_soc_mwh: float
    feasible: bool
    flags: Dict[str, int] = field(default_factory=dict)
    hourly: Optional[HourlyLog] = None

    @property
    def reliability_pct(self) -> float:
        return self.reliability * 100.0

    @property
    def curtailment_rate_pct(self) -> float:
        return self.curtailment_rate * 100.0

    @property
    def min_soc_pct(self) -> float:
        return 100.0 * self.min_soc_mwh / self.battery_capacity_mwh if self.battery_capacity_mwh > 0 else 0.0

    @property
    def max_soc_pct(self) -> float:
        return 100.0 * self.max_soc_mwh / self.battery_capacity_mwh if self.battery_capacity_mwh > 0 else 0.0

    def to_dict(self, include_hourly: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "reliability_pct": self.reliability_pct,
            "curtailment_rate_pct": self.curtailment_rate_pct,
            "total_generation_mwh": self.total_generation_mwh,
            "total_load_mwh": self.total_load_mwh,
            "wind_generation_mwh": self.wind_generation_mwh,
            "solar_generation_mwh": self.solar_generation_mwh,
            "biomass_generation_mwh": self.biomass_generation_mwh,
            "energy_ratio": {
                "wind": self.energy_ratio.wind,
                "solar": self.energy_ratio.solar,
                "bio": self.energy_ratio.bio,
                "total": self.energy_ratio.total,
            },
            "shortage_hours": self.shortage_hours,
            "unmet_load_mwh": self.unmet_load_mwh,
            "curtailed_mwh": self.curtailed_mwh,
            "battery_charge_mwh": self.battery_charge_mwh,
            "battery_discharge_mwh": self.battery_discharge_mwh,
            "min_soc_mwh": self.min_soc_mwh,
            "max_soc_mwh": self.max_soc_mwh,
            "min_soc_pct": self.min_soc_pct,
            "max_soc_pct": self.max_soc_pct,
            "feasible": self.feasible,
            "flags": dict(self.flags),
        }
        if include_hourly and self.hourly is not None:
            data["hourly"] = {
                name: getattr(self.hourly, name).tolist()
                for name in (
                    "wind_mw",
                    "solar_mw",
                    "biomass_mw",
                    "load_mw",
                    "charge_mw",
                    "discharge_mw",
                    "shortage_mw",
                    "curtailed_mw",
                    "soc_mwh",
                )
            }
        return data


def resolve_efficiencies(cfg: DispatchConfig) -> Tuple[float, float, float]:
    """Return (charge, discharge, roundtrip) efficiencies with consistent bounds."""

    def _bound(value: float) -> float:
        return max(0.05, min(value, 1.0))

    eta_ch = _bound(cfg.charge_efficiency)
    eta_dis = _bound(cfg.discharge_efficiency)
    return eta_ch, eta_dis, eta_ch * eta_dis


def _safe_ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def simulate_dispatch(
    wind_mw: np.ndarray,
    solar_mw: np.ndarray,
    biomass_mw: np.ndarray,
    load_mw: np.ndarray,
    battery_mwh: float,
    cfg: Optional[DispatchConfig] = None,
    need_logs: bool = False,
) -> SimulationResult:
    """Run the hourly battery state-of-charge loop over precomputed generation.

    SOC starts at ``initial_soc`` of capacity and stays within
    ``[soc_floor, soc_ceiling] * battery_mwh`` every hour. Unserved deficit
    after discharge is loss of power supply; surplus after charging is
    curtailed.
    """

    cfg = cfg or DispatchConfig()
    n_hours = len(load_mw)
    for name, arr in (("wind_mw", wind_mw), ("solar_mw", solar_mw), ("biomass_mw", biomass_mw)):
        if len(arr) != n_hours:
            raise ValueError(f"{name} has {len(arr)} steps; load has {n_hours}.")
    if battery_mwh < 0:
        raise ValueError("battery_mwh must be non-negative.")

    eta_ch, eta_dis, _ = resolve_efficiencies(cfg)
    capacity = float(battery_mwh)
    soc_min = capacity * max(0.0, cfg.soc_floor)
    soc_max = capacity * min(1.0, cfg.soc_ceiling)
    soc_mwh = min(max(capacity * cfg.initial_soc, soc_min), soc_max)
    max_rate = capacity * cfg.c_rate
    tol = cfg.shortage_tolerance_mwh

    generation = np.asarray(wind_mw, float) + np.asarray(solar_mw, float) + np.asarray(biomass_mw, float)
    gen_list = generation.tolist()
    load_list = np.asarray(load_mw, float).tolist()

    charge_log = np.zeros(n_hours) if need_logs else None
    discharge_log = np.zeros(n_hours) if need_logs else None
    shortage_log = np.zeros(n_hours) if need_logs else None
    curtail_log = np.zeros(n_hours) if need_logs else None
    soc_log = np.zeros(n_hours) if need_logs else None

    unmet = 0.0
    curtailed = 0.0
    charged = 0.0
    discharged = 0.0
    shortage_hours = 0
    soc_lo = soc_mwh
    soc_hi = soc_mwh
    floor_hits = 0
    ceiling_hits = 0

    for h in range(n_hours):
        net = gen_list[h] - load_list[h]
        charge = 0.0
        discharge = 0.0
        shortage = 0.0
        spill = 0.0

        if net < 0 and soc_mwh > soc_min:
            discharge = min(-net, max_rate, (soc_mwh - soc_min) * eta_dis)
            soc_mwh -= discharge / eta_dis
            shortage = -net - discharge
        elif net > 0 and soc_mwh < soc_max:
            charge = min(net, max_rate, (soc_max - soc_mwh) / eta_ch)
            soc_mwh += charge * eta_ch
            spill = net - charge
        elif net < 0:
            shortage = -net
        elif net > 0:
            spill = net

        soc_mwh = min(max(soc_mwh, soc_min), soc_max)
        if capacity > 0:
            if soc_mwh <= soc_min + 1e-9:
                floor_hits += 1
            elif soc_mwh >= soc_max - 1e-9:
                ceiling_hits += 1

        if shortage > tol:
            shortage_hours += 1
        unmet += shortage
        curtailed += spill
        charged += charge
        discharged += discharge
        soc_lo = min(soc_lo, soc_mwh)
        soc_hi = max(soc_hi, soc_mwh)

        if need_logs:
            charge_log[h] = charge
            discharge_log[h] = discharge
            shortage_log[h] = shortage
            curtail_log[h] = spill
            soc_log[h] = soc_mwh

    total_load = float(sum(load_list))
    total_generation = float(generation.sum())
    wind_total = float(np.sum(wind_mw))
    solar_total = float(np.sum(solar_mw))
    bio_total = float(np.sum(biomass_mw))

    reliability = 1.0 - _safe_ratio(unmet, total_load)
    reliability = min(1.0, max(0.0, reliability))
    curtailment_rate = min(1.0, max(0.0, _safe_ratio(curtailed, total_generation)))

    hourly = None
    if need_logs:
        hourly = HourlyLog(
            wind_mw=np.asarray(wind_mw, float),
            solar_mw=np.asarray(solar_mw, float),
            biomass_mw=np.asarray(biomass_mw, float),
            load_mw=np.asarray(load_mw, float),
            charge_mw=charge_log,
            discharge_mw=discharge_log,
            shortage_mw=shortage_log,
            curtailed_mw=curtail_log,
            soc_mwh=soc_log,
        )

    return SimulationResult(
        reliability=reliability,
        curtailment_rate=curtailment_rate,
        total_generation_mwh=total_generation,
        total_load_mwh=total_load,
        wind_generation_mwh=wind_total,
        solar_generation_mwh=solar_total,
        biomass_generation_mwh=bio_total,
        energy_ratio=EnergyRatio(
            wind=_safe_ratio(wind_total, total_load),
            solar=_safe_ratio(solar_total, total_load),
            bio=_safe_ratio(bio_total, total_load),
        ),
        shortage_hours=shortage_hours,
        unmet_load_mwh=unmet,
        curtailed_mwh=curtailed,
        battery_charge_mwh=charged,
        battery_discharge_mwh=discharged,
        battery_capacity_mwh=capacity,
        min_soc_mwh=soc_lo,
        max_soc_mwh=soc_hi,
        feasible=reliability >= cfg.feasibility_threshold,
        flags={
            "shortage_hours": shortage_hours,
            "soc_floor_hits": floor_hits,
            "soc_ceiling_hits": ceiling_hits,
        },
        hourly=hourly,
    )


def simulate_candidate(
    candidate: CapacityCandidate,
    series: HourlySeries,
    turbine: WindTurbineSpec,
    panel: SolarPanelSpec,
    sustained_biomass_mw: float,
    cfg: Optional[DispatchConfig] = None,
    need_logs: bool = False,
) -> SimulationResult:
    """Convert a capacity tuple into hourly generation and dispatch it."""

    cfg = cfg or DispatchConfig()
    if cfg.wind_curve not in WIND_CURVE_MODES:
        raise ValueError(f"Unsupported wind curve mode: {cfg.wind_curve}")
    n_hours = len(series)

    if candidate.wind_mw > 0:
        wind = candidate.wind_mw * wind_output_per_mw(turbine, series.wind_speed, cfg.wind_curve)
    else:
        wind = np.zeros(n_hours)
    if candidate.solar_mw > 0:
        solar = solar_power_mw(
            candidate.solar_mw,
            series.irradiance,
            series.temperature,
            temp_coeff_pmax_pct=panel.temp_coeff_pmax_pct,
            inverter_efficiency=cfg.inverter_efficiency,
            loss_factor=cfg.loss_factor,
        )
    else:
        solar = np.zeros(n_hours)
    biomass = biomass_power_mw(
        candidate.biomass_mw,
        sustained_biomass_mw,
        biomass_operating_mask(n_hours, cfg.biomass_run_hours * n_hours / 8760.0),
    )

    return simulate_dispatch(wind, solar, biomass, series.load_mw, candidate.battery_mwh, cfg, need_logs)

"""Immutable equipment catalog for hybrid wind/solar/biomass/storage sizing.

Prices are in 10k CNY (万元) per unit unless a field says otherwise. Power
ratings are kW except steam turbines (MW); batteries carry kWh.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Any, Dict, Iterable, Optional, Tuple, TypeVar


class ConfigurationError(LookupError):
    """Raised when a referenced catalog entry or region setting does not exist."""


@dataclass(frozen=True)
class WindTurbineSpec:
    id: str
    model: str
    rated_power_kw: float
    cut_in_speed: float
    rated_speed: float
    cut_out_speed: float
    rotor_diameter_m: float
    capacity_factor_pct: float
    price: float

    @property
    def price_per_kw(self) -> float:
        return self.price / self.rated_power_kw if self.rated_power_kw > 0 else 0.0


@dataclass(frozen=True)
class SolarPanelSpec:
    """PV module; ``price`` is CNY per module, not 10k CNY."""

    id: str
    model: str
    power_w: float
    efficiency_pct: float
    price: float
    temp_coeff_pmax_pct: float = -0.35
    cell_type: str = "mono"

    @property
    def price_per_watt(self) -> float:
        return self.price / self.power_w if self.power_w > 0 else 0.0


@dataclass(frozen=True)
class InverterSpec:
    id: str
    model: str
    rated_power_kw: float
    max_efficiency_pct: float
    price: float
    topology: str = "string"


@dataclass(frozen=True)
class BatterySpec:
    """Storage unit. ``energy_density_wh_per_kg`` ranks chemistries for selection."""

    id: str
    model: str
    chemistry: str
    energy_capacity_kwh: float
    efficiency_pct: float
    cycle_life: int
    energy_density_wh_per_kg: float
    price: float

    @property
    def price_per_kwh(self) -> float:
        return self.price / self.energy_capacity_kwh if self.energy_capacity_kwh > 0 else 0.0


@dataclass(frozen=True)
class PCSSpec:
    id: str
    model: str
    rated_power_kw: float
    efficiency_pct: float
    price: float


@dataclass(frozen=True)
class BoilerSpec:
    id: str
    model: str
    steam_capacity_tph: float
    efficiency_pct: float
    price: float


@dataclass(frozen=True)
class GasifierSpec:
    id: str
    model: str
    gas_output_nm3_per_h: float
    efficiency_pct: float
    price: float


@dataclass(frozen=True)
class DigesterSpec:
    id: str
    model: str
    daily_gas_output_nm3: float
    methane_content_pct: float
    price: float


@dataclass(frozen=True)
class GasEngineSpec:
    id: str
    model: str
    fuel_type: str  # 'syngas' | 'biogas'
    rated_power_kw: float
    electrical_efficiency_pct: float
    price: float


@dataclass(frozen=True)
class SteamTurbineSpec:
    id: str
    model: str
    rated_power_mw: float
    efficiency_pct: float
    price: float


SpecT = TypeVar("SpecT")


def _find(items: Iterable[SpecT], model_id: str, kind: str) -> SpecT:
    for item in items:
        if getattr(item, "id") == model_id:
            return item
    raise ConfigurationError(f"{kind} '{model_id}' is not in the equipment catalog.")


@dataclass(frozen=True)
class EquipmentCatalog:
    """Read-only registry shared by reference into every search run."""

    wind_turbines: Tuple[WindTurbineSpec, ...]
    solar_panels: Tuple[SolarPanelSpec, ...]
    inverters: Tuple[InverterSpec, ...]
    batteries: Tuple[BatterySpec, ...]
    pcs_units: Tuple[PCSSpec, ...]
    boilers: Tuple[BoilerSpec, ...] = field(default_factory=tuple)
    gasifiers: Tuple[GasifierSpec, ...] = field(default_factory=tuple)
    digesters: Tuple[DigesterSpec, ...] = field(default_factory=tuple)
    gas_engines: Tuple[GasEngineSpec, ...] = field(default_factory=tuple)
    steam_turbines: Tuple[SteamTurbineSpec, ...] = field(default_factory=tuple)

    def wind_turbine(self, model_id: str) -> WindTurbineSpec:
        return _find(self.wind_turbines, model_id, "Wind turbine")

    def solar_panel(self, model_id: str) -> SolarPanelSpec:
        return _find(self.solar_panels, model_id, "Solar panel")

    def find_wind_turbine(self, model_id: str) -> Optional[WindTurbineSpec]:
        """Return the turbine or ``None`` instead of raising."""

        return next((t for t in self.wind_turbines if t.id == model_id), None)

    def restricted(self, **model_ids: Iterable[str]) -> "EquipmentCatalog":
        """Return a copy keeping only the listed ids for the named technologies.

        Example: ``catalog.restricted(batteries=["BAT-280L"])``. Unknown ids
        raise :class:`ConfigurationError` so typos never widen the selection.
        """

        replacements: Dict[str, Tuple[Any, ...]] = {}
        for attr, ids in model_ids.items():
            if attr not in self.__dataclass_fields__:
                raise ConfigurationError(f"Unknown catalog section '{attr}'.")
            pool = getattr(self, attr)
            replacements[attr] = tuple(_find(pool, model_id, attr) for model_id in ids)
        return replace(self, **replacements)


_DEFAULT_WIND = (
    WindTurbineSpec("WT-3", "FD3.2-3kW", 3, 2.5, 9.0, 25, 3.2, 19, 1.8),
    WindTurbineSpec("WT-10", "FD7.0-10kW", 10, 3.0, 10.0, 25, 7.0, 21, 5.0),
    WindTurbineSpec("WT-50", "FD15-50kW", 50, 3.0, 11.0, 25, 15.0, 23, 20.0),
    WindTurbineSpec("WT-1500", "GW87/1500", 1500, 3.0, 11.0, 25, 87.0, 24, 520.0),
    WindTurbineSpec("WT-2500", "GW121/2500", 2500, 3.0, 10.5, 25, 121.0, 26, 850.0),
    WindTurbineSpec("WT-3000", "MySE3.0-135", 3000, 3.0, 10.5, 25, 135.0, 27, 1000.0),
    WindTurbineSpec("WT-3600", "EN-141/3.6", 3600, 3.0, 10.0, 25, 141.0, 27, 1200.0),
)

_DEFAULT_SOLAR = (
    SolarPanelSpec("PV-410M", "LR5-54HPH-410M", 410, 21.1, 780),
    SolarPanelSpec("PV-430M", "LR5-54HTH-430M", 430, 21.3, 820),
    SolarPanelSpec("PV-545N", "JKM545N-72HL4", 545, 21.28, 980, temp_coeff_pmax_pct=-0.30, cell_type="n-type"),
    SolarPanelSpec("PV-550M", "LR5-72HPH-550M", 550, 21.3, 990),
    SolarPanelSpec("PV-660M", "TSM-DEG21C.20", 660, 21.6, 1150),
    SolarPanelSpec("PV-275P", "CS6K-275P", 275, 16.9, 440, temp_coeff_pmax_pct=-0.40, cell_type="poly"),
)

_DEFAULT_INVERTERS = (
    InverterSpec("INV-5K", "SG5K-D", 5, 97.5, 0.4),
    InverterSpec("INV-20K", "SG20RT", 20, 98.2, 1.0),
    InverterSpec("INV-50K", "SG50CX", 50, 98.6, 2.2),
    InverterSpec("INV-110K", "SG110CX", 110, 98.8, 4.2),
    InverterSpec("INV-500K", "SG500MX", 500, 98.5, 18.0, topology="central"),
    InverterSpec("INV-1250K", "SG1250UD", 1250, 98.7, 42.0, topology="central"),
)

_DEFAULT_BATTERIES = (
    BatterySpec("BAT-100L", "LFP-100", "LFP", 100.0, 95, 6000, 160.0, 13.0),
    BatterySpec("BAT-200L", "LFP-200", "LFP", 200.0, 95, 6000, 160.0, 25.0),
    BatterySpec("BAT-280L", "LFP-280", "LFP", 280.0, 96, 6000, 165.0, 33.6),
    BatterySpec("BAT-100G", "PbC-100", "lead-carbon", 100.0, 85, 3000, 45.0, 8.5),
    BatterySpec("BAT-200G", "PbC-200", "lead-carbon", 200.0, 85, 3000, 45.0, 16.0),
)

_DEFAULT_PCS = (
    PCSSpec("PCS-30", "PWS1-30K", 30, 95.0, 2.5),
    PCSSpec("PCS-100", "PWS1-100K", 100, 96.0, 8.0),
    PCSSpec("PCS-250", "PWS1-250K", 250, 97.0, 18.0),
    PCSSpec("PCS-500", "PWS1-500K", 500, 97.5, 38.0),
    PCSSpec("PCS-1000", "PWS2-1000K", 1000, 98.0, 72.0),
)

_DEFAULT_BOILERS = (
    BoilerSpec("GF-20", "GF-20", 20, 82, 600.0),
    BoilerSpec("GF-50", "GF-50", 50, 85, 1300.0),
    BoilerSpec("CFB-35", "CFB-35", 35, 85, 1100.0),
    BoilerSpec("CFB-75", "CFB-75", 75, 87, 2200.0),
    BoilerSpec("CFB-130", "CFB-130", 130, 88, 3600.0),
)

_DEFAULT_GASIFIERS = (
    GasifierSpec("DG-50", "DG-50", 80, 70, 10.0),
    GasifierSpec("DG-100", "DG-100", 160, 72, 18.0),
    GasifierSpec("DG-200", "DG-200", 320, 75, 32.0),
    GasifierSpec("UG-300", "UG-300", 450, 72, 48.0),
    GasifierSpec("FB-500", "FB-500", 800, 78, 70.0),
    GasifierSpec("FB-1000", "FB-1000", 1600, 80, 135.0),
)

_DEFAULT_DIGESTERS = (
    DigesterSpec("AD-100", "AD-100", 150, 58, 20.0),
    DigesterSpec("AD-300", "AD-300", 500, 60, 50.0),
    DigesterSpec("AD-500", "AD-500", 900, 62, 85.0),
    DigesterSpec("AD-1000", "AD-1000", 2000, 63, 155.0),
    DigesterSpec("AD-2000", "AD-2000", 4500, 65, 330.0),
)

_DEFAULT_GAS_ENGINES = (
    GasEngineSpec("GE-30", "GE-30", "syngas", 30, 28, 7.0),
    GasEngineSpec("GE-60", "GE-60", "syngas", 60, 30, 12.0),
    GasEngineSpec("GE-120", "GE-120", "syngas", 120, 32, 25.0),
    GasEngineSpec("GE-300", "GE-300", "syngas", 300, 33, 58.0),
    GasEngineSpec("GE-600", "GE-600", "syngas", 600, 35, 108.0),
    GasEngineSpec("BG-50", "BG-50", "biogas", 50, 32, 15.0),
    GasEngineSpec("BG-100", "BG-100", "biogas", 100, 33, 30.0),
    GasEngineSpec("BG-200", "BG-200", "biogas", 200, 35, 60.0),
    GasEngineSpec("BG-500", "BG-500", "biogas", 500, 38, 140.0),
)

_DEFAULT_STEAM_TURBINES = (
    SteamTurbineSpec("ST-6", "N6-3.43", 6, 28, 900.0),
    SteamTurbineSpec("ST-12", "N12-4.9", 12, 30, 1600.0),
    SteamTurbineSpec("ST-25", "N25-8.83", 25, 32, 3000.0),
    SteamTurbineSpec("ST-50", "N50-8.83", 50, 35, 5500.0),
)


@lru_cache(maxsize=1)
def default_catalog() -> EquipmentCatalog:
    """Return the process-wide default catalog, built once on first use."""

    return EquipmentCatalog(
        wind_turbines=_DEFAULT_WIND,
        solar_panels=_DEFAULT_SOLAR,
        inverters=_DEFAULT_INVERTERS,
        batteries=_DEFAULT_BATTERIES,
        pcs_units=_DEFAULT_PCS,
        boilers=_DEFAULT_BOILERS,
        gasifiers=_DEFAULT_GASIFIERS,
        digesters=_DEFAULT_DIGESTERS,
        gas_engines=_DEFAULT_GAS_ENGINES,
        steam_turbines=_DEFAULT_STEAM_TURBINES,
    )

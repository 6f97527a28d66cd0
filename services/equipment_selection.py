"""Greedy bin-packing of catalog models onto continuous capacity targets.

Every selector walks the candidate models from the largest unit down, takes
``floor(remaining / unit)`` of each, and finally rounds the smallest model
up so the installed total never falls short of the target. The overshoot is
therefore always smaller than one smallest unit.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from services.dispatch_simulation import CapacityCandidate
from utils.catalog import (
    BatterySpec,
    ConfigurationError,
    EquipmentCatalog,
    InverterSpec,
    PCSSpec,
    SolarPanelSpec,
    WindTurbineSpec,
)
from utils.economics import estimate_wind_annual_mwh
from utils.regions import BIOMASS_ROUTES, ROUTE_FUEL_DEMAND_PER_MW

logger = logging.getLogger(__name__)

_REMAINDER_TOL = 1e-9


@dataclass(frozen=True)
class EquipmentSelection:
    """One catalog line item.

    ``total_capacity`` and ``total_price`` are derived from ``count`` so the
    ``count x unit`` identity cannot drift. Prices are 10k CNY.
    """

    model_id: str
    model: str
    count: int
    unit_capacity: float
    unit_price: float
    capacity_unit: str
    total_capacity: float = field(init=False)
    total_price: float = field(init=False)

    def __post_init__(self) -> None:
        if self.count < 0:
            raise ValueError("count must be non-negative.")
        object.__setattr__(self, "total_capacity", self.count * self.unit_capacity)
        object.__setattr__(self, "total_price", self.count * self.unit_price)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "model": self.model,
            "count": self.count,
            "unit_capacity": self.unit_capacity,
            "total_capacity": self.total_capacity,
            "capacity_unit": self.capacity_unit,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
        }


@dataclass(frozen=True)
class UnitOption:
    model_id: str
    model: str
    unit_capacity: float
    unit_price: float


def pack_units(target: float, options: Iterable[UnitOption], capacity_unit: str) -> List[EquipmentSelection]:
    """Cover ``target`` with the fewest units, largest first, ceiling the remainder."""

    if target <= _REMAINDER_TOL:
        return []
    ordered = sorted(
        (opt for opt in options if opt.unit_capacity > 0),
        key=lambda opt: (-opt.unit_capacity, opt.model_id),
    )
    if not ordered:
        raise ConfigurationError(f"No catalog models available to cover {target:g} {capacity_unit}.")

    counts: Dict[str, int] = {}
    remaining = float(target)
    for opt in ordered:
        if remaining <= _REMAINDER_TOL:
            break
        count = int(math.floor(remaining / opt.unit_capacity))
        if count > 0:
            counts[opt.model_id] = count
            remaining -= count * opt.unit_capacity

    if remaining > _REMAINDER_TOL:
        smallest = ordered[-1]
        counts[smallest.model_id] = counts.get(smallest.model_id, 0) + int(math.ceil(remaining / smallest.unit_capacity))

    return [
        EquipmentSelection(
            model_id=opt.model_id,
            model=opt.model,
            count=counts[opt.model_id],
            unit_capacity=opt.unit_capacity,
            unit_price=opt.unit_price,
            capacity_unit=capacity_unit,
        )
        for opt in ordered
        if counts.get(opt.model_id, 0) > 0
    ]


def total_capacity(lines: Sequence[EquipmentSelection]) -> float:
    return float(sum(line.total_capacity for line in lines))


def total_price(lines: Sequence[EquipmentSelection]) -> float:
    return float(sum(line.total_price for line in lines))


def select_wind_turbines(target_mw: float, turbines: Sequence[WindTurbineSpec]) -> List[EquipmentSelection]:
    options = [UnitOption(t.id, t.model, t.rated_power_kw, t.price) for t in turbines]
    return pack_units(target_mw * 1000.0, options, "kW")


def select_solar_panels(target_mw: float, panels: Sequence[SolarPanelSpec]) -> List[EquipmentSelection]:
    options = [UnitOption(p.id, p.model, p.power_w / 1000.0, p.price / 10000.0) for p in panels]
    return pack_units(target_mw * 1000.0, options, "kW")


def select_inverters(
    solar_dc_mw: float,
    inverters: Sequence[InverterSpec],
    load_ratio: float = 1.1,
) -> List[EquipmentSelection]:
    """Size AC inverter capacity as DC capacity divided by the DC/AC load ratio."""

    if load_ratio <= 0:
        raise ValueError("load_ratio must be positive.")
    options = [UnitOption(i.id, i.model, i.rated_power_kw, i.price) for i in inverters]
    return pack_units(solar_dc_mw * 1000.0 / load_ratio, options, "kW")


def preferred_battery_models(batteries: Sequence[BatterySpec]) -> List[BatterySpec]:
    """Models of the chemistry with the highest energy density."""

    if not batteries:
        return []
    best = max(batteries, key=lambda b: (b.energy_density_wh_per_kg, b.chemistry))
    return [b for b in batteries if b.chemistry == best.chemistry]


def select_batteries(target_mwh: float, batteries: Sequence[BatterySpec]) -> List[EquipmentSelection]:
    options = [
        UnitOption(b.id, b.model, b.energy_capacity_kwh, b.price) for b in preferred_battery_models(batteries)
    ]
    return pack_units(target_mwh * 1000.0, options, "kWh")


def select_pcs(
    battery_mwh: float,
    pcs_units: Sequence[PCSSpec],
    discharge_hours: float = 3.0,
) -> List[EquipmentSelection]:
    """Size converter power as battery energy over the target discharge duration."""

    if discharge_hours <= 0:
        raise ValueError("discharge_hours must be positive.")
    options = [UnitOption(p.id, p.model, p.rated_power_kw, p.price) for p in pcs_units]
    return pack_units(battery_mwh * 1000.0 / discharge_hours, options, "kW")


@dataclass(frozen=True)
class BiomassEquipmentSelection:
    """Primary converter lines (boiler/gasifier/digester) plus prime movers."""

    route: str
    target_mw: float
    primary: Tuple[EquipmentSelection, ...] = ()
    secondary: Tuple[EquipmentSelection, ...] = ()

    @property
    def complete(self) -> bool:
        if self.target_mw <= 0:
            return True
        return bool(self.primary) and bool(self.secondary)

    @property
    def total_price(self) -> float:
        return total_price(self.primary) + total_price(self.secondary)

    @property
    def electrical_capacity_kw(self) -> float:
        return total_capacity(self.secondary)


def select_biomass_equipment(target_mw: float, route: str, catalog: EquipmentCatalog) -> BiomassEquipmentSelection:
    """Pick a converter + prime-mover pair for the route.

    Direct combustion pairs boilers (4.5 t/h steam per MW) with steam
    turbines; gasification pairs gasifiers (2500 Nm³/h per MW) with syngas
    engines; biogas pairs digesters (40000 Nm³/day per MW) with biogas engines.
    """

    if route not in BIOMASS_ROUTES:
        raise ConfigurationError(f"Unknown biomass route '{route}'.")
    if target_mw <= 0:
        return BiomassEquipmentSelection(route=route, target_mw=0.0)

    target_kw = target_mw * 1000.0
    if route == "direct":
        primary = pack_units(
            target_mw * ROUTE_FUEL_DEMAND_PER_MW["direct"],
            [UnitOption(b.id, b.model, b.steam_capacity_tph, b.price) for b in catalog.boilers],
            "t/h",
        ) if catalog.boilers else []
        secondary = pack_units(
            target_kw,
            [UnitOption(t.id, t.model, t.rated_power_mw * 1000.0, t.price) for t in catalog.steam_turbines],
            "kW",
        ) if catalog.steam_turbines else []
    elif route == "gasification":
        primary = pack_units(
            target_mw * ROUTE_FUEL_DEMAND_PER_MW["gasification"],
            [UnitOption(g.id, g.model, g.gas_output_nm3_per_h, g.price) for g in catalog.gasifiers],
            "Nm3/h",
        ) if catalog.gasifiers else []
        engines = [e for e in catalog.gas_engines if e.fuel_type == "syngas"]
        secondary = pack_units(
            target_kw, [UnitOption(e.id, e.model, e.rated_power_kw, e.price) for e in engines], "kW"
        ) if engines else []
    else:
        primary = pack_units(
            target_mw * ROUTE_FUEL_DEMAND_PER_MW["biogas"],
            [UnitOption(d.id, d.model, d.daily_gas_output_nm3, d.price) for d in catalog.digesters],
            "Nm3/d",
        ) if catalog.digesters else []
        engines = [e for e in catalog.gas_engines if e.fuel_type == "biogas"]
        secondary = pack_units(
            target_kw, [UnitOption(e.id, e.model, e.rated_power_kw, e.price) for e in engines], "kW"
        ) if engines else []

    selection = BiomassEquipmentSelection(route, float(target_mw), tuple(primary), tuple(secondary))
    if not selection.complete:
        logger.warning("Biomass route '%s' has no complete equipment chain in the catalog.", route)
    return selection


@dataclass(frozen=True)
class ModelChoice:
    """Resolved model choices that shape simulation and selection.

    ``turbine_id`` / ``panel_id`` pin a single model; ``None`` lets the
    selector pack across the whole catalog section.
    """

    turbine_id: Optional[str]
    panel_id: Optional[str]
    biomass_route: str = "direct"
    inverter_load_ratio: float = 1.1
    pcs_discharge_hours: float = 3.0


@dataclass(frozen=True)
class EquipmentConfig:
    wind: Tuple[EquipmentSelection, ...]
    solar: Tuple[EquipmentSelection, ...]
    inverters: Tuple[EquipmentSelection, ...]
    batteries: Tuple[EquipmentSelection, ...]
    pcs: Tuple[EquipmentSelection, ...]
    biomass: BiomassEquipmentSelection

    @property
    def total_price(self) -> float:
        return (
            total_price(self.wind)
            + total_price(self.solar)
            + total_price(self.inverters)
            + total_price(self.batteries)
            + total_price(self.pcs)
            + self.biomass.total_price
        )

    @property
    def dc_ac_ratio(self) -> float:
        inverter_kw = total_capacity(self.inverters)
        return total_capacity(self.solar) / inverter_kw if inverter_kw > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wind": [line.to_dict() for line in self.wind],
            "solar": [line.to_dict() for line in self.solar],
            "inverters": [line.to_dict() for line in self.inverters],
            "batteries": [line.to_dict() for line in self.batteries],
            "pcs": [line.to_dict() for line in self.pcs],
            "biomass": {
                "route": self.biomass.route,
                "target_mw": self.biomass.target_mw,
                "complete": self.biomass.complete,
                "primary": [line.to_dict() for line in self.biomass.primary],
                "secondary": [line.to_dict() for line in self.biomass.secondary],
            },
            "total_price": self.total_price,
        }


def select_equipment(
    candidate: CapacityCandidate,
    catalog: EquipmentCatalog,
    choice: ModelChoice,
) -> EquipmentConfig:
    """Materialize every technology of a candidate into catalog line items."""

    turbines = [catalog.wind_turbine(choice.turbine_id)] if choice.turbine_id else list(catalog.wind_turbines)
    panels = [catalog.solar_panel(choice.panel_id)] if choice.panel_id else list(catalog.solar_panels)
    return EquipmentConfig(
        wind=tuple(select_wind_turbines(candidate.wind_mw, turbines)),
        solar=tuple(select_solar_panels(candidate.solar_mw, panels)),
        inverters=tuple(select_inverters(candidate.solar_mw, catalog.inverters, choice.inverter_load_ratio)),
        batteries=tuple(select_batteries(candidate.battery_mwh, catalog.batteries)),
        pcs=tuple(select_pcs(candidate.battery_mwh, catalog.pcs_units, choice.pcs_discharge_hours)),
        biomass=select_biomass_equipment(candidate.biomass_mw, choice.biomass_route, catalog),
    )


def select_turbines_for_energy(
    target_mwh: float,
    turbine: WindTurbineSpec,
    avg_wind_speed: float,
) -> EquipmentSelection:
    """Turbine count covering an annual energy target at the region's wind class."""

    per_unit = estimate_wind_annual_mwh(turbine, avg_wind_speed)
    if per_unit <= 0:
        raise ValueError(f"Turbine '{turbine.id}' yields no annual energy; cannot size to {target_mwh} MWh.")
    count = int(math.ceil(target_mwh / per_unit)) if target_mwh > 0 else 0
    return EquipmentSelection(
        model_id=turbine.id,
        model=turbine.model,
        count=count,
        unit_capacity=turbine.rated_power_kw,
        unit_price=turbine.price,
        capacity_unit="kW",
    )

"""Region metadata tables and biomass resource helpers.

Region types carry the base load/resource parameters and the advisory
energy-ratio bands used when reporting a candidate's generation mix.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from utils.catalog import ConfigurationError

REGION_TYPES: Tuple[str, ...] = (
    "industrial",
    "residential",
    "mountain",
    "agricultural",
    "forestry",
    "test",
)

BIOMASS_ROUTES: Tuple[str, ...] = ("direct", "gasification", "biogas")

# Chain efficiencies: (boiler or converter, prime mover, generator).
BIOMASS_ROUTE_EFFICIENCY: Dict[str, Tuple[float, float, float]] = {
    "direct": (0.80, 0.30, 0.96),
    "gasification": (0.75, 0.25, 0.95),
    "biogas": (0.85, 0.35, 0.97),
}

HOURS_PER_YEAR = 8760

# Converter throughput needed per MW electric: steam t/h, syngas Nm³/h, biogas Nm³/day.
ROUTE_FUEL_DEMAND_PER_MW: Dict[str, float] = {
    "direct": 4.5,
    "gasification": 2500.0,
    "biogas": 40000.0,
}


@dataclass(frozen=True)
class RatioBand:
    min: float
    max: float

    def contains(self, value: float) -> bool:
        return self.min <= value <= self.max


@dataclass(frozen=True)
class EnergyRatioConstraints:
    """Generation-to-load ratio bands per source plus a band on their sum."""

    wind: RatioBand
    solar: RatioBand
    bio: RatioBand
    total_min: float = 1.0
    total_max: float = 2.0

    def violations(self, wind: float, solar: float, bio: float) -> List[str]:
        """Return readable messages for every ratio outside its band."""

        messages: List[str] = []
        for label, band, value in (("Wind", self.wind, wind), ("Solar", self.solar, solar), ("Biomass", self.bio, bio)):
            if not band.contains(value):
                messages.append(
                    f"{label} energy ratio {value:.2f} outside advisory band [{band.min:.2f}, {band.max:.2f}]."
                )
        total = wind + solar + bio
        if not (self.total_min <= total <= self.total_max):
            messages.append(
                f"Total energy ratio {total:.2f} outside advisory band [{self.total_min:.2f}, {self.total_max:.2f}]."
            )
        return messages


ENERGY_RATIO_CONSTRAINTS: Dict[str, EnergyRatioConstraints] = {
    "industrial": EnergyRatioConstraints(RatioBand(0.15, 0.60), RatioBand(0.30, 0.90), RatioBand(0.05, 0.50)),
    "residential": EnergyRatioConstraints(RatioBand(0.10, 0.50), RatioBand(0.35, 0.90), RatioBand(0.05, 0.40)),
    "mountain": EnergyRatioConstraints(RatioBand(0.30, 0.80), RatioBand(0.25, 0.70), RatioBand(0.05, 0.35)),
    "agricultural": EnergyRatioConstraints(RatioBand(0.15, 0.65), RatioBand(0.25, 0.80), RatioBand(0.10, 0.50)),
    "forestry": EnergyRatioConstraints(RatioBand(0.02, 0.30), RatioBand(0.45, 0.95), RatioBand(0.15, 0.55)),
    "test": EnergyRatioConstraints(RatioBand(0.10, 0.60), RatioBand(0.30, 0.90), RatioBand(0.05, 0.50)),
}


@dataclass(frozen=True)
class RegionBaseParams:
    """Per region-type defaults.

    Units:
    - ``daily_load_mwh``: MWh/day.
    - ``peak_load_mw``: MW.
    - ``daily_biomass_t``: tonnes of feedstock per day.
    - ``wind_hours`` / ``solar_hours``: equivalent full-load hours per year.
    - ``avg_wind_speed``: m/s at hub height.
    """

    daily_load_mwh: float
    peak_load_mw: float
    daily_biomass_t: float
    wind_hours: float
    solar_hours: float
    avg_wind_speed: float


BASE_REGION_PARAMS: Dict[str, RegionBaseParams] = {
    "industrial": RegionBaseParams(1320, 65, 60, 2000, 1200, 4.0),
    "residential": RegionBaseParams(660, 35, 80, 1800, 1200, 3.5),
    "mountain": RegionBaseParams(120, 8, 30, 2500, 1400, 7.5),
    "agricultural": RegionBaseParams(240, 12, 163, 2200, 1300, 5.0),
    "forestry": RegionBaseParams(72, 4, 150, 1500, 1000, 2.5),
    "test": RegionBaseParams(480, 20, 100, 2000, 1200, 4.0),
}

# Installed-to-load capacity ratio targets by region type.
CAPACITY_RATIO: Dict[str, float] = {
    "mountain": 1.25,
    "agricultural": 1.20,
    "industrial": 1.10,
    "residential": 1.10,
    "forestry": 1.00,
    "test": 1.10,
}


@dataclass(frozen=True)
class BiomassComposition:
    """As-received feedstock analysis in mass percent (C/H/O/N/S, moisture, ash, volatiles)."""

    carbon: float = 45.0
    hydrogen: float = 5.5
    oxygen: float = 38.0
    nitrogen: float = 0.8
    sulfur: float = 0.2
    moisture: float = 25.0
    ash: float = 8.0
    volatiles: float = 70.0
    cn_ratio: float = 25.0


@dataclass(frozen=True)
class Region:
    id: str
    name: str
    region_type: str
    annual_load_mwh: float
    daily_load_mwh: float
    peak_load_mw: float
    daily_biomass_t: float
    avg_wind_speed: float
    wind_hours: float
    solar_hours: float
    ratio_constraints: EnergyRatioConstraints
    biomass: BiomassComposition = field(default_factory=BiomassComposition)

    @property
    def avg_load_mw(self) -> float:
        return self.annual_load_mwh / HOURS_PER_YEAR

    @classmethod
    def from_type(
        cls,
        region_type: str,
        *,
        region_id: str = "",
        name: str = "",
        biomass: Optional[BiomassComposition] = None,
        **overrides: Any,
    ) -> "Region":
        """Build a region from the base table, applying field overrides.

        ``annual_load_mwh`` defaults to ``daily_load_mwh * 365`` unless given.
        """

        base = region_params(region_type)
        values: Dict[str, Any] = {
            "daily_load_mwh": float(base.daily_load_mwh),
            "peak_load_mw": float(base.peak_load_mw),
            "daily_biomass_t": float(base.daily_biomass_t),
            "avg_wind_speed": float(base.avg_wind_speed),
            "wind_hours": float(base.wind_hours),
            "solar_hours": float(base.solar_hours),
        }
        unknown = set(overrides) - set(values) - {"annual_load_mwh", "ratio_constraints"}
        if unknown:
            raise ValueError(f"Unsupported region overrides: {sorted(unknown)}")
        values.update({k: v for k, v in overrides.items() if k in values})
        annual = overrides.get("annual_load_mwh")
        values["annual_load_mwh"] = float(annual) if annual is not None else values["daily_load_mwh"] * 365.0
        return cls(
            id=region_id or region_type,
            name=name or region_type.title(),
            region_type=region_type,
            ratio_constraints=overrides.get("ratio_constraints") or get_ratio_constraints(region_type),
            biomass=biomass or BiomassComposition(),
            **values,
        )


def _require_region_type(region_type: str) -> None:
    if region_type not in REGION_TYPES:
        raise ConfigurationError(f"Unknown region type '{region_type}'. Expected one of {list(REGION_TYPES)}.")


def region_params(region_type: str) -> RegionBaseParams:
    _require_region_type(region_type)
    return BASE_REGION_PARAMS[region_type]


def get_ratio_constraints(region_type: str) -> EnergyRatioConstraints:
    """Look up the advisory energy-ratio band for a region type."""

    _require_region_type(region_type)
    return ENERGY_RATIO_CONSTRAINTS[region_type]


def get_capacity_ratio(region_type: str) -> float:
    _require_region_type(region_type)
    return CAPACITY_RATIO[region_type]


def biomass_heat_value(comp: BiomassComposition) -> float:
    """Return the net calorific value in MJ/kg from the elemental analysis."""

    q = (
        35.16 * comp.carbon
        + 116.23 * comp.hydrogen
        - 11.09 * comp.oxygen
        + 6.28 * comp.nitrogen
        + 10.47 * comp.sulfur
        - 2.51 * (9.0 * comp.hydrogen + comp.moisture)
    ) / 100.0
    return max(0.0, q)


def route_efficiency(route: str) -> float:
    if route not in BIOMASS_ROUTE_EFFICIENCY:
        raise ConfigurationError(f"Unknown biomass route '{route}'. Expected one of {list(BIOMASS_ROUTES)}.")
    boiler, engine, generator = BIOMASS_ROUTE_EFFICIENCY[route]
    return boiler * engine * generator


def fuel_limited_power_mw(daily_biomass_t: float, heat_value_mj_per_kg: float, route: str) -> float:
    """Electrical MW sustainable from a daily feedstock mass on a given route."""

    if daily_biomass_t <= 0 or heat_value_mj_per_kg <= 0:
        return 0.0
    feed_kg_per_h = daily_biomass_t * 1000.0 / 24.0
    power_kw = feed_kg_per_h * heat_value_mj_per_kg * 1000.0 * route_efficiency(route) / 3600.0
    return power_kw / 1000.0


def max_biomass_power_mw(region: Region, route: str = "direct") -> float:
    return fuel_limited_power_mw(region.daily_biomass_t, biomass_heat_value(region.biomass), route)


@dataclass(frozen=True)
class BiomassRouteRecommendation:
    route: str
    score: float
    reason: str


def recommend_biomass_routes(region: Region) -> List[BiomassRouteRecommendation]:
    """Score each conversion route against the region's feedstock, best first."""

    comp = region.biomass
    daily = region.daily_biomass_t
    recommendations: List[BiomassRouteRecommendation] = []

    score = 50.0
    reasons: List[str] = []
    if daily >= 100:
        score += 20
        reasons.append("large feedstock volume suits boiler scale")
    elif daily >= 50:
        score += 15
        reasons.append("medium feedstock volume")
    else:
        score += 5
    if 20 <= comp.moisture <= 45:
        score += 15
        reasons.append("moisture within combustion window")
    elif comp.moisture < 20:
        score += 10
    else:
        score += 5
    if comp.ash < 10:
        score += 15
        reasons.append("low ash")
    elif comp.ash < 20:
        score += 10
    else:
        score += 5
    recommendations.append(BiomassRouteRecommendation("direct", min(100.0, score), "; ".join(reasons) or "baseline"))

    score = 50.0
    reasons = []
    if 30 <= daily <= 150:
        score += 20
        reasons.append("feedstock volume matches gasifier sizes")
    elif daily < 30:
        score += 15
    else:
        score += 10
    if comp.moisture < 20:
        score += 15
        reasons.append("dry feedstock")
    elif comp.moisture < 30:
        score += 10
    if comp.volatiles > 60:
        score += 15
        reasons.append("high volatile content")
    elif comp.volatiles > 50:
        score += 10
    else:
        score += 5
    recommendations.append(
        BiomassRouteRecommendation("gasification", min(100.0, score), "; ".join(reasons) or "baseline")
    )

    score = 50.0
    reasons = []
    if daily >= 50:
        score += 20
        reasons.append("steady digester loading")
    elif daily >= 30:
        score += 15
    else:
        score += 10
    if comp.moisture > 35:
        score += 15
        reasons.append("wet feedstock favours digestion")
    elif comp.moisture > 25:
        score += 10
    else:
        score += 5
    if 20 <= comp.cn_ratio <= 30:
        score += 15
        reasons.append("C/N ratio in optimal range")
    elif 15 <= comp.cn_ratio <= 40:
        score += 10
    else:
        score += 5
    recommendations.append(BiomassRouteRecommendation("biogas", min(100.0, score), "; ".join(reasons) or "baseline"))

    # Stable sort keeps the direct > gasification > biogas order on ties.
    return sorted(recommendations, key=lambda rec: rec.score, reverse=True)


def route_fit(region: Region, route: str) -> float:
    """Return the 0..1 suitability of ``route`` for the region's feedstock."""

    for rec in recommend_biomass_routes(region):
        if rec.route == route:
            return rec.score / 100.0
    raise ConfigurationError(f"Unknown biomass route '{route}'.")

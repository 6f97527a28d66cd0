"""Shared run-state, errors and result types for the capacity search.

All run state travels through an explicit :class:`SearchContext`; nothing
in the search reads module-level "current run" globals.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
import threading
from typing import Any, Callable, Iterable, Sequence

import pandas as pd

from services.dispatch_simulation import CapacityCandidate, DispatchConfig, SimulationResult, simulate_candidate
from services.equipment_selection import (
    EquipmentConfig,
    ModelChoice,
    preferred_battery_models,
    select_biomass_equipment,
    select_equipment,
)
from services.power_curves import sustained_biomass_mw
from services.scoring import MatchingInputs, Score, ScoringPolicy, score_candidate
from utils.catalog import ConfigurationError, EquipmentCatalog, SolarPanelSpec, WindTurbineSpec
from utils.economics import UnitCostRates, estimate_candidate_cost, levelized_cost_of_energy, unit_cost_rates
from utils.regions import (
    BIOMASS_ROUTES,
    HOURS_PER_YEAR,
    Region,
    biomass_heat_value,
    max_biomass_power_mw,
    recommend_biomass_routes,
    route_fit,
)
from utils.resources import HourlySeries

__all__ = [
    "CancelToken",
    "CapacityCandidate",
    "ConfigurationError",
    "InfeasibleSearchError",
    "ProgressUpdate",
    "SearchCancelled",
    "SearchContext",
    "Solution",
    "build_search_context",
    "rank_panels",
    "rank_turbines_for_region",
    "solutions_to_frame",
]

SEARCH_PHASES: tuple[str, ...] = ("estimating", "searching", "ranking", "selecting", "done")

NORMALIZED_RESULT_COLUMNS: tuple[str, ...] = (
    "candidate_rank",
    "candidate_index",
    "turbine_id",
    "wind_mw",
    "solar_mw",
    "biomass_mw",
    "battery_mwh",
    "score_total",
    "score_reliability",
    "score_matching",
    "score_economics",
    "score_stability",
    "total_cost",
    "lcoe_cny_per_kwh",
    "reliability_pct",
    "curtailment_rate_pct",
    "shortage_hours",
    "energy_ratio_wind",
    "energy_ratio_solar",
    "energy_ratio_bio",
    "energy_ratio_total",
    "feasible",
    "issue_count",
)


class InfeasibleSearchError(RuntimeError):
    """No candidate met the feasibility threshold after the full enumeration."""

    def __init__(self, message: str, *, evaluated: int = 0, failed: int = 0, pruned: int = 0) -> None:
        super().__init__(message)
        self.evaluated = evaluated
        self.failed = failed
        self.pruned = pruned


class SearchCancelled(Exception):
    """Cooperative cancellation; carries the best-first solutions committed so far."""

    def __init__(self, solutions: Iterable["Solution"] = ()) -> None:
        self.solutions = list(solutions)
        super().__init__(f"Search cancelled with {len(self.solutions)} partial solution(s).")


class CancelToken:
    """Thread-safe flag polled by the search between candidates."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class ProgressUpdate:
    current: int
    total: int
    phase: str
    feasible_count: int
    best_cost_so_far: float | None

    def __post_init__(self) -> None:
        if self.phase not in SEARCH_PHASES:
            raise ValueError(f"Unknown search phase '{self.phase}'.")

    @property
    def fraction(self) -> float:
        return self.current / self.total if self.total > 0 else 1.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "total": self.total,
            "phase": self.phase,
            "fraction": self.fraction,
            "feasible_count": self.feasible_count,
            "best_cost_so_far": self.best_cost_so_far,
        }


ProgressSink = Callable[[ProgressUpdate], None]


@dataclass(frozen=True)
class SearchContext:
    """Inputs required to simulate, price and score candidates for one region.

    ``simulate_fn`` replaces the dispatch simulation for tests and callers
    that precompute results; it receives the candidate and this context.
    """

    region: Region
    series: HourlySeries
    catalog: EquipmentCatalog
    choice: ModelChoice
    turbine: WindTurbineSpec
    panel: SolarPanelSpec
    sustained_biomass_mw: float
    rates: UnitCostRates
    route_fit: float = 1.0
    biomass_chain_complete: bool = True
    cfg: DispatchConfig = field(default_factory=DispatchConfig)
    policy: ScoringPolicy = field(default_factory=ScoringPolicy)
    simulate_fn: Callable[[CapacityCandidate, "SearchContext"], SimulationResult] | None = None

    def simulate(self, candidate: CapacityCandidate, need_logs: bool = False) -> SimulationResult:
        if self.simulate_fn is not None:
            return self.simulate_fn(candidate, self)
        return simulate_candidate(
            candidate,
            self.series,
            self.turbine,
            self.panel,
            self.sustained_biomass_mw,
            self.cfg,
            need_logs=need_logs,
        )

    def estimate_cost(self, candidate: CapacityCandidate) -> float:
        return estimate_candidate_cost(
            candidate.wind_mw,
            candidate.solar_mw,
            candidate.biomass_mw,
            candidate.battery_mwh,
            self.rates,
            inverter_load_ratio=self.choice.inverter_load_ratio,
            pcs_discharge_hours=self.choice.pcs_discharge_hours,
        )

    def matching_inputs(
        self,
        candidate: CapacityCandidate,
        equipment: EquipmentConfig | None = None,
    ) -> MatchingInputs:
        """Matching facts from realized equipment, or from the model choice before selection."""

        if equipment is not None:
            dc_ac = equipment.dc_ac_ratio if candidate.solar_mw > 0 else None
            chain_complete = equipment.biomass.complete
        else:
            dc_ac = self.choice.inverter_load_ratio if candidate.solar_mw > 0 else None
            chain_complete = self.biomass_chain_complete
        return MatchingInputs(
            avg_wind_speed=self.region.avg_wind_speed,
            turbine_cut_in=self.turbine.cut_in_speed if candidate.wind_mw > 0 else None,
            dc_ac_ratio=dc_ac,
            battery_mwh=candidate.battery_mwh,
            avg_load_mw=self.region.avg_load_mw,
            biomass_mw=candidate.biomass_mw,
            biomass_route=self.choice.biomass_route,
            route_fit=self.route_fit,
            biomass_chain_complete=chain_complete,
        )

    def score(
        self,
        candidate: CapacityCandidate,
        simulation: SimulationResult,
        total_cost: float,
        reference_cost: float,
        equipment: EquipmentConfig | None = None,
    ) -> Score:
        return score_candidate(
            candidate,
            simulation,
            total_cost,
            reference_cost,
            self.matching_inputs(candidate, equipment),
            peak_load_mw=self.region.peak_load_mw,
            policy=self.policy,
            ratio_constraints=self.region.ratio_constraints,
        )

    def with_turbine(self, turbine_id: str) -> "SearchContext":
        turbine = self.catalog.wind_turbine(turbine_id)
        choice = replace(self.choice, turbine_id=turbine.id)
        rates = replace(self.rates, wind_per_kw=turbine.price_per_kw)
        return replace(self, choice=choice, turbine=turbine, rates=rates)

    def materialize(
        self,
        candidate: CapacityCandidate,
        simulation: SimulationResult,
        index: int = -1,
    ) -> "Solution":
        """Select catalog equipment for a retained candidate; scoring happens afterwards."""

        equipment = select_equipment(candidate, self.catalog, self.choice)
        return Solution(
            candidate=candidate,
            equipment=equipment,
            simulation=simulation,
            score=None,
            total_cost=equipment.total_price,
            turbine_id=self.turbine.id,
            candidate_index=index,
        )


@dataclass(frozen=True)
class Solution:
    """A retained candidate with its equipment, simulation, score and realized cost (10k CNY)."""

    candidate: CapacityCandidate
    equipment: EquipmentConfig
    simulation: SimulationResult
    score: Score | None
    total_cost: float
    turbine_id: str = ""
    candidate_index: int = -1

    @property
    def lcoe(self) -> float:
        """CNY/kWh over the energy actually delivered to load."""

        delivered = self.simulation.total_load_mwh - self.simulation.unmet_load_mwh
        return levelized_cost_of_energy(self.total_cost, max(0.0, delivered))

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidate": self.candidate.to_dict(),
            "turbine_id": self.turbine_id,
            "candidate_index": self.candidate_index,
            "equipment": self.equipment.to_dict(),
            "simulation": self.simulation.to_dict(),
            "score": self.score.to_dict() if self.score is not None else None,
            "total_cost": self.total_cost,
            "lcoe_cny_per_kwh": self.lcoe,
        }


def rank_turbines_for_region(region: Region, catalog: EquipmentCatalog) -> list[WindTurbineSpec]:
    """Turbines whose cut-in is below the regional average wind, best fit first.

    Falls back to the first catalog turbine when none qualifies so zero-wind
    regions still have a model to size against.
    """

    if not catalog.wind_turbines:
        raise ConfigurationError("The equipment catalog has no wind turbines.")
    avg = region.avg_wind_speed
    available = [t for t in catalog.wind_turbines if t.cut_in_speed < avg] or [catalog.wind_turbines[0]]

    def _score(turbine: WindTurbineSpec) -> int:
        margin = avg - turbine.cut_in_speed
        score = 30 if margin >= 2 else 20 if margin >= 1 else 10
        rated_diff = abs(turbine.rated_speed - avg * 1.5)
        score += 40 if rated_diff <= 2 else 25 if rated_diff <= 4 else 10
        score += 30 if turbine.price_per_kw <= 0.35 else 20 if turbine.price_per_kw <= 0.45 else 10
        return score

    return sorted(available, key=_score, reverse=True)


def rank_panels(catalog: EquipmentCatalog) -> list[SolarPanelSpec]:
    """Panels ordered by efficiency class then price per watt."""

    if not catalog.solar_panels:
        raise ConfigurationError("The equipment catalog has no solar panels.")

    def _score(panel: SolarPanelSpec) -> int:
        score = 40 if panel.efficiency_pct >= 22 else 30 if panel.efficiency_pct >= 21 else 20
        score += 30 if panel.price_per_watt <= 1.6 else 20 if panel.price_per_watt <= 2.0 else 10
        return score

    return sorted(catalog.solar_panels, key=_score, reverse=True)


def build_search_context(
    region: Region,
    series: HourlySeries,
    catalog: EquipmentCatalog,
    *,
    turbine_id: str | None = None,
    panel_id: str | None = None,
    biomass_route: str | None = None,
    inverter_load_ratio: float = 1.1,
    pcs_discharge_hours: float = 3.0,
    cfg: DispatchConfig | None = None,
    policy: ScoringPolicy | None = None,
    simulate_fn: Callable[[CapacityCandidate, SearchContext], SimulationResult] | None = None,
) -> SearchContext:
    """Resolve model ids against the catalog and precompute per-run constants.

    Every referenced id is looked up here so an unknown model raises
    :class:`ConfigurationError` before any candidate is enumerated.
    """

    turbine = catalog.wind_turbine(turbine_id) if turbine_id else rank_turbines_for_region(region, catalog)[0]
    panel = catalog.solar_panel(panel_id) if panel_id else rank_panels(catalog)[0]
    route = biomass_route or recommend_biomass_routes(region)[0].route
    if route not in BIOMASS_ROUTES:
        raise ConfigurationError(f"Unknown biomass route '{route}'.")
    if not catalog.inverters or not catalog.batteries or not catalog.pcs_units:
        raise ConfigurationError("The equipment catalog needs inverters, batteries and PCS units.")

    cfg = cfg or DispatchConfig()
    if len(series) != HOURS_PER_YEAR:
        raise ValueError(f"Hourly series has {len(series)} steps; expected {HOURS_PER_YEAR}.")
    if float(series.biomass_flow_tph.sum()) > 0:
        sustained = sustained_biomass_mw(series.biomass_flow_tph, biomass_heat_value(region.biomass), route)
    else:
        sustained = max_biomass_power_mw(region, route)

    choice = ModelChoice(
        turbine_id=turbine.id,
        panel_id=panel.id,
        biomass_route=route,
        inverter_load_ratio=inverter_load_ratio,
        pcs_discharge_hours=pcs_discharge_hours,
    )
    return SearchContext(
        region=region,
        series=series,
        catalog=catalog,
        choice=choice,
        turbine=turbine,
        panel=panel,
        sustained_biomass_mw=sustained,
        rates=unit_cost_rates(catalog, turbine, panel, preferred_battery_models(catalog.batteries), route),
        route_fit=route_fit(region, route),
        biomass_chain_complete=select_biomass_equipment(1.0, route, catalog).complete,
        cfg=cfg,
        policy=policy or ScoringPolicy(),
        simulate_fn=simulate_fn,
    )


def solutions_to_frame(solutions: Sequence[Solution]) -> tuple[pd.DataFrame, list[dict[str, Any]]]:
    """Flatten ranked solutions into the normalized results table and records."""

    rows: list[dict[str, Any]] = []
    for solution in solutions:
        sim = solution.simulation
        score = solution.score
        rows.append(
            {
                "candidate_rank": -1,
                "candidate_index": solution.candidate_index,
                "turbine_id": solution.turbine_id,
                "wind_mw": solution.candidate.wind_mw,
                "solar_mw": solution.candidate.solar_mw,
                "biomass_mw": solution.candidate.biomass_mw,
                "battery_mwh": solution.candidate.battery_mwh,
                "score_total": score.total if score else 0.0,
                "score_reliability": score.reliability if score else 0.0,
                "score_matching": score.matching if score else 0.0,
                "score_economics": score.economics if score else 0.0,
                "score_stability": score.stability if score else 0.0,
                "total_cost": float(solution.total_cost),
                "lcoe_cny_per_kwh": float(solution.lcoe),
                "reliability_pct": float(sim.reliability_pct),
                "curtailment_rate_pct": float(sim.curtailment_rate_pct),
                "shortage_hours": int(sim.shortage_hours),
                "energy_ratio_wind": float(sim.energy_ratio.wind),
                "energy_ratio_solar": float(sim.energy_ratio.solar),
                "energy_ratio_bio": float(sim.energy_ratio.bio),
                "energy_ratio_total": float(sim.energy_ratio.total),
                "feasible": bool(sim.feasible),
                "issue_count": len(score.issues) if score else 0,
            }
        )

    results_df = pd.DataFrame(rows)
    if results_df.empty:
        return pd.DataFrame(columns=NORMALIZED_RESULT_COLUMNS), []

    results_df = results_df.sort_values(
        by=["score_total", "total_cost", "candidate_index"],
        ascending=[False, True, True],
        kind="mergesort",
    ).reset_index(drop=True)
    results_df["candidate_rank"] = range(1, len(results_df) + 1)
    results_df = results_df.loc[:, list(NORMALIZED_RESULT_COLUMNS)]
    return results_df, results_df.to_dict(orient="records")

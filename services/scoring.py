"""Composite 100-point scoring of simulated capacity candidates.

The score is the sum of four capped subtotals:

- reliability (0-30): step function of energy-based reliability;
- matching (0-20): equipment fit to the site (cut-in vs wind, DC/AC ratio,
  battery duration, biomass route);
- economics (0-30): step function of cost relative to a reference cost;
- stability (0-20): reserve margin, storage utilization and source diversity.

Out-of-band values add readable issues but never disqualify a candidate.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import math
from typing import Any, Dict, List, Optional, Tuple

from services.dispatch_simulation import CapacityCandidate, SimulationResult
from utils.flags import format_issue
from utils.regions import EnergyRatioConstraints


@dataclass(frozen=True)
class ScoringPolicy:
    """Every scoring threshold in one overridable place.

    Step tables are ``(threshold, points)`` pairs walked in order; the first
    matching threshold wins. Reliability thresholds are percentages.
    """

    reliability_steps: Tuple[Tuple[float, float], ...] = (
        (99.9, 30.0),
        (99.5, 26.0),
        (99.0, 22.0),
        (98.0, 18.0),
    )
    reliability_floor_pct: float = 90.0
    cost_ratio_steps: Tuple[Tuple[float, float], ...] = (
        (1.0, 30.0),
        (1.1, 25.0),
        (1.2, 20.0),
        (1.5, 15.0),
    )
    cost_ratio_zero: float = 3.0
    reference_cost: Optional[float] = None

    cut_in_margin_ms: float = 1.0
    inverter_ratio_band: Tuple[float, float] = (1.0, 1.1)
    inverter_ratio_tolerance: Tuple[float, float] = (0.8, 1.2)
    inverter_ratio_center: float = 1.05
    battery_duration_band: Tuple[float, float] = (2.0, 4.0)
    route_fit_issue_below: float = 0.6

    reserve_band: Tuple[float, float] = (0.15, 0.25)
    reserve_tolerance: Tuple[float, float] = (0.10, 0.35)
    reserve_center: float = 0.20
    utilization_band: Tuple[float, float] = (0.6, 0.8)
    utilization_tolerance: Tuple[float, float] = (0.4, 0.9)
    utilization_center: float = 0.7
    diversity_sigma_max: float = 0.3

    issue_reliability_pct: float = 99.0
    issue_curtailment_pct: float = 15.0
    issue_cost_ratio: float = 1.1

    def __post_init__(self) -> None:
        for name in ("reliability_steps", "cost_ratio_steps"):
            steps = getattr(self, name)
            if not steps:
                raise ValueError(f"{name} must not be empty.")
        if self.reliability_floor_pct >= self.reliability_steps[-1][0]:
            raise ValueError("reliability_floor_pct must be below the last reliability step.")
        if self.cost_ratio_zero <= self.cost_ratio_steps[-1][0]:
            raise ValueError("cost_ratio_zero must exceed the last cost-ratio step.")
        if self.reference_cost is not None and self.reference_cost < 0:
            raise ValueError("reference_cost must be non-negative.")

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ScoringPolicy":
        values: Dict[str, Any] = {}
        for key, value in payload.items():
            if key not in cls.__dataclass_fields__:
                raise ValueError(f"Unknown scoring policy field '{key}'.")
            if isinstance(value, list):
                value = tuple(tuple(item) if isinstance(item, list) else item for item in value)
            values[key] = value
        return cls(**values)


@dataclass(frozen=True)
class MatchingInputs:
    """Site and equipment facts consumed by the matching subtotal.

    ``turbine_cut_in`` is ``None`` when no wind is installed and
    ``dc_ac_ratio`` is ``None`` when no solar is installed.
    """

    avg_wind_speed: float
    turbine_cut_in: Optional[float]
    dc_ac_ratio: Optional[float]
    battery_mwh: float
    avg_load_mw: float
    biomass_mw: float
    biomass_route: str = "direct"
    route_fit: float = 1.0
    biomass_chain_complete: bool = True


@dataclass(frozen=True)
class Score:
    total: float
    reliability: float
    matching: float
    economics: float
    stability: float
    issues: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "reliability": self.reliability,
            "matching": self.matching,
            "economics": self.economics,
            "stability": self.stability,
            "issues": list(self.issues),
        }


def _band_score(
    value: float,
    points: float,
    band: Tuple[float, float],
    tolerance: Tuple[float, float],
    center: float,
) -> float:
    """Full points inside ``band``, linear falloff from ``center`` inside ``tolerance``, half outside."""

    if band[0] <= value <= band[1]:
        return points
    if tolerance[0] <= value <= tolerance[1]:
        half_width = max(center - tolerance[0], tolerance[1] - center)
        return points * max(0.0, 1.0 - abs(value - center) / half_width)
    return points / 2.0


def reliability_score(reliability_pct: float, policy: ScoringPolicy) -> float:
    for threshold, points in policy.reliability_steps:
        if reliability_pct >= threshold:
            return points
    last_threshold, last_points = policy.reliability_steps[-1]
    span = last_threshold - policy.reliability_floor_pct
    return last_points * max(0.0, (reliability_pct - policy.reliability_floor_pct) / span)


def cost_ratio(total_cost: float, reference_cost: float) -> float:
    """``total_cost / reference_cost``; a non-positive reference counts as parity."""

    if reference_cost <= 0 or not math.isfinite(reference_cost):
        return 1.0
    return max(0.0, total_cost) / reference_cost


def economics_score(ratio: float, policy: ScoringPolicy) -> float:
    for threshold, points in policy.cost_ratio_steps:
        if ratio <= threshold:
            return points
    last_threshold, last_points = policy.cost_ratio_steps[-1]
    span = policy.cost_ratio_zero - last_threshold
    return last_points * max(0.0, (policy.cost_ratio_zero - ratio) / span)


def matching_score(inputs: MatchingInputs, policy: ScoringPolicy) -> Tuple[float, List[str]]:
    """Four sub-scores of up to 5 points each."""

    issues: List[str] = []

    if inputs.turbine_cut_in is None:
        s_wind = 5.0
    elif inputs.avg_wind_speed >= inputs.turbine_cut_in + policy.cut_in_margin_ms:
        s_wind = 5.0
    elif inputs.avg_wind_speed >= inputs.turbine_cut_in:
        s_wind = 3.0
    else:
        s_wind = 0.0
        issues.append(format_issue("cut_in_mismatch", cut_in=inputs.turbine_cut_in, avg=inputs.avg_wind_speed))

    if inputs.dc_ac_ratio is None:
        s_inv = 5.0
    else:
        k = inputs.dc_ac_ratio
        s_inv = _band_score(
            k, 5.0, policy.inverter_ratio_band, policy.inverter_ratio_tolerance, policy.inverter_ratio_center
        )
        if not policy.inverter_ratio_tolerance[0] <= k <= policy.inverter_ratio_tolerance[1]:
            low, high = policy.inverter_ratio_tolerance
            issues.append(format_issue("inverter_ratio", value=k, low=low, high=high))

    low_h, high_h = policy.battery_duration_band
    if inputs.battery_mwh <= 0 or inputs.avg_load_mw <= 0:
        s_ess = 5.0
    else:
        duration = inputs.battery_mwh / inputs.avg_load_mw
        if low_h <= duration <= high_h:
            s_ess = 5.0
        else:
            if duration < low_h:
                s_ess = 5.0 * duration / low_h
            else:
                s_ess = 5.0 * max(0.0, 1.0 - (duration - high_h) / high_h)
            issues.append(format_issue("battery_duration", value=duration, low=low_h, high=high_h))

    if inputs.biomass_mw <= 0:
        s_bio = 5.0
    else:
        s_bio = 5.0 * min(1.0, max(0.0, inputs.route_fit))
        if inputs.route_fit < policy.route_fit_issue_below:
            issues.append(format_issue("biomass_route", route=inputs.biomass_route))
        if not inputs.biomass_chain_complete:
            issues.append(format_issue("biomass_chain", route=inputs.biomass_route))

    return min(20.0, s_wind + s_inv + s_ess + s_bio), issues


def stability_score(
    candidate: CapacityCandidate,
    simulation: SimulationResult,
    peak_load_mw: float,
    policy: ScoringPolicy,
) -> Tuple[float, List[str]]:
    issues: List[str] = []

    installed = candidate.wind_mw + candidate.solar_mw + candidate.biomass_mw
    reserve = (installed - peak_load_mw) / peak_load_mw if peak_load_mw > 0 else 0.0
    s_reserve = _band_score(reserve, 8.0, policy.reserve_band, policy.reserve_tolerance, policy.reserve_center)
    if not policy.reserve_tolerance[0] <= reserve <= policy.reserve_tolerance[1]:
        issues.append(
            format_issue(
                "reserve_margin",
                value=reserve * 100.0,
                low=policy.reserve_band[0] * 100.0,
                high=policy.reserve_band[1] * 100.0,
            )
        )

    capacity = simulation.battery_capacity_mwh
    if capacity > 0:
        utilization = min(2.0, simulation.battery_discharge_mwh / (capacity * 365.0))
        s_ess = _band_score(
            utilization, 7.0, policy.utilization_band, policy.utilization_tolerance, policy.utilization_center
        )
    else:
        s_ess = 3.5

    ratio = simulation.energy_ratio
    values = (ratio.wind, ratio.solar, ratio.bio)
    mean = sum(values) / 3.0
    sigma = math.sqrt(sum((v - mean) ** 2 for v in values) / 3.0)
    s_div = 5.0 * max(0.0, 1.0 - sigma / policy.diversity_sigma_max)

    return min(20.0, s_reserve + s_ess + s_div), issues


def score_candidate(
    candidate: CapacityCandidate,
    simulation: SimulationResult,
    total_cost: float,
    reference_cost: float,
    matching: MatchingInputs,
    peak_load_mw: float,
    policy: Optional[ScoringPolicy] = None,
    ratio_constraints: Optional[EnergyRatioConstraints] = None,
) -> Score:
    """Score one simulated candidate; ``total`` is always the sum of the subtotals."""

    policy = policy or ScoringPolicy()
    issues: List[str] = []

    rel_pct = simulation.reliability_pct
    s_rel = reliability_score(rel_pct, policy)
    if rel_pct < policy.issue_reliability_pct:
        issues.append(format_issue("low_reliability", value=rel_pct, threshold=policy.issue_reliability_pct))

    s_match, match_issues = matching_score(matching, policy)
    issues.extend(match_issues)

    ratio = cost_ratio(total_cost, reference_cost)
    s_econ = economics_score(ratio, policy)
    if ratio > policy.issue_cost_ratio:
        issues.append(format_issue("high_cost", value=ratio))

    s_stab, stab_issues = stability_score(candidate, simulation, peak_load_mw, policy)
    issues.extend(stab_issues)
    if simulation.curtailment_rate_pct > policy.issue_curtailment_pct:
        issues.append(
            format_issue(
                "high_curtailment", value=simulation.curtailment_rate_pct, threshold=policy.issue_curtailment_pct
            )
        )

    if ratio_constraints is not None:
        er = simulation.energy_ratio
        issues.extend(ratio_constraints.violations(er.wind, er.solar, er.bio))

    subtotals = (s_rel, s_match, s_econ, s_stab)
    subtotals = tuple(round(value, 4) for value in subtotals)
    return Score(
        total=round(sum(subtotals), 4),
        reliability=subtotals[0],
        matching=subtotals[1],
        economics=subtotals[2],
        stability=subtotals[3],
        issues=tuple(issues),
    )

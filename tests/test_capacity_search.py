from __future__ import annotations

import numpy as np
import pytest

from services.analysis_common import (
    NORMALIZED_RESULT_COLUMNS,
    CancelToken,
    InfeasibleSearchError,
    ProgressUpdate,
    SearchCancelled,
    SearchContext,
    build_search_context,
)
from services.capacity_search import (
    CapacitySearchRequest,
    TopKCollection,
    _Entry,
    run_capacity_search,
    search,
)
from services.dispatch_simulation import CapacityCandidate, EnergyRatio, SimulationResult
from services.range_estimation import CapacityRange, SearchRanges
from services.scoring import Score, ScoringPolicy
from utils.catalog import ConfigurationError, default_catalog
from utils.regions import Region
from utils.resources import HourlySeries


def _flat_series(wind_speed: float = 8.0, irradiance: float = 0.5, load_mw: float = 10.0) -> HourlySeries:
    n = 8760
    return HourlySeries(
        wind_speed=np.full(n, wind_speed),
        irradiance=np.full(n, irradiance),
        temperature=np.full(n, 25.0),
        load_mw=np.full(n, load_mw),
        biomass_flow_tph=np.zeros(n),
    )


def _small_ranges() -> SearchRanges:
    return SearchRanges(
        wind=CapacityRange(0.0, 20.0, 10.0, 10.0),
        solar=CapacityRange(0.0, 20.0, 10.0, 10.0),
        biomass=CapacityRange(0.0, 0.0, 1.0, 0.0),
        battery=CapacityRange(20.0, 40.0, 20.0, 20.0),
    )


def _stub_result(candidate: CapacityCandidate, reliability: float) -> SimulationResult:
    load = 1000.0
    generation = (candidate.wind_mw + candidate.solar_mw) * 50.0
    return SimulationResult(
        reliability=reliability,
        curtailment_rate=0.0,
        total_generation_mwh=generation,
        total_load_mwh=load,
        wind_generation_mwh=candidate.wind_mw * 50.0,
        solar_generation_mwh=candidate.solar_mw * 50.0,
        biomass_generation_mwh=0.0,
        energy_ratio=EnergyRatio(candidate.wind_mw * 50.0 / load, candidate.solar_mw * 50.0 / load, 0.0),
        shortage_hours=0,
        unmet_load_mwh=(1.0 - reliability) * load,
        curtailed_mwh=0.0,
        battery_charge_mwh=0.0,
        battery_discharge_mwh=0.0,
        battery_capacity_mwh=candidate.battery_mwh,
        min_soc_mwh=0.0,
        max_soc_mwh=0.0,
        feasible=reliability >= 0.98,
    )


def _capacity_driven(candidate: CapacityCandidate, context: SearchContext) -> SimulationResult:
    supplied = (candidate.wind_mw + candidate.solar_mw) / 30.0 + candidate.battery_mwh / 1000.0
    return _stub_result(candidate, min(1.0, supplied))


def _always_short(candidate: CapacityCandidate, context: SearchContext) -> SimulationResult:
    return _stub_result(candidate, 0.5)


def _context(simulate_fn=_capacity_driven, **kwargs) -> SearchContext:
    return build_search_context(
        Region.from_type("test"),
        _flat_series(),
        default_catalog(),
        turbine_id="WT-3000",
        panel_id="PV-550M",
        biomass_route="direct",
        simulate_fn=simulate_fn,
        **kwargs,
    )


def _ordering_key(solution) -> tuple:
    return (-solution.score.total, solution.total_cost, solution.candidate_index)


def test_search_ranks_feasible_candidates_best_first() -> None:
    response = run_capacity_search(CapacitySearchRequest(ranges=_small_ranges(), top_k=5), _context())

    assert response.total_candidates == 18
    assert response.evaluated_candidates == 18
    # Only wind + solar >= 30 MW reaches the threshold, at both storage sizes.
    assert response.feasible_candidates == 6
    assert len(response.solutions) == 5
    keys = [_ordering_key(s) for s in response.solutions]
    assert keys == sorted(keys)
    for solution in response.solutions:
        assert solution.simulation.reliability >= 0.98
        assert solution.total_cost == pytest.approx(solution.equipment.total_price)
        assert solution.score is not None


def test_results_frame_uses_normalized_columns() -> None:
    response = run_capacity_search(CapacitySearchRequest(ranges=_small_ranges(), top_k=3), _context())

    assert list(response.results_df.columns) == list(NORMALIZED_RESULT_COLUMNS)
    assert response.results_df["candidate_rank"].tolist() == [1, 2, 3]
    assert response.records[0]["candidate_index"] == response.solutions[0].candidate_index


def test_search_is_idempotent() -> None:
    request = CapacitySearchRequest(ranges=_small_ranges(), top_k=4)

    first = run_capacity_search(request, _context())
    second = run_capacity_search(request, _context())

    assert first.records == second.records


def test_partitioned_search_matches_sequential() -> None:
    sequential = run_capacity_search(CapacitySearchRequest(ranges=_small_ranges(), top_k=6), _context())
    parallel = run_capacity_search(
        CapacitySearchRequest(ranges=_small_ranges(), top_k=6, partitions=3, max_workers=3), _context()
    )

    assert [s.candidate for s in parallel.solutions] == [s.candidate for s in sequential.solutions]
    assert parallel.records == sequential.records
    assert parallel.feasible_candidates == sequential.feasible_candidates


def test_no_feasible_candidate_raises_with_counts() -> None:
    with pytest.raises(InfeasibleSearchError) as excinfo:
        run_capacity_search(CapacitySearchRequest(ranges=_small_ranges()), _context(_always_short))

    assert excinfo.value.evaluated == 18
    assert excinfo.value.failed == 0


def test_failing_candidates_are_counted_and_skipped() -> None:
    def flaky(candidate: CapacityCandidate, context: SearchContext) -> SimulationResult:
        if candidate.wind_mw == 10.0 and candidate.solar_mw == 10.0:
            raise RuntimeError("solver blew up")
        return _capacity_driven(candidate, context)

    response = run_capacity_search(CapacitySearchRequest(ranges=_small_ranges(), top_k=20), _context(flaky))

    assert response.failed_candidates == 2
    assert response.evaluated_candidates == 16
    assert all(
        not (s.candidate.wind_mw == 10.0 and s.candidate.solar_mw == 10.0) for s in response.solutions
    )


def test_cancellation_returns_partial_results() -> None:
    token = CancelToken()

    def sink(update: ProgressUpdate) -> None:
        if update.phase == "searching" and update.current >= 5:
            token.cancel()

    request = CapacitySearchRequest(ranges=_small_ranges(), progress_interval=1)
    response = run_capacity_search(request, _context(), progress_sink=sink, cancel_token=token)

    assert response.cancelled
    assert response.evaluated_candidates + response.failed_candidates == 5


def test_search_raises_cancelled_when_requested() -> None:
    token = CancelToken()
    token.cancel()

    with pytest.raises(SearchCancelled) as excinfo:
        search(
            Region.from_type("test"),
            cancel_token=token,
            series=_flat_series(),
            request=CapacitySearchRequest(ranges=_small_ranges()),
            raise_on_cancel=True,
        )

    assert excinfo.value.solutions == []


def test_progress_reports_every_phase() -> None:
    updates: list[ProgressUpdate] = []

    run_capacity_search(CapacitySearchRequest(ranges=_small_ranges()), _context(), progress_sink=updates.append)

    phases = [u.phase for u in updates]
    assert phases[0] == "estimating"
    assert phases[-1] == "done"
    assert phases.index("ranking") < phases.index("selecting") < phases.index("done")
    searching = [u for u in updates if u.phase == "searching"]
    assert len(searching) == 18
    assert searching[-1].current == searching[-1].total == 18
    assert searching[-1].feasible_count == 6
    assert searching[-1].best_cost_so_far is not None


def test_max_candidates_guard() -> None:
    returned = run_capacity_search(
        CapacitySearchRequest(ranges=_small_ranges(), max_candidates=10, on_max_candidates="return"), _context()
    )
    assert returned.solutions == []
    assert returned.skipped_candidates == 18
    assert returned.results_df.empty

    with pytest.raises(ValueError):
        run_capacity_search(CapacitySearchRequest(ranges=_small_ranges(), max_candidates=10), _context())

    batched = run_capacity_search(
        CapacitySearchRequest(ranges=_small_ranges(), max_candidates=4, on_max_candidates="batch"), _context()
    )
    unbounded = run_capacity_search(CapacitySearchRequest(ranges=_small_ranges()), _context())
    assert batched.records == unbounded.records


def test_ratio_band_pruning_skips_simulation() -> None:
    calls: list[CapacityCandidate] = []

    def counting(candidate: CapacityCandidate, context: SearchContext) -> SimulationResult:
        calls.append(candidate)
        return _capacity_driven(candidate, context)

    # No biomass on the grid, so every candidate misses the biomass band.
    with pytest.raises(InfeasibleSearchError) as excinfo:
        run_capacity_search(
            CapacitySearchRequest(ranges=_small_ranges(), prune_by_ratio_band=True), _context(counting)
        )

    assert excinfo.value.pruned == 18
    assert calls == []


def test_multiple_turbine_models_widen_the_grid() -> None:
    request = CapacitySearchRequest(ranges=_small_ranges(), top_k=50, turbine_model_ids=("WT-1500", "WT-3000"))

    response = run_capacity_search(request, _context())

    assert response.total_candidates == 36
    assert {s.turbine_id for s in response.solutions} == {"WT-1500", "WT-3000"}
    with pytest.raises(ConfigurationError):
        run_capacity_search(CapacitySearchRequest(ranges=_small_ranges(), turbine_model_ids=("WT-x",)), _context())


def test_policy_reference_cost_is_used_for_ranking() -> None:
    context = _context(policy=ScoringPolicy(reference_cost=1e9))

    response = run_capacity_search(CapacitySearchRequest(ranges=_small_ranges()), context)

    assert response.reference_cost == 1e9
    assert all(s.score.economics == 30.0 for s in response.solutions)


def test_request_validation() -> None:
    with pytest.raises(ValueError):
        CapacitySearchRequest(top_k=0)
    with pytest.raises(ValueError):
        CapacitySearchRequest(on_max_candidates="skip")
    with pytest.raises(ValueError):
        CapacitySearchRequest(ranges=SearchRanges(*(CapacityRange(5.0, 1.0, 1.0, 1.0),) * 4))

    request = CapacitySearchRequest.from_dict(
        {"ranges": {axis: {"min": 0, "max": 10, "step": 5} for axis in ("wind", "solar", "biomass", "battery")}}
    )
    assert request.ranges is not None
    assert request.ranges.candidate_count == 81
    assert request.pool_size == 40


def test_top_k_collection_orders_and_bounds() -> None:
    candidate = CapacityCandidate(1.0, 0.0, 0.0, 0.0)
    simulation = _stub_result(candidate, 1.0)

    def entry(total: float, cost: float, index: int) -> _Entry:
        score = Score(total=total, reliability=0.0, matching=0.0, economics=0.0, stability=0.0)
        return _Entry(score, cost, index, 0, candidate, simulation)

    top = TopKCollection(2)
    assert top.offer(entry(50.0, 10.0, 3))
    assert top.offer(entry(50.0, 10.0, 1))
    assert top.offer(entry(60.0, 99.0, 7))
    assert not top.offer(entry(40.0, 1.0, 0))

    assert [(e.score.total, e.index) for e in top.entries()] == [(60.0, 7), (50.0, 1)]
    assert len(top) == 2


def test_real_dispatch_search_on_flat_profile() -> None:
    context = build_search_context(
        Region.from_type("test"),
        _flat_series(),
        default_catalog(),
        turbine_id="WT-3000",
        panel_id="PV-550M",
        biomass_route="direct",
    )
    ranges = SearchRanges(
        wind=CapacityRange(0.0, 40.0, 20.0, 20.0),
        solar=CapacityRange(0.0, 20.0, 20.0, 20.0),
        biomass=CapacityRange(0.0, 0.0, 1.0, 0.0),
        battery=CapacityRange(10.0, 10.0, 1.0, 10.0),
    )

    response = run_capacity_search(CapacitySearchRequest(ranges=ranges, top_k=5), context)

    assert response.feasible_candidates == 3
    assert {(s.candidate.wind_mw, s.candidate.solar_mw) for s in response.solutions} == {
        (20.0, 20.0),
        (40.0, 0.0),
        (40.0, 20.0),
    }
    for solution in response.solutions:
        assert solution.simulation.reliability_pct >= 98.0
        # Fully reliable, so every MWh of the 87600 MWh load is delivered.
        assert solution.lcoe == pytest.approx(solution.total_cost * 1e4 * 0.10 / (87600.0 * 1000.0))
        assert solution.score.total == pytest.approx(
            solution.score.reliability
            + solution.score.matching
            + solution.score.economics
            + solution.score.stability
        )


def test_search_rejects_series_shorter_than_a_year() -> None:
    day = HourlySeries(
        wind_speed=np.full(24, 8.0),
        irradiance=np.full(24, 0.5),
        temperature=np.full(24, 25.0),
        load_mw=np.full(24, 10.0),
        biomass_flow_tph=np.zeros(24),
    )

    with pytest.raises(ValueError):
        search(Region.from_type("test"), series=day, request=CapacitySearchRequest(ranges=_small_ranges()))


def test_progress_update_fraction_and_phase_validation() -> None:
    update = ProgressUpdate(current=9, total=18, phase="searching", feasible_count=3, best_cost_so_far=None)

    assert update.fraction == pytest.approx(0.5)
    assert update.to_dict()["fraction"] == pytest.approx(0.5)
    assert ProgressUpdate(0, 0, "done", 0, None).fraction == 1.0
    with pytest.raises(ValueError):
        ProgressUpdate(current=1, total=2, phase="paused", feasible_count=0, best_cost_so_far=None)

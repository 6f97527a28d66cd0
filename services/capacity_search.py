"""Exhaustive capacity search over wind/solar/biomass/battery grids.

The candidate space is the Cartesian product of the four capacity axes
(optionally crossed with a list of turbine models). Each candidate is
simulated, filtered on the reliability threshold, scored and offered to a
bounded top-K pool. Partitions of the global enumeration run on a thread
pool and are merged on ``(score desc, cost asc, enumeration index asc)``
so the ranked output never depends on which worker produced a candidate.
"""
from __future__ import annotations

import bisect
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
import logging
import threading
from typing import Any, Sequence

import pandas as pd

from services.analysis_common import (
    CancelToken,
    InfeasibleSearchError,
    ProgressSink,
    ProgressUpdate,
    SearchCancelled,
    SearchContext,
    Solution,
    build_search_context,
    solutions_to_frame,
)
from services.dispatch_simulation import CapacityCandidate, DispatchConfig, SimulationResult
from services.range_estimation import CapacityRange, SearchRanges, estimate_search_ranges
from services.scoring import Score, ScoringPolicy
from utils.catalog import EquipmentCatalog, default_catalog
from utils.economics import equivalent_hours_mwh, estimate_biomass_annual_mwh
from utils.regions import Region
from utils.resources import HourlySeries, ResourceProvider

logger = logging.getLogger(__name__)

ON_MAX_CANDIDATES = ("raise", "return", "batch")


@dataclass(frozen=True)
class CapacitySearchRequest:
    """Request payload for one capacity search.

    ``ranges`` defaults to the estimate for the region. ``pool_factor``
    widens the pool kept during enumeration so re-scoring with realized
    equipment cost can still reorder the final ``top_k``.
    """

    ranges: SearchRanges | None = None
    top_k: int = 20
    pool_factor: int = 2
    progress_interval: int | None = None
    max_candidates: int | None = None
    on_max_candidates: str = "raise"
    partitions: int = 1
    max_workers: int | None = None
    prune_by_ratio_band: bool = False
    turbine_model_ids: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.top_k <= 0:
            raise ValueError("top_k must be positive.")
        if self.pool_factor < 1:
            raise ValueError("pool_factor must be at least 1.")
        if self.progress_interval is not None and self.progress_interval <= 0:
            raise ValueError("progress_interval must be positive.")
        if self.on_max_candidates not in ON_MAX_CANDIDATES:
            raise ValueError(f"on_max_candidates must be one of {list(ON_MAX_CANDIDATES)}.")
        if self.partitions <= 0:
            raise ValueError("partitions must be positive.")
        if self.ranges is not None:
            for name in ("wind", "solar", "biomass", "battery"):
                axis = getattr(self.ranges, name)
                if axis.min < 0 or axis.max < axis.min:
                    raise ValueError(f"{name} range must satisfy 0 <= min <= max.")
                if axis.step <= 0 and axis.max > axis.min:
                    raise ValueError(f"{name} range step must be positive.")

    @property
    def pool_size(self) -> int:
        return self.top_k * self.pool_factor

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "CapacitySearchRequest":
        ranges = None
        if payload.get("ranges") is not None:
            raw = payload["ranges"]
            ranges = SearchRanges(
                wind=CapacityRange.from_dict(raw["wind"]),
                solar=CapacityRange.from_dict(raw["solar"]),
                biomass=CapacityRange.from_dict(raw["biomass"]),
                battery=CapacityRange.from_dict(raw["battery"]),
            )
        return cls(
            ranges=ranges,
            top_k=int(payload.get("top_k", 20)),
            pool_factor=int(payload.get("pool_factor", 2)),
            progress_interval=(None if payload.get("progress_interval") is None else int(payload["progress_interval"])),
            max_candidates=(None if payload.get("max_candidates") is None else int(payload["max_candidates"])),
            on_max_candidates=str(payload.get("on_max_candidates", "raise")),
            partitions=int(payload.get("partitions", 1)),
            max_workers=(None if payload.get("max_workers") is None else int(payload["max_workers"])),
            prune_by_ratio_band=bool(payload.get("prune_by_ratio_band", False)),
            turbine_model_ids=tuple(str(v) for v in payload.get("turbine_model_ids", ())),
        )


@dataclass(frozen=True)
class CapacitySearchResponse:
    """Ranked solutions plus the counters of the run."""

    solutions: list[Solution]
    results_df: pd.DataFrame
    records: list[dict[str, Any]]
    total_candidates: int
    evaluated_candidates: int
    feasible_candidates: int
    failed_candidates: int
    pruned_candidates: int
    skipped_candidates: int
    cancelled: bool
    reference_cost: float


@dataclass(frozen=True)
class _Entry:
    score: Score
    cost: float
    index: int
    context_idx: int
    candidate: CapacityCandidate
    simulation: SimulationResult

    @property
    def key(self) -> tuple[float, float, int]:
        return (-self.score.total, self.cost, self.index)


class TopKCollection:
    """Bounded best-first collection ordered by (score desc, cost asc, index asc)."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive.")
        self.capacity = capacity
        self._keys: list[tuple[float, float, int]] = []
        self._entries: list[_Entry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def offer(self, entry: _Entry) -> bool:
        """Insert ``entry`` if it ranks inside the bound; return whether it was kept."""

        key = entry.key
        pos = bisect.bisect_left(self._keys, key)
        if pos >= self.capacity:
            return False
        self._keys.insert(pos, key)
        self._entries.insert(pos, entry)
        if len(self._entries) > self.capacity:
            self._keys.pop()
            self._entries.pop()
        return True

    def merge(self, other: "TopKCollection") -> None:
        for entry in other.entries():
            self.offer(entry)

    def entries(self) -> list[_Entry]:
        return list(self._entries)


@dataclass
class _PartitionOutcome:
    top: TopKCollection
    evaluated: int = 0
    feasible: int = 0
    failed: int = 0
    pruned: int = 0


class _ProgressTracker:
    """Counts finished candidates across workers and emits at a bounded cadence."""

    def __init__(self, total: int, interval: int, sink: ProgressSink | None) -> None:
        self.total = total
        self.interval = max(1, interval)
        self.sink = sink
        self.current = 0
        self.feasible = 0
        self.best_cost: float | None = None
        self._lock = threading.Lock()

    def emit(self, phase: str) -> None:
        with self._lock:
            self._send(phase)

    def advance(self, feasible: bool = False, cost: float | None = None) -> None:
        with self._lock:
            self.current += 1
            if feasible:
                self.feasible += 1
                if cost is not None and (self.best_cost is None or cost < self.best_cost):
                    self.best_cost = cost
            if self.current % self.interval == 0 or self.current == self.total:
                self._send("searching")

    def _send(self, phase: str) -> None:
        if self.sink is None:
            return
        self.sink(
            ProgressUpdate(
                current=self.current,
                total=self.total,
                phase=phase,
                feasible_count=self.feasible,
                best_cost_so_far=self.best_cost,
            )
        )


@dataclass(frozen=True)
class _Grid:
    """Mixed-radix view of the enumeration; index 0 is the first candidate found."""

    axes: tuple[tuple[float, ...], ...]
    context_count: int = 1
    sizes: tuple[int, ...] = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "sizes", (self.context_count,) + tuple(len(axis) for axis in self.axes))

    @property
    def total(self) -> int:
        count = 1
        for size in self.sizes:
            count *= size
        return count

    def decode(self, index: int) -> tuple[int, CapacityCandidate]:
        digits: list[int] = []
        for size in reversed(self.sizes):
            index, digit = divmod(index, size)
            digits.append(digit)
        digits.reverse()
        wind, solar, biomass, battery = (self.axes[pos][digits[pos + 1]] for pos in range(4))
        return digits[0], CapacityCandidate(wind_mw=wind, solar_mw=solar, biomass_mw=biomass, battery_mwh=battery)


def _partition_bounds(total: int, partitions: int) -> list[tuple[int, int]]:
    partitions = max(1, min(partitions, total)) if total else 1
    base, extra = divmod(total, partitions)
    bounds: list[tuple[int, int]] = []
    start = 0
    for idx in range(partitions):
        stop = start + base + (1 if idx < extra else 0)
        bounds.append((start, stop))
        start = stop
    return bounds


def _chunked(bounds: Sequence[tuple[int, int]], chunk_size: int) -> list[tuple[int, int]]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive.")
    chunks: list[tuple[int, int]] = []
    for start, stop in bounds:
        for chunk_start in range(start, stop, chunk_size):
            chunks.append((chunk_start, min(stop, chunk_start + chunk_size)))
    return chunks


def _outside_ratio_band(candidate: CapacityCandidate, context: SearchContext) -> bool:
    """Pre-simulation check of the expected energy mix against the advisory band."""

    region = context.region
    load = region.annual_load_mwh
    if load <= 0:
        return False
    wind = equivalent_hours_mwh(candidate.wind_mw, region.wind_hours) / load
    solar = equivalent_hours_mwh(candidate.solar_mw, region.solar_hours) / load
    firm_mw = min(candidate.biomass_mw, context.sustained_biomass_mw)
    bio = estimate_biomass_annual_mwh(firm_mw, context.cfg.biomass_run_hours) / load
    return bool(region.ratio_constraints.violations(wind, solar, bio))


def _search_partition(
    bounds: tuple[int, int],
    grid: _Grid,
    contexts: Sequence[SearchContext],
    reference_cost: float,
    pool_size: int,
    prune: bool,
    tracker: _ProgressTracker,
    cancel_token: CancelToken | None,
) -> _PartitionOutcome:
    outcome = _PartitionOutcome(top=TopKCollection(pool_size))
    start, stop = bounds
    logger.debug("Searching candidates %s..%s", start, stop)

    for index in range(start, stop):
        if cancel_token is not None and cancel_token.cancelled:
            break
        context_idx, candidate = grid.decode(index)
        context = contexts[context_idx]

        if prune and _outside_ratio_band(candidate, context):
            outcome.pruned += 1
            tracker.advance()
            continue

        try:
            simulation = context.simulate(candidate)
            if not simulation.feasible:
                outcome.evaluated += 1
                tracker.advance()
                continue
            cost = context.estimate_cost(candidate)
            score = context.score(candidate, simulation, cost, reference_cost)
        except Exception:
            logger.warning("Candidate %s (%s) failed; skipping.", index, candidate.to_dict(), exc_info=True)
            outcome.failed += 1
            tracker.advance()
            continue

        outcome.evaluated += 1
        outcome.feasible += 1
        outcome.top.offer(_Entry(score, cost, index, context_idx, candidate, simulation))
        tracker.advance(feasible=True, cost=cost)

    return outcome


def _run_partitions(
    chunks: Sequence[tuple[int, int]],
    request: CapacitySearchRequest,
    **kwargs: Any,
) -> list[_PartitionOutcome]:
    def _evaluate(bounds: tuple[int, int]) -> _PartitionOutcome:
        return _search_partition(bounds, **kwargs)

    if request.partitions <= 1 or len(chunks) <= 1:
        return [_evaluate(bounds) for bounds in chunks]

    outcomes: list[_PartitionOutcome] = []
    with ThreadPoolExecutor(max_workers=request.max_workers) as executor:
        for outcome in executor.map(_evaluate, chunks):
            outcomes.append(outcome)
    return outcomes


def _rescore(entries: Sequence[_Entry], contexts: Sequence[SearchContext], top_k: int) -> list[Solution]:
    """Materialize retained candidates and re-rank them on realized equipment cost."""

    materialized = [
        contexts[entry.context_idx].materialize(entry.candidate, entry.simulation, entry.index) for entry in entries
    ]
    if not materialized:
        return []
    policy_reference = contexts[0].policy.reference_cost
    reference = policy_reference if policy_reference is not None else min(s.total_cost for s in materialized)

    scored: list[Solution] = []
    for entry, solution in zip(entries, materialized):
        context = contexts[entry.context_idx]
        score = context.score(solution.candidate, solution.simulation, solution.total_cost, reference, solution.equipment)
        scored.append(
            Solution(
                candidate=solution.candidate,
                equipment=solution.equipment,
                simulation=solution.simulation,
                score=score,
                total_cost=solution.total_cost,
                turbine_id=solution.turbine_id,
                candidate_index=solution.candidate_index,
            )
        )
    scored.sort(key=lambda s: (-s.score.total, s.total_cost, s.candidate_index))
    return scored[:top_k]


def run_capacity_search(
    request: CapacitySearchRequest,
    context: SearchContext,
    progress_sink: ProgressSink | None = None,
    cancel_token: CancelToken | None = None,
) -> CapacitySearchResponse:
    """Enumerate, simulate, score and rank capacity candidates for one region.

    Cancellation is polled between candidates; a cancelled run returns the
    partial ranking with ``cancelled=True``. A completed run with no feasible
    candidate raises :class:`InfeasibleSearchError`.
    """

    ranges = request.ranges or estimate_search_ranges(context.region, context.choice.biomass_route)
    contexts = [context.with_turbine(model_id) for model_id in request.turbine_model_ids] or [context]
    grid = _Grid(
        axes=(
            tuple(ranges.wind.values()),
            tuple(ranges.solar.values()),
            tuple(ranges.biomass.values()),
            tuple(ranges.battery.values()),
        ),
        context_count=len(contexts),
    )
    total = grid.total
    interval = request.progress_interval or max(1, total // 100)
    tracker = _ProgressTracker(total, interval, progress_sink)
    tracker.emit("estimating")

    if context.policy.reference_cost is not None:
        reference_cost = float(context.policy.reference_cost)
    else:
        reference_cost = context.estimate_cost(ranges.recommended_candidate())

    chunks = _partition_bounds(total, request.partitions)
    if request.max_candidates is not None and total > request.max_candidates:
        if request.on_max_candidates == "return":
            tracker.emit("done")
            empty_df, _ = solutions_to_frame([])
            return CapacitySearchResponse(
                solutions=[],
                results_df=empty_df,
                records=[],
                total_candidates=total,
                evaluated_candidates=0,
                feasible_candidates=0,
                failed_candidates=0,
                pruned_candidates=0,
                skipped_candidates=total,
                cancelled=False,
                reference_cost=reference_cost,
            )
        if request.on_max_candidates != "batch":
            raise ValueError(
                f"Candidate count {total} exceeds max_candidates={request.max_candidates}. "
                "Use on_max_candidates='batch' or 'return' to change behavior."
            )
        logger.warning(
            "Candidate count %s exceeds max_candidates=%s; processing in batches.",
            total,
            request.max_candidates,
        )
        chunks = _chunked(chunks, request.max_candidates)

    logger.info(
        "Capacity search for region '%s': %s candidates in %s chunk(s).", context.region.id, total, len(chunks)
    )
    outcomes = _run_partitions(
        chunks,
        request,
        grid=grid,
        contexts=contexts,
        reference_cost=reference_cost,
        pool_size=request.pool_size,
        prune=request.prune_by_ratio_band,
        tracker=tracker,
        cancel_token=cancel_token,
    )

    tracker.emit("ranking")
    merged = TopKCollection(request.pool_size)
    for outcome in outcomes:
        merged.merge(outcome.top)
    evaluated = sum(o.evaluated for o in outcomes)
    feasible = sum(o.feasible for o in outcomes)
    failed = sum(o.failed for o in outcomes)
    pruned = sum(o.pruned for o in outcomes)
    cancelled = cancel_token is not None and cancel_token.cancelled

    if failed:
        logger.warning("%s candidate(s) failed during the search and were skipped.", failed)
    if feasible == 0 and not cancelled:
        tracker.emit("done")
        raise InfeasibleSearchError(
            f"No candidate reached reliability >= {context.cfg.feasibility_threshold:.1%} "
            f"({evaluated} evaluated, {failed} failed, {pruned} pruned).",
            evaluated=evaluated,
            failed=failed,
            pruned=pruned,
        )

    tracker.emit("selecting")
    solutions = _rescore(merged.entries(), contexts, request.top_k)
    results_df, records = solutions_to_frame(solutions)
    tracker.emit("done")
    logger.info(
        "Capacity search for region '%s' finished: %s feasible of %s evaluated%s.",
        context.region.id,
        feasible,
        evaluated,
        " (cancelled)" if cancelled else "",
    )

    return CapacitySearchResponse(
        solutions=solutions,
        results_df=results_df,
        records=records,
        total_candidates=total,
        evaluated_candidates=evaluated,
        feasible_candidates=feasible,
        failed_candidates=failed,
        pruned_candidates=pruned,
        skipped_candidates=0,
        cancelled=cancelled,
        reference_cost=reference_cost,
    )


def search(
    region: Region,
    progress_sink: ProgressSink | None = None,
    cancel_token: CancelToken | None = None,
    *,
    series: HourlySeries | None = None,
    provider: ResourceProvider | None = None,
    catalog: EquipmentCatalog | None = None,
    request: CapacitySearchRequest | None = None,
    max_solutions: int | None = None,
    cfg: DispatchConfig | None = None,
    policy: ScoringPolicy | None = None,
    turbine_id: str | None = None,
    panel_id: str | None = None,
    biomass_route: str | None = None,
    raise_on_cancel: bool = False,
) -> list[Solution]:
    """Best-first solutions for ``region``, at most ``max_solutions`` long.

    Resource data comes from ``series`` or, failing that, ``provider``.
    """

    if series is None:
        if provider is None:
            raise ValueError("search() needs either a series or a resource provider.")
        series = provider.hourly_series(region)
    request = request or CapacitySearchRequest()
    if max_solutions is not None:
        request = replace(request, top_k=max_solutions)

    context = build_search_context(
        region,
        series,
        catalog or default_catalog(),
        turbine_id=turbine_id,
        panel_id=panel_id,
        biomass_route=biomass_route,
        cfg=cfg,
        policy=policy,
    )
    response = run_capacity_search(request, context, progress_sink, cancel_token)
    if response.cancelled and raise_on_cancel:
        raise SearchCancelled(response.solutions)
    return response.solutions

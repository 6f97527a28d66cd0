from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict
import os
from threading import Lock
from typing import Any, Dict, Iterator, List, Literal, Optional
import uuid

import pandas as pd
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, root_validator, validator

from services.analysis_common import (
    InfeasibleSearchError,
    ProgressUpdate,
    build_search_context,
    rank_turbines_for_region,
)
from services.capacity_search import CapacitySearchRequest, run_capacity_search
from services.dispatch_simulation import CapacityCandidate, DispatchConfig
from services.equipment_selection import ModelChoice, select_equipment, select_turbines_for_energy
from services.range_estimation import SearchRanges, estimate_search_ranges
from services.scoring import ScoringPolicy
from utils.catalog import ConfigurationError, default_catalog
from utils.flags import build_flag_insights
from utils.io import clean_resource_frame
from utils.regions import (
    BIOMASS_ROUTES,
    REGION_TYPES,
    Region,
    get_capacity_ratio,
    get_ratio_constraints,
    max_biomass_power_mw,
    recommend_biomass_routes,
    region_params,
)
from utils.resources import HourlySeries

_DEFAULT_CFG = DispatchConfig()


@contextmanager
def _http_errors() -> Iterator[None]:
    """Map domain errors onto HTTP status codes."""

    try:
        yield
    except ConfigurationError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InfeasibleSearchError as exc:
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(exc),
                "evaluated": exc.evaluated,
                "failed": exc.failed,
                "pruned": exc.pruned,
            },
        ) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


class RegionPayload(BaseModel):
    """Region type plus optional overrides of the base table."""

    region_type: str
    region_id: Optional[str] = None
    name: Optional[str] = None
    annual_load_mwh: Optional[float] = None
    daily_load_mwh: Optional[float] = None
    peak_load_mw: Optional[float] = None
    daily_biomass_t: Optional[float] = None
    avg_wind_speed: Optional[float] = None
    wind_hours: Optional[float] = None
    solar_hours: Optional[float] = None

    @validator("region_type")
    def _validate_region_type(cls, value: str) -> str:
        if value not in REGION_TYPES:
            raise ValueError(f"region_type must be one of {list(REGION_TYPES)}")
        return value

    def to_region(self) -> Region:
        overrides = {
            key: value
            for key, value in self.dict().items()
            if key not in {"region_type", "region_id", "name"} and value is not None
        }
        return Region.from_type(
            self.region_type,
            region_id=self.region_id or "",
            name=self.name or "",
            **overrides,
        )


class ResourceRow(BaseModel):
    hour_index: int
    wind_speed: float
    irradiance: float
    load_mw: float
    temperature: float = 25.0
    biomass_flow_tph: float = 0.0


class DataSource(BaseModel):
    upload_id: Optional[str] = None
    rows: Optional[List[ResourceRow]] = None

    @root_validator(skip_on_failure=True)
    def _at_least_one_source(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        if not values.get("upload_id") and not values.get("rows"):
            raise ValueError("Provide resource rows or an upload_id.")
        return values


class CandidatePayload(BaseModel):
    wind_mw: float = 0.0
    solar_mw: float = 0.0
    biomass_mw: float = 0.0
    battery_mwh: float = 0.0

    @validator("wind_mw", "solar_mw", "biomass_mw", "battery_mwh")
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("capacities must be non-negative")
        return value

    def to_candidate(self) -> CapacityCandidate:
        return CapacityCandidate(self.wind_mw, self.solar_mw, self.biomass_mw, self.battery_mwh)


class DispatchConfigPayload(BaseModel):
    """Pydantic mirror of :class:`DispatchConfig` for FastAPI requests."""

    charge_efficiency: float = _DEFAULT_CFG.charge_efficiency
    discharge_efficiency: float = _DEFAULT_CFG.discharge_efficiency
    c_rate: float = _DEFAULT_CFG.c_rate
    soc_floor: float = _DEFAULT_CFG.soc_floor
    soc_ceiling: float = _DEFAULT_CFG.soc_ceiling
    initial_soc: float = _DEFAULT_CFG.initial_soc
    feasibility_threshold: float = _DEFAULT_CFG.feasibility_threshold
    shortage_tolerance_mwh: float = _DEFAULT_CFG.shortage_tolerance_mwh
    inverter_efficiency: float = _DEFAULT_CFG.inverter_efficiency
    loss_factor: float = _DEFAULT_CFG.loss_factor
    biomass_run_hours: float = _DEFAULT_CFG.biomass_run_hours
    wind_curve: Literal["cubic", "cp_table", "cp_analytic", "cp_simple"] = "cubic"

    @root_validator(skip_on_failure=True)
    def _validate_soc_band(cls, values: Dict[str, Any]) -> Dict[str, Any]:
        floor, ceiling = values.get("soc_floor", 0.0), values.get("soc_ceiling", 1.0)
        if not 0.0 <= floor < ceiling <= 1.0:
            raise ValueError("SOC band must satisfy 0 <= soc_floor < soc_ceiling <= 1.")
        return values

    def build(self) -> DispatchConfig:
        return DispatchConfig(**self.dict())


class ModelChoicePayload(BaseModel):
    turbine_id: Optional[str] = None
    panel_id: Optional[str] = None
    biomass_route: Optional[str] = None
    inverter_load_ratio: float = 1.1
    pcs_discharge_hours: float = 3.0

    @validator("biomass_route")
    def _validate_route(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in BIOMASS_ROUTES:
            raise ValueError(f"biomass_route must be one of {list(BIOMASS_ROUTES)}")
        return value


class SimulateRequest(BaseModel):
    region: RegionPayload
    data: DataSource
    candidate: CandidatePayload
    models: ModelChoicePayload = Field(default_factory=ModelChoicePayload)
    config: DispatchConfigPayload = Field(default_factory=DispatchConfigPayload)
    include_hourly_logs: bool = False


class SelectRequest(BaseModel):
    candidate: CandidatePayload
    models: ModelChoicePayload = Field(default_factory=ModelChoicePayload)
    restrict: Dict[str, List[str]] = Field(default_factory=dict)


class SearchRequest(BaseModel):
    region: RegionPayload
    data: DataSource
    models: ModelChoicePayload = Field(default_factory=ModelChoicePayload)
    config: DispatchConfigPayload = Field(default_factory=DispatchConfigPayload)
    search: Dict[str, Any] = Field(default_factory=dict)
    policy: Dict[str, Any] = Field(default_factory=dict)


class TurbineSizingRequest(BaseModel):
    region: RegionPayload
    wind_ratio: float
    turbine_id: Optional[str] = None

    @validator("wind_ratio")
    def _validate_ratio(cls, value: float) -> float:
        if value < 0:
            raise ValueError("wind_ratio must be non-negative")
        return value


class UploadPayload(BaseModel):
    name: Optional[str] = None
    rows: List[ResourceRow]

    @validator("rows")
    def _require_rows(cls, value: List[ResourceRow]) -> List[ResourceRow]:
        if not value:
            raise ValueError("rows cannot be empty.")
        return value


class UploadStore:
    """In-memory upload cache for cleaned hourly resource frames."""

    def __init__(self) -> None:
        self._frames: Dict[str, pd.DataFrame] = {}
        self._lock = Lock()

    def store(self, df: pd.DataFrame, name: Optional[str] = None) -> str:
        upload_id = name or str(uuid.uuid4())
        with self._lock:
            self._frames[upload_id] = df.copy()
        return upload_id

    def get(self, upload_id: str) -> pd.DataFrame:
        with self._lock:
            if upload_id not in self._frames:
                raise HTTPException(status_code=404, detail=f"Resource upload '{upload_id}' not found.")
            return self._frames[upload_id].copy()


def _rows_to_df(rows: List[ResourceRow]) -> pd.DataFrame:
    df = pd.DataFrame([row.dict() for row in rows])
    try:
        return clean_resource_frame(df)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _resolve_series(data: DataSource, store: UploadStore) -> HourlySeries:
    if data.rows:
        df = _rows_to_df(data.rows)
    elif data.upload_id:
        df = store.get(data.upload_id)
    else:
        raise HTTPException(status_code=400, detail="Resource data not provided.")
    return HourlySeries.from_frame(df)


def _serialize_ranges(ranges: SearchRanges) -> Dict[str, Any]:
    return {
        "wind": asdict(ranges.wind),
        "solar": asdict(ranges.solar),
        "biomass": asdict(ranges.biomass),
        "battery": asdict(ranges.battery),
        "candidate_count": ranges.candidate_count,
    }


uploads = UploadStore()
app = FastAPI(
    title="HybridLab API",
    description="Capacity search and equipment selection for hybrid wind/solar/biomass/storage systems.",
    version="0.1.0",
)


_default_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
_allowed_origins_env = os.getenv("HYBRIDLAB_CORS_ORIGINS", "")
_allowed_origins = [
    origin.strip()
    for origin in _allowed_origins_env.split(",")
    if origin.strip()
] or _default_cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> Dict[str, str]:
    """Simple liveness probe for container orchestrators."""
    return {"status": "ok"}


@app.get("/regions/{region_type}")
def region_info(region_type: str) -> Dict[str, Any]:
    """Base parameters, advisory ratio bands and biomass routes for a region type."""

    with _http_errors():
        region = Region.from_type(region_type)
        constraints = get_ratio_constraints(region_type)
        return {
            "region_type": region_type,
            "base": asdict(region_params(region_type)),
            "annual_load_mwh": region.annual_load_mwh,
            "capacity_ratio": get_capacity_ratio(region_type),
            "ratio_constraints": asdict(constraints),
            "biomass_routes": [asdict(rec) for rec in recommend_biomass_routes(region)],
            "max_biomass_power_mw": {route: max_biomass_power_mw(region, route) for route in BIOMASS_ROUTES},
        }


@app.post("/ranges")
def ranges(payload: RegionPayload, biomass_route: Optional[str] = None) -> Dict[str, Any]:
    """Estimated search ranges for a region."""

    with _http_errors():
        region = payload.to_region()
        route = biomass_route or recommend_biomass_routes(region)[0].route
        return {"biomass_route": route, "ranges": _serialize_ranges(estimate_search_ranges(region, route))}


@app.post("/uploads")
def create_upload(payload: UploadPayload) -> Dict[str, str]:
    """Accept an hourly resource table as JSON and cache it for reuse."""

    upload_id = uploads.store(_rows_to_df(payload.rows), payload.name)
    return {"upload_id": upload_id}


@app.post("/simulate")
def simulate(request: SimulateRequest) -> Dict[str, Any]:
    """Dispatch one capacity tuple over the hourly series and score it against itself."""

    series = _resolve_series(request.data, uploads)
    with _http_errors():
        context = build_search_context(
            request.region.to_region(),
            series,
            default_catalog(),
            turbine_id=request.models.turbine_id,
            panel_id=request.models.panel_id,
            biomass_route=request.models.biomass_route,
            inverter_load_ratio=request.models.inverter_load_ratio,
            pcs_discharge_hours=request.models.pcs_discharge_hours,
            cfg=request.config.build(),
        )
        candidate = request.candidate.to_candidate()
        simulation = context.simulate(candidate, need_logs=request.include_hourly_logs)
        solution = context.materialize(candidate, simulation)
        score = context.score(candidate, simulation, solution.total_cost, solution.total_cost, solution.equipment)

    return {
        "models": asdict(context.choice),
        "simulation": simulation.to_dict(include_hourly=request.include_hourly_logs),
        "equipment": solution.equipment.to_dict(),
        "score": score.to_dict(),
        "insights": build_flag_insights(simulation.flags),
    }


@app.post("/select")
def select(request: SelectRequest) -> Dict[str, Any]:
    """Greedy catalog selection for a capacity tuple."""

    with _http_errors():
        catalog = default_catalog()
        if request.restrict:
            catalog = catalog.restricted(**request.restrict)
        choice = ModelChoice(
            turbine_id=request.models.turbine_id,
            panel_id=request.models.panel_id,
            biomass_route=request.models.biomass_route or "direct",
            inverter_load_ratio=request.models.inverter_load_ratio,
            pcs_discharge_hours=request.models.pcs_discharge_hours,
        )
        equipment = select_equipment(request.candidate.to_candidate(), catalog, choice)
    return {"equipment": equipment.to_dict()}


@app.post("/turbines/size")
def size_turbines(request: TurbineSizingRequest) -> Dict[str, Any]:
    """Turbine count covering ``wind_ratio`` of annual load at the region's wind class."""

    with _http_errors():
        region = request.region.to_region()
        catalog = default_catalog()
        if request.turbine_id:
            turbine = catalog.wind_turbine(request.turbine_id)
        else:
            turbine = rank_turbines_for_region(region, catalog)[0]
        target_mwh = region.annual_load_mwh * request.wind_ratio
        selection = select_turbines_for_energy(target_mwh, turbine, region.avg_wind_speed)
    return {"target_mwh": target_mwh, "selection": selection.to_dict()}


@app.post("/search")
def search(request: SearchRequest) -> Dict[str, Any]:
    """Run the exhaustive capacity search and return ranked solutions."""

    series = _resolve_series(request.data, uploads)
    with _http_errors():
        search_request = CapacitySearchRequest.from_dict(request.search)
        context = build_search_context(
            request.region.to_region(),
            series,
            default_catalog(),
            turbine_id=request.models.turbine_id,
            panel_id=request.models.panel_id,
            biomass_route=request.models.biomass_route,
            inverter_load_ratio=request.models.inverter_load_ratio,
            pcs_discharge_hours=request.models.pcs_discharge_hours,
            cfg=request.config.build(),
            policy=ScoringPolicy.from_dict(request.policy),
        )
        progress: List[ProgressUpdate] = []
        response = run_capacity_search(search_request, context, progress_sink=progress.append)

    return {
        "models": asdict(context.choice),
        "total_candidates": response.total_candidates,
        "evaluated_candidates": response.evaluated_candidates,
        "feasible_candidates": response.feasible_candidates,
        "failed_candidates": response.failed_candidates,
        "pruned_candidates": response.pruned_candidates,
        "skipped_candidates": response.skipped_candidates,
        "reference_cost": response.reference_cost,
        "progress": progress[-1].to_dict() if progress else None,
        "rows": response.records,
        "solutions": [solution.to_dict() for solution in response.solutions],
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=False)

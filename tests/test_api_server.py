from __future__ import annotations

import pytest
from fastapi import HTTPException

from api import server
from api.server import (
    CandidatePayload,
    DataSource,
    ModelChoicePayload,
    RegionPayload,
    ResourceRow,
    SearchRequest,
    SelectRequest,
    SimulateRequest,
    TurbineSizingRequest,
    UploadPayload,
    create_upload,
    health,
    ranges,
    region_info,
    select,
    simulate,
    size_turbines,
)


def _rows(load_mw: float = 10.0) -> list[ResourceRow]:
    return [
        ResourceRow(hour_index=hour, wind_speed=8.0, irradiance=0.5, load_mw=load_mw)
        for hour in range(8760)
    ]


def _axis(minimum: float, maximum: float, step: float) -> dict:
    return {"min": minimum, "max": maximum, "step": step}


def test_health_and_region_info() -> None:
    assert health() == {"status": "ok"}

    info = region_info("residential")

    assert info["annual_load_mwh"] == pytest.approx(240900.0)
    assert info["biomass_routes"][0]["route"] == "direct"
    assert set(info["max_biomass_power_mw"]) == {"direct", "gasification", "biogas"}


def test_unknown_region_maps_to_404() -> None:
    with pytest.raises(HTTPException) as excinfo:
        region_info("desert")

    assert excinfo.value.status_code == 404


def test_ranges_endpoint_uses_recommended_route() -> None:
    response = ranges(RegionPayload(region_type="residential"))

    assert response["biomass_route"] == "direct"
    assert response["ranges"]["wind"]["max"] == 201.0
    assert response["ranges"]["candidate_count"] > 0


def test_simulate_returns_scored_equipment() -> None:
    request = SimulateRequest(
        region=RegionPayload(region_type="test"),
        data=DataSource(rows=_rows()),
        candidate=CandidatePayload(wind_mw=20.0, solar_mw=20.0, battery_mwh=10.0),
        models=ModelChoicePayload(turbine_id="WT-3000", panel_id="PV-550M"),
        include_hourly_logs=True,
    )

    response = simulate(request)

    assert response["models"]["turbine_id"] == "WT-3000"
    assert response["simulation"]["reliability_pct"] == pytest.approx(100.0)
    assert len(response["simulation"]["hourly"]["soc_mwh"]) == 8760
    assert response["equipment"]["total_price"] > 0.0
    assert response["score"]["economics"] == 30.0
    assert response["insights"]


def test_unknown_turbine_maps_to_404() -> None:
    request = SimulateRequest(
        region=RegionPayload(region_type="test"),
        data=DataSource(rows=_rows()),
        candidate=CandidatePayload(wind_mw=5.0),
        models=ModelChoicePayload(turbine_id="WT-missing"),
    )

    with pytest.raises(HTTPException) as excinfo:
        simulate(request)

    assert excinfo.value.status_code == 404


def test_select_honours_catalog_restriction() -> None:
    request = SelectRequest(
        candidate=CandidatePayload(battery_mwh=66.0),
        restrict={"batteries": ["BAT-280L"]},
    )

    response = select(request)

    batteries = response["equipment"]["batteries"]
    assert [(line["model_id"], line["count"]) for line in batteries] == [("BAT-280L", 236)]
    assert batteries[0]["total_capacity"] == pytest.approx(66080.0)


def test_restriction_on_catalog_method_name_maps_to_404() -> None:
    request = SelectRequest(candidate=CandidatePayload(wind_mw=1.0), restrict={"wind_turbine": ["WT-3"]})

    with pytest.raises(HTTPException) as excinfo:
        select(request)

    assert excinfo.value.status_code == 404


def test_turbine_sizing_for_wind_share() -> None:
    response = size_turbines(TurbineSizingRequest(region=RegionPayload(region_type="residential"), wind_ratio=0.22))

    assert response["selection"]["model_id"] == "WT-3"
    assert response["selection"]["count"] == 17691


def test_upload_and_search_reuse_cached_rows() -> None:
    upload_id = create_upload(UploadPayload(name="unit-test-flat", rows=_rows()))["upload_id"]
    request = SearchRequest(
        region=RegionPayload(region_type="test"),
        data=DataSource(upload_id=upload_id),
        models=ModelChoicePayload(turbine_id="WT-3000", panel_id="PV-550M", biomass_route="direct"),
        search={
            "ranges": {
                "wind": _axis(0.0, 40.0, 20.0),
                "solar": _axis(0.0, 20.0, 20.0),
                "biomass": _axis(0.0, 0.0, 1.0),
                "battery": _axis(10.0, 10.0, 1.0),
            },
            "top_k": 2,
        },
    )

    response = server.search(request)

    assert upload_id == "unit-test-flat"
    assert response["total_candidates"] == 6
    assert response["feasible_candidates"] == 3
    assert [row["candidate_rank"] for row in response["rows"]] == [1, 2]
    assert len(response["solutions"]) == 2
    assert response["progress"]["phase"] == "done"
    assert response["progress"]["fraction"] == pytest.approx(1.0)
    assert response["progress"]["feasible_count"] == 3


def test_infeasible_search_maps_to_422() -> None:
    request = SearchRequest(
        region=RegionPayload(region_type="test"),
        data=DataSource(rows=_rows()),
        search={
            "ranges": {
                "wind": _axis(0.0, 0.0, 1.0),
                "solar": _axis(0.0, 0.0, 1.0),
                "biomass": _axis(0.0, 0.0, 1.0),
                "battery": _axis(10.0, 10.0, 1.0),
            }
        },
    )

    with pytest.raises(HTTPException) as excinfo:
        server.search(request)

    assert excinfo.value.status_code == 422
    assert excinfo.value.detail["evaluated"] == 1


def test_invalid_search_options_map_to_400() -> None:
    request = SearchRequest(
        region=RegionPayload(region_type="test"),
        data=DataSource(rows=_rows()),
        search={"top_k": 0},
    )

    with pytest.raises(HTTPException) as excinfo:
        server.search(request)

    assert excinfo.value.status_code == 400


def test_missing_upload_maps_to_404() -> None:
    request = SearchRequest(region=RegionPayload(region_type="test"), data=DataSource(upload_id="nope"))

    with pytest.raises(HTTPException) as excinfo:
        server.search(request)

    assert excinfo.value.status_code == 404

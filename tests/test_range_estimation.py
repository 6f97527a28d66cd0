from __future__ import annotations

import pytest

from services.dispatch_simulation import CapacityCandidate
from services.range_estimation import CapacityRange, SearchRanges, estimate_search_ranges
from utils.regions import Region, max_biomass_power_mw


def test_capacity_range_values_are_inclusive() -> None:
    assert CapacityRange(0.0, 10.0, 2.0, 4.0).values() == [0.0, 2.0, 4.0, 6.0, 8.0, 10.0]
    assert CapacityRange(0.0, 9.0, 2.0, 4.0).values() == [0.0, 2.0, 4.0, 6.0, 8.0]
    assert CapacityRange(5.0, 5.0, 1.0, 5.0).values() == [5.0]
    assert CapacityRange(3.0, 8.0, 0.0, 3.0).values() == [3.0]
    assert CapacityRange(5.0, 1.0, 1.0, 5.0).values() == []


def test_float_steps_do_not_drop_the_upper_bound() -> None:
    values = CapacityRange(0.0, 1.5, 0.5, 1.0).values()

    assert values == [0.0, 0.5, 1.0, 1.5]


def test_residential_ranges_follow_load_and_resource_hours() -> None:
    region = Region.from_type("residential")

    ranges = estimate_search_ranges(region)

    # 240900 MWh/yr over 1800 wind hours and 1200 solar hours, with a 1.5x margin.
    assert ranges.wind.max == 201.0
    assert ranges.wind.step == 5.0
    assert ranges.wind.recommended == 80.0
    assert ranges.solar.max == 302.0
    assert ranges.solar.recommended == 100.0
    assert ranges.battery.min == 70.0
    assert ranges.battery.max == 420.0
    assert ranges.battery.step == 20.0
    assert ranges.battery.recommended == 210.0
    assert ranges.biomass.max == pytest.approx(round(max_biomass_power_mw(region) * 1.2, 1))


def test_small_region_uses_fine_steps_and_floors() -> None:
    region = Region.from_type("forestry")

    ranges = estimate_search_ranges(region)

    assert ranges.battery.min == 10.0
    assert ranges.battery.max == 100.0
    assert ranges.battery.step == 2.0
    assert ranges.biomass.step in (0.5, 1.0, 2.0)
    assert ranges.biomass.max >= 1.0


def test_zero_load_region_collapses_renewable_axes() -> None:
    region = Region.from_type("test", annual_load_mwh=0.0)

    ranges = estimate_search_ranges(region)

    assert ranges.wind.values() == [0.0]
    assert ranges.solar.values() == [0.0]


def test_candidate_count_is_the_axis_product() -> None:
    ranges = SearchRanges(
        wind=CapacityRange(0.0, 20.0, 10.0, 10.0),
        solar=CapacityRange(0.0, 10.0, 5.0, 5.0),
        biomass=CapacityRange(0.0, 0.0, 1.0, 0.0),
        battery=CapacityRange(10.0, 30.0, 10.0, 20.0),
    )

    assert ranges.candidate_count == 3 * 3 * 1 * 3
    assert ranges.recommended_candidate() == CapacityCandidate(10.0, 5.0, 0.0, 20.0)


def test_range_from_dict_defaults_recommended_to_min() -> None:
    axis = CapacityRange.from_dict({"min": 2, "max": 6, "step": 2})

    assert axis == CapacityRange(2.0, 6.0, 2.0, 2.0)

from __future__ import annotations

import math

import numpy as np
import pytest

from services.power_curves import (
    BETZ_LIMIT,
    DESIGN_TIP_SPEED_RATIO,
    aerodynamic_power_kw,
    biomass_operating_mask,
    biomass_power_mw,
    cp_analytic,
    cp_from_table,
    cp_simple,
    design_rotor_speed_rps,
    solar_power_mw,
    sustained_biomass_mw,
    tip_speed_ratio,
    wind_output_per_mw,
    wind_power_kw,
)
from utils.catalog import default_catalog
from utils.regions import fuel_limited_power_mw


def test_cubic_curve_respects_cut_in_rated_and_cut_out() -> None:
    turbine = default_catalog().wind_turbine("WT-10")
    speeds = np.array([0.0, 3.0, 6.5, 10.0, 20.0, 25.0, 26.0])

    power = wind_power_kw(turbine, speeds)

    assert power.tolist() == pytest.approx([0.0, 0.0, 1.25, 10.0, 10.0, 10.0, 0.0])


def test_output_per_mw_is_fraction_of_rated() -> None:
    turbine = default_catalog().wind_turbine("WT-10")

    per_mw = wind_output_per_mw(turbine, np.array([6.5, 12.0]))

    assert per_mw.tolist() == pytest.approx([0.125, 1.0])


@pytest.mark.parametrize("mode", ["cp_table", "cp_analytic", "cp_simple"])
def test_cp_curves_never_exceed_rated_power(mode: str) -> None:
    turbine = default_catalog().wind_turbine("WT-3000")
    speeds = np.linspace(0.0, 30.0, 61)

    power = wind_power_kw(turbine, speeds, mode=mode)

    assert (power >= 0.0).all()
    assert (power <= turbine.rated_power_kw + 1e-9).all()
    assert power[speeds > turbine.cut_out_speed].sum() == 0.0


def test_unknown_curve_mode_raises() -> None:
    turbine = default_catalog().wind_turbine("WT-10")
    with pytest.raises(ValueError):
        wind_power_kw(turbine, 8.0, mode="linear")


def test_cp_table_clamps_and_interpolates() -> None:
    assert float(cp_from_table(1.0)) == pytest.approx(0.147)
    assert float(cp_from_table(30.0)) == pytest.approx(0.329)
    assert float(cp_from_table(3.5)) == pytest.approx((0.147 + 0.202) / 2)


def test_cp_analytic_stays_within_betz_limit() -> None:
    values = cp_analytic(np.linspace(0.0, 20.0, 81))

    assert (values >= 0.0).all()
    assert (values <= BETZ_LIMIT).all()
    assert float(cp_analytic(0.0)) == 0.0


def test_cp_simple_is_linear_in_tip_speed_ratio_up_to_cap() -> None:
    assert cp_simple() == pytest.approx(8.1 / 44.0)
    assert cp_simple(11.0) == pytest.approx(0.25)
    assert cp_simple(30.0) == 0.48


def test_tip_speed_ratio_from_rotor_speed() -> None:
    lam = tip_speed_ratio(100.0, 0.5, np.array([0.0, 10.0, 20.0]))

    assert lam.tolist() == pytest.approx([0.0, math.pi * 5.0, math.pi * 2.5])


def test_fixed_speed_rotor_hits_design_ratio_at_rated_wind() -> None:
    turbine = default_catalog().wind_turbine("WT-3000")
    rps = design_rotor_speed_rps(turbine)

    lam = tip_speed_ratio(turbine.rotor_diameter_m, rps, turbine.rated_speed)

    assert float(lam) == pytest.approx(DESIGN_TIP_SPEED_RATIO)
    assert float(tip_speed_ratio(turbine.rotor_diameter_m, rps, turbine.rated_speed / 2.0)) == pytest.approx(
        2.0 * DESIGN_TIP_SPEED_RATIO
    )


def test_simple_cp_mode_uses_design_coefficient() -> None:
    turbine = default_catalog().wind_turbine("WT-10")

    power = wind_power_kw(turbine, 5.0, mode="cp_simple")

    assert float(power) == pytest.approx(float(aerodynamic_power_kw(cp_simple(), turbine.rotor_diameter_m, 5.0)))
    assert float(power) < turbine.rated_power_kw


def test_solar_output_applies_temperature_derate() -> None:
    at_stc = solar_power_mw(10.0, 1.0, 25.0)
    hot = solar_power_mw(10.0, 1.0, 45.0, temp_coeff_pmax_pct=-0.35)

    assert float(at_stc) == pytest.approx(10.0 * 0.97 * 0.90)
    assert float(hot) == pytest.approx(10.0 * 0.93 * 0.97 * 0.90)
    assert float(solar_power_mw(10.0, -0.2, 25.0)) == 0.0


def test_biomass_mask_spreads_run_hours_evenly() -> None:
    mask = biomass_operating_mask(8760, 7000)
    assert int(mask.sum()) == 7000

    half = biomass_operating_mask(10, 5)
    assert half.tolist() == [False, True] * 5

    assert biomass_operating_mask(24, 100).all()
    assert biomass_operating_mask(0, 10).size == 0


def test_biomass_output_is_capped_by_sustained_fuel() -> None:
    mask = np.array([True, False, True])

    output = biomass_power_mw(5.0, 3.0, mask)

    assert output.tolist() == [3.0, 0.0, 3.0]


def test_sustained_biomass_uses_mean_daily_feedstock() -> None:
    flow = np.full(48, 2.0)

    sustained = sustained_biomass_mw(flow, 16.0, "direct")

    assert sustained == pytest.approx(fuel_limited_power_mw(48.0, 16.0, "direct"))
    assert sustained_biomass_mw(np.array([]), 16.0, "direct") == 0.0

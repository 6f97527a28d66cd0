import unittest

from services.equipment_selection import preferred_battery_models
from utils.catalog import default_catalog
from utils.economics import (
    EconomicInputs,
    capital_recovery_factor,
    estimate_biomass_annual_mwh,
    estimate_candidate_cost,
    equivalent_hours_mwh,
    estimate_wind_annual_mwh,
    levelized_cost_of_energy,
    low_wind_derate,
    unit_cost_rates,
)


class EconomicModuleTests(unittest.TestCase):
    def _rates(self, route: str = "direct"):
        catalog = default_catalog()
        return unit_cost_rates(
            catalog,
            catalog.wind_turbine("WT-3000"),
            catalog.solar_panel("PV-550M"),
            preferred_battery_models(catalog.batteries),
            route,
        )

    def test_capital_recovery_factor(self) -> None:
        self.assertAlmostEqual(capital_recovery_factor(0.0, 10), 0.1)
        self.assertAlmostEqual(capital_recovery_factor(0.08, 20), 0.101852, places=5)
        with self.assertRaises(ValueError):
            capital_recovery_factor(0.05, 0)
        with self.assertRaises(ValueError):
            capital_recovery_factor(-0.01, 10)

    def test_levelized_cost_known_case(self) -> None:
        # 1000 x 10k CNY at 10% annual charge over 1000 MWh -> 1.0 CNY/kWh.
        lcoe = levelized_cost_of_energy(1000.0, 1000.0, EconomicInputs(crf=0.08, om_rate=0.02))

        self.assertAlmostEqual(lcoe, 1.0)
        self.assertEqual(levelized_cost_of_energy(1000.0, 0.0), 0.0)
        with self.assertRaises(ValueError):
            levelized_cost_of_energy(-1.0, 100.0)
        with self.assertRaises(ValueError):
            levelized_cost_of_energy(1.0, float("nan"))

    def test_wind_yield_applies_low_wind_derate(self) -> None:
        turbine = default_catalog().wind_turbine("WT-3")

        self.assertEqual(low_wind_derate(3.5), 0.6)
        self.assertEqual(low_wind_derate(6.0), 0.8)
        self.assertEqual(low_wind_derate(7.0), 1.0)
        self.assertAlmostEqual(estimate_wind_annual_mwh(turbine, 3.5), 2.99592)
        self.assertAlmostEqual(estimate_wind_annual_mwh(turbine, 8.0), 4.9932)

    def test_solar_and_biomass_yields(self) -> None:
        self.assertEqual(equivalent_hours_mwh(10.0, 1200.0), 12000.0)
        self.assertEqual(equivalent_hours_mwh(-1.0, 1200.0), 0.0)
        self.assertEqual(estimate_biomass_annual_mwh(2.0), 14000.0)

    def test_unit_rates_follow_largest_catalog_models(self) -> None:
        rates = self._rates()

        self.assertAlmostEqual(rates.wind_per_kw, 1000.0 / 3000.0)
        self.assertAlmostEqual(rates.solar_per_kw, 0.18)
        self.assertAlmostEqual(rates.inverter_per_kw, 42.0 / 1250.0)
        self.assertAlmostEqual(rates.battery_per_kwh, 0.12)
        self.assertAlmostEqual(rates.pcs_per_kw, 0.072)
        self.assertAlmostEqual(rates.biomass_per_mw, 3600.0 / 130.0 * 4.5 + 5500.0 / 50.0)
        self.assertGreater(self._rates("biogas").biomass_per_mw, 0.0)

    def test_candidate_cost_is_linear_in_capacity(self) -> None:
        rates = self._rates()

        base = estimate_candidate_cost(10.0, 5.0, 2.0, 20.0, rates)
        doubled = estimate_candidate_cost(20.0, 10.0, 4.0, 40.0, rates)

        self.assertAlmostEqual(doubled, 2.0 * base)
        self.assertAlmostEqual(estimate_candidate_cost(1.0, 0.0, 0.0, 0.0, rates), 1000.0 * rates.wind_per_kw)
        self.assertEqual(estimate_candidate_cost(0.0, 0.0, 0.0, 0.0, rates), 0.0)

    def test_invalid_candidate_values_raise(self) -> None:
        rates = self._rates()
        with self.assertRaises(ValueError):
            estimate_candidate_cost(-1.0, 0.0, 0.0, 0.0, rates)
        with self.assertRaises(ValueError):
            estimate_candidate_cost(1.0, 0.0, 0.0, 0.0, rates, inverter_load_ratio=0.0)


if __name__ == "__main__":
    unittest.main()

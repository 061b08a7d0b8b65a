import unittest

from arbmatch.config import Config
from arbmatch.pricing.fees import (
    FeeSchedule,
    kalshi_cost,
    kalshi_fee,
    polymarket_cost,
    polymarket_fee,
    venue_cost,
)


class KalshiFeeTests(unittest.TestCase):
    def test_taker_fee_rounds_up_to_cent(self) -> None:
        self.assertEqual(kalshi_fee(100, 0.3), 1.47)
        self.assertEqual(kalshi_fee(100, 0.5), 1.75)
        self.assertEqual(kalshi_fee(1, 0.5), 0.02)

    def test_fee_on_fractional_contracts(self) -> None:
        self.assertEqual(kalshi_fee(100 / 0.96, 0.21), 1.21)

    def test_maker_fee(self) -> None:
        self.assertEqual(kalshi_fee(100, 0.5, maker=True), 0.44)

    def test_zero_contracts_and_edge_prices(self) -> None:
        self.assertEqual(kalshi_fee(0, 0.5), 0.0)
        self.assertEqual(kalshi_fee(100, 0.0), 0.0)
        self.assertEqual(kalshi_fee(100, 1.0), 0.0)

    def test_invalid_inputs(self) -> None:
        with self.assertRaises(ValueError):
            kalshi_fee(-1, 0.5)
        with self.assertRaises(ValueError):
            kalshi_fee(10, 1.2)

    def test_custom_rate(self) -> None:
        fees = FeeSchedule(kalshi_taker_rate=0.1)
        self.assertEqual(kalshi_fee(100, 0.5, fees=fees), 2.5)

    def test_cost_breakdown(self) -> None:
        cost = kalshi_cost(100, 0.3)
        self.assertAlmostEqual(cost.contract_cost, 30.0)
        self.assertEqual(cost.fee, 1.47)
        self.assertAlmostEqual(cost.total_cost, 31.47)
        self.assertEqual(cost.max_payout, 100)


class PolymarketFeeTests(unittest.TestCase):
    def test_fee_on_potential_profit(self) -> None:
        self.assertAlmostEqual(polymarket_fee(100, 0.75), 0.5)
        self.assertAlmostEqual(polymarket_fee(100, 0.3), 1.4)

    def test_no_fee_at_certain_price(self) -> None:
        self.assertEqual(polymarket_fee(100, 1.0), 0.0)

    def test_cost_breakdown(self) -> None:
        cost = polymarket_cost(100, 0.75)
        self.assertAlmostEqual(cost.total_cost, 75.5)
        self.assertEqual(cost.max_payout, 100)


class VenueCostTests(unittest.TestCase):
    def test_dispatch(self) -> None:
        self.assertEqual(venue_cost("kalshi", 100, 0.3).fee, 1.47)
        self.assertAlmostEqual(venue_cost("polymarket", 100, 0.75).fee, 0.5)

    def test_maker_from_schedule(self) -> None:
        fees = FeeSchedule.from_config(Config(kalshi_maker=True))
        self.assertEqual(venue_cost("kalshi", 100, 0.5, fees).fee, 0.44)

    def test_unknown_venue(self) -> None:
        with self.assertRaises(ValueError):
            venue_cost("predictit", 100, 0.5)


if __name__ == "__main__":
    unittest.main()

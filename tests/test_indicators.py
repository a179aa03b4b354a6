import unittest
from datetime import timedelta

import pandas as pd

from helpers import START

from paper_trader.utils.indicators import (
    calculate_rsi, calculate_sma, latest_rsi, latest_sma, moving_average_window
)


class TestRsi(unittest.TestCase):
    def test_wilder_smoothing(self) -> None:
        rsi = calculate_rsi(pd.Series([1.0, 2.0, 1.0, 2.0]), period=2)
        self.assertTrue(pd.isna(rsi.iloc[1]))
        # first average: gain 0.5, loss 0.5
        self.assertAlmostEqual(rsi.iloc[2], 50.0)
        # smoothed: gain (0.5 + 1) / 2, loss (0.5 + 0) / 2
        self.assertAlmostEqual(rsi.iloc[3], 75.0)

    def test_rsi_is_100_without_losses(self) -> None:
        self.assertEqual(latest_rsi([1, 2, 3, 4, 5], period=3), 100.0)
        self.assertEqual(latest_rsi([5.0] * 15, period=14), 100.0)

    def test_sharp_drop_after_flat_prices(self) -> None:
        self.assertAlmostEqual(latest_rsi([100.0] * 15 + [80.0], period=14), 0.0)

    def test_requires_period_plus_one_prices(self) -> None:
        self.assertIsNone(latest_rsi([1.0] * 14, period=14))

    def test_bounded(self) -> None:
        prices = [100, 102, 99, 105, 103, 108, 104, 110, 107, 111, 109, 115, 112, 118, 113, 117]
        rsi = calculate_rsi(pd.Series(prices, dtype=float), period=14).dropna()
        self.assertTrue(((rsi >= 0) & (rsi <= 100)).all())


class TestMovingAverage(unittest.TestCase):
    def test_sma(self) -> None:
        self.assertEqual(calculate_sma(pd.Series([1.0, 2.0, 3.0, 4.0]), 2).iloc[-1], 3.5)
        self.assertEqual(latest_sma([1.0, 2.0, 3.0, 4.0], 4), 2.5)
        self.assertIsNone(latest_sma([1.0, 2.0], 3))

    def test_window_from_lookback(self) -> None:
        # 96 samples spread over a day: one every 15 minutes
        window = moving_average_window(timedelta(hours=1), START, START + timedelta(hours=24), 96)
        self.assertEqual(window, 4)

    def test_window_capped_at_available_samples(self) -> None:
        window = moving_average_window(timedelta(hours=24), START, START + timedelta(hours=4), 16)
        self.assertEqual(window, 16)

    def test_window_without_elapsed_time(self) -> None:
        self.assertEqual(moving_average_window(timedelta(hours=24), START, START, 1), 1)


if __name__ == '__main__':
    unittest.main()

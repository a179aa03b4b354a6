import asyncio
import unittest
from datetime import timedelta

from helpers import START, StubStrategy, make_position, make_trade

from paper_trader.models import ExitReason, ProposedTrade, RiskParameters, StrategyMetrics
from paper_trader.scheduler import ManualClock
from paper_trader.utils.risk_metrics import (
    apply_trade, daily_realized_loss, high_water_mark, metrics_from_trades, profit_factor,
    risk_rejections, win_rate
)


def proposed(size=0.5, capital=10.0, portfolio=None):
    return ProposedTrade(
        token_address='TKN/USDT', token_symbol='TKN', entry_price=100.0,
        position_size=size, total_capital=capital, portfolio_value_before_trade=portfolio
    )


class TestMetrics(unittest.TestCase):
    def test_profitable_and_losing_trades_update_totals(self) -> None:
        metrics = StrategyMetrics()
        for pnl in (0.5, -0.25, 1.0, -0.75):
            metrics = apply_trade(metrics, make_trade(pnl, START))
            self.assertAlmostEqual(metrics.net_profit_loss, metrics.total_profit - metrics.total_loss)
            self.assertGreaterEqual(metrics.win_rate, 0.0)
            self.assertLessEqual(metrics.win_rate, 1.0)

        self.assertEqual(metrics.total_trades, 4)
        self.assertEqual(metrics.profitable_trades, 2)
        self.assertEqual(metrics.unprofitable_trades, 2)
        self.assertAlmostEqual(metrics.total_profit, 1.5)
        self.assertAlmostEqual(metrics.total_loss, 1.0)
        self.assertAlmostEqual(metrics.largest_profit, 1.0)
        self.assertAlmostEqual(metrics.largest_loss, 0.75)
        self.assertAlmostEqual(metrics.win_rate, 0.5)
        self.assertAlmostEqual(metrics.average_profit, 0.75)
        self.assertAlmostEqual(metrics.average_loss, 0.5)
        self.assertAlmostEqual(metrics.profit_factor, 1.5)

    def test_breakeven_trade_counts_as_unprofitable(self) -> None:
        metrics = apply_trade(StrategyMetrics(), make_trade(0.0, START))
        self.assertEqual(metrics.unprofitable_trades, 1)
        self.assertEqual(metrics.win_rate, 0.0)
        self.assertEqual(metrics.profit_factor, 0.0)

    def test_failed_trade_only_moves_counters(self) -> None:
        metrics = apply_trade(StrategyMetrics(), make_trade(1.0, START, success=False))
        self.assertEqual(metrics.total_trades, 1)
        self.assertEqual(metrics.failed_trades, 1)
        self.assertEqual(metrics.net_profit_loss, 0.0)
        self.assertEqual(metrics.win_rate, 0.0)

    def test_rebuild_matches_incremental(self) -> None:
        strategy = StubStrategy('stub')
        trades = [make_trade(pnl, START) for pnl in (0.3, -0.1, 0.2)]
        for trade in trades:
            strategy.record_trade(trade)
        self.assertEqual(strategy.metrics, metrics_from_trades(trades))

    def test_ratio_helpers_handle_zero(self) -> None:
        self.assertEqual(win_rate(0, 0), 0.0)
        self.assertEqual(profit_factor(5.0, 0.0), 0.0)


class TestRiskGate(unittest.TestCase):
    def setUp(self) -> None:
        self.risk = RiskParameters(max_position_size=0.1, max_open_trades=3, max_daily_loss=0.05, max_drawdown=0.15)
        self.now = START + timedelta(hours=12)

    def test_accepts_trade_within_budget(self) -> None:
        self.assertEqual(risk_rejections(proposed(), self.risk, 0, [], self.now), [])

    def test_rejects_when_open_positions_at_limit(self) -> None:
        reasons = risk_rejections(proposed(), self.risk, 3, [], self.now)
        self.assertEqual(len(reasons), 1)
        self.assertIn('max open trades', reasons[0])

    def test_rejects_oversized_position(self) -> None:
        reasons = risk_rejections(proposed(size=1.5), self.risk, 0, [], self.now)
        self.assertEqual(len(reasons), 1)
        self.assertIn('position size', reasons[0])

    def test_daily_loss_at_limit_rejects_until_next_day(self) -> None:
        trades = [make_trade(-0.5, START + timedelta(hours=10))]
        self.assertAlmostEqual(daily_realized_loss(trades, self.now), 0.5)

        reasons = risk_rejections(proposed(), self.risk, 0, trades, self.now)
        self.assertEqual(len(reasons), 1)
        self.assertIn('daily loss', reasons[0])

        next_day = START + timedelta(days=1, minutes=30)
        self.assertEqual(risk_rejections(proposed(), self.risk, 0, trades, next_day), [])

    def test_rejects_drawdown_beyond_limit(self) -> None:
        trades = [make_trade(2.0, START - timedelta(days=2), portfolio_before=10.0)]
        self.assertEqual(high_water_mark(trades, 10.0), 12.0)

        reasons = risk_rejections(proposed(portfolio=10.0), self.risk, 0, trades, self.now)
        self.assertEqual(len(reasons), 1)
        self.assertIn('drawdown', reasons[0])

        self.assertEqual(risk_rejections(proposed(portfolio=11.0), self.risk, 0, trades, self.now), [])


class TestStrategyRiskContract(unittest.TestCase):
    def test_strategy_rejects_at_max_open_regardless_of_other_fields(self) -> None:
        strategy = StubStrategy('stub', clock=ManualClock(START))
        for i in range(strategy.risk_parameters.max_open_trades):
            position = make_position(address=f"T{i}/USDT")
            strategy.positions[position.token_address] = position
        self.assertFalse(strategy.meets_risk_criteria(proposed(size=0.01)))
        self.assertEqual(len(strategy.positions), 3)

    def test_strategy_daily_window_resets(self) -> None:
        clock = ManualClock(START + timedelta(hours=9))
        strategy = StubStrategy('stub', clock=clock, risk_parameters=RiskParameters(max_daily_loss=0.05))
        strategy.record_trade(make_trade(-0.5, clock.now()))
        self.assertFalse(strategy.meets_risk_criteria(proposed()))

        asyncio.run(clock.advance(timedelta(hours=15)))
        self.assertTrue(strategy.meets_risk_criteria(proposed()))

    def test_sizing_and_price_levels(self) -> None:
        strategy = StubStrategy('stub', risk_parameters=RiskParameters(
            max_position_size=0.05, stop_loss_percentage=0.07, take_profit_percentage=0.15
        ))
        self.assertAlmostEqual(strategy.calculate_position_size(10.0, 0.1), 0.5)
        self.assertAlmostEqual(strategy.calculate_position_size(10.0, 0.01), 0.1)
        self.assertAlmostEqual(strategy.calculate_stop_loss(100.0), 93.0)
        self.assertAlmostEqual(strategy.calculate_take_profit(100.0), 115.0)
        self.assertAlmostEqual(strategy.calculate_stop_loss(100.0, is_long=False), 107.0)
        self.assertAlmostEqual(strategy.calculate_take_profit(100.0, is_long=False), 85.0)

    def test_overlapping_closes_carry_portfolio_value_forward(self) -> None:
        clock = ManualClock(START)
        strategy = StubStrategy('stub', clock=clock)
        strategy.allocated_capital = 10.0
        for address in ('A/USDT', 'B/USDT'):
            position = make_position(size=0.5, address=address)
            strategy.positions[address] = position

        strategy.positions['A/USDT'].update_price(110.0, clock.now())
        first = strategy.close_position('A/USDT', ExitReason.TAKE_PROFIT)
        strategy.positions['B/USDT'].update_price(120.0, clock.now())
        second = strategy.close_position('B/USDT', ExitReason.TAKE_PROFIT)

        self.assertAlmostEqual(first.portfolio_value_before, 10.0)
        self.assertAlmostEqual(first.portfolio_value_after, 10.05)
        self.assertAlmostEqual(second.portfolio_value_before, 10.05)
        self.assertAlmostEqual(second.portfolio_value_after, 10.15)
        self.assertAlmostEqual(high_water_mark(strategy.trades, 10.0), 10.15)


if __name__ == '__main__':
    unittest.main()

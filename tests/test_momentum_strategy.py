import unittest
from datetime import timedelta

from helpers import START, FakeMarketDataFeed, make_position

from paper_trader.models import Direction, ExitReason, MonitoredToken, RiskParameters, TokenAnalysis
from paper_trader.scheduler import ManualClock
from paper_trader.strategies.momentum_strategy import MomentumParameters, MomentumStrategy

TICK = timedelta(minutes=15)
ADDRESS = 'TKN/USDT'


def momentum_token(**overrides):
    fields = dict(
        symbol='TKN', price=90.0, liquidity_usd=100000.0, volume_1h=2000.0, volume_6h=6000.0,
        volume_24h=20000.0, price_change_1h=5.0, score=8.0
    )
    fields.update(overrides)
    return fields


class TestMomentumSignals(unittest.TestCase):
    def setUp(self) -> None:
        self.strategy = MomentumStrategy(FakeMarketDataFeed(), clock=ManualClock(START))

    def token_with_prices(self, prices, **analysis):
        token = MonitoredToken(ADDRESS, 'TKN', TokenAnalysis(ADDRESS, **momentum_token(**analysis)), START, START)
        for i, price in enumerate(prices):
            token.add_price(price, START + i * TICK, timedelta(hours=24))
        return token

    def test_initial_filter(self) -> None:
        self.assertTrue(self.strategy.meets_initial_criteria(TokenAnalysis(ADDRESS, **momentum_token())))
        self.assertFalse(self.strategy.meets_initial_criteria(TokenAnalysis(ADDRESS, **momentum_token(score=5.0))))
        self.assertFalse(self.strategy.meets_initial_criteria(
            TokenAnalysis(ADDRESS, **momentum_token(liquidity_usd=600000.0))))
        self.assertFalse(self.strategy.meets_initial_criteria(
            TokenAnalysis(ADDRESS, **momentum_token(price_change_1h=1.0))))
        self.assertFalse(self.strategy.meets_initial_criteria(
            TokenAnalysis(ADDRESS, **momentum_token(volume_24h=5000.0))))

    def test_signal_requires_three_rising_prices(self) -> None:
        self.assertTrue(self.strategy.has_momentum_signal(self.token_with_prices([90.0, 95.0, 100.0])))
        self.assertFalse(self.strategy.has_momentum_signal(self.token_with_prices([95.0, 100.0])))
        self.assertFalse(self.strategy.has_momentum_signal(self.token_with_prices([95.0, 90.0, 100.0])))

    def test_signal_requires_large_enough_move(self) -> None:
        self.assertFalse(self.strategy.has_momentum_signal(self.token_with_prices([90.0, 99.0, 100.0])))

    def test_signal_requires_volume_confirmation(self) -> None:
        token = self.token_with_prices([90.0, 95.0, 100.0], volume_1h=900.0)
        self.assertFalse(self.strategy.has_momentum_signal(token))

    def test_exit_priority(self) -> None:
        now = START + TICK
        position = make_position()
        position.update_price(92.0, now)
        self.assertEqual(self.strategy.check_exit(position, now), ExitReason.STOP_LOSS)

        position.update_price(116.0, now)
        self.assertEqual(self.strategy.check_exit(position, now), ExitReason.TAKE_PROFIT)

        position.ratchet_trailing_stop(110.0)
        position.update_price(109.0, now)
        self.assertEqual(self.strategy.check_exit(position, now), ExitReason.TRAILING_STOP)

        fresh = make_position()
        late = START + timedelta(hours=25)
        fresh.update_price(101.0, late)
        self.assertEqual(self.strategy.check_exit(fresh, late), ExitReason.MAX_HOLDING_PERIOD)
        self.assertIsNone(self.strategy.check_exit(fresh, now))

    def test_trailing_stop_activates_and_only_rises(self) -> None:
        position = make_position()
        position.update_price(105.0, START)
        self.strategy.update_trailing_stop(position)
        self.assertFalse(position.trailing_stop_activated)

        stops = []
        for price in (112.0, 114.0, 111.0, 113.0):
            position.update_price(price, START)
            self.strategy.update_trailing_stop(position)
            stops.append(position.trailing_stop_price)
        self.assertTrue(position.trailing_stop_activated)
        self.assertAlmostEqual(stops[0], 106.4)
        self.assertEqual(stops, sorted(stops))
        self.assertAlmostEqual(stops[-1], 108.3)


class TestMomentumLifecycle(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = ManualClock(START)
        self.feed = FakeMarketDataFeed()
        self.feed.set_token(ADDRESS, **momentum_token())
        self.strategy = MomentumStrategy(
            self.feed,
            parameters=MomentumParameters(position_size_percent=0.1),
            risk_parameters=RiskParameters(max_position_size=0.1, stop_loss_percentage=0.07,
                                           take_profit_percentage=0.15),
            clock=self.clock,
            allocated_capital=10.0
        )
        self.strategy.initialize()

    async def tick(self, price):
        self.feed.set_price(ADDRESS, price)
        await self.strategy.execute()
        await self.clock.advance(TICK)

    async def test_take_profit_scenario(self) -> None:
        for price in (90.0, 95.0, 100.0):
            await self.tick(price)

        position = self.strategy.positions[ADDRESS]
        self.assertEqual(position.direction, Direction.LONG)
        self.assertAlmostEqual(position.position_size, 1.0)
        self.assertAlmostEqual(position.stop_loss_price, 93.0)
        self.assertAlmostEqual(position.take_profit_price, 115.0)
        stop_loss, take_profit = position.stop_loss_price, position.take_profit_price

        await self.tick(98.0)
        self.assertIn(ADDRESS, self.strategy.positions)
        self.assertEqual(position.current_price, 98.0)
        self.assertEqual((position.stop_loss_price, position.take_profit_price), (stop_loss, take_profit))

        await self.tick(115.0)
        self.assertNotIn(ADDRESS, self.strategy.positions)
        self.assertEqual(len(self.strategy.trades), 1)
        trade = self.strategy.trades[0]
        self.assertEqual(trade.exit_reason, ExitReason.TAKE_PROFIT)
        self.assertEqual(trade.exit_price, 115.0)
        self.assertAlmostEqual(trade.pnl, 0.15)
        self.assertEqual(self.strategy.metrics.win_rate, 1.0)
        self.assertAlmostEqual(self.strategy.current_capital, 10.15)

    async def test_feed_failure_skips_token(self) -> None:
        await self.tick(90.0)
        self.feed.failing.add(ADDRESS)
        await self.tick(95.0)
        token = self.strategy.tokens.get(ADDRESS)
        self.assertEqual(token.prices, [90.0])

        self.feed.failing.clear()
        await self.tick(95.0)
        self.assertEqual(token.prices, [90.0, 95.0])

    async def test_missing_price_is_not_recorded(self) -> None:
        await self.tick(90.0)
        self.feed.analyses[ADDRESS] = TokenAnalysis(ADDRESS, symbol='TKN')
        await self.strategy.execute()
        self.assertEqual(self.strategy.tokens.get(ADDRESS).prices, [90.0])

    async def test_stale_tokens_dropped_unless_position_open(self) -> None:
        await self.tick(90.0)
        self.feed.failing.add(ADDRESS)
        for _ in range(9):
            await self.tick(90.0)
        self.assertNotIn(ADDRESS, self.strategy.tokens)

    async def test_token_with_open_position_kept_when_criteria_lapse(self) -> None:
        for price in (90.0, 95.0, 100.0):
            await self.tick(price)
        self.assertIn(ADDRESS, self.strategy.positions)

        self.feed.analyses[ADDRESS] = TokenAnalysis(ADDRESS, **momentum_token(price=101.0, price_change_1h=0.0))
        await self.strategy.execute()
        self.assertIn(ADDRESS, self.strategy.tokens)

    async def test_inactive_strategy_does_nothing(self) -> None:
        self.strategy.stop()
        await self.strategy.execute()
        self.assertEqual(self.feed.analysis_calls, 0)
        self.assertEqual(len(self.strategy.tokens), 0)


if __name__ == '__main__':
    unittest.main()

import unittest
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from helpers import START

from paper_trader.exchange_client import ExchangeClient
from paper_trader.market_data import ExchangeMarketDataFeed, ExchangeWallet

CREATED_MS = 1704067200000 - 30 * 24 * 60 * 60 * 1000


class FakeExchange:
    """Minimal stand-in for a ccxt async exchange."""

    def __init__(self, ticker_failures=0):
        self.markets = {'SOL/USDT': {'base': 'SOL', 'created': CREATED_MS}, 'ETH/USDT': {'base': 'ETH'}}
        self.ticker_failures = ticker_failures
        self.ticker_calls = 0

    async def fetch_tickers(self):
        self.ticker_calls += 1
        if self.ticker_calls <= self.ticker_failures:
            raise ConnectionError('exchange unavailable')
        return {
            'SOL/USDT': {'symbol': 'SOL/USDT', 'quoteVolume': 5e6},
            'ETH/USDT': {'symbol': 'ETH/USDT', 'quoteVolume': 9e6},
            'BTC/EUR': {'symbol': 'BTC/EUR', 'quoteVolume': 1e9},
            'DOGE/USDT': {'symbol': 'DOGE/USDT', 'quoteVolume': None},
        }

    async def fetch_ohlcv(self, symbol, timeframe, limit=25):
        start = 1704067200000
        return [[start + i * 3600000, 100 + i, 100 + i, 100 + i, 100 + i, 10.0] for i in range(limit)]

    async def fetch_order_book(self, symbol, limit=50):
        return {'bids': [[123.0, 10.0], [100.0, 50.0]], 'asks': [[125.0, 4.0], [150.0, 1.0]]}

    async def fetch_balance(self):
        return {'free': {'USDT': 42.0}}


class TestExchangeMarketData(unittest.IsolatedAsyncioTestCase):
    def make_client(self, exchange):
        client = ExchangeClient(max_retries=2)
        client.exchange = exchange
        return client

    async def test_trending_tokens_ranked_by_quote_volume(self) -> None:
        feed = ExchangeMarketDataFeed(self.make_client(FakeExchange()), quote='USDT')
        tokens = await feed.get_trending_tokens()
        self.assertEqual([t.address for t in tokens], ['ETH/USDT', 'SOL/USDT'])
        self.assertEqual(tokens[0].symbol, 'ETH')

    async def test_token_analysis_from_candles_and_order_book(self) -> None:
        feed = ExchangeMarketDataFeed(self.make_client(FakeExchange()), scorer=lambda analysis: 7.5)
        analysis = await feed.get_token_analysis('SOL/USDT')

        self.assertEqual(analysis.symbol, 'SOL')
        self.assertEqual(analysis.price, 124.0)
        self.assertAlmostEqual(analysis.price_change_1h, (124 / 123 - 1) * 100)
        self.assertAlmostEqual(analysis.price_change_24h, 24.0)
        self.assertAlmostEqual(analysis.volume_1h, 1240.0)
        self.assertAlmostEqual(analysis.volume_6h, 7290.0)
        self.assertAlmostEqual(analysis.volume_24h, 27000.0)
        # only levels within 2% of the price count
        self.assertAlmostEqual(analysis.liquidity_usd, 1730.0)
        self.assertEqual(analysis.pair_created_at, START - timedelta(days=30))
        self.assertEqual(analysis.score, 7.5)

    async def test_unknown_creation_time(self) -> None:
        feed = ExchangeMarketDataFeed(self.make_client(FakeExchange()))
        analysis = await feed.get_token_analysis('ETH/USDT')
        self.assertIsNone(analysis.pair_created_at)
        self.assertIsNone(analysis.score)

    async def test_transient_failure_is_retried(self) -> None:
        exchange = FakeExchange(ticker_failures=1)
        with patch('paper_trader.exchange_client.asyncio.sleep', new=AsyncMock()) as sleep:
            tickers = await self.make_client(exchange).fetch_tickers()
        self.assertEqual(exchange.ticker_calls, 2)
        self.assertIn('SOL/USDT', tickers)
        sleep.assert_awaited_once_with(1)

    async def test_persistent_failure_returns_empty(self) -> None:
        exchange = FakeExchange(ticker_failures=10)
        with patch('paper_trader.exchange_client.asyncio.sleep', new=AsyncMock()):
            tickers = await self.make_client(exchange).fetch_tickers()
        self.assertEqual(tickers, {})
        self.assertEqual(exchange.ticker_calls, 3)

    async def test_wallet_balance(self) -> None:
        client = self.make_client(FakeExchange())
        self.assertEqual(await ExchangeWallet(client, 'USDT').get_balance(), 42.0)
        self.assertIsNone(await ExchangeWallet(client, 'BTC').get_balance())


if __name__ == '__main__':
    unittest.main()

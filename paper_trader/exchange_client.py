"""
Exchange client for reading market data and balances from a cryptocurrency exchange.

Paper trading never places orders; this client only reads.
"""
import asyncio
import pandas as pd
import ccxt.async_support as ccxt_async
from typing import Optional, Dict, Any, List

from paper_trader.config import (
    logger, EXCHANGE_ID, EXCHANGE_API_KEY, EXCHANGE_API_SECRET, EXCHANGE_PASSWORD,
    QUOTE_CURRENCY, MAX_RETRIES
)


class ExchangeClient:
    """Client for interacting with cryptocurrency exchanges."""

    def __init__(self, exchange_id: str = EXCHANGE_ID, max_retries: int = MAX_RETRIES):
        """Initialize the exchange client."""
        self.exchange_id = exchange_id
        self.max_retries = max_retries
        self.exchange = None

    async def initialize(self):
        """Initialize the exchange connection and load markets."""
        exchange_class = getattr(ccxt_async, self.exchange_id, None)
        if exchange_class is None:
            raise ValueError(f"Unsupported exchange: {self.exchange_id}")

        self.exchange = exchange_class({
            'apiKey': EXCHANGE_API_KEY,
            'secret': EXCHANGE_API_SECRET,
            'password': EXCHANGE_PASSWORD,
            'enableRateLimit': True,
            'adjustForTimeDifference': True,
        })
        await self._with_retries('load_markets')
        logger.info(f"Initialized {self.exchange_id} exchange connection")
        return self

    async def close(self):
        """Close the exchange connection."""
        if self.exchange:
            await self.exchange.close()
            logger.info(f"Closed {self.exchange_id} exchange connection")

    async def _with_retries(self, method: str, *args, retries: int = 0, **kwargs):
        """Call an exchange method, retrying with exponential backoff."""
        try:
            return await getattr(self.exchange, method)(*args, **kwargs)
        except Exception as e:
            if retries < self.max_retries:
                logger.warning(f"Error calling {method}, retrying ({retries+1}/{self.max_retries}): {e}")
                await asyncio.sleep(2 ** retries)
                return await self._with_retries(method, *args, retries=retries + 1, **kwargs)
            logger.error(f"Failed to call {method} after {self.max_retries} attempts: {e}")
            return None

    def market(self, symbol: str) -> Optional[Dict[str, Any]]:
        """Return loaded market metadata for a symbol."""
        if not self.exchange or not self.exchange.markets:
            return None
        return self.exchange.markets.get(symbol)

    async def fetch_ohlcv(self, symbol: str, timeframe: str = '1h', limit: int = 25) -> Optional[pd.DataFrame]:
        """Fetch OHLCV data from the exchange."""
        ohlcv = await self._with_retries('fetch_ohlcv', symbol, timeframe, limit=limit)

        # Validate the returned data
        if not ohlcv:
            logger.warning(f"Empty OHLCV data received for {symbol} on {timeframe}")
            return None

        df = pd.DataFrame(ohlcv, columns=['timestamp', 'open', 'high', 'low', 'close', 'volume'])
        df['timestamp'] = pd.to_datetime(df['timestamp'], unit='ms', utc=True)

        if len(df) < 2:
            logger.warning(f"Insufficient data points in OHLCV response: {len(df)} candles")
            return None

        logger.debug(f"Fetched {len(df)} candles for {symbol} on {timeframe}")
        return df

    async def fetch_tickers(self) -> Dict[str, Dict[str, Any]]:
        """Fetch all tickers, empty when the exchange is unavailable."""
        tickers = await self._with_retries('fetch_tickers')
        return tickers or {}

    async def fetch_order_book(self, symbol: str, limit: int = 50) -> Optional[Dict[str, List]]:
        """Fetch the order book for a symbol."""
        return await self._with_retries('fetch_order_book', symbol, limit)

    async def get_balance(self, currency: str = QUOTE_CURRENCY) -> Optional[float]:
        """Free balance in the given currency, or None when unavailable."""
        balance = await self._with_retries('fetch_balance')
        if not balance:
            return None
        free = balance.get('free', {}).get(currency)
        if free is None:
            logger.warning(f"No {currency} balance reported by {self.exchange_id}")
            return None
        logger.debug(f"Current wallet balance: {free} {currency}")
        return float(free)

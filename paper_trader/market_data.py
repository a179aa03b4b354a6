"""
Market data and wallet collaborators consumed by the strategies and the supervisor.
"""
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, List, Optional

import pandas as pd

from paper_trader.config import logger, QUOTE_CURRENCY
from paper_trader.exchange_client import ExchangeClient
from paper_trader.models import TokenAnalysis, TokenIdentity


class MarketDataFeed(ABC):
    """Point-in-time token analysis and trending-token discovery."""

    @abstractmethod
    async def get_token_analysis(self, token_address: str) -> Optional[TokenAnalysis]:
        """Return a snapshot for the token, or None when it is unavailable."""
        pass

    @abstractmethod
    async def get_trending_tokens(self) -> List[TokenIdentity]:
        """Return trending tokens, most interesting first."""
        pass


class Wallet(ABC):
    """Source of the real balance used to seed a paper trading run."""

    @abstractmethod
    async def get_balance(self) -> Optional[float]:
        pass


class ExchangeWallet(Wallet):
    """Reads the free quote-currency balance from the exchange."""

    def __init__(self, client: ExchangeClient, currency: str = QUOTE_CURRENCY):
        self.client = client
        self.currency = currency

    async def get_balance(self) -> Optional[float]:
        try:
            return await self.client.get_balance(self.currency)
        except Exception as e:
            logger.error(f"Failed to get balance: {e}")
            return None


class ExchangeMarketDataFeed(MarketDataFeed):
    """
    Builds token snapshots from exchange markets.

    Tokens are identified by their market symbol (e.g. ``SOL/USDT``). Trending
    tokens are the spot markets quoted in `quote` with the highest 24h quote
    volume. Liquidity is approximated by the order book depth within
    `depth_pct` of the mid price. A `scorer` may be supplied to attach a
    discovery score; without one the analysis carries no score.
    """

    def __init__(self, client: ExchangeClient, quote: str = QUOTE_CURRENCY, top_n: int = 20,
                 depth_pct: float = 0.02, scorer: Optional[Callable[[TokenAnalysis], float]] = None):
        self.client = client
        self.quote = quote
        self.top_n = top_n
        self.depth_pct = depth_pct
        self.scorer = scorer

    async def get_trending_tokens(self) -> List[TokenIdentity]:
        tickers = await self.client.fetch_tickers()
        suffix = f"/{self.quote}"
        ranked = sorted(
            (t for symbol, t in tickers.items() if symbol.endswith(suffix) and t.get('quoteVolume')),
            key=lambda t: t['quoteVolume'],
            reverse=True
        )
        tokens = [
            TokenIdentity(address=t['symbol'], symbol=t['symbol'].split('/')[0])
            for t in ranked[:self.top_n]
        ]
        logger.info(f"Found {len(tokens)} trending tokens")
        return tokens

    async def get_token_analysis(self, token_address: str) -> Optional[TokenAnalysis]:
        df = await self.client.fetch_ohlcv(token_address, '1h', limit=25)
        if df is None:
            return None

        df['quote_volume'] = df['volume'] * df['close']
        closes = df['close']
        price = float(closes.iloc[-1])

        def change_pct(periods: int) -> float:
            if len(closes) <= periods or closes.iloc[-1 - periods] == 0:
                return 0.0
            return (price / float(closes.iloc[-1 - periods]) - 1) * 100

        liquidity = await self._order_book_liquidity(token_address, price)
        market = self.client.market(token_address) or {}
        created = market.get('created')

        analysis = TokenAnalysis(
            address=token_address,
            symbol=market.get('base') or token_address.split('/')[0],
            price=price,
            liquidity_usd=liquidity,
            volume_1h=float(df['quote_volume'].iloc[-1]),
            volume_6h=float(df['quote_volume'].tail(6).sum()),
            volume_24h=float(df['quote_volume'].tail(24).sum()),
            price_change_1h=change_pct(1),
            price_change_24h=change_pct(24),
            pair_created_at=datetime.fromtimestamp(created / 1000, tz=timezone.utc) if created else None
        )
        if self.scorer is not None:
            analysis = replace(analysis, score=self.scorer(analysis))
        return analysis

    async def _order_book_liquidity(self, symbol: str, price: float) -> float:
        book = await self.client.fetch_order_book(symbol)
        if not book:
            return 0.0
        low, high = price * (1 - self.depth_pct), price * (1 + self.depth_pct)
        levels = pd.DataFrame(
            [level[:2] for level in book.get('bids', []) + book.get('asks', [])],
            columns=['price', 'amount']
        )
        if levels.empty:
            return 0.0
        in_range = levels[(levels['price'] >= low) & (levels['price'] <= high)]
        return float((in_range['price'] * in_range['amount']).sum())

import os
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from paper_trader.market_data import MarketDataFeed, Wallet
from paper_trader.models import (
    Direction, Position, RiskParameters, StrategyKind, TokenAnalysis, TokenIdentity, Trade
)
from paper_trader.strategies.base_strategy import BaseStrategy, StrategyParameters

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeMarketDataFeed(MarketDataFeed):
    """In-memory feed; tests set the analysis each token returns."""

    def __init__(self):
        self.analyses = {}
        self.trending = []
        self.failing = set()
        self.analysis_calls = 0

    def set_token(self, address, **fields):
        fields.setdefault('symbol', address)
        self.analyses[address] = TokenAnalysis(address=address, **fields)
        if all(t.address != address for t in self.trending):
            self.trending.append(TokenIdentity(address=address, symbol=fields['symbol']))

    def set_price(self, address, price):
        self.analyses[address] = replace(self.analyses[address], price=price)

    async def get_token_analysis(self, token_address):
        self.analysis_calls += 1
        if token_address in self.failing:
            raise ConnectionError(f"feed down for {token_address}")
        return self.analyses.get(token_address)

    async def get_trending_tokens(self):
        return list(self.trending)


class FakeWallet(Wallet):
    def __init__(self, balance=None, error=None):
        self.balance = balance
        self.error = error

    async def get_balance(self):
        if self.error:
            raise self.error
        return self.balance


class StubStrategy(BaseStrategy):
    """Strategy whose ticks run scripted actions instead of signal logic."""

    kind = StrategyKind.MOMENTUM

    def __init__(self, name, clock=None, actions=None, risk_parameters=None):
        super().__init__(
            name=name,
            feed=FakeMarketDataFeed(),
            parameters=StrategyParameters(),
            risk_parameters=risk_parameters or RiskParameters(),
            clock=clock
        )
        self.actions = list(actions or [])
        self.executions = 0

    def meets_initial_criteria(self, analysis):
        return True

    async def execute(self):
        self.executions += 1
        if self.actions:
            action = self.actions.pop(0)
            if isinstance(action, Exception):
                raise action
            for pnl in action:
                self.record_trade(make_trade(pnl, self.clock.now(), strategy_name=self.name))


def make_trade(pnl, exit_time, strategy_name='stub', symbol='TKN', size=1.0, holding=timedelta(hours=1),
               direction=Direction.LONG, portfolio_before=10.0, success=True):
    entry_price = 100.0
    move = pnl / size * entry_price
    exit_price = entry_price + move if direction == Direction.LONG else entry_price - move
    return Trade(
        strategy_name=strategy_name,
        token_address=f"{symbol}/USDT",
        token_symbol=symbol,
        entry_price=entry_price,
        exit_price=exit_price,
        entry_time=exit_time - holding,
        exit_time=exit_time,
        position_size=size,
        entry_value=size,
        exit_value=size + pnl,
        pnl=pnl,
        pnl_percent=pnl / size * 100,
        direction=direction,
        portfolio_value_before=portfolio_before,
        portfolio_value_after=portfolio_before + pnl,
        success=success
    )


def make_position(entry_price=100.0, direction=Direction.LONG, size=1.0, entry_time=START,
                  stop_loss=0.07, take_profit=0.15, address='TKN/USDT'):
    is_long = direction == Direction.LONG
    return Position(
        token_address=address,
        token_symbol=address.split('/')[0],
        entry_price=entry_price,
        entry_time=entry_time,
        position_size=size,
        stop_loss_price=entry_price * (1 - stop_loss) if is_long else entry_price * (1 + stop_loss),
        take_profit_price=entry_price * (1 + take_profit) if is_long else entry_price * (1 - take_profit),
        direction=direction,
        portfolio_value_before=10.0
    )

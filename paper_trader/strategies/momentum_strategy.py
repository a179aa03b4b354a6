"""
Momentum breakout strategy.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from paper_trader.config import logger
from paper_trader.market_data import MarketDataFeed
from paper_trader.models import (
    Direction, ExitReason, MonitoredToken, Position, RiskParameters, StrategyKind, TokenAnalysis
)
from paper_trader.scheduler import Clock
from paper_trader.strategies.base_strategy import BaseStrategy, StrategyParameters


@dataclass(frozen=True)
class MomentumParameters(StrategyParameters):
    min_token_score: float = 7.0
    min_price_change_1h: float = 3.0  # percent
    min_volume_to_liquidity: float = 0.1
    min_liquidity_usd: float = 10000.0
    max_liquidity_usd: float = 500000.0
    trailing_stop_activation: float = 0.1
    trailing_stop_distance: float = 0.05
    max_holding_period: timedelta = timedelta(hours=24)
    position_size_percent: float = 0.05
    price_history_window: timedelta = timedelta(hours=24)


MOMENTUM_RISK = RiskParameters(max_position_size=0.05, stop_loss_percentage=0.07, take_profit_percentage=0.15)


class MomentumStrategy(BaseStrategy):
    """
    Momentum Strategy enters long on three rising prices with volume confirmation.

    Positions are protected by a fixed stop loss and take profit and by a
    trailing stop that activates once the position is sufficiently in profit.
    """

    kind = StrategyKind.MOMENTUM

    def __init__(self, feed: MarketDataFeed, parameters: Optional[MomentumParameters] = None,
                 risk_parameters: Optional[RiskParameters] = None, clock: Optional[Clock] = None,
                 name: str = "momentum", allocated_capital: float = 0.0):
        super().__init__(
            name=name,
            feed=feed,
            parameters=parameters or MomentumParameters(),
            risk_parameters=risk_parameters or MOMENTUM_RISK,
            clock=clock,
            allocated_capital=allocated_capital
        )

    def meets_initial_criteria(self, analysis: TokenAnalysis) -> bool:
        p = self.parameters
        if analysis.score is not None and analysis.score < p.min_token_score:
            return False
        if not p.min_liquidity_usd <= analysis.liquidity_usd <= p.max_liquidity_usd:
            return False
        if analysis.price_change_1h < p.min_price_change_1h:
            return False
        return analysis.volume_to_liquidity >= p.min_volume_to_liquidity

    def has_momentum_signal(self, token: MonitoredToken) -> bool:
        """Three strictly rising prices, a large enough last move, and rising volume."""
        prices = token.prices
        if len(prices) < 3:
            return False
        prev_prev, prev, current = prices[-3:]
        is_uptrend = current > prev > prev_prev
        recent_change = (current - prev) / prev * 100 if prev else 0.0

        analysis = token.analysis
        volume_increasing = bool(analysis.volume_1h and analysis.volume_6h) and \
            analysis.volume_1h > analysis.volume_6h / 6

        return is_uptrend and recent_change >= self.parameters.min_price_change_1h and volume_increasing

    def check_exit(self, position: Position, now: datetime) -> Optional[ExitReason]:
        """First matching exit condition in priority order."""
        price = position.current_price
        if price <= position.stop_loss_price:
            return ExitReason.STOP_LOSS
        if price >= position.take_profit_price:
            return ExitReason.TAKE_PROFIT
        if position.trailing_stop_activated and price <= position.trailing_stop_price:
            return ExitReason.TRAILING_STOP
        if self.held_too_long(position, now):
            return ExitReason.MAX_HOLDING_PERIOD
        return None

    def update_trailing_stop(self, position: Position):
        """Activate the trailing stop past the activation threshold, then ratchet it up."""
        p = self.parameters
        if not position.trailing_stop_activated and \
                position.unrealized_pnl_percent < p.trailing_stop_activation * 100:
            return
        was_active = position.trailing_stop_activated
        candidate = position.current_price * (1 - p.trailing_stop_distance)
        if position.ratchet_trailing_stop(candidate):
            if was_active:
                logger.debug(f"Trailing stop raised for {position.token_symbol} to {position.trailing_stop_price:.6g}")
            else:
                logger.info(f"Trailing stop activated for {position.token_symbol} at {position.trailing_stop_price:.6g}")

    def update_positions(self):
        now = self.clock.now()
        for address, position in list(self.positions.items()):
            price = self.fresh_price(address)
            if price is None:
                continue
            position.update_price(price, now)
            reason = self.check_exit(position, now)
            if reason is not None:
                self.close_position(address, reason)
            else:
                self.update_trailing_stop(position)

    def check_entry_signals(self):
        for token in self.tokens.values():
            if token.address in self.positions or self.fresh_price(token.address) is None:
                continue
            if self.has_momentum_signal(token):
                logger.info(f"Momentum signal detected for {token.symbol} ({token.address})")
                self.open_position(token, Direction.LONG)

    async def execute(self):
        if not self.active:
            logger.info(f"{self.name} is not active")
            return
        await self.discover_tokens()
        await self.update_token_data()
        self.update_positions()
        self.check_entry_signals()
        self.cleanup_monitored_tokens()
        self.log_status()

"""
Mean reversion strategy.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from paper_trader.config import logger
from paper_trader.market_data import MarketDataFeed
from paper_trader.models import (
    Direction, ExitReason, MonitoredToken, Position, RiskParameters, StrategyKind, TokenAnalysis
)
from paper_trader.scheduler import Clock
from paper_trader.strategies.base_strategy import BaseStrategy, StrategyParameters
from paper_trader.utils.indicators import latest_rsi, latest_sma, moving_average_window


@dataclass(frozen=True)
class MeanReversionParameters(StrategyParameters):
    min_token_score: float = 6.0
    min_liquidity_usd: float = 20000.0
    max_liquidity_usd: float = 1000000.0
    min_pair_age: timedelta = timedelta(days=7)
    rsi_period: int = 14
    oversold_rsi: float = 30.0
    overbought_rsi: float = 70.0
    min_price_deviation: float = 0.15
    lookback_period: timedelta = timedelta(hours=24)
    reversion_tolerance: float = 0.03
    max_holding_period: timedelta = timedelta(hours=48)
    position_size_percent: float = 0.05
    price_history_window: timedelta = timedelta(days=7)


MEAN_REVERSION_RISK = RiskParameters(max_position_size=0.05, stop_loss_percentage=0.05, take_profit_percentage=0.1)


class MeanReversionStrategy(BaseStrategy):
    """
    Mean Reversion Strategy trades RSI extremes far from the moving average.

    Oversold tokens are bought and overbought tokens are shorted. A position
    is closed as soon as the price comes back close to the moving average.
    """

    kind = StrategyKind.MEAN_REVERSION

    def __init__(self, feed: MarketDataFeed, parameters: Optional[MeanReversionParameters] = None,
                 risk_parameters: Optional[RiskParameters] = None, clock: Optional[Clock] = None,
                 name: str = "mean_reversion", allocated_capital: float = 0.0):
        super().__init__(
            name=name,
            feed=feed,
            parameters=parameters or MeanReversionParameters(),
            risk_parameters=risk_parameters or MEAN_REVERSION_RISK,
            clock=clock,
            allocated_capital=allocated_capital
        )

    def meets_initial_criteria(self, analysis: TokenAnalysis) -> bool:
        p = self.parameters
        if analysis.score is not None and analysis.score < p.min_token_score:
            return False
        if not p.min_liquidity_usd <= analysis.liquidity_usd <= p.max_liquidity_usd:
            return False
        # Unknown pair age fails: the strategy needs an established history
        age = analysis.age(self.clock.now())
        return age is not None and age >= p.min_pair_age

    def moving_average(self, token: MonitoredToken) -> Optional[float]:
        history = token.price_history
        if not history:
            return None
        window = moving_average_window(
            self.parameters.lookback_period, history[0].timestamp, self.clock.now(), len(history)
        )
        return latest_sma(token.prices, window)

    def indicators(self, token: MonitoredToken) -> Tuple[Optional[float], Optional[float]]:
        """RSI and moving average of a token's price history."""
        return latest_rsi(token.prices, self.parameters.rsi_period), self.moving_average(token)

    def evaluate_signal(self, rsi: Optional[float], price: float,
                        moving_average: Optional[float]) -> Optional[Direction]:
        """LONG when oversold, SHORT when overbought, both only far enough from the average."""
        p = self.parameters
        if rsi is None or not moving_average:
            return None
        deviation = abs(price - moving_average) / moving_average
        if deviation < p.min_price_deviation:
            return None
        if rsi <= p.oversold_rsi:
            return Direction.LONG
        if rsi >= p.overbought_rsi:
            return Direction.SHORT
        return None

    def check_exit(self, position: Position, now: datetime,
                   moving_average: Optional[float] = None) -> Optional[ExitReason]:
        """First matching exit condition; stop loss and take profit mirror for shorts."""
        price = position.current_price
        if position.is_long:
            if price <= position.stop_loss_price:
                return ExitReason.STOP_LOSS
            if price >= position.take_profit_price:
                return ExitReason.TAKE_PROFIT
        else:
            if price >= position.stop_loss_price:
                return ExitReason.STOP_LOSS
            if price <= position.take_profit_price:
                return ExitReason.TAKE_PROFIT
        if self.held_too_long(position, now):
            return ExitReason.MAX_HOLDING_PERIOD
        if moving_average and abs(price - moving_average) / moving_average < self.parameters.reversion_tolerance:
            return ExitReason.REVERSION_COMPLETE
        return None

    def update_positions(self):
        now = self.clock.now()
        for address, position in list(self.positions.items()):
            price = self.fresh_price(address)
            if price is None:
                continue
            position.update_price(price, now)
            reason = self.check_exit(position, now, self.moving_average(self.tokens.get(address)))
            if reason is not None:
                self.close_position(address, reason)

    def check_entry_signals(self):
        for token in self.tokens.values():
            if token.address in self.positions or len(token.price_history) < self.parameters.rsi_period + 1:
                continue
            price = self.fresh_price(token.address)
            if price is None:
                continue
            rsi, moving_average = self.indicators(token)
            direction = self.evaluate_signal(rsi, price, moving_average)
            if direction is not None:
                logger.info(f"Mean reversion signal for {token.symbol}: RSI {rsi:.1f}, "
                            f"price {price} vs MA {moving_average:.6g} -> {direction.value}")
                self.open_position(token, direction)

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

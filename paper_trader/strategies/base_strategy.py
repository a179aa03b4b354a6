"""
Base strategy class for implementing paper trading strategies.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from paper_trader.config import (
    logger, MAX_MONITORED_TOKENS, DISCOVERY_THRESHOLD, TOKEN_REFRESH_MINUTES, TOKEN_STALE_HOURS
)
from paper_trader.market_data import MarketDataFeed
from paper_trader.models import (
    Direction, ExitReason, MonitoredToken, Position, ProposedTrade, RiskParameters,
    StrategyKind, StrategyMetrics, StrategyReport, TokenAnalysis, Trade, parameters_to_dict
)
from paper_trader.scheduler import Clock, SystemClock
from paper_trader.utils.risk_metrics import apply_trade, risk_rejections
from paper_trader.utils.token_store import TokenStore


@dataclass(frozen=True)
class StrategyParameters:
    """Parameters shared by the signal strategies."""
    min_token_score: float = 6.0
    min_liquidity_usd: float = 10000.0
    max_liquidity_usd: float = 500000.0
    max_holding_period: timedelta = timedelta(hours=24)
    position_size_percent: float = 0.05
    price_history_window: timedelta = timedelta(hours=24)
    refresh_interval: timedelta = timedelta(minutes=TOKEN_REFRESH_MINUTES)
    stale_after: timedelta = timedelta(hours=TOKEN_STALE_HOURS)
    max_monitored_tokens: int = MAX_MONITORED_TOKENS
    discovery_threshold: int = DISCOVERY_THRESHOLD


class BaseStrategy(ABC):
    """
    Base class for all paper trading strategies.

    A strategy owns its monitored tokens, its open positions (at most one per
    token) and its closed trades. Risk checks and metric updates are
    delegated to `paper_trader.utils.risk_metrics`.
    """

    kind: StrategyKind

    def __init__(self, name: str, feed: MarketDataFeed, parameters: StrategyParameters,
                 risk_parameters: RiskParameters, clock: Optional[Clock] = None,
                 allocated_capital: float = 0.0):
        """Initialize the strategy."""
        self.name = name
        self.feed = feed
        self.parameters = parameters
        self.risk_parameters = risk_parameters
        self.clock = clock or SystemClock()
        self.allocated_capital = allocated_capital

        self.active = False
        self.start_time: Optional[datetime] = None
        self.stop_time: Optional[datetime] = None
        self.metrics = StrategyMetrics()
        self.trades: List[Trade] = []
        self.positions: Dict[str, Position] = {}
        self.tokens = TokenStore(parameters.max_monitored_tokens)
        logger.info(f"Created {self.name} strategy")

    def initialize(self):
        """Mark the strategy active and start its clock."""
        self.active = True
        self.start_time = self.clock.now()
        self.stop_time = None
        logger.info(f"Initialized {self.name} with {self.allocated_capital:.4f} allocated capital")

    def stop(self):
        """Mark the strategy inactive. Trade history is kept."""
        self.active = False
        self.stop_time = self.clock.now()
        logger.info(f"Stopped {self.name}")

    @property
    def running_time(self) -> timedelta:
        if self.start_time is None:
            return timedelta(0)
        end = self.clock.now() if self.active or self.stop_time is None else self.stop_time
        return end - self.start_time

    @property
    def current_capital(self) -> float:
        return self.allocated_capital + self.metrics.net_profit_loss

    @abstractmethod
    async def execute(self):
        """Run one tick: discover, update, check signals, clean up."""
        pass

    @abstractmethod
    def meets_initial_criteria(self, analysis: TokenAnalysis) -> bool:
        """Whether a token qualifies for (continued) monitoring."""
        pass

    def record_trade(self, trade: Trade):
        """Append a closed trade and update the running metrics."""
        self.trades.append(trade)
        self.metrics = apply_trade(self.metrics, trade)
        logger.debug(f"{self.name} recorded trade #{self.metrics.total_trades} on {trade.token_symbol}")

    def meets_risk_criteria(self, proposed: ProposedTrade) -> bool:
        """Check a proposed trade against the risk budget. Does not mutate state."""
        reasons = risk_rejections(
            proposed, self.risk_parameters, len(self.positions), self.trades, self.clock.now()
        )
        for reason in reasons:
            logger.debug(f"{self.name} rejected {proposed.token_symbol}: {reason}")
        return not reasons

    def calculate_position_size(self, total_capital: float, risk_per_trade: float) -> float:
        return total_capital * min(risk_per_trade, self.risk_parameters.max_position_size)

    def calculate_stop_loss(self, entry_price: float, is_long: bool = True) -> float:
        if is_long:
            return entry_price * (1 - self.risk_parameters.stop_loss_percentage)
        return entry_price * (1 + self.risk_parameters.stop_loss_percentage)

    def calculate_take_profit(self, entry_price: float, is_long: bool = True) -> float:
        if is_long:
            return entry_price * (1 + self.risk_parameters.take_profit_percentage)
        return entry_price * (1 - self.risk_parameters.take_profit_percentage)

    def get_performance_report(self) -> StrategyReport:
        return StrategyReport(
            name=self.name,
            kind=self.kind,
            active=self.active,
            running_time=self.running_time,
            metrics=self.metrics,
            risk_parameters=self.risk_parameters,
            parameters=parameters_to_dict(self.parameters),
            open_positions=len(self.positions)
        )

    async def _fetch_analysis(self, address: str) -> Optional[TokenAnalysis]:
        """Fetch a token analysis, None on failure or when the price is missing."""
        try:
            analysis = await self.feed.get_token_analysis(address)
        except Exception as e:
            logger.warning(f"{self.name}: market data unavailable for {address}: {e}")
            return None
        if analysis is None or analysis.price is None or analysis.price <= 0:
            return None
        return analysis

    async def discover_tokens(self):
        """Admit trending tokens that pass the initial filter."""
        if len(self.tokens) >= self.parameters.discovery_threshold:
            return
        try:
            candidates = await self.feed.get_trending_tokens()
        except Exception as e:
            logger.warning(f"{self.name}: token discovery failed: {e}")
            return

        added = 0
        for candidate in candidates or []:
            if candidate.address in self.tokens:
                continue
            analysis = await self._fetch_analysis(candidate.address)
            if analysis is None or not self.meets_initial_criteria(analysis):
                continue
            now = self.clock.now()
            token = MonitoredToken(
                address=candidate.address,
                symbol=analysis.symbol or candidate.symbol,
                analysis=analysis,
                monitoring_since=now,
                last_updated=now
            )
            token.add_price(analysis.price, now, self.parameters.price_history_window)
            if self.tokens.add(token, protected=self.positions):
                added += 1
                logger.info(f"{self.name} started monitoring {token.symbol} ({token.address})")
        if added:
            logger.info(f"{self.name} discovered {added} new tokens")

    async def update_token_data(self):
        """Refresh analysis and price history of monitored tokens."""
        for token in self.tokens.values():
            now = self.clock.now()
            if now - token.last_updated < self.parameters.refresh_interval:
                continue
            analysis = await self._fetch_analysis(token.address)
            if analysis is None:
                continue
            token.analysis = analysis
            token.last_updated = now
            token.add_price(analysis.price, now, self.parameters.price_history_window)

    def fresh_price(self, address: str) -> Optional[float]:
        """Latest price for a token if it was sampled within the refresh interval."""
        token = self.tokens.get(address)
        if token is None or not token.price_history:
            return None
        sample = token.price_history[-1]
        if self.clock.now() - sample.timestamp > self.parameters.refresh_interval:
            return None
        return sample.price

    def open_position(self, token: MonitoredToken, direction: Direction = Direction.LONG) -> Optional[Position]:
        """Size a position on the latest price and open it if the risk gate accepts."""
        if token.address in self.positions:
            return None
        entry_price = token.latest_price
        capital = self.current_capital
        is_long = direction == Direction.LONG
        proposed = ProposedTrade(
            token_address=token.address,
            token_symbol=token.symbol,
            entry_price=entry_price,
            position_size=self.calculate_position_size(capital, self.parameters.position_size_percent),
            total_capital=capital,
            portfolio_value_before_trade=capital,
            direction=direction
        )
        if not self.meets_risk_criteria(proposed):
            return None

        position = Position(
            token_address=token.address,
            token_symbol=token.symbol,
            entry_price=entry_price,
            entry_time=self.clock.now(),
            position_size=proposed.position_size,
            stop_loss_price=self.calculate_stop_loss(entry_price, is_long),
            take_profit_price=self.calculate_take_profit(entry_price, is_long),
            direction=direction,
            portfolio_value_before=capital
        )
        self.positions[token.address] = position
        logger.info(f"{self.name} entered {direction.value} {token.symbol} at {entry_price} "
                    f"(size {position.position_size:.4f}, SL {position.stop_loss_price:.6g}, "
                    f"TP {position.take_profit_price:.6g})")
        return position

    def close_position(self, address: str, reason: ExitReason) -> Trade:
        """Remove an open position and record it as a trade at its current price."""
        position = self.positions.pop(address)
        trade = Trade.from_position(position, self.name, self.clock.now(), reason,
                                     portfolio_value_before=self.current_capital)
        self.record_trade(trade)
        logger.info(f"{self.name} exited {position.direction.value} {position.token_symbol} "
                    f"({reason.value}) with P&L: {trade.pnl:.4f} ({trade.pnl_percent:.2f}%)")
        return trade

    def held_too_long(self, position: Position, now: datetime) -> bool:
        return now - position.entry_time > self.parameters.max_holding_period

    def cleanup_monitored_tokens(self):
        """Drop stale or no longer eligible tokens that have no open position."""
        self.tokens.sweep(
            self.clock.now(),
            self.parameters.stale_after,
            keep=self.positions,
            still_eligible=lambda token: self.meets_initial_criteria(token.analysis)
        )

    def log_status(self):
        logger.info(f"{self.name} status: {len(self.tokens)} monitored tokens, "
                    f"{len(self.positions)} open positions, {self.metrics.total_trades} trades, "
                    f"win rate {self.metrics.win_rate:.2%}, net P&L {self.metrics.net_profit_loss:.4f}")
        for position in self.positions.values():
            logger.info(f"  {position.token_symbol} {position.direction.value}: entry {position.entry_price}, "
                        f"current {position.current_price}, P&L {position.unrealized_pnl_percent:.2f}%")

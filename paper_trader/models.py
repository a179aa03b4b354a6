"""
Data models for simulated positions, closed trades and performance reports.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Any, Tuple


class Direction(str, Enum):
    """Side of a simulated position."""
    LONG = 'LONG'
    SHORT = 'SHORT'


class StrategyKind(str, Enum):
    """Tag used to dispatch over a heterogeneous list of strategies."""
    MOMENTUM = 'momentum'
    MEAN_REVERSION = 'mean_reversion'


class ExitReason(str, Enum):
    """Why a position was closed."""
    STOP_LOSS = 'stop_loss'
    TAKE_PROFIT = 'take_profit'
    TRAILING_STOP = 'trailing_stop'
    MAX_HOLDING_PERIOD = 'max_holding_period'
    REVERSION_COMPLETE = 'reversion_complete'


def _to_ms(value: timedelta) -> float:
    return value.total_seconds() * 1000


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp, assuming UTC when no offset is given."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class RiskParameters:
    """Per-strategy risk budget. Fixed for the lifetime of a run."""
    max_position_size: float = 0.1  # fraction of available capital
    stop_loss_percentage: float = 0.05
    take_profit_percentage: float = 0.1
    max_open_trades: int = 3
    max_daily_loss: float = 0.05
    max_drawdown: float = 0.15

    def to_dict(self) -> Dict[str, Any]:
        """Convert risk parameters to dictionary."""
        return {
            'maxPositionSize': self.max_position_size,
            'stopLossPercentage': self.stop_loss_percentage,
            'takeProfitPercentage': self.take_profit_percentage,
            'maxOpenTrades': self.max_open_trades,
            'maxDailyLoss': self.max_daily_loss,
            'maxDrawdown': self.max_drawdown
        }


@dataclass(frozen=True)
class TokenIdentity:
    """A token as returned by trending-token discovery."""
    address: str
    symbol: str = ''


@dataclass(frozen=True)
class TokenAnalysis:
    """Point-in-time market snapshot for one token."""
    address: str
    symbol: str = ''
    price: Optional[float] = None
    liquidity_usd: float = 0.0
    volume_1h: float = 0.0
    volume_6h: float = 0.0
    volume_24h: float = 0.0
    price_change_1h: float = 0.0
    price_change_24h: float = 0.0
    pair_created_at: Optional[datetime] = None
    score: Optional[float] = None

    @property
    def volume_to_liquidity(self) -> float:
        if not self.liquidity_usd:
            return 0.0
        return self.volume_24h / self.liquidity_usd

    def age(self, now: datetime) -> Optional[timedelta]:
        """Age of the trading pair, or None when the creation time is unknown."""
        if self.pair_created_at is None:
            return None
        return now - self.pair_created_at


@dataclass(frozen=True)
class PriceSample:
    price: float
    timestamp: datetime


@dataclass
class MonitoredToken:
    """A token a strategy is watching, with its own price history."""
    address: str
    symbol: str
    analysis: TokenAnalysis
    monitoring_since: datetime
    last_updated: datetime
    price_history: List[PriceSample] = field(default_factory=list)

    @property
    def latest_price(self) -> Optional[float]:
        return self.price_history[-1].price if self.price_history else None

    @property
    def prices(self) -> List[float]:
        return [sample.price for sample in self.price_history]

    def add_price(self, price: float, timestamp: datetime, window: timedelta):
        """Append a price sample and drop samples older than the window."""
        self.price_history.append(PriceSample(price=price, timestamp=timestamp))
        cutoff = timestamp - window
        self.price_history = [p for p in self.price_history if p.timestamp >= cutoff]


@dataclass(frozen=True)
class ProposedTrade:
    """A trade submitted to the risk gate before a position is opened."""
    token_address: str
    token_symbol: str
    entry_price: float
    position_size: float
    total_capital: float
    portfolio_value_before_trade: Optional[float] = None
    direction: Direction = Direction.LONG


@dataclass
class Position:
    """Open simulated position. Stop-loss and take-profit are fixed at entry."""
    token_address: str
    token_symbol: str
    entry_price: float
    entry_time: datetime
    position_size: float
    stop_loss_price: float
    take_profit_price: float
    direction: Direction = Direction.LONG
    portfolio_value_before: float = 0.0
    trailing_stop_activated: bool = False
    trailing_stop_price: Optional[float] = None
    current_price: Optional[float] = None
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    last_updated: Optional[datetime] = None

    def __post_init__(self):
        if self.current_price is None:
            self.current_price = self.entry_price
        if self.last_updated is None:
            self.last_updated = self.entry_time

    @property
    def is_long(self) -> bool:
        return self.direction == Direction.LONG

    def update_price(self, price: float, now: datetime):
        """Mark the position to the latest price."""
        self.current_price = price
        self.last_updated = now
        if self.is_long:
            move = price - self.entry_price
        else:
            move = self.entry_price - price
        self.unrealized_pnl = move * self.position_size / self.entry_price
        self.unrealized_pnl_percent = move / self.entry_price * 100

    def ratchet_trailing_stop(self, candidate: float) -> bool:
        """Move the trailing stop towards profit only. Returns True when it moved."""
        if not self.trailing_stop_activated or self.trailing_stop_price is None:
            self.trailing_stop_activated = True
            self.trailing_stop_price = candidate
            return True
        if self.is_long and candidate > self.trailing_stop_price:
            self.trailing_stop_price = candidate
            return True
        if not self.is_long and candidate < self.trailing_stop_price:
            self.trailing_stop_price = candidate
            return True
        return False

    def exit_value(self, price: float) -> float:
        """Value of the position if closed at the given price."""
        if self.is_long:
            return self.position_size * (price / self.entry_price)
        return self.position_size * (2 - price / self.entry_price)

    def to_dict(self) -> Dict[str, Any]:
        """Convert position to dictionary."""
        return {
            'tokenAddress': self.token_address,
            'tokenSymbol': self.token_symbol,
            'direction': self.direction.value,
            'entryPrice': self.entry_price,
            'entryTime': self.entry_time.isoformat(),
            'positionSize': self.position_size,
            'stopLossPrice': self.stop_loss_price,
            'takeProfitPrice': self.take_profit_price,
            'trailingStopActivated': self.trailing_stop_activated,
            'trailingStopPrice': self.trailing_stop_price,
            'currentPrice': self.current_price,
            'unrealizedPnl': self.unrealized_pnl,
            'unrealizedPnlPercent': self.unrealized_pnl_percent,
            'lastUpdated': self.last_updated.isoformat() if self.last_updated else None
        }


@dataclass(frozen=True)
class Trade:
    """Immutable record of a closed position."""
    strategy_name: str
    token_address: str
    token_symbol: str
    entry_price: float
    exit_price: float
    entry_time: datetime
    exit_time: datetime
    position_size: float
    entry_value: float
    exit_value: float
    pnl: float
    pnl_percent: float
    direction: Direction = Direction.LONG
    exit_reason: Optional[ExitReason] = None
    portfolio_value_before: float = 0.0
    portfolio_value_after: float = 0.0
    success: bool = True

    @property
    def holding_period(self) -> timedelta:
        return self.exit_time - self.entry_time

    @property
    def holding_period_hours(self) -> float:
        return self.holding_period.total_seconds() / 3600

    @property
    def realized_pnl(self) -> float:
        return self.exit_value - self.entry_value

    @classmethod
    def from_position(cls, position: Position, strategy_name: str, exit_time: datetime,
                      exit_reason: Optional[ExitReason] = None,
                      portfolio_value_before: Optional[float] = None) -> 'Trade':
        """
        Close a position at its current price.

        `portfolio_value_before` is the strategy capital at exit time. It
        defaults to the capital recorded when the position was opened.
        """
        if portfolio_value_before is None:
            portfolio_value_before = position.portfolio_value_before
        exit_price = position.current_price
        exit_value = position.exit_value(exit_price)
        pnl = exit_value - position.position_size
        if position.is_long:
            pnl_percent = (exit_price - position.entry_price) / position.entry_price * 100
        else:
            pnl_percent = (position.entry_price - exit_price) / position.entry_price * 100
        return cls(
            strategy_name=strategy_name,
            token_address=position.token_address,
            token_symbol=position.token_symbol,
            entry_price=position.entry_price,
            exit_price=exit_price,
            entry_time=position.entry_time,
            exit_time=exit_time,
            position_size=position.position_size,
            entry_value=position.position_size,
            exit_value=exit_value,
            pnl=pnl,
            pnl_percent=pnl_percent,
            direction=position.direction,
            exit_reason=exit_reason,
            portfolio_value_before=portfolio_value_before,
            portfolio_value_after=portfolio_value_before + pnl
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert trade to dictionary."""
        return {
            'strategyName': self.strategy_name,
            'tokenAddress': self.token_address,
            'tokenSymbol': self.token_symbol,
            'entryPrice': self.entry_price,
            'exitPrice': self.exit_price,
            'entryTime': self.entry_time.isoformat(),
            'exitTime': self.exit_time.isoformat(),
            'positionSize': self.position_size,
            'entryValue': self.entry_value,
            'exitValue': self.exit_value,
            'pnl': self.pnl,
            'pnlPercent': self.pnl_percent,
            'direction': self.direction.value,
            'exitReason': self.exit_reason.value if self.exit_reason else None,
            'holdingPeriodMs': _to_ms(self.holding_period),
            'portfolioValueBefore': self.portfolio_value_before,
            'portfolioValueAfter': self.portfolio_value_after,
            'success': self.success,
            'tradeStatus': 'PROFIT' if self.pnl > 0 else 'LOSS'
        }


@dataclass
class StrategyMetrics:
    """Running aggregate of a strategy's trades."""
    total_trades: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    profitable_trades: int = 0
    unprofitable_trades: int = 0
    total_profit: float = 0.0
    total_loss: float = 0.0
    net_profit_loss: float = 0.0
    win_rate: float = 0.0
    average_profit: float = 0.0
    average_loss: float = 0.0
    largest_profit: float = 0.0
    largest_loss: float = 0.0
    profit_factor: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            'totalTrades': self.total_trades,
            'successfulTrades': self.successful_trades,
            'failedTrades': self.failed_trades,
            'profitableTrades': self.profitable_trades,
            'unprofitableTrades': self.unprofitable_trades,
            'totalProfit': self.total_profit,
            'totalLoss': self.total_loss,
            'netProfitLoss': self.net_profit_loss,
            'winRate': self.win_rate,
            'averageProfit': self.average_profit,
            'averageLoss': self.average_loss,
            'largestProfit': self.largest_profit,
            'largestLoss': self.largest_loss,
            'profitFactor': self.profit_factor
        }


@dataclass(frozen=True)
class StrategyReport:
    """Snapshot of one strategy, optionally enriched by the performance reporter."""
    name: str
    kind: StrategyKind
    active: bool
    running_time: timedelta
    metrics: StrategyMetrics
    risk_parameters: RiskParameters
    parameters: Dict[str, Any] = field(default_factory=dict)
    open_positions: int = 0
    annualized_return: Optional[float] = None
    sharpe_ratio: Optional[float] = None
    max_drawdown: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert strategy report to dictionary."""
        data = {
            'name': self.name,
            'kind': self.kind.value,
            'active': self.active,
            'runningTime': _to_ms(self.running_time),
            'metrics': self.metrics.to_dict(),
            'riskParameters': self.risk_parameters.to_dict(),
            'parameters': dict(self.parameters),
            'openPositions': self.open_positions
        }
        if self.annualized_return is not None:
            data['annualizedReturn'] = self.annualized_return
        if self.sharpe_ratio is not None:
            data['sharpeRatio'] = self.sharpe_ratio
        if self.max_drawdown is not None:
            data['maxDrawdown'] = self.max_drawdown
        return data


@dataclass(frozen=True)
class StrategyRanking:
    name: str
    net_profit_loss: float
    return_percentage: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'netProfitLoss': self.net_profit_loss,
            'returnPercentage': self.return_percentage
        }


@dataclass(frozen=True)
class BalanceSnapshot:
    """Aggregate balance persisted after every tick."""
    timestamp: datetime
    running_time: timedelta
    initial_balance: float
    current_balance: float
    percentage_change: float
    strategies: Tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert snapshot to dictionary."""
        return {
            'timestamp': self.timestamp.isoformat(),
            'runningTime': _to_ms(self.running_time),
            'initialBalance': self.initial_balance,
            'currentBalance': self.current_balance,
            'percentageChange': self.percentage_change,
            'strategies': list(self.strategies)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BalanceSnapshot':
        """Create snapshot from dictionary."""
        return cls(
            timestamp=_parse_datetime(data['timestamp']),
            running_time=timedelta(milliseconds=data.get('runningTime', 0)),
            initial_balance=data['initialBalance'],
            current_balance=data['currentBalance'],
            percentage_change=data.get('percentageChange', 0.0),
            strategies=tuple(data.get('strategies', []))
        )


@dataclass(frozen=True)
class PerformanceReport:
    """Read-only report produced once per reporting cycle."""
    generated_at: datetime
    run_duration: timedelta
    initial_balance: float
    final_balance: float
    total_return_percent: float
    strategies: Tuple[StrategyReport, ...]
    best_strategy: Optional[StrategyRanking]
    worst_strategy: Optional[StrategyRanking]
    system_sharpe_ratio: float
    max_drawdown: float

    def to_dict(self) -> Dict[str, Any]:
        """Convert performance report to dictionary."""
        return {
            'generatedAt': self.generated_at.isoformat(),
            'runDurationMs': _to_ms(self.run_duration),
            'initialBalance': self.initial_balance,
            'finalBalance': self.final_balance,
            'totalReturnPercent': self.total_return_percent,
            'strategies': [s.to_dict() for s in self.strategies],
            'bestStrategy': self.best_strategy.to_dict() if self.best_strategy else None,
            'worstStrategy': self.worst_strategy.to_dict() if self.worst_strategy else None,
            'systemSharpeRatio': self.system_sharpe_ratio,
            'maxDrawdown': self.max_drawdown
        }


def parameters_to_dict(parameters: Any) -> Dict[str, Any]:
    """Flatten a strategy parameter dataclass for reports, timedeltas in hours."""
    data = asdict(parameters)
    for key, value in data.items():
        if isinstance(value, timedelta):
            data[key] = value.total_seconds() / 3600
    return data

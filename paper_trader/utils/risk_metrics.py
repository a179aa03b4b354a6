"""
Pure risk and performance functions shared by every strategy.

Nothing here mutates its arguments; metric updates return a new
StrategyMetrics.
"""
from dataclasses import replace
from datetime import datetime, time
from typing import Iterable, List, Optional

from paper_trader.models import ProposedTrade, RiskParameters, StrategyMetrics, Trade


def win_rate(profitable_trades: int, total_trades: int) -> float:
    return profitable_trades / total_trades if total_trades > 0 else 0.0


def profit_factor(total_profit: float, total_loss: float) -> float:
    return total_profit / total_loss if total_loss > 0 else 0.0


def average(total: float, count: int) -> float:
    return total / count if count > 0 else 0.0


def apply_trade(metrics: StrategyMetrics, trade: Trade) -> StrategyMetrics:
    """Return the metrics updated with one recorded trade.

    Unsuccessful trades only move the counters. A realized P&L of exactly
    zero counts as unprofitable.
    """
    updated = replace(metrics, total_trades=metrics.total_trades + 1)
    if not trade.success:
        return replace(updated, failed_trades=metrics.failed_trades + 1)

    pnl = trade.realized_pnl
    updated = replace(updated, successful_trades=metrics.successful_trades + 1)
    if pnl > 0:
        updated = replace(
            updated,
            profitable_trades=updated.profitable_trades + 1,
            total_profit=updated.total_profit + pnl,
            largest_profit=max(updated.largest_profit, pnl)
        )
    else:
        updated = replace(
            updated,
            unprofitable_trades=updated.unprofitable_trades + 1,
            total_loss=updated.total_loss + abs(pnl),
            largest_loss=max(updated.largest_loss, abs(pnl))
        )

    return replace(
        updated,
        net_profit_loss=updated.total_profit - updated.total_loss,
        win_rate=win_rate(updated.profitable_trades, updated.total_trades),
        average_profit=average(updated.total_profit, updated.profitable_trades),
        average_loss=average(updated.total_loss, updated.unprofitable_trades),
        profit_factor=profit_factor(updated.total_profit, updated.total_loss)
    )


def metrics_from_trades(trades: Iterable[Trade]) -> StrategyMetrics:
    """Rebuild metrics from scratch, for verification."""
    metrics = StrategyMetrics()
    for trade in trades:
        metrics = apply_trade(metrics, trade)
    return metrics


def start_of_day(now: datetime) -> datetime:
    return datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)


def daily_realized_loss(trades: Iterable[Trade], now: datetime) -> float:
    """Sum of losses on trades closed since the start of the current calendar day."""
    day_start = start_of_day(now)
    return sum(
        -t.realized_pnl for t in trades
        if t.success and t.exit_time >= day_start and t.realized_pnl < 0
    )


def high_water_mark(trades: Iterable[Trade], total_capital: float) -> float:
    """Highest portfolio value ever recorded, starting from the capital itself."""
    peak = total_capital
    for trade in trades:
        peak = max(peak, trade.portfolio_value_before, trade.portfolio_value_after)
    return peak


def risk_rejections(proposed: ProposedTrade, risk: RiskParameters, open_positions: int,
                    trades: List[Trade], now: datetime) -> List[str]:
    """
    Evaluate the four independent risk checks.

    Returns the reasons for rejection; an empty list means the trade is
    accepted.
    """
    reasons = []
    capital = proposed.total_capital

    if open_positions >= risk.max_open_trades:
        reasons.append(f"max open trades reached ({open_positions}/{risk.max_open_trades})")

    max_size = risk.max_position_size * capital
    if proposed.position_size > max_size:
        reasons.append(f"position size {proposed.position_size:.4f} exceeds maximum {max_size:.4f}")

    if capital > 0:
        loss_fraction = daily_realized_loss(trades, now) / capital
        if loss_fraction >= risk.max_daily_loss:
            reasons.append(f"daily loss {loss_fraction:.2%} reached limit {risk.max_daily_loss:.2%}")
    else:
        reasons.append("no capital available")

    portfolio_value = proposed.portfolio_value_before_trade
    if portfolio_value is None:
        portfolio_value = capital
    peak = high_water_mark(trades, capital)
    drawdown = drawdown_fraction(peak, portfolio_value)
    if drawdown is not None and drawdown > risk.max_drawdown:
        reasons.append(f"drawdown {drawdown:.2%} exceeds limit {risk.max_drawdown:.2%}")

    return reasons


def drawdown_fraction(peak: float, value: float) -> Optional[float]:
    if peak <= 0:
        return None
    return max(0.0, (peak - value) / peak)

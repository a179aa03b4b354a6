"""
Performance analytics over the trade history of the registered strategies.
"""
import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from paper_trader.config import logger, TRADING_DAYS_PER_YEAR
from paper_trader.models import BalanceSnapshot, PerformanceReport, StrategyRanking, Trade
from paper_trader.strategies.base_strategy import BaseStrategy

SECONDS_PER_YEAR = 365 * 24 * 60 * 60


class PerformanceReporter:
    """
    Turns strategy state and balance snapshots into a PerformanceReport.

    The reporter only reads strategies; it never mutates positions, trades
    or metrics.
    """

    def __init__(self, annualization_factor: float = TRADING_DAYS_PER_YEAR):
        self.annualization_factor = annualization_factor

    def sharpe_ratio(self, trades: Sequence[Trade], invested_capital: float) -> float:
        """
        Annualized Sharpe ratio of daily realized returns.

        Trades are grouped by the calendar day of their exit; each day's
        return is its summed P&L over the invested capital. Zero when there
        are fewer than two days or no variation.
        """
        if len(trades) < 2 or invested_capital <= 0:
            return 0.0
        df = pd.DataFrame({
            'day': [t.exit_time.date() for t in trades],
            'pnl': [t.pnl for t in trades]
        })
        daily_returns = df.groupby('day')['pnl'].sum() / invested_capital
        if len(daily_returns) < 2:
            return 0.0
        std = daily_returns.std(ddof=0)
        if not np.isfinite(std) or std < 1e-12:
            return 0.0
        return float(daily_returns.mean() / std * math.sqrt(self.annualization_factor))

    @staticmethod
    def annualized_return(net_profit_loss: float, allocated_capital: float, duration: timedelta) -> float:
        years = duration.total_seconds() / SECONDS_PER_YEAR
        if years <= 0 or allocated_capital <= 0:
            return 0.0
        growth = 1 + net_profit_loss / allocated_capital
        if growth <= 0:
            return -1.0
        try:
            return growth ** (1 / years) - 1
        except OverflowError:
            return math.inf

    @staticmethod
    def max_drawdown(balances: Iterable[float], initial_balance: float) -> float:
        """Largest peak-to-trough decline, as a fraction, replaying balances in order."""
        peak = initial_balance
        max_drawdown = 0.0
        for balance in balances:
            if balance > peak:
                peak = balance
            elif peak > 0:
                max_drawdown = max(max_drawdown, (peak - balance) / peak)
        return max_drawdown

    def strategy_drawdown(self, name: str, snapshots: Sequence[BalanceSnapshot], allocated_capital: float) -> float:
        """Drawdown of one strategy's capital reconstructed from the snapshots."""
        balances = [
            allocated_capital + report['metrics']['netProfitLoss']
            for snapshot in snapshots
            for report in snapshot.strategies
            if report.get('name') == name
        ]
        return self.max_drawdown(balances, allocated_capital)

    @staticmethod
    def rank_strategies(strategies: Sequence[BaseStrategy], allocated_capital: float
                        ) -> Tuple[Optional[StrategyRanking], Optional[StrategyRanking]]:
        """Best and worst strategy by net P&L. Ties go to the first registered."""
        if not strategies:
            return None, None
        best = worst = strategies[0]
        for strategy in strategies[1:]:
            if strategy.metrics.net_profit_loss > best.metrics.net_profit_loss:
                best = strategy
            if strategy.metrics.net_profit_loss < worst.metrics.net_profit_loss:
                worst = strategy

        def ranking(strategy: BaseStrategy) -> StrategyRanking:
            pnl = strategy.metrics.net_profit_loss
            return StrategyRanking(
                name=strategy.name,
                net_profit_loss=pnl,
                return_percentage=pnl / allocated_capital * 100 if allocated_capital else 0.0
            )

        return ranking(best), ranking(worst)

    @staticmethod
    def trade_log_rows(strategies: Sequence[BaseStrategy]) -> List[Dict[str, Any]]:
        """Flat trade log, in registration order then trade order."""
        rows = []
        for strategy in strategies:
            for trade in strategy.trades:
                rows.append({
                    'Strategy': strategy.name,
                    'TokenSymbol': trade.token_symbol,
                    'TokenAddress': trade.token_address,
                    'EntryTime': trade.entry_time.isoformat(),
                    'ExitTime': trade.exit_time.isoformat(),
                    'EntryPrice': trade.entry_price,
                    'ExitPrice': trade.exit_price,
                    'PositionSize': trade.position_size,
                    'PnL': trade.pnl,
                    'PnLPercent': round(trade.pnl_percent, 2),
                    'Direction': trade.direction.value,
                    'HoldingPeriodHours': round(trade.holding_period_hours, 2)
                })
        return rows

    @staticmethod
    def net_profit_loss_by_strategy(trade_log: pd.DataFrame) -> Dict[str, float]:
        """Sum realized P&L per strategy from a parsed trade log."""
        if trade_log.empty:
            return {}
        return {name: float(pnl) for name, pnl in trade_log.groupby('Strategy', sort=False)['PnL'].sum().items()}

    def build_report(self, strategies: Sequence[BaseStrategy], initial_balance: float, final_balance: float,
                     start_time: datetime, now: datetime, snapshots: Sequence[BalanceSnapshot]) -> PerformanceReport:
        """Assemble the report for the given strategies and snapshots."""
        allocated = initial_balance / len(strategies) if strategies else 0.0
        duration = now - start_time

        reports = []
        all_trades = []
        for strategy in strategies:
            base = strategy.get_performance_report()
            reports.append(replace(
                base,
                annualized_return=self.annualized_return(base.metrics.net_profit_loss, allocated, duration),
                sharpe_ratio=self.sharpe_ratio(strategy.trades, allocated),
                max_drawdown=self.strategy_drawdown(strategy.name, snapshots, allocated)
            ))
            all_trades.extend(strategy.trades)

        best, worst = self.rank_strategies(strategies, allocated)
        report = PerformanceReport(
            generated_at=now,
            run_duration=duration,
            initial_balance=initial_balance,
            final_balance=final_balance,
            total_return_percent=(final_balance / initial_balance - 1) * 100 if initial_balance else 0.0,
            strategies=tuple(reports),
            best_strategy=best,
            worst_strategy=worst,
            system_sharpe_ratio=self.sharpe_ratio(all_trades, initial_balance),
            max_drawdown=self.max_drawdown((s.current_balance for s in snapshots), initial_balance)
        )
        logger.info(f"Built performance report: {len(all_trades)} trades, "
                    f"return {report.total_return_percent:.2f}%, max drawdown {report.max_drawdown:.2%}")
        return report

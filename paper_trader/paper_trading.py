"""
Paper trading supervisor: runs the registered strategies on a fixed interval
and owns the aggregate balance.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from paper_trader.config import (
    logger, INITIAL_BALANCE, EXECUTION_INTERVAL_MINUTES, get_report_file, get_trade_log_file
)
from paper_trader.exceptions import InitializationError, ReportGenerationError
from paper_trader.market_data import Wallet
from paper_trader.models import BalanceSnapshot, PerformanceReport, StrategyRanking
from paper_trader.performance import PerformanceReporter
from paper_trader.scheduler import Clock, IntervalScheduler, SystemClock
from paper_trader.strategies.base_strategy import BaseStrategy
from paper_trader.utils.logger import save_json, save_snapshot, send_performance_report, write_trade_log


class PaperTradingSystem:
    """
    Supervisor of a paper trading run.

    Strategies execute one after another inside a tick, so the aggregate
    balance is only written here, after every strategy has finished.
    """

    def __init__(self, strategies: Optional[Sequence[BaseStrategy]] = None, wallet: Optional[Wallet] = None,
                 clock: Optional[Clock] = None,
                 interval: timedelta = timedelta(minutes=EXECUTION_INTERVAL_MINUTES),
                 results_dir: Optional[str] = None, reporter: Optional[PerformanceReporter] = None,
                 persist_snapshots: bool = True, notify: bool = False):
        self.strategies: List[BaseStrategy] = []
        self.wallet = wallet
        self.clock = clock or SystemClock()
        self.scheduler = IntervalScheduler(interval, self.clock)
        self.results_dir = results_dir
        self.reporter = reporter or PerformanceReporter()
        self.persist_snapshots = persist_snapshots
        self.notify = notify

        self.is_running = False
        self.start_time: Optional[datetime] = None
        self.last_execution_time: Optional[datetime] = None
        self.initial_balance = 0.0
        self.current_balance = 0.0
        self.snapshots: List[BalanceSnapshot] = []
        self.last_report: Optional[PerformanceReport] = None
        self._tick_lock = asyncio.Lock()

        for strategy in strategies or []:
            self.register_strategy(strategy)

    def register_strategy(self, strategy: BaseStrategy):
        if any(s.name == strategy.name for s in self.strategies):
            raise ValueError(f"Strategy {strategy.name} is already registered")
        self.strategies.append(strategy)
        logger.info(f"Registered strategy: {strategy.name}")

    @property
    def allocated_capital(self) -> float:
        return self.initial_balance / len(self.strategies) if self.strategies else 0.0

    async def initialize(self, initial_balance: float = INITIAL_BALANCE) -> float:
        """
        Resolve the starting balance and initialize every strategy.

        The wallet balance is used when available, otherwise `initial_balance`.
        Raises InitializationError when neither is usable or no strategy is
        registered.
        """
        logger.info("Initializing Paper Trading System")
        balance = None
        if self.wallet is not None:
            try:
                balance = await self.wallet.get_balance()
            except Exception as e:
                logger.warning(f"Wallet balance unavailable: {e}")
        if not balance or balance <= 0:
            balance = initial_balance
        if not balance or balance <= 0:
            raise InitializationError("No usable initial balance")
        if not self.strategies:
            raise InitializationError("No strategies registered")

        self.initial_balance = float(balance)
        self.current_balance = self.initial_balance
        for strategy in self.strategies:
            strategy.allocated_capital = self.allocated_capital
            strategy.initialize()
        logger.info(f"Paper Trading System initialized with {self.initial_balance} "
                    f"across {len(self.strategies)} strategies")
        return self.initial_balance

    async def start(self):
        """Run one tick immediately, then schedule recurring ticks."""
        if self.is_running:
            logger.warning("Paper Trading System is already running")
            return
        self.is_running = True
        self.start_time = self.clock.now()
        logger.info("Paper Trading System started")
        await self.execute_strategies()
        if not self.is_running:
            # stopped during the first tick
            return
        self.scheduler.start(self.execute_strategies)

    async def execute_strategies(self):
        """One tick: every strategy in registration order, then the aggregate balance."""
        if not self.is_running:
            return
        async with self._tick_lock:
            self.last_execution_time = self.clock.now()
            logger.info(f"Executing strategies at {self.last_execution_time.isoformat()}")
            for strategy in self.strategies:
                try:
                    await strategy.execute()
                except Exception as e:
                    logger.error(f"Error executing strategy {strategy.name}: {e}", exc_info=True)
            self.update_system_balance()
            self.save_intermediate_results()

    def update_system_balance(self) -> float:
        self.current_balance = self.initial_balance + sum(s.metrics.net_profit_loss for s in self.strategies)
        logger.info(f"Current system balance: {self.current_balance:.4f} "
                    f"({self.percentage_change:+.2f}%)")
        return self.current_balance

    @property
    def percentage_change(self) -> float:
        if not self.initial_balance:
            return 0.0
        return (self.current_balance / self.initial_balance - 1) * 100

    @property
    def running_time(self) -> timedelta:
        return self.clock.now() - self.start_time if self.start_time else timedelta(0)

    def save_intermediate_results(self) -> BalanceSnapshot:
        snapshot = BalanceSnapshot(
            timestamp=self.clock.now(),
            running_time=self.running_time,
            initial_balance=self.initial_balance,
            current_balance=self.current_balance,
            percentage_change=self.percentage_change,
            strategies=tuple(s.get_performance_report().to_dict() for s in self.strategies)
        )
        self.snapshots.append(snapshot)
        if self.persist_snapshots:
            try:
                save_snapshot(snapshot, self.results_dir)
            except OSError as e:
                logger.error(f"Failed to save intermediate results: {e}")
        return snapshot

    async def stop(self) -> Optional[PerformanceReport]:
        """
        Stop the schedule and the strategies, then generate the final report.

        A tick in progress is allowed to finish first. Report failures are
        raised as ReportGenerationError.
        """
        if not self.is_running:
            logger.warning("Paper Trading System is not running")
            return None
        self.is_running = False
        await self.scheduler.stop()
        async with self._tick_lock:
            for strategy in self.strategies:
                strategy.stop()
            logger.info("Paper Trading System stopped")
            return await self.generate_performance_report()

    async def generate_performance_report(self) -> PerformanceReport:
        """Build the report and write it with the trade log to the results directory."""
        if not self.snapshots:
            raise ReportGenerationError("No balance snapshots recorded, cannot reconstruct drawdown")
        report = self.reporter.build_report(
            self.strategies, self.initial_balance, self.current_balance,
            self.start_time or self.clock.now(), self.clock.now(), self.snapshots
        )
        report_file = get_report_file(self.results_dir)
        trade_log_file = get_trade_log_file(self.results_dir)
        try:
            save_json(report.to_dict(), report_file)
            write_trade_log(self.reporter.trade_log_rows(self.strategies), trade_log_file)
        except (OSError, ValueError) as e:
            raise ReportGenerationError(f"Failed to write performance report: {e}") from e
        logger.info(f"Generated performance report: {report_file}")

        self.last_report = report
        if self.notify:
            await send_performance_report(report)
        return report

    def calculate_max_drawdown(self) -> float:
        return self.reporter.max_drawdown((s.current_balance for s in self.snapshots), self.initial_balance)

    def find_best_strategy(self) -> Optional[StrategyRanking]:
        return self.reporter.rank_strategies(self.strategies, self.allocated_capital)[0]

    def find_worst_strategy(self) -> Optional[StrategyRanking]:
        return self.reporter.rank_strategies(self.strategies, self.allocated_capital)[1]

    def get_status(self) -> Dict[str, Any]:
        return {
            'isRunning': self.is_running,
            'startTime': self.start_time.isoformat() if self.start_time else None,
            'runningTime': self.running_time.total_seconds() * 1000,
            'initialBalance': self.initial_balance,
            'currentBalance': self.current_balance,
            'percentageChange': self.percentage_change,
            'lastExecutionTime': self.last_execution_time.isoformat() if self.last_execution_time else None,
            'maxDrawdown': self.calculate_max_drawdown(),
            'strategies': [
                {
                    'name': s.name,
                    'active': s.active,
                    'totalTrades': s.metrics.total_trades,
                    'openPositions': len(s.positions),
                    'netProfitLoss': s.metrics.net_profit_loss,
                    'winRate': s.metrics.win_rate,
                    'positions': [p.to_dict() for p in s.positions.values()]
                }
                for s in self.strategies
            ]
        }

"""
Command line entry point for paper trading runs and post-run analysis.
"""
import argparse
import asyncio
import os
from datetime import timedelta
from typing import List, Optional

from paper_trader.config import (
    logger, INITIAL_BALANCE, EXECUTION_INTERVAL_MINUTES, RUN_DURATION_HOURS,
    validate_config, get_analysis_file
)
from paper_trader.exceptions import InitializationError, ReportGenerationError
from paper_trader.exchange_client import ExchangeClient
from paper_trader.market_data import ExchangeMarketDataFeed, ExchangeWallet, MarketDataFeed
from paper_trader.models import PerformanceReport
from paper_trader.paper_trading import PaperTradingSystem
from paper_trader.performance import PerformanceReporter
from paper_trader.scheduler import Clock, SystemClock
from paper_trader.strategies.base_strategy import BaseStrategy
from paper_trader.strategies.mean_reversion_strategy import MeanReversionStrategy
from paper_trader.strategies.momentum_strategy import MomentumStrategy
from paper_trader.strategy_analyzer import StrategyAnalyzer, apply_recommendations, load_recommendations
from paper_trader.utils.logger import load_snapshots

STATUS_INTERVAL = timedelta(hours=1)


def build_strategies(feed: MarketDataFeed, clock: Optional[Clock] = None,
                     optimized: bool = False, optimizations_dir: Optional[str] = None) -> List[BaseStrategy]:
    """Create the default strategies, tuned from the last analysis when requested."""
    momentum = MomentumStrategy(feed, clock=clock)
    mean_reversion = MeanReversionStrategy(feed, clock=clock)
    if not optimized:
        return [momentum, mean_reversion]

    if not os.path.exists(get_analysis_file(optimizations_dir)):
        logger.warning("No strategy analysis found, running with default parameters")
        return [momentum, mean_reversion]

    recommendations = load_recommendations(optimizations_dir)
    tuned = []
    for strategy in (momentum, mean_reversion):
        recs = recommendations.get(strategy.name, [])
        tuned.append(type(strategy)(
            feed,
            parameters=apply_recommendations(strategy.parameters, recs),
            risk_parameters=apply_recommendations(strategy.risk_parameters, recs),
            clock=clock
        ))
        logger.info(f"Applied {len(recs)} recommendations to {strategy.name}")
    return tuned


def log_system_status(system: PaperTradingSystem):
    status = system.get_status()
    logger.info(f"Status: balance {status['currentBalance']:.4f} ({status['percentageChange']:+.2f}%), "
                f"max drawdown {status['maxDrawdown']:.2%}, running {status['runningTime'] / 3600000:.1f}h")
    for strategy in status['strategies']:
        logger.info(f"  {strategy['name']}: {strategy['totalTrades']} trades, "
                    f"{strategy['openPositions']} open, net P&L {strategy['netProfitLoss']:.4f}, "
                    f"win rate {strategy['winRate']:.2%}")


async def run_paper_trading(balance: float = INITIAL_BALANCE,
                            interval_minutes: float = EXECUTION_INTERVAL_MINUTES,
                            duration_hours: float = RUN_DURATION_HOURS,
                            notify: bool = True, optimized: bool = False) -> Optional[PerformanceReport]:
    """Run the paper trading system against live market data for a fixed duration."""
    if not validate_config():
        logger.error("Invalid configuration. Exiting.")
        return None

    client = await ExchangeClient().initialize()
    clock = SystemClock()
    try:
        feed = ExchangeMarketDataFeed(client)
        system = PaperTradingSystem(
            strategies=build_strategies(feed, clock, optimized),
            wallet=ExchangeWallet(client),
            clock=clock,
            interval=timedelta(minutes=interval_minutes),
            notify=notify
        )
        try:
            await system.initialize(balance)
        except InitializationError as e:
            logger.critical(f"Failed to initialize Paper Trading System: {e}")
            return None

        await system.start()
        remaining = timedelta(hours=duration_hours)
        try:
            while remaining > timedelta(0):
                step = min(STATUS_INTERVAL, remaining)
                await clock.sleep(step.total_seconds())
                remaining -= step
                log_system_status(system)
        except asyncio.CancelledError:
            logger.info("Paper trading cancelled")
        finally:
            report = await system.stop()
        return report
    finally:
        await client.close()


def analyze(results_dir: Optional[str] = None, optimizations_dir: Optional[str] = None):
    """Analyze the last run and log the recommendations."""
    analyzer = StrategyAnalyzer(results_dir, optimizations_dir)
    result = analyzer.analyze_performance()

    snapshots = load_snapshots(results_dir)
    if snapshots:
        drawdown = PerformanceReporter.max_drawdown(
            (s.current_balance for s in snapshots), snapshots[0].initial_balance
        )
        logger.info(f"Max drawdown over {len(snapshots)} snapshots: {drawdown:.2%}")

    for name, recommendations in result['recommendations'].items():
        logger.info(f"Recommendations for {name}:")
        for rec in recommendations:
            logger.info(f"  [{rec['priority']}] {rec['parameter']}: {rec['message']}")
    return result


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(description='Paper trading strategy engine')
    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help='Run paper trading against live market data')
    run_parser.add_argument('--balance', type=float, default=INITIAL_BALANCE,
                            help=f'Fallback initial balance when the wallet is unavailable (default: {INITIAL_BALANCE})')
    run_parser.add_argument('--interval-minutes', type=float, default=EXECUTION_INTERVAL_MINUTES,
                            help=f'Minutes between strategy ticks (default: {EXECUTION_INTERVAL_MINUTES})')
    run_parser.add_argument('--duration-hours', type=float, default=RUN_DURATION_HOURS,
                            help=f'How long to run before stopping and reporting (default: {RUN_DURATION_HOURS})')
    run_parser.add_argument('--no-notify', action='store_false', dest='notify',
                            help='Do not send the final report via Telegram')
    run_parser.add_argument('--optimized', action='store_true',
                            help='Apply recommendations from the last strategy analysis')

    analyze_parser = subparsers.add_parser('analyze', help='Analyze the last run and suggest parameter changes')
    analyze_parser.add_argument('--results-dir', type=str, default=None)
    analyze_parser.add_argument('--optimizations-dir', type=str, default=None)

    args = parser.parse_args(argv)

    if args.command == 'run':
        try:
            asyncio.run(run_paper_trading(
                args.balance, args.interval_minutes, args.duration_hours, args.notify, args.optimized
            ))
        except KeyboardInterrupt:
            logger.info("Paper trading stopped by user")
        except ReportGenerationError as e:
            logger.error(f"Final report failed: {e}")
    else:
        try:
            analyze(args.results_dir, args.optimizations_dir)
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"Error analyzing performance: {e}")


if __name__ == "__main__":
    main()

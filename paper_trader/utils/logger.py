"""
Output utilities: JSON snapshots and reports, the CSV trade log, and Telegram notifications.
"""
import os
import asyncio
import json
import glob
from typing import Dict, Any, List, Optional

import pandas as pd
from telegram import Bot

from paper_trader.config import (
    logger, MAX_RETRIES, TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID,
    SNAPSHOT_PREFIX, TRADE_LOG_HEADERS, get_results_dir, get_snapshot_file
)
from paper_trader.models import BalanceSnapshot, PerformanceReport

_telegram_bot: Optional[Bot] = None


def get_telegram_bot() -> Optional[Bot]:
    """Create the Telegram bot on first use, None when no token is configured."""
    global _telegram_bot
    if _telegram_bot is None and TELEGRAM_BOT_TOKEN:
        _telegram_bot = Bot(token=TELEGRAM_BOT_TOKEN)
    return _telegram_bot


def save_json(data: Any, path: str):
    """Write JSON to a file, creating its directory. Errors propagate."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)
    logger.debug(f"Saved {path}")


def load_json(path: str) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_snapshot(snapshot: BalanceSnapshot, results_dir: Optional[str] = None) -> str:
    """Persist an intermediate balance snapshot. Returns the file path."""
    path = get_snapshot_file(snapshot.timestamp, results_dir)
    save_json(snapshot.to_dict(), path)
    return path


def load_snapshots(results_dir: Optional[str] = None) -> List[BalanceSnapshot]:
    """Load every persisted snapshot from a results directory, oldest first."""
    pattern = os.path.join(get_results_dir(results_dir), f"{SNAPSHOT_PREFIX}*.json")
    snapshots = []
    for path in glob.glob(pattern):
        try:
            snapshots.append(BalanceSnapshot.from_dict(load_json(path)))
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Skipped unreadable snapshot {path}: {e}")
    snapshots.sort(key=lambda s: s.timestamp)
    logger.debug(f"Loaded {len(snapshots)} snapshots from {get_results_dir(results_dir)}")
    return snapshots


def write_trade_log(rows: List[Dict[str, Any]], path: str):
    """Write trade log rows to CSV with the standard headers. Errors propagate."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    pd.DataFrame(rows, columns=TRADE_LOG_HEADERS).to_csv(path, index=False)
    logger.info(f"Wrote {len(rows)} trades to {path}")


def parse_trade_log(path: str) -> pd.DataFrame:
    """Read a trade log CSV back, with entry/exit times parsed as UTC timestamps."""
    df = pd.read_csv(path)
    missing = [h for h in TRADE_LOG_HEADERS if h not in df.columns]
    if missing:
        raise ValueError(f"Trade log {path} is missing columns: {', '.join(missing)}")
    for column in ('EntryTime', 'ExitTime'):
        df[column] = pd.to_datetime(df[column], utc=True, format='ISO8601')
    df['Strategy'] = df['Strategy'].astype(str)
    return df


def format_performance_report(report: PerformanceReport) -> str:
    """Format a performance report as an HTML Telegram message."""
    hours = report.run_duration.total_seconds() / 3600
    text = "📊 <b>PAPER TRADING REPORT</b> 📊\n\n"
    text += f"Duration: {hours:.1f}h\n"
    text += f"Balance: {report.initial_balance:.2f} → {report.final_balance:.2f} "
    text += f"({report.total_return_percent:+.2f}%)\n"
    text += f"Sharpe: {report.system_sharpe_ratio:.2f} | Max Drawdown: {report.max_drawdown:.2%}\n\n"

    for strategy in report.strategies:
        metrics = strategy.metrics
        text += f"<b>{strategy.name.upper()}</b>\n"
        text += f"Trades: {metrics.total_trades} (🟢 {metrics.profitable_trades} | 🔴 {metrics.unprofitable_trades})\n"
        text += f"Win Rate: {metrics.win_rate:.2%}\n"
        text += f"Net P&L: {metrics.net_profit_loss:.4f}\n"
        text += f"Profit Factor: {metrics.profit_factor:.2f}\n"
        if strategy.sharpe_ratio is not None:
            text += f"Sharpe: {strategy.sharpe_ratio:.2f}\n"
        text += "\n"

    if report.best_strategy:
        text += f"Best: {report.best_strategy.name} ({report.best_strategy.return_percentage:+.2f}%)\n"
    if report.worst_strategy:
        text += f"Worst: {report.worst_strategy.name} ({report.worst_strategy.return_percentage:+.2f}%)\n"
    return text


async def send_performance_report(report: PerformanceReport) -> bool:
    """Format and send a performance report via Telegram."""
    return await send_telegram_message(format_performance_report(report))


async def send_telegram_message(message: str) -> bool:
    """Send a message to Telegram. Returns True if successful, False otherwise."""
    bot = get_telegram_bot()
    if bot is None or not TELEGRAM_CHAT_ID:
        logger.warning("Missing Telegram credentials. Message not sent.")
        return False

    retries = 0
    while retries < MAX_RETRIES:
        try:
            await bot.send_message(
                chat_id=TELEGRAM_CHAT_ID,
                text=message,
                parse_mode='HTML'
            )
            return True
        except Exception as e:
            retries += 1
            if retries >= MAX_RETRIES:
                logger.error(f"Failed to send Telegram message after {MAX_RETRIES} attempts: {e}")
                return False
            await asyncio.sleep(2 ** retries)  # Exponential backoff

    return False

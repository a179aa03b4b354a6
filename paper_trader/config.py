"""
Configuration module for the paper trading system.
"""
import os
import logging
import sys
from datetime import datetime
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "paper_trading.log")

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[logging.FileHandler(LOG_FILE, encoding='utf-8'), logging.StreamHandler()]
)
logger = logging.getLogger("paper_trader")

# Fix for Windows event loop policy
if sys.platform == 'win32':
    import asyncio
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Exchange API credentials (market data and wallet balance only, no orders are placed)
EXCHANGE_ID = os.getenv("EXCHANGE_ID", "okx")
EXCHANGE_API_KEY = os.getenv("EXCHANGE_API_KEY")
EXCHANGE_API_SECRET = os.getenv("EXCHANGE_API_SECRET")
EXCHANGE_PASSWORD = os.getenv("EXCHANGE_PASSWORD")
QUOTE_CURRENCY = os.getenv("QUOTE_CURRENCY", "USDT")

# Telegram settings
TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN")
TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID")

# Output directories
RESULTS_DIR = os.getenv("RESULTS_DIR", "results")
OPTIMIZATIONS_DIR = os.getenv("OPTIMIZATIONS_DIR", "optimizations")

# Default run parameters
INITIAL_BALANCE = 10
EXECUTION_INTERVAL_MINUTES = 15
RUN_DURATION_HOURS = 24
MAX_RETRIES = 3
TRADING_DAYS_PER_YEAR = 252

# Monitored token store
MAX_MONITORED_TOKENS = 50
DISCOVERY_THRESHOLD = 10  # discover new tokens while monitoring fewer than this
TOKEN_REFRESH_MINUTES = 5
TOKEN_STALE_HOURS = 2

# Base filenames
SNAPSHOT_PREFIX = "results_"
REPORT_FILE = "performance_report.json"
TRADE_LOG_FILE = "trade_log.csv"
ANALYSIS_FILE = "strategy_analysis.json"

# Trade log headers
TRADE_LOG_HEADERS = [
    "Strategy", "TokenSymbol", "TokenAddress", "EntryTime", "ExitTime",
    "EntryPrice", "ExitPrice", "PositionSize", "PnL", "PnLPercent",
    "Direction", "HoldingPeriodHours"
]


def get_results_dir(results_dir=None):
    """Get the directory where snapshots and reports are written."""
    return results_dir or RESULTS_DIR

def get_snapshot_file(timestamp: datetime, results_dir=None):
    """Get the snapshot filename for a tick finished at the given time."""
    stamp = timestamp.strftime("%Y-%m-%dT%H-%M-%S-%f")
    return os.path.join(get_results_dir(results_dir), f"{SNAPSHOT_PREFIX}{stamp}.json")

def get_report_file(results_dir=None):
    """Get the final performance report filename."""
    return os.path.join(get_results_dir(results_dir), REPORT_FILE)

def get_trade_log_file(results_dir=None):
    """Get the trade log CSV filename."""
    return os.path.join(get_results_dir(results_dir), TRADE_LOG_FILE)

def get_analysis_file(optimizations_dir=None):
    """Get the strategy analysis JSON filename."""
    return os.path.join(optimizations_dir or OPTIMIZATIONS_DIR, ANALYSIS_FILE)

def validate_config():
    """Validate that the exchange credentials needed for live market data are present."""
    if not all([EXCHANGE_API_KEY, EXCHANGE_API_SECRET]):
        logger.error("Missing exchange credentials. Please check your .env file.")
        return False
    if not all([TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID]):
        logger.warning("Telegram credentials missing, report notifications are disabled.")
    return True

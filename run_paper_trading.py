#!/usr/bin/env python
"""
Script to run the paper trading system or analyze its last run.

    python run_paper_trading.py run --duration-hours 24
    python run_paper_trading.py analyze
"""
from paper_trader.main import main


if __name__ == "__main__":
    main()

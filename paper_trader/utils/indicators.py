"""
Technical indicators for the signal strategies.
"""
import math
from datetime import datetime, timedelta
from typing import Optional, Sequence

import numpy as np
import pandas as pd


def calculate_sma(series: pd.Series, period: int) -> pd.Series:
    """Calculate Simple Moving Average."""
    return series.rolling(window=period).mean()


def calculate_rsi(series: pd.Series, period: int = 14) -> pd.Series:
    """
    Calculate Relative Strength Index with Wilder's smoothing.

    The first average gain/loss is the plain mean of the first `period`
    changes; later values are smoothed as (avg * (period - 1) + x) / period.
    RSI is 100 when the average loss is zero. Values before the first full
    period are NaN.
    """
    delta = series.diff()
    gain = delta.clip(lower=0)
    loss = -delta.clip(upper=0)

    avg_gain = pd.Series(np.nan, index=series.index)
    avg_loss = pd.Series(np.nan, index=series.index)
    if len(series) <= period:
        return avg_gain

    avg_gain.iloc[period] = gain.iloc[1:period + 1].mean()
    avg_loss.iloc[period] = loss.iloc[1:period + 1].mean()
    for i in range(period + 1, len(series)):
        avg_gain.iloc[i] = (avg_gain.iloc[i - 1] * (period - 1) + gain.iloc[i]) / period
        avg_loss.iloc[i] = (avg_loss.iloc[i - 1] * (period - 1) + loss.iloc[i]) / period

    # Handle division by zero
    with np.errstate(divide='ignore', invalid='ignore'):
        rs = avg_gain / avg_loss
    rsi = 100 - (100 / (1 + rs))
    rsi = rsi.where(avg_loss != 0, 100.0)
    return rsi.where(avg_gain.notna())


def latest_rsi(prices: Sequence[float], period: int = 14) -> Optional[float]:
    """RSI of the most recent price, or None with fewer than period + 1 prices."""
    if len(prices) < period + 1:
        return None
    value = calculate_rsi(pd.Series(prices, dtype=float), period).iloc[-1]
    return None if pd.isna(value) else float(value)


def latest_sma(prices: Sequence[float], window: int) -> Optional[float]:
    """Mean of the last `window` prices."""
    if window <= 0 or len(prices) < window:
        return None
    return float(calculate_sma(pd.Series(prices, dtype=float), window).iloc[-1])


def moving_average_window(lookback: timedelta, first_timestamp: datetime, now: datetime,
                          sample_count: int) -> int:
    """
    Translate a lookback duration into a number of samples.

    The average sampling interval is estimated from the span of the
    history; the window is capped at the number of available samples.
    """
    if sample_count <= 0:
        return 0
    span = (now - first_timestamp).total_seconds()
    if span <= 0:
        return sample_count
    interval = span / sample_count
    return max(1, min(math.floor(lookback.total_seconds() / interval), sample_count))

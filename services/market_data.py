"""
Market Data Module

Spot prices and historical volatility for underlyings, fetched with yfinance.
These are the price-feed collaborators handed to the portfolio aggregator;
every function returns None instead of raising when the feed is unavailable.
"""

import logging
from typing import Optional

import numpy as np
import yfinance as yf

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252
MIN_HISTORY_POINTS = 10


def get_spot_price(ticker: str) -> Optional[float]:
    """
    Get current price of an underlying using yfinance.

    Args:
        ticker: Symbol (e.g., 'AAPL', 'APT-USD')

    Returns:
        Last close or None if unavailable
    """
    try:
        stock = yf.Ticker(ticker)
        hist = stock.history(period="1d")
        if not hist.empty:
            return float(hist['Close'].iloc[-1])

        info = stock.fast_info
        if info and hasattr(info, 'last_price'):
            return float(info.last_price)

        return None
    except Exception as e:
        logger.error(f"Error fetching spot price for {ticker}: {e}")
        return None


def get_historical_volatility(ticker: str, period: str = "1y") -> Optional[float]:
    """
    Calculate annualised historical volatility for a given ticker.

    Args:
        ticker: Symbol
        period: Time period for historical data ('1y', '6mo', '3mo', etc.)

    Returns:
        Annualized historical volatility or None if error
    """
    try:
        hist = yf.Ticker(ticker).history(period=period)

        if len(hist) < MIN_HISTORY_POINTS:
            logger.warning(f"Not enough history for {ticker} ({len(hist)} rows)")
            return None

        returns = hist['Close'].pct_change().dropna()
        return float(returns.std() * np.sqrt(TRADING_DAYS_PER_YEAR))

    except Exception as e:
        logger.error(f"Error calculating historical volatility for {ticker}: {e}")
        return None

"""Tests for the yfinance-backed market data helpers."""

from unittest.mock import MagicMock, patch

import numpy as np
import pandas as pd
import pytest

from services.market_data import get_historical_volatility, get_spot_price


def _ticker(history):
    ticker = MagicMock()
    ticker.history.return_value = history
    return ticker


@patch('services.market_data.yf.Ticker')
def test_spot_price_uses_last_close(mock_ticker):
    mock_ticker.return_value = _ticker(pd.DataFrame({'Close': [10.0, 10.5, 11.25]}))

    assert get_spot_price('APT-USD') == 11.25


@patch('services.market_data.yf.Ticker')
def test_spot_price_falls_back_to_fast_info(mock_ticker):
    ticker = _ticker(pd.DataFrame({'Close': []}))
    ticker.fast_info = MagicMock(last_price=42.0)
    mock_ticker.return_value = ticker

    assert get_spot_price('AAPL') == 42.0


@patch('services.market_data.yf.Ticker', side_effect=RuntimeError("network down"))
def test_spot_price_error_returns_none(mock_ticker):
    assert get_spot_price('AAPL') is None


@patch('services.market_data.yf.Ticker')
def test_historical_volatility(mock_ticker):
    closes = [100.0, 101.0, 99.5, 102.0, 101.5, 103.0, 102.5, 104.0, 103.0, 105.0, 106.0, 104.5]
    mock_ticker.return_value = _ticker(pd.DataFrame({'Close': closes}))

    expected = pd.Series(closes).pct_change().dropna().std() * np.sqrt(252)
    assert get_historical_volatility('AAPL') == pytest.approx(expected)


@patch('services.market_data.yf.Ticker')
def test_historical_volatility_needs_enough_history(mock_ticker):
    mock_ticker.return_value = _ticker(pd.DataFrame({'Close': [100.0, 101.0, 102.0]}))

    assert get_historical_volatility('AAPL') is None


@patch('services.market_data.yf.Ticker', side_effect=RuntimeError("network down"))
def test_historical_volatility_error_returns_none(mock_ticker):
    assert get_historical_volatility('AAPL', period='3mo') is None

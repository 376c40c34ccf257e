"""Tests for the API routes."""

from fastapi.testclient import TestClient
from unittest.mock import patch
import sys
import os

import pytest

# Add the parent directory to sys.path to import main
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import app
from services.anomaly_detection import AnomalyDetectionEngine
from services.sentiment import SentimentAnalysisEngine, SourceReading, StaticSentimentSource

client = TestClient(app)

PRICING_BODY = {
    "spot_price": 100.0,
    "strike_price": 100.0,
    "time_to_expiry": 1.0,
    "volatility": 0.2,
    "option_type": "call",
    "risk_free_rate": 0.05,
    "dividend_yield": 0.0,
}


@pytest.fixture(autouse=True)
def fresh_engines():
    """Give every test its own anomaly log and no sentiment sources."""
    app.state.anomaly_engine = AnomalyDetectionEngine()
    app.state.sentiment_engine = SentimentAnalysisEngine([])
    yield


def test_root():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Options Analytics API is running"}


def test_price_endpoint():
    response = client.post("/pricing/price", json=PRICING_BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["price"] == pytest.approx(10.4506, abs=1e-3)
    assert 0 < data["greeks"]["delta"] < 1


def test_greeks_endpoint():
    response = client.post("/pricing/greeks", json={**PRICING_BODY, "option_type": "put"})

    assert response.status_code == 200
    assert response.json()["delta"] < 0


def test_invalid_pricing_input_returns_400():
    response = client.post("/pricing/price", json={**PRICING_BODY, "time_to_expiry": 0})

    assert response.status_code == 400
    assert response.json()["error"] is True
    assert "expiry" in response.json()["detail"].lower()


def test_unknown_option_type_is_rejected():
    response = client.post("/pricing/price", json={**PRICING_BODY, "option_type": "straddle"})

    assert response.status_code == 422


def test_implied_volatility_endpoint():
    body = {k: v for k, v in PRICING_BODY.items() if k != "volatility"}
    price = client.post("/pricing/price", json=PRICING_BODY).json()["price"]

    response = client.post("/pricing/implied-volatility", json={**body, "market_price": price})

    assert response.status_code == 200
    assert response.json()["implied_volatility"] == pytest.approx(0.2, abs=1e-3)


def test_option_chain_endpoint():
    response = client.get("/pricing/chain", params={
        "spot_price": 100, "expiry_days": 30, "strikes": [95, 105]})

    assert response.status_code == 200
    quotes = response.json()
    assert len(quotes) == 4
    assert {q["option_type"] for q in quotes} == {"call", "put"}


def test_payoff_endpoint():
    response = client.post("/pricing/payoff", json={
        "spot_price": 120.0,
        "legs": [
            {"strike": 100.0, "option_type": "call", "side": "long"},
            {"strike": 110.0, "option_type": "call", "side": "short"},
        ],
    })

    assert response.status_code == 200
    assert response.json() == {"payoff": 10.0, "break_even_points": [110.0]}


def test_payoff_requires_a_leg():
    response = client.post("/pricing/payoff", json={"spot_price": 100.0, "legs": []})
    assert response.status_code == 422


def test_portfolio_summary_with_supplied_prices():
    response = client.post("/portfolio/summary", json={
        "positions": [
            {"symbol": "AAA", "side": "long", "quantity": 10, "avg_price": 100.0},
            {"symbol": "BBB", "side": "short", "quantity": 5, "avg_price": 100.0},
        ],
        "spot_prices": {"AAA": 110.0, "BBB": 90.0},
    })

    assert response.status_code == 200
    data = response.json()
    assert data["summary"]["total_unrealized_pnl"] == pytest.approx(150.0)
    assert data["summary"]["winning_positions"] == 2
    assert data["greeks"]["delta"] == pytest.approx(5.0)
    assert data["high_risk_symbols"] == ["AAA", "BBB"]


def test_portfolio_summary_uses_price_feed_for_missing_symbols():
    with patch('api.routes.get_spot_price', return_value=55.0) as mock_price:
        response = client.post("/portfolio/summary", json={
            "positions": [{"symbol": "APT", "side": "long", "quantity": 2, "avg_price": 50.0}],
        })

    assert response.status_code == 200
    mock_price.assert_called_with("APT")
    assert response.json()["positions"][0]["current_price"] == 55.0


def test_empty_portfolio_summary():
    response = client.post("/portfolio/summary", json={"positions": []})

    assert response.status_code == 200
    assert response.json()["summary"]["total_market_value"] == 0


def test_risk_assessment_endpoint():
    response = client.post("/risk/assessment", json={
        "positions": [
            {"symbol": "AAA", "side": "long", "quantity": 10, "avg_price": 100.0},
            {"symbol": "BBB", "side": "long", "quantity": 10, "avg_price": 100.0},
            {"symbol": "CCC", "side": "long", "quantity": 10, "avg_price": 50.0},
        ],
        "spot_prices": {"AAA": 110.0, "BBB": 90.0, "CCC": 60.0},
        "user_profile": {"risk_tolerance": "low"},
    })

    assert response.status_code == 200
    data = response.json()
    assert data["overall_risk"] == "high"
    assert len(data["stress_test_results"]) == 4
    assert data["metrics"]["total_value"] == pytest.approx(2600.0)


def test_market_data_anomalies():
    for _ in range(5):
        client.post("/anomalies/market-data", json={"symbol": "APT", "price": 100.0, "volume": 1000})
    for _ in range(4):
        client.post("/anomalies/market-data", json={"symbol": "APT", "price": 125.0, "volume": 1000})

    response = client.post("/anomalies/market-data", json={"symbol": "APT", "price": 125.0, "volume": 1000})

    assert response.status_code == 200
    assert [a["type"] for a in response.json()] == ["price_spike"]

    recent = client.get("/anomalies/recent", params={"limit": 5}).json()
    assert recent[0]["type"] == "price_spike"
    assert recent[0]["severity"] == "high"

    stats = client.get("/anomalies/stats").json()
    assert stats["total"] == 1
    assert stats["by_type"] == {"price_spike": 1}


def test_recent_anomalies_limit_is_bounded():
    assert client.get("/anomalies/recent", params={"limit": 0}).status_code == 422
    assert client.get("/anomalies/recent", params={"limit": 51}).status_code == 422


def test_regime_endpoints():
    points = [{"symbol": "APT", "price": 100.0 + i, "volume": 1000} for i in range(25)]

    response = client.post("/anomalies/regime", json={"points": points})
    assert response.status_code == 200
    assert response.json()["regime"] == "rally"

    unknown = client.get("/anomalies/regime/APT").json()
    assert unknown["regime"] == "ranging"
    assert unknown["duration"] == "unknown"


def test_arbitrage_endpoint():
    response = client.post("/anomalies/arbitrage", json={
        "quotes": {"APT": {"binance": 100.0, "coinbase": 102.5}},
    })

    assert response.status_code == 200
    opportunities = response.json()
    assert len(opportunities) == 1
    assert opportunities[0]["type"] == "cross_exchange"


def test_sentiment_without_sources_is_unavailable():
    response = client.get("/sentiment/APT")
    assert response.status_code == 503


def test_sentiment_endpoint():
    app.state.sentiment_engine = SentimentAnalysisEngine([StaticSentimentSource([
        SourceReading('Twitter', 'social', 0.6, 200_000, 0.5),
        SourceReading('News Wire', 'news', 0.5, 1000, 0.5),
    ])])

    response = client.get("/sentiment/APT")

    assert response.status_code == 200
    data = response.json()
    assert data["sentiment"]["overall"] == "bullish"
    assert data["impact"]["direction"] == "bullish"


def test_negative_position_numbers_are_rejected():
    negative_cost = client.post("/portfolio/summary", json={
        "positions": [{"symbol": "AAA", "side": "long", "quantity": 10, "avg_price": -100.0}],
        "spot_prices": {"AAA": 110.0},
    })
    negative_spot = client.post("/portfolio/summary", json={
        "positions": [{"symbol": "AAA", "side": "long", "quantity": 10, "avg_price": 100.0}],
        "spot_prices": {"AAA": -5.0},
    })
    negative_quantity = client.post("/portfolio/summary", json={
        "positions": [{"symbol": "AAA", "side": "short", "quantity": -5, "avg_price": 100.0}],
        "spot_prices": {"AAA": 90.0},
    })

    assert negative_cost.status_code == 422
    assert negative_spot.status_code == 422
    assert negative_quantity.status_code == 422


def test_negative_spot_from_price_feed_returns_400():
    with patch('api.routes.get_spot_price', return_value=-5.0):
        response = client.post("/portfolio/summary", json={
            "positions": [{"symbol": "AAA", "side": "long", "quantity": 10, "avg_price": 100.0}],
        })

    assert response.status_code == 400
    assert "AAA" in response.json()["detail"]


def test_zero_option_volatility_returns_400():
    response = client.post("/portfolio/summary", json={
        "positions": [{"symbol": "APT", "side": "long", "quantity": 1, "avg_price": 2.0,
                       "option_type": "call", "strike": 100.0, "expiry_days": 30,
                       "volatility": 0.0}],
        "spot_prices": {"APT": 100.0},
    })

    assert response.status_code == 400
    assert "volatility" in response.json()["detail"]


def test_portfolio_summary_with_historical_volatility():
    body = {
        "positions": [{"symbol": "APT", "side": "long", "quantity": 1, "avg_price": 2.0,
                       "option_type": "call", "strike": 100.0, "expiry_days": 30}],
        "spot_prices": {"APT": 100.0},
    }
    with patch('api.routes.get_historical_volatility', return_value=0.6) as mock_vol:
        historical = client.post("/portfolio/summary", json={**body, "use_historical_volatility": True})
    default = client.post("/portfolio/summary", json=body)

    assert historical.status_code == 200
    mock_vol.assert_called_with("APT")
    assert (historical.json()["positions"][0]["current_price"]
            > default.json()["positions"][0]["current_price"])


def test_risk_assessment_uses_equity_curve():
    response = client.post("/risk/assessment", json={
        "positions": [{"symbol": "AAA", "side": "long", "quantity": 10, "avg_price": 100.0}],
        "spot_prices": {"AAA": 110.0},
        "equity_curve": [100, 200, 20],
    })

    assert response.status_code == 200
    assert response.json()["metrics"]["max_drawdown"] == pytest.approx(90.0)


def test_market_data_requires_positive_price():
    response = client.post("/anomalies/market-data", json={"symbol": "APT", "price": 0, "volume": 1000})
    assert response.status_code == 422

    regime = client.post("/anomalies/regime", json={"points": [{"symbol": "APT", "price": -1, "volume": 1}]})
    assert regime.status_code == 422

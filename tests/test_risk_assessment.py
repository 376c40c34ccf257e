"""Tests for the rule-based portfolio risk assessment."""

import statistics

import pytest

from services.portfolio import Position, position_pnl
from services.risk_assessment import (
    MarketConditions, RiskAssessmentEngine, RiskMetrics, UserProfile,
)
from services.black_scholes import Greeks

STOCK_GREEKS = Greeks(delta=1.0, gamma=0.0, theta=0.0, vega=0.0, rho=0.0)


@pytest.fixture
def engine():
    return RiskAssessmentEngine()


@pytest.fixture
def positions():
    """Market values 1100 / 900 / 600 with returns +10% / -10% / +20%."""
    return [
        position_pnl(Position('AAA', 'long', 10, 100.0), 110.0, STOCK_GREEKS),
        position_pnl(Position('BBB', 'long', 10, 100.0), 90.0, STOCK_GREEKS),
        position_pnl(Position('CCC', 'long', 10, 50.0), 60.0, STOCK_GREEKS),
    ]


def test_empty_portfolio_metrics(engine):
    metrics = engine.calculate_risk_metrics([])

    assert metrics == RiskMetrics()
    assert metrics.beta == 1.0
    assert metrics.var_percent == 0.0


def test_empty_portfolio_assessment_does_not_fail(engine):
    assessment = engine.assess_portfolio_risk([])

    assert assessment.overall_risk == 'low'
    assert assessment.risk_score == 0.0
    assert assessment.risk_factors == []
    assert all(r.potential_loss == 0 for r in assessment.stress_test_results)
    assert all(r.potential_loss_percent == 0 for r in assessment.stress_test_results)


def test_risk_metrics(engine, positions):
    metrics = engine.calculate_risk_metrics(positions)
    sigma = statistics.stdev([0.1, -0.1, 0.2])

    assert metrics.total_value == pytest.approx(2600.0)
    assert metrics.total_pnl == pytest.approx(100.0)
    assert metrics.daily_pnl == pytest.approx(10.0)
    assert metrics.volatility == pytest.approx(sigma * 100)
    assert metrics.sharpe_ratio == pytest.approx(statistics.mean([0.1, -0.1, 0.2]) / sigma)
    assert metrics.value_at_risk == pytest.approx(2600.0 * sigma * 1.645)
    assert metrics.expected_shortfall == pytest.approx(2600.0 * sigma * 2.0)
    assert metrics.win_rate == pytest.approx(200.0 / 3)
    assert metrics.risk_reward_ratio == pytest.approx(1.0)
    assert metrics.max_drawdown == 0.0
    assert metrics.beta == 1.2


def test_risk_level_and_score(engine, positions):
    metrics = engine.calculate_risk_metrics(positions)

    # Only the VaR tier (> 10% of value) fires
    assert engine.risk_level(metrics) == 'medium'
    assert engine.risk_score(metrics) == pytest.approx((metrics.volatility / 2 + 0 + 100) / 3)


def test_profile_and_market_raise_risk(engine, positions):
    metrics = engine.calculate_risk_metrics(positions)
    cautious = UserProfile(risk_tolerance='low')
    stressed = MarketConditions(volatility=0.9, fear_greed_index=20)

    assert engine.risk_level(metrics, profile=cautious) == 'high'
    assert engine.risk_level(metrics, stressed, cautious) == 'extreme'
    assert engine.risk_score(metrics, profile=cautious) == pytest.approx(
        engine.risk_score(metrics) + 15)


def test_risk_score_is_clamped(engine):
    metrics = RiskMetrics(total_value=1000, volatility=500, max_drawdown=80, value_at_risk=900)
    stressed = MarketConditions(volatility=0.9, fear_greed_index=10)

    assert engine.risk_score(metrics, stressed, UserProfile('low')) == 100.0
    assert engine.risk_score(RiskMetrics(), profile=UserProfile('high')) == 0.0


def test_risk_factors(engine, positions):
    metrics = engine.calculate_risk_metrics(positions)
    factors = {f.factor: f for f in engine.risk_factors(positions, metrics, MarketConditions(volatility=0.9))}

    assert 'Portfolio Concentration' in factors  # 1100 / 2600 > 30%
    assert 'Market Volatility' in factors
    assert 'Liquidity Risk' in factors  # two of three under 1000
    assert 'Delta Exposure' in factors
    assert factors['Delta Exposure'].description == 'Net delta exposure of 30.00'
    assert 'High Portfolio Volatility' not in factors


def test_recommendations_are_sorted_by_priority(engine, positions):
    metrics = engine.calculate_risk_metrics(positions)
    factors = engine.risk_factors(positions, metrics, MarketConditions(volatility=0.9))
    recs = engine.recommendations(metrics, factors)

    assert recs[0].type == 'diversify'
    assert recs[0].priority == 'high'
    assert [r.priority for r in recs] == sorted(
        [r.priority for r in recs], key={'high': 0, 'medium': 1, 'low': 2}.get)
    assert any(r.type == 'reduce' for r in recs)


def test_optimal_allocation(engine, positions):
    metrics = engine.calculate_risk_metrics(positions)

    neutral = engine.optimal_allocation(positions, metrics)
    assert neutral.current['AAA'] == pytest.approx(1100 / 2600 * 100)
    assert neutral.recommended['AAA'] == 40.0
    assert neutral.changes == []

    cautious = engine.optimal_allocation(positions, metrics, UserProfile('low'))
    changes = {c.symbol: c for c in cautious.changes}
    assert changes['AAA'].reason == 'Reduce position to manage risk'
    assert changes['AAA'].recommended_percent == pytest.approx(1100 / 2600 * 100 * 0.5)


def test_stress_tests(engine, positions):
    results = engine.stress_tests(engine.calculate_risk_metrics(positions))
    by_name = {r.scenario: r for r in results}

    assert len(results) == 4
    assert by_name['Market Crash (-20%)'].potential_loss == pytest.approx(520.0)
    assert by_name['Market Crash (-20%)'].recovery_time == '1-3 months'
    assert by_name['High Volatility (+50%)'].potential_loss_percent == pytest.approx(-50.0)


def test_assess_portfolio_risk(engine, positions):
    assessment = engine.assess_portfolio_risk(positions, MarketConditions(), UserProfile())

    assert assessment.overall_risk == 'medium'
    assert 0 <= assessment.risk_score <= 100
    assert assessment.metrics.total_value == pytest.approx(2600.0)
    assert len(assessment.stress_test_results) == 4


def test_drawdown_from_equity_curve(engine, positions):
    metrics = engine.calculate_risk_metrics(positions, equity_curve=[100, 200, 20])

    assert metrics.max_drawdown == pytest.approx(90.0)
    # Drawdown tier (> 20%) now fires alongside the VaR tier
    assert engine.risk_level(metrics) == 'extreme'
    assert engine.risk_score(metrics) > engine.risk_score(engine.calculate_risk_metrics(positions))


def test_drawdown_without_curve_falls_back_to_cumulative_value(engine):
    pnls = [
        position_pnl(Position('AAA', 'long', 100, 100.0), 100.0, STOCK_GREEKS),
        position_pnl(Position('BBB', 'long', 1, 10.0), 10.0, STOCK_GREEKS),
        position_pnl(Position('CCC', 'long', 1, 10.0), 10.0, STOCK_GREEKS),
    ]

    assert engine.calculate_risk_metrics(pnls).max_drawdown == 0.0


def test_assessment_uses_equity_curve(engine, positions):
    assessment = engine.assess_portfolio_risk(positions, equity_curve=[100, 200, 20])

    assert assessment.metrics.max_drawdown == pytest.approx(90.0)
    assert assessment.overall_risk == 'extreme'

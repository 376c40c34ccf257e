"""
Portfolio Risk Assessment Service

Rule-based risk scoring over aggregated position P&L: risk metrics, an
overall risk level and score, risk factors, recommendations, allocation
suggestions and fixed-scenario stress tests. Every rule is a fixed threshold.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from services.portfolio import PositionPnL, max_drawdown_percent

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VAR_Z_95 = 1.645
EXPECTED_SHORTFALL_MULTIPLIER = 2.0
DEFAULT_BETA = 1.2
ILLIQUID_MARKET_VALUE = 1000

PRIORITY_ORDER = {'high': 3, 'medium': 2, 'low': 1}

STRESS_SCENARIOS = [
    ('Market Crash (-20%)', 0.10, 0.8),
    ('Moderate Decline (-10%)', 0.20, 0.9),
    ('High Volatility (+50%)', 0.15, 1.5),
    ('Liquidity Crisis', 0.05, 0.7),
]


@dataclass
class MarketConditions:
    volatility: float = 0.0
    fear_greed_index: float = 50.0


@dataclass
class UserProfile:
    risk_tolerance: str = 'medium'  # low | medium | high
    experience: str = 'intermediate'


@dataclass
class RiskMetrics:
    total_value: float = 0.0
    total_pnl: float = 0.0
    daily_pnl: float = 0.0
    sharpe_ratio: float = 0.0
    volatility: float = 0.0  # percent
    max_drawdown: float = 0.0  # percent
    win_rate: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    risk_reward_ratio: float = 0.0
    beta: float = 1.0
    value_at_risk: float = 0.0  # 95%
    expected_shortfall: float = 0.0

    @property
    def var_percent(self) -> float:
        return self.value_at_risk / self.total_value * 100 if self.total_value else 0.0


@dataclass
class RiskFactor:
    factor: str
    level: str
    impact: float
    description: str
    mitigation: str


@dataclass
class RiskRecommendation:
    type: str
    priority: str
    description: str
    expected_impact: float
    timeframe: str


@dataclass
class AllocationChange:
    symbol: str
    current_percent: float
    recommended_percent: float
    change_amount: float
    reason: str


@dataclass
class PortfolioAllocation:
    current: Dict[str, float] = field(default_factory=dict)
    recommended: Dict[str, float] = field(default_factory=dict)
    changes: List[AllocationChange] = field(default_factory=list)


@dataclass
class StressTestResult:
    scenario: str
    probability: float
    potential_loss: float
    potential_loss_percent: float
    recovery_time: str


@dataclass
class RiskAssessment:
    overall_risk: str
    risk_score: float
    metrics: RiskMetrics
    risk_factors: List[RiskFactor]
    recommendations: List[RiskRecommendation]
    optimal_allocation: PortfolioAllocation
    stress_test_results: List[StressTestResult]


class RiskAssessmentEngine:
    """Stateless rule-based portfolio risk assessment."""

    def calculate_risk_metrics(self, positions: Sequence[PositionPnL],
                               equity_curve: Optional[Sequence[float]] = None) -> RiskMetrics:
        """
        Portfolio risk metrics.

        Drawdown is taken from `equity_curve` (percent of the running peak)
        when one is given. Otherwise it falls back to scanning the running sum
        of market values in list order, which cannot fall for non-negative
        values and so reports 0.
        """
        if not positions:
            return RiskMetrics()

        total_value = sum(p.market_value for p in positions)
        total_pnl = sum(p.unrealized_pnl for p in positions)

        # Fractional returns so VaR stays in currency units
        returns = np.array([p.unrealized_pnl_percent / 100 for p in positions], dtype=float)
        avg_return = float(returns.mean())
        sigma = float(returns.std(ddof=1)) if len(returns) > 1 else 0.0
        sharpe = avg_return / sigma if sigma > 0 else 0.0

        if equity_curve:
            drawdown = max_drawdown_percent(equity_curve)
        else:
            drawdown = max_drawdown_percent(np.cumsum([p.market_value for p in positions]))

        wins = [p.unrealized_pnl for p in positions if p.unrealized_pnl > 0]
        losses = [p.unrealized_pnl for p in positions if p.unrealized_pnl < 0]
        average_win = sum(wins) / len(wins) if wins else 0.0
        average_loss = abs(sum(losses) / len(losses)) if losses else 0.0

        return RiskMetrics(
            total_value=total_value,
            total_pnl=total_pnl,
            daily_pnl=total_pnl * 0.1,
            sharpe_ratio=sharpe,
            volatility=sigma * 100,
            max_drawdown=drawdown,
            win_rate=len(wins) / len(positions) * 100,
            average_win=average_win,
            average_loss=average_loss,
            risk_reward_ratio=average_win / average_loss if average_loss > 0 else 0.0,
            beta=DEFAULT_BETA,
            value_at_risk=total_value * sigma * VAR_Z_95,
            expected_shortfall=total_value * sigma * EXPECTED_SHORTFALL_MULTIPLIER,
        )

    def risk_level(self, metrics: RiskMetrics, market: Optional[MarketConditions] = None,
                   profile: Optional[UserProfile] = None) -> str:
        """Bucket the portfolio into low / medium / high / extreme."""
        points = 0
        points += _tiered(metrics.volatility, (50, 30, 20))
        points += _tiered(metrics.max_drawdown, (20, 10, 5))
        points += _tiered(metrics.var_percent, (10, 5, 2))

        if market is not None:
            if market.volatility > 0.8:
                points += 10
            if market.fear_greed_index < 30:
                points += 10

        if profile is not None:
            if profile.risk_tolerance == 'low':
                points += 10
            elif profile.risk_tolerance == 'high':
                points -= 10

        if points >= 50:
            return 'extreme'
        if points >= 30:
            return 'high'
        if points >= 15:
            return 'medium'
        return 'low'

    def risk_score(self, metrics: RiskMetrics, market: Optional[MarketConditions] = None,
                   profile: Optional[UserProfile] = None) -> float:
        """Average of normalised volatility, drawdown and VaR, adjusted and clamped to [0, 100]."""
        volatility_score = min(metrics.volatility / 2, 100)
        drawdown_score = min(metrics.max_drawdown * 2, 100)
        var_score = min(metrics.var_percent * 5, 100)

        score = (volatility_score + drawdown_score + var_score) / 3

        if market is not None:
            if market.volatility > 0.8:
                score += 10
            if market.fear_greed_index < 30:
                score += 10

        if profile is not None:
            if profile.risk_tolerance == 'low':
                score += 15
            elif profile.risk_tolerance == 'high':
                score -= 15

        return max(0.0, min(100.0, score))

    def risk_factors(self, positions: Sequence[PositionPnL], metrics: RiskMetrics,
                     market: Optional[MarketConditions] = None) -> List[RiskFactor]:
        factors = []
        if not positions:
            return factors

        if metrics.total_value > 0:
            top_position = max(p.market_value / metrics.total_value * 100 for p in positions)
            if top_position > 30:
                factors.append(RiskFactor(
                    factor='Portfolio Concentration',
                    level='high',
                    impact=0.8,
                    description=f"{top_position:.1f}% of portfolio in single position",
                    mitigation='Diversify across multiple assets and strategies',
                ))

        if metrics.volatility > 40:
            factors.append(RiskFactor(
                factor='High Portfolio Volatility',
                level='high',
                impact=0.7,
                description=f"Portfolio volatility at {metrics.volatility:.1f}%",
                mitigation='Add stabilizing positions or reduce leveraged exposure',
            ))

        if market is not None and market.volatility > 0.8:
            factors.append(RiskFactor(
                factor='Market Volatility',
                level='high',
                impact=0.6,
                description='Current market conditions are highly volatile',
                mitigation='Consider reducing position sizes or implementing hedging strategies',
            ))

        illiquid = [p for p in positions if p.market_value < ILLIQUID_MARKET_VALUE]
        if len(illiquid) > len(positions) * 0.5:
            factors.append(RiskFactor(
                factor='Liquidity Risk',
                level='medium',
                impact=0.4,
                description='Multiple positions with low liquidity',
                mitigation='Focus on more liquid assets or reduce position sizes',
            ))

        net_delta = sum(p.greeks.delta * p.quantity for p in positions)
        if abs(net_delta) > 1:
            factors.append(RiskFactor(
                factor='Delta Exposure',
                level='medium',
                impact=0.5,
                description=f"Net delta exposure of {net_delta:.2f}",
                mitigation='Balance delta exposure through hedging or position adjustment',
            ))

        return factors

    def recommendations(self, metrics: RiskMetrics,
                        factors: Sequence[RiskFactor]) -> List[RiskRecommendation]:
        recs = []
        for factor in factors:
            if factor.factor == 'Portfolio Concentration':
                recs.append(RiskRecommendation('diversify', 'high',
                                               'Diversify portfolio to reduce concentration risk',
                                               -0.3, 'medium'))
            elif factor.factor == 'High Portfolio Volatility':
                recs.append(RiskRecommendation('hedge', 'high',
                                               'Implement hedging strategies to reduce volatility',
                                               -0.4, 'short'))
            elif factor.factor == 'Market Volatility':
                recs.append(RiskRecommendation('reduce', 'medium',
                                               'Reduce position sizes during volatile market conditions',
                                               -0.2, 'immediate'))

        if metrics.sharpe_ratio < 1:
            recs.append(RiskRecommendation('rebalance', 'medium',
                                           'Rebalance portfolio to improve risk-adjusted returns',
                                           0.2, 'medium'))
        if metrics.win_rate < 50:
            recs.append(RiskRecommendation('rebalance', 'medium',
                                           'Review and optimize trading strategy performance',
                                           0.3, 'medium'))

        return sorted(recs, key=lambda r: PRIORITY_ORDER[r.priority], reverse=True)

    def optimal_allocation(self, positions: Sequence[PositionPnL], metrics: RiskMetrics,
                           profile: Optional[UserProfile] = None) -> PortfolioAllocation:
        """Suggested per-symbol weights: trim winners and losers, scale by risk tolerance."""
        by_symbol: Dict[str, List[PositionPnL]] = OrderedDict()
        for p in positions:
            by_symbol.setdefault(p.symbol, []).append(p)

        tolerance = profile.risk_tolerance if profile is not None else 'medium'
        multiplier = {'low': 0.5, 'high': 1.5}.get(tolerance, 1.0)

        allocation = PortfolioAllocation()
        for symbol, group in by_symbol.items():
            value = sum(p.market_value for p in group)
            cost = sum(p.avg_price * abs(p.quantity) for p in group)
            pnl_percent = sum(p.unrealized_pnl for p in group) / cost * 100 if cost else 0.0

            current = value / metrics.total_value * 100 if metrics.total_value else 0.0
            recommended = current
            if pnl_percent > 10:
                recommended *= 0.9  # take some profits
            elif pnl_percent < -10:
                recommended *= 0.8
            recommended = max(5.0, min(40.0, recommended * multiplier))

            allocation.current[symbol] = current
            allocation.recommended[symbol] = recommended

            change = recommended - current
            if abs(change) > 5:
                allocation.changes.append(AllocationChange(
                    symbol=symbol,
                    current_percent=current,
                    recommended_percent=recommended,
                    change_amount=change,
                    reason=('Increase position for better diversification' if change > 0
                            else 'Reduce position to manage risk'),
                ))

        return allocation

    def stress_tests(self, metrics: RiskMetrics) -> List[StressTestResult]:
        results = []
        for name, probability, multiplier in STRESS_SCENARIOS:
            loss = metrics.total_value * (1 - multiplier)
            loss_percent = loss / metrics.total_value * 100 if metrics.total_value else 0.0

            recovery = '1-3 months'
            if loss_percent > 50:
                recovery = '6-12 months'
            elif loss_percent > 30:
                recovery = '3-6 months'

            results.append(StressTestResult(name, probability, loss, loss_percent, recovery))
        return results

    def assess_portfolio_risk(self, positions: Sequence[PositionPnL],
                              market: Optional[MarketConditions] = None,
                              profile: Optional[UserProfile] = None,
                              equity_curve: Optional[Sequence[float]] = None) -> RiskAssessment:
        metrics = self.calculate_risk_metrics(positions, equity_curve)
        factors = self.risk_factors(positions, metrics, market)
        assessment = RiskAssessment(
            overall_risk=self.risk_level(metrics, market, profile),
            risk_score=self.risk_score(metrics, market, profile),
            metrics=metrics,
            risk_factors=factors,
            recommendations=self.recommendations(metrics, factors),
            optimal_allocation=self.optimal_allocation(positions, metrics, profile),
            stress_test_results=self.stress_tests(metrics),
        )
        logger.info(f"Risk assessment: {assessment.overall_risk} ({assessment.risk_score:.1f})")
        return assessment


def _tiered(value: float, thresholds: Sequence[float], points: Sequence[int] = (25, 15, 5)) -> int:
    """Points for the first threshold strictly exceeded, highest first."""
    for threshold, score in zip(thresholds, points):
        if value > threshold:
            return score
    return 0

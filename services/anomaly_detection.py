"""
Market Anomaly Detection Service

Fixed-threshold rules over short rolling price/volume histories: price
spikes, volume surges, flash crashes and large single prints, plus a coarse
market-regime label and spread/mispricing checks. Nothing here is trained or
adaptive.

Histories are owned by the caller through MarketHistory and handed to the
engine; the engine itself only keeps a bounded log of what it reported.
"""

import math
import uuid
import logging
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, List, Optional, Sequence

import numpy as np

from services.black_scholes import DAYS_PER_YEAR, PricingParams, black_scholes_price

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

HISTORY_SIZE = 100
ANOMALY_LOG_SIZE = 50

PRICE_SPIKE_THRESHOLD = 10.0  # percent
PRICE_SPIKE_MEDIUM = 15.0
PRICE_SPIKE_HIGH = 20.0
VOLUME_SURGE_THRESHOLD = 3.0  # x older volume
VOLUME_SURGE_HIGH = 5.0
FLASH_CRASH_DROP = -5.0  # percent per step
WHALE_VOLUME = 1_000_000
WHALE_PRICE_IMPACT = 2.0  # percent
ARBITRAGE_SPREAD = 1.0  # percent
MISPRICING_THRESHOLD = 20.0  # percent
REGIME_MIN_POINTS = 20


@dataclass
class MarketDataPoint:
    symbol: str
    price: float
    volume: float
    timestamp: datetime
    change_percent: float = 0.0


@dataclass
class Anomaly:
    type: str
    symbol: str
    severity: str  # low | medium | high | critical
    confidence: float
    description: str
    potential_impact: str  # bullish | bearish | neutral
    recommended_action: str
    data: Dict[str, object] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = ''

    def __post_init__(self):
        if not self.id:
            self.id = f"{self.type}_{uuid.uuid4().hex[:12]}"


@dataclass
class ArbitrageOpportunity:
    type: str  # cross_exchange | options_mispricing
    symbols: List[str]
    expected_return: float
    confidence: float
    risk: str
    timeframe: str
    description: str
    entry: str
    exit: str


@dataclass
class ObservedOption:
    """A quoted option to check against its theoretical price."""
    symbol: str
    spot_price: float
    strike: float
    expiry_days: float
    option_type: str
    market_price: float
    volatility: float
    risk_free_rate: float = 0.05
    dividend_yield: float = 0.0


@dataclass
class MarketRegime:
    regime: str  # trending | ranging | volatile | crash | rally
    confidence: float
    description: str
    duration: str
    expected_behavior: List[str]


class MarketHistory:
    """Per-symbol FIFO buffers of recent market data, capped at `size` points."""

    def __init__(self, size: int = HISTORY_SIZE):
        self.size = size
        self._points: Dict[str, Deque[MarketDataPoint]] = {}

    def append(self, point: MarketDataPoint) -> List[MarketDataPoint]:
        buffer = self._points.setdefault(point.symbol, deque(maxlen=self.size))
        buffer.append(point)
        return list(buffer)

    def get(self, symbol: str) -> List[MarketDataPoint]:
        return list(self._points.get(symbol, ()))

    def symbols(self) -> List[str]:
        return list(self._points)

    def clear(self):
        self._points.clear()


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def detect_price_spike(history: Sequence[MarketDataPoint]) -> Optional[Anomaly]:
    """Compare the mean of the last 5 prices with the mean of the 5 before."""
    if len(history) < 10:
        return None

    recent_avg = _mean([d.price for d in history[-5:]])
    older_avg = _mean([d.price for d in history[-10:-5]])
    if older_avg == 0:
        return None

    change = (recent_avg - older_avg) / older_avg * 100
    magnitude = abs(change)
    if magnitude <= PRICE_SPIKE_THRESHOLD:
        return None

    if magnitude > PRICE_SPIKE_HIGH:
        severity = 'high'
    elif magnitude >= PRICE_SPIKE_MEDIUM:
        severity = 'medium'
    else:
        severity = 'low'

    return Anomaly(
        type='price_spike',
        symbol=history[-1].symbol,
        severity=severity,
        confidence=min(magnitude / 30, 1.0),
        description=f"Price {'spiked up' if change > 0 else 'dropped'} by {magnitude:.1f}% in recent trades",
        potential_impact='bullish' if change > 0 else 'bearish',
        recommended_action=('Consider taking profits or setting stop losses' if change > 0
                            else 'Monitor for further downside or potential buying opportunity'),
        data={'change_percent': change, 'recent_avg': recent_avg, 'older_avg': older_avg},
    )


def detect_volume_surge(history: Sequence[MarketDataPoint]) -> Optional[Anomaly]:
    """Compare mean volume of the last 3 points with points 10 to 8 back."""
    if len(history) < 10:
        return None

    recent_avg = _mean([d.volume for d in history[-3:]])
    older_avg = _mean([d.volume for d in history[-10:-7]])
    if older_avg <= 0:
        return None

    ratio = recent_avg / older_avg
    if ratio <= VOLUME_SURGE_THRESHOLD:
        return None

    return Anomaly(
        type='volume_surge',
        symbol=history[-1].symbol,
        severity='high' if ratio > VOLUME_SURGE_HIGH else 'medium',
        confidence=min(ratio / 10, 1.0),
        description=f"Volume surged {ratio:.1f}x above normal levels",
        potential_impact='neutral',
        recommended_action='Monitor price action closely - high volume often precedes significant moves',
        data={'volume_multiplier': ratio, 'recent_volume_avg': recent_avg, 'older_volume_avg': older_avg},
    )


def detect_flash_crash(history: Sequence[MarketDataPoint]) -> Optional[Anomaly]:
    """A sharp step drop within the last 5 points followed by a strong rebound."""
    if len(history) < 5:
        return None

    recent = history[-5:]
    changes = [0.0]
    for prev, cur in zip(recent, recent[1:]):
        changes.append((cur.price - prev.price) / prev.price * 100 if prev.price else 0.0)

    max_drop = min(changes)
    recovery = changes[-1] - max_drop
    if max_drop >= FLASH_CRASH_DROP or recovery <= abs(max_drop) * 0.5:
        return None

    return Anomaly(
        type='flash_crash',
        symbol=history[-1].symbol,
        severity='critical',
        confidence=0.8,
        description=f"Flash crash detected: {abs(max_drop):.1f}% drop followed by {recovery:.1f}% recovery",
        potential_impact='neutral',
        recommended_action=('Exercise extreme caution - flash crashes can indicate market '
                            'manipulation or technical issues'),
        data={'max_drop': max_drop, 'recovery': recovery, 'price_changes': changes},
    )


def detect_whale_movement(point: MarketDataPoint) -> Optional[Anomaly]:
    """A single print with very large volume and a visible price impact."""
    if point.volume <= WHALE_VOLUME or abs(point.change_percent) <= WHALE_PRICE_IMPACT:
        return None

    is_buy = point.change_percent > 0
    return Anomaly(
        type='whale_movement',
        symbol=point.symbol,
        severity='medium',
        confidence=0.7,
        description=f"Large {'buy' if is_buy else 'sell'} order detected ({point.volume / 1_000_000:.1f}M volume)",
        potential_impact='bullish' if is_buy else 'bearish',
        recommended_action=('Consider joining the momentum or setting profit targets' if is_buy
                            else 'Be cautious of further downside pressure'),
        data={'volume': point.volume, 'price_impact': point.change_percent},
    )


def detect_arbitrage(quotes: Dict[str, Dict[str, float]]) -> List[ArbitrageOpportunity]:
    """
    Flag cross-exchange spreads above 1%.

    Args:
        quotes: {symbol: {exchange: price}}
    """
    opportunities = []
    for symbol, by_exchange in quotes.items():
        prices = [p for p in by_exchange.values() if p and p > 0]
        if len(prices) < 2:
            continue

        high, low = max(prices), min(prices)
        spread = (high - low) / low * 100
        if spread <= ARBITRAGE_SPREAD:
            continue

        opportunities.append(ArbitrageOpportunity(
            type='cross_exchange',
            symbols=[symbol],
            expected_return=spread * 0.8,  # after fees
            confidence=min(spread / 5, 1.0),
            risk='high' if spread > 3 else 'medium' if spread > 2 else 'low',
            timeframe='minutes',
            description=f"{spread:.2f}% price difference across exchanges",
            entry=f"Buy on exchange with lowest price ({low:.2f})",
            exit=f"Sell on exchange with highest price ({high:.2f})",
        ))
    return opportunities


def detect_option_mispricing(options: Sequence[ObservedOption]) -> List[ArbitrageOpportunity]:
    """Flag quoted options more than 20% away from their Black-Scholes price."""
    opportunities = []
    for option in options:
        params = PricingParams(
            spot_price=option.spot_price,
            strike_price=option.strike,
            time_to_expiry=option.expiry_days / DAYS_PER_YEAR,
            volatility=option.volatility,
            risk_free_rate=option.risk_free_rate,
            dividend_yield=option.dividend_yield,
        )
        theoretical = black_scholes_price(params, option.option_type)
        if theoretical <= 0:
            continue

        mispricing = (option.market_price - theoretical) / theoretical * 100
        if abs(mispricing) <= MISPRICING_THRESHOLD:
            continue

        kind = option.option_type.lower()
        opportunities.append(ArbitrageOpportunity(
            type='options_mispricing',
            symbols=[option.symbol],
            expected_return=abs(mispricing),
            confidence=0.6,
            risk='medium',
            timeframe='hours',
            description=f"Options pricing anomaly detected ({abs(mispricing):.1f}% mispricing)",
            entry=(f"Sell overpriced {kind} option" if mispricing > 0
                   else f"Buy underpriced {kind} option"),
            exit='Close position when pricing normalizes',
        ))
    return opportunities


def _log_volatility(points: Sequence[MarketDataPoint]) -> float:
    prices = [p.price for p in points]
    returns = [math.log(cur / prev) for prev, cur in zip(prices, prices[1:]) if prev > 0 and cur > 0]
    return math.sqrt(_mean([r * r for r in returns])) if returns else 0.0


def detect_market_regime(history: Sequence[MarketDataPoint]) -> MarketRegime:
    """Label the recent market as volatile, rally, crash, trending or ranging."""
    if len(history) < REGIME_MIN_POINTS:
        return MarketRegime('ranging', 0.5, 'Insufficient data for regime analysis', 'unknown',
                            ['Monitor closely'])

    prices = np.array([d.price for d in history], dtype=float)
    priced = prices[:-1] > 0
    returns = np.diff(prices)[priced] / prices[:-1][priced]
    volatility = float(np.sqrt(np.mean(returns ** 2))) if len(returns) else 0.0

    slope = float(np.polyfit(np.arange(len(prices)), prices, 1)[0])
    strength = abs(slope)

    volumes = [d.volume for d in history]
    avg_volume = _mean(volumes)
    volume_ratio = _mean(volumes[-5:]) / avg_volume if avg_volume else 0.0

    if volatility > 0.05 and volume_ratio > 1.5:
        regime, confidence = 'volatile', 0.8
        description = 'High volatility with increased volume - potential breakout or breakdown'
        behavior = ['Use wider stop losses', 'Consider volatility-based strategies',
                    'Monitor for trend continuation or reversal']
    elif strength > 0.02:
        regime = 'rally' if slope > 0 else 'crash'
        confidence = min(strength * 50, 0.9)
        description = f"Strong {'upward' if slope > 0 else 'downward'} trend detected"
        behavior = ['Follow the trend', 'Use trailing stops', 'Consider momentum strategies']
    elif strength > 0.005:
        regime, confidence = 'trending', 0.7
        description = 'Moderate trend with steady price movement'
        behavior = ['Trade in direction of trend', 'Use trend-following indicators',
                    'Monitor for trend exhaustion']
    else:
        regime, confidence = 'ranging', 0.6
        description = 'Price moving within a range - low trend strength'
        behavior = ['Look for range trading opportunities', 'Use support/resistance levels',
                    'Consider mean-reversion strategies']

    if regime == 'volatile':
        duration = 'days to weeks' if _log_volatility(history[-20:]) > 0.03 else 'hours to days'
    elif regime == 'trending':
        duration = 'days to weeks'
    elif regime == 'ranging':
        duration = 'weeks to months'
    else:
        duration = 'hours to days'

    return MarketRegime(regime, confidence, description, duration, behavior)


class AnomalyDetectionEngine:
    """Runs the anomaly rules on each market update and keeps a bounded log."""

    def __init__(self, history: Optional[MarketHistory] = None, log_size: int = ANOMALY_LOG_SIZE):
        self.history = history if history is not None else MarketHistory()
        self._log: Deque[Anomaly] = deque(maxlen=log_size)

    def update_market_data(self, point: MarketDataPoint) -> List[Anomaly]:
        history = self.history.append(point)

        candidates = [
            detect_price_spike(history),
            detect_volume_surge(history),
            detect_flash_crash(history),
            detect_whale_movement(point),
        ]
        anomalies = [a for a in candidates if a is not None]

        for anomaly in anomalies:
            logger.info(f"{anomaly.type} on {anomaly.symbol} ({anomaly.severity})")
        self._log.extend(anomalies)
        return anomalies

    def recent_anomalies(self, limit: int = 10) -> List[Anomaly]:
        """Most recent anomalies, newest first."""
        if limit <= 0:
            return []
        return list(self._log)[-limit:][::-1]

    def anomaly_stats(self, now: Optional[datetime] = None) -> dict:
        now = now or datetime.now(timezone.utc)
        one_hour_ago = now - timedelta(hours=1)
        return {
            'total': len(self._log),
            'by_type': dict(Counter(a.type for a in self._log)),
            'by_severity': dict(Counter(a.severity for a in self._log)),
            'recent_activity': sum(1 for a in self._log if a.timestamp > one_hour_ago),
        }

    def market_regime(self, symbol: str) -> MarketRegime:
        return detect_market_regime(self.history.get(symbol))

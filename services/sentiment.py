"""
Sentiment Aggregation Service

Combines readings from pluggable sentiment sources (social, news, on-chain,
technical) into an influence-weighted score, an overall label, a confidence
figure and a coarse market-impact prediction.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import numpy as np
import requests

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Per-source label thresholds on |score|
SOURCE_THRESHOLDS = {
    'social': 0.2,
    'news': 0.15,
    'onchain': 0.1,
    'technical': 0.1,
}
OVERALL_THRESHOLD = 0.2
STRONG_SOURCE_SCORE = 0.2
EXPECTED_SOURCE_COUNT = 4
VOLUME_NORMALIZER = 100_000


@dataclass
class SentimentActivity:
    timestamp: datetime
    sentiment: str
    content: str
    impact: float


@dataclass
class SourceReading:
    """One source's view of a symbol. Scores run from -1 (bearish) to 1 (bullish)."""
    name: str
    type: str  # social | news | onchain | technical
    score: float
    volume: float
    influence: float
    recent_activity: List[SentimentActivity] = field(default_factory=list)
    sentiment: str = 'neutral'


@dataclass
class SentimentData:
    overall: str
    score: float
    confidence: float
    sources: List[SourceReading]
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class MarketImpact:
    direction: str
    magnitude: float
    timeframe: str  # short | medium | long
    confidence: float
    reasoning: List[str]


class SentimentSource(ABC):
    """Something that can report sentiment readings for a symbol."""

    @abstractmethod
    def fetch(self, symbol: str) -> List[SourceReading]:
        ...


class StaticSentimentSource(SentimentSource):
    """Returns fixed readings; useful for demos and tests."""

    def __init__(self, readings: Sequence[SourceReading]):
        self.readings = list(readings)

    def fetch(self, symbol: str) -> List[SourceReading]:
        return list(self.readings)


class HttpSentimentSource(SentimentSource):
    """
    Reads sentiment from a JSON endpoint.

    The endpoint is called as ``GET <url>?symbol=<symbol>`` and must return
    ``{"sources": [{"name", "type", "score", "volume", "influence",
    "recent_activity": [{"timestamp", "sentiment", "content", "impact"}]}]}``.
    """

    def __init__(self, url: str, timeout: float = 10, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, symbol: str) -> List[SourceReading]:
        response = self.session.get(self.url, params={'symbol': symbol}, timeout=self.timeout)
        if response.status_code != 200:
            logger.error(f"Sentiment API error: {response.status_code} - {response.text[:200]}")
            response.raise_for_status()

        readings = []
        for item in response.json().get('sources', []):
            activity = [
                SentimentActivity(
                    timestamp=datetime.fromisoformat(a['timestamp']),
                    sentiment=a.get('sentiment', 'neutral'),
                    content=a.get('content', ''),
                    impact=float(a.get('impact', 0.0)),
                )
                for a in item.get('recent_activity', [])
            ]
            readings.append(SourceReading(
                name=item['name'],
                type=item['type'],
                score=float(item['score']),
                volume=float(item.get('volume', 0)),
                influence=float(item.get('influence', 0)),
                recent_activity=activity,
            ))
        return readings


def label_score(score: float, threshold: float) -> str:
    if score > threshold:
        return 'bullish'
    if score < -threshold:
        return 'bearish'
    return 'neutral'


class SentimentAnalysisEngine:
    """Aggregates readings from the injected sources."""

    def __init__(self, sources: Sequence[SentimentSource]):
        self.sources = list(sources)

    def collect(self, symbol: str) -> List[SourceReading]:
        readings = []
        for source in self.sources:
            try:
                fetched = source.fetch(symbol)
            except Exception as e:
                logger.error(f"Sentiment source {type(source).__name__} failed for {symbol}: {e}")
                continue
            for reading in fetched:
                threshold = SOURCE_THRESHOLDS.get(reading.type, OVERALL_THRESHOLD)
                readings.append(replace(reading, sentiment=label_score(reading.score, threshold)))
        return readings

    def analyze(self, symbol: str) -> SentimentData:
        readings = self.collect(symbol)
        score = self.aggregate(readings)
        return SentimentData(
            overall=label_score(score, OVERALL_THRESHOLD),
            score=score,
            confidence=self.confidence(readings),
            sources=readings,
        )

    @staticmethod
    def aggregate(readings: Sequence[SourceReading]) -> float:
        """Influence-weighted mean score."""
        total_weight = sum(r.influence for r in readings)
        if total_weight <= 0:
            return 0.0
        return sum(r.score * r.influence for r in readings) / total_weight

    @staticmethod
    def confidence(readings: Sequence[SourceReading]) -> float:
        """Mean of volume, consistency and source-diversity scores."""
        if not readings:
            return 0.0

        volume_score = min(sum(r.volume for r in readings) / VOLUME_NORMALIZER, 1.0)
        consistency_score = 1 - float(np.std([r.score for r in readings]))
        diversity_score = min(len(readings) / EXPECTED_SOURCE_COUNT, 1.0)

        return (volume_score + consistency_score + diversity_score) / 3

    def predict_market_impact(self, data: SentimentData) -> MarketImpact:
        strength = abs(data.score)
        direction, magnitude, timeframe = 'neutral', 0.0, 'short'

        if strength > 0.3 and data.confidence > 0.6:
            direction = 'bullish' if data.score > 0 else 'bearish'
            magnitude = min(strength * data.confidence, 0.8)
            # News moves markets over days; on-chain flow is immediate
            if any(s.type == 'news' and abs(s.score) > STRONG_SOURCE_SCORE for s in data.sources):
                timeframe = 'medium'

        reasoning = []
        if direction != 'neutral':
            reasoning.append(f"{direction.capitalize()} sentiment detected with "
                             f"{magnitude * 100:.1f}% potential impact")
        if data.confidence > 0.7:
            reasoning.append('High confidence in sentiment analysis based on multiple data sources')

        strong = [s.name for s in data.sources if abs(s.score) > STRONG_SOURCE_SCORE]
        if strong:
            reasoning.append(f"Strong signals from: {', '.join(strong)}")

        if timeframe == 'short':
            reasoning.append('Expected impact within hours to days')
        elif timeframe == 'medium':
            reasoning.append('Expected impact within days to weeks')
        else:
            reasoning.append('Long-term sentiment trend identified')

        return MarketImpact(
            direction=direction,
            magnitude=magnitude,
            timeframe=timeframe,
            confidence=data.confidence * (1 if strength > 0.3 else 0.5),
            reasoning=reasoning,
        )

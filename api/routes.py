"""API routes for the options analytics backend."""

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

import config
from models import (
    ArbitrageRequest, ImpliedVolatilityRequest, ImpliedVolatilityResponse, MarketDataPointModel,
    OptionQuoteModel, PayoffRequest, PayoffResponse, PortfolioRequest, PortfolioResponse,
    PriceResponse, PricingRequest, RegimeRequest, RiskAssessmentRequest,
)
from services.anomaly_detection import (
    AnomalyDetectionEngine, MarketDataPoint, ObservedOption, detect_arbitrage,
    detect_market_regime, detect_option_mispricing,
)
from services.black_scholes import (
    PricingParams, black_scholes_full, break_even_points, implied_volatility, option_chain,
    payoff_at_expiry,
)
from services.market_data import get_historical_volatility, get_spot_price
from services.portfolio import PortfolioAggregator, Position, high_risk_positions
from services.risk_assessment import MarketConditions, RiskAssessmentEngine, UserProfile
from services.sentiment import SentimentAnalysisEngine

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create router
router = APIRouter()


def get_anomaly_engine(request: Request) -> AnomalyDetectionEngine:
    return request.app.state.anomaly_engine


def get_risk_engine(request: Request) -> RiskAssessmentEngine:
    return request.app.state.risk_engine


def get_sentiment_engine(request: Request) -> SentimentAnalysisEngine:
    return request.app.state.sentiment_engine


def _pricing_params(body) -> PricingParams:
    return PricingParams(
        spot_price=body.spot_price,
        strike_price=body.strike_price,
        time_to_expiry=body.time_to_expiry,
        volatility=body.volatility,
        risk_free_rate=body.risk_free_rate,
        dividend_yield=body.dividend_yield,
    )


def _to_position(model) -> Position:
    return Position(
        symbol=model.symbol,
        side=model.side.value,
        quantity=model.quantity,
        avg_price=model.avg_price,
        realized_pnl=model.realized_pnl,
        option_type=model.option_type.value if model.option_type else None,
        strike=model.strike,
        expiry_days=model.expiry_days,
        volatility=model.volatility,
        underlying=model.underlying,
    )


def _price_lookup(spot_prices: Dict[str, float]):
    """Prefer prices supplied with the request, then the live feed."""
    def lookup(symbol: str):
        if symbol in spot_prices:
            return spot_prices[symbol]
        return get_spot_price(symbol)
    return lookup


def _aggregator(body: PortfolioRequest) -> PortfolioAggregator:
    return PortfolioAggregator(
        _price_lookup(body.spot_prices),
        risk_free_rate=config.RISK_FREE_RATE,
        dividend_yield=config.DIVIDEND_YIELD,
        default_volatility=config.DEFAULT_VOLATILITY,
        volatility_lookup=get_historical_volatility if body.use_historical_volatility else None,
    )


@router.post("/pricing/price", response_model=PriceResponse)
async def price_option(body: PricingRequest):
    """Black-Scholes price and Greeks for a single option."""
    result = black_scholes_full(_pricing_params(body), body.option_type.value)
    return {"price": result.price, "greeks": asdict(result.greeks)}


@router.post("/pricing/greeks")
async def option_greeks(body: PricingRequest):
    result = black_scholes_full(_pricing_params(body), body.option_type.value)
    return asdict(result.greeks)


@router.post("/pricing/implied-volatility", response_model=ImpliedVolatilityResponse)
async def solve_implied_volatility(body: ImpliedVolatilityRequest):
    iv = implied_volatility(
        body.market_price,
        body.spot_price,
        body.strike_price,
        body.time_to_expiry,
        body.option_type.value,
        risk_free_rate=body.risk_free_rate,
        dividend_yield=body.dividend_yield,
    )
    return {"implied_volatility": iv}


@router.get("/pricing/chain", response_model=List[OptionQuoteModel])
async def get_option_chain(
    spot_price: float,
    expiry_days: float,
    strikes: List[float] = Query(...),
    volatility: float = config.DEFAULT_VOLATILITY,
):
    """Theoretical call/put quotes for each strike at one expiry."""
    quotes = option_chain(
        spot_price, expiry_days, strikes,
        volatility=volatility,
        risk_free_rate=config.RISK_FREE_RATE,
        dividend_yield=config.DIVIDEND_YIELD,
    )
    return [asdict(q) for q in quotes]


@router.post("/pricing/payoff", response_model=PayoffResponse)
async def strategy_payoff(body: PayoffRequest):
    payoff = sum(
        payoff_at_expiry(body.spot_price, leg.strike, leg.option_type.value, leg.side.value)
        for leg in body.legs
    )
    points = break_even_points(
        [leg.strike for leg in body.legs],
        [leg.option_type.value for leg in body.legs],
        [leg.side.value for leg in body.legs],
    )
    return {"payoff": payoff, "break_even_points": points}


@router.post("/portfolio/summary", response_model=PortfolioResponse)
async def portfolio_summary(body: PortfolioRequest):
    """Per-position P&L, portfolio totals and portfolio Greeks."""
    positions = [_to_position(p) for p in body.positions]
    pnls, summary, greeks = _aggregator(body).summarize(positions, body.equity_curve)

    return {
        "positions": [asdict(p) for p in pnls],
        "summary": asdict(summary),
        "greeks": asdict(greeks),
        "high_risk_symbols": [p.symbol for p in high_risk_positions(pnls)],
    }


@router.post("/risk/assessment")
async def risk_assessment(body: RiskAssessmentRequest,
                          engine: RiskAssessmentEngine = Depends(get_risk_engine)):
    positions = [_to_position(p) for p in body.positions]
    pnls = _aggregator(body).evaluate(positions)

    market = MarketConditions(**body.market_conditions.model_dump()) if body.market_conditions else None
    profile = None
    if body.user_profile:
        profile = UserProfile(
            risk_tolerance=body.user_profile.risk_tolerance.value,
            experience=body.user_profile.experience,
        )

    return asdict(engine.assess_portfolio_risk(pnls, market, profile, body.equity_curve))


@router.post("/anomalies/market-data")
async def ingest_market_data(body: MarketDataPointModel,
                             engine: AnomalyDetectionEngine = Depends(get_anomaly_engine)):
    """Record a market update and return any anomalies it triggers."""
    point = MarketDataPoint(
        symbol=body.symbol,
        price=body.price,
        volume=body.volume,
        change_percent=body.change_percent,
        timestamp=body.timestamp or datetime.now(timezone.utc),
    )
    return [asdict(a) for a in engine.update_market_data(point)]


@router.get("/anomalies/recent")
async def recent_anomalies(limit: int = Query(10, ge=1, le=50),
                           engine: AnomalyDetectionEngine = Depends(get_anomaly_engine)):
    return [asdict(a) for a in engine.recent_anomalies(limit)]


@router.get("/anomalies/stats")
async def anomaly_stats(engine: AnomalyDetectionEngine = Depends(get_anomaly_engine)):
    return engine.anomaly_stats()


@router.get("/anomalies/regime/{symbol}")
async def symbol_regime(symbol: str, engine: AnomalyDetectionEngine = Depends(get_anomaly_engine)):
    """Market regime over the recorded history of a symbol."""
    return asdict(engine.market_regime(symbol))


@router.post("/anomalies/regime")
async def market_regime(body: RegimeRequest):
    now = datetime.now(timezone.utc)
    points = [
        MarketDataPoint(p.symbol, p.price, p.volume, p.timestamp or now, p.change_percent)
        for p in body.points
    ]
    return asdict(detect_market_regime(points))


@router.post("/anomalies/arbitrage")
async def arbitrage_opportunities(body: ArbitrageRequest):
    options = [
        ObservedOption(**{**o.model_dump(), "option_type": o.option_type.value})
        for o in body.options
    ]
    opportunities = detect_arbitrage(body.quotes) + detect_option_mispricing(options)
    return [asdict(o) for o in opportunities]


@router.get("/sentiment/{symbol}")
async def sentiment(symbol: str, engine: SentimentAnalysisEngine = Depends(get_sentiment_engine)):
    """Aggregated sentiment for a symbol with a market-impact estimate."""
    if not engine.sources:
        raise HTTPException(status_code=503, detail="No sentiment sources configured")

    data = engine.analyze(symbol)
    impact = engine.predict_market_impact(data)
    logger.info(f"Sentiment for {symbol}: {data.overall} ({data.score:.2f})")
    return {"sentiment": asdict(data), "impact": asdict(impact)}

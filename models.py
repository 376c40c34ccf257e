"""Request and response models for the options analytics API."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, NonNegativeFloat

import config


class OptionType(str, Enum):
    CALL = "call"
    PUT = "put"


class Side(str, Enum):
    LONG = "long"
    SHORT = "short"


class RiskTolerance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class GreeksModel(BaseModel):
    delta: float
    gamma: float
    theta: float
    vega: float
    rho: float


class PricingRequest(BaseModel):
    spot_price: float
    strike_price: float
    time_to_expiry: float = Field(description="Years to expiry")
    volatility: float
    option_type: OptionType
    risk_free_rate: float = config.RISK_FREE_RATE
    dividend_yield: float = config.DIVIDEND_YIELD


class PriceResponse(BaseModel):
    price: float
    greeks: GreeksModel


class ImpliedVolatilityRequest(BaseModel):
    market_price: float
    spot_price: float
    strike_price: float
    time_to_expiry: float
    option_type: OptionType
    risk_free_rate: float = config.RISK_FREE_RATE
    dividend_yield: float = config.DIVIDEND_YIELD


class ImpliedVolatilityResponse(BaseModel):
    implied_volatility: float


class OptionQuoteModel(BaseModel):
    strike: float
    option_type: OptionType
    theoretical_price: float
    volatility: float
    greeks: GreeksModel


class StrategyLeg(BaseModel):
    strike: float
    option_type: OptionType
    side: Side = Side.LONG


class PayoffRequest(BaseModel):
    spot_price: float
    legs: List[StrategyLeg] = Field(min_length=1)


class PayoffResponse(BaseModel):
    payoff: float
    break_even_points: List[float]


class PositionModel(BaseModel):
    symbol: str
    side: Side
    quantity: float = Field(ge=0)
    avg_price: float = Field(ge=0)
    realized_pnl: float = 0.0
    option_type: Optional[OptionType] = None
    strike: Optional[float] = Field(default=None, gt=0)
    expiry_days: Optional[float] = None
    volatility: Optional[float] = None
    underlying: Optional[str] = None


class PortfolioRequest(BaseModel):
    positions: List[PositionModel]
    spot_prices: Dict[str, NonNegativeFloat] = Field(default_factory=dict)
    equity_curve: Optional[List[float]] = None
    use_historical_volatility: bool = Field(
        default=False, description="Price options without a volatility at the underlying's historical volatility")


class PositionPnLModel(BaseModel):
    symbol: str
    side: Side
    quantity: float
    avg_price: float
    current_price: float
    market_value: float
    unrealized_pnl: float
    unrealized_pnl_percent: float
    realized_pnl: float
    total_pnl: float
    total_pnl_percent: float
    greeks: GreeksModel


class PortfolioSummaryModel(BaseModel):
    total_market_value: float
    total_unrealized_pnl: float
    total_unrealized_pnl_percent: float
    total_realized_pnl: float
    total_pnl: float
    total_pnl_percent: float
    positions_count: int
    winning_positions: int
    losing_positions: int
    win_rate: float
    largest_gain: float
    largest_loss: float
    average_win: float
    average_loss: float
    sharpe_ratio: float
    max_drawdown: float
    volatility: float


class PortfolioResponse(BaseModel):
    positions: List[PositionPnLModel]
    summary: PortfolioSummaryModel
    greeks: GreeksModel
    high_risk_symbols: List[str]


class MarketConditionsModel(BaseModel):
    volatility: float = 0.0
    fear_greed_index: float = 50.0


class UserProfileModel(BaseModel):
    risk_tolerance: RiskTolerance = RiskTolerance.MEDIUM
    experience: str = "intermediate"


class RiskAssessmentRequest(PortfolioRequest):
    market_conditions: Optional[MarketConditionsModel] = None
    user_profile: Optional[UserProfileModel] = None


class MarketDataPointModel(BaseModel):
    symbol: str
    price: float = Field(gt=0)
    volume: float = Field(ge=0)
    change_percent: float = 0.0
    timestamp: Optional[datetime] = None


class RegimeRequest(BaseModel):
    points: List[MarketDataPointModel]


class ObservedOptionModel(BaseModel):
    symbol: str
    spot_price: float
    strike: float
    expiry_days: float
    option_type: OptionType
    market_price: float
    volatility: float = config.DEFAULT_VOLATILITY
    risk_free_rate: float = config.RISK_FREE_RATE
    dividend_yield: float = config.DIVIDEND_YIELD


class ArbitrageRequest(BaseModel):
    quotes: Dict[str, Dict[str, float]] = Field(default_factory=dict, description="symbol -> exchange -> price")
    options: List[ObservedOptionModel] = Field(default_factory=list)

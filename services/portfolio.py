"""
Portfolio P&L Aggregation Service

Turns raw positions plus a price feed into per-position P&L and Greeks and
folds them into portfolio-level totals and simple statistics.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from services.black_scholes import (
    DAYS_PER_YEAR, Greeks, PricingDomainError, PricingParams, black_scholes_full,
    normalize_option_type, payoff_at_expiry,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SIDES = ('long', 'short')

# Thresholds for high_risk_positions
HIGH_RISK_DELTA = 0.5
HIGH_RISK_GAMMA = 0.1

PriceLookup = Callable[[str], Optional[float]]
VolatilityLookup = Callable[[str], Optional[float]]


@dataclass
class Position:
    """A raw position as supplied by the positions feed."""
    symbol: str
    side: str
    quantity: float
    avg_price: float
    realized_pnl: float = 0.0
    # Option legs only
    option_type: Optional[str] = None
    strike: Optional[float] = None
    expiry_days: Optional[float] = None
    volatility: Optional[float] = None
    underlying: Optional[str] = None

    @property
    def is_option(self) -> bool:
        return self.option_type is not None and self.strike is not None and self.expiry_days is not None


@dataclass
class PositionPnL:
    """P&L and risk of one position at the current price."""
    symbol: str
    side: str
    quantity: float
    avg_price: float
    current_price: float
    market_value: float
    unrealized_pnl: float
    unrealized_pnl_percent: float
    realized_pnl: float
    total_pnl: float
    total_pnl_percent: float
    greeks: Greeks = field(default_factory=lambda: Greeks(0.0, 0.0, 0.0, 0.0, 0.0))


@dataclass
class PortfolioSummary:
    """Portfolio-level totals and statistics."""
    total_market_value: float = 0.0
    total_unrealized_pnl: float = 0.0
    total_unrealized_pnl_percent: float = 0.0
    total_realized_pnl: float = 0.0
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    positions_count: int = 0
    winning_positions: int = 0
    losing_positions: int = 0
    win_rate: float = 0.0
    largest_gain: float = 0.0
    largest_loss: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    volatility: float = 0.0


def _safe_percent(numerator: float, denominator: float) -> float:
    return numerator / denominator * 100 if denominator != 0 else 0.0


def position_pnl(position: Position, current_price: float, greeks: Optional[Greeks] = None) -> PositionPnL:
    """
    Compute P&L for a single position.

    Greeks are per unit for a long holding; they are sign-flipped for shorts.
    """
    if position.side not in SIDES:
        raise ValueError(f"side must be 'long' or 'short', got {position.side!r}")
    for name, value in (('quantity', position.quantity), ('avg_price', position.avg_price),
                        ('realized_pnl', position.realized_pnl), ('current_price', current_price)):
        if not math.isfinite(value):
            raise PricingDomainError(f"{position.symbol}: {name} must be a finite number, got {value!r}")
    if position.quantity < 0:
        raise PricingDomainError(f"{position.symbol}: quantity must be non-negative, got {position.quantity}")
    if position.avg_price < 0:
        raise PricingDomainError(f"{position.symbol}: avg_price must be non-negative, got {position.avg_price}")
    if current_price < 0:
        raise PricingDomainError(f"{position.symbol}: current_price must be non-negative, got {current_price}")

    size = abs(position.quantity)
    cost_basis = position.avg_price * size

    if position.side == 'long':
        unrealized = (current_price - position.avg_price) * position.quantity
    else:
        unrealized = (position.avg_price - current_price) * position.quantity

    total = unrealized + position.realized_pnl
    unit_greeks = greeks if greeks is not None else Greeks(0.0, 0.0, 0.0, 0.0, 0.0)

    return PositionPnL(
        symbol=position.symbol,
        side=position.side,
        quantity=position.quantity,
        avg_price=position.avg_price,
        current_price=current_price,
        market_value=current_price * size,
        unrealized_pnl=unrealized,
        unrealized_pnl_percent=_safe_percent(unrealized, cost_basis),
        realized_pnl=position.realized_pnl,
        total_pnl=total,
        total_pnl_percent=_safe_percent(total, cost_basis),
        greeks=unit_greeks if position.side == 'long' else unit_greeks.scaled(-1),
    )


def max_drawdown(values: Sequence[float]) -> float:
    """Largest peak-to-trough drop over a sequence of values, in value units."""
    peak = float('-inf')
    drawdown = 0.0
    for value in values:
        peak = max(peak, value)
        drawdown = max(drawdown, peak - value)
    return drawdown


def max_drawdown_percent(values: Sequence[float]) -> float:
    """Largest peak-to-trough drop as a percentage of the peak it fell from."""
    peak = float('-inf')
    drawdown = 0.0
    for value in values:
        peak = max(peak, value)
        if peak > 0:
            drawdown = max(drawdown, (peak - value) / peak * 100)
    return drawdown


def summarize_portfolio(pnls: Sequence[PositionPnL],
                        equity_curve: Optional[Sequence[float]] = None) -> PortfolioSummary:
    """
    Fold position P&Ls into a PortfolioSummary.

    Volatility is the sample standard deviation of per-position total return
    percentages and the Sharpe ratio is their mean over that volatility.
    Without an equity curve the drawdown is scanned over position market
    values in list order, which only means something if the list order does.
    """
    if not pnls:
        return PortfolioSummary()

    total_market_value = sum(p.market_value for p in pnls)
    total_unrealized = sum(p.unrealized_pnl for p in pnls)
    total_realized = sum(p.realized_pnl for p in pnls)
    total_pnl = total_unrealized + total_realized

    gains = [p.unrealized_pnl for p in pnls if p.unrealized_pnl > 0]
    losses = [abs(p.unrealized_pnl) for p in pnls if p.unrealized_pnl < 0]

    returns = np.array([p.total_pnl_percent for p in pnls], dtype=float)
    avg_return = float(returns.mean())
    volatility = float(returns.std(ddof=1)) if len(returns) > 1 else 0.0
    sharpe = avg_return / volatility if volatility != 0 else 0.0

    if equity_curve:
        drawdown = max_drawdown(equity_curve)
    else:
        drawdown = max_drawdown([p.market_value for p in pnls])

    return PortfolioSummary(
        total_market_value=total_market_value,
        total_unrealized_pnl=total_unrealized,
        total_unrealized_pnl_percent=_safe_percent(total_unrealized, total_market_value),
        total_realized_pnl=total_realized,
        total_pnl=total_pnl,
        total_pnl_percent=_safe_percent(total_pnl, total_market_value),
        positions_count=len(pnls),
        winning_positions=len(gains),
        losing_positions=len(losses),
        win_rate=len(gains) / len(pnls) * 100,
        largest_gain=max(gains) if gains else 0.0,
        largest_loss=max(losses) if losses else 0.0,
        average_win=sum(gains) / len(gains) if gains else 0.0,
        average_loss=sum(losses) / len(losses) if losses else 0.0,
        sharpe_ratio=sharpe,
        max_drawdown=drawdown,
        volatility=volatility,
    )


def portfolio_greeks(pnls: Sequence[PositionPnL]) -> Greeks:
    """Quantity-weighted sum of position Greeks."""
    total = Greeks(0.0, 0.0, 0.0, 0.0, 0.0)
    for p in pnls:
        weighted = p.greeks.scaled(p.quantity)
        total = Greeks(
            delta=total.delta + weighted.delta,
            gamma=total.gamma + weighted.gamma,
            theta=total.theta + weighted.theta,
            vega=total.vega + weighted.vega,
            rho=total.rho + weighted.rho,
        )
    return total


def sort_positions(pnls: Sequence[PositionPnL], sort_by: str = 'gain') -> List[PositionPnL]:
    """Sort by biggest gain, biggest loss or market value."""
    if sort_by == 'gain':
        return sorted(pnls, key=lambda p: p.unrealized_pnl, reverse=True)
    if sort_by == 'loss':
        return sorted(pnls, key=lambda p: p.unrealized_pnl)
    if sort_by == 'value':
        return sorted(pnls, key=lambda p: p.market_value, reverse=True)
    return list(pnls)


def high_risk_positions(pnls: Sequence[PositionPnL]) -> List[PositionPnL]:
    """Positions with large delta or gamma, largest |delta| first."""
    risky = [p for p in pnls
             if abs(p.greeks.delta) > HIGH_RISK_DELTA or abs(p.greeks.gamma) > HIGH_RISK_GAMMA]
    return sorted(risky, key=lambda p: abs(p.greeks.delta), reverse=True)


class PortfolioAggregator:
    """Prices positions against a spot feed and aggregates the results."""

    def __init__(self, price_lookup: PriceLookup, risk_free_rate: float = 0.05,
                 dividend_yield: float = 0.0, default_volatility: float = 0.2,
                 volatility_lookup: Optional[VolatilityLookup] = None):
        self.price_lookup = price_lookup
        self.volatility_lookup = volatility_lookup
        self.risk_free_rate = risk_free_rate
        self.dividend_yield = dividend_yield
        self.default_volatility = default_volatility

    def price_position(self, position: Position) -> Tuple[float, Greeks]:
        """Current price and per-unit long Greeks for a position."""
        underlying = position.underlying or position.symbol
        spot = self.price_lookup(underlying)
        if spot is not None and (not math.isfinite(spot) or spot < 0):
            raise PricingDomainError(f"Spot price for {underlying} must be a non-negative number, got {spot!r}")
        if spot is None or spot == 0:
            logger.warning(f"No spot price for {underlying}; pricing {position.symbol} at 0")
            return 0.0, Greeks(0.0, 0.0, 0.0, 0.0, 0.0)

        if not position.is_option:
            return spot, Greeks(delta=1.0, gamma=0.0, theta=0.0, vega=0.0, rho=0.0)

        kind = normalize_option_type(position.option_type)
        if position.expiry_days <= 0:
            return payoff_at_expiry(spot, position.strike, kind), Greeks(0.0, 0.0, 0.0, 0.0, 0.0)

        params = PricingParams(
            spot_price=spot,
            strike_price=position.strike,
            time_to_expiry=position.expiry_days / DAYS_PER_YEAR,
            volatility=self.volatility_for(position, underlying),
            risk_free_rate=self.risk_free_rate,
            dividend_yield=self.dividend_yield,
        )
        result = black_scholes_full(params, kind)
        return result.price, result.greeks

    def volatility_for(self, position: Position, underlying: str) -> float:
        """Position volatility, else the underlying's historical volatility, else the default."""
        if position.volatility is not None:
            return position.volatility
        if self.volatility_lookup is not None:
            historical = self.volatility_lookup(underlying)
            if historical is not None and historical > 0:
                return historical
            logger.warning(f"No historical volatility for {underlying}; using {self.default_volatility}")
        return self.default_volatility

    def evaluate(self, positions: Sequence[Position]) -> List[PositionPnL]:
        pnls = []
        for position in positions:
            price, unit_greeks = self.price_position(position)
            pnls.append(position_pnl(position, price, unit_greeks))
        return pnls

    def summarize(self, positions: Sequence[Position],
                  equity_curve: Optional[Sequence[float]] = None
                  ) -> Tuple[List[PositionPnL], PortfolioSummary, Greeks]:
        pnls = self.evaluate(positions)
        logger.info(f"Aggregated {len(pnls)} positions")
        return pnls, summarize_portfolio(pnls, equity_curve), portfolio_greeks(pnls)

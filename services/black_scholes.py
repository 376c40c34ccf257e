"""
Black-Scholes Option Pricing Model Service

Implements the Black-Scholes-Merton model (continuous dividend yield) for
European option pricing, Greeks, implied volatility and a few pricing helpers
used by the portfolio and anomaly services.
"""

import math
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, NamedTuple, Optional, Sequence

from scipy.stats import norm

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Abramowitz and Stegun 7.1.26 coefficients
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911

IV_INITIAL_GUESS = 0.2
IV_MIN = 0.01
IV_MAX = 2.0
MIN_TIME_TO_EXPIRY = 0.001  # years
DAYS_PER_YEAR = 365


class PricingDomainError(ValueError):
    """Raised when pricing inputs are outside the model's domain."""


@dataclass(frozen=True)
class PricingParams:
    """Inputs to a single Black-Scholes calculation."""
    spot_price: float
    strike_price: float
    time_to_expiry: float  # years
    volatility: float
    risk_free_rate: float
    dividend_yield: float = 0.0


@dataclass
class Greeks:
    """Container for option Greeks."""
    delta: float
    gamma: float
    theta: float
    vega: float
    rho: float

    def scaled(self, factor: float) -> "Greeks":
        return Greeks(
            delta=self.delta * factor,
            gamma=self.gamma * factor,
            theta=self.theta * factor,
            vega=self.vega * factor,
            rho=self.rho * factor,
        )


class BlackScholesResult(NamedTuple):
    """Result container for Black-Scholes calculations."""
    price: float
    greeks: Greeks


@dataclass
class OptionQuote:
    """Theoretical quote for one strike/type in an option chain."""
    strike: float
    option_type: str
    theoretical_price: float
    greeks: Greeks
    volatility: float


def normal_cdf(x: float) -> float:
    """
    Standard normal CDF via the Abramowitz-Stegun erf approximation.

    Maximum absolute error of the underlying erf approximation is about 1.5e-7.
    """
    sign = -1.0 if x < 0 else 1.0
    abs_x = abs(x) / math.sqrt(2.0)

    t = 1.0 / (1.0 + _P * abs_x)
    erf = 1.0 - ((((_A5 * t + _A4) * t + _A3) * t + _A2) * t + _A1) * t * math.exp(-abs_x * abs_x)

    return 0.5 * (1.0 + sign * erf)


def normal_pdf(x: float) -> float:
    """Probability density function for standard normal distribution."""
    return float(norm.pdf(x))


def normalize_option_type(option_type: str) -> str:
    """Return 'call' or 'put', raising PricingDomainError for anything else."""
    kind = option_type.lower() if isinstance(option_type, str) else None
    if kind not in ('call', 'put'):
        raise PricingDomainError(f"option_type must be 'call' or 'put', got {option_type!r}")
    return kind


def validate_params(params: PricingParams) -> None:
    """Reject inputs for which the closed-form model is undefined."""
    for name in ('spot_price', 'strike_price', 'time_to_expiry', 'volatility',
                 'risk_free_rate', 'dividend_yield'):
        value = getattr(params, name)
        if value is None or not math.isfinite(value):
            raise PricingDomainError(f"{name} must be a finite number, got {value!r}")

    if params.spot_price <= 0:
        raise PricingDomainError(f"spot_price must be positive, got {params.spot_price}")
    if params.strike_price <= 0:
        raise PricingDomainError(f"strike_price must be positive, got {params.strike_price}")
    if params.time_to_expiry <= 0:
        raise PricingDomainError(f"time_to_expiry must be positive, got {params.time_to_expiry}")
    if params.volatility <= 0:
        raise PricingDomainError(f"volatility must be positive, got {params.volatility}")


def calculate_d1_d2(params: PricingParams) -> tuple:
    """Calculate the d1 and d2 terms of the Black-Scholes formula."""
    S, K, T = params.spot_price, params.strike_price, params.time_to_expiry
    sigma, r, q = params.volatility, params.risk_free_rate, params.dividend_yield

    sigma_sqrt_t = sigma * math.sqrt(T)
    d1 = (math.log(S / K) + (r - q + 0.5 * sigma ** 2) * T) / sigma_sqrt_t
    d2 = d1 - sigma_sqrt_t
    return d1, d2


def black_scholes_price(params: PricingParams, option_type: str) -> float:
    """
    Calculate the Black-Scholes price of a European option.

    Args:
        params: Spot, strike, time to expiry (years), volatility, rate and dividend yield
        option_type: 'call' or 'put'

    Returns:
        Theoretical option price

    Raises:
        PricingDomainError: if the inputs are outside the model's domain
    """
    kind = normalize_option_type(option_type)
    validate_params(params)

    S, K, T = params.spot_price, params.strike_price, params.time_to_expiry
    r, q = params.risk_free_rate, params.dividend_yield
    d1, d2 = calculate_d1_d2(params)

    spot_disc = S * math.exp(-q * T)
    strike_disc = K * math.exp(-r * T)

    if kind == 'call':
        return spot_disc * normal_cdf(d1) - strike_disc * normal_cdf(d2)
    return strike_disc * normal_cdf(-d2) - spot_disc * normal_cdf(-d1)


def greeks(params: PricingParams, option_type: str) -> Greeks:
    """
    Calculate the Greeks for an option using Black-Scholes model.

    Theta is per calendar day, vega per 1% change in volatility and rho per
    1% change in the interest rate.

    Raises:
        PricingDomainError: if the inputs are outside the model's domain
    """
    kind = normalize_option_type(option_type)
    validate_params(params)

    S, K, T = params.spot_price, params.strike_price, params.time_to_expiry
    sigma, r, q = params.volatility, params.risk_free_rate, params.dividend_yield
    d1, d2 = calculate_d1_d2(params)

    sqrt_time = math.sqrt(T)
    div_disc = math.exp(-q * T)
    rate_disc = math.exp(-r * T)
    pdf_d1 = normal_pdf(d1)

    # Time decay common to calls and puts
    decay = -S * pdf_d1 * sigma * div_disc / (2 * sqrt_time)

    if kind == 'call':
        delta = div_disc * normal_cdf(d1)
        theta = (decay - r * K * rate_disc * normal_cdf(d2)
                 + q * S * div_disc * normal_cdf(d1)) / DAYS_PER_YEAR
        rho = K * T * rate_disc * normal_cdf(d2) / 100
    else:  # put
        delta = div_disc * (normal_cdf(d1) - 1)
        theta = (decay + r * K * rate_disc * normal_cdf(-d2)
                 - q * S * div_disc * normal_cdf(-d1)) / DAYS_PER_YEAR
        rho = -K * T * rate_disc * normal_cdf(-d2) / 100

    gamma = div_disc * pdf_d1 / (S * sigma * sqrt_time)
    vega = S * div_disc * sqrt_time * pdf_d1 / 100

    return Greeks(delta=delta, gamma=gamma, theta=theta, vega=vega, rho=rho)


def black_scholes_full(params: PricingParams, option_type: str) -> BlackScholesResult:
    """Calculate both price and Greeks for an option."""
    price = black_scholes_price(params, option_type)
    option_greeks = greeks(params, option_type)

    return BlackScholesResult(price=price, greeks=option_greeks)


def implied_volatility(market_price: float, spot: float, strike: float, time_to_expiry: float,
                       option_type: str, risk_free_rate: float = 0.05,
                       dividend_yield: float = 0.0, tolerance: float = 1e-4,
                       max_iterations: int = 100) -> float:
    """
    Solve for the volatility that reproduces market_price using Newton-Raphson.

    Starts at 20% and clamps every step to [1%, 200%]. If the iteration does
    not converge the last estimate is returned.

    Raises:
        PricingDomainError: for a negative or non-finite market price, or
            invalid spot/strike/expiry
    """
    if market_price is None or not math.isfinite(market_price) or market_price < 0:
        raise PricingDomainError(f"market_price must be a non-negative number, got {market_price!r}")

    params = PricingParams(
        spot_price=spot,
        strike_price=strike,
        time_to_expiry=time_to_expiry,
        volatility=IV_INITIAL_GUESS,
        risk_free_rate=risk_free_rate,
        dividend_yield=dividend_yield,
    )
    sigma = IV_INITIAL_GUESS

    for _ in range(max_iterations):
        params = replace(params, volatility=sigma)
        result = black_scholes_full(params, option_type)
        diff = result.price - market_price

        if abs(diff) < tolerance:
            return sigma

        vega = result.greeks.vega * 100  # back to per unit of volatility
        if vega == 0:
            break

        sigma = sigma - diff / vega
        sigma = max(IV_MIN, min(IV_MAX, sigma))

    logger.warning(f"Implied volatility did not converge for price {market_price}; returning {sigma:.4f}")
    return sigma


def create_pricing_params(spot: float, strike: float, expiry: datetime, volatility: float,
                          risk_free_rate: float = 0.05, dividend_yield: float = 0.0,
                          now: Optional[datetime] = None) -> PricingParams:
    """Build PricingParams from an expiry date, flooring time to expiry at 0.001 years."""
    if now is None:
        now = datetime.now(expiry.tzinfo)
    years = (expiry - now).total_seconds() / (DAYS_PER_YEAR * 24 * 60 * 60)

    return PricingParams(
        spot_price=spot,
        strike_price=strike,
        time_to_expiry=max(MIN_TIME_TO_EXPIRY, years),
        volatility=volatility,
        risk_free_rate=risk_free_rate,
        dividend_yield=dividend_yield,
    )


def theoretical_price(spot: float, strike: float, expiry: datetime, volatility: float,
                      option_type: str, risk_free_rate: float = 0.05,
                      dividend_yield: float = 0.0, now: Optional[datetime] = None) -> float:
    """Calculate the theoretical price for an option expiring at a given date."""
    params = create_pricing_params(spot, strike, expiry, volatility, risk_free_rate,
                                   dividend_yield, now=now)
    return black_scholes_price(params, option_type)


def payoff_at_expiry(spot: float, strike: float, option_type: str, side: str = 'long') -> float:
    """Intrinsic payoff at expiration, negated for a short position."""
    kind = normalize_option_type(option_type)
    if kind == 'call':
        payoff = max(spot - strike, 0.0)
    else:
        payoff = max(strike - spot, 0.0)

    return payoff if side == 'long' else -payoff


def break_even_points(strikes: Sequence[float], option_types: Sequence[str],
                      sides: Sequence[str]) -> List[float]:
    """
    Rough break-even levels for one- and two-leg strategies.

    Premiums are not taken into account: a single leg breaks even at its
    strike, a long/short vertical at the far strike, and a mixed call/put
    pair at both strikes.
    """
    if len(strikes) == 1:
        return [strikes[0]]

    points: List[float] = []
    if len(strikes) == 2:
        strike1, strike2 = strikes
        type1, type2 = (normalize_option_type(t) for t in option_types)
        side1, side2 = sides

        if type1 == type2:
            if side1 == 'long' and side2 == 'short':
                points.append(strike1 + (strike2 - strike1) * (1 if type1 == 'call' else -1))
        else:
            points.extend([strike1, strike2])

    return points


def option_chain(spot: float, expiry_days: float, strikes: Sequence[float],
                 volatility: float = 0.2, risk_free_rate: float = 0.05,
                 dividend_yield: float = 0.02) -> List[OptionQuote]:
    """Theoretical call and put quotes for each strike at a single expiry."""
    time_to_expiry = expiry_days / DAYS_PER_YEAR
    quotes = []

    for strike in strikes:
        params = PricingParams(
            spot_price=spot,
            strike_price=strike,
            time_to_expiry=time_to_expiry,
            volatility=volatility,
            risk_free_rate=risk_free_rate,
            dividend_yield=dividend_yield,
        )
        for kind in ('call', 'put'):
            result = black_scholes_full(params, kind)
            quotes.append(OptionQuote(
                strike=strike,
                option_type=kind,
                theoretical_price=result.price,
                greeks=result.greeks,
                volatility=volatility,
            ))

    return quotes

"""Venue fee schedules.

Kalshi charges a variance fee rounded up to the next cent:
    fee = ceil(rate * C * P * (1 - P) * 100) / 100
with rate 0.07 for taker orders and 0.0175 for maker orders.

Polymarket charges a fraction of the potential profit:
    fee = max(0, rate * (C - C * P))
with rate 0.02.

Both costs are linear in the contract count C for a fixed price, apart from
Kalshi's cent rounding. The arbitrage sizing in ``arbmatch.pricing.arb``
relies on that.
"""
import math
from dataclasses import dataclass

from arbmatch.config import Config
from arbmatch.models import VENUE_A, VENUE_B, CostBreakdown

# Absorbs float noise such as 147.00000000000003 before rounding up.
_CENT_ROUNDING_DIGITS = 9


@dataclass(frozen=True)
class FeeSchedule:
    kalshi_taker_rate: float = 0.07
    kalshi_maker_rate: float = 0.0175
    polymarket_rate: float = 0.02
    kalshi_maker: bool = False

    @classmethod
    def from_config(cls, config: Config) -> "FeeSchedule":
        return cls(
            kalshi_taker_rate=config.kalshi_taker_rate,
            kalshi_maker_rate=config.kalshi_maker_rate,
            polymarket_rate=config.polymarket_fee_rate,
            kalshi_maker=config.kalshi_maker,
        )


DEFAULT_FEES = FeeSchedule()


def kalshi_fee(contracts: float, price: float, maker: bool = False, fees: FeeSchedule = DEFAULT_FEES) -> float:
    _check_inputs(contracts, price)
    rate = fees.kalshi_maker_rate if maker else fees.kalshi_taker_rate
    raw_cents = rate * contracts * price * (1 - price) * 100
    return math.ceil(round(raw_cents, _CENT_ROUNDING_DIGITS)) / 100


def polymarket_fee(contracts: float, price: float, fees: FeeSchedule = DEFAULT_FEES) -> float:
    _check_inputs(contracts, price)
    potential_profit = contracts - contracts * price
    return max(0.0, fees.polymarket_rate * potential_profit)


def kalshi_cost(
    contracts: float, price: float, maker: bool = False, fees: FeeSchedule = DEFAULT_FEES
) -> CostBreakdown:
    contract_cost = contracts * price
    fee = kalshi_fee(contracts, price, maker=maker, fees=fees)
    return CostBreakdown(
        contract_cost=contract_cost,
        fee=fee,
        total_cost=contract_cost + fee,
        max_payout=contracts,
    )


def polymarket_cost(contracts: float, price: float, fees: FeeSchedule = DEFAULT_FEES) -> CostBreakdown:
    contract_cost = contracts * price
    fee = polymarket_fee(contracts, price, fees=fees)
    return CostBreakdown(
        contract_cost=contract_cost,
        fee=fee,
        total_cost=contract_cost + fee,
        max_payout=contracts,
    )


def venue_cost(venue: str, contracts: float, price: float, fees: FeeSchedule = DEFAULT_FEES) -> CostBreakdown:
    if venue == VENUE_A:
        return kalshi_cost(contracts, price, maker=fees.kalshi_maker, fees=fees)
    if venue == VENUE_B:
        return polymarket_cost(contracts, price, fees=fees)
    raise ValueError(f"No fee model for venue {venue}")


def _check_inputs(contracts: float, price: float) -> None:
    if contracts < 0:
        raise ValueError(f"contracts must be non-negative (got {contracts})")
    if not 0.0 <= price <= 1.0:
        raise ValueError(f"price must be within [0, 1] (got {price})")

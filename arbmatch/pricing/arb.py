from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

from arbmatch.config import Config
from arbmatch.models import (
    VENUE_A,
    VENUE_B,
    ArbitrageOpportunity,
    ArbSide,
    MarketRecord,
    MatchedPair,
)
from arbmatch.pricing.fees import DEFAULT_FEES, FeeSchedule, venue_cost

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProfitThresholds:
    green: float = 2.0
    orange: float = 0.5

    @classmethod
    def from_config(cls, config: Config) -> "ProfitThresholds":
        return cls(green=config.profit_green_pct, orange=config.profit_orange_pct)


DEFAULT_PROFIT_THRESHOLDS = ProfitThresholds()


def profit_tier(profit_percent: float, thresholds: ProfitThresholds = DEFAULT_PROFIT_THRESHOLDS) -> str:
    if profit_percent >= thresholds.green:
        return "green"
    if profit_percent >= thresholds.orange:
        return "orange"
    return "red"


def evaluate_combination(
    venue1: str,
    outcome1: str,
    price1: float,
    venue2: str,
    outcome2: str,
    price2: float,
    investment: float,
    fees: FeeSchedule = DEFAULT_FEES,
    thresholds: ProfitThresholds = DEFAULT_PROFIT_THRESHOLDS,
) -> Optional[ArbitrageOpportunity]:
    """Buy equal contract counts of opposite outcomes on two venues.

    Equal counts make the payout identical whichever outcome resolves. The
    first sizing ignores fees; if fees push the spend past the budget, the
    count is scaled down once by budget / spend. One step is enough because
    both venue costs are linear in the contract count up to Kalshi's cent
    rounding. A fee formula that is not linear in contracts would need an
    iterative solve here (bisection on the count).
    """
    if investment <= 0:
        raise ValueError(f"investment must be positive (got {investment})")
    price_sum = price1 + price2
    if price_sum <= 0:
        return None

    contracts = investment / price_sum
    cost1 = venue_cost(venue1, contracts, price1, fees)
    cost2 = venue_cost(venue2, contracts, price2, fees)

    spend = cost1.total_cost + cost2.total_cost
    if spend > investment:
        contracts = contracts * (investment / spend)
        cost1 = venue_cost(venue1, contracts, price1, fees)
        cost2 = venue_cost(venue2, contracts, price2, fees)

    total_cost = cost1.total_cost + cost2.total_cost
    guaranteed_payout = cost1.max_payout
    net_profit = guaranteed_payout - total_cost
    if net_profit <= 0:
        return None
    profit_percent = net_profit / total_cost * 100

    return ArbitrageOpportunity(
        side1=ArbSide(venue=venue1, outcome=outcome1, price=price1, contracts=contracts, cost=cost1),
        side2=ArbSide(venue=venue2, outcome=outcome2, price=price2, contracts=contracts, cost=cost2),
        total_cost=total_cost,
        guaranteed_payout=guaranteed_payout,
        net_profit=net_profit,
        profit_percent=profit_percent,
        profit_tier=profit_tier(profit_percent, thresholds),
    )


def compute_arbitrage(
    market_a: MarketRecord,
    market_b: MarketRecord,
    investment: float = 100.0,
    fees: FeeSchedule = DEFAULT_FEES,
    thresholds: ProfitThresholds = DEFAULT_PROFIT_THRESHOLDS,
) -> Optional[ArbitrageOpportunity]:
    if not market_a.has_real_price or not market_b.has_real_price:
        logger.debug(
            "Skipping unpriced pair a=%s b=%s real_a=%s real_b=%s",
            market_a.market_id,
            market_b.market_id,
            market_a.has_real_price,
            market_b.has_real_price,
        )
        return None

    candidates = []
    for outcome_a, outcome_b in (("yes", "no"), ("no", "yes")):
        opportunity = evaluate_combination(
            VENUE_A,
            outcome_a,
            market_a.price(outcome_a),
            VENUE_B,
            outcome_b,
            market_b.price(outcome_b),
            investment,
            fees=fees,
            thresholds=thresholds,
        )
        if opportunity is not None:
            candidates.append(opportunity)

    if not candidates:
        return None
    best = candidates[0]
    for candidate in candidates[1:]:
        if candidate.net_profit > best.net_profit:
            best = candidate
    return replace(best, market_a=market_a, market_b=market_b)


def rank_opportunities(
    pairs: Iterable[MatchedPair],
    investment: float = 100.0,
    fees: FeeSchedule = DEFAULT_FEES,
    thresholds: ProfitThresholds = DEFAULT_PROFIT_THRESHOLDS,
) -> List[ArbitrageOpportunity]:
    opportunities: List[ArbitrageOpportunity] = []
    evaluated = 0
    for pair in pairs:
        evaluated += 1
        opportunity = compute_arbitrage(
            pair.market_a, pair.market_b, investment, fees=fees, thresholds=thresholds
        )
        if opportunity is None:
            continue
        opportunities.append(replace(opportunity, pair=pair))

    opportunities.sort(key=lambda opp: opp.profit_percent, reverse=True)
    logger.info("Arbitrage pairs=%d profitable=%d investment=%.2f", evaluated, len(opportunities), investment)
    return opportunities

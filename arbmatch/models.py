from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

VENUE_A = "kalshi"
VENUE_B = "polymarket"
VENUES = (VENUE_A, VENUE_B)

NEUTRAL_PRICE = 0.5


@dataclass(frozen=True)
class MarketRecord:
    venue: str
    market_id: str
    title: str
    yes_price: float = NEUTRAL_PRICE
    volume_24h: float = 0.0
    status: Optional[str] = None
    has_real_price: bool = True
    close_time: Optional[str] = None
    description: str = ""
    raw_json: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def no_price(self) -> float:
        return 1.0 - self.yes_price

    def price(self, outcome: str) -> float:
        if outcome == "yes":
            return self.yes_price
        if outcome == "no":
            return self.no_price
        raise ValueError(f"Unknown outcome: {outcome}")


@dataclass(frozen=True)
class EntityBag:
    normalized_text: str
    word_set: FrozenSet[str]
    year_set: FrozenSet[str]
    name_set: FrozenSet[str]
    number_set: FrozenSet[str]
    threshold_set: FrozenSet[str]
    topic_set: FrozenSet[str]
    has_negation: bool
    source_text: str = ""


@dataclass(frozen=True)
class MatchDetails:
    matches: List[str] = field(default_factory=list)
    conflicts: List[str] = field(default_factory=list)
    strategy: str = ""
    embedding_similarity: Optional[float] = None
    entity_score: Optional[float] = None
    word_overlap: Optional[float] = None


@dataclass(frozen=True)
class MatchedPair:
    market_a: MarketRecord
    market_b: MarketRecord
    similarity: float
    confidence: str
    details: MatchDetails


@dataclass(frozen=True)
class CostBreakdown:
    contract_cost: float
    fee: float
    total_cost: float
    max_payout: float


@dataclass(frozen=True)
class ArbSide:
    venue: str
    outcome: str
    price: float
    contracts: float
    cost: CostBreakdown


@dataclass(frozen=True)
class ArbitrageOpportunity:
    side1: ArbSide
    side2: ArbSide
    total_cost: float
    guaranteed_payout: float
    net_profit: float
    profit_percent: float
    profit_tier: str
    market_a: Optional[MarketRecord] = None
    market_b: Optional[MarketRecord] = None
    pair: Optional[MatchedPair] = None


def market_to_dict(market: MarketRecord) -> dict:
    return {
        "venue": market.venue,
        "market_id": market.market_id,
        "title": market.title,
        "yes_price": market.yes_price,
        "no_price": market.no_price,
        "volume_24h": market.volume_24h,
        "status": market.status,
        "has_real_price": market.has_real_price,
        "close_time": market.close_time,
        "description": market.description,
    }


def market_from_dict(data: dict) -> MarketRecord:
    return MarketRecord(
        venue=str(data.get("venue") or ""),
        market_id=str(data.get("market_id") or ""),
        title=str(data.get("title") or ""),
        yes_price=float(data.get("yes_price", NEUTRAL_PRICE)),
        volume_24h=float(data.get("volume_24h") or 0.0),
        status=data.get("status"),
        has_real_price=bool(data.get("has_real_price", True)),
        close_time=data.get("close_time"),
        description=str(data.get("description") or ""),
    )


def pair_to_dict(pair: MatchedPair) -> dict:
    return {
        "market_a": market_to_dict(pair.market_a),
        "market_b": market_to_dict(pair.market_b),
        "similarity": round(pair.similarity, 4),
        "confidence": pair.confidence,
        "match_details": asdict(pair.details),
    }


def opportunity_to_dict(opportunity: ArbitrageOpportunity) -> dict:
    payload = {
        "side1": asdict(opportunity.side1),
        "side2": asdict(opportunity.side2),
        "total_cost": round(opportunity.total_cost, 4),
        "guaranteed_payout": round(opportunity.guaranteed_payout, 4),
        "net_profit": round(opportunity.net_profit, 4),
        "profit_percent": round(opportunity.profit_percent, 4),
        "profit_tier": opportunity.profit_tier,
    }
    if opportunity.pair is not None:
        payload["pair"] = pair_to_dict(opportunity.pair)
    elif opportunity.market_a is not None and opportunity.market_b is not None:
        payload["market_a"] = market_to_dict(opportunity.market_a)
        payload["market_b"] = market_to_dict(opportunity.market_b)
    return payload

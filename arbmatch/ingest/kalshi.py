import logging
import time
from typing import Dict, List, Optional, Tuple

from arbmatch.config import Config
from arbmatch.http_client import get_json
from arbmatch.models import NEUTRAL_PRICE, VENUE_A, MarketRecord

logger = logging.getLogger(__name__)


def fetch_kalshi_markets(config: Config, limit: Optional[int] = None) -> List[MarketRecord]:
    limit = config.fetch_limit if limit is None else limit
    markets: List[MarketRecord] = []
    unpriced = 0
    cursor: Optional[str] = None
    page = 0

    while True:
        page += 1
        params: Dict[str, object] = {"limit": config.page_size_kalshi, "status": "open"}
        if cursor:
            params["cursor"] = cursor
        data = get_json(
            f"{config.kalshi_base_url}/markets",
            params=params,
            timeout=config.http_timeout_seconds,
        )
        batch = data.get("markets") if isinstance(data, dict) else None
        if not batch:
            break
        for raw in batch:
            market = parse_kalshi_market(raw)
            if market is None:
                continue
            if not market.has_real_price:
                unpriced += 1
            markets.append(market)
            if limit and len(markets) >= limit:
                break
        logger.info("Kalshi page=%d fetched=%d total=%d", page, len(batch), len(markets))
        if limit and len(markets) >= limit:
            break
        cursor = data.get("cursor")
        if not cursor:
            break
        time.sleep(config.page_delay_seconds)

    if unpriced:
        logger.warning("Kalshi markets without a usable price=%d (defaulted to %.2f)", unpriced, NEUTRAL_PRICE)
    logger.info("Kalshi markets kept total=%d", len(markets))
    return markets


def parse_kalshi_market(raw: object) -> Optional[MarketRecord]:
    if not isinstance(raw, dict):
        return None
    ticker = raw.get("ticker")
    if not ticker:
        return None
    yes_price, has_real_price = _kalshi_yes_price(raw)
    return MarketRecord(
        venue=VENUE_A,
        market_id=str(ticker),
        title=str(raw.get("title") or ticker),
        yes_price=yes_price,
        volume_24h=_to_float(raw.get("volume_24h")) or 0.0,
        status=str(raw.get("status") or "") or None,
        has_real_price=has_real_price,
        close_time=raw.get("close_time"),
        description=str(raw.get("subtitle") or raw.get("rules_primary") or ""),
        raw_json=raw,
    )


def _kalshi_yes_price(raw: Dict[str, object]) -> Tuple[float, bool]:
    # Kalshi quotes in cents; 0 means no trade / no quote, not a 0-cent price.
    last_price = _to_float(raw.get("last_price"))
    if last_price is not None and last_price > 0:
        return _clamp_price(last_price / 100), True
    yes_bid = _to_float(raw.get("yes_bid"))
    yes_ask = _to_float(raw.get("yes_ask"))
    if yes_ask is None or yes_ask <= 0:
        return NEUTRAL_PRICE, False
    return _clamp_price(((yes_bid or 0.0) + yes_ask) / 200), True


def _clamp_price(value: float) -> float:
    return max(0.0, min(1.0, value))


def _to_float(value: object) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

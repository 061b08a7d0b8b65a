import json
import logging
import time
from typing import Dict, List, Optional, Tuple

from arbmatch.config import Config
from arbmatch.http_client import get_json
from arbmatch.models import NEUTRAL_PRICE, VENUE_B, MarketRecord

logger = logging.getLogger(__name__)


def fetch_polymarket_markets(config: Config, limit: Optional[int] = None) -> List[MarketRecord]:
    limit = config.fetch_limit if limit is None else limit
    markets: List[MarketRecord] = []
    unpriced = 0
    offset = 0
    page = 0
    page_size = config.page_size_polymarket

    while True:
        page += 1
        params: Dict[str, object] = {
            "limit": page_size,
            "offset": offset,
            "active": "true",
            "closed": "false",
        }
        batch = get_json(
            f"{config.polymarket_gamma_url}/markets",
            params=params,
            timeout=config.http_timeout_seconds,
        )
        if isinstance(batch, dict):
            batch = batch.get("markets") or batch.get("data") or []
        if not isinstance(batch, list) or not batch:
            break
        for raw in batch:
            market = parse_polymarket_market(raw)
            if market is None:
                continue
            if not market.has_real_price:
                unpriced += 1
            markets.append(market)
            if limit and len(markets) >= limit:
                break
        logger.info("Polymarket page=%d fetched=%d total=%d", page, len(batch), len(markets))
        if limit and len(markets) >= limit:
            break
        if len(batch) < page_size:
            break
        offset += page_size
        time.sleep(config.page_delay_seconds)

    if unpriced:
        logger.warning(
            "Polymarket markets without a usable price=%d (defaulted to %.2f)", unpriced, NEUTRAL_PRICE
        )
    logger.info("Polymarket markets kept total=%d", len(markets))
    return markets


def parse_polymarket_market(raw: object) -> Optional[MarketRecord]:
    if not isinstance(raw, dict):
        return None
    market_id = raw.get("id") or raw.get("conditionId")
    if not market_id:
        return None
    title = raw.get("question") or raw.get("slug") or ""
    if not title:
        return None
    yes_price, has_real_price = _polymarket_yes_price(raw.get("outcomePrices"))
    status = "closed" if raw.get("closed") else "open"
    return MarketRecord(
        venue=VENUE_B,
        market_id=str(market_id),
        title=str(title),
        yes_price=yes_price,
        volume_24h=_to_float(raw.get("volume24hr")) or 0.0,
        status=status,
        has_real_price=has_real_price,
        close_time=raw.get("endDate"),
        description=str(raw.get("description") or ""),
        raw_json=raw,
    )


def _polymarket_yes_price(value: object) -> Tuple[float, bool]:
    prices = value
    if isinstance(prices, str):
        try:
            prices = json.loads(prices)
        except ValueError:
            return NEUTRAL_PRICE, False
    if not isinstance(prices, list) or len(prices) < 2:
        return NEUTRAL_PRICE, False
    yes_price = _to_float(prices[0])
    if yes_price is None or not 0.0 <= yes_price <= 1.0:
        return NEUTRAL_PRICE, False
    return yes_price, True


def _to_float(value: object) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

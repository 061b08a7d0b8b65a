from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from arbmatch.config import Config
from arbmatch.embeddings import EmbeddingUnavailableError
from arbmatch.ingest.kalshi import fetch_kalshi_markets
from arbmatch.ingest.polymarket import fetch_polymarket_markets
from arbmatch.match.matcher import embedding_key, find_matches, match_from_index, sort_and_limit
from arbmatch.match.scoring import build_chain
from arbmatch.models import (
    VENUE_A,
    VENUE_B,
    VENUES,
    ArbitrageOpportunity,
    MarketRecord,
    MatchedPair,
    market_from_dict,
    market_to_dict,
)
from arbmatch.pricing.arb import ProfitThresholds, rank_opportunities
from arbmatch.pricing.fees import FeeSchedule
from arbmatch.storage import IndexGuard, VectorIndex, read_index_snapshot, replace_index

logger = logging.getLogger(__name__)

VenueMarkets = Tuple[List[MarketRecord], List[MarketRecord]]


def fetch_markets(venue: str, config: Config, limit: Optional[int] = None) -> List[MarketRecord]:
    if venue == VENUE_A:
        return fetch_kalshi_markets(config, limit=limit)
    if venue == VENUE_B:
        return fetch_polymarket_markets(config, limit=limit)
    raise ValueError(f"Unknown venue {venue}; expected one of {', '.join(VENUES)}")


async def _fetch_both_async(config: Config) -> VenueMarkets:
    kalshi, polymarket = await asyncio.gather(
        asyncio.to_thread(fetch_markets, VENUE_A, config),
        asyncio.to_thread(fetch_markets, VENUE_B, config),
    )
    return kalshi, polymarket


def fetch_both(config: Config) -> VenueMarkets:
    """Fetch both venues concurrently; the first failure propagates."""
    started = time.monotonic()
    kalshi, polymarket = asyncio.run(_fetch_both_async(config))
    logger.info(
        "Fetched markets kalshi=%d polymarket=%d seconds=%.1f",
        len(kalshi),
        len(polymarket),
        time.monotonic() - started,
    )
    return kalshi, polymarket


def top_by_volume(markets: Sequence[MarketRecord], limit: int) -> List[MarketRecord]:
    ordered = sorted(markets, key=lambda market: market.volume_24h, reverse=True)
    if limit > 0:
        return ordered[:limit]
    return ordered


@dataclass
class RefreshResult:
    indexed: Dict[str, int] = field(default_factory=dict)
    failed_batches: int = 0
    duration_seconds: float = 0.0


def refresh_index(config: Config, embedder, fetch: Callable[[Config], VenueMarkets] = fetch_both) -> RefreshResult:
    """Rebuild the vector index from a fresh fetch of both venues.

    Fetching and embedding both finish before the index is touched, and the
    swap itself is one transaction, so a venue failure or a model failure
    leaves the previous index in place. Embedding failures for a single batch
    are logged and counted; a missing embedding model aborts the refresh.
    """
    started = time.monotonic()
    kalshi, polymarket = fetch(config)
    by_venue = {
        VENUE_A: top_by_volume(kalshi, config.index_limit),
        VENUE_B: top_by_volume(polymarket, config.index_limit),
    }
    if not embedder.available():
        raise EmbeddingUnavailableError("Embedding model is not available; cannot rebuild the index")

    result = RefreshResult()
    items_by_venue: Dict[str, List[dict]] = {}
    batch_size = config.embedding_batch_size
    for venue, markets in by_venue.items():
        items: List[dict] = []
        for start in range(0, len(markets), batch_size):
            batch = markets[start : start + batch_size]
            try:
                vectors = embedder.embed([market.title for market in batch])
            except EmbeddingUnavailableError:
                raise
            except Exception as exc:
                result.failed_batches += 1
                logger.warning(
                    "Embedding batch failed venue=%s start=%d size=%d error=%s", venue, start, len(batch), exc
                )
                continue
            items.extend(
                {"id": market.market_id, "vector": vector, "metadata": market_to_dict(market)}
                for market, vector in zip(batch, vectors)
            )
            logger.info("Embedded batch venue=%s start=%d size=%d", venue, start, len(batch))
        items_by_venue[venue] = items

    guard = IndexGuard(config.db_path, config.index_lock_ttl_seconds)
    with guard.indexing():
        result.indexed = replace_index(config.db_path, items_by_venue)

    result.duration_seconds = time.monotonic() - started
    logger.info(
        "Index refresh done kalshi=%d polymarket=%d failed_batches=%d seconds=%.1f",
        result.indexed.get(VENUE_A, 0),
        result.indexed.get(VENUE_B, 0),
        result.failed_batches,
        result.duration_seconds,
    )
    return result


@dataclass
class ScanResult:
    pairs: List[MatchedPair]
    opportunities: List[ArbitrageOpportunity]
    strategies: List[str]
    venue_counts: Dict[str, int]


def scan(
    config: Config,
    mode: str = "auto",
    min_similarity: Optional[float] = None,
    investment: Optional[float] = None,
    limit: Optional[int] = None,
    embedder=None,
    fetch: Callable[[Config], VenueMarkets] = fetch_both,
) -> ScanResult:
    """Live fetch, match, price and rank.

    Embeddings are used when an embedder is given and ``mode`` allows them.
    If embedding fails the scan falls back to lexical scoring.
    """
    kalshi, polymarket = fetch(config)
    kalshi = top_by_volume(kalshi, config.live_limit)
    polymarket = top_by_volume(polymarket, config.live_limit)

    embeddings = {}
    if embedder is not None and mode in ("auto", "hybrid"):
        embeddings = _embed_markets(embedder, kalshi + polymarket)
    chain = build_chain(bool(embeddings), mode)

    if min_similarity is None:
        min_similarity = _default_min_similarity(config, chain.names[0])
    pairs = find_matches(kalshi, polymarket, min_similarity, chain=chain, embeddings=embeddings)
    max_results = config.max_results if limit is None else limit
    pairs = sort_and_limit(pairs, max_results)

    opportunities = rank_opportunities(
        pairs,
        investment=config.investment if investment is None else investment,
        fees=FeeSchedule.from_config(config),
        thresholds=ProfitThresholds.from_config(config),
    )
    return ScanResult(
        pairs=pairs,
        opportunities=opportunities,
        strategies=chain.names,
        venue_counts={VENUE_A: len(kalshi), VENUE_B: len(polymarket)},
    )


def _embed_markets(embedder, markets: Sequence[MarketRecord]) -> dict:
    if not embedder.available():
        logger.warning("Embedding model not installed; falling back to lexical matching")
        return {}
    try:
        vectors = embedder.embed([market.title for market in markets])
    except Exception as exc:
        logger.warning("Embedding failed (%s); falling back to lexical matching", exc)
        return {}
    return {embedding_key(market): vector for market, vector in zip(markets, vectors)}


def _default_min_similarity(config: Config, strategy: str) -> float:
    if strategy == "hybrid":
        return config.min_similarity_hybrid
    if strategy == "keyword":
        return config.min_similarity_keyword
    return config.min_similarity_lexical


def index_matches(
    config: Config,
    min_similarity: Optional[float] = None,
    limit: Optional[int] = None,
) -> List[MatchedPair]:
    snapshot = read_index_snapshot(config.db_path, (VENUE_A, VENUE_B), config.index_lock_ttl_seconds)
    pairs = match_from_index(
        snapshot[VENUE_A],
        snapshot[VENUE_B],
        config.min_similarity_index if min_similarity is None else min_similarity,
        k=config.index_query_k,
    )
    return sort_and_limit(pairs, config.max_results if limit is None else limit)


def search_similar(
    config: Config,
    embedder,
    query: str,
    venue: Optional[str] = None,
    limit: int = 10,
) -> List[dict]:
    IndexGuard(config.db_path, config.index_lock_ttl_seconds).ensure_available()
    if venue is not None and venue not in VENUES:
        raise ValueError(f"Unknown venue {venue}; expected one of {', '.join(VENUES)}")
    vector = embedder.embed([query])[0]
    results = []
    for name in (venue,) if venue else VENUES:
        for item in VectorIndex(config.db_path, name).query(vector, limit):
            results.append(
                {
                    "venue": name,
                    "score": round(float(item["score"]), 4),
                    "market": market_to_dict(market_from_dict(item["metadata"])),
                }
            )
    results.sort(key=lambda row: row["score"], reverse=True)
    logger.info("Search query=%r venue=%s results=%d", query, venue or "all", len(results[:limit]))
    return results[:limit]

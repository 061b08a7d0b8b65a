"""Greedy one-to-one matching of venue-A markets onto venue-B markets.

Venue-A markets are visited in the order given. Each one takes the highest
scoring venue-B market that no earlier venue-A market has claimed (ties keep
the first venue-B market seen). A claimed market is never reassigned, so an
early claim can block a better later pairing; there is no augmenting-path
step. Output is therefore order dependent but deterministic for a fixed input
order.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np

from arbmatch.match.entities import extract_entities
from arbmatch.match.scoring import ScoreResult, ScoringChain, Vector, build_chain, compare_entities
from arbmatch.models import EntityBag, MarketRecord, MatchDetails, MatchedPair, market_from_dict

logger = logging.getLogger(__name__)

EmbeddingKey = Tuple[str, str]


@dataclass(frozen=True)
class ConfidenceTiers:
    high: float
    medium: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.medium <= self.high <= 1.0:
            raise ValueError(
                f"Confidence tiers must satisfy 0 <= medium <= high <= 1 (got medium={self.medium}, high={self.high})"
            )

    def classify(self, score: float) -> str:
        if score >= self.high:
            return "high"
        if score >= self.medium:
            return "medium"
        return "low"


# Cut lines per scoring strategy; hybrid and index scores run higher.
DEFAULT_TIERS: Dict[str, ConfidenceTiers] = {
    "lexical": ConfidenceTiers(high=0.7, medium=0.5),
    "hybrid": ConfidenceTiers(high=0.8, medium=0.65),
    "keyword": ConfidenceTiers(high=0.6, medium=0.4),
    "index": ConfidenceTiers(high=0.8, medium=0.65),
}


class EntityCache:
    """Entity bags for one matching pass, keyed by title."""

    def __init__(self) -> None:
        self._bags: Dict[str, EntityBag] = {}

    def get(self, title: str) -> EntityBag:
        bag = self._bags.get(title)
        if bag is None:
            bag = extract_entities(title)
            self._bags[title] = bag
        return bag

    def __len__(self) -> int:
        return len(self._bags)


def embedding_key(market: MarketRecord) -> EmbeddingKey:
    return (market.venue, market.market_id)


def find_matches(
    markets_a: Sequence[MarketRecord],
    markets_b: Sequence[MarketRecord],
    min_similarity: float,
    *,
    chain: Optional[ScoringChain] = None,
    embeddings: Optional[Mapping[EmbeddingKey, Vector]] = None,
    tiers: Optional[Mapping[str, ConfidenceTiers]] = None,
) -> List[MatchedPair]:
    """Match ``markets_a`` onto ``markets_b`` one to one.

    The chain picks a strategy per pair, so when some embeddings are missing
    the argmax for one venue-A market can compare a hybrid score against a
    lexical or keyword score. Those scales are not calibrated against each
    other, and ``min_similarity`` is normally the cut line of the chain's
    first strategy. A fallback score can therefore win or clear the cut where
    the same pair scored by the first strategy would not.
    """
    embeddings = embeddings or {}
    chain = chain or build_chain(bool(embeddings))
    tier_map = _merge_tiers(tiers)
    cache = EntityCache()
    claimed_a: Set[str] = set()
    claimed_b: Set[str] = set()
    pairs: List[MatchedPair] = []
    comparisons = 0
    discarded = 0

    for market_a in markets_a:
        if market_a.market_id in claimed_a:
            continue
        bag_a = cache.get(market_a.title)
        emb_a = embeddings.get(embedding_key(market_a))
        best_market: Optional[MarketRecord] = None
        best_result: Optional[ScoreResult] = None

        for market_b in markets_b:
            if market_b.market_id in claimed_b:
                continue
            comparisons += 1
            result = chain.score(
                bag_a,
                cache.get(market_b.title),
                emb_a,
                embeddings.get(embedding_key(market_b)),
            )
            if result.discarded:
                discarded += 1
                continue
            if best_result is None or result.score > best_result.score:
                best_market = market_b
                best_result = result

        if best_market is None or best_result is None or best_result.score < min_similarity:
            continue

        claimed_a.add(market_a.market_id)
        claimed_b.add(best_market.market_id)
        tier = tier_map.get(best_result.strategy, DEFAULT_TIERS["lexical"])
        pairs.append(
            MatchedPair(
                market_a=market_a,
                market_b=best_market,
                similarity=best_result.score,
                confidence=tier.classify(best_result.score),
                details=_details(best_result),
            )
        )
        logger.debug(
            "MATCH a=%s b=%s score=%.4f strategy=%s",
            market_a.market_id,
            best_market.market_id,
            best_result.score,
            best_result.strategy,
        )

    logger.info(
        "Matching done: venue_a=%d venue_b=%d comparisons=%d discarded=%d matched=%d strategies=%s titles=%d",
        len(markets_a),
        len(markets_b),
        comparisons,
        discarded,
        len(pairs),
        chain.names,
        len(cache),
    )
    return pairs


def match_from_index(
    items_a: Sequence[dict],
    items_b: Sequence[dict],
    min_similarity: float,
    k: int = 5,
    tiers: Optional[Mapping[str, ConfidenceTiers]] = None,
) -> List[MatchedPair]:
    """Greedy matching over stored ``{"id", "vector", "metadata"}`` items.

    Venue-B vectors are normalised into one matrix up front. Each venue-A item
    ranks them by cosine similarity in memory and claims the best of its top
    ``k`` that is not yet taken.
    """
    if k <= 0 or not items_a or not items_b:
        logger.info("Index matching done: venue_a=%d matched=0", len(items_a))
        return []
    matrix_a = _unit_rows(items_a)
    matrix_b = _unit_rows(items_b)
    if matrix_a.shape[1] != matrix_b.shape[1]:
        raise ValueError(
            f"Index vectors differ in dimension: venue_a={matrix_a.shape[1]} venue_b={matrix_b.shape[1]}"
        )

    tier = _merge_tiers(tiers)["index"]
    cache = EntityCache()
    claimed_b: Set[str] = set()
    pairs: List[MatchedPair] = []

    for row, item in enumerate(items_a):
        scores = matrix_b @ matrix_a[row]
        # Stable sort so ties keep venue-B insertion order.
        for col in np.argsort(-scores, kind="stable")[:k]:
            score = float(scores[col])
            if score < min_similarity:
                break
            candidate = items_b[col]
            if candidate["id"] in claimed_b:
                continue
            claimed_b.add(candidate["id"])
            market_a = market_from_dict(item["metadata"])
            market_b = market_from_dict(candidate["metadata"])
            comparison = compare_entities(cache.get(market_a.title), cache.get(market_b.title))
            pairs.append(
                MatchedPair(
                    market_a=market_a,
                    market_b=market_b,
                    similarity=score,
                    confidence=tier.classify(score),
                    details=MatchDetails(
                        matches=comparison.matches,
                        conflicts=comparison.conflicts,
                        strategy="index",
                        embedding_similarity=score,
                        entity_score=comparison.score,
                        word_overlap=comparison.word_overlap,
                    ),
                )
            )
            break

    logger.info("Index matching done: venue_a=%d matched=%d", len(items_a), len(pairs))
    return pairs


def _unit_rows(items: Sequence[dict]) -> np.ndarray:
    matrix = np.asarray([item["vector"] for item in items], dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    # Zero vectors stay zero and score 0 against everything.
    return np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)

def sort_and_limit(pairs: Iterable[MatchedPair], max_results: int = 0) -> List[MatchedPair]:
    ordered = sorted(pairs, key=lambda pair: pair.similarity, reverse=True)
    if max_results > 0:
        return ordered[:max_results]
    return ordered


def _merge_tiers(tiers: Optional[Mapping[str, ConfidenceTiers]]) -> Dict[str, ConfidenceTiers]:
    merged = dict(DEFAULT_TIERS)
    if tiers:
        merged.update(tiers)
    return merged


def _details(result: ScoreResult) -> MatchDetails:
    return MatchDetails(
        matches=list(result.matches),
        conflicts=list(result.conflicts),
        strategy=result.strategy,
        embedding_similarity=result.embedding_similarity,
        entity_score=result.entity_score,
        word_overlap=result.word_overlap,
    )

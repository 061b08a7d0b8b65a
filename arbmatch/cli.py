import argparse
import json
import logging
from typing import List, Optional

import yaml

from arbmatch.config import Config, load_config
from arbmatch.embeddings import EmbeddingUnavailableError, SentenceEmbedder
from arbmatch.http_client import VenueFetchError
from arbmatch.match.scoring import SCORING_MODES
from arbmatch.models import VENUE_A, VENUE_B, VENUES, MarketRecord, opportunity_to_dict, pair_to_dict
from arbmatch.pipeline import index_matches, refresh_index, scan, search_similar
from arbmatch.pricing.arb import ProfitThresholds, compute_arbitrage
from arbmatch.pricing.fees import FeeSchedule
from arbmatch.storage import IndexBusyError, get_index_stats

logger = logging.getLogger(__name__)

EXIT_ERROR = 1
EXIT_INDEX_BUSY = 2


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        if args.cmd == "refresh":
            return _run_refresh(config)
        if args.cmd == "matches":
            return _run_matches(config, args)
        if args.cmd == "search":
            return _run_search(config, args)
        if args.cmd == "scan":
            return _run_scan(config, args)
        if args.cmd == "arb":
            return _run_arb(config, args)
        if args.cmd == "stats":
            return _run_stats(config)
    except IndexBusyError as exc:
        logger.error("Index unavailable: %s", exc)
        return EXIT_INDEX_BUSY
    except VenueFetchError as exc:
        logger.error("Venue fetch failed: %s", exc)
        return EXIT_ERROR
    except EmbeddingUnavailableError as exc:
        logger.error("Embeddings unavailable: %s", exc)
        return EXIT_ERROR
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        return EXIT_ERROR
    return EXIT_ERROR


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="arbmatch")
    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("refresh", help="Fetch both venues and rebuild the vector index")

    matches_parser = sub.add_parser("matches", help="Match markets using the vector index")
    matches_parser.add_argument("--min-similarity", type=float, default=None)
    matches_parser.add_argument("--limit", type=int, default=None)

    search_parser = sub.add_parser("search", help="Find indexed markets similar to a query")
    search_parser.add_argument("query")
    search_parser.add_argument("--venue", choices=VENUES, default=None)
    search_parser.add_argument("--limit", type=int, default=10)

    scan_parser = sub.add_parser("scan", help="Fetch live markets, match them and rank arbitrage")
    scan_parser.add_argument("--mode", choices=SCORING_MODES, default="auto")
    scan_parser.add_argument("--min-similarity", type=float, default=None)
    scan_parser.add_argument("--investment", type=float, default=None)
    scan_parser.add_argument("--limit", type=int, default=None)
    scan_parser.add_argument("--out", default=None, help="Write results to a .json or .yml file")

    arb_parser = sub.add_parser("arb", help="Price one Kalshi/Polymarket pair")
    arb_parser.add_argument("--kalshi-yes", type=float, required=True, help="Kalshi yes price in [0, 1]")
    arb_parser.add_argument("--polymarket-yes", type=float, required=True, help="Polymarket yes price in [0, 1]")
    arb_parser.add_argument("--investment", type=float, default=None)

    sub.add_parser("stats", help="Show vector index statistics")
    return parser


def _run_refresh(config: Config) -> int:
    embedder = SentenceEmbedder(config.embedding_model, config.embedding_batch_size)
    result = refresh_index(config, embedder)
    _emit(
        {
            "indexed": result.indexed,
            "failed_batches": result.failed_batches,
            "duration_seconds": round(result.duration_seconds, 2),
        }
    )
    return 0


def _run_matches(config: Config, args: argparse.Namespace) -> int:
    pairs = index_matches(config, min_similarity=args.min_similarity, limit=args.limit)
    logger.info("Index matches: %d", len(pairs))
    _emit({"count": len(pairs), "matches": [pair_to_dict(pair) for pair in pairs]})
    return 0


def _run_search(config: Config, args: argparse.Namespace) -> int:
    embedder = SentenceEmbedder(config.embedding_model, config.embedding_batch_size)
    results = search_similar(config, embedder, args.query, venue=args.venue, limit=args.limit)
    _emit({"query": args.query, "results": results})
    return 0


def _run_scan(config: Config, args: argparse.Namespace) -> int:
    embedder = None
    if args.mode in ("auto", "hybrid"):
        embedder = SentenceEmbedder(config.embedding_model, config.embedding_batch_size)
    result = scan(
        config,
        mode=args.mode,
        min_similarity=args.min_similarity,
        investment=args.investment,
        limit=args.limit,
        embedder=embedder,
    )
    payload = {
        "strategies": result.strategies,
        "markets": result.venue_counts,
        "match_count": len(result.pairs),
        "opportunity_count": len(result.opportunities),
        "opportunities": [opportunity_to_dict(opp) for opp in result.opportunities],
        "matches": [pair_to_dict(pair) for pair in result.pairs],
    }
    _emit(payload, args.out)
    return 0


def _run_arb(config: Config, args: argparse.Namespace) -> int:
    market_a = MarketRecord(venue=VENUE_A, market_id="cli-kalshi", title="", yes_price=args.kalshi_yes)
    market_b = MarketRecord(venue=VENUE_B, market_id="cli-polymarket", title="", yes_price=args.polymarket_yes)
    opportunity = compute_arbitrage(
        market_a,
        market_b,
        investment=config.investment if args.investment is None else args.investment,
        fees=FeeSchedule.from_config(config),
        thresholds=ProfitThresholds.from_config(config),
    )
    if opportunity is None:
        print("No profitable arbitrage after fees")
        return 0
    payload = opportunity_to_dict(opportunity)
    payload.pop("market_a", None)
    payload.pop("market_b", None)
    _emit(payload)
    return 0


def _run_stats(config: Config) -> int:
    _emit(get_index_stats(config.db_path, config.index_lock_ttl_seconds))
    return 0


def _emit(payload: dict, out_path: Optional[str] = None) -> None:
    if not out_path:
        print(json.dumps(payload, indent=2))
        return
    with open(out_path, "w", encoding="utf-8") as handle:
        if out_path.endswith((".yml", ".yaml")):
            yaml.safe_dump(payload, handle, sort_keys=False)
        else:
            json.dump(payload, handle, indent=2)
    logger.info("Wrote results to %s", out_path)

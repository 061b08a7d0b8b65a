import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Config:
    # Core
    db_path: str = "arbmatch.db"
    log_level: str = "INFO"
    http_timeout_seconds: float = 20.0

    # Venue fetch
    kalshi_base_url: str = "https://api.elections.kalshi.com/trade-api/v2"
    polymarket_gamma_url: str = "https://gamma-api.polymarket.com"
    page_size_kalshi: int = 200
    page_size_polymarket: int = 100
    page_delay_seconds: float = 0.1
    fetch_limit: int = 0
    live_limit: int = 150

    # Embeddings / vector index
    index_limit: int = 5000
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_batch_size: int = 32
    index_query_k: int = 5
    index_lock_ttl_seconds: float = 3600.0

    # Matching
    min_similarity_lexical: float = 0.4
    min_similarity_hybrid: float = 0.55
    min_similarity_keyword: float = 0.35
    min_similarity_index: float = 0.75
    max_results: int = 100

    # Fees
    kalshi_taker_rate: float = 0.07
    kalshi_maker_rate: float = 0.0175
    polymarket_fee_rate: float = 0.02
    kalshi_maker: bool = False

    # Arbitrage
    investment: float = 100.0
    profit_green_pct: float = 2.0
    profit_orange_pct: float = 0.5


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid int for {name}: {raw}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid float for {name}: {raw}") from exc


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw


def load_config() -> Config:
    load_dotenv()
    defaults = Config()
    return Config(
        db_path=_env_str("ARBMATCH_DB_PATH", defaults.db_path),
        log_level=_env_str("ARBMATCH_LOG_LEVEL", defaults.log_level).upper(),
        http_timeout_seconds=_env_float("ARBMATCH_HTTP_TIMEOUT", defaults.http_timeout_seconds),
        kalshi_base_url=_env_str("KALSHI_BASE_URL", defaults.kalshi_base_url),
        polymarket_gamma_url=_env_str("POLYMARKET_GAMMA_URL", defaults.polymarket_gamma_url),
        page_size_kalshi=_env_int("ARBMATCH_KALSHI_PAGE_SIZE", defaults.page_size_kalshi),
        page_size_polymarket=_env_int("ARBMATCH_POLY_PAGE_SIZE", defaults.page_size_polymarket),
        page_delay_seconds=_env_float("ARBMATCH_PAGE_DELAY", defaults.page_delay_seconds),
        fetch_limit=_env_int("ARBMATCH_FETCH_LIMIT", defaults.fetch_limit),
        live_limit=_env_int("ARBMATCH_LIVE_LIMIT", defaults.live_limit),
        index_limit=_env_int("ARBMATCH_INDEX_LIMIT", defaults.index_limit),
        embedding_model=_env_str("ARBMATCH_EMBEDDING_MODEL", defaults.embedding_model),
        embedding_batch_size=_env_int("ARBMATCH_EMBEDDING_BATCH", defaults.embedding_batch_size),
        index_query_k=_env_int("ARBMATCH_INDEX_QUERY_K", defaults.index_query_k),
        index_lock_ttl_seconds=_env_float("ARBMATCH_INDEX_LOCK_TTL", defaults.index_lock_ttl_seconds),
        min_similarity_lexical=_env_float("ARBMATCH_MIN_SIM_LEXICAL", defaults.min_similarity_lexical),
        min_similarity_hybrid=_env_float("ARBMATCH_MIN_SIM_HYBRID", defaults.min_similarity_hybrid),
        min_similarity_keyword=_env_float("ARBMATCH_MIN_SIM_KEYWORD", defaults.min_similarity_keyword),
        min_similarity_index=_env_float("ARBMATCH_MIN_SIM_INDEX", defaults.min_similarity_index),
        max_results=_env_int("ARBMATCH_MAX_RESULTS", defaults.max_results),
        kalshi_taker_rate=_env_float("ARBMATCH_KALSHI_TAKER_RATE", defaults.kalshi_taker_rate),
        kalshi_maker_rate=_env_float("ARBMATCH_KALSHI_MAKER_RATE", defaults.kalshi_maker_rate),
        polymarket_fee_rate=_env_float("ARBMATCH_POLY_FEE_RATE", defaults.polymarket_fee_rate),
        kalshi_maker=_env_bool("ARBMATCH_KALSHI_MAKER", defaults.kalshi_maker),
        investment=_env_float("ARBMATCH_INVESTMENT", defaults.investment),
        profit_green_pct=_env_float("ARBMATCH_PROFIT_GREEN", defaults.profit_green_pct),
        profit_orange_pct=_env_float("ARBMATCH_PROFIT_ORANGE", defaults.profit_orange_pct),
    )

"""Default configuration parameters for the options flow pipeline."""

from dataclasses import dataclass, field
from decimal import Decimal

MAG7_TICKERS = ("AAPL", "MSFT", "GOOGL", "AMZN", "NVDA", "TSLA", "META")
TRACKED_TICKERS = MAG7_TICKERS + ("SPY", "QQQ")


@dataclass(frozen=True)
class IngestParams:
    """Normalizer and producer parameters."""
    source_push: str = "push"                 # Provenance tag for push-feed trades
    source_pull: str = "backfill"             # Provenance tag for pull-feed trades
    contract_prefix: str = "O"                # Prefix tag of option contract identifiers
    dedupe_cross_feed: bool = False           # Skip trades whose fingerprint was already ingested


@dataclass(frozen=True)
class SignificanceParams:
    """Smart-money classification gates."""
    min_premium: Decimal = Decimal("50000")   # Premium floor, inclusive
    max_dte: int = 30                         # Max days to expiry, inclusive


@dataclass(frozen=True)
class AggregationParams:
    """Minute bucket aggregation parameters."""
    retention_days: int = 30                  # Buckets older than this are swept
    default_window_hours: int = 24
    default_bucket_minutes: int = 60


@dataclass(frozen=True)
class ConcentrationParams:
    """Strike concentration grading parameters."""
    default_lookback_hours: int = 24
    default_min_hits: int = 2
    grade_a_plus_hits: int = 10
    grade_a_hits: int = 7
    grade_b_hits: int = 5
    grade_c_hits: int = 3
    grade_d_hits: int = 2


@dataclass(frozen=True)
class SentimentParams:
    """Heatmap sentiment tiers and flow pattern detection."""
    very_threshold: Decimal = Decimal("1000000")   # |net flow| for VERY_ tiers
    flip_min_swing: Decimal = Decimal("500000")    # Net change required for a flip
    flip_min_trades: int = 5                       # Trades needed in each flip window
    unusual_multiple: float = 2.0                  # Recent count vs hourly average
    unusual_min_count: int = 10                    # Minimum recent trades to flag


@dataclass(frozen=True)
class BackfillParams:
    """Pull-feed backfill parameters."""
    enabled: bool = True
    tracked_tickers: tuple[str, ...] = field(default=TRACKED_TICKERS)
    base_url: str = "https://delayed.polygon.io"          # Trades host
    reference_base_url: str = "https://api.polygon.io"    # Contract listing host
    api_key_env: str = "POLYGON_API_KEY"
    publication_delay_minutes: int = 15       # Provider publishes trades with this delay
    window_minutes: int = 120                 # Length of each backfill window
    max_pages: int = 5                        # Page cap per contract per run
    contracts_per_ticker: int = 40            # Contracts fetched per underlying
    contract_max_dte: int = 14                # Only list contracts expiring within this many days
    page_limit: int = 50000                   # Results requested per page
    ticker_delay_seconds: float = 0.5         # Pause between tickers
    page_delay_seconds: float = 0.1           # Pause between pages
    contract_delay_seconds: float = 0.15      # Pause between contracts
    history_chunk_hours: int = 24             # Chunk length for historical loads
    history_chunk_delay_seconds: float = 1.0  # Pause between historical chunks
    read_timeout_seconds: float = 45.0        # Per-page read timeout


@dataclass(frozen=True)
class PipelineConfig:
    """Complete pipeline configuration."""
    ingest: IngestParams
    significance: SignificanceParams
    aggregation: AggregationParams
    concentration: ConcentrationParams
    sentiment: SentimentParams
    backfill: BackfillParams


def get_default_config() -> PipelineConfig:
    """Get the default configuration instance."""
    return PipelineConfig(
        ingest=IngestParams(),
        significance=SignificanceParams(),
        aggregation=AggregationParams(),
        concentration=ConcentrationParams(),
        sentiment=SentimentParams(),
        backfill=BackfillParams(),
    )

"""
Main ingestion pipeline coordinator.

Orchestrates the options flow pipeline: both producers (push-feed frames and
pull-feed backfill runs) feed the same normalize, classify, persist and
aggregate path, and the query facade reads the derived aggregates.
"""

import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional, Sequence, Union

import structlog

from .aggregation import BucketAggregator, BucketSnapshot, TimelinePoint
from .backfill.client import PullFeedClient
from .backfill.coordinator import BackfillCoordinator
from .config.loader import ConfigLoader
from .data.models import BatchIngestReport, IngestResult, Trade
from .data.normalizer import PayloadNormalizer, RawPayload
from .errors import DataQualityError, PersistenceError, RejectedInputError
from .feeds.push import PushFeedHandler, PushFrameReport
from .logging.config import get_ingest_logger, log_classification
from .metrics.concentration import StrikeConcentration, StrikeConcentrationEngine
from .metrics.sentiment import (
    HeatmapEntry,
    SentimentFlip,
    UnusualVolume,
    build_heatmap_entry,
    detect_sentiment_flip,
    detect_unusual_volume,
)
from .metrics.significance import SignificanceClassifier
from .persistence.trade_store import FlowSummary, StoredTrade, TradeStore
from .state.models import BackfillRunReport
from .utils.time import ensure_utc, hours_ago, utc_now

logger = structlog.get_logger(__name__)
ingest_logger = get_ingest_logger(__name__)

REBUILD_LOG_INTERVAL = 1000


class FlowPipeline:
    """
    Main coordinator for the options flow ingestion pipeline.

    Manages the ingestion pipeline:
    Raw payload → Normalization → Classification → Persistence → Aggregation
    """

    def __init__(
        self,
        config_dir: Optional[str] = None,
        overrides: Optional[dict[str, Any]] = None,
        db_path: str = "flow.db",
        store: Optional[TradeStore] = None,
        aggregator: Optional[BucketAggregator] = None,
        backfill_client: Optional[PullFeedClient] = None,
        api_key: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize the pipeline.

        Raises:
            ConfigurationError: Merged configuration failed validation
        """
        self.logger = logger
        self.ingest_logger = ingest_logger

        self.config_loader = ConfigLoader.create(config_dir)
        self.config = self.config_loader.load_pipeline_config(overrides)

        self.normalizer = PayloadNormalizer(self.config.ingest.contract_prefix)
        self.classifier = SignificanceClassifier(self.config.significance)
        self.concentration = StrikeConcentrationEngine(self.config.concentration)
        self.aggregator = aggregator or BucketAggregator()
        self.store = store or TradeStore(db_path)

        self.backfill = BackfillCoordinator(
            self,
            params=self.config.backfill,
            ingest_params=self.config.ingest,
            client=backfill_client,
            api_key=api_key,
            sleep=sleep,
        )
        self.push_handler = PushFeedHandler(self, self.config.ingest)

        # Serializes the fingerprint check and insert when cross-feed dedupe is on
        self._dedupe_lock = threading.Lock()

        self.logger.info(
            "Flow pipeline initialized",
            dedupe_cross_feed=self.config.ingest.dedupe_cross_feed,
            tracked_tickers=len(self.config.backfill.tracked_tickers)
        )

    def ingest(self, payload: RawPayload, source: Optional[str] = None) -> IngestResult:
        """
        Ingest one raw payload from either feed.

        Never raises: rejected and failed payloads come back as error results.
        """
        source = source or self.config.ingest.source_push

        try:
            trade = self.normalizer.normalize(payload, source)
        except RejectedInputError as e:
            self.ingest_logger.warning(
                "Rejected trade payload - no identifier",
                source=source,
                available_fields=e.available_fields
            )
            return IngestResult.error(str(e))
        except DataQualityError as e:
            self.ingest_logger.warning(
                "Malformed trade payload",
                source=source,
                error=str(e),
                error_type=type(e).__name__
            )
            return IngestResult.error(str(e))
        except Exception as e:
            self.ingest_logger.error(
                "Unexpected error normalizing trade",
                source=source,
                error=str(e),
                error_type=type(e).__name__
            )
            return IngestResult.error(f"Unexpected error: {e}")

        try:
            return self._process_trade(trade)
        except PersistenceError as e:
            self.ingest_logger.error(
                "Trade persistence failed",
                contract_symbol=trade.contract_symbol,
                source=source,
                error=str(e)
            )
            return IngestResult.error(str(e))
        except Exception as e:
            self.ingest_logger.error(
                "Unexpected error ingesting trade",
                contract_symbol=trade.contract_symbol,
                source=source,
                error=str(e),
                error_type=type(e).__name__
            )
            return IngestResult.error(f"Unexpected error: {e}")

    def _process_trade(self, trade: Trade) -> IngestResult:
        """Classify, persist and aggregate a normalized trade."""
        classified = self.classifier.classify(trade)

        if self.config.ingest.dedupe_cross_feed:
            with self._dedupe_lock:
                if self.store.has_fingerprint(trade.fingerprint):
                    self.ingest_logger.debug(
                        "Duplicate trade skipped",
                        contract_symbol=trade.contract_symbol,
                        source=trade.source,
                        fingerprint=trade.fingerprint
                    )
                    return IngestResult.skipped("duplicate", trade)
                stored_id = self.store.store_trade(classified)
        else:
            stored_id = self.store.store_trade(classified)

        aggregated = self.aggregator.record(trade)
        log_classification(
            self.ingest_logger,
            trade,
            classified.significant,
            classified.reason,
            dte=classified.dte
        )

        return IngestResult.success_with_trade(
            trade,
            significant=classified.significant,
            aggregated=aggregated,
            stored_id=stored_id
        )

    def ingest_many(self, payloads: Iterable[RawPayload],
                    source: Optional[str] = None) -> BatchIngestReport:
        """Ingest a batch; a failed item never aborts the rest."""
        results = tuple(self.ingest(payload, source) for payload in payloads)
        report = BatchIngestReport(results=results)
        self.ingest_logger.info(
            "Batch ingested",
            source=source or self.config.ingest.source_push,
            ingested=report.ingested,
            failed=report.failed,
            skipped=report.skipped
        )
        return report

    def handle_push_message(self, message: Union[str, bytes, list, dict]) -> PushFrameReport:
        """Push-feed producer entry point."""
        return self.push_handler.handle_message(message)

    def run_backfill(self, now: Optional[datetime] = None) -> Optional[BackfillRunReport]:
        """Pull-feed producer entry point for the periodic trigger."""
        return self.backfill.trigger(now)

    def manual_backfill(self, ticker: str, hours_back: int = 1,
                        now: Optional[datetime] = None) -> Optional[BackfillRunReport]:
        return self.backfill.manual_backfill(ticker, hours_back, now)

    def load_history(self, days_back: int, tickers: Optional[Sequence[str]] = None,
                     now: Optional[datetime] = None) -> Optional[BackfillRunReport]:
        """One-off historical backfill in day-sized chunks."""
        return self.backfill.load_history(days_back, tickers, now)

    def rebuild_aggregates(self, trades: Optional[Iterable[Trade]] = None,
                           since: Optional[datetime] = None) -> int:
        """
        Replay trades into the aggregator.

        Args:
            trades: Trades to replay; defaults to every stored trade
            since: Lower time bound when replaying from the store

        Returns:
            Number of trades recorded into buckets
        """
        source = trades if trades is not None else self.store.iter_trades(since)
        processed = recorded = 0

        for trade in source:
            processed += 1
            if self.aggregator.record(trade):
                recorded += 1
            if processed % REBUILD_LOG_INTERVAL == 0:
                self.logger.info("Aggregation rebuild progress", processed=processed)

        self.logger.info("Aggregation rebuild complete", processed=processed, recorded=recorded)
        return recorded

    def cleanup(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Apply the retention horizon to buckets and stored trades."""
        retention = timedelta(days=self.config.aggregation.retention_days)
        now = ensure_utc(now) if now else utc_now()

        removed_buckets = self.aggregator.sweep(retention, now=now)
        removed_trades = self.store.cleanup_old_trades(now - retention)
        return {"buckets": removed_buckets, "trades": removed_trades}

    # Query facade

    def timeline(
        self,
        underlying: str,
        window_hours: Optional[float] = None,
        bucket_minutes: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> list[TimelinePoint]:
        """Ordered bucket sequence for one underlying."""
        return self.aggregator.timeline(
            underlying,
            window_hours if window_hours is not None else self.config.aggregation.default_window_hours,
            bucket_minutes if bucket_minutes is not None else self.config.aggregation.default_bucket_minutes,
            now=now
        )

    def recent_timeline(self, underlying: str, minutes: int = 30,
                        now: Optional[datetime] = None) -> list[BucketSnapshot]:
        return self.aggregator.recent_timeline(underlying, minutes, now=now)

    def heatmap(
        self,
        window_hours: Optional[float] = None,
        tickers: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None
    ) -> list[HeatmapEntry]:
        """Per-underlying flow totals and sentiment tier, zero-filled for quiet tickers."""
        hours = window_hours if window_hours is not None else self.config.aggregation.default_window_hours
        end = ensure_utc(now) if now else utc_now()
        start = end - timedelta(hours=hours)

        return [
            build_heatmap_entry(
                ticker.upper(),
                self.aggregator.flow_window(ticker, start, end),
                self.config.sentiment
            )
            for ticker in (tickers or self.config.backfill.tracked_tickers)
        ]

    def smart_money(self, limit: int = 50, since_hours: Optional[float] = None) -> list[StoredTrade]:
        """Significant trades ordered by premium, largest first."""
        since = hours_ago(since_hours) if since_hours is not None else None
        return self.store.smart_money(limit, since=since)

    def strike_concentration(
        self,
        underlying: str,
        lookback_hours: Optional[float] = None,
        min_hits: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> list[StrikeConcentration]:
        """Graded (strike, expiry, side) groups of significant trades."""
        hours = lookback_hours if lookback_hours is not None else self.config.concentration.default_lookback_hours
        end = ensure_utc(now) if now else utc_now()
        stored = self.store.get_trades(
            underlying, end - timedelta(hours=hours), significant_only=True
        )
        return self.concentration.compute(
            underlying,
            (s.trade for s in stored),
            min_hits=min_hits,
            as_of=end.date()
        )

    def summary(self, underlying: str, window_hours: float = 24,
                now: Optional[datetime] = None) -> FlowSummary:
        return self.store.summary(underlying, hours_ago(window_hours, now))

    def latest(self, underlying: Optional[str] = None, limit: int = 50) -> list[StoredTrade]:
        return self.store.latest(underlying, limit)

    def recent_tickers(self, hours: float = 24, now: Optional[datetime] = None) -> list[str]:
        return self.store.recent_tickers(hours_ago(hours, now))

    def sentiment_flips(self, underlying: str, now: Optional[datetime] = None) -> list[SentimentFlip]:
        """Compare the last hour with the hour that ended two hours ago."""
        now = ensure_utc(now) if now else utc_now()
        recent = self.store.flow_window(underlying, hours_ago(1, now))
        previous = self.store.flow_window(underlying, hours_ago(3, now), hours_ago(2, now))

        flip = detect_sentiment_flip(underlying.upper(), recent, previous, self.config.sentiment)
        if flip is None:
            return []

        self.logger.info(
            "Sentiment flip detected",
            underlying=flip.underlying,
            previous=flip.previous_sentiment.value,
            current=flip.current_sentiment.value,
            net_change=str(flip.net_change)
        )
        return [flip]

    def unusual_volume(
        self,
        tickers: Optional[Sequence[str]] = None,
        compare_hours: int = 24,
        now: Optional[datetime] = None
    ) -> list[UnusualVolume]:
        """Tickers whose last-hour trade count runs well above their hourly average."""
        now = ensure_utc(now) if now else utc_now()
        recent_start = hours_ago(1, now)

        unusual = []
        for ticker in tickers or self.config.backfill.tracked_tickers:
            recent_count = self.store.count_trades(ticker, recent_start)
            historical_count = self.store.count_trades(
                ticker, hours_ago(compare_hours, now), recent_start
            )
            found = detect_unusual_volume(
                ticker.upper(), recent_count, historical_count, compare_hours, self.config.sentiment
            )
            if found:
                self.logger.info(
                    "Unusual volume detected",
                    underlying=found.underlying,
                    recent_count=found.recent_count,
                    historical_avg=found.historical_avg
                )
                unusual.append(found)
        return unusual

    def get_runtime_stats(self) -> dict[str, Any]:
        """Get runtime statistics."""
        return {
            "tracked_underlyings": len(self.aggregator.underlyings()),
            "backfill_running": self.backfill.is_running,
            "push_authenticated": self.push_handler.authenticated,
            "store": self.store.get_stats(),
        }

"""
Concurrent minute-bucket aggregator.

Both producers call ``record`` concurrently. A registry lock guards bucket
lookup and creation; each bucket carries its own lock for increments. The
retention sweep retires a bucket under that same lock before removing it, and
a writer that lands on a retired bucket retries with a fresh one, so no
increment is lost to a concurrent sweep.
"""

import threading
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

import structlog

from ..data.models import Trade
from ..metrics.sentiment import FlowWindow
from ..utils.time import ensure_utc, floor_to_bucket, truncate_to_minute, utc_now
from .models import BucketKey, BucketSnapshot, TimeBucket, TimelinePoint

logger = structlog.get_logger(__name__)


class BucketAggregator:
    """Keyed map of TimeBuckets with per-key atomic upsert."""

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._buckets: dict[str, dict[datetime, TimeBucket]] = defaultdict(dict)

    def record(self, trade: Trade) -> bool:
        """
        Add a trade to its (underlying, minute) bucket.

        Returns:
            False when the trade has no underlying or no side and was not counted
        """
        if trade.underlying is None or trade.side is None:
            return False

        key = BucketKey(trade.underlying, truncate_to_minute(trade.ts))
        while True:
            bucket = self._get_or_create(key)
            with bucket.lock:
                if bucket.retired:
                    continue
                bucket.add(trade.side, trade.premium)
                return True

    def _get_or_create(self, key: BucketKey) -> TimeBucket:
        with self._registry_lock:
            per_ticker = self._buckets[key.underlying]
            bucket = per_ticker.get(key.bucket_start)
            if bucket is None:
                bucket = TimeBucket(key)
                per_ticker[key.bucket_start] = bucket
            return bucket

    def _buckets_for(self, underlying: str) -> list[TimeBucket]:
        with self._registry_lock:
            per_ticker = self._buckets.get(underlying)
            return list(per_ticker.values()) if per_ticker else []

    def query(self, underlying: str, start: datetime, end: datetime) -> list[BucketSnapshot]:
        """
        Buckets for one underlying with start <= bucket_start <= end.

        Returns:
            Snapshots ascending by bucket start; empty when nothing was recorded
        """
        start, end = ensure_utc(start), ensure_utc(end)
        snapshots = [
            bucket.snapshot()
            for bucket in self._buckets_for(underlying.upper())
            if start <= bucket.key.bucket_start <= end
        ]
        snapshots.sort(key=lambda s: s.bucket_start)
        return snapshots

    def snapshot(self, minute: datetime) -> list[BucketSnapshot]:
        """Cross-sectional view of every underlying for one minute."""
        bucket_start = truncate_to_minute(minute)
        with self._registry_lock:
            found = [
                per_ticker[bucket_start]
                for per_ticker in self._buckets.values()
                if bucket_start in per_ticker
            ]
        snapshots = [bucket.snapshot() for bucket in found]
        snapshots.sort(key=lambda s: s.underlying)
        return snapshots

    def underlyings(self) -> list[str]:
        with self._registry_lock:
            return sorted(ticker for ticker, per_ticker in self._buckets.items() if per_ticker)

    def timeline(
        self,
        underlying: str,
        window_hours: float,
        bucket_minutes: int,
        now: Optional[datetime] = None
    ) -> list[TimelinePoint]:
        """
        Roll minute buckets into ``bucket_minutes`` wide points over the window.

        Only populated buckets are returned. The window start is floored to its
        minute so a partially covered first minute is included. Cumulative
        fields accumulate from the start of the window.
        """
        if bucket_minutes < 1:
            raise ValueError(f"bucket_minutes must be >= 1, got {bucket_minutes}")

        end = ensure_utc(now) if now else utc_now()
        start = truncate_to_minute(end - timedelta(hours=window_hours))
        minutes = self.query(underlying, start, end)

        grouped: dict[datetime, list[BucketSnapshot]] = defaultdict(list)
        for snap in minutes:
            grouped[floor_to_bucket(snap.bucket_start, bucket_minutes)].append(snap)

        points = []
        cumulative_call = Decimal(0)
        cumulative_put = Decimal(0)
        for bucket_start in sorted(grouped):
            group = grouped[bucket_start]
            call_premium = sum((s.call_premium for s in group), Decimal(0))
            put_premium = sum((s.put_premium for s in group), Decimal(0))
            cumulative_call += call_premium
            cumulative_put += put_premium
            points.append(TimelinePoint(
                bucket_start=bucket_start,
                call_premium=call_premium,
                put_premium=put_premium,
                call_count=sum(s.call_count for s in group),
                put_count=sum(s.put_count for s in group),
                cumulative_call=cumulative_call,
                cumulative_put=cumulative_put,
            ))
        return points

    def recent_timeline(self, underlying: str, minutes: int,
                        now: Optional[datetime] = None) -> list[BucketSnapshot]:
        """Raw minute buckets for the last ``minutes`` minutes."""
        end = ensure_utc(now) if now else utc_now()
        return self.query(underlying, truncate_to_minute(end - timedelta(minutes=minutes)), end)

    def flow_window(self, underlying: str, start: datetime, end: datetime) -> FlowWindow:
        """Summed call/put premium and trade count between two instants."""
        snapshots = self.query(underlying, start, end)
        return FlowWindow(
            call_premium=sum((s.call_premium for s in snapshots), Decimal(0)),
            put_premium=sum((s.put_premium for s in snapshots), Decimal(0)),
            trade_count=sum(s.trade_count for s in snapshots),
        )

    def sweep(self, retention: timedelta, now: Optional[datetime] = None) -> int:
        """
        Remove buckets older than the retention horizon.

        Returns:
            Number of buckets removed
        """
        cutoff = (ensure_utc(now) if now else utc_now()) - retention
        removed = 0
        with self._registry_lock:
            for per_ticker in self._buckets.values():
                expired = [start for start in per_ticker if start < cutoff]
                for start in expired:
                    bucket = per_ticker.pop(start)
                    with bucket.lock:
                        bucket.retired = True
                    removed += 1
            for ticker in [t for t, per_ticker in self._buckets.items() if not per_ticker]:
                del self._buckets[ticker]

        if removed:
            logger.info("Swept expired buckets", removed=removed, cutoff=cutoff.isoformat())
        return removed

    def clear(self) -> None:
        with self._registry_lock:
            self._buckets.clear()

"""
Data models for minute-granularity flow buckets.

TimeBucket is the only mutable structure in the pipeline; every mutation
happens under its own lock. Readers receive immutable BucketSnapshot copies.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from ..data.models import OptionSide


@dataclass(frozen=True)
class BucketKey:
    """Identity of a bucket: one underlying, one UTC minute."""
    underlying: str
    bucket_start: datetime


@dataclass(frozen=True)
class BucketSnapshot:
    """Point-in-time copy of a bucket's running sums."""
    underlying: str
    bucket_start: datetime
    call_premium: Decimal = Decimal(0)
    put_premium: Decimal = Decimal(0)
    call_count: int = 0
    put_count: int = 0

    @property
    def net_flow(self) -> Decimal:
        return self.call_premium - self.put_premium

    @property
    def trade_count(self) -> int:
        return self.call_count + self.put_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "underlying": self.underlying,
            "bucketStart": self.bucket_start.isoformat(),
            "callPremium": self.call_premium,
            "putPremium": self.put_premium,
            "callCount": self.call_count,
            "putCount": self.put_count,
            "netFlow": self.net_flow,
        }


@dataclass
class TimeBucket:
    """Running call/put sums for one (underlying, minute)."""
    key: BucketKey
    call_premium: Decimal = Decimal(0)
    put_premium: Decimal = Decimal(0)
    call_count: int = 0
    put_count: int = 0
    retired: bool = False                  # Set by the retention sweep before removal
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, side: OptionSide, premium: Optional[Decimal]) -> None:
        """Increment the running sums. Caller must hold ``lock``."""
        amount = premium if premium is not None else Decimal(0)
        if side is OptionSide.CALL:
            self.call_premium += amount
            self.call_count += 1
        else:
            self.put_premium += amount
            self.put_count += 1

    def snapshot(self) -> BucketSnapshot:
        with self.lock:
            return BucketSnapshot(
                underlying=self.key.underlying,
                bucket_start=self.key.bucket_start,
                call_premium=self.call_premium,
                put_premium=self.put_premium,
                call_count=self.call_count,
                put_count=self.put_count,
            )


@dataclass(frozen=True)
class TimelinePoint:
    """One timeline bucket of ``bucket_minutes`` width with running totals."""
    bucket_start: datetime
    call_premium: Decimal
    put_premium: Decimal
    call_count: int
    put_count: int
    cumulative_call: Decimal
    cumulative_put: Decimal

    @property
    def net_flow(self) -> Decimal:
        return self.call_premium - self.put_premium

    @property
    def cumulative_net(self) -> Decimal:
        return self.cumulative_call - self.cumulative_put

    def to_dict(self) -> dict[str, Any]:
        return {
            "bucketStart": self.bucket_start.isoformat(),
            "callPremium": self.call_premium,
            "putPremium": self.put_premium,
            "callCount": self.call_count,
            "putCount": self.put_count,
            "netFlow": self.net_flow,
            "cumulativeCall": self.cumulative_call,
            "cumulativePut": self.cumulative_put,
            "cumulativeNet": self.cumulative_net,
        }

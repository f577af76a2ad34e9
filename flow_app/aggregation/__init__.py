"""
Minute-bucket flow aggregation shared by the push and pull producers.
"""

from .aggregator import BucketAggregator
from .models import BucketKey, BucketSnapshot, TimeBucket, TimelinePoint

__all__ = [
    "BucketAggregator",
    "BucketKey",
    "BucketSnapshot",
    "TimeBucket",
    "TimelinePoint",
]

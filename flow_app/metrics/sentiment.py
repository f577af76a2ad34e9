"""
Sentiment signals derived from call/put premium flow.

Provides the heatmap sentiment tier, sentiment flip detection between two
one-hour windows and unusual trade-count detection.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from ..config.defaults import SentimentParams


class SentimentTier(str, Enum):
    """Heatmap sentiment classification of net premium flow."""
    VERY_BULLISH = "VERY_BULLISH"
    BULLISH = "BULLISH"
    NEUTRAL = "NEUTRAL"
    BEARISH = "BEARISH"
    VERY_BEARISH = "VERY_BEARISH"


def sentiment_tier(net_flow: Decimal, very_threshold: Decimal = Decimal("1000000")) -> SentimentTier:
    """Classify net flow (call premium minus put premium)."""
    if net_flow > very_threshold:
        return SentimentTier.VERY_BULLISH
    if net_flow > 0:
        return SentimentTier.BULLISH
    if net_flow < -very_threshold:
        return SentimentTier.VERY_BEARISH
    if net_flow < 0:
        return SentimentTier.BEARISH
    return SentimentTier.NEUTRAL


@dataclass(frozen=True)
class HeatmapEntry:
    """Per-underlying flow totals over the heatmap window."""
    underlying: str
    call_premium: Decimal
    put_premium: Decimal
    trade_count: int
    sentiment: SentimentTier

    @property
    def net_flow(self) -> Decimal:
        return self.call_premium - self.put_premium

    def to_dict(self) -> dict:
        return {
            "underlying": self.underlying,
            "callPremium": self.call_premium,
            "putPremium": self.put_premium,
            "netFlow": self.net_flow,
            "tradeCount": self.trade_count,
            "sentiment": self.sentiment.value,
        }


@dataclass(frozen=True)
class FlowWindow:
    """Call/put premium and trade count for one time window."""
    call_premium: Decimal = Decimal(0)
    put_premium: Decimal = Decimal(0)
    trade_count: int = 0

    @property
    def net_flow(self) -> Decimal:
        return self.call_premium - self.put_premium


@dataclass(frozen=True)
class SentimentFlip:
    """Net flow changed sign between the prior and the recent window."""
    underlying: str
    previous_sentiment: SentimentTier
    current_sentiment: SentimentTier
    net_change: Decimal
    recent: FlowWindow
    previous: FlowWindow


@dataclass(frozen=True)
class UnusualVolume:
    """Recent trade count well above the historical hourly average."""
    underlying: str
    recent_count: int
    historical_avg: float
    volume_ratio: float


def build_heatmap_entry(underlying: str, window: FlowWindow,
                        params: Optional[SentimentParams] = None) -> HeatmapEntry:
    params = params or SentimentParams()
    return HeatmapEntry(
        underlying=underlying,
        call_premium=window.call_premium,
        put_premium=window.put_premium,
        trade_count=window.trade_count,
        sentiment=sentiment_tier(window.net_flow, params.very_threshold),
    )


def detect_sentiment_flip(
    underlying: str,
    recent: FlowWindow,
    previous: FlowWindow,
    params: Optional[SentimentParams] = None
) -> Optional[SentimentFlip]:
    """
    Compare two windows and report a flip.

    Both windows need at least ``flip_min_trades`` trades, the net flows must
    have strictly opposite signs, and the absolute change must exceed
    ``flip_min_swing``.
    """
    params = params or SentimentParams()
    if recent.trade_count < params.flip_min_trades or previous.trade_count < params.flip_min_trades:
        return None

    recent_net = recent.net_flow
    previous_net = previous.net_flow
    if not ((recent_net > 0 > previous_net) or (recent_net < 0 < previous_net)):
        return None

    net_change = abs(recent_net - previous_net)
    if net_change <= params.flip_min_swing:
        return None

    return SentimentFlip(
        underlying=underlying,
        previous_sentiment=SentimentTier.BULLISH if previous_net > 0 else SentimentTier.BEARISH,
        current_sentiment=SentimentTier.BULLISH if recent_net > 0 else SentimentTier.BEARISH,
        net_change=net_change,
        recent=recent,
        previous=previous,
    )


def detect_unusual_volume(
    underlying: str,
    recent_count: int,
    historical_count: int,
    compare_hours: int,
    params: Optional[SentimentParams] = None
) -> Optional[UnusualVolume]:
    """
    Flag the last hour's trade count against the preceding hours.

    ``historical_count`` covers the ``compare_hours - 1`` hours before the
    most recent one.
    """
    params = params or SentimentParams()
    avg_per_hour = historical_count / max(compare_hours - 1, 1)

    if recent_count <= params.unusual_min_count or recent_count <= avg_per_hour * params.unusual_multiple:
        return None

    return UnusualVolume(
        underlying=underlying,
        recent_count=recent_count,
        historical_avg=round(avg_per_hour, 1),
        volume_ratio=round(recent_count / avg_per_hour, 2) if avg_per_hour else float("inf"),
    )

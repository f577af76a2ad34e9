"""
Significance classifier for canonical trades.

A trade is significant when its premium reaches the configured floor and its
days-to-expiry lies in the inclusive window [0, max_dte]. Classification is a
pure function of the trade and the thresholds; it never removes the raw trade.
"""

from dataclasses import dataclass
from typing import Optional

from ..config.defaults import SignificanceParams
from ..data.models import Trade
from ..utils.time import days_to_expiry


@dataclass(frozen=True)
class ClassifiedTrade:
    """Trade enriched with its significance decision."""
    trade: Trade
    significant: bool
    dte: Optional[int]
    is_0dte: bool
    reason: str


class SignificanceClassifier:
    """Applies the premium floor and expiry window to trades."""

    def __init__(self, params: Optional[SignificanceParams] = None):
        self.params = params or SignificanceParams()

    def is_significant(self, trade: Trade) -> bool:
        return self.classify(trade).significant

    def classify(self, trade: Trade) -> ClassifiedTrade:
        """
        Classify a trade.

        Reason codes: missing_premium, missing_expiry, below_premium_floor,
        expired, beyond_max_dte, significant.
        """
        dte = days_to_expiry(trade.expiry, trade.trade_date)

        if trade.premium is None:
            reason = "missing_premium"
        elif dte is None:
            reason = "missing_expiry"
        elif trade.premium < self.params.min_premium:
            reason = "below_premium_floor"
        elif dte < 0:
            reason = "expired"
        elif dte > self.params.max_dte:
            reason = "beyond_max_dte"
        else:
            reason = "significant"

        return ClassifiedTrade(
            trade=trade,
            significant=reason == "significant",
            dte=dte,
            is_0dte=dte == 0,
            reason=reason,
        )

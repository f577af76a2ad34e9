"""
Strike concentration engine.

Groups significant trades for one underlying by (strike, expiry, side) over a
lookback window and grades each group by its repeat-hit count. Results are
recomputed on every query; nothing here is incrementally maintained.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog

from ..config.defaults import ConcentrationParams
from ..data.models import OptionSide, Trade
from ..utils.time import days_to_expiry

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StrikeConcentration:
    """Repeated activity at one (strike, expiry, side) within a lookback window."""
    underlying: str
    strike: Decimal
    expiry: date
    side: OptionSide
    hit_count: int
    total_premium: Decimal
    total_size: int
    grade: Optional[str]
    dte: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "underlying": self.underlying,
            "strike": self.strike,
            "expiry": self.expiry.isoformat(),
            "side": self.side.value,
            "hitCount": self.hit_count,
            "totalPremium": self.total_premium,
            "totalSize": self.total_size,
            "grade": self.grade,
            "dte": self.dte,
        }


def grade_for_hits(hit_count: int, params: Optional[ConcentrationParams] = None) -> Optional[str]:
    """
    Map a hit count to a letter grade.

    Returns:
        "A+", "A", "B", "C" or "D"; None below the D threshold
    """
    params = params or ConcentrationParams()
    if hit_count >= params.grade_a_plus_hits:
        return "A+"
    if hit_count >= params.grade_a_hits:
        return "A"
    if hit_count >= params.grade_b_hits:
        return "B"
    if hit_count >= params.grade_c_hits:
        return "C"
    if hit_count >= params.grade_d_hits:
        return "D"
    return None


class StrikeConcentrationEngine:
    """Computes graded strike concentration entries from significant trades."""

    def __init__(self, params: Optional[ConcentrationParams] = None):
        self.params = params or ConcentrationParams()

    def compute(
        self,
        underlying: str,
        trades: Iterable[Trade],
        min_hits: Optional[int] = None,
        as_of: Optional[date] = None
    ) -> list[StrikeConcentration]:
        """
        Group trades and grade each (strike, expiry, side) group.

        Trades for other underlyings or without a resolved strike, expiry
        or side cannot be keyed and are ignored.

        Args:
            underlying: Ticker the result is for
            trades: Significant trades inside the lookback window
            min_hits: Groups with fewer hits are excluded; never below the D
                threshold, so every entry carries a grade
            as_of: Date used for the reported DTE

        Returns:
            Entries sorted by total premium, largest first
        """
        if min_hits is None:
            min_hits = self.params.default_min_hits
        min_hits = max(min_hits, self.params.grade_d_hits)
        ticker = underlying.upper()

        groups: dict[tuple, list[Trade]] = defaultdict(list)
        for trade in trades:
            if trade.underlying != ticker:
                continue
            if trade.strike is None or trade.expiry is None or trade.side is None:
                continue
            groups[(trade.strike, trade.expiry, trade.side)].append(trade)

        entries = []
        for (strike, expiry, side), hits in groups.items():
            if len(hits) < min_hits:
                continue
            entries.append(StrikeConcentration(
                underlying=ticker,
                strike=strike,
                expiry=expiry,
                side=side,
                hit_count=len(hits),
                total_premium=sum((t.premium or Decimal(0) for t in hits), Decimal(0)),
                total_size=sum(t.size or 0 for t in hits),
                grade=grade_for_hits(len(hits), self.params),
                dte=days_to_expiry(expiry, as_of) if as_of else None,
            ))

        entries.sort(key=lambda e: e.total_premium, reverse=True)

        if entries:
            logger.debug(
                "Strike concentration computed",
                underlying=ticker,
                groups=len(groups),
                entries=len(entries),
                top_grade=entries[0].grade
            )
        return entries

"""Tests for the strike concentration engine."""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from flow_app.config.defaults import ConcentrationParams
from flow_app.data.models import OptionSide
from flow_app.metrics.concentration import StrikeConcentrationEngine, grade_for_hits


class TestGradeForHits:
    """Test hit count to grade mapping."""

    @pytest.mark.parametrize("hits,grade", [
        (15, "A+"), (10, "A+"),
        (9, "A"), (7, "A"),
        (6, "B"), (5, "B"),
        (4, "C"), (3, "C"),
        (2, "D"),
        (1, None), (0, None),
    ])
    def test_default_grades(self, hits, grade) -> None:
        assert grade_for_hits(hits) == grade

    def test_custom_thresholds(self) -> None:
        params = ConcentrationParams(grade_a_plus_hits=5, grade_a_hits=4, grade_b_hits=3,
                                     grade_c_hits=2, grade_d_hits=1)
        assert grade_for_hits(5, params) == "A+"
        assert grade_for_hits(1, params) == "D"


class TestStrikeConcentrationEngine:
    """Test grouping and grading of significant trades."""

    def _hits(self, make_trade, count: int, strike: str = "500", side=OptionSide.CALL,
              premium: str = "60000", underlying: str = "QQQ"):
        return [
            make_trade(underlying=underlying, strike=strike, side=side, premium=premium)
            for _ in range(count)
        ]

    def test_seven_hits_grade_a(self, make_trade) -> None:
        """Test a group with exactly 7 hits grades A."""
        result = StrikeConcentrationEngine().compute("QQQ", self._hits(make_trade, 7), min_hits=2)

        assert len(result) == 1
        assert result[0].hit_count == 7
        assert result[0].grade == "A"

    def test_six_hits_grade_b(self, make_trade) -> None:
        """Test a group with exactly 6 hits grades B."""
        result = StrikeConcentrationEngine().compute("QQQ", self._hits(make_trade, 6), min_hits=2)
        assert result[0].grade == "B"

    def test_single_hit_excluded(self, make_trade) -> None:
        """Test a single hit is excluded when min_hits is 2."""
        trades = self._hits(make_trade, 1, strike="510") + self._hits(make_trade, 3, strike="500")
        result = StrikeConcentrationEngine().compute("QQQ", trades, min_hits=2)

        assert [entry.strike for entry in result] == [Decimal("500")]

    def test_min_hits_clamped_to_lowest_grade(self, make_trade) -> None:
        """Test a min_hits below the D threshold still returns graded entries only."""
        trades = self._hits(make_trade, 2) + [make_trade(strike="480")]

        result = StrikeConcentrationEngine().compute("QQQ", trades, min_hits=1)

        assert [entry.strike for entry in result] == [Decimal("500")]
        assert result[0].grade == "D"

    def test_groups_split_by_side_and_expiry(self, make_trade) -> None:
        """Test the key is (strike, expiry, side)."""
        trades = (
            self._hits(make_trade, 2, side=OptionSide.CALL)
            + self._hits(make_trade, 2, side=OptionSide.PUT)
            + [make_trade(expiry=date(2026, 1, 16)) for _ in range(2)]
        )
        result = StrikeConcentrationEngine().compute("QQQ", trades, min_hits=2)

        assert len(result) == 3
        assert all(entry.hit_count == 2 for entry in result)

    def test_totals_and_ordering(self, make_trade) -> None:
        """Test totals are summed and entries sorted by premium descending."""
        trades = (
            self._hits(make_trade, 2, strike="500", premium="60000")
            + self._hits(make_trade, 3, strike="490", premium="100000")
        )
        result = StrikeConcentrationEngine().compute("QQQ", trades)

        assert [entry.strike for entry in result] == [Decimal("490"), Decimal("500")]
        assert result[0].total_premium == Decimal("300000")
        assert result[0].total_size == 300
        assert result[1].total_premium == Decimal("120000")

    def test_other_underlyings_and_unkeyed_trades_ignored(self, make_trade) -> None:
        """Test trades without strike, expiry or side are skipped."""
        trades = (
            self._hits(make_trade, 3, underlying="SPY")
            + [make_trade(strike=None), make_trade(expiry=None), make_trade(side=None)]
        )
        assert StrikeConcentrationEngine().compute("QQQ", trades) == []

    def test_dte_reported_relative_to_as_of(self, make_trade, trade_time) -> None:
        """Test DTE is reported against the query date."""
        expiry = trade_time.date() + timedelta(days=18)
        trades = [make_trade(expiry=expiry) for _ in range(2)]
        result = StrikeConcentrationEngine().compute("qqq", trades, as_of=trade_time.date())

        assert result[0].dte == 18
        assert result[0].underlying == "QQQ"
        assert result[0].to_dict()["side"] == "CALL"

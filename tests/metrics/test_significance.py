"""Tests for the significance classifier."""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from flow_app.config.defaults import SignificanceParams
from flow_app.metrics.significance import SignificanceClassifier


class TestSignificanceBoundaries:
    """Test the premium floor and DTE window boundaries."""

    def _expiry(self, trade_time, dte: int) -> date:
        return trade_time.date() + timedelta(days=dte)

    def test_premium_just_below_floor(self, make_trade, trade_time) -> None:
        """Test 49999.99 at DTE 10 is not significant."""
        trade = make_trade(premium="49999.99", expiry=self._expiry(trade_time, 10))
        result = SignificanceClassifier().classify(trade)

        assert result.significant is False
        assert result.reason == "below_premium_floor"
        assert result.dte == 10

    def test_premium_at_floor_max_dte(self, make_trade, trade_time) -> None:
        """Test 50000.00 at DTE 30 is significant."""
        trade = make_trade(premium="50000.00", expiry=self._expiry(trade_time, 30))
        assert SignificanceClassifier().is_significant(trade) is True

    def test_dte_beyond_window(self, make_trade, trade_time) -> None:
        """Test 50000.00 at DTE 31 is not significant."""
        trade = make_trade(premium="50000.00", expiry=self._expiry(trade_time, 31))
        result = SignificanceClassifier().classify(trade)

        assert result.significant is False
        assert result.reason == "beyond_max_dte"

    def test_zero_dte_is_significant(self, make_trade, trade_time) -> None:
        """Test same-day expiry is inside the window and flagged 0DTE."""
        trade = make_trade(premium="75000", expiry=trade_time.date())
        result = SignificanceClassifier().classify(trade)

        assert result.significant is True
        assert result.dte == 0
        assert result.is_0dte is True

    def test_expired_contract(self, make_trade, trade_time) -> None:
        """Test negative DTE is never significant."""
        trade = make_trade(premium="75000", expiry=self._expiry(trade_time, -1))
        result = SignificanceClassifier().classify(trade)

        assert result.significant is False
        assert result.reason == "expired"


class TestUnresolvedFields:
    """Test classification requires premium and expiry."""

    def test_null_premium(self, make_trade) -> None:
        result = SignificanceClassifier().classify(make_trade(premium=None))

        assert result.significant is False
        assert result.reason == "missing_premium"

    def test_null_expiry(self, make_trade) -> None:
        result = SignificanceClassifier().classify(make_trade(premium="90000", expiry=None))

        assert result.significant is False
        assert result.reason == "missing_expiry"
        assert result.dte is None
        assert result.is_0dte is False


class TestCustomThresholds:
    """Test configured thresholds are honoured."""

    @pytest.mark.parametrize("premium,dte,expected", [
        ("10000", 5, True),
        ("9999", 5, False),
        ("10000", 7, True),
        ("10000", 8, False),
    ])
    def test_custom_params(self, make_trade, trade_time, premium, dte, expected) -> None:
        classifier = SignificanceClassifier(SignificanceParams(min_premium=Decimal("10000"), max_dte=7))
        trade = make_trade(premium=premium, expiry=trade_time.date() + timedelta(days=dte))

        assert classifier.is_significant(trade) is expected

    def test_classification_keeps_trade(self, make_trade) -> None:
        """Test the classified result wraps the untouched trade."""
        trade = make_trade(premium="1")
        assert SignificanceClassifier().classify(trade).trade is trade

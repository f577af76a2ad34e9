"""Tests for structured logging helpers."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import Mock

import structlog

from flow_app.data.models import OptionSide, Trade
from flow_app.logging.config import (
    configure_logging,
    get_backfill_logger,
    log_classification,
    log_state_transition,
)


@pytest.fixture
def trade() -> Trade:
    return Trade(
        ts=datetime(2025, 12, 1, 14, 30, tzinfo=timezone.utc),
        underlying="QQQ",
        contract_symbol="O:QQQ251219C00500000",
        side=OptionSide.CALL,
        strike=Decimal("500"),
        expiry=date(2025, 12, 19),
        premium=Decimal("60000"),
        size=100,
        action="TRADE",
        source="push",
        raw_payload="{}",
    )


class TestConfigureLogging:
    """Test structlog configuration."""

    def teardown_method(self):
        structlog.reset_defaults()

    def test_json_configuration(self) -> None:
        configure_logging(level="DEBUG", format_json=True)

        config = structlog.get_config()
        assert isinstance(config["processors"][-1], structlog.processors.JSONRenderer)

    def test_caller_processor_optional(self) -> None:
        configure_logging(level="INFO", include_caller=True, include_timestamp=False)

        processors = structlog.get_config()["processors"]
        assert any(isinstance(p, structlog.processors.CallsiteParameterAdder) for p in processors)
        assert not any(isinstance(p, structlog.processors.TimeStamper) for p in processors)

    def test_invalid_level_rejected(self) -> None:
        with pytest.raises(AttributeError):
            configure_logging(level="LOUD")


class TestLoggingHelpers:
    """Test standardized event helpers."""

    def test_significant_trade_logged_at_info(self, trade) -> None:
        logger = Mock()

        log_classification(logger, trade, True, "significant", dte=18)

        logger.bind.assert_called_once_with(
            contract_symbol="O:QQQ251219C00500000",
            underlying="QQQ",
            premium="60000",
            dte=18,
            classification="SIGNIFICANT",
            reason="significant",
        )
        logger.bind.return_value.info.assert_called_once_with("Significant trade")

    def test_raw_trade_logged_at_debug(self, trade) -> None:
        logger = Mock()

        log_classification(logger, trade, False, "below_premium_floor")

        logger.bind.return_value.debug.assert_called_once()
        logger.bind.return_value.info.assert_not_called()

    def test_state_transition_binds_context(self) -> None:
        logger = Mock()
        bound = logger.bind.return_value

        log_state_transition(logger, "run-1", "idle", "fetching", "scheduled", context={"tickers": 9})

        logger.bind.assert_called_once_with(
            run_id="run-1", from_state="idle", to_state="fetching", trigger="scheduled"
        )
        bound.bind.assert_called_once_with(context={"tickers": 9})
        bound.bind.return_value.info.assert_called_once_with("State transition")

    def test_backfill_logger_is_bound(self) -> None:
        logger = get_backfill_logger("flow_app.test")
        assert logger is not None

"""Pytest configuration and shared fixtures."""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from flow_app.data.models import OptionSide, Trade
from flow_app.engine import FlowPipeline
from flow_app.persistence.trade_store import TradeStore

TRADE_TIME = datetime(2025, 12, 1, 14, 30, 15, tzinfo=timezone.utc)


def epoch_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


@pytest.fixture
def trade_time() -> datetime:
    """Fixed trade timestamp used across tests."""
    return TRADE_TIME


@pytest.fixture
def push_trade_event() -> Dict[str, Any]:
    """Push-feed trade event with short field names."""
    return {
        "ev": "T",
        "sym": "O:AAPL251219C00150000",
        "x": 312,
        "p": 2.50,
        "s": 430,
        "t": epoch_ms(TRADE_TIME),
        "q": 1234,
    }


@pytest.fixture
def pull_trade_event() -> Dict[str, Any]:
    """Pull-feed trade event with long field names and a nanosecond timestamp."""
    return {
        "conditions": [209],
        "exchange": 316,
        "price": 2.5,
        "sip_timestamp": epoch_ms(TRADE_TIME) * 1_000_000 + 123_456,
        "size": 430,
        "ticker": "O:AAPL251219C00150000",
    }


@pytest.fixture
def make_trade() -> Callable[..., Trade]:
    """Factory for canonical trades with sensible defaults."""
    def _make(
        underlying: Optional[str] = "QQQ",
        side: Optional[OptionSide] = OptionSide.CALL,
        premium: Optional[str] = "60000",
        ts: datetime = TRADE_TIME,
        strike: Optional[str] = "500",
        expiry: Optional[date] = date(2025, 12, 19),
        size: Optional[int] = 100,
        source: str = "push",
        contract_symbol: Optional[str] = None,
    ) -> Trade:
        return Trade(
            ts=ts,
            underlying=underlying,
            contract_symbol=contract_symbol or f"O:{underlying or 'X'}251219C00500000",
            side=side,
            strike=Decimal(strike) if strike is not None else None,
            expiry=expiry,
            premium=Decimal(premium) if premium is not None else None,
            size=size,
            action="TRADE",
            source=source,
            raw_payload="{}",
        )
    return _make


@pytest.fixture
def trade_store(tmp_path) -> TradeStore:
    """Trade store backed by a temporary SQLite file."""
    return TradeStore(str(tmp_path / "trades.db"))


@pytest.fixture
def pipeline(tmp_path) -> FlowPipeline:
    """Pipeline with built-in defaults, a temporary database and no pull-feed key."""
    return FlowPipeline(
        config_dir=str(tmp_path),
        db_path=str(tmp_path / "flow.db"),
        api_key="",
        sleep=lambda _: None,
    )

"""
Canonical data models for normalized options trades.

This module defines immutable data structures that represent a trade after
normalization from either upstream feed, plus the result envelope returned
to producers.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from ..utils.time import to_epoch_ms

DEFAULT_ACTION = "TRADE"


class OptionSide(str, Enum):
    """Option contract side."""
    CALL = "CALL"
    PUT = "PUT"

    @classmethod
    def parse(cls, value: Any) -> Optional["OptionSide"]:
        """Map C/P/CALL/PUT in any case to a side, None when unrecognized."""
        if value is None:
            return None
        text = str(value).strip().upper()
        if text in ("C", "CALL", "CALLS"):
            return cls.CALL
        if text in ("P", "PUT", "PUTS"):
            return cls.PUT
        return None


@dataclass(frozen=True)
class Trade:
    """Canonical options trade, one per ingested event."""
    ts: datetime                        # UTC trade time, millisecond precision
    underlying: Optional[str]           # Ticker, None if neither decoded nor supplied
    contract_symbol: str                # Source identifier, always preserved
    side: Optional[OptionSide]          # None when unknown
    strike: Optional[Decimal]
    expiry: Optional[date]
    premium: Optional[Decimal]          # Total notional in dollars
    size: Optional[int]                 # Contract count
    action: str
    source: str                         # Provenance tag (push, backfill, ...)
    raw_payload: str                    # Untouched original payload
    fingerprint: str = ""               # Content-derived idempotency key

    @property
    def timestamp_ms(self) -> int:
        """Trade time as epoch milliseconds."""
        return to_epoch_ms(self.ts)

    @property
    def trade_date(self) -> date:
        """UTC calendar date of the trade."""
        return self.ts.date()

    def to_record(self) -> dict[str, Any]:
        """Canonical record consumed by persistence and query collaborators."""
        return {
            "timestamp": self.timestamp_ms,
            "underlying": self.underlying,
            "contractSymbol": self.contract_symbol,
            "side": self.side.value if self.side else None,
            "strike": self.strike,
            "expiry": self.expiry,
            "premium": self.premium,
            "size": self.size,
            "action": self.action,
            "source": self.source,
            "rawPayload": self.raw_payload,
        }


@dataclass(frozen=True)
class IngestResult:
    """Result of ingesting one raw payload."""

    trade: Optional[Trade] = None

    # Processing metadata
    success: bool = True
    error_msg: Optional[str] = None
    skipped_reason: Optional[str] = None

    # Downstream outcome
    significant: bool = False
    aggregated: bool = False
    stored_id: Optional[int] = None

    @classmethod
    def success_with_trade(cls, trade: Trade, significant: bool = False,
                           aggregated: bool = False, stored_id: Optional[int] = None):
        """Create successful result with trade."""
        return cls(
            trade=trade,
            success=True,
            significant=significant,
            aggregated=aggregated,
            stored_id=stored_id
        )

    @classmethod
    def error(cls, error_msg: str):
        """Create error result."""
        return cls(success=False, error_msg=error_msg)

    @classmethod
    def skipped(cls, reason: str, trade: Optional[Trade] = None):
        """Create skipped result."""
        return cls(trade=trade, success=True, skipped_reason=reason)


@dataclass(frozen=True)
class BatchIngestReport:
    """Outcome of ingesting a batch of payloads."""
    results: tuple[IngestResult, ...]

    @property
    def ingested(self) -> int:
        return sum(1 for r in self.results if r.success and r.skipped_reason is None)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.success and r.skipped_reason is not None)

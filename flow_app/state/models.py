"""
State machine data models for backfill run lifecycle management.

This module defines the immutable run state, per-contract and per-ticker
progress and the report returned at the end of each run.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class BackfillPhase(str, Enum):
    """Backfill run phases."""
    IDLE = "idle"
    FETCHING = "fetching"


class StopReason(str, Enum):
    """Why pagination stopped for one contract, or why a ticker ended."""
    EXHAUSTED = "exhausted"          # No next cursor
    EMPTY_PAGE = "empty_page"        # Page returned no results
    PAGE_CAP = "page_cap"            # Max pages per run reached
    SOURCE_ERROR = "source_error"    # Non-success status, timeout or malformed response
    NO_CONTRACTS = "no_contracts"    # Contract listing returned nothing for the ticker
    COMPLETED = "completed"          # Every listed contract was paginated


@dataclass(frozen=True)
class BackfillRunState:
    """Current position of the backfill state machine."""

    phase: BackfillPhase = BackfillPhase.IDLE
    run_id: Optional[str] = None
    ticker: Optional[str] = None             # Contract currently being paginated
    page: int = 0
    started_at: Optional[datetime] = None

    def fetching(self, ticker: str, page: int) -> "BackfillRunState":
        """Move to FETCHING at (ticker, page)."""
        return replace(self, phase=BackfillPhase.FETCHING, ticker=ticker, page=page)

    @property
    def is_running(self) -> bool:
        return self.phase is BackfillPhase.FETCHING


@dataclass(frozen=True)
class ContractProgress:
    """Outcome of paginating one option contract."""
    contract: str
    pages_fetched: int = 0
    events_fetched: int = 0
    ingested: int = 0
    failed: int = 0
    skipped: int = 0
    stop_reason: Optional[StopReason] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.stop_reason is not StopReason.SOURCE_ERROR


@dataclass(frozen=True)
class TickerProgress:
    """Outcome of backfilling one underlying over one window."""
    ticker: str
    contracts: tuple[ContractProgress, ...] = field(default_factory=tuple)
    stop_reason: Optional[StopReason] = None
    error: Optional[str] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None

    @property
    def pages_fetched(self) -> int:
        return sum(c.pages_fetched for c in self.contracts)

    @property
    def events_fetched(self) -> int:
        return sum(c.events_fetched for c in self.contracts)

    @property
    def ingested(self) -> int:
        return sum(c.ingested for c in self.contracts)

    @property
    def failed(self) -> int:
        return sum(c.failed for c in self.contracts)

    @property
    def skipped(self) -> int:
        return sum(c.skipped for c in self.contracts)

    @property
    def contract_errors(self) -> int:
        return sum(1 for c in self.contracts if not c.succeeded)

    @property
    def succeeded(self) -> bool:
        """False only when the contract listing itself failed."""
        return self.stop_reason is not StopReason.SOURCE_ERROR


@dataclass(frozen=True)
class BackfillRunReport:
    """Summary of one backfill run."""
    run_id: str
    started_at: datetime
    finished_at: datetime
    window_start: datetime
    window_end: datetime
    tickers: tuple[TickerProgress, ...] = field(default_factory=tuple)

    @property
    def total_ingested(self) -> int:
        return sum(t.ingested for t in self.tickers)

    @property
    def total_failed(self) -> int:
        return sum(t.failed for t in self.tickers)

    @property
    def failed_tickers(self) -> list[str]:
        failed: list[str] = []
        for t in self.tickers:
            if not t.succeeded and t.ticker not in failed:
                failed.append(t.ticker)
        return failed

    @property
    def ingested_by_ticker(self) -> dict[str, int]:
        """Ingested count per underlying, summed over every window of the run."""
        totals: dict[str, int] = {}
        for t in self.tickers:
            totals[t.ticker] = totals.get(t.ticker, 0) + t.ingested
        return totals

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "total_ingested": self.total_ingested,
            "total_failed": self.total_failed,
            "failed_tickers": self.failed_tickers,
            "tickers": [
                {
                    "ticker": t.ticker,
                    "window_start": t.window_start.isoformat() if t.window_start else None,
                    "window_end": t.window_end.isoformat() if t.window_end else None,
                    "contracts": len(t.contracts),
                    "contract_errors": t.contract_errors,
                    "pages": t.pages_fetched,
                    "events": t.events_fetched,
                    "ingested": t.ingested,
                    "failed": t.failed,
                    "skipped": t.skipped,
                    "stop_reason": t.stop_reason.value if t.stop_reason else None,
                    "error": t.error,
                }
                for t in self.tickers
            ],
        }

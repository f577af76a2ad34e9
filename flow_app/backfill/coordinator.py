"""
Backfill coordinator.

For each tracked underlying, lists the option contracts worth backfilling,
then pulls a bounded, paginated window of raw trade events per contract and
pushes every event through the same ingest path as the push feed. Runs never
overlap; a trigger that arrives during a run is ignored.
"""

import os
import time
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from ..config.defaults import BackfillParams, IngestParams
from ..data.aliases import aliases_for
from ..errors import SourceUnavailableError
from ..logging.config import get_backfill_logger
from ..state.machine import BackfillStateMachine
from ..state.models import BackfillRunReport, ContractProgress, StopReason, TickerProgress
from ..utils.time import ensure_utc, to_epoch_ms, utc_now
from .client import PullFeedClient

if TYPE_CHECKING:
    from ..engine import FlowPipeline

logger = get_backfill_logger(__name__)

IDENTIFIER_ALIASES = aliases_for("identifier")
CONTRACT_FIELD = "ticker"

# (underlying, window start, window end)
BackfillJob = tuple[str, datetime, datetime]


def with_contract_identifier(event: dict[str, Any], contract: str) -> dict[str, Any]:
    """Trade results from the contract endpoint omit the contract; stamp it on."""
    if any(event.get(alias) is not None for alias in IDENTIFIER_ALIASES):
        return event
    return {**event, CONTRACT_FIELD: contract}


class BackfillCoordinator:
    """Drives pull-feed backfill runs for the tracked tickers."""

    def __init__(
        self,
        pipeline: "FlowPipeline",
        params: Optional[BackfillParams] = None,
        ingest_params: Optional[IngestParams] = None,
        client: Optional[PullFeedClient] = None,
        api_key: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.pipeline = pipeline
        self.params = params or BackfillParams()
        self.ingest_params = ingest_params or IngestParams()
        self.api_key = api_key if api_key is not None else os.environ.get(self.params.api_key_env, "")
        self.client = client
        self.sleep = sleep
        self.machine = BackfillStateMachine()

        if self.client is None and self.api_key:
            self.client = PullFeedClient(self.api_key, self.params)

    @property
    def is_running(self) -> bool:
        return self.machine.is_running

    def window(self, now: Optional[datetime] = None,
               minutes: Optional[int] = None) -> tuple[datetime, datetime]:
        """Window ending ``publication_delay_minutes`` before now."""
        end = (ensure_utc(now) if now else utc_now()) - timedelta(
            minutes=self.params.publication_delay_minutes
        )
        start = end - timedelta(minutes=minutes if minutes is not None else self.params.window_minutes)
        return start, end

    def trigger(self, now: Optional[datetime] = None) -> Optional[BackfillRunReport]:
        """
        Periodic entry point: backfill every tracked ticker.

        Returns:
            Run report, or None when disabled, unconfigured or already running
        """
        if not self.params.enabled:
            logger.debug("Scheduled backfill is disabled")
            return None

        start, end = self.window(now)
        return self.run(self.params.tracked_tickers, start, end, trigger="scheduled")

    def manual_backfill(self, ticker: str, hours_back: int = 1,
                        now: Optional[datetime] = None) -> Optional[BackfillRunReport]:
        """Backfill one ticker over the last ``hours_back`` hours of published data."""
        start, end = self.window(now, minutes=hours_back * 60)
        logger.info("Manual backfill triggered", ticker=ticker.upper(), hours_back=hours_back)
        return self.run([ticker.upper()], start, end, trigger="manual")

    def load_history(
        self,
        days_back: int,
        tickers: Optional[Sequence[str]] = None,
        now: Optional[datetime] = None
    ) -> Optional[BackfillRunReport]:
        """
        One-off historical load in ``history_chunk_hours`` chunks, newest first.

        Each (ticker, chunk) pair is reported as its own TickerProgress;
        ``BackfillRunReport.ingested_by_ticker`` sums them per underlying.

        Raises:
            ValueError: days_back < 1
        """
        if days_back < 1:
            raise ValueError(f"days_back must be >= 1, got {days_back}")

        _, end = self.window(now)
        chunk = timedelta(hours=self.params.history_chunk_hours)
        chunks = max(1, int(timedelta(days=days_back) / chunk))

        jobs: list[BackfillJob] = []
        for ticker in tickers or self.params.tracked_tickers:
            for index in range(chunks):
                chunk_end = end - index * chunk
                jobs.append((ticker.upper(), chunk_end - chunk, chunk_end))

        logger.info("Historical backfill triggered", days_back=days_back, jobs=len(jobs))
        return self._run(
            jobs, end - chunks * chunk, end,
            trigger="historical",
            delay=self.params.history_chunk_delay_seconds
        )

    def run(
        self,
        tickers: Sequence[str],
        start: datetime,
        end: datetime,
        trigger: str = "manual"
    ) -> Optional[BackfillRunReport]:
        """Run one guarded backfill over ``tickers`` for [start, end]."""
        jobs = [(ticker, start, end) for ticker in tickers]
        return self._run(jobs, start, end, trigger, delay=self.params.ticker_delay_seconds)

    def _run(
        self,
        jobs: Sequence[BackfillJob],
        start: datetime,
        end: datetime,
        trigger: str,
        delay: float
    ) -> Optional[BackfillRunReport]:
        if self.client is None:
            logger.warning("Pull feed API key not configured - cannot backfill",
                           api_key_env=self.params.api_key_env)
            return None

        run_id = self.machine.begin(trigger)
        if run_id is None:
            return None

        started_at = utc_now()
        progress: list[TickerProgress] = []
        try:
            logger.info(
                "Starting backfill",
                run_id=run_id,
                jobs=len(jobs),
                window_start=start.isoformat(),
                window_end=end.isoformat()
            )

            for index, (ticker, job_start, job_end) in enumerate(jobs):
                progress.append(self._fetch_ticker(ticker, job_start, job_end))
                if index < len(jobs) - 1:
                    self.sleep(delay)
        finally:
            report = BackfillRunReport(
                run_id=run_id,
                started_at=started_at,
                finished_at=utc_now(),
                window_start=start,
                window_end=end,
                tickers=tuple(progress),
            )
            self.machine.finish(context={
                "ingested": report.total_ingested,
                "failed_tickers": report.failed_tickers,
            })

        logger.info(
            "Backfill complete",
            run_id=run_id,
            ingested=report.total_ingested,
            failed=report.total_failed,
            failed_tickers=report.failed_tickers
        )
        return report

    def _fetch_ticker(self, ticker: str, start: datetime, end: datetime) -> TickerProgress:
        """List the ticker's contracts and paginate each one."""
        try:
            contracts = self.client.list_contracts(ticker, end.date())
        except SourceUnavailableError as e:
            logger.warning("Contract listing failed", ticker=ticker, error=str(e))
            return TickerProgress(ticker, stop_reason=StopReason.SOURCE_ERROR, error=str(e),
                                  window_start=start, window_end=end)
        except Exception as e:
            logger.error(
                "Unexpected contract listing error",
                ticker=ticker,
                error=str(e),
                error_type=type(e).__name__
            )
            return TickerProgress(ticker, stop_reason=StopReason.SOURCE_ERROR, error=str(e),
                                  window_start=start, window_end=end)

        if not contracts:
            logger.info("No contracts found - skipping ticker", ticker=ticker)
            return TickerProgress(ticker, stop_reason=StopReason.NO_CONTRACTS,
                                  window_start=start, window_end=end)

        start_ms, end_ms = to_epoch_ms(start), to_epoch_ms(end)
        results = []
        for index, contract in enumerate(contracts):
            results.append(self._fetch_contract(contract, start_ms, end_ms))
            if index < len(contracts) - 1:
                self.sleep(self.params.contract_delay_seconds)

        progress = TickerProgress(
            ticker,
            contracts=tuple(results),
            stop_reason=StopReason.COMPLETED,
            window_start=start,
            window_end=end,
        )
        logger.info(
            "Ticker backfilled",
            ticker=ticker,
            contracts=len(results),
            ingested=progress.ingested,
            contract_errors=progress.contract_errors
        )
        return progress

    def _fetch_contract(self, contract: str, start_ms: int, end_ms: int) -> ContractProgress:
        """Paginate one contract until exhausted, empty, failed or capped."""
        pages = events = ingested = failed = skipped = 0
        stop_reason = StopReason.PAGE_CAP
        error = None
        cursor = None
        host = None

        for page in range(1, self.params.max_pages + 1):
            self.machine.advance(contract, page)
            try:
                result = self.client.fetch_page(
                    contract, start_ms, end_ms, cursor=cursor, page=page, host=host
                )
            except SourceUnavailableError as e:
                stop_reason, error = StopReason.SOURCE_ERROR, str(e)
                break
            except Exception as e:
                logger.error(
                    "Unexpected backfill error",
                    contract=contract,
                    page=page,
                    error=str(e),
                    error_type=type(e).__name__
                )
                stop_reason, error = StopReason.SOURCE_ERROR, str(e)
                break

            if not result.ok:
                logger.warning("Non-OK pull feed status", contract=contract, page=page,
                               status=result.status)
                stop_reason, error = StopReason.SOURCE_ERROR, f"status {result.status}"
                break

            if not result.results:
                stop_reason = StopReason.EMPTY_PAGE
                break

            pages += 1
            events += len(result.results)
            for event in result.results:
                outcome = self.pipeline.ingest(
                    with_contract_identifier(event, contract),
                    source=self.ingest_params.source_pull
                )
                if not outcome.success:
                    failed += 1
                elif outcome.skipped_reason:
                    skipped += 1
                else:
                    ingested += 1

            logger.debug("Backfill page ingested", contract=contract, page=page,
                         events=len(result.results))

            host = result.host or host
            cursor = result.next_cursor
            if not cursor:
                stop_reason = StopReason.EXHAUSTED
                break
            if page < self.params.max_pages:
                self.sleep(self.params.page_delay_seconds)

        if stop_reason is StopReason.SOURCE_ERROR:
            logger.warning("Backfill stopped for contract", contract=contract, pages=pages,
                           error=error)

        return ContractProgress(
            contract=contract,
            pages_fetched=pages,
            events_fetched=events,
            ingested=ingested,
            failed=failed,
            skipped=skipped,
            stop_reason=stop_reason,
            error=error,
        )

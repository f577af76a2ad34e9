"""Tests for the backfill coordinator."""

import pytest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock, call

from flow_app.backfill.client import PullPage
from flow_app.backfill.coordinator import BackfillCoordinator, with_contract_identifier
from flow_app.config.defaults import BackfillParams
from flow_app.errors import SourceUnavailableError
from flow_app.state.models import StopReason

NOW = datetime(2025, 12, 1, 16, 0, tzinfo=timezone.utc)
AAPL_CALL = "O:AAPL251219C00150000"
AAPL_PUT = "O:AAPL251219P00140000"


def _event(offset: int = 0, ts_ns: int = None) -> dict:
    """Trade result as the contract trades endpoint returns it: no contract field."""
    if ts_ns is None:
        ts_ns = int((NOW - timedelta(minutes=30)).timestamp()) * 1_000_000_000 + offset
    return {
        "conditions": [209],
        "exchange": 316,
        "price": 2.5,
        "sequence_number": 1000 + offset,
        "sip_timestamp": ts_ns,
        "size": 430,
    }


def _page(results, cursor=None, status="OK") -> PullPage:
    return PullPage(status=status, results=list(results), next_cursor=cursor)


@pytest.fixture
def sleep() -> Mock:
    return Mock()


def _client(contracts=(AAPL_CALL,)) -> Mock:
    client = Mock()
    client.list_contracts.return_value = list(contracts)
    return client


def _coordinator(pipeline, client, sleep, **params) -> BackfillCoordinator:
    base = {"tracked_tickers": ("AAPL",)}
    base.update(params)
    return BackfillCoordinator(
        pipeline,
        params=BackfillParams(**base),
        client=client,
        api_key="key",
        sleep=sleep,
    )


class TestContractDiscovery:
    """Test contract listing ahead of trade pagination."""

    def test_contracts_listed_per_ticker(self, pipeline, sleep) -> None:
        client = _client([AAPL_CALL, AAPL_PUT])
        client.fetch_page.return_value = _page([_event()])

        report = _coordinator(pipeline, client, sleep).trigger(now=NOW)

        client.list_contracts.assert_called_once_with("AAPL", date(2025, 12, 1))
        assert [c.args[0] for c in client.fetch_page.call_args_list] == [AAPL_CALL, AAPL_PUT]
        progress = report.tickers[0]
        assert progress.stop_reason == StopReason.COMPLETED
        assert [c.contract for c in progress.contracts] == [AAPL_CALL, AAPL_PUT]
        assert progress.ingested == 2
        assert sleep.call_args_list == [call(0.15)]

    def test_contract_stamped_on_results(self, pipeline, sleep) -> None:
        """Test events without an identifier take the contract they were fetched for."""
        client = _client([AAPL_PUT])
        client.fetch_page.return_value = _page([_event()])

        report = _coordinator(pipeline, client, sleep).trigger(now=NOW)

        assert report.total_ingested == 1
        stored = pipeline.latest("AAPL")[0]
        assert stored.trade.contract_symbol == AAPL_PUT
        assert stored.trade.source == "backfill"
        assert stored.trade.premium == 107500

    def test_existing_identifier_kept(self) -> None:
        event = {"sym": AAPL_CALL, "p": 1.0}
        assert with_contract_identifier(event, AAPL_PUT) is event
        assert with_contract_identifier({"p": 1.0}, AAPL_PUT) == {"p": 1.0, "ticker": AAPL_PUT}

    def test_no_contracts_skips_ticker(self, pipeline, sleep) -> None:
        client = _client([])

        report = _coordinator(pipeline, client, sleep).trigger(now=NOW)

        assert report.tickers[0].stop_reason == StopReason.NO_CONTRACTS
        assert report.failed_tickers == []
        client.fetch_page.assert_not_called()

    def test_listing_failure_moves_to_next_ticker(self, pipeline, sleep) -> None:
        client = Mock()
        client.list_contracts.side_effect = [
            SourceUnavailableError("HTTP 503", ticker="AAPL", page=1, status=503),
            ["O:MSFT251219C00400000"],
        ]
        client.fetch_page.return_value = _page([_event()])
        coordinator = _coordinator(pipeline, client, sleep, tracked_tickers=("AAPL", "MSFT"))

        report = coordinator.trigger(now=NOW)

        assert report.failed_tickers == ["AAPL"]
        assert "503" in report.tickers[0].error
        assert report.tickers[1].ingested == 1
        assert pipeline.latest("MSFT")[0].trade.contract_symbol == "O:MSFT251219C00400000"


class TestPagination:
    """Test per-contract pagination rules."""

    def test_follows_cursor_until_exhausted(self, pipeline, sleep) -> None:
        client = _client()
        client.fetch_page.side_effect = [
            PullPage(status="OK", results=[_event(1), _event(2)], next_cursor="https://next/1",
                     host="https://api.polygon.io"),
            _page([_event(3)]),
        ]
        coordinator = _coordinator(pipeline, client, sleep)

        report = coordinator.trigger(now=NOW)

        contract = report.tickers[0].contracts[0]
        assert contract.pages_fetched == 2
        assert contract.ingested == 3
        assert contract.stop_reason == StopReason.EXHAUSTED
        second = client.fetch_page.call_args_list[1].kwargs
        assert second["cursor"] == "https://next/1"
        assert second["page"] == 2
        assert second["host"] == "https://api.polygon.io"
        sleep.assert_called_once_with(0.1)

    def test_page_cap_bounds_infinite_cursor(self, pipeline, sleep) -> None:
        """Test a cursor that never ends stops at max_pages."""
        client = _client()
        client.fetch_page.return_value = _page([_event()], cursor="https://next/again")
        coordinator = _coordinator(pipeline, client, sleep, max_pages=5)

        report = coordinator.trigger(now=NOW)

        assert client.fetch_page.call_count == 5
        assert report.tickers[0].pages_fetched == 5
        assert report.tickers[0].contracts[0].stop_reason == StopReason.PAGE_CAP

    def test_empty_page_stops_contract(self, pipeline, sleep) -> None:
        client = _client()
        client.fetch_page.return_value = _page([], cursor="https://next/1")

        report = _coordinator(pipeline, client, sleep).trigger(now=NOW)

        assert client.fetch_page.call_count == 1
        assert report.tickers[0].contracts[0].stop_reason == StopReason.EMPTY_PAGE

    def test_non_ok_status_stops_contract(self, pipeline, sleep) -> None:
        client = _client([AAPL_CALL, AAPL_PUT])
        client.fetch_page.side_effect = [_page([_event()], status="ERROR"), _page([_event()])]

        report = _coordinator(pipeline, client, sleep).trigger(now=NOW)

        progress = report.tickers[0]
        assert progress.contracts[0].stop_reason == StopReason.SOURCE_ERROR
        assert progress.contract_errors == 1
        assert progress.ingested == 1
        assert progress.succeeded

    def test_events_go_through_ingest_path(self, pipeline, sleep) -> None:
        """Test backfilled events are stored exactly like push events."""
        client = _client()
        client.fetch_page.return_value = _page([_event(), {"price": 1.0, "size": 1, "ticker": ""}])

        report = _coordinator(pipeline, client, sleep).trigger(now=NOW)

        assert report.tickers[0].ingested == 1
        assert report.tickers[0].failed == 1


class TestRunIsolation:
    """Test one failure never aborts the run."""

    def test_failed_contract_moves_to_next(self, pipeline, sleep) -> None:
        client = Mock()
        client.list_contracts.side_effect = [[AAPL_CALL], ["O:MSFT251219C00400000"], ["O:NVDA251219C00180000"]]
        client.fetch_page.side_effect = [
            SourceUnavailableError("HTTP 503", ticker=AAPL_CALL, page=1, status=503),
            _page([_event()]),
            RuntimeError("socket closed"),
        ]
        coordinator = _coordinator(pipeline, client, sleep, tracked_tickers=("AAPL", "MSFT", "NVDA"))

        report = coordinator.trigger(now=NOW)

        assert [t.ticker for t in report.tickers] == ["AAPL", "MSFT", "NVDA"]
        assert [t.contract_errors for t in report.tickers] == [1, 0, 1]
        assert report.total_ingested == 1
        assert "503" in report.tickers[0].contracts[0].error
        assert not coordinator.is_running

    def test_out_of_range_timestamp_does_not_abort_run(self, pipeline, sleep) -> None:
        """Test an event whose timestamp overflows the datetime range stays per-event."""
        client = Mock()
        client.list_contracts.side_effect = [[AAPL_CALL], ["O:MSFT251219C00400000"]]
        client.fetch_page.side_effect = [
            _page([_event(ts_ns=10**30), _event(1)]),
            _page([_event(2)]),
        ]
        coordinator = _coordinator(pipeline, client, sleep, tracked_tickers=("AAPL", "MSFT"))

        report = coordinator.trigger(now=NOW)

        assert client.fetch_page.call_count == 2
        assert report.ingested_by_ticker == {"AAPL": 2, "MSFT": 1}
        assert not coordinator.is_running

    def test_delay_between_tickers(self, pipeline, sleep) -> None:
        client = _client()
        client.fetch_page.return_value = _page([])
        coordinator = _coordinator(pipeline, client, sleep, tracked_tickers=("AAPL", "MSFT", "NVDA"))

        coordinator.trigger(now=NOW)

        assert sleep.call_args_list == [call(0.5), call(0.5)]


class TestTriggerGuards:
    """Test the non-overlapping trigger and configuration guards."""

    def test_trigger_while_running_is_noop(self, pipeline, sleep) -> None:
        client = _client()
        coordinator = _coordinator(pipeline, client, sleep)
        coordinator.machine.begin("scheduled")

        assert coordinator.trigger(now=NOW) is None
        client.list_contracts.assert_not_called()
        client.fetch_page.assert_not_called()

    def test_missing_api_key_disables_run(self, pipeline, sleep, monkeypatch) -> None:
        monkeypatch.delenv("POLYGON_API_KEY", raising=False)
        coordinator = BackfillCoordinator(pipeline, params=BackfillParams(), sleep=sleep)

        assert coordinator.client is None
        assert coordinator.trigger(now=NOW) is None

    def test_api_key_read_from_environment(self, pipeline, sleep, monkeypatch) -> None:
        monkeypatch.setenv("POLYGON_API_KEY", "from-env")
        coordinator = BackfillCoordinator(pipeline, params=BackfillParams(), sleep=sleep)

        assert coordinator.client is not None
        assert coordinator.client.api_key == "from-env"

    def test_disabled_backfill(self, pipeline, sleep) -> None:
        client = _client()
        coordinator = _coordinator(pipeline, client, sleep, enabled=False)

        assert coordinator.trigger(now=NOW) is None
        client.fetch_page.assert_not_called()


class TestWindows:
    """Test the publication-delay aligned fetch windows."""

    def test_scheduled_window(self, pipeline, sleep) -> None:
        coordinator = _coordinator(pipeline, _client(), sleep)
        start, end = coordinator.window(NOW)

        assert end == NOW - timedelta(minutes=15)
        assert start == end - timedelta(minutes=120)

    def test_manual_backfill_window(self, pipeline, sleep) -> None:
        client = _client()
        client.fetch_page.return_value = _page([])
        coordinator = _coordinator(pipeline, client, sleep, tracked_tickers=("SPY",))

        report = coordinator.manual_backfill("nvda", hours_back=3, now=NOW)

        assert [t.ticker for t in report.tickers] == ["NVDA"]
        assert report.window_end - report.window_start == timedelta(hours=3)
        assert client.list_contracts.call_args.args[0] == "NVDA"
        args = client.fetch_page.call_args.args
        assert args[0] == AAPL_CALL
        assert args[2] - args[1] == 3 * 3600 * 1000


class TestHistoricalLoad:
    """Test the chunked historical backfill."""

    def test_day_chunks_newest_first(self, pipeline, sleep) -> None:
        client = _client()
        client.fetch_page.return_value = _page([])
        coordinator = _coordinator(pipeline, client, sleep, tracked_tickers=("AAPL", "SPY"))

        report = coordinator.load_history(3, now=NOW)

        end = NOW - timedelta(minutes=15)
        assert [(t.ticker, t.window_end) for t in report.tickers] == [
            ("AAPL", end), ("AAPL", end - timedelta(days=1)), ("AAPL", end - timedelta(days=2)),
            ("SPY", end), ("SPY", end - timedelta(days=1)), ("SPY", end - timedelta(days=2)),
        ]
        assert all(t.window_end - t.window_start == timedelta(hours=24) for t in report.tickers)
        assert report.window_start == end - timedelta(days=3)
        assert sleep.call_args_list == [call(1.0)] * 5
        assert [c.args[1] for c in client.list_contracts.call_args_list][:3] == [
            date(2025, 12, 1), date(2025, 11, 30), date(2025, 11, 29)
        ]

    def test_totals_per_ticker(self, pipeline, sleep) -> None:
        client = _client()
        client.fetch_page.return_value = _page([_event()])
        coordinator = _coordinator(pipeline, client, sleep)

        report = coordinator.load_history(2, now=NOW)

        assert report.ingested_by_ticker == {"AAPL": 2}

    def test_invalid_days(self, pipeline, sleep) -> None:
        with pytest.raises(ValueError):
            _coordinator(pipeline, _client(), sleep).load_history(0, now=NOW)

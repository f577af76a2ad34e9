"""
Pull-feed HTTP client.

Two endpoints are used: the options contract reference listing, which maps an
underlying ticker to the contracts worth backfilling, and the per-contract
trades endpoint, paginated with a provider-supplied cursor URL. A 404 from a
configured host on a first request is retried once on the primary provider
host.
"""

import socket
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode, urlparse
from urllib.request import Request, urlopen

import orjson
import structlog

from ..config.defaults import BackfillParams
from ..data.parsers import parse_expiry
from ..errors import SourceUnavailableError

PROVIDER_HOST = "https://api.polygon.io"
SUCCESS_STATUS = "OK"
NOT_FOUND = 404


@dataclass(frozen=True)
class PullPage:
    """One page of the pull-feed response contract."""
    status: str
    results: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None
    host: Optional[str] = None          # Host that served the page; cursors stay on it

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS_STATUS


class PullFeedClient:
    """Lists contracts and fetches one page of raw trade events per call."""

    def __init__(self, api_key: str, params: Optional[BackfillParams] = None):
        self.params = params or BackfillParams()
        self.api_key = api_key
        self.logger = structlog.get_logger(__name__)

        for url in (self.params.base_url, self.params.reference_base_url):
            parsed = urlparse(url)
            if not parsed.scheme or not parsed.netloc:
                raise ValueError(f"Invalid base URL: {url}")

    def build_contracts_url(self, underlying: str, as_of: date,
                            host: Optional[str] = None) -> str:
        """Reference listing URL for unexpired contracts of an underlying."""
        query = urlencode({
            "underlying_ticker": underlying,
            "as_of": as_of.isoformat(),
            "expired": "false",
            "order": "asc",
            "sort": "expiration_date",
            "limit": self.params.contracts_per_ticker * 2,
            "apiKey": self.api_key,
        })
        base = (host or self.params.reference_base_url).rstrip("/")
        return f"{base}/v3/reference/options/contracts?{query}"

    def build_url(self, ticker: str, start_ms: int, end_ms: int,
                  host: Optional[str] = None) -> str:
        """First-page trades URL for a contract window, bounds in nanoseconds."""
        query = urlencode({
            "timestamp.gte": start_ms * 1_000_000,
            "timestamp.lte": end_ms * 1_000_000,
            "order": "asc",
            "sort": "timestamp",
            "limit": self.params.page_limit,
            "apiKey": self.api_key,
        })
        base = (host or self.params.base_url).rstrip("/")
        return f"{base}/v3/trades/{quote(ticker)}?{query}"

    def resolve_cursor(self, cursor: str, host: Optional[str] = None) -> str:
        """Point a provider next-page URL at the serving host and re-attach the key."""
        url = cursor
        base = (host or self.params.base_url).rstrip("/")
        if url.startswith(PROVIDER_HOST):
            url = base + url[len(PROVIDER_HOST):]
        if "apiKey=" not in url:
            url += ("&" if "?" in url else "?") + urlencode({"apiKey": self.api_key})
        return url

    def list_contracts(self, underlying: str, as_of: date,
                       host: Optional[str] = None) -> list[str]:
        """
        Contracts of an underlying expiring within ``contract_max_dte`` days of ``as_of``.

        Returns:
            At most ``contracts_per_ticker`` contract identifiers, nearest expiry first

        Raises:
            SourceUnavailableError: HTTP failure, timeout, non-OK status or malformed body
        """
        host = host or self.params.reference_base_url
        url = self.build_contracts_url(underlying, as_of, host)

        try:
            body = self._get(url, underlying, page=1)
        except SourceUnavailableError as e:
            if e.status == NOT_FOUND and not self._is_primary(host):
                self.logger.info("Retrying contract listing on primary host", ticker=underlying)
                return self.list_contracts(underlying, as_of, host=PROVIDER_HOST)
            raise

        listing = self._decode_page(body, underlying, page=1, host=host)
        if not listing.ok:
            raise SourceUnavailableError(
                f"Contract listing status {listing.status}", ticker=underlying, page=1
            )

        max_expiry = as_of + timedelta(days=self.params.contract_max_dte)
        contracts = []
        for entry in listing.results:
            if len(contracts) >= self.params.contracts_per_ticker:
                break
            symbol = entry.get("ticker")
            expiry = parse_expiry(entry.get("expiration_date"))
            if not symbol or expiry is None:
                continue
            if expiry <= max_expiry:
                contracts.append(str(symbol))

        self.logger.info(
            "Contracts selected",
            ticker=underlying,
            listed=len(listing.results),
            selected=len(contracts),
            max_dte=self.params.contract_max_dte
        )
        return contracts

    def fetch_page(
        self,
        ticker: str,
        start_ms: int,
        end_ms: int,
        cursor: Optional[str] = None,
        page: int = 1,
        host: Optional[str] = None
    ) -> PullPage:
        """
        Fetch one page of trades for a contract window.

        Args:
            ticker: Option contract identifier
            start_ms: Window start, epoch ms
            end_ms: Window end, epoch ms
            cursor: next-page URL from the previous page, if any
            page: 1-based page number for error reporting
            host: Host that served the previous page; defaults to ``base_url``

        Returns:
            Decoded page. A 404 on the first page of the primary host means the
            contract has no trades and yields an empty OK page.

        Raises:
            SourceUnavailableError: HTTP failure, timeout or malformed body
        """
        host = host or self.params.base_url
        if cursor:
            url = self.resolve_cursor(cursor, host)
        else:
            url = self.build_url(ticker, start_ms, end_ms, host)

        try:
            body = self._get(url, ticker, page)
        except SourceUnavailableError as e:
            if e.status != NOT_FOUND or cursor or page != 1:
                raise
            if not self._is_primary(host):
                self.logger.info("Retrying trades on primary host", ticker=ticker)
                return self.fetch_page(ticker, start_ms, end_ms, page=page, host=PROVIDER_HOST)
            self.logger.debug("No trades found", ticker=ticker)
            return PullPage(status=SUCCESS_STATUS, host=host)

        return self._decode_page(body, ticker, page, host)

    @staticmethod
    def _is_primary(host: str) -> bool:
        return host.rstrip("/") == PROVIDER_HOST

    def _get(self, url: str, ticker: str, page: int) -> bytes:
        req = Request(url, headers={"Accept": "application/json", "User-Agent": "flow-app/1.0"})

        try:
            with urlopen(req, timeout=self.params.read_timeout_seconds) as response:
                status_code = response.getcode()
                body = response.read()

        except HTTPError as e:
            self.logger.warning(
                "Pull feed HTTP error",
                ticker=ticker,
                page=page,
                error_code=e.code,
                error_reason=str(e.reason)
            )
            raise SourceUnavailableError(
                f"HTTP {e.code}: {e.reason}", ticker=ticker, page=page, status=e.code
            ) from e

        except (OSError, URLError, socket.timeout) as e:
            self.logger.warning(
                "Pull feed network error",
                ticker=ticker,
                page=page,
                error=str(e)
            )
            raise SourceUnavailableError(
                f"Network error: {e}", ticker=ticker, page=page
            ) from e

        if not 200 <= status_code < 300:
            raise SourceUnavailableError(
                f"HTTP {status_code}", ticker=ticker, page=page, status=status_code
            )
        return body

    def _decode_page(self, body: bytes, ticker: str, page: int,
                     host: Optional[str] = None) -> PullPage:
        try:
            root = orjson.loads(body)
        except orjson.JSONDecodeError as e:
            raise SourceUnavailableError(
                f"Malformed response: {e}", ticker=ticker, page=page
            ) from e

        if not isinstance(root, dict):
            raise SourceUnavailableError(
                "Malformed response: expected JSON object", ticker=ticker, page=page
            )

        results = root.get("results") or []
        if not isinstance(results, list):
            raise SourceUnavailableError(
                "Malformed response: results is not a list", ticker=ticker, page=page
            )

        return PullPage(
            status=str(root.get("status", "UNKNOWN")),
            results=[r for r in results if isinstance(r, dict)],
            next_cursor=root.get("next_url") or None,
            host=host,
        )

"""
Recovery strategy classifications for error handling.

These categorize errors by their recovery characteristics and guide how
producers react to them.
"""

from typing import Optional


class RecoverableError(Exception):
    """Errors that can be recovered from automatically."""

    def __init__(self, message: str, retry_count: int = 0,
                 max_retries: int = 3, **kwargs):
        super().__init__(message)
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.recoverable = True


class SourceUnavailableError(RecoverableError):
    """A pull-feed page could not be fetched or decoded."""

    def __init__(self, message: str, ticker: Optional[str] = None,
                 page: Optional[int] = None, status: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.ticker = ticker
        self.page = page
        self.status = status

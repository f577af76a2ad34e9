"""
Data quality error classifications for trade payload ingestion.

These exceptions categorize problems found in a single raw payload. They are
always scoped to that one item and never abort a batch.
"""

from typing import Any, Optional


class DataQualityError(Exception):
    """Base class for data quality issues that can be handled gracefully."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = True


class MissingDataError(DataQualityError):
    """Required data is completely missing."""

    def __init__(self, message: str, data_type: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.data_type = data_type


class MalformedDataError(DataQualityError):
    """Data exists but is in incorrect format."""

    def __init__(self, message: str, raw_data: Optional[str] = None,
                 expected_format: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.raw_data = raw_data
        self.expected_format = expected_format


class RejectedInputError(MissingDataError):
    """Payload carries no usable contract identifier and cannot be stored."""

    def __init__(self, message: str, available_fields: Optional[list] = None, **kwargs):
        super().__init__(message, data_type="identifier", **kwargs)
        self.available_fields = available_fields or []

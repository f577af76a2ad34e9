"""
Error classification for the options flow pipeline.

Structured exception hierarchy covering rejected input, partial decodes,
unavailable upstream sources and system-level failures.
"""

from .data_quality import (
    DataQualityError,
    MalformedDataError,
    MissingDataError,
    RejectedInputError,
)
from .recovery import (
    RecoverableError,
    SourceUnavailableError,
)
from .system_failures import (
    ConfigurationError,
    PersistenceError,
    StateTransitionError,
    SystemFailureError,
)

__all__ = [
    # Data Quality Errors
    "DataQualityError",
    "MissingDataError",
    "MalformedDataError",
    "RejectedInputError",
    # System Failures
    "SystemFailureError",
    "StateTransitionError",
    "PersistenceError",
    "ConfigurationError",
    # Recovery Categories
    "RecoverableError",
    "SourceUnavailableError",
]

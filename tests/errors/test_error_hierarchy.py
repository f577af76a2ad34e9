"""Tests for the pipeline error hierarchy."""

import pytest

from flow_app.errors import (
    ConfigurationError,
    DataQualityError,
    MalformedDataError,
    MissingDataError,
    PersistenceError,
    RecoverableError,
    RejectedInputError,
    SourceUnavailableError,
    StateTransitionError,
    SystemFailureError,
)


class TestDataQualityErrors:
    """Per-payload errors are recoverable."""

    def test_rejected_input_is_missing_identifier(self) -> None:
        error = RejectedInputError("no symbol", available_fields=["p", "s"], context={"source": "push"})

        assert isinstance(error, MissingDataError)
        assert isinstance(error, DataQualityError)
        assert error.data_type == "identifier"
        assert error.available_fields == ["p", "s"]
        assert error.context == {"source": "push"}
        assert error.recoverable is True

    def test_malformed_data_keeps_raw(self) -> None:
        error = MalformedDataError("bad json", raw_data="{oops", expected_format="json")

        assert str(error) == "bad json"
        assert error.raw_data == "{oops"
        assert error.expected_format == "json"


class TestSystemFailures:
    """System failures are not recoverable."""

    @pytest.mark.parametrize("error_class", [
        StateTransitionError, PersistenceError, ConfigurationError
    ])
    def test_subclasses(self, error_class) -> None:
        error = error_class("failure")

        assert isinstance(error, SystemFailureError)
        assert error.recoverable is False
        assert error.context == {}

    def test_configuration_error_carries_field_errors(self) -> None:
        error = ConfigurationError("invalid", errors=["a", "b"])
        assert error.errors == ["a", "b"]

    def test_persistence_error_operation(self) -> None:
        error = PersistenceError("locked", operation="store_trade", target="flow.db")
        assert (error.operation, error.target) == ("store_trade", "flow.db")


class TestRecoverableErrors:
    """Upstream source failures."""

    def test_source_unavailable(self) -> None:
        error = SourceUnavailableError("HTTP 429", ticker="AAPL", page=2, status=429)

        assert isinstance(error, RecoverableError)
        assert error.recoverable is True
        assert (error.ticker, error.page, error.status) == ("AAPL", 2, 429)
        assert error.retry_count == 0

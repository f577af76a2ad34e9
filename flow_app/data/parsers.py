"""
Low-level parsers for raw trade payload values.

This module handles JSON decoding and the unit and type coercions the
normalizer applies to individual fields: epoch timestamps in mixed units,
decimal prices, integer sizes and ISO expiry dates.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

import orjson

# Epoch magnitude thresholds. A millisecond epoch stays below 10^14 until the
# year 5138, a microsecond epoch exceeds it from 1973 on, and a nanosecond
# epoch exceeds 10^17 from 1973 on.
NANOSECOND_THRESHOLD = 10**17
MICROSECOND_THRESHOLD = 10**14
# Largest epoch ms a datetime can hold (9999-12-31T23:59:59.999Z).
MAX_EPOCH_MS = 253_402_300_799_999


class ParseError(Exception):
    """Raised when parsing fails due to invalid data format."""
    pass


class InvalidTimestampError(ParseError):
    """Raised when timestamp data is invalid."""
    pass


class InvalidNumberError(ParseError):
    """Raised when a numeric field cannot be parsed."""
    pass


def parse_json_payload(raw: Union[str, bytes]) -> dict[str, Any]:
    """
    Decode a raw JSON trade payload.

    Raises:
        ParseError: If the text is not JSON or not a JSON object
    """
    if not raw:
        raise ParseError("Empty payload")

    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise ParseError(f"Payload must be a JSON object, got {type(payload).__name__}")

    return payload


def serialize_payload(payload: dict[str, Any]) -> str:
    """Serialize a decoded payload back to JSON text for raw storage."""
    try:
        return orjson.dumps(payload, default=str).decode("utf-8")
    except TypeError as e:
        raise ParseError(f"Payload not serializable: {e}") from e


def normalize_timestamp(value: Any) -> int:
    """
    Convert an epoch timestamp in ns, µs or ms to epoch milliseconds.

    The unit is detected by magnitude. Sub-millisecond digits are truncated.

    Raises:
        InvalidTimestampError: If the value is not a positive integer-like number
    """
    if isinstance(value, bool):
        raise InvalidTimestampError(f"Invalid timestamp: {value!r}")

    try:
        raw = int(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError, OverflowError) as e:
        raise InvalidTimestampError(f"Invalid timestamp: {value!r}") from e

    if raw <= 0:
        raise InvalidTimestampError(f"Timestamp must be positive: {raw}")

    if raw > NANOSECOND_THRESHOLD:
        epoch_ms = raw // 1_000_000
    elif raw > MICROSECOND_THRESHOLD:
        epoch_ms = raw // 1_000
    else:
        epoch_ms = raw

    if epoch_ms > MAX_EPOCH_MS:
        raise InvalidTimestampError(f"Timestamp out of range: {value!r}")
    return epoch_ms


def parse_decimal(value: Any) -> Decimal:
    """
    Parse a price, strike or premium value into a Decimal.

    Floats go through their shortest repr so 2.5 becomes Decimal("2.5").
    """
    if isinstance(value, bool):
        raise InvalidNumberError(f"Invalid number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise InvalidNumberError(f"Invalid number: {value!r}") from e

    if not result.is_finite():
        raise InvalidNumberError(f"Number must be finite: {value!r}")
    return result


def parse_optional_decimal(value: Any) -> Optional[Decimal]:
    """Parse a decimal, returning None instead of raising."""
    try:
        return parse_decimal(value)
    except InvalidNumberError:
        return None


def parse_size(value: Any) -> Optional[int]:
    """Parse a contract count; fractional or invalid values yield None."""
    number = parse_optional_decimal(value)
    if number is None or number != number.to_integral_value():
        return None
    return int(number)


def parse_expiry(value: Any) -> Optional[date]:
    """Parse an ISO ``YYYY-MM-DD`` expiry date, None if invalid."""
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None

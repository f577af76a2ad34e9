"""
Payload normalization pipeline for converting raw trade events to canonical Trades.

This module provides the PayloadNormalizer class that resolves the ordered
alias table against a raw payload, decodes the contract identifier, applies
explicit field overrides and computes premium.
"""

import hashlib
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

import structlog

from ..errors import MalformedDataError, RejectedInputError
from ..utils.time import from_epoch_ms, now_ms
from .aliases import MISSING, resolve_aliases
from .contracts import DEFAULT_PREFIX, ContractDecoder, ContractDecodeResult
from .models import DEFAULT_ACTION, OptionSide, Trade
from .parsers import (
    InvalidTimestampError,
    ParseError,
    normalize_timestamp,
    parse_expiry,
    parse_json_payload,
    parse_optional_decimal,
    parse_size,
    serialize_payload,
)

logger = structlog.get_logger(__name__)

CONTRACT_MULTIPLIER = Decimal(100)

RawPayload = Union[str, bytes, Mapping[str, Any]]


def compute_premium(price: Optional[Decimal], size: Optional[int],
                    explicit: Optional[Decimal]) -> Optional[Decimal]:
    """
    Premium is price x size x 100 when both are positive, else the explicit value.
    """
    if price is not None and size is not None and price > 0 and size > 0:
        return price * size * CONTRACT_MULTIPLIER
    return explicit


def trade_fingerprint(identifier: str, timestamp_ms: int, size: Optional[int],
                      price: Optional[Decimal]) -> str:
    """Content-derived idempotency key for cross-feed duplicate detection."""
    key_data = f"{identifier}:{timestamp_ms}:{size}:{price}"
    return hashlib.sha256(key_data.encode()).hexdigest()[:32]


class PayloadNormalizer:
    """
    Normalizes raw trade payloads from any feed into canonical Trades.

    Only a missing identifier rejects a payload. Every other unparseable
    field degrades to None on the stored trade.
    """

    def __init__(self, contract_prefix: str = DEFAULT_PREFIX):
        self.decoder = ContractDecoder(contract_prefix)
        self.logger = logger

    def normalize(self, raw: RawPayload, source: str) -> Trade:
        """
        Normalize one raw payload.

        Args:
            raw: JSON text/bytes or an already decoded mapping
            source: Provenance tag stored on the trade

        Returns:
            Canonical Trade

        Raises:
            RejectedInputError: No identifier alias is present
            MalformedDataError: Raw text is not a JSON object
        """
        payload, raw_text = self._decode(raw)
        fields = resolve_aliases(payload)

        identifier = fields["identifier"]
        if identifier is MISSING or not str(identifier).strip():
            raise RejectedInputError(
                "Missing option symbol - cannot ingest trade",
                available_fields=sorted(str(key) for key in payload),
                context={"source": source}
            )
        identifier = str(identifier).strip()

        timestamp_ms = self._resolve_timestamp(fields["timestamp"], identifier)
        contract = self.decoder.decode(identifier)
        if not contract.decoded:
            self.logger.debug(
                "Contract identifier not decoded",
                contract_symbol=identifier,
                reason=contract.reason
            )

        underlying, side, strike, expiry = self._apply_overrides(fields, contract)

        size = parse_size(fields["size"]) if fields["size"] is not MISSING else None
        price = parse_optional_decimal(fields["price"]) if fields["price"] is not MISSING else None
        explicit = parse_optional_decimal(fields["premium"]) if fields["premium"] is not MISSING else None

        action = DEFAULT_ACTION
        if fields["action"] is not MISSING and str(fields["action"]).strip():
            action = str(fields["action"]).strip().upper()

        return Trade(
            ts=from_epoch_ms(timestamp_ms),
            underlying=underlying,
            contract_symbol=identifier,
            side=side,
            strike=strike,
            expiry=expiry,
            premium=compute_premium(price, size, explicit),
            size=size,
            action=action,
            source=source,
            raw_payload=raw_text,
            fingerprint=trade_fingerprint(identifier, timestamp_ms, size, price),
        )

    def _decode(self, raw: RawPayload) -> tuple[Mapping[str, Any], str]:
        """Return the decoded mapping and the raw text to store verbatim."""
        if isinstance(raw, Mapping):
            try:
                return raw, serialize_payload(dict(raw))
            except ParseError as e:
                raise MalformedDataError(
                    f"Payload parse error: {e}",
                    raw_data=repr(raw)[:100],
                    expected_format="json object"
                ) from e

        raw_text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        try:
            payload = parse_json_payload(raw)
        except ParseError as e:
            raise MalformedDataError(
                f"Payload parse error: {e}",
                raw_data=(raw_text or "")[:100],
                expected_format="json object"
            ) from e
        return payload, raw_text

    def _resolve_timestamp(self, value: Any, identifier: str) -> int:
        """Provider timestamp in ms, processing time when absent or invalid."""
        if value is MISSING:
            return now_ms()
        try:
            return normalize_timestamp(value)
        except InvalidTimestampError as e:
            self.logger.warning(
                "Invalid trade timestamp - using processing time",
                contract_symbol=identifier,
                error=str(e)
            )
            return now_ms()

    def _apply_overrides(self, fields: dict[str, Any], contract: ContractDecodeResult):
        """Explicit payload fields win over decoded contract values."""
        underlying = contract.underlying
        side = contract.side
        strike = contract.strike
        expiry = contract.expiry

        if fields["underlying"] is not MISSING and str(fields["underlying"]).strip():
            underlying = str(fields["underlying"]).strip().upper()
        if fields["side"] is not MISSING:
            side = OptionSide.parse(fields["side"])
        if fields["strike"] is not MISSING:
            strike = parse_optional_decimal(fields["strike"])
        if fields["expiry"] is not MISSING:
            expiry = parse_expiry(fields["expiry"])

        return underlying, side, strike, expiry

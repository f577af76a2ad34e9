"""
Option contract identifier decoding.

Identifiers look like ``O:AAPL251219C00150000``: a prefix tag, the underlying
ticker (letters only), a YYMMDD expiry, a side character (C or P) and the
strike scaled by 1000 in eight digits.

Side detection scans for the first 'C' or 'P' after the leading letter run,
so tickers that contain C or P (CSCO, SPY, CRM) stay intact. Date and
strike are then read positionally around the side character; any slice that
falls outside the identifier, or is not all digits, makes the decode fail.

Decoding never raises. A failed decode returns ``UnparsedContract`` with the
identifier preserved and, where recoverable, the underlying ticker.
"""

import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from .models import OptionSide

DEFAULT_PREFIX = "O"
DATE_WIDTH = 6
STRIKE_WIDTH = 8
STRIKE_SCALE = Decimal(1000)

_LEADING_LETTERS = re.compile(r"[A-Z]+")


@dataclass(frozen=True)
class DecodedContract:
    """Fully decoded contract identifier."""
    symbol: str
    underlying: str
    side: OptionSide
    expiry: date
    strike: Decimal

    decoded = True


@dataclass(frozen=True)
class UnparsedContract:
    """Identifier that did not match the contract pattern."""
    symbol: str
    underlying: Optional[str]
    reason: str

    decoded = False
    side = None
    expiry = None
    strike = None


ContractDecodeResult = Union[DecodedContract, UnparsedContract]


def _underlying_hint(body: str, ticker_end: int) -> str:
    """Best-effort ticker for an identifier that failed to decode."""
    run = body[:ticker_end]
    rest = body[ticker_end:]
    # Date segment missing: the side letter sits directly after the ticker.
    if len(run) > 1 and run[-1] in ("C", "P") and len(rest) == STRIKE_WIDTH and rest.isdigit():
        return run[:-1]
    return run


def find_side_index(body: str, start: int) -> Optional[int]:
    """Index of the first 'C' or 'P' at or after ``start``, None if absent."""
    for index in range(start, len(body)):
        if body[index] in ("C", "P"):
            return index
    return None


def decode_contract(identifier: str, prefix: str = DEFAULT_PREFIX) -> ContractDecodeResult:
    """
    Decode an option contract identifier.

    Args:
        identifier: Opaque source identifier
        prefix: Expected prefix tag (without the colon)

    Returns:
        DecodedContract on success, UnparsedContract otherwise
    """
    symbol = identifier
    text = (identifier or "").strip().upper()
    tag = f"{prefix.upper()}:"

    if not text.startswith(tag):
        return UnparsedContract(symbol=symbol, underlying=None, reason="missing_prefix")

    body = text[len(tag):]
    letters = _LEADING_LETTERS.match(body)
    if not letters:
        return UnparsedContract(symbol=symbol, underlying=None, reason="missing_underlying")

    ticker_end = letters.end()
    hint = _underlying_hint(body, ticker_end)

    side_index = find_side_index(body, ticker_end)
    if side_index is None:
        return UnparsedContract(symbol=symbol, underlying=hint, reason="missing_side")

    date_start = side_index - DATE_WIDTH
    date_str = body[date_start:side_index] if date_start >= ticker_end else ""
    if date_start != ticker_end or len(date_str) != DATE_WIDTH or not date_str.isdigit():
        return UnparsedContract(symbol=symbol, underlying=hint, reason="missing_date")

    strike_str = body[side_index + 1:side_index + 1 + STRIKE_WIDTH]
    if len(strike_str) != STRIKE_WIDTH or not strike_str.isdigit():
        return UnparsedContract(symbol=symbol, underlying=hint, reason="missing_strike")
    if side_index + 1 + STRIKE_WIDTH != len(body):
        return UnparsedContract(symbol=symbol, underlying=hint, reason="trailing_characters")

    try:
        expiry = date(2000 + int(date_str[0:2]), int(date_str[2:4]), int(date_str[4:6]))
    except ValueError:
        return UnparsedContract(symbol=symbol, underlying=hint, reason="invalid_date")

    return DecodedContract(
        symbol=symbol,
        underlying=body[:ticker_end],
        side=OptionSide.CALL if body[side_index] == "C" else OptionSide.PUT,
        expiry=expiry,
        strike=Decimal(strike_str) / STRIKE_SCALE,
    )


class ContractDecoder:
    """Decoder bound to one prefix tag."""

    def __init__(self, prefix: str = DEFAULT_PREFIX):
        self.prefix = prefix

    def decode(self, identifier: str) -> ContractDecodeResult:
        return decode_contract(identifier, self.prefix)

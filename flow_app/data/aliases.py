"""
Ordered field alias table for raw trade payloads.

The push feed uses short field names, the pull feed long ones, and fixtures
still another set. Each logical attribute resolves to the first alias present
in the payload, highest priority first. The table is evaluated once per
payload by ``resolve_aliases``.
"""

from dataclasses import dataclass
from typing import Any, Mapping

MISSING = object()


@dataclass(frozen=True)
class FieldAlias:
    """Ordered aliases for one logical attribute."""
    attribute: str
    aliases: tuple[str, ...]


ALIAS_TABLE: tuple[FieldAlias, ...] = (
    FieldAlias("timestamp", ("sip_timestamp", "participant_timestamp", "t", "timestamp")),
    FieldAlias("identifier", ("option_symbol", "ticker", "sym", "symbol")),
    FieldAlias("underlying", ("underlying",)),
    FieldAlias("side", ("side", "type")),
    FieldAlias("strike", ("strike", "strike_price")),
    FieldAlias("expiry", ("expiry", "expiration_date")),
    FieldAlias("size", ("size", "s")),
    FieldAlias("price", ("price", "p")),
    FieldAlias("premium", ("premium",)),
    FieldAlias("action", ("action",)),
)


def resolve_aliases(payload: Mapping[str, Any]) -> dict[str, Any]:
    """
    Resolve every attribute of the alias table against a payload.

    Explicit JSON nulls count as absent. Attributes with no alias present map
    to ``MISSING``.
    """
    resolved: dict[str, Any] = {}
    for entry in ALIAS_TABLE:
        resolved[entry.attribute] = MISSING
        for alias in entry.aliases:
            value = payload.get(alias)
            if value is not None:
                resolved[entry.attribute] = value
                break
    return resolved


def aliases_for(attribute: str) -> tuple[str, ...]:
    """Aliases for an attribute, highest priority first."""
    for entry in ALIAS_TABLE:
        if entry.attribute == attribute:
            return entry.aliases
    raise KeyError(attribute)

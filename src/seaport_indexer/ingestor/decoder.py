"""Decode raw Seaport log events into closed event variants.

The log source hands over an untyped argument bag. Every field is validated
here, once; downstream stages rely on the variant types alone.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

from eth_utils import is_hexstr
from web3 import Web3

from seaport_indexer.ingestor.models import (
    ConsiderationItem,
    DecodedEvent,
    ItemType,
    OfferItem,
    OrderCancelled,
    OrderFulfilled,
    OrderValidated,
    RawEvent,
)

UINT256_MAX = 2**256 - 1

_ITEM_FIELDS = ("itemType", "token", "identifier", "amount")
_CONSIDERATION_FIELDS = (*_ITEM_FIELDS, "recipient")


class DecodeError(ValueError):
    """Raised when a raw event has an unknown name or malformed arguments."""

    def __init__(self, message: str, *, event_name: str = "") -> None:
        super().__init__(message)
        self.event_name = event_name


def _hex_bytes(value: Any, *, length: int, field: str) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        if len(raw) != length:
            raise DecodeError(f"{field}: expected {length} bytes, got {len(raw)}")
        return "0x" + raw.hex()
    if isinstance(value, str):
        text = value.lower()
        if not text.startswith("0x"):
            raise DecodeError(f"{field}: expected 0x-prefixed hex, got {value!r}")
        if len(text) != 2 + length * 2:
            raise DecodeError(f"{field}: expected {length} bytes, got {value!r}")
        valid = Web3.is_address(text) if length == 20 else is_hexstr(text)
        if not valid:
            raise DecodeError(f"{field}: invalid hex {value!r}")
        return text
    raise DecodeError(f"{field}: unsupported type {type(value).__name__}")


def _address(value: Any, field: str) -> str:
    return _hex_bytes(value, length=20, field=field)


def _bytes32(value: Any, field: str) -> str:
    return _hex_bytes(value, length=32, field=field)


def _uint(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise DecodeError(f"{field}: boolean is not an integer")
    if isinstance(value, int):
        as_int = value
    elif isinstance(value, str):
        try:
            as_int = int(value, 0)
        except ValueError:
            raise DecodeError(f"{field}: invalid integer {value!r}") from None
    else:
        raise DecodeError(f"{field}: unsupported type {type(value).__name__}")
    if as_int < 0 or as_int > UINT256_MAX:
        raise DecodeError(f"{field}: out of uint256 range")
    return as_int


def _item_type(value: Any, field: str) -> ItemType:
    raw = _uint(value, field)
    try:
        return ItemType(raw)
    except ValueError:
        raise DecodeError(f"{field}: unknown item type {raw}") from None


def _item_values(entry: Any, names: tuple[str, ...], field: str) -> list[Any]:
    """Accept an item as a mapping keyed by ABI name or as a positional tuple."""
    if isinstance(entry, Mapping):
        try:
            return [entry[name] for name in names]
        except KeyError as e:
            raise DecodeError(f"{field}: missing {e.args[0]!r}") from None
    if isinstance(entry, Sequence) and not isinstance(entry, (str, bytes)):
        if len(entry) != len(names):
            raise DecodeError(f"{field}: expected {len(names)} components, got {len(entry)}")
        return list(entry)
    raise DecodeError(f"{field}: unsupported item type {type(entry).__name__}")


def _items(value: Any, field: str) -> list[Any]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise DecodeError(f"{field}: expected an array")
    return list(value)


def decode_offer_item(entry: Any, field: str = "offer") -> OfferItem:
    item_type, token, identifier, amount = _item_values(entry, _ITEM_FIELDS, field)
    return OfferItem(
        item_type=_item_type(item_type, f"{field}.itemType"),
        token=_address(token, f"{field}.token"),
        identifier=_uint(identifier, f"{field}.identifier"),
        amount=_uint(amount, f"{field}.amount"),
    )


def decode_consideration_item(entry: Any, field: str = "consideration") -> ConsiderationItem:
    item_type, token, identifier, amount, recipient = _item_values(entry, _CONSIDERATION_FIELDS, field)
    return ConsiderationItem(
        item_type=_item_type(item_type, f"{field}.itemType"),
        token=_address(token, f"{field}.token"),
        identifier=_uint(identifier, f"{field}.identifier"),
        amount=_uint(amount, f"{field}.amount"),
        recipient=_address(recipient, f"{field}.recipient"),
    )


def _arg(args: Mapping[str, Any], name: str) -> Any:
    try:
        return args[name]
    except KeyError:
        raise DecodeError(f"missing argument {name!r}") from None


def _decode_fulfilled(args: Mapping[str, Any]) -> OrderFulfilled:
    offer = _items(_arg(args, "offer"), "offer")
    consideration = _items(_arg(args, "consideration"), "consideration")
    return OrderFulfilled(
        order_hash=_bytes32(_arg(args, "orderHash"), "orderHash"),
        offerer=_address(_arg(args, "offerer"), "offerer"),
        zone=_address(_arg(args, "zone"), "zone"),
        recipient=_address(_arg(args, "recipient"), "recipient"),
        offer_items=tuple(decode_offer_item(e, f"offer[{i}]") for i, e in enumerate(offer)),
        consideration_items=tuple(
            decode_consideration_item(e, f"consideration[{i}]") for i, e in enumerate(consideration)
        ),
    )


def _decode_validated(args: Mapping[str, Any]) -> OrderValidated:
    return OrderValidated(
        order_hash=_bytes32(_arg(args, "orderHash"), "orderHash"),
        offerer=_address(_arg(args, "offerer"), "offerer"),
        zone=_address(_arg(args, "zone"), "zone"),
    )


def _decode_cancelled(args: Mapping[str, Any]) -> OrderCancelled:
    return OrderCancelled(
        order_hash=_bytes32(_arg(args, "orderHash"), "orderHash"),
        offerer=_address(_arg(args, "offerer"), "offerer"),
        zone=_address(_arg(args, "zone"), "zone"),
    )


DECODERS: dict[str, Callable[[Mapping[str, Any]], DecodedEvent]] = {
    OrderFulfilled.name: _decode_fulfilled,
    OrderValidated.name: _decode_validated,
    OrderCancelled.name: _decode_cancelled,
}


def decode_event(raw: RawEvent) -> DecodedEvent:
    """Decode a raw event into its closed variant.

    Args:
        raw: Event name, argument bag and block context from the log source.

    Returns:
        OrderFulfilled, OrderValidated or OrderCancelled.

    Raises:
        DecodeError: If the name is unknown or any argument is malformed.
    """
    decoder = DECODERS.get(raw.name)
    if decoder is None:
        raise DecodeError(f"unknown event {raw.name!r}", event_name=raw.name)
    if not isinstance(raw.args, Mapping):
        raise DecodeError(f"{raw.name}: arguments must be a mapping", event_name=raw.name)
    try:
        return decoder(raw.args)
    except DecodeError as e:
        raise DecodeError(f"{raw.name}: {e}", event_name=raw.name) from e

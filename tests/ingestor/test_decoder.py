"""Tests for raw event decoding."""

import pytest
from conftest import (
    BUYER,
    COLLECTION,
    SELLER,
    ZONE,
    cancelled_event,
    consideration_item,
    fulfilled_event,
    make_context,
    offer_item,
    order_hash,
    validated_event,
)

from seaport_indexer.ingestor.decoder import (
    UINT256_MAX,
    DecodeError,
    decode_consideration_item,
    decode_event,
    decode_offer_item,
)
from seaport_indexer.ingestor.models import (
    ItemType,
    OrderCancelled,
    OrderFulfilled,
    OrderValidated,
    RawEvent,
)


class TestDecodeEvent:
    """Tests for decode_event."""

    def test_fulfilled(self) -> None:
        event = decode_event(fulfilled_event(1, price=123))
        assert isinstance(event, OrderFulfilled)
        assert event.order_hash == order_hash(1)
        assert event.offerer == SELLER
        assert event.recipient == BUYER
        assert event.offer_items[0].item_type is ItemType.ERC721
        assert event.offer_items[0].token == COLLECTION
        assert event.consideration_items[0].amount == 123
        assert event.consideration_items[0].recipient == SELLER

    def test_validated(self) -> None:
        event = decode_event(validated_event(2))
        assert isinstance(event, OrderValidated)
        assert event.zone == ZONE

    def test_cancelled(self) -> None:
        event = decode_event(cancelled_event(3))
        assert isinstance(event, OrderCancelled)
        assert event.offerer == SELLER

    def test_addresses_are_lowercased(self) -> None:
        raw = validated_event(4, offerer="0x" + "AB" * 20)
        assert decode_event(raw).offerer == "0x" + "ab" * 20

    def test_bytes_values_accepted(self) -> None:
        raw = RawEvent(
            name="OrderCancelled",
            args={"orderHash": b"\x01" * 32, "offerer": b"\xaa" * 20, "zone": b"\x00" * 20},
            context=make_context(5),
        )
        event = decode_event(raw)
        assert event.order_hash == "0x" + "01" * 32
        assert event.offerer == SELLER

    def test_positional_item_tuples_accepted(self) -> None:
        raw = fulfilled_event(
            6,
            offer=[(2, COLLECTION, 9, 1)],  # type: ignore[list-item]
            consideration=[(0, ZONE, 0, 50, SELLER)],  # type: ignore[list-item]
        )
        event = decode_event(raw)
        assert event.offer_items[0].identifier == 9
        assert event.consideration_items[0].amount == 50

    def test_empty_arrays_are_valid(self) -> None:
        event = decode_event(fulfilled_event(7, offer=[], consideration=[]))
        assert event.offer_items == ()
        assert event.consideration_items == ()

    def test_unknown_event_name(self) -> None:
        raw = RawEvent(name="CounterIncremented", args={}, context=make_context(8))
        with pytest.raises(DecodeError) as exc_info:
            decode_event(raw)
        assert exc_info.value.event_name == "CounterIncremented"

    def test_missing_argument(self) -> None:
        raw = RawEvent(name="OrderValidated", args={"orderHash": order_hash(1), "zone": ZONE}, context=make_context(9))
        with pytest.raises(DecodeError, match="offerer"):
            decode_event(raw)

    def test_short_address_rejected(self) -> None:
        with pytest.raises(DecodeError, match="offerer"):
            decode_event(validated_event(10, offerer="0x1234"))

    def test_non_hex_order_hash_rejected(self) -> None:
        raw = RawEvent(
            name="OrderCancelled",
            args={"orderHash": "0x" + "z" * 64, "offerer": SELLER, "zone": ZONE},
            context=make_context(11),
        )
        with pytest.raises(DecodeError, match="orderHash"):
            decode_event(raw)

    def test_underscore_grouped_address_rejected(self) -> None:
        offerer = "0x" + "a" + "_a" * 19 + "a"
        raw = RawEvent(
            name="OrderCancelled",
            args={"orderHash": order_hash(13), "offerer": offerer, "zone": ZONE},
            context=make_context(13),
        )
        with pytest.raises(DecodeError, match="offerer"):
            decode_event(raw)

    @pytest.mark.parametrize("value", ["0x" + "1_" * 32, "0x" + " 1" * 32, "0x" + "+" + "1" * 63])
    def test_malformed_order_hash_rejected(self, value: str) -> None:
        raw = RawEvent(
            name="OrderCancelled",
            args={"orderHash": value, "offerer": SELLER, "zone": ZONE},
            context=make_context(14),
        )
        with pytest.raises(DecodeError, match="orderHash"):
            decode_event(raw)

    def test_checksummed_address_accepted(self) -> None:
        checksummed = "0x52908400098527886E0F7030069857D2E4169EE7"
        event = decode_event(validated_event(15, offerer=checksummed))
        assert event.offerer == checksummed.lower()

    def test_offer_must_be_array(self) -> None:
        raw = fulfilled_event(12)
        args = dict(raw.args)
        args["offer"] = "not-a-list"
        with pytest.raises(DecodeError, match="offer"):
            decode_event(RawEvent(name=raw.name, args=args, context=raw.context))


class TestDecodeItems:
    """Tests for item-level validation."""

    def test_unknown_item_type(self) -> None:
        with pytest.raises(DecodeError, match="unknown item type 6"):
            decode_offer_item({"itemType": 6, "token": COLLECTION, "identifier": 0, "amount": 1})

    def test_negative_amount(self) -> None:
        with pytest.raises(DecodeError, match="uint256"):
            decode_offer_item(offer_item(ItemType.ERC721, COLLECTION, amount=-1))

    def test_amount_above_uint256(self) -> None:
        with pytest.raises(DecodeError, match="uint256"):
            decode_offer_item(offer_item(ItemType.ERC721, COLLECTION, amount=UINT256_MAX + 1))

    def test_uint256_max_accepted(self) -> None:
        item = decode_consideration_item(consideration_item(ItemType.NATIVE, ZONE, UINT256_MAX, SELLER))
        assert item.amount == UINT256_MAX

    def test_boolean_rejected(self) -> None:
        with pytest.raises(DecodeError, match="boolean"):
            decode_offer_item(offer_item(ItemType.ERC721, COLLECTION, amount=True))

    def test_numeric_strings_accepted(self) -> None:
        item = decode_offer_item({"itemType": "2", "token": COLLECTION, "identifier": "0x10", "amount": "1"})
        assert item.identifier == 16

    def test_consideration_missing_recipient(self) -> None:
        with pytest.raises(DecodeError, match="recipient"):
            decode_consideration_item(offer_item(ItemType.NATIVE, ZONE, amount=1))

"""Tests for sale leg classification."""

from seaport_indexer.ingestor.classifier import (
    SENTINEL_ASSET,
    SENTINEL_PAYMENT,
    classify_asset_leg,
    classify_items,
    classify_payment_leg,
)
from seaport_indexer.ingestor.models import ZERO_ADDRESS, ConsiderationItem, ItemType, OfferItem

COLLECTION_A = "0x" + "c" * 40
COLLECTION_B = "0x" + "d" * 40
TOKEN = "0x" + "e" * 40
SELLER = "0x" + "a" * 40


def _offer(item_type: ItemType, token: str, identifier: int = 0, amount: int = 1) -> OfferItem:
    return OfferItem(item_type=item_type, token=token, identifier=identifier, amount=amount)


def _consideration(item_type: ItemType, token: str, amount: int) -> ConsiderationItem:
    return ConsiderationItem(item_type=item_type, token=token, identifier=0, amount=amount, recipient=SELLER)


class TestAssetLeg:
    """Tests for classify_asset_leg."""

    def test_first_nft_wins(self) -> None:
        leg = classify_asset_leg(
            [
                _offer(ItemType.ERC20, TOKEN, amount=5),
                _offer(ItemType.ERC1155, COLLECTION_A, identifier=7),
                _offer(ItemType.ERC721, COLLECTION_B, identifier=8),
            ]
        )
        assert leg is not None
        assert leg.collection_address == COLLECTION_A
        assert leg.token_id == "7"

    def test_criteria_items_count_as_assets(self) -> None:
        leg = classify_asset_leg([_offer(ItemType.ERC721_WITH_CRITERIA, COLLECTION_A, identifier=0)])
        assert leg is not None
        assert leg.token_id == "0"

    def test_large_identifier_rendered_in_decimal(self) -> None:
        leg = classify_asset_leg([_offer(ItemType.ERC721, COLLECTION_A, identifier=2**255)])
        assert leg is not None
        assert leg.token_id == str(2**255)

    def test_no_asset(self) -> None:
        assert classify_asset_leg([_offer(ItemType.NATIVE, ZERO_ADDRESS, amount=1)]) is None
        assert classify_asset_leg([]) is None


class TestPaymentLeg:
    """Tests for classify_payment_leg."""

    def test_native_payment(self) -> None:
        leg = classify_payment_leg([_consideration(ItemType.NATIVE, ZERO_ADDRESS, 100)])
        assert leg is not None
        assert leg.amount == 100
        assert leg.currency_symbol == "FLOW"
        assert leg.currency_address == ZERO_ADDRESS

    def test_erc20_payment(self) -> None:
        leg = classify_payment_leg([_consideration(ItemType.ERC20, TOKEN, 250)])
        assert leg is not None
        assert leg.currency_symbol == "TOKEN"
        assert leg.currency_address == TOKEN

    def test_first_payment_wins(self) -> None:
        """Royalty and fee legs after the first payment are ignored."""
        leg = classify_payment_leg(
            [
                _consideration(ItemType.ERC721, COLLECTION_A, 1),
                _consideration(ItemType.NATIVE, ZERO_ADDRESS, 900),
                _consideration(ItemType.NATIVE, ZERO_ADDRESS, 100),
            ]
        )
        assert leg is not None
        assert leg.amount == 900

    def test_no_payment(self) -> None:
        assert classify_payment_leg([_consideration(ItemType.ERC1155, COLLECTION_A, 1)]) is None


class TestClassifyItems:
    """Tests for classify_items."""

    def test_complete_sale(self) -> None:
        legs = classify_items(
            [_offer(ItemType.ERC721, COLLECTION_A, identifier=1)],
            [_consideration(ItemType.NATIVE, ZERO_ADDRESS, 10)],
        )
        assert not legs.has_gap
        assert legs.asset.collection_address == COLLECTION_A
        assert legs.payment.amount == 10

    def test_gap_uses_sentinels(self) -> None:
        legs = classify_items([], [])
        assert legs.has_gap
        assert not legs.asset_found
        assert not legs.payment_found
        assert legs.asset == SENTINEL_ASSET
        assert legs.payment == SENTINEL_PAYMENT
        assert legs.asset.is_sentinel

"""Classify the asset and payment legs of a fulfilled order.

First match wins in array order, for both legs. A missing leg is not an
error: the sentinel values below are recorded and the gap is reported
through ``SaleLegs.asset_found`` / ``SaleLegs.payment_found``.
"""

from __future__ import annotations

from collections.abc import Sequence

from seaport_indexer.ingestor.models import (
    TOKEN_CURRENCY_SYMBOL,
    ZERO_ADDRESS,
    AssetLeg,
    ConsiderationItem,
    OfferItem,
    PaymentLeg,
    SaleLegs,
)

SENTINEL_ASSET = AssetLeg(collection_address=ZERO_ADDRESS, token_id="")
SENTINEL_PAYMENT = PaymentLeg(amount=0)


def classify_asset_leg(offer_items: Sequence[OfferItem]) -> AssetLeg | None:
    """Return the first non-fungible offer item as (collection, token id), or None."""
    for item in offer_items:
        if item.item_type.is_asset:
            return AssetLeg(collection_address=item.token, token_id=str(item.identifier))
    return None


def classify_payment_leg(consideration_items: Sequence[ConsiderationItem]) -> PaymentLeg | None:
    """Return the first native/fungible consideration item as a payment, or None.

    Symbol resolution for ERC20 tokens is left to later enrichment; any
    non-zero token address is reported as the generic token symbol.
    """
    for item in consideration_items:
        if not item.item_type.is_payment:
            continue
        if item.token == ZERO_ADDRESS:
            return PaymentLeg(amount=item.amount)
        return PaymentLeg(
            amount=item.amount,
            currency_symbol=TOKEN_CURRENCY_SYMBOL,
            currency_address=item.token,
        )
    return None


def classify_items(
    offer_items: Sequence[OfferItem],
    consideration_items: Sequence[ConsiderationItem],
) -> SaleLegs:
    asset = classify_asset_leg(offer_items)
    payment = classify_payment_leg(consideration_items)
    return SaleLegs(
        asset=asset or SENTINEL_ASSET,
        payment=payment or SENTINEL_PAYMENT,
        asset_found=asset is not None,
        payment_found=payment is not None,
    )

"""Data models for the ingestor module.

Raw events arrive from the log source as a name plus an untyped argument
bag. The decoder turns them into one of three closed, frozen variants;
everything downstream only ever sees those.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_CURRENCY_SYMBOL = "FLOW"
TOKEN_CURRENCY_SYMBOL = "TOKEN"
PLATFORM_NAME = "Seaport"


class ItemType(IntEnum):
    """Seaport item type tags."""

    NATIVE = 0
    ERC20 = 1
    ERC721 = 2
    ERC1155 = 3
    ERC721_WITH_CRITERIA = 4
    ERC1155_WITH_CRITERIA = 5

    @property
    def is_payment(self) -> bool:
        return self in (ItemType.NATIVE, ItemType.ERC20)

    @property
    def is_asset(self) -> bool:
        return self >= ItemType.ERC721


@dataclass(frozen=True)
class OfferItem:
    """One entry of an order's offer (what the offerer gives up)."""

    item_type: ItemType
    token: str
    identifier: int
    amount: int


@dataclass(frozen=True)
class ConsiderationItem(OfferItem):
    """One entry of an order's consideration (what must be received, and by whom)."""

    recipient: str = ZERO_ADDRESS


@dataclass(frozen=True)
class BlockContext:
    """Block/transaction metadata attached to every log."""

    block_number: int
    block_timestamp: int  # unix seconds
    transaction_hash: str
    log_index: int
    gas_used: int = 0
    gas_price: int = 0

    @property
    def event_id(self) -> str:
        return f"{self.transaction_hash}-{self.log_index}"

    @property
    def key(self) -> tuple[str, int]:
        return (self.transaction_hash, self.log_index)


@dataclass(frozen=True)
class RawEvent:
    """An event as delivered by the log source, before validation."""

    name: str
    args: Mapping[str, Any]
    context: BlockContext


@dataclass(frozen=True)
class OrderFulfilled:
    order_hash: str
    offerer: str
    zone: str
    recipient: str
    offer_items: tuple[OfferItem, ...]
    consideration_items: tuple[ConsiderationItem, ...]

    name = "OrderFulfilled"


@dataclass(frozen=True)
class OrderValidated:
    order_hash: str
    offerer: str
    zone: str

    name = "OrderValidated"


@dataclass(frozen=True)
class OrderCancelled:
    order_hash: str
    offerer: str
    zone: str

    name = "OrderCancelled"


DecodedEvent = Union[OrderFulfilled, OrderValidated, OrderCancelled]


@dataclass(frozen=True)
class AssetLeg:
    """The non-fungible item transferred by a sale."""

    collection_address: str
    token_id: str

    @property
    def is_sentinel(self) -> bool:
        return self.collection_address == ZERO_ADDRESS and self.token_id == ""


@dataclass(frozen=True)
class PaymentLeg:
    """The native/fungible payment of a sale."""

    amount: int
    currency_symbol: str = NATIVE_CURRENCY_SYMBOL
    currency_address: str = ZERO_ADDRESS


@dataclass(frozen=True)
class SaleLegs:
    """Classifier output. ``*_found`` flags are False on a classification gap."""

    asset: AssetLeg
    payment: PaymentLeg
    asset_found: bool = True
    payment_found: bool = True

    @property
    def has_gap(self) -> bool:
        return not (self.asset_found and self.payment_found)


@dataclass(frozen=True)
class ClassifiedSale:
    """A decoded fulfillment together with its classified legs and context."""

    event: OrderFulfilled
    legs: SaleLegs
    context: BlockContext = field(compare=False)

    @property
    def seller(self) -> str:
        return self.event.offerer

    @property
    def buyer(self) -> str:
        return self.event.recipient

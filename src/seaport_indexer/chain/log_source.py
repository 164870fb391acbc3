"""Seaport event log source for Flow EVM.

Turns ``eth_getLogs`` output into ordered ``RawEvent`` values with block
context attached. ABI decoding happens here; field validation is left to
the event decoder, so anything this module cannot decode is still handed
over (with an unknown name or an empty argument bag) and rejected there.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from eth_abi.exceptions import DecodingError
from web3 import Web3
from web3.exceptions import Web3Exception

from seaport_indexer.chain.client import FlowEvmClient
from seaport_indexer.ingestor.models import BlockContext, RawEvent

logger = logging.getLogger(__name__)

SEAPORT_ADDRESS = "0x0000000000000068F116a894984e2DB1123eB395"

_ITEM_COMPONENTS = [
    {"name": "itemType", "type": "uint8"},
    {"name": "token", "type": "address"},
    {"name": "identifier", "type": "uint256"},
    {"name": "amount", "type": "uint256"},
]

SEAPORT_EVENTS_ABI: list[dict[str, Any]] = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "orderHash", "type": "bytes32"},
            {"indexed": True, "name": "offerer", "type": "address"},
            {"indexed": True, "name": "zone", "type": "address"},
            {"indexed": False, "name": "recipient", "type": "address"},
            {"indexed": False, "name": "offer", "type": "tuple[]", "components": _ITEM_COMPONENTS},
            {
                "indexed": False,
                "name": "consideration",
                "type": "tuple[]",
                "components": [*_ITEM_COMPONENTS, {"name": "recipient", "type": "address"}],
            },
        ],
        "name": "OrderFulfilled",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "orderHash", "type": "bytes32"},
            {"indexed": True, "name": "offerer", "type": "address"},
            {"indexed": True, "name": "zone", "type": "address"},
        ],
        "name": "OrderValidated",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "orderHash", "type": "bytes32"},
            {"indexed": True, "name": "offerer", "type": "address"},
            {"indexed": True, "name": "zone", "type": "address"},
        ],
        "name": "OrderCancelled",
        "type": "event",
    },
]


def _canonical_type(param: Mapping[str, Any]) -> str:
    type_ = str(param["type"])
    if type_.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param["components"])
        return f"({inner}){type_[len('tuple'):]}"
    return type_


def event_signature(event_abi: Mapping[str, Any]) -> str:
    """``Name(type,...)`` as hashed into topic 0."""
    return f"{event_abi['name']}({','.join(_canonical_type(p) for p in event_abi['inputs'])})"


def event_topic(event_abi: Mapping[str, Any]) -> str:
    return "0x" + Web3.keccak(text=event_signature(event_abi)).hex().removeprefix("0x")


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def _plain(value: Any) -> Any:
    """Strip web3's AttributeDict wrappers so downstream sees builtins."""
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return tuple(_plain(v) for v in value)
    return value


class SeaportLogSource:
    """Fetches Seaport events in (block, log index) order.

    Example:
        ```python
        client = FlowEvmClient(rpc_url="https://mainnet.evm.nodes.onflow.org")
        source = SeaportLogSource(client, confirmations=3)
        head = await source.safe_head()
        events = await source.fetch_events(head - 99, head)
        ```
    """

    def __init__(
        self,
        client: FlowEvmClient,
        *,
        contract_address: str = SEAPORT_ADDRESS,
        confirmations: int = 0,
    ) -> None:
        if confirmations < 0:
            raise ValueError("confirmations must be >= 0")
        self._client = client
        self._address = Web3.to_checksum_address(contract_address)
        self._confirmations = confirmations
        self._contract = Web3().eth.contract(abi=SEAPORT_EVENTS_ABI)
        self._events_by_topic = {event_topic(abi): str(abi["name"]) for abi in SEAPORT_EVENTS_ABI}

    @property
    def contract_address(self) -> str:
        return self._address

    async def safe_head(self) -> int:
        """Latest block considered final: head minus the confirmation depth."""
        head = await self._client.get_block_number()
        return head - self._confirmations

    def decode_log(self, log: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
        """ABI-decode one log into ``(event name, argument bag)``.

        Unknown topics yield ``("unknown:<topic0>", {})``; logs matching a
        known topic that fail ABI decoding yield the event name and ``{}``.
        """
        topics = log.get("topics") or []
        if not topics:
            return "unknown:", {}
        topic0 = _hex(topics[0])
        name = self._events_by_topic.get(topic0)
        if name is None:
            return f"unknown:{topic0}", {}
        try:
            event_data = getattr(self._contract.events, name)().process_log(log)
        except (Web3Exception, DecodingError) as e:
            logger.warning(
                "ABI decoding failed for %s at %s-%s: %s",
                name,
                _hex(log.get("transactionHash", b"")),
                log.get("logIndex"),
                e,
            )
            return name, {}
        return name, dict(_plain(event_data["args"]))

    def to_raw_event(
        self,
        log: Mapping[str, Any],
        *,
        block_timestamp: int,
        gas_used: int = 0,
        gas_price: int = 0,
    ) -> RawEvent:
        name, args = self.decode_log(log)
        context = BlockContext(
            block_number=int(log["blockNumber"]),
            block_timestamp=block_timestamp,
            transaction_hash=_hex(log["transactionHash"]),
            log_index=int(log["logIndex"]),
            gas_used=gas_used,
            gas_price=gas_price,
        )
        return RawEvent(name=name, args=args, context=context)

    async def fetch_events(self, from_block: int, to_block: int) -> list[RawEvent]:
        """Fetch and convert the indexed Seaport events in ``[from_block, to_block]``.

        Only the topics of the known events are requested, so other Seaport
        events such as OrdersMatched never reach the decoder.

        Returns:
            RawEvents sorted by (block number, log index). Removed (reorged)
            logs are dropped.
        """
        if to_block < from_block:
            return []
        logs = await self._client.get_logs(
            {
                "address": self._address,
                "fromBlock": from_block,
                "toBlock": to_block,
                "topics": [sorted(self._events_by_topic)],
            }
        )
        live = sorted(
            (log for log in logs if not log.get("removed")),
            key=lambda log: (int(log["blockNumber"]), int(log["logIndex"])),
        )

        timestamps: dict[int, int] = {}
        receipts: dict[str, tuple[int, int]] = {}
        events: list[RawEvent] = []
        for log in live:
            block_number = int(log["blockNumber"])
            if block_number not in timestamps:
                block = await self._client.get_block(block_number)
                timestamps[block_number] = int(block["timestamp"])
            tx_hash = _hex(log["transactionHash"])
            if tx_hash not in receipts:
                receipt = await self._client.get_transaction_receipt(tx_hash)
                receipts[tx_hash] = (int(receipt["gasUsed"]), int(receipt["effectiveGasPrice"]))
            gas_used, gas_price = receipts[tx_hash]
            events.append(
                self.to_raw_event(
                    log,
                    block_timestamp=timestamps[block_number],
                    gas_used=gas_used,
                    gas_price=gas_price,
                )
            )

        logger.debug("Fetched %d Seaport events from blocks %d-%d", len(events), from_block, to_block)
        return events

"""Chain access - Flow EVM RPC client and Seaport log source."""

from seaport_indexer.chain.client import ChainClientError, FlowEvmClient, RateLimiter, RPCError
from seaport_indexer.chain.log_source import SEAPORT_ADDRESS, SEAPORT_EVENTS_ABI, SeaportLogSource

__all__ = [
    "ChainClientError",
    "FlowEvmClient",
    "RPCError",
    "RateLimiter",
    "SEAPORT_ADDRESS",
    "SEAPORT_EVENTS_ABI",
    "SeaportLogSource",
]

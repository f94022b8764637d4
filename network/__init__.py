"""
BrickLedger - Network

JSON-RPC access to the BuildNFT contract, the Redis REST store and the
chain/cache synchronization jobs.
"""

from .rpc import EthRPCClient, RPCConfig, RPCError, RPCConnectionError, RPCTimeoutError
from .chain import ChainReader, BuildNFTContract, MintEvent
from .kv_rest import RestKVStore
from .sync import SyncConfig, Reconciler, Backfill

__all__ = [
    "EthRPCClient",
    "RPCConfig",
    "RPCError",
    "RPCConnectionError",
    "RPCTimeoutError",
    "ChainReader",
    "BuildNFTContract",
    "MintEvent",
    "RestKVStore",
    "SyncConfig",
    "Reconciler",
    "Backfill",
]

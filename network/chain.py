"""
BrickLedger - Chain Reader

Read-only view of the BuildNFT contract: token ownership, the highest issued
token id, per-token kind and geometry hash, and historical mint events.

Contract reverts surface as TokenNotFoundError; transport and node failures
surface as ChainUnavailableError.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, List, Optional

from registry.exceptions import ChainUnavailableError, TokenNotFoundError
from registry.spec_key import keccak256

from .rpc import EthRPCClient, RPCError

ZERO_ADDRESS = "0x" + "0" * 40
ZERO_TOPIC = "0x" + "0" * 64
TRANSFER_TOPIC = "0x" + keccak256(b"Transfer(address,address,uint256)").hex()


def function_selector(signature: str) -> str:
    """First four bytes of the keccak hash of a function signature."""
    return "0x" + keccak256(signature.encode("ascii")).hex()[:8]


def encode_uint256(value: int) -> str:
    if value < 0 or value >= 2 ** 256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, "064x")


def _words(data: str) -> List[str]:
    data = data[2:] if data.startswith("0x") else data
    return [data[i:i + 64] for i in range(0, len(data), 64)]


def decode_uint(data: str) -> int:
    words = _words(data)
    if not words or not words[0]:
        raise ValueError("Empty return data")
    return int(words[0], 16)


def decode_address(data: str) -> str:
    words = _words(data)
    if not words or len(words[0]) != 64:
        raise ValueError("Return data is not an ABI encoded address")
    return "0x" + words[0][-40:]


def decode_bytes32(data: str) -> str:
    words = _words(data)
    if not words or len(words[0]) != 64:
        raise ValueError("Return data is not an ABI encoded bytes32")
    return "0x" + words[0]


@dataclass
class MintEvent:
    """A Transfer event from the zero address."""
    token_id: int
    to: str
    block_number: int = 0
    tx_hash: Optional[str] = None


class ChainReader(ABC):
    """Chain reader contract consumed by the reconciliation layer."""

    @abstractmethod
    def owner_of(self, token_id: int) -> str:
        """Owner address; TokenNotFoundError for burned or unminted tokens."""

    @abstractmethod
    def highest_issued_token_id(self) -> int:
        """Highest token id ever issued (0 when none)."""

    @abstractmethod
    def kind(self, token_id: int) -> int:
        """Build kind tag of a token."""

    @abstractmethod
    def geometry_hash(self, token_id: int) -> str:
        """Geometry hash committed on-chain for a token."""

    @abstractmethod
    def latest_block(self) -> int:
        """Current block number."""

    @abstractmethod
    def mint_events(self, from_block: int, to_block: int) -> List[MintEvent]:
        """Mint events in an inclusive block range (one provider call)."""

    def iter_mint_events(self, from_block: int, to_block: int, chunk_size: int = 10000) -> Iterator[MintEvent]:
        """Walk an arbitrarily large block range in bounded chunks."""
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        start = from_block
        while start <= to_block:
            end = min(start + chunk_size - 1, to_block)
            for event in self.mint_events(start, end):
                yield event
            start = end + 1


class BuildNFTContract(ChainReader):
    """ChainReader backed by JSON-RPC ``eth_call`` and ``eth_getLogs``."""

    OWNER_OF = function_selector("ownerOf(uint256)")
    NEXT_TOKEN_ID = function_selector("nextTokenId()")
    KIND = function_selector("kind(uint256)")
    GEOMETRY_HASH = function_selector("geometryHash(uint256)")

    def __init__(self, rpc: EthRPCClient, address: str):
        if not address or not address.startswith("0x") or len(address) != 42:
            raise ValueError(f"Invalid contract address: {address!r}")
        self.rpc = rpc
        self.address = address
        self.logger = logging.getLogger(__name__)

    def _call(self, selector: str, *args: int) -> str:
        data = selector + "".join(encode_uint256(arg) for arg in args)
        try:
            return self.rpc.eth_call(self.address, data)
        except RPCError as e:
            if e.is_revert():
                raise TokenNotFoundError(f"Call reverted: {e.message}", {"selector": selector, "args": list(args)})
            raise ChainUnavailableError(f"RPC call failed: {e}", {"selector": selector})

    def _decode(self, decoder, raw: str, what: str):
        if raw in (None, "0x", ""):
            # Some nodes answer a revert with empty return data
            raise TokenNotFoundError(f"{what} returned no data")
        try:
            return decoder(raw)
        except ValueError as e:
            raise ChainUnavailableError(f"Malformed {what} response: {e}")

    def owner_of(self, token_id: int) -> str:
        owner = self._decode(decode_address, self._call(self.OWNER_OF, token_id), "ownerOf")
        if owner == ZERO_ADDRESS:
            raise TokenNotFoundError(f"Token {token_id} has no owner")
        return owner

    def highest_issued_token_id(self) -> int:
        try:
            next_id = self._decode(decode_uint, self._call(self.NEXT_TOKEN_ID), "nextTokenId")
        except TokenNotFoundError as e:
            raise ChainUnavailableError(f"Contract does not expose nextTokenId: {e}")
        return max(next_id - 1, 0)

    def kind(self, token_id: int) -> int:
        return self._decode(decode_uint, self._call(self.KIND, token_id), "kind")

    def geometry_hash(self, token_id: int) -> str:
        return self._decode(decode_bytes32, self._call(self.GEOMETRY_HASH, token_id), "geometryHash")

    def latest_block(self) -> int:
        try:
            return self.rpc.eth_block_number()
        except RPCError as e:
            raise ChainUnavailableError(f"eth_blockNumber failed: {e}")

    def mint_events(self, from_block: int, to_block: int) -> List[MintEvent]:
        try:
            logs = self.rpc.eth_get_logs(self.address, [TRANSFER_TOPIC, ZERO_TOPIC], from_block, to_block)
        except RPCError as e:
            raise ChainUnavailableError(
                f"eth_getLogs {from_block}-{to_block} failed: {e}",
                {"fromBlock": from_block, "toBlock": to_block},
            )

        events = []
        for log in logs:
            topics = log.get("topics") or []
            if len(topics) < 4:
                self.logger.warning(f"Skipping malformed Transfer log in tx {log.get('transactionHash')}")
                continue
            events.append(MintEvent(
                token_id=int(topics[3], 16),
                to="0x" + topics[2][-40:],
                block_number=int(log.get("blockNumber") or "0x0", 16),
                tx_hash=log.get("transactionHash"),
            ))

        self.logger.debug(f"Found {len(events)} mint event(s) in blocks {from_block}-{to_block}")
        return events

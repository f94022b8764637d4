"""
Pytest configuration and fixtures for BrickLedger tests.
"""

from typing import Dict, Iterable, List, Optional

import pytest

from network.chain import ChainReader, MintEvent
from registry.build_store import BuildRecordStore
from registry.exceptions import ChainUnavailableError, TokenNotFoundError
from registry.mint import MintRegistrar
from registry.storage import MemoryKVStore

FIXED_TIME = 1700000000.0

OWNER_A = "0x" + "aa" * 20
OWNER_B = "0x" + "bb" * 20


class FakeChain(ChainReader):
    """In-memory chain reader with scriptable failures."""

    def __init__(
        self,
        owners: Optional[Dict[int, str]] = None,
        highest: Optional[int] = None,
        kinds: Optional[Dict[int, int]] = None,
        events: Optional[List[MintEvent]] = None,
        failing: Iterable[int] = (),
        latest: int = 1000,
        unavailable: bool = False,
    ):
        self.owners = dict(owners or {})
        self.highest = highest if highest is not None else max(self.owners, default=0)
        self.kinds = dict(kinds or {})
        self.events = list(events or [])
        self.failing = set(failing)
        self.latest = latest
        self.unavailable = unavailable
        self.event_calls = []

    def owner_of(self, token_id: int) -> str:
        if token_id in self.failing:
            raise ChainUnavailableError(f"timeout reading token {token_id}")
        if token_id not in self.owners:
            raise TokenNotFoundError(f"execution reverted: nonexistent token {token_id}")
        return self.owners[token_id]

    def highest_issued_token_id(self) -> int:
        if self.unavailable:
            raise ChainUnavailableError("RPC endpoint unreachable")
        return self.highest

    def kind(self, token_id: int) -> int:
        if token_id not in self.owners:
            raise TokenNotFoundError(f"execution reverted: nonexistent token {token_id}")
        return self.kinds.get(token_id, 1)

    def geometry_hash(self, token_id: int) -> str:
        return "0x" + format(token_id, "064x")

    def latest_block(self) -> int:
        if self.unavailable:
            raise ChainUnavailableError("RPC endpoint unreachable")
        return self.latest

    def mint_events(self, from_block: int, to_block: int) -> List[MintEvent]:
        self.event_calls.append((from_block, to_block))
        return [e for e in self.events if from_block <= e.block_number <= to_block]


@pytest.fixture
def kv():
    """Empty in-memory key-value store."""
    return MemoryKVStore()


@pytest.fixture
def store(kv):
    """Build record store over the in-memory store."""
    return BuildRecordStore(kv)


@pytest.fixture
def clock():
    """Deterministic clock for id and timestamp generation."""
    return lambda: FIXED_TIME


@pytest.fixture
def registrar(store, clock):
    """Mint registrar with a fixed clock."""
    return MintRegistrar(store, clock=clock)


@pytest.fixture
def fake_chain():
    """Factory for FakeChain instances."""
    return FakeChain


@pytest.fixture
def brick_request():
    """A valid kind 0 (single brick) mint request."""
    return {
        "tokenId": "1",
        "contentHash": "abcdef1234567890",
        "walletAddress": "0xABCDEF0000000000000000000000000000000001",
        "kind": 0,
        "width": 1,
        "depth": 3,
        "density": 8,
        "bricks": [
            {"color": "#FF0000", "position": [0, 0.5, 0], "width": 1, "depth": 1},
            {"color": "#00FF00", "position": [1, 0.5, 0], "width": 1, "depth": 1},
            {"color": "#0000FF", "position": [2, 0.5, 0], "width": 1, "depth": 1},
        ],
    }


@pytest.fixture
def build_request():
    """A valid composite build mint request."""
    return {
        "tokenId": "7",
        "contentHash": "0badc0ffee000000",
        "minter": "0x00000000000000000000000000000000000000AA",
        "kind": 1,
        "name": "Castle",
        "bricks": [
            {"color": "#FF0000", "position": [0, 0.5, 0], "width": 2, "depth": 2, "nftGroupId": "3"},
            {"color": "#FF0000", "position": [0, 1.5, 0], "width": 2, "depth": 2, "nftGroupId": "3"},
            {"color": "#0000FF", "position": [0, 2.5, 0], "width": 1, "depth": 1, "nftGroupId": "4"},
        ],
        "componentTokenIds": ["3", 4],
    }


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "concurrency: mark test as a concurrency test"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on test names."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if "concurrent" in item.name or "thread" in item.name:
            item.add_marker(pytest.mark.concurrency)

"""
Unit tests for token resolution and chain backed listings.
"""

import json

import pytest

from registry.exceptions import NotFoundError
from registry.resolver import TokenResolver

OWNER_A = "0x" + "aa" * 20
OWNER_B = "0x" + "bb" * 20


@pytest.fixture
def resolver(store):
    return TokenResolver(store)


class TestResolve:
    """Test the three lookup paths."""

    def test_primary_index(self, kv, resolver):
        kv.set("build:a", {"id": "a", "name": "Tower", "tokenId": "5"})
        kv.set("token:5", "a")

        record, path = resolver.find("5")
        assert path == "token"
        assert resolver.resolve("5").name == "Tower"

    def test_legacy_index(self, kv, resolver):
        kv.set("build:a", {"id": "a", "tokenId": "5"})
        kv.set("build:token:5", "a")

        record, path = resolver.find(5)
        assert path == "legacy"
        assert record.id == "a"

    def test_scan_fallback_numeric_token(self, kv, resolver):
        """A record with a numeric embedded tokenId is found by scan."""
        kv.set("build:x", {"id": "x", "tokenId": 9})
        kv.set("build:token:9", "missing-build")
        kv.set("build:hash:0xh", "x")

        record, path = resolver.find("9")
        assert path == "scan"
        assert record.id == "x"

    def test_stale_primary_index_falls_through(self, kv, resolver):
        kv.set("token:5", "gone")
        kv.set("build:legacy", {"id": "legacy", "tokenId": "5"})
        kv.set("build:token:5", "legacy")

        assert resolver.find("5")[1] == "legacy"

    def test_not_found(self, kv, resolver):
        kv.set("build:other", {"id": "other", "tokenId": "6"})

        with pytest.raises(NotFoundError) as exc_info:
            resolver.resolve("5")
        assert exc_info.value.details == {"tokenId": "5"}

    def test_resolved_record_reports_requested_token(self, kv, resolver):
        """An index hit reports the requested token even if the record embeds another."""
        kv.set("build:a", {"id": "a", "tokenId": "10"})
        kv.set("token:11", "a")

        assert resolver.resolve("11").token_id == "11"

    def test_string_bricks_decoded_once(self, kv, resolver):
        kv.set("build:a", {"id": "a", "bricks": json.dumps([{"color": "#123"}, {"width": -1}])})
        kv.set("token:1", "a")

        bricks = resolver.resolve("1").bricks
        assert [b.color for b in bricks] == ["#123"]

    def test_unparseable_bricks_become_empty(self, kv, resolver):
        kv.set("build:a", {"id": "a", "bricks": "{oops"})
        kv.set("token:1", "a")

        assert resolver.resolve("1").bricks == []


class TestListMinted:
    """Test chain backed listings."""

    def test_chain_is_truth(self, kv, store, fake_chain):
        """Live tokens are listed; cache misses become chain placeholders."""
        kv.set("build:a", {"id": "a", "name": "Tower", "tokenId": "1"})
        kv.set("token:1", "a")
        kv.set("build:burned", {"id": "burned", "tokenId": "3"})
        kv.set("token:3", "burned")
        chain = fake_chain(owners={1: OWNER_A, 2: OWNER_B}, highest=3, kinds={2: 0})

        records = TokenResolver(store, chain=chain).list_minted()

        assert [r.token_id for r in records] == ["2", "1"]
        placeholder = records[0]
        assert placeholder.id == "chain_2"
        assert placeholder.name == "ETHBLOX #2"
        assert placeholder.creator == OWNER_B
        assert placeholder.kind == 0
        assert placeholder.bricks == []
        assert records[1].name == "Tower"

    def test_failed_owner_check_keeps_chain_view(self, kv, store, fake_chain):
        """One unreachable token does not hide the other live tokens."""
        kv.set("build:a", {"id": "a", "name": "Tower", "tokenId": "1"})
        kv.set("token:1", "a")
        store.add_minted("1")
        chain = fake_chain(owners={1: OWNER_A, 2: OWNER_B, 3: OWNER_A}, failing=[3])

        records = TokenResolver(store, chain=chain).list_minted()

        assert [r.token_id for r in records] == ["2", "1"]
        assert records[0].id == "chain_2"

    def test_failed_owner_check_served_from_cache(self, kv, store, fake_chain):
        kv.set("build:c", {"id": "c", "name": "Bridge", "tokenId": "3"})
        kv.set("token:3", "c")
        chain = fake_chain(owners={1: OWNER_A, 3: OWNER_A}, highest=3, failing=[3])

        records = TokenResolver(store, chain=chain, id_chunk_size=2).list_minted()

        assert [r.token_id for r in records] == ["3", "1"]
        assert records[0].name == "Bridge"

    def test_chain_unavailable_uses_cache(self, kv, store, fake_chain):
        kv.set("build:a", {"id": "a", "tokenId": "1"})
        kv.set("token:1", "a")
        kv.set("build:b", {"id": "b", "tokenId": "12"})
        kv.set("token:12", "b")
        store.add_minted("1")
        store.add_minted("12")
        store.add_minted("99")

        records = TokenResolver(store, chain=fake_chain(unavailable=True)).list_minted()

        assert [r.token_id for r in records] == ["12", "1"]

    def test_without_chain(self, kv, store):
        kv.set("build:a", {"id": "a", "tokenId": "1"})
        kv.set("token:1", "a")
        store.add_minted("1")

        assert [r.id for r in TokenResolver(store).list_minted()] == ["a"]


class TestMintedBrickSpecs:
    """Test the minted spec listing."""

    def test_labels(self, store, registrar, brick_request, build_request):
        registrar.mint(brick_request)
        registrar.mint(dict(brick_request, tokenId="2", contentHash="ffff0000", width=2, depth=2, density=27))
        registrar.mint(build_request)

        assert TokenResolver(store).minted_brick_specs() == ["1x3-D8", "2x2-D27"]


class TestInspect:
    """Test the diagnostic view."""

    def test_inspect_resolved(self, kv, store, resolver):
        kv.set("build:a", {
            "id": "a",
            "name": "Stack",
            "bricks": [
                {"color": "#1", "position": [0, 0.5, 0]},
                {"color": "#2", "position": [0, 1.5, 0]},
                {"color": "#3", "position": [1, 1.5, 0]},
            ],
        })
        kv.set("token:4", "a")
        store.add_minted("4")

        report = resolver.inspect("4")

        assert report["indexBuildId"] == "a"
        assert report["inMintedSet"] is True
        assert report["totalBricks"] == 3
        assert report["layerHeights"] == [0.5, 1.5]
        assert report["layerCount"] == 2
        assert "bricks" in report["rawBuildKeys"]

    def test_inspect_missing(self, resolver):
        report = resolver.inspect("4")
        assert report["error"] == "Token not found"
        assert report["inMintedSet"] is False

    def test_inspect_dangling_pointer(self, kv, resolver):
        kv.set("token:4", "gone")
        report = resolver.inspect("4")
        assert report["error"] == "Build data not found"
        assert report["buildKey"] == "build:gone"

    def test_inspect_corrupt_record(self, kv, resolver):
        kv.set("build:a", "{corrupt")
        kv.set("token:4", "a")

        report = resolver.inspect("4")
        assert report["totalBricks"] == 0
        assert report["rawType"] == "str"

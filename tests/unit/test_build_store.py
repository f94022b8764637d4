"""
Unit tests for the build record store.
"""

import json

from registry.build_store import StoreKeys, sort_token_ids
from registry.schema import Brick, BuildRecord


class TestStoreKeys:
    """Test key layout helpers."""

    def test_key_builders(self):
        assert StoreKeys.build("abc") == "build:abc"
        assert StoreKeys.token("5") == "token:5"
        assert StoreKeys.legacy_token("5") == "build:token:5"
        assert StoreKeys.content_hash("0xh") == "hash:0xh"
        assert StoreKeys.brick_spec("0xk") == "brickSpec:0xk"

    def test_index_keys_detected(self):
        assert StoreKeys.is_index_key("build:token:5")
        assert StoreKeys.is_index_key("build:hash:0xh")
        assert not StoreKeys.is_index_key("build:5_170_abc")


class TestBuildRecordStore:
    """Test typed record and index access."""

    def test_put_and_get(self, store):
        record = BuildRecord(id="b1", name="Tower", token_id="5", bricks=[Brick(color="#fff")])
        store.put_build(record)

        loaded = store.get_build("b1")
        assert loaded == record
        assert store.build_exists("b1")
        assert not store.build_exists("b2")

    def test_decode_json_string_record(self, kv, store):
        """Records stored as JSON text are decoded."""
        kv.set("build:b1", json.dumps({"name": "Old", "tokenId": 3, "bricks": "[]"}))

        record = store.get_build("b1")
        assert record.id == "b1"
        assert record.token_id == "3"
        assert record.bricks == []

    def test_corrupt_record_is_a_miss(self, kv, store):
        kv.set("build:b1", "not json at all")
        kv.set("build:b2", ["a", "list"])

        assert store.get_build("b1") is None
        assert store.get_build("b2") is None
        assert store.get_build("missing") is None

    def test_iter_builds_skips_index_keys(self, kv, store):
        kv.set("build:a", {"id": "a"})
        kv.set("build:token:1", "a")
        kv.set("build:hash:0xh", "a")

        assert list(store.iter_build_keys()) == ["build:a"]
        assert [build_id for build_id, _ in store.iter_builds()] == ["a"]

    def test_token_index(self, kv, store):
        """Pointers stored quoted or numeric are normalized."""
        store.set_token_build_id("1", "a")
        kv.set("token:2", '"b"')
        kv.set("token:3", "")

        assert store.get_token_build_id("2") == "b"
        assert store.token_index() == {"1": "a", "2": "b"}

    def test_spec_pointer_numeric(self, kv, store):
        kv.set("brickSpec:0xk", 12)
        assert store.get_spec_token_id("0xk") == "12"

    def test_release_spec_only_for_holder(self, store):
        store.set_spec_token_id("0xk", "5")

        assert store.release_spec("0xk", "7") is False
        assert store.get_spec_token_id("0xk") == "5"
        assert store.release_spec("0xk", "5") is True
        assert store.get_spec_token_id("0xk") is None

    def test_minted_set(self, store):
        assert store.add_minted("1") == 1
        assert store.is_minted("1")
        assert store.minted_tokens() == {"1"}
        assert store.remove_minted("1") == 1
        assert store.minted_tokens() == set()


class TestSortTokenIds:
    """Test numeric token ordering."""

    def test_numeric_order(self):
        assert sort_token_ids(["10", "9", "2"]) == ["2", "9", "10"]
        assert sort_token_ids(["10", "9", "2"], reverse=True) == ["10", "9", "2"]

    def test_non_numeric_last(self):
        assert sort_token_ids(["b", "3", "a", "1"]) == ["1", "3", "a", "b"]

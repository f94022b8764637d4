"""
Unit tests for layered CLI configuration.
"""

import json
import os

import pytest
import yaml

import cli.config as config_module
from cli.config import DEFAULT_CONFIG, ConfigurationManager, get_config_manager


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    monkeypatch.setattr(config_module, "CONFIG_SEARCH_PATHS", [])
    for key in list(os.environ):
        if key.startswith("BRICKLEDGER_"):
            monkeypatch.delenv(key)


class TestConfigurationManager:
    """Test configuration loading and precedence."""

    def test_defaults(self):
        config = ConfigurationManager()

        assert config.get("store.backend") == "file"
        assert config.get("chain.rpc_url") == "https://sepolia.base.org"
        assert config.get("sync.max_workers") == 8
        assert config.get_sources() == ["defaults"]

    def test_missing_and_unset_keys_use_default(self):
        config = ConfigurationManager()

        assert config.get("chain.contract_address", "none") == "none"
        assert config.get("nope.key", 5) == 5

    def test_store_path_expanded(self):
        path = ConfigurationManager().get("store.path")
        assert not path.startswith("~")
        assert path.endswith(os.path.join(".brickledger", "store.json"))

    def test_profile(self):
        config = ConfigurationManager(profile="test")

        assert config.get("store.backend") == "memory"
        assert config.get("sync.max_workers") == 2
        assert config.get("sync.id_chunk_size") == 100
        assert "profile:test" in config.get_sources()

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            ConfigurationManager(profile="staging").load()

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("BRICKLEDGER_CHAIN_RPC_URL", "https://rpc.example.org")
        monkeypatch.setenv("BRICKLEDGER_CHAIN_CONTRACT_ADDRESS", "0x" + "12" * 20)
        monkeypatch.setenv("BRICKLEDGER_SYNC_MAX_WORKERS", "4")
        monkeypatch.setenv("BRICKLEDGER_CLI_VERBOSE", "true")
        monkeypatch.setenv("BRICKLEDGER_UNKNOWN_KEY", "ignored")

        config = ConfigurationManager()

        assert config.get("chain.rpc_url") == "https://rpc.example.org"
        assert config.get("chain.contract_address") == "0x" + "12" * 20
        assert config.get("sync.max_workers") == 4
        assert config.get("cli.verbose") is True
        assert "unknown" not in config.load()
        assert config.get_sources()[-1] == "environment"

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump({"store": {"backend": "memory"}, "chain": {"deploy_block": 42}}))

        config = ConfigurationManager(config_file=str(path))

        assert config.get("store.backend") == "memory"
        assert config.get("chain.deploy_block") == 42
        assert config.get("chain.block_chunk_size") == 10000
        assert f"file:{path}" in config.get_sources()

    def test_json_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"sync": {"max_workers": 3}}))

        assert ConfigurationManager(config_file=str(path)).get("sync.max_workers") == 3

    def test_environment_beats_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yml"
        path.write_text(yaml.safe_dump({"sync": {"max_workers": 3}}))
        monkeypatch.setenv("BRICKLEDGER_SYNC_MAX_WORKERS", "6")

        assert ConfigurationManager(config_file=str(path)).get("sync.max_workers") == 6

    def test_search_paths_first_match(self, tmp_path, monkeypatch):
        first = tmp_path / "first.yml"
        second = tmp_path / "second.yml"
        first.write_text(yaml.safe_dump({"sync": {"max_workers": 3}}))
        second.write_text(yaml.safe_dump({"sync": {"max_workers": 5}}))
        monkeypatch.setattr(config_module, "CONFIG_SEARCH_PATHS", [tmp_path / "missing.yml", first, second])

        assert ConfigurationManager().get("sync.max_workers") == 3

    def test_unreadable_file_ignored(self, tmp_path):
        path = tmp_path / "broken.yml"
        path.write_text("store: [unclosed")

        config = ConfigurationManager(config_file=str(path))
        assert config.get("store.backend") == "file"

    def test_set_does_not_touch_defaults(self):
        config = ConfigurationManager()
        config.set("sync.max_workers", 99)
        config.set("extra.nested.key", "x")

        assert config.get("sync.max_workers") == 99
        assert config.get("extra.nested.key") == "x"
        assert DEFAULT_CONFIG["sync"]["max_workers"] == 8
        assert ConfigurationManager().get("sync.max_workers") == 8

    def test_reset_reloads(self, monkeypatch):
        config = ConfigurationManager()
        assert config.get("sync.max_workers") == 8

        monkeypatch.setenv("BRICKLEDGER_SYNC_MAX_WORKERS", "4")
        assert config.get("sync.max_workers") == 8
        config.reset()
        assert config.get("sync.max_workers") == 4

    def test_save_roundtrip(self, tmp_path):
        config = ConfigurationManager(profile="test")
        path = tmp_path / "saved" / "config.yml"

        config.save(str(path))

        assert ConfigurationManager(config_file=str(path)).get("store.backend") == "memory"


class TestValidation:
    """Test configuration validation."""

    def test_defaults_valid(self):
        assert ConfigurationManager().validate() == []

    def test_bad_backend(self, monkeypatch):
        monkeypatch.setenv("BRICKLEDGER_STORE_BACKEND", "dynamo")
        assert ConfigurationManager().validate() == ["Invalid store backend: dynamo"]

    def test_rest_backend_needs_url(self, monkeypatch):
        monkeypatch.setenv("BRICKLEDGER_STORE_BACKEND", "rest")
        errors = ConfigurationManager().validate()
        assert "store.rest_url is required for the rest backend" in errors

    def test_bad_address(self, monkeypatch):
        monkeypatch.setenv("BRICKLEDGER_CHAIN_CONTRACT_ADDRESS", "0x1234")
        errors = ConfigurationManager().validate()
        assert errors == ["Invalid contract address: 0x1234"]

    def test_bad_numbers(self, monkeypatch):
        monkeypatch.setenv("BRICKLEDGER_SYNC_MAX_WORKERS", "0")
        monkeypatch.setenv("BRICKLEDGER_CHAIN_BLOCK_CHUNK_SIZE", "0")
        errors = ConfigurationManager().validate()

        assert "sync.max_workers must be a positive integer" in errors
        assert "chain.block_chunk_size must be at least 1" in errors

    def test_bad_rpc_url(self, monkeypatch):
        monkeypatch.setenv("BRICKLEDGER_CHAIN_RPC_URL", "localhost:8545")
        assert ConfigurationManager().validate() == ["Invalid chain RPC url: localhost:8545"]


class TestGlobalManager:
    """Test the shared manager accessor."""

    def test_reuses_instance(self, monkeypatch):
        monkeypatch.setattr(config_module, "_global_config_manager", None)

        first = get_config_manager()
        assert get_config_manager() is first
        assert get_config_manager(profile="test") is not first

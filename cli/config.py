#!/usr/bin/env python3
"""
Configuration Management Module for BrickLedger CLI

Handles hierarchical configuration loading, environment variable mapping,
validation, and management of settings across different environments.
"""

import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

# Configuration file locations in order of precedence (highest to lowest)
CONFIG_SEARCH_PATHS = [
    Path.cwd() / '.brickledger.yml',
    Path.cwd() / '.brickledger.json',
    Path.home() / '.brickledger' / 'config.yml',
    Path.home() / '.brickledger' / 'config.json',
    Path('/etc/brickledger/config.yml'),
]

# Environment variable prefix
ENV_PREFIX = 'BRICKLEDGER_'

STORE_BACKENDS = ('memory', 'file', 'rest')
OUTPUT_FORMATS = ('table', 'json', 'yaml')

# Default configuration values
DEFAULT_CONFIG = {
    # Key-value cache
    'store': {
        'backend': 'file',  # memory, file, rest
        'path': '~/.brickledger/store.json',
        'rest_url': None,
        'rest_token': None,
        'timeout': 10
    },

    # BuildNFT contract access
    'chain': {
        'rpc_url': 'https://sepolia.base.org',
        'contract_address': None,
        'deploy_block': 0,
        'block_chunk_size': 10000,
        'timeout': 30,
        'max_retries': 3
    },

    # Reconciliation fan-out
    'sync': {
        'max_workers': 8,
        'id_chunk_size': 100
    },

    # Admin operations
    'admin': {
        'reset_token_env': 'ADMIN_RESET_TOKEN',
        'reset_log_limit': 50
    },

    # CLI behavior
    'cli': {
        'output_format': 'table',
        'verbose': 0
    }
}

# Configuration profiles
PROFILES = {
    'production': {
        'store': {'backend': 'rest'},
        'sync': {'max_workers': 16},
        'cli': {'verbose': 0}
    },
    'development': {
        'store': {'backend': 'file', 'path': './.brickledger/store.json'},
        'chain': {'rpc_url': 'http://localhost:8545'},
        'cli': {'verbose': 2}
    },
    'test': {
        'store': {'backend': 'memory'},
        'sync': {'max_workers': 2}
    }
}

_ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')


class ConfigurationManager:
    """Manages hierarchical configuration with environment variable support."""

    def __init__(self, config_file: Optional[str] = None, profile: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_file: Explicit configuration file path
            profile: Configuration profile to load (production, development, test)
        """
        self.logger = logging.getLogger('brickledger-cli.config')
        self.config_file = config_file
        self.profile = profile
        self._config_cache = None
        self._config_sources = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources in hierarchical order.

        Returns:
            Merged configuration dictionary
        """
        if self._config_cache is not None:
            return self._config_cache

        self._config_sources = []
        configs = [copy.deepcopy(DEFAULT_CONFIG)]
        self._config_sources.append("defaults")

        if self.profile:
            if self.profile not in PROFILES:
                raise ValueError(f"Unknown profile: {self.profile}")
            configs.append(copy.deepcopy(PROFILES[self.profile]))
            self._config_sources.append(f"profile:{self.profile}")
            self.logger.debug(f"Applied profile: {self.profile}")

        if self.config_file:
            config_data = self._load_config_file(Path(self.config_file))
            if config_data:
                configs.append(config_data)
                self._config_sources.append(f"file:{self.config_file}")
        else:
            for config_path in CONFIG_SEARCH_PATHS:
                if config_path.exists():
                    config_data = self._load_config_file(config_path)
                    if config_data:
                        configs.append(config_data)
                        self._config_sources.append(f"file:{config_path}")
                        self.logger.debug(f"Loaded config from {config_path}")
                        break  # first match wins

        env_config = self._load_environment_variables()
        if env_config:
            configs.append(env_config)
            self._config_sources.append("environment")

        self._config_cache = self._deep_merge(*configs)
        self._expand_paths(self._config_cache)

        return self._config_cache

    def _load_config_file(self, path: Path) -> Optional[Dict[str, Any]]:
        """Load configuration from a YAML or JSON file."""
        try:
            with open(path, 'r') as f:
                if path.suffix in ['.yml', '.yaml']:
                    data = yaml.safe_load(f)
                elif path.suffix == '.json':
                    data = json.load(f)
                else:
                    self.logger.warning(f"Unknown config file format: {path}")
                    return None
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            self.logger.error(f"Failed to load config from {path}: {e}")
            return None

        if data is not None and not isinstance(data, dict):
            self.logger.error(f"Config file {path} must contain a mapping")
            return None
        return data

    def _load_environment_variables(self) -> Dict[str, Any]:
        """
        Load configuration from environment variables.

        The first segment after the prefix names the section and the rest is
        the key, e.g. BRICKLEDGER_CHAIN_RPC_URL -> {'chain': {'rpc_url': ...}}.
        """
        env_config: Dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            config_key = key[len(ENV_PREFIX):].lower()
            if '_' not in config_key:
                continue
            section, name = config_key.split('_', 1)
            if section not in DEFAULT_CONFIG:
                continue
            env_config.setdefault(section, {})[name] = self._parse_env_value(value)

        return env_config

    def _parse_env_value(self, value: str) -> Union[str, int, float, bool, None]:
        """Parse environment variable value to appropriate type."""
        if value.lower() in ['true', 'yes']:
            return True
        if value.lower() in ['false', 'no']:
            return False

        # Hex strings such as contract addresses stay strings
        if value.startswith('0x'):
            return value

        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    def _deep_merge(self, *dicts: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge multiple dictionaries."""
        result: Dict[str, Any] = {}

        for dictionary in dicts:
            for key, value in dictionary.items():
                if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                    result[key] = self._deep_merge(result[key], value)
                else:
                    result[key] = copy.deepcopy(value)

        return result

    def _expand_paths(self, config: Dict[str, Any]):
        """Expand ~ and environment variables in path values."""
        for key, value in config.items():
            if isinstance(value, dict):
                self._expand_paths(value)
            elif isinstance(value, str) and key.endswith('path'):
                config[key] = os.path.expanduser(os.path.expandvars(value))

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        Args:
            key_path: Dot-separated path (e.g., 'chain.rpc_url')
            default: Default value if key not found or unset
        """
        current = self.load()

        for key in key_path.split('.'):
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return default if current is None else current

    def set(self, key_path: str, value: Any):
        """Set configuration value by dot-notation path."""
        config = self.load()

        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def save(self, path: Optional[str] = None, format: str = 'yaml'):
        """
        Save current configuration to file.

        Args:
            path: File path to save to (default: project config file)
            format: Output format ('yaml' or 'json')
        """
        config = self.load()

        if not path:
            path = Path.cwd() / ('.brickledger.yml' if format == 'yaml' else '.brickledger.json')

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w') as f:
            if format == 'yaml':
                yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(config, f, indent=2)

        self.logger.info(f"Configuration saved to {path}")

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        config = self.load()
        errors = []

        store = config.get('store', {})
        backend = store.get('backend')
        if backend not in STORE_BACKENDS:
            errors.append(f"Invalid store backend: {backend}")
        if backend == 'file' and not store.get('path'):
            errors.append("store.path is required for the file backend")
        if backend == 'rest' and not store.get('rest_url'):
            errors.append("store.rest_url is required for the rest backend")

        chain = config.get('chain', {})
        rpc_url = chain.get('rpc_url')
        if not isinstance(rpc_url, str) or not rpc_url.startswith(('http://', 'https://')):
            errors.append(f"Invalid chain RPC url: {rpc_url}")
        address = chain.get('contract_address')
        if address is not None and not (isinstance(address, str) and _ADDRESS_RE.match(address)):
            errors.append(f"Invalid contract address: {address}")
        for key in ('deploy_block', 'block_chunk_size', 'timeout', 'max_retries'):
            value = chain.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                errors.append(f"chain.{key} must be a non-negative integer")
        if isinstance(chain.get('block_chunk_size'), int) and chain['block_chunk_size'] < 1:
            errors.append("chain.block_chunk_size must be at least 1")

        sync = config.get('sync', {})
        for key in ('max_workers', 'id_chunk_size'):
            value = sync.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                errors.append(f"sync.{key} must be a positive integer")

        if not config.get('admin', {}).get('reset_token_env'):
            errors.append("admin.reset_token_env must name an environment variable")

        output_format = config.get('cli', {}).get('output_format')
        if output_format not in OUTPUT_FORMATS:
            errors.append(f"Invalid output format: {output_format}")

        return errors

    def get_sources(self) -> List[str]:
        """Get list of configuration sources that were loaded."""
        self.load()
        return self._config_sources

    def reset(self):
        """Reset configuration cache."""
        self._config_cache = None
        self._config_sources = []


# Global configuration manager instance
_global_config_manager = None


def get_config_manager(config_file: Optional[str] = None,
                       profile: Optional[str] = None) -> ConfigurationManager:
    """Get or create the global configuration manager."""
    global _global_config_manager

    if _global_config_manager is None or config_file or profile:
        _global_config_manager = ConfigurationManager(config_file, profile)

    return _global_config_manager

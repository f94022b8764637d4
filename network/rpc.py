"""
BrickLedger - Ethereum JSON-RPC Client

This module provides a small JSON-RPC client for EVM nodes with connection
pooling, retry on transient HTTP failures and per-method call statistics.
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


class RPCError(Exception):
    """Base exception for RPC-related errors."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")

    def is_revert(self) -> bool:
        """True when the node reports a contract revert rather than a node failure."""
        text = f"{self.message} {self.data or ''}".lower()
        return self.code == 3 or "revert" in text or "nonexistent token" in text


class RPCConnectionError(RPCError):
    """Exception for RPC connection failures."""
    pass


class RPCTimeoutError(RPCError):
    """Exception for RPC timeout errors."""
    pass


@dataclass
class RPCConfig:
    """Configuration for an EVM JSON-RPC endpoint."""
    url: str = "https://sepolia.base.org"
    timeout: int = 30
    max_retries: int = 3
    backoff_factor: float = 0.5
    pool_maxsize: int = 10

    def __post_init__(self):
        if not self.url or not self.url.startswith(("http://", "https://")):
            raise ValueError(f"RPC url must be an http(s) URL, got {self.url!r}")
        if self.timeout <= 0:
            raise ValueError("RPC timeout must be positive")

    @classmethod
    def from_env(cls) -> 'RPCConfig':
        """Create RPC config from environment variables."""
        return cls(
            url=os.getenv("BRICKLEDGER_CHAIN_RPC_URL", "https://sepolia.base.org"),
            timeout=int(os.getenv("BRICKLEDGER_CHAIN_TIMEOUT", "30")),
            max_retries=int(os.getenv("BRICKLEDGER_CHAIN_MAX_RETRIES", "3")),
        )


class EthRPCClient:
    """JSON-RPC client with a pooled session and call statistics."""

    def __init__(self, config: Optional[RPCConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or RPCConfig.from_env()
        self.logger = logging.getLogger(__name__)
        self.session = session or self._build_session()

        self._request_id = 0
        self._id_lock = threading.Lock()
        self._method_stats: Dict[str, Dict[str, Any]] = {}
        self._stats_lock = threading.Lock()

    def _build_session(self) -> requests.Session:
        session = requests.Session()
        retry_strategy = Retry(
            total=self.config.max_retries,
            backoff_factor=self.config.backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy, pool_maxsize=self.config.pool_maxsize)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def _next_id(self) -> int:
        with self._id_lock:
            self._request_id += 1
            return self._request_id

    def _record(self, method: str, elapsed: float, failed: bool) -> None:
        with self._stats_lock:
            stats = self._method_stats.setdefault(
                method, {"calls": 0, "errors": 0, "total_time": 0.0, "last_call": None}
            )
            stats["calls"] += 1
            stats["total_time"] += elapsed
            stats["last_call"] = datetime.now(timezone.utc)
            if failed:
                stats["errors"] += 1

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Make an RPC call and return its result.

        Raises:
            RPCTimeoutError: If the request timed out
            RPCConnectionError: If the node could not be reached or answered non-200
            RPCError: If the node returned a JSON-RPC error
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": self._next_id(),
        }
        headers = {"Content-Type": "application/json", "User-Agent": "brickledger-rpc/1.0"}

        start_time = time.time()
        failed = True
        try:
            try:
                response = self.session.post(
                    self.config.url,
                    data=json.dumps(payload),
                    headers=headers,
                    timeout=self.config.timeout,
                )
            except requests.exceptions.Timeout:
                raise RPCTimeoutError(-1, f"Request timed out after {self.config.timeout}s")
            except requests.exceptions.ConnectionError as e:
                raise RPCConnectionError(-1, f"Connection error: {e}")
            except requests.exceptions.RequestException as e:
                raise RPCConnectionError(-1, f"Request failed: {e}")

            if response.status_code != 200:
                raise RPCConnectionError(response.status_code, f"HTTP {response.status_code}: {response.reason}")

            try:
                body = response.json()
            except ValueError as e:
                raise RPCError(-32700, f"Invalid JSON response: {e}")

            error = body.get("error")
            if error:
                raise RPCError(error.get("code", -1), error.get("message", "Unknown error"), error.get("data"))

            failed = False
            return body.get("result")
        except RPCError as e:
            self.logger.debug(f"RPC call {method} failed: {e}")
            raise
        finally:
            self._record(method, time.time() - start_time, failed)

    # Ethereum methods

    def eth_block_number(self) -> int:
        return int(self.call("eth_blockNumber"), 16)

    def eth_call(self, to: str, data: str, block: Union[str, int] = "latest") -> str:
        if isinstance(block, int):
            block = hex(block)
        return self.call("eth_call", [{"to": to, "data": data}, block])

    def eth_get_logs(self, address: str, topics: List[Optional[str]], from_block: int, to_block: int) -> List[Dict[str, Any]]:
        return self.call("eth_getLogs", [{
            "address": address,
            "topics": topics,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }]) or []

    def get_stats(self) -> Dict[str, Any]:
        """Per-method call statistics."""
        with self._stats_lock:
            return {method: dict(stats) for method, stats in self._method_stats.items()}

    def close(self):
        """Close the underlying session."""
        if self.session:
            self.session.close()

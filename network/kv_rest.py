"""
BrickLedger - Redis REST Store

KVStore implementation speaking the Redis-over-HTTP protocol used by hosted
Redis providers: each command is POSTed as a JSON array and answered with
``{"result": ...}`` or ``{"error": "..."}``. Values are stored as JSON text.
"""

import json
import logging
import re
from typing import Any, List, Optional, Set

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from registry.exceptions import StorageError
from registry.storage import KVStore, WrongTypeError

_GLOB_SPECIAL = re.compile(r'([*?\[\]\\])')


def escape_glob(text: str) -> str:
    """Escape Redis glob metacharacters so a prefix matches literally."""
    return _GLOB_SPECIAL.sub(r'\\\1', text)


class RestKVStore(KVStore):
    """Key-value store backed by a Redis REST endpoint."""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: int = 10,
        max_retries: int = 3,
        scan_count: int = 1000,
        session: Optional[requests.Session] = None,
    ):
        if not url:
            raise ValueError("REST store url is required")
        self.url = url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.scan_count = scan_count
        self.logger = logging.getLogger(__name__)

        if session is None:
            session = requests.Session()
            retry_strategy = Retry(
                total=max_retries,
                backoff_factor=0.3,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["POST"],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session

    def command(self, *args: Any) -> Any:
        """
        Execute one Redis command and return its result.

        Raises:
            WrongTypeError: If the command hit a key of the other type
            StorageError: For transport failures and any other server error
        """
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = self.session.post(
                self.url,
                data=json.dumps([str(a) for a in args]),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise StorageError(f"REST store unreachable: {e}", {"command": args[0]})

        try:
            body = response.json()
        except ValueError:
            raise StorageError(
                f"REST store returned HTTP {response.status_code} with a non-JSON body",
                {"command": args[0]},
            )

        if isinstance(body, dict) and body.get("error"):
            message = str(body["error"])
            if message.startswith("WRONGTYPE"):
                raise WrongTypeError(message, {"command": args[0]})
            raise StorageError(f"REST store error: {message}", {"command": args[0]})

        if response.status_code != 200:
            raise StorageError(f"REST store returned HTTP {response.status_code}", {"command": args[0]})

        return body.get("result") if isinstance(body, dict) else None

    def get(self, key: str) -> Optional[Any]:
        raw = self.command("GET", key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            # Plain strings written by other clients
            return raw

    def set(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value is not JSON serializable: {e}")
        self.command("SET", key, encoded)

    def delete(self, key: str) -> int:
        return int(self.command("DEL", key) or 0)

    def delete_many(self, keys: List[str]) -> int:
        if not keys:
            return 0
        return int(self.command("DEL", *keys) or 0)

    def scan(self, prefix: str) -> List[str]:
        pattern = f"{escape_glob(prefix)}*"
        cursor = "0"
        keys = set()
        while True:
            result = self.command("SCAN", cursor, "MATCH", pattern, "COUNT", self.scan_count)
            if not isinstance(result, list) or len(result) != 2:
                raise StorageError(f"Unexpected SCAN reply: {result!r}")
            cursor, batch = str(result[0]), result[1] or []
            keys.update(batch)
            if cursor == "0":
                break
        return sorted(keys)

    def set_add(self, set_key: str, member: str) -> int:
        return int(self.command("SADD", set_key, member) or 0)

    def set_remove(self, set_key: str, member: str) -> int:
        return int(self.command("SREM", set_key, member) or 0)

    def set_members(self, set_key: str) -> Set[str]:
        return {str(m) for m in (self.command("SMEMBERS", set_key) or [])}

    def set_is_member(self, set_key: str, member: str) -> bool:
        return bool(self.command("SISMEMBER", set_key, member))

    def ping(self) -> bool:
        """Check the endpoint answers."""
        try:
            return self.command("PING") == "PONG"
        except StorageError as e:
            self.logger.warning(f"REST store ping failed: {e}")
            return False

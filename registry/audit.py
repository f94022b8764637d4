"""
BrickLedger - Admin Audit Log

Keeps a capped, newest-first history of destructive admin operations in the
key-value store. The log lives under the ``admin:`` prefix, which purges never
touch.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .storage import KVStore


class AdminAuditLog:
    """Capped audit history stored as a JSON list under one key."""

    def __init__(self, kv: KVStore, key: str = "admin:reset-logs", max_entries: int = 100):
        self.kv = kv
        self.key = key
        self.max_entries = max_entries
        self.logger = logging.getLogger(__name__)

    def _load(self) -> List[Dict[str, Any]]:
        raw = self.kv.get(self.key)
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                self.logger.warning(f"Audit log {self.key} is corrupt, starting a new one")
                return []
        if not isinstance(raw, list):
            return []
        return [entry for entry in raw if isinstance(entry, dict)]

    def record(self, entry: Dict[str, Any]) -> None:
        """Prepend an entry and trim the oldest beyond ``max_entries``."""
        entries = [entry] + self._load()
        self.kv.set(self.key, entries[:self.max_entries])

    def recent(self, limit: Optional[int] = 50) -> List[Dict[str, Any]]:
        entries = self._load()
        return entries if limit is None else entries[:limit]

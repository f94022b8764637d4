"""
BrickLedger - Key-Value Storage Backends

This module defines the key-value store contract consumed by the
reconciliation layer and two local backends: a thread-safe in-memory map and
a JSON file store with file locking and atomic replacement.

The contract has no multi-key transactions. Plain values and sets share one
key namespace, as in Redis.
"""

import copy
import fcntl
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional, Set, Union

from .exceptions import StorageError


class LockTimeoutError(StorageError):
    """Lock acquisition timeout exception."""

    code = "LOCK_TIMEOUT"


class WrongTypeError(StorageError):
    """Raised when a value operation hits a set key or the other way round."""

    code = "WRONG_TYPE"


class KVStore(ABC):
    """Key-value store contract."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the value stored at ``key`` or None when absent."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value."""

    @abstractmethod
    def delete(self, key: str) -> int:
        """Delete a key of any type; return the number of keys removed."""

    @abstractmethod
    def scan(self, prefix: str) -> List[str]:
        """Return every key starting with ``prefix``."""

    @abstractmethod
    def set_add(self, set_key: str, member: str) -> int:
        """Add a member; return 1 when it was not present before."""

    @abstractmethod
    def set_remove(self, set_key: str, member: str) -> int:
        """Remove a member; return 1 when it was present."""

    @abstractmethod
    def set_members(self, set_key: str) -> Set[str]:
        """Return all members of a set (empty when the key is absent)."""

    @abstractmethod
    def set_is_member(self, set_key: str, member: str) -> bool:
        """Check set membership."""

    def delete_many(self, keys: List[str]) -> int:
        """Delete several keys one by one; stores without multi-key DEL use this."""
        return sum(self.delete(key) for key in keys)


def _json_copy(value: Any) -> Any:
    """Round-trip through JSON so callers never share state with the store."""
    try:
        return json.loads(json.dumps(value))
    except (TypeError, ValueError) as e:
        raise StorageError(f"Value is not JSON serializable: {e}")


class MemoryKVStore(KVStore):
    """Thread-safe in-memory store. Suitable for tests and single-process use."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = {}
        self._lock = RLock()
        for key, value in (initial or {}).items():
            if isinstance(value, (set, frozenset)):
                self._data[key] = {str(m) for m in value}
            else:
                self._data[key] = _json_copy(value)

    def _get_set(self, set_key: str, create: bool = False) -> Optional[Set[str]]:
        existing = self._data.get(set_key)
        if existing is None:
            if not create:
                return None
            existing = set()
            self._data[set_key] = existing
        if not isinstance(existing, set):
            raise WrongTypeError(f"Key {set_key} does not hold a set")
        return existing

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            value = self._data.get(key)
            if isinstance(value, set):
                raise WrongTypeError(f"Key {key} holds a set")
            return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        stored = _json_copy(value)
        with self._lock:
            self._data[key] = stored

    def delete(self, key: str) -> int:
        with self._lock:
            return 1 if self._data.pop(key, None) is not None else 0

    def scan(self, prefix: str) -> List[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def set_add(self, set_key: str, member: str) -> int:
        with self._lock:
            members = self._get_set(set_key, create=True)
            member = str(member)
            if member in members:
                return 0
            members.add(member)
            return 1

    def set_remove(self, set_key: str, member: str) -> int:
        with self._lock:
            members = self._get_set(set_key)
            member = str(member)
            if not members or member not in members:
                return 0
            members.discard(member)
            if not members:
                del self._data[set_key]
            return 1

    def set_members(self, set_key: str) -> Set[str]:
        with self._lock:
            members = self._get_set(set_key)
            return set(members) if members else set()

    def set_is_member(self, set_key: str, member: str) -> bool:
        with self._lock:
            members = self._get_set(set_key)
            return bool(members) and str(member) in members

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class FileLock:
    """Exclusive lock file guarding a JSON store across processes."""

    def __init__(self, file_path: Union[str, Path], timeout: float = 30.0, poll_interval: float = 0.05):
        self.file_path = Path(file_path)
        self.lock_file_path = self.file_path.with_suffix(self.file_path.suffix + '.lock')
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.lock_fd: Optional[int] = None
        self._thread_lock = RLock()
        self._depth = 0

    def acquire(self) -> None:
        """Acquire the lock, re-entrant within one instance."""
        self._thread_lock.acquire()
        if self.lock_fd is not None:
            self._depth += 1
            return

        deadline = time.monotonic() + self.timeout
        fd = os.open(str(self.lock_file_path), os.O_CREAT | os.O_RDWR)
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    self._thread_lock.release()
                    raise LockTimeoutError(f"Failed to acquire lock within {self.timeout} seconds")
                time.sleep(self.poll_interval)

        self.lock_fd = fd
        self._depth = 1

    def release(self) -> None:
        """Release one level of the lock."""
        if self.lock_fd is None:
            return
        try:
            self._depth -= 1
            if self._depth == 0:
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
                os.close(self.lock_fd)
                self.lock_fd = None
        finally:
            self._thread_lock.release()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class JSONFileKVStore(KVStore):
    """
    File-backed store persisting the whole keyspace as one JSON document.

    Every operation is read-modify-write under an exclusive file lock and the
    document is replaced atomically through a temporary file and rename.
    """

    def __init__(self, file_path: Union[str, Path], lock_timeout: float = 30.0):
        self.file_path = Path(file_path)
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        self.lock = FileLock(self.file_path, timeout=lock_timeout)
        self.logger = logging.getLogger(__name__)

        if not self.file_path.exists():
            with self.lock:
                if not self.file_path.exists():
                    self._write_document({"values": {}, "sets": {}})

    def _read_document(self) -> Dict[str, Dict[str, Any]]:
        try:
            raw = self.file_path.read_bytes()
        except FileNotFoundError:
            return {"values": {}, "sets": {}}
        except OSError as e:
            raise StorageError(f"Failed to read store {self.file_path}: {e}")

        if not raw:
            return {"values": {}, "sets": {}}

        try:
            document = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StorageError(f"Invalid JSON data in {self.file_path}: {e}")

        document.setdefault("values", {})
        document.setdefault("sets", {})
        return document

    def _write_document(self, document: Dict[str, Dict[str, Any]]) -> None:
        temp_file = self.file_path.with_suffix(self.file_path.suffix + '.tmp')
        try:
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(document, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_file, self.file_path)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            raise StorageError(f"Failed to write store {self.file_path}: {e}")

    @contextmanager
    def _transaction(self, write: bool = True):
        with self.lock:
            document = self._read_document()
            yield document
            if write:
                self._write_document(document)

    def get(self, key: str) -> Optional[Any]:
        with self._transaction(write=False) as doc:
            if key in doc["sets"]:
                raise WrongTypeError(f"Key {key} holds a set")
            return doc["values"].get(key)

    def set(self, key: str, value: Any) -> None:
        stored = _json_copy(value)
        with self._transaction() as doc:
            if key in doc["sets"]:
                raise WrongTypeError(f"Key {key} holds a set")
            doc["values"][key] = stored

    def delete(self, key: str) -> int:
        with self._transaction() as doc:
            removed = 0
            if doc["values"].pop(key, None) is not None:
                removed = 1
            if doc["sets"].pop(key, None) is not None:
                removed = 1
            return removed

    def delete_many(self, keys: List[str]) -> int:
        with self._transaction() as doc:
            removed = 0
            for key in keys:
                hit = doc["values"].pop(key, None) is not None
                hit = doc["sets"].pop(key, None) is not None or hit
                removed += int(hit)
            return removed

    def scan(self, prefix: str) -> List[str]:
        with self._transaction(write=False) as doc:
            keys = set(doc["values"]) | set(doc["sets"])
            return sorted(k for k in keys if k.startswith(prefix))

    def _members(self, doc: Dict[str, Dict[str, Any]], set_key: str) -> List[str]:
        if set_key in doc["values"]:
            raise WrongTypeError(f"Key {set_key} does not hold a set")
        return doc["sets"].get(set_key, [])

    def set_add(self, set_key: str, member: str) -> int:
        member = str(member)
        with self._transaction() as doc:
            members = self._members(doc, set_key)
            if member in members:
                return 0
            doc["sets"][set_key] = sorted(set(members) | {member})
            return 1

    def set_remove(self, set_key: str, member: str) -> int:
        member = str(member)
        with self._transaction() as doc:
            members = self._members(doc, set_key)
            if member not in members:
                return 0
            remaining = [m for m in members if m != member]
            if remaining:
                doc["sets"][set_key] = remaining
            else:
                del doc["sets"][set_key]
            return 1

    def set_members(self, set_key: str) -> Set[str]:
        with self._transaction(write=False) as doc:
            return set(self._members(doc, set_key))

    def set_is_member(self, set_key: str, member: str) -> bool:
        with self._transaction(write=False) as doc:
            return str(member) in self._members(doc, set_key)

    def get_storage_info(self) -> Dict[str, Any]:
        """Get storage information."""
        with self._transaction(write=False) as doc:
            return {
                'file_path': str(self.file_path),
                'size_bytes': self.file_path.stat().st_size if self.file_path.exists() else 0,
                'value_keys': len(doc["values"]),
                'set_keys': len(doc["sets"]),
            }

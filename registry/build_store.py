"""
BrickLedger - Build Record Store

Owns the ``build -> record`` entries, the three reverse indices
(``token -> build``, ``hash -> build``, ``brickSpec -> token``) and the set of
minted token ids. Raw store values are decoded into BuildRecord here and
nowhere else.
"""

import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError

from .schema import BuildRecord, normalize_token_id
from .storage import KVStore


class StoreKeys:
    """Logical key layout shared with the web app."""

    BUILD_PREFIX = "build:"
    TOKEN_PREFIX = "token:"
    HASH_PREFIX = "hash:"
    BRICK_SPEC_PREFIX = "brickSpec:"
    LEGACY_TOKEN_PREFIX = "build:token:"
    LEGACY_HASH_PREFIX = "build:hash:"
    MINTED_TOKENS = "mintedTokens"
    PUBLIC_BUILDS = "builds:public"
    RESET_LOGS = "admin:reset-logs"

    @classmethod
    def build(cls, build_id: str) -> str:
        return f"{cls.BUILD_PREFIX}{build_id}"

    @classmethod
    def token(cls, token_id: str) -> str:
        return f"{cls.TOKEN_PREFIX}{token_id}"

    @classmethod
    def legacy_token(cls, token_id: str) -> str:
        return f"{cls.LEGACY_TOKEN_PREFIX}{token_id}"

    @classmethod
    def content_hash(cls, content_hash: str) -> str:
        return f"{cls.HASH_PREFIX}{content_hash}"

    @classmethod
    def brick_spec(cls, spec_key: str) -> str:
        return f"{cls.BRICK_SPEC_PREFIX}{spec_key}"

    @classmethod
    def is_index_key(cls, key: str) -> bool:
        """Index entries that happen to live under the ``build:`` prefix."""
        return key.startswith(cls.LEGACY_TOKEN_PREFIX) or key.startswith(cls.LEGACY_HASH_PREFIX)


def _as_pointer(raw: Any) -> Optional[str]:
    """Index values are plain strings, sometimes JSON quoted or numeric."""
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return normalize_token_id(int(raw))
    if isinstance(raw, str):
        value = raw.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                value = value.strip('"')
        return value or None
    return None


class BuildRecordStore:
    """Typed access to build records and their indices."""

    def __init__(self, kv: KVStore):
        self.kv = kv
        self.logger = logging.getLogger(__name__)

    # Decoding

    def decode_record(self, raw: Any, build_id: Optional[str] = None) -> Optional[BuildRecord]:
        """
        Decode a raw stored value into a BuildRecord.

        Accepts a mapping or a JSON string. Returns None for values that are
        not records so callers treat corrupt entries as a miss.
        """
        if raw is None:
            return None

        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode('utf-8', errors='replace')

        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError:
                self.logger.warning(f"Build {build_id} holds non-JSON data, ignoring")
                return None

        if not isinstance(raw, dict):
            return None

        data = dict(raw)
        if build_id and not data.get("id"):
            data["id"] = build_id

        try:
            return BuildRecord.model_validate(data)
        except PydanticValidationError as e:
            self.logger.warning(f"Build {build_id} failed validation: {e.error_count()} error(s)")
            return None

    # Build records

    def get_build(self, build_id: str) -> Optional[BuildRecord]:
        return self.decode_record(self.kv.get(StoreKeys.build(build_id)), build_id)

    def put_build(self, record: BuildRecord) -> None:
        self.kv.set(StoreKeys.build(record.id), record.to_storage())

    def build_exists(self, build_id: str) -> bool:
        return self.kv.get(StoreKeys.build(build_id)) is not None

    def iter_build_keys(self) -> Iterator[str]:
        """Yield record keys under ``build:``, skipping index-shaped keys."""
        for key in self.kv.scan(StoreKeys.BUILD_PREFIX):
            if StoreKeys.is_index_key(key):
                continue
            yield key

    def iter_builds(self) -> Iterator[Tuple[str, Optional[BuildRecord]]]:
        """Yield ``(build_id, record)`` for every record key; record is None when corrupt."""
        for key in self.iter_build_keys():
            build_id = key[len(StoreKeys.BUILD_PREFIX):]
            yield build_id, self.get_build(build_id)

    # token -> build

    def get_token_build_id(self, token_id: str) -> Optional[str]:
        return _as_pointer(self.kv.get(StoreKeys.token(token_id)))

    def get_legacy_token_build_id(self, token_id: str) -> Optional[str]:
        return _as_pointer(self.kv.get(StoreKeys.legacy_token(token_id)))

    def set_token_build_id(self, token_id: str, build_id: str) -> None:
        self.kv.set(StoreKeys.token(token_id), build_id)

    def token_index(self) -> Dict[str, str]:
        """Read every ``token:{id}`` entry into ``{token_id: build_id}``."""
        index = {}
        for key in self.kv.scan(StoreKeys.TOKEN_PREFIX):
            token_id = key[len(StoreKeys.TOKEN_PREFIX):]
            try:
                build_id = _as_pointer(self.kv.get(key))
            except Exception as e:
                self.logger.warning(f"Skipping unreadable token index {key}: {e}")
                continue
            if build_id:
                index[token_id] = build_id
        return index

    # hash -> build

    def get_hash_build_id(self, content_hash: str) -> Optional[str]:
        return _as_pointer(self.kv.get(StoreKeys.content_hash(content_hash)))

    def set_hash_build_id(self, content_hash: str, build_id: str) -> None:
        self.kv.set(StoreKeys.content_hash(content_hash), build_id)

    # brickSpec -> token

    def get_spec_token_id(self, spec_key: str) -> Optional[str]:
        return _as_pointer(self.kv.get(StoreKeys.brick_spec(spec_key)))

    def set_spec_token_id(self, spec_key: str, token_id: str) -> None:
        self.kv.set(StoreKeys.brick_spec(spec_key), token_id)

    def release_spec(self, spec_key: str, token_id: str) -> bool:
        """Delete a spec pointer, but only while it still names ``token_id``."""
        if self.get_spec_token_id(spec_key) != token_id:
            return False
        return self.kv.delete(StoreKeys.brick_spec(spec_key)) > 0

    # Minted token set

    def minted_tokens(self) -> Set[str]:
        return self.kv.set_members(StoreKeys.MINTED_TOKENS)

    def is_minted(self, token_id: str) -> bool:
        return self.kv.set_is_member(StoreKeys.MINTED_TOKENS, token_id)

    def add_minted(self, token_id: str) -> int:
        return self.kv.set_add(StoreKeys.MINTED_TOKENS, token_id)

    def remove_minted(self, token_id: str) -> int:
        return self.kv.set_remove(StoreKeys.MINTED_TOKENS, token_id)


def sort_token_ids(token_ids: List[str], reverse: bool = False) -> List[str]:
    """Sort token ids numerically; non-numeric ids sort last in lexical order."""
    def key(token_id: str):
        try:
            return (0, int(token_id), token_id)
        except (TypeError, ValueError):
            return (1, 0, str(token_id))
    return sorted(token_ids, key=key, reverse=reverse)
